#!/usr/bin/env python3
"""
relacon - Command Line Interface

Reads or writes one parameter of a relay controller per invocation.
"""

import argparse
import logging
import re
import sys
from typing import Optional

from . import conf
from .__version__ import __version__
from .backend import BACKENDS
from .device import RelaconApi, Session, initialize
from .models import DebounceConfig, Status, WatchdogConfig
from .protocol import DEFAULT_TIMEOUT_MS, INFINITE_TIMEOUT

log = logging.getLogger(__name__)

NUM_RELAYS = 8
NUM_DIGITAL_INPUTS = 8

_OCTAL_RE = re.compile(r'\s*[+-]?0[0-7]+\s*')


# =========================================================================
# Argument helpers
# =========================================================================

def parse_number(text: str, minimum: int, maximum: int) -> Optional[int]:
    """Parse decimal, 0x-hex or 0-octal ``text`` within [minimum, maximum].

    Prints the problem to stderr and returns None if it is not valid.
    """
    try:
        if _OCTAL_RE.fullmatch(text):
            value = int(text, 8)
        else:
            value = int(text, 0)
    except ValueError:
        print(f"Failed to parse numeric value {text}", file=sys.stderr)
        return None
    if not minimum <= value <= maximum:
        print(f"Value {value} is outside valid range [{minimum}, {maximum}]",
              file=sys.stderr)
        return None
    return value


def _number_arg(minimum: int, maximum: int):
    """argparse ``type=`` wrapper around parse_number."""
    def convert(text: str) -> int:
        value = parse_number(text, minimum, maximum)
        if value is None:
            raise argparse.ArgumentTypeError(f"invalid value: {text!r}")
        return value
    return convert


def _setup_logging(verbose: int) -> None:
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('usb').setLevel(logging.WARNING)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=conf.get_log_level(), format='[%(levelname)s] %(message)s')


# =========================================================================
# Operations
# =========================================================================

def _fail(what: str, status: Status) -> int:
    print(f"Failed to {what} (status={status.name})", file=sys.stderr)
    return 1


def list_devices(api: RelaconApi, vid: int = 0, pid: int = 0,
                 serial_number: Optional[str] = None) -> int:
    """Print every matching device."""
    status, devices = api.find_devices(vid, pid, serial_number)
    if status != Status.SUCCESS:
        print("Failed to create device list", file=sys.stderr)
        return 1
    for info in devices:
        print(f"{info.vid_pid}: "
              f"{info.manufacturer or '<NO MANUFACTURER>'} - "
              f"{info.product or '<NO PRODUCT>'} "
              f"({info.serial_number or '<NO SERIAL NUMBER>'})")
        print(f"\t{info.num_relays} relays, {info.num_inputs} inputs")
    return 0


def relays(session: Session, write_value: Optional[str] = None) -> int:
    """Read or write the whole relay port."""
    if write_value is None:
        status, value = session.read_relays()
        if status != Status.SUCCESS:
            return _fail("read relays", status)
        print(f"0x{value:02x}")
        return 0

    value = parse_number(write_value, 0, 0xFF)
    if value is None:
        return 1
    status = session.write_relays(value)
    if status != Status.SUCCESS:
        return _fail("write relays", status)
    return 0


def single_relay(session: Session, relay: int, write_value: Optional[str] = None) -> int:
    """Read or write one relay."""
    if write_value is None:
        status, closed = session.read_relay(relay)
        if status != Status.SUCCESS:
            return _fail("read relay", status)
        print(int(closed))
        return 0

    value = parse_number(write_value, 0, 1)
    if value is None:
        return 1
    status = session.write_relay(relay, bool(value))
    if status != Status.SUCCESS:
        return _fail("write relay", status)
    return 0


def digital_inputs(session: Session) -> int:
    status, value = session.read_inputs()
    if status != Status.SUCCESS:
        return _fail("read digital inputs", status)
    print(f"0x{value:02x}")
    return 0


def event_counter(session: Session, counter: int, clear: bool = False) -> int:
    status, count = session.read_event_counter(counter, clear)
    if status != Status.SUCCESS:
        return _fail("read event counter", status)
    print(f"0x{count:04x}")
    return 0


def debounce(session: Session, write_value: Optional[str] = None) -> int:
    """Read or write the input debounce window."""
    if write_value is None:
        status, config = session.read_debounce()
        if status != Status.SUCCESS:
            return _fail("read debounce value", status)
        print(f"Debounce setting: {config.label}")
        return 0

    value = parse_number(write_value, int(min(DebounceConfig)), int(max(DebounceConfig)))
    if value is None:
        return 1
    status = session.write_debounce(DebounceConfig(value))
    if status != Status.SUCCESS:
        return _fail("set debounce", status)
    return 0


def watchdog(session: Session, write_value: Optional[str] = None) -> int:
    """Read or write the watchdog timeout."""
    if write_value is None:
        status, config = session.read_watchdog()
        if status != Status.SUCCESS:
            return _fail("read watchdog value", status)
        print(f"Watchdog setting: {config.label}")
        return 0

    value = parse_number(write_value, int(min(WatchdogConfig)), int(max(WatchdogConfig)))
    if value is None:
        return 1
    status = session.write_watchdog(WatchdogConfig(value))
    if status != Status.SUCCESS:
        return _fail("set watchdog", status)
    return 0


def raw_command(session: Session, command: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> int:
    """Send a raw command and print the response, if any arrives."""
    status = session.raw_write(command)
    if status != Status.SUCCESS:
        return _fail("send command", status)
    status, text = session.raw_read_text(timeout_ms)
    if status == Status.TIMEOUT:
        log.info("No response within %d ms", timeout_ms)
        return 0
    if status != Status.SUCCESS:
        return _fail("read response", status)
    print(text)
    return 0


# =========================================================================
# Entry point
# =========================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relacon",
        description="Read or write the state of a USB relay controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Any combination of -v, -p and -s filters which device is used; the first
match wins. Without an operation option the relay port is read or written.
Give WRITE_VALUE to write, omit it to read.

Watchdog values:  0 = off, 1 = 1 second, 2 = 10 seconds, 3 = 1 minute
Debounce values:  0 = 10ms, 1 = 1ms, 2 = 100us

Examples:
    relacon -l            List devices
    relacon 0xff          Close every relay
    relacon -i 3 1        Close relay 3
    relacon -e 2 -c       Read and clear event counter 2
    relacon -w 2          Set the watchdog to 10 seconds
        """
    )
    parser.add_argument("-V", "--version", action="version",
                        version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="count", default=0,
                        help="Increase verbosity (--verbose, --verbose --verbose)")
    parser.add_argument("--backend", choices=sorted(BACKENDS),
                        help="Transport backend (default: platform specific)")

    filters = parser.add_argument_group("device selection")
    filters.add_argument("-v", "--vendor-id", type=_number_arg(0, 0xFFFF), default=0,
                         metavar="ID", help="USB vendor ID")
    filters.add_argument("-p", "--product-id", type=_number_arg(0, 0xFFFF), default=0,
                         metavar="ID", help="USB product ID")
    filters.add_argument("-s", "--serial-num", metavar="SERIAL", help="USB serial number")

    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("-l", "--list-devices", action="store_true",
                     help="List available devices and exit")
    ops.add_argument("-d", "--debounce", action="store_true",
                     help="Read or write the debounce configuration")
    ops.add_argument("-w", "--watchdog", action="store_true",
                     help="Read or write the watchdog configuration")
    ops.add_argument("-i", "--individual", type=_number_arg(0, NUM_RELAYS - 1),
                     metavar="N", help="Read or write the state of relay N")
    ops.add_argument("-e", "--event-counter", type=_number_arg(0, NUM_DIGITAL_INPUTS - 1),
                     metavar="N", help="Read event counter N")
    ops.add_argument("-g", "--digital", action="store_true",
                     help="Read the digital input pins")
    ops.add_argument("--raw", metavar="CMD",
                     help="Send a raw command (max 7 characters) and print the response")

    parser.add_argument("-c", "--clear", action="store_true",
                        help="Clear the event counter on read")
    parser.add_argument("--timeout", type=_number_arg(INFINITE_TIMEOUT, 0x7FFFFFFF),
                        default=DEFAULT_TIMEOUT_MS, metavar="MS",
                        help="Response timeout for --raw, -1 waits forever (default: 500)")
    parser.add_argument("write_value", nargs="?", metavar="WRITE_VALUE",
                        help="Value to write")
    return parser


def _run(api: RelaconApi, args) -> int:
    if args.list_devices:
        return list_devices(api, args.vendor_id, args.product_id, args.serial_num)

    session = api.open(args.vendor_id, args.product_id, args.serial_num)
    if session is None:
        print("Failed to open Relacon device", file=sys.stderr)
        return 1
    try:
        if args.digital:
            return digital_inputs(session)
        if args.event_counter is not None:
            return event_counter(session, args.event_counter, args.clear)
        if args.individual is not None:
            return single_relay(session, args.individual, args.write_value)
        if args.debounce:
            return debounce(session, args.write_value)
        if args.watchdog:
            return watchdog(session, args.write_value)
        if args.raw is not None:
            return raw_command(session, args.raw, args.timeout)
        return relays(session, args.write_value)
    finally:
        session.close()


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    read_only = args.list_devices or args.digital or args.event_counter is not None \
        or args.raw is not None
    if read_only and args.write_value is not None:
        parser.error("this operation does not take a WRITE_VALUE")
    if args.clear and args.event_counter is None:
        parser.error("-c/--clear requires -e/--event-counter")

    _setup_logging(args.verbose)

    api = initialize(backend=args.backend)
    if api is None:
        print("Failed to initialize Relacon API", file=sys.stderr)
        return 1
    try:
        return _run(api, args)
    finally:
        api.shutdown()


if __name__ == '__main__':
    sys.exit(main())
