"""
ASCII command protocol carried over 8-byte HID reports.

Every command and response is one report::

    byte 0      report ID (always 1 for the command/response collection)
    bytes 1..7  ASCII text, zero padded

Commands are short mnemonics with an optional decimal argument
(``SK3`` asserts relay 3, ``MK005`` writes the relay port).  Read
commands are answered with a decimal number in the same layout.
"""

import logging
import re
from typing import NamedTuple, Optional

from .models import Result, Status

log = logging.getLogger(__name__)

REPORT_ID_CMD = 1
REPORT_DATA_LEN = 7
REPORT_BUF_LEN = REPORT_DATA_LEN + 1

DEFAULT_TIMEOUT_MS = 500
INFINITE_TIMEOUT = -1

# Response ranges (inclusive)
INPUTS_RANGE = (0, 0xFF)
RELAY_RANGE = (0, 1)
PORT_RANGE = (0, 0xFF)
COUNTER_RANGE = (0, 0xFFFF)
DEBOUNCE_RANGE = (0, 2)
WATCHDOG_RANGE = (0, 3)

# strtol(): optional leading whitespace, optional sign, base-10 digits
_NUMERIC_RE = re.compile(rb'[ \t\n\v\f\r]*([+-]?[0-9]+)')


# =========================================================================
# Command encoding
# =========================================================================

class Command(NamedTuple):
    """A protocol command: mnemonic plus optional decimal argument."""
    mnemonic: str
    argument: Optional[int] = None
    width: int = 0   # zero-pad the argument to this many digits

    @property
    def text(self) -> str:
        if self.argument is None:
            return self.mnemonic
        return f"{self.mnemonic}{self.argument:0{self.width}d}"


def read_inputs() -> Command:
    return Command('PI')


def relay_write(relay: int, asserted: bool) -> Command:
    return Command('SK' if asserted else 'RK', relay)


def relay_read(relay: int) -> Command:
    return Command('RPK', relay)


def port_write(value: int) -> Command:
    return Command('MK', value, width=3)


def port_read() -> Command:
    return Command('PK')


def counter_read(counter: int, clear: bool = False) -> Command:
    return Command('RC' if clear else 'RE', counter)


def debounce_write(config: int) -> Command:
    return Command('DB', config)


def debounce_read() -> Command:
    return Command('DB')


def watchdog_write(config: int) -> Command:
    return Command('WD', config)


def watchdog_read() -> Command:
    return Command('WD')


def encode_report(text: str, logger: Optional[logging.Logger] = None) -> Result:
    """Build the 8-byte output report for ``text``.

    Returns ``Result(SUCCESS, bytes)``, or INTERNAL if the text cannot be
    represented in a single report.
    """
    logger = logger or log
    try:
        data = text.encode('ascii')
    except UnicodeEncodeError:
        logger.error("Command formatting failed: %r", text)
        return Result(Status.INTERNAL)
    if len(data) > REPORT_DATA_LEN:
        logger.error("Formatting output exceeds report data bounds: %r", text)
        return Result(Status.INTERNAL)
    return Result(Status.SUCCESS,
                  bytes([REPORT_ID_CMD]) + data.ljust(REPORT_DATA_LEN, b'\x00'))


# =========================================================================
# Response decoding
# =========================================================================

def response_payload(report) -> bytes:
    """Report text bytes up to the first NUL (at most 7 bytes)."""
    data = bytes(report[1:REPORT_BUF_LEN])
    end = data.find(b'\x00')
    return data if end < 0 else data[:end]


def decode_numeric(report, minimum: int, maximum: int,
                   logger: Optional[logging.Logger] = None) -> Result:
    """Parse a numeric response report.

    The report ID must be REPORT_ID_CMD and the payload must be a base-10
    integer (optionally preceded by whitespace and a sign) with nothing
    after it, inside ``[minimum, maximum]``.  Anything else is
    BAD_RESPONSE.
    """
    logger = logger or log
    if len(report) < 1 or report[0] != REPORT_ID_CMD:
        logger.error("Received unexpected report ID: %s",
                     report[0] if len(report) else None)
        return Result(Status.BAD_RESPONSE)

    payload = response_payload(report)
    match = _NUMERIC_RE.fullmatch(payload)
    if match is None:
        logger.error("Failed to parse numeric value from response: %r", payload)
        return Result(Status.BAD_RESPONSE)

    value = int(match.group(1))
    if not minimum <= value <= maximum:
        logger.error("Response out of range: %d", value)
        return Result(Status.BAD_RESPONSE)
    return Result(Status.SUCCESS, value)


def copy_response(report, buffer) -> None:
    """Copy the report text into ``buffer`` with strncpy semantics.

    At most ``len(buffer)`` bytes are written.  The text is followed by
    zero fill, so a terminator is present only when the text is shorter
    than the buffer.
    """
    payload = response_payload(report)[:len(buffer)]
    buffer[:len(payload)] = payload
    buffer[len(payload):] = bytes(len(buffer) - len(payload))
