"""
Relay controller sessions.

``initialize()`` loads a transport backend and returns a ``RelaconApi``;
``RelaconApi.open()`` finds the first matching device and returns a
``Session`` through which relays, inputs, counters, debounce and
watchdog settings are read and written.

Usage:
    from relacon import initialize

    api = initialize()
    session = api.open(serial_number='B01234')
    session.write_relay(3, True)
    status, inputs = session.read_inputs()
    session.close()
    api.shutdown()

Every operation returns a ``Status`` (or a ``Result`` when it produces a
value) instead of raising.  A session is not thread-safe: it owns one
report buffer and must not be used from two threads at once.
"""

import logging
from typing import List, Optional

from . import conf, protocol
from .backend import Backend, BackendDevice, DeviceListing, default_backend_name, load_backend
from .models import DebounceConfig, DeviceInfo, Result, Status, WatchdogConfig
from .protocol import Command

log = logging.getLogger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# =========================================================================
# API context
# =========================================================================

class RelaconApi:
    """Owns a backend; produces listings and sessions."""

    def __init__(self, backend: Backend, logger: Optional[logging.Logger] = None,
                 response_timeout_ms: int = protocol.DEFAULT_TIMEOUT_MS):
        self._backend = backend
        self.log = logger or log
        self.response_timeout_ms = response_timeout_ms
        self._shut_down = False

    @property
    def backend(self) -> Backend:
        return self._backend

    def shutdown(self) -> Status:
        if self._shut_down:
            self.log.error("API already shut down")
            return Status.INVALID_ARGUMENT
        self._shut_down = True
        return self._backend.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        if not self._shut_down:
            self.shutdown()

    def _listing(self) -> Result:
        if self._shut_down:
            self.log.error("API has been shut down")
            return Result(Status.INVALID_ARGUMENT)
        result = self._backend.create_listing()
        if not result.ok:
            self.log.error("Failed to construct device list (%s)", result.status.name)
        return result

    def create_listing(self) -> Optional[DeviceListing]:
        """Enumerate supported devices.  None on failure."""
        return self._listing().value

    def destroy_listing(self, listing: DeviceListing) -> Status:
        return self._backend.destroy_listing(listing)

    def find_devices(self, vid: int = 0, pid: int = 0,
                     serial_number: Optional[str] = None) -> Result:
        """Snapshots of every device matching the filters (possibly none)."""
        status, listing = self._listing()
        if status != Status.SUCCESS:
            return Result(status)
        try:
            found: List[DeviceInfo] = [
                entry.snapshot() for entry in listing
                if entry.matches(vid, pid, serial_number)
            ]
        except MemoryError:
            self.log.error("Out of memory collecting device list")
            return Result(Status.OUT_OF_MEMORY)
        finally:
            listing.destroy()
        return Result(Status.SUCCESS, found)

    def open(self, vid: int = 0, pid: int = 0,
             serial_number: Optional[str] = None) -> Optional['Session']:
        """Open the first device matching every supplied filter.

        Zero ``vid``/``pid`` and a None ``serial_number`` match anything.
        The transient listing used for the lookup is destroyed before
        returning, whatever the outcome.
        """
        listing = self.create_listing()
        if listing is None:
            return None
        try:
            match = next(
                (entry for entry in listing if entry.matches(vid, pid, serial_number)),
                None)
            if match is None:
                self.log.error("No matching device found")
                return None

            result = self._backend.open_device(match.handle)
            if not result.ok:
                self.log.error("Backend open failed (%s)", result.status.name)
                return None

            try:
                return Session(self, result.value, match.snapshot())
            except MemoryError:
                self.log.error("Failed to allocate session")
                self._backend.close_device(result.value)
                return None
        finally:
            listing.destroy()


def initialize(backend: Optional[str] = None,
               logger: Optional[logging.Logger] = None,
               response_timeout_ms: Optional[int] = None,
               **options) -> Optional[RelaconApi]:
    """Load a backend and return the API context, or None on failure.

    The backend is chosen from the argument, then the ``RELACON_BACKEND``
    environment variable or config file, then the platform default.
    """
    logger = logger or log
    name = backend or conf.get_backend_name() or default_backend_name()
    if name == 'hidapi' and 'filter_collection_usage' not in options:
        options['filter_collection_usage'] = conf.get_filter_collection_usage()

    result = load_backend(name, logger, **options)
    if not result.ok:
        logger.error("Failed to initialize %s backend (%s)", name, result.status.name)
        return None
    if response_timeout_ms is None:
        response_timeout_ms = conf.get_response_timeout_ms()
    return RelaconApi(result.value, logger, response_timeout_ms)


# =========================================================================
# Session
# =========================================================================

class Session:
    """An open relay controller.  Closed sessions cannot be reopened."""

    def __init__(self, api: RelaconApi, device: BackendDevice, info: DeviceInfo):
        self._api = api
        self._device = device
        self._info: Optional[DeviceInfo] = info
        self._report = bytearray(protocol.REPORT_BUF_LEN)
        self.log = api.log

    def __repr__(self):
        state = 'closed' if self.closed else 'open'
        return f"<Session {self._info!r} {state}>"

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        if not self.closed:
            self.close()

    @property
    def closed(self) -> bool:
        return self._device is None

    @property
    def info(self) -> Optional[DeviceInfo]:
        """Identity copied at open time; None once closed."""
        return self._info

    def get_info(self) -> Result:
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        return Result(Status.SUCCESS, self._info)

    def close(self) -> Status:
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        device, self._device = self._device, None
        self._info = None
        return self._api.backend.close_device(device)

    # -- report I/O --------------------------------------------------------

    def _check_open(self) -> bool:
        if self._device is None:
            self.log.error("Session is closed")
            return False
        return True

    def _write_report(self) -> Status:
        return self._api.backend.write_report(self._device, bytes(self._report))

    def _read_report(self, timeout_ms: int) -> Status:
        return self._api.backend.read_report(self._device, self._report, timeout_ms)

    def _send(self, command: Command) -> Status:
        encoded = protocol.encode_report(command.text, self.log)
        if not encoded.ok:
            return encoded.status
        self._report[:] = encoded.value
        return self._write_report()

    def _query(self, command: Command, value_range) -> Result:
        """Send a read command and parse the numeric response."""
        status = self._send(command)
        if status != Status.SUCCESS:
            return Result(status)
        status = self._read_report(self._api.response_timeout_ms)
        if status != Status.SUCCESS:
            return Result(status)
        minimum, maximum = value_range
        return protocol.decode_numeric(self._report, minimum, maximum, self.log)

    def _check_index(self, index, count: int, what: str) -> Status:
        if not _is_int(index):
            self.log.error("%s index must be an integer: %r", what, index)
            return Status.INVALID_ARGUMENT
        if not 0 <= index < count:
            self.log.error("%s index out of range: %d", what, index)
            return Status.INVALID_PARAM
        return Status.SUCCESS

    def _check_value(self, value, allowed, what: str) -> Status:
        if not _is_int(value):
            self.log.error("%s must be an integer: %r", what, value)
            return Status.INVALID_ARGUMENT
        if value not in allowed:
            self.log.error("%s out of range: %d", what, value)
            return Status.INVALID_PARAM
        return Status.SUCCESS

    # -- digital inputs ----------------------------------------------------

    def read_inputs(self) -> Result:
        """Bitmask of the digital inputs (0..255)."""
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        return self._query(protocol.read_inputs(), protocol.INPUTS_RANGE)

    def read_event_counter(self, counter: int, clear: bool = False) -> Result:
        """Event count (0..65535) of one input; optionally reset it."""
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        status = self._check_index(counter, self._info.num_inputs, "Counter")
        if status != Status.SUCCESS:
            return Result(status)
        return self._query(protocol.counter_read(counter, bool(clear)),
                           protocol.COUNTER_RANGE)

    # -- relays ------------------------------------------------------------

    def write_relay(self, relay: int, asserted: bool) -> Status:
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        status = self._check_index(relay, self._info.num_relays, "Relay")
        if status != Status.SUCCESS:
            return status
        return self._send(protocol.relay_write(relay, bool(asserted)))

    def read_relay(self, relay: int) -> Result:
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        status = self._check_index(relay, self._info.num_relays, "Relay")
        if status != Status.SUCCESS:
            return Result(status)
        result = self._query(protocol.relay_read(relay), protocol.RELAY_RANGE)
        if not result.ok:
            return result
        return Result(Status.SUCCESS, bool(result.value))

    def write_relays(self, value: int) -> Status:
        """Set the whole relay port; bit n drives relay n."""
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        lo, hi = protocol.PORT_RANGE
        status = self._check_value(value, range(lo, hi + 1), "Relay port value")
        if status != Status.SUCCESS:
            return status
        return self._send(protocol.port_write(value))

    def read_relays(self) -> Result:
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        return self._query(protocol.port_read(), protocol.PORT_RANGE)

    # -- configuration -----------------------------------------------------

    def write_debounce(self, config: DebounceConfig) -> Status:
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        status = self._check_value(config, set(DebounceConfig), "Debounce config")
        if status != Status.SUCCESS:
            return status
        return self._send(protocol.debounce_write(int(config)))

    def read_debounce(self) -> Result:
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        result = self._query(protocol.debounce_read(), protocol.DEBOUNCE_RANGE)
        if not result.ok:
            return result
        return Result(Status.SUCCESS, DebounceConfig(result.value))

    def write_watchdog(self, config: WatchdogConfig) -> Status:
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        status = self._check_value(config, set(WatchdogConfig), "Watchdog config")
        if status != Status.SUCCESS:
            return status
        return self._send(protocol.watchdog_write(int(config)))

    def read_watchdog(self) -> Result:
        if not self._check_open():
            return Result(Status.INVALID_ARGUMENT)
        result = self._query(protocol.watchdog_read(), protocol.WATCHDOG_RANGE)
        if not result.ok:
            return result
        return Result(Status.SUCCESS, WatchdogConfig(result.value))

    # -- raw pass-through --------------------------------------------------

    def raw_write(self, command) -> Status:
        """Send ``command`` (at most 7 ASCII bytes) verbatim."""
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        if isinstance(command, str):
            try:
                command = command.encode('ascii')
            except UnicodeEncodeError:
                self.log.error("Command must be ASCII: %r", command)
                return Status.INVALID_PARAM
        if not isinstance(command, (bytes, bytearray)):
            self.log.error("Command must be str or bytes: %r", command)
            return Status.INVALID_ARGUMENT
        data = bytes(command).split(b'\x00', 1)[0]
        if len(data) > protocol.REPORT_DATA_LEN:
            self.log.error("Provided command is too long: %r", command)
            return Status.INVALID_PARAM

        self._report[0] = protocol.REPORT_ID_CMD
        self._report[1:] = data.ljust(protocol.REPORT_DATA_LEN, b'\x00')
        return self._write_report()

    def raw_read(self, buffer, timeout_ms: int = protocol.INFINITE_TIMEOUT) -> Status:
        """Read one report and copy its text into ``buffer``.

        The copy never exceeds ``len(buffer)``; the text is NUL terminated
        only when it is shorter than the buffer.
        """
        if not self._check_open():
            return Status.INVALID_ARGUMENT
        if not isinstance(buffer, (bytearray, memoryview)) or (
                isinstance(buffer, memoryview) and buffer.readonly):
            self.log.error("Output buffer must be a writable bytearray or memoryview")
            return Status.INVALID_ARGUMENT
        if not _is_int(timeout_ms) or timeout_ms < protocol.INFINITE_TIMEOUT:
            self.log.error("Invalid timeout: %r", timeout_ms)
            return Status.INVALID_PARAM

        status = self._read_report(timeout_ms)
        if status == Status.SUCCESS:
            protocol.copy_response(self._report, buffer)
        return status

    def raw_read_text(self, timeout_ms: int = protocol.INFINITE_TIMEOUT) -> Result:
        """``raw_read`` returning the response as a string."""
        buffer = bytearray(protocol.REPORT_DATA_LEN)
        status = self.raw_read(buffer, timeout_ms)
        if status != Status.SUCCESS:
            return Result(status)
        return Result(Status.SUCCESS,
                      bytes(buffer).split(b'\x00', 1)[0].decode('ascii', 'replace'))
