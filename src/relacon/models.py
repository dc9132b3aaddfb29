"""
Relacon models - result codes, configuration enums and device identity.

Every public operation reports its outcome through ``Status``.  Operations
that also produce a value return a ``Result`` carrying both.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, NamedTuple, Optional

# =============================================================================
# Result codes
# =============================================================================


class Status(IntEnum):
    """Outcome of a driver operation."""
    SUCCESS = 0
    INVALID_ARGUMENT = 1   # missing/invalid argument, closed session, stale handle
    INVALID_PARAM = 2      # value outside the operation's domain
    OUT_OF_MEMORY = 3
    TIMEOUT = 4
    BAD_RESPONSE = 5       # device replied with something unparseable
    DEVICE_IO = 6
    INTERNAL = 7
    NO_ENTRY = 8


class Result(NamedTuple):
    """A ``Status`` plus the value produced on success."""
    status: Status
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS


# =============================================================================
# Device configuration values
# =============================================================================


class DebounceConfig(IntEnum):
    """Digital input debounce time."""
    MS_10 = 0
    MS_1 = 1
    US_100 = 2

    @property
    def label(self) -> str:
        return _DEBOUNCE_LABELS[self]


class WatchdogConfig(IntEnum):
    """Watchdog timeout; the device resets its outputs when it expires."""
    OFF = 0
    SEC_1 = 1
    SEC_10 = 2
    MIN_1 = 3

    @property
    def label(self) -> str:
        return _WATCHDOG_LABELS[self]


_DEBOUNCE_LABELS = {
    DebounceConfig.MS_10: '10ms',
    DebounceConfig.MS_1: '1ms',
    DebounceConfig.US_100: '100us',
}

_WATCHDOG_LABELS = {
    WatchdogConfig.OFF: 'OFF',
    WatchdogConfig.SEC_1: '1s',
    WatchdogConfig.SEC_10: '10s',
    WatchdogConfig.MIN_1: '1m',
}


# =============================================================================
# Device identity
# =============================================================================


@dataclass(frozen=True)
class DeviceInfo:
    """
    Identity and capabilities of one enumerated device.

    ``handle`` is the backend's opaque reference used to open the device.
    It is only valid while the listing that produced it is alive and is
    not part of equality or repr.
    """
    vid: int
    pid: int
    serial_number: Optional[str] = None
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    num_relays: int = 0
    num_inputs: int = 0
    handle: Any = field(default=None, compare=False, repr=False)

    def matches(self, vid: int = 0, pid: int = 0,
                serial_number: Optional[str] = None) -> bool:
        """True if every supplied filter matches (0/None are wildcards)."""
        if vid and vid != self.vid:
            return False
        if pid and pid != self.pid:
            return False
        if serial_number is not None and serial_number != self.serial_number:
            return False
        return True

    def snapshot(self) -> 'DeviceInfo':
        """Independent copy without the listing-bound handle."""
        return replace(self, handle=None)

    @property
    def vid_pid(self) -> str:
        return f"{self.vid:04x}:{self.pid:04x}"
