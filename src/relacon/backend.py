"""
Transport backend contract.

A ``Backend`` turns a platform USB/HID library into the small set of
operations the session core needs: enumerate supported devices, open
one, and move 8-byte reports in and out of it.

Two implementations ship with relacon:

  • ``PyUsbBackend`` (``relacon.backend_pyusb``) talks to the device
    through libusb via pyusb.  Default everywhere except Windows.
  • ``HidApiBackend`` (``relacon.backend_hidapi``) goes through the OS
    HID driver via hidapi.  Default on Windows, where libusb cannot
    read string descriptors of HID devices.

Only the selected backend's module is imported, so hidapi stays an
optional dependency (``pip install relacon[hid]``).
"""

import importlib
import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from .capabilities import query_capabilities
from .models import DeviceInfo, Result, Status

log = logging.getLogger(__name__)

BACKENDS = {
    'pyusb': 'relacon.backend_pyusb:PyUsbBackend',
    'hidapi': 'relacon.backend_hidapi:HidApiBackend',
}


class BackendError(Exception):
    """Raised by backend hooks; carries the Status to report."""

    def __init__(self, status: Status, message: str = ''):
        super().__init__(message or status.name)
        self.status = status


def to_single_byte(text: Optional[str]) -> Optional[str]:
    """Reduce a transport string to one byte per character ('?' for non-ASCII)."""
    if text is None:
        return None
    return text.encode('ascii', 'replace').decode('ascii')


# =========================================================================
# Listing
# =========================================================================

@dataclass(frozen=True)
class EntryHandle:
    """Opaque reference from a listing entry back to its native device."""
    listing: 'DeviceListing'
    index: int
    native: Any


class DeviceListing:
    """Ordered snapshot of supported devices, read through a forward-only cursor.

    The listing owns its entries and their handles.  Once destroyed, the
    handles can no longer be opened.
    """

    def __init__(self, backend: 'Backend', natives: Iterable[Any] = ()):
        self._backend = backend
        self._natives = list(natives)
        self._entries: List[DeviceInfo] = []
        self._cursor = 0
        self._destroyed = False

    @property
    def backend(self) -> 'Backend':
        return self._backend

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def __len__(self) -> int:
        return len(self._entries)

    def _append(self, info: DeviceInfo) -> None:
        self._entries.append(info)

    def next_entry(self) -> Optional[DeviceInfo]:
        """Next entry, or None once the cursor is exhausted."""
        if self._destroyed or self._cursor >= len(self._entries):
            return None
        entry = self._entries[self._cursor]
        self._cursor += 1
        return entry

    def __iter__(self):
        # Drains the same cursor; a second iteration yields nothing.
        while True:
            entry = self.next_entry()
            if entry is None:
                return
            yield entry

    def destroy(self) -> Status:
        """Release every entry and the native enumeration."""
        if self._destroyed:
            self._backend.log.error("Device listing already destroyed")
            return Status.INVALID_ARGUMENT
        self._destroyed = True
        self._entries.clear()
        natives, self._natives = self._natives, []
        self._backend._free_natives(natives)
        return Status.SUCCESS

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        if not self._destroyed:
            self.destroy()


class BackendDevice:
    """An open device; backends subclass this to keep their native handle."""

    def __init__(self, backend: 'Backend', native: Any):
        self.backend = backend
        self.native = native
        self.closed = False


# =========================================================================
# Backend ABC
# =========================================================================

class Backend(ABC):
    """Abstract transport.  Subclasses provide the native hooks."""

    name = 'abstract'

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or log
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> Status:
        """Acquire the underlying library context."""
        if self._initialized:
            return Status.SUCCESS
        try:
            self._acquire()
        except BackendError as e:
            self.log.error("Failed to initialize %s backend: %s", self.name, e)
            return e.status
        self._initialized = True
        return Status.SUCCESS

    def shutdown(self) -> Status:
        if not self._initialized:
            self.log.error("%s backend is not initialized", self.name)
            return Status.INTERNAL
        self._release()
        self._initialized = False
        return Status.SUCCESS

    # -- enumeration -------------------------------------------------------

    def create_listing(self) -> Result:
        """Enumerate supported, eligible devices.

        Unknown devices and platform-ineligible entries are dropped.  A
        candidate whose identity strings cannot be read is skipped and
        enumeration continues.  Running out of memory aborts the whole
        enumeration and releases everything built so far.
        """
        if not self._initialized:
            self.log.error("%s backend is not initialized", self.name)
            return Result(Status.INTERNAL)

        try:
            natives = list(self._enumerate_native())
        except BackendError as e:
            self.log.error("Device enumeration failed: %s", e)
            return Result(e.status)
        except MemoryError:
            self.log.error("Out of memory enumerating devices")
            return Result(Status.OUT_OF_MEMORY)

        listing = DeviceListing(self, natives)
        try:
            for native in natives:
                vid, pid = self._native_ids(native)
                caps = query_capabilities(vid, pid)
                if caps is None:
                    self.log.debug("Skipping unsupported device %04x:%04x", vid, pid)
                    continue
                if not self._is_eligible(native):
                    self.log.debug("Skipping ineligible entry for %04x:%04x", vid, pid)
                    continue
                try:
                    manufacturer, product, serial = self._fetch_strings(native)
                except BackendError as e:
                    self.log.warning(
                        "Failed to read strings from %04x:%04x, skipping: %s",
                        vid, pid, e)
                    continue
                handle = EntryHandle(listing, len(listing), native)
                listing._append(DeviceInfo(
                    vid=vid,
                    pid=pid,
                    serial_number=to_single_byte(serial),
                    manufacturer=to_single_byte(manufacturer),
                    product=to_single_byte(product),
                    num_relays=caps.num_relays,
                    num_inputs=caps.num_inputs,
                    handle=handle,
                ))
        except MemoryError:
            self.log.error("Out of memory building device listing")
            listing.destroy()
            return Result(Status.OUT_OF_MEMORY)
        return Result(Status.SUCCESS, listing)

    def destroy_listing(self, listing: DeviceListing) -> Status:
        if not isinstance(listing, DeviceListing) or listing.backend is not self:
            self.log.error("Listing does not belong to this backend")
            return Status.INVALID_ARGUMENT
        return listing.destroy()

    def listing_next(self, listing: DeviceListing) -> Optional[DeviceInfo]:
        return listing.next_entry()

    # -- devices -----------------------------------------------------------

    def open_device(self, handle: EntryHandle) -> Result:
        """Open the device behind a listing entry's handle."""
        if not isinstance(handle, EntryHandle) or handle.listing.backend is not self:
            self.log.error("Device handle does not belong to this backend")
            return Result(Status.INVALID_ARGUMENT)
        if handle.listing.destroyed:
            self.log.error("Device handle refers to a destroyed listing")
            return Result(Status.INVALID_ARGUMENT)
        try:
            device = self._open_native(handle)
        except BackendError as e:
            self.log.error("Failed to open device: %s", e)
            return Result(e.status)
        return Result(Status.SUCCESS, device)

    def _check_device(self, device) -> bool:
        if not isinstance(device, BackendDevice) or device.backend is not self:
            self.log.error("Device does not belong to this backend")
            return False
        if device.closed:
            self.log.error("Device is closed")
            return False
        return True

    @abstractmethod
    def close_device(self, device: BackendDevice) -> Status:
        ...

    @abstractmethod
    def write_report(self, device: BackendDevice, report: bytes) -> Status:
        """Send one 8-byte output report."""

    @abstractmethod
    def read_report(self, device: BackendDevice, buffer: bytearray,
                    timeout_ms: int) -> Status:
        """Receive one input report into ``buffer``.

        ``timeout_ms`` of -1 blocks indefinitely, 0 polls once.  A short
        report is zero padded to ``len(buffer)``.
        """

    # -- native hooks ------------------------------------------------------

    def _acquire(self) -> None:
        """Set up the library context.  Raise BackendError on failure."""

    def _release(self) -> None:
        """Tear down the library context."""

    @abstractmethod
    def _enumerate_native(self) -> Iterable[Any]:
        ...

    @abstractmethod
    def _native_ids(self, native: Any) -> Tuple[int, int]:
        ...

    def _is_eligible(self, native: Any) -> bool:
        return True

    @abstractmethod
    def _fetch_strings(self, native: Any) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """(manufacturer, product, serial number); None where absent."""

    @abstractmethod
    def _open_native(self, handle: EntryHandle) -> BackendDevice:
        ...

    def _free_natives(self, natives: List[Any]) -> None:
        """Release native enumeration results."""

    @staticmethod
    def _fill(buffer: bytearray, data) -> None:
        """Copy ``data`` into ``buffer``, zero padding (or truncating) to its length."""
        n = min(len(buffer), len(data))
        buffer[:n] = bytes(data[:n])
        buffer[n:] = bytes(len(buffer) - n)


# =========================================================================
# Backend selection
# =========================================================================

def default_backend_name() -> str:
    """hidapi on Windows, pyusb (libusb) everywhere else."""
    return 'hidapi' if sys.platform == 'win32' else 'pyusb'


def load_backend(name: Optional[str] = None,
                 logger: Optional[logging.Logger] = None,
                 **options) -> Result:
    """Import, construct and initialize a backend.

    Returns ``Result(SUCCESS, backend)``; INVALID_PARAM for an unknown
    name, INTERNAL if the transport library is missing or fails to start.
    """
    logger = logger or log
    name = name or default_backend_name()
    target = BACKENDS.get(name)
    if target is None:
        logger.error("Unknown backend %r (choose from: %s)",
                     name, ', '.join(sorted(BACKENDS)))
        return Result(Status.INVALID_PARAM)

    module_name, class_name = target.split(':')
    try:
        cls = getattr(importlib.import_module(module_name), class_name)
        backend = cls(logger=logger, **options)
    except ImportError as e:
        logger.error("%s backend unavailable: %s", name, e)
        return Result(Status.INTERNAL)
    except MemoryError:
        logger.error("Failed to allocate %s backend", name)
        return Result(Status.OUT_OF_MEMORY)

    status = backend.initialize()
    if status != Status.SUCCESS:
        return Result(status)
    return Result(Status.SUCCESS, backend)
