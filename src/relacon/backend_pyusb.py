"""
libusb transport via pyusb.

Talks to the relay controller's HID interface directly:

  interface 0, interrupt OUT 0x01 (output reports),
               interrupt IN  0x81 (input reports)

The kernel HID driver is detached while the device is open and
re-attached on close.  Strings are read with an explicit 128-byte
descriptor request in the device's first language.

Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
"""

import logging
from typing import Any, Iterable, List, Optional, Tuple

import usb.backend.libusb1
import usb.control
import usb.core
import usb.util

from .backend import Backend, BackendDevice, BackendError, EntryHandle
from .models import Status

log = logging.getLogger(__name__)

USB_INTERFACE = 0
EP_HID_IN = 0x81
EP_HID_OUT = 0x01
STRING_DESCRIPTOR_BUF_LEN = 128


def libusb_timeout(timeout_ms: int) -> int:
    """Map a report timeout onto libusb's convention (0 = wait forever)."""
    if timeout_ms < 0:
        return 0
    if timeout_ms == 0:
        # libusb cannot poll; 1ms is the shortest wait it accepts
        return 1
    return timeout_ms


class PyUsbDevice(BackendDevice):
    """Open libusb handle plus the kernel driver state to restore."""

    def __init__(self, backend: 'PyUsbBackend', native: Any):
        super().__init__(backend, native)
        self.detached_kernel_driver = False


class PyUsbBackend(Backend):
    """Real USB transport using pyusb (libusb1 backend)."""

    name = 'pyusb'

    def __init__(self, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self._usb_backend = None
        # id() of natives claimed by open devices; listing teardown leaves them alone
        self._claimed = set()

    def _acquire(self) -> None:
        self._usb_backend = usb.backend.libusb1.get_backend()
        if self._usb_backend is None:
            raise BackendError(Status.INTERNAL, "libusb1 library not found")

    def _release(self) -> None:
        self._usb_backend = None

    # -- enumeration -------------------------------------------------------

    def _enumerate_native(self) -> Iterable[Any]:
        try:
            return list(usb.core.find(find_all=True, backend=self._usb_backend))
        except usb.core.USBError as e:
            raise BackendError(Status.INTERNAL, str(e)) from e

    def _native_ids(self, native: Any) -> Tuple[int, int]:
        return native.idVendor, native.idProduct

    def _fetch_strings(self, native: Any) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        vid, pid = native.idVendor, native.idProduct
        indices = (native.iManufacturer, native.iProduct, native.iSerialNumber)
        try:
            langid = None
            strings = []
            for index in indices:
                # Index 0: the device has no such string
                if not index:
                    strings.append(None)
                    continue
                if langid is None:
                    langid = self._first_langid(native)
                strings.append(self._read_string(native, index, langid))
        except (usb.core.USBError, ValueError) as e:
            raise BackendError(
                Status.INTERNAL,
                f"string descriptor fetch failed ({vid:04x}:{pid:04x}): {e}") from e
        finally:
            usb.util.dispose_resources(native)
        return strings[0], strings[1], strings[2]

    @staticmethod
    def _first_langid(native: Any) -> int:
        langids = usb.util.get_langids(native)
        if not langids:
            raise ValueError("device reports no string languages")
        return langids[0]

    @staticmethod
    def _read_string(native: Any, index: int, langid: int) -> str:
        buf = usb.control.get_descriptor(
            native, STRING_DESCRIPTOR_BUF_LEN, usb.util.DESC_TYPE_STRING, index, langid)
        if len(buf) < 2 or buf[1] != usb.util.DESC_TYPE_STRING:
            raise ValueError(f"malformed string descriptor {index}")
        length = min(buf[0], len(buf))
        return bytes(buf[2:length]).decode('utf-16-le', 'replace')

    def _free_natives(self, natives: List[Any]) -> None:
        for native in natives:
            if id(native) not in self._claimed:
                usb.util.dispose_resources(native)

    # -- devices -----------------------------------------------------------

    def _open_native(self, handle: EntryHandle) -> PyUsbDevice:
        native = handle.native
        device = PyUsbDevice(self, native)
        try:
            try:
                if native.is_kernel_driver_active(USB_INTERFACE):
                    native.detach_kernel_driver(USB_INTERFACE)
                    device.detached_kernel_driver = True
                    self.log.debug("Detached kernel driver from interface %d", USB_INTERFACE)
            except NotImplementedError as e:
                self.log.debug("Kernel driver detach: %s", e)

            try:
                native.get_active_configuration()
            except usb.core.USBError:
                native.set_configuration()
            usb.util.claim_interface(native, USB_INTERFACE)
        except usb.core.USBError as e:
            self._teardown(device)
            raise BackendError(Status.INTERNAL, f"failed to claim interface: {e}") from e
        self._claimed.add(id(native))
        return device

    def _teardown(self, device: PyUsbDevice) -> None:
        native = device.native
        try:
            usb.util.release_interface(native, USB_INTERFACE)
        finally:
            try:
                if device.detached_kernel_driver:
                    native.attach_kernel_driver(USB_INTERFACE)
            finally:
                usb.util.dispose_resources(native)

    def close_device(self, device: BackendDevice) -> Status:
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        device.closed = True
        self._claimed.discard(id(device.native))
        try:
            self._teardown(device)
        except usb.core.USBError as e:
            self.log.error("Failed to release device: %s", e)
            return Status.INTERNAL
        return Status.SUCCESS

    def write_report(self, device: BackendDevice, report: bytes) -> Status:
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        try:
            written = device.native.write(EP_HID_OUT, report, timeout=0)
        except usb.core.USBError as e:
            self.log.error("Interrupt OUT transfer failed (%s)", e)
            return Status.DEVICE_IO
        if written != len(report):
            self.log.error("Short interrupt OUT transfer: %d of %d bytes",
                           written, len(report))
            return Status.DEVICE_IO
        return Status.SUCCESS

    def read_report(self, device: BackendDevice, buffer: bytearray,
                    timeout_ms: int) -> Status:
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        try:
            data = device.native.read(EP_HID_IN, len(buffer),
                                      timeout=libusb_timeout(timeout_ms))
        except usb.core.USBTimeoutError:
            return Status.TIMEOUT
        except usb.core.USBError as e:
            self.log.error("Interrupt IN transfer failed (%s)", e)
            return Status.DEVICE_IO
        self._fill(buffer, data)
        return Status.SUCCESS
