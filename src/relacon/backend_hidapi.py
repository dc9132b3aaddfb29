"""
HID transport via hidapi (cython-hidapi).

Goes through the operating system's HID driver, so no kernel driver
detach is needed.  Two platform quirks are handled here:

  • Windows enumerates one entry per top-level report collection.  Only
    the command/response collection (usage 0x01) can be used, so the
    others are filtered out.
  • hidapi's enumeration requests string descriptors with a length
    field above 255, which the ADU218 firmware truncates to its low
    byte and answers with an empty string.  The strings are therefore
    re-read from a briefly opened device.

Requires: ``pip install hidapi`` + ``apt install libhidapi-dev``
"""

import logging
import sys
from typing import Any, Iterable, Optional, Tuple

from .backend import Backend, BackendDevice, BackendError, EntryHandle
from .models import Status

# hidapi is optional ([hid] extra)
try:
    import hid as hidapi
    HIDAPI_AVAILABLE = True
except ImportError:
    HIDAPI_AVAILABLE = False

log = logging.getLogger(__name__)

COMMAND_COLLECTION_USAGE = 0x01


class HidApiBackend(Backend):
    """Transport using the hidapi library."""

    name = 'hidapi'

    def __init__(self, logger: Optional[logging.Logger] = None,
                 filter_collection_usage: Optional[bool] = None):
        if not HIDAPI_AVAILABLE:
            raise ImportError(
                "hidapi is not installed. Install with: pip install relacon[hid]\n"
                "Also need libhidapi: apt install libhidapi-dev (Debian/Ubuntu) "
                "or dnf install hidapi-devel (Fedora)"
            )
        super().__init__(logger)
        if filter_collection_usage is None:
            filter_collection_usage = sys.platform == 'win32'
        self.filter_collection_usage = filter_collection_usage

    # -- enumeration -------------------------------------------------------

    def _enumerate_native(self) -> Iterable[Any]:
        try:
            return hidapi.enumerate(0, 0)
        except OSError as e:
            raise BackendError(Status.INTERNAL, str(e)) from e

    def _native_ids(self, native: Any) -> Tuple[int, int]:
        return native['vendor_id'], native['product_id']

    def _is_eligible(self, native: Any) -> bool:
        if not self.filter_collection_usage:
            return True
        return native.get('usage') == COMMAND_COLLECTION_USAGE

    def _fetch_strings(self, native: Any) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        dev = hidapi.device()
        try:
            dev.open_path(native['path'])
        except OSError as e:
            raise BackendError(
                Status.INTERNAL,
                f"cannot open {native['path']!r} to query strings: {e}") from e
        try:
            return (
                self._get_string(dev.get_manufacturer_string),
                self._get_string(dev.get_product_string),
                self._get_string(dev.get_serial_number_string),
            )
        finally:
            dev.close()

    @staticmethod
    def _get_string(getter) -> Optional[str]:
        # A failing getter means the device has no such string
        try:
            return getter() or None
        except OSError:
            return None

    # -- devices -----------------------------------------------------------

    def _open_native(self, handle: EntryHandle) -> BackendDevice:
        path = handle.native['path']
        dev = hidapi.device()
        try:
            dev.open_path(path)
            dev.set_nonblocking(0)
        except OSError as e:
            dev.close()
            raise BackendError(Status.INTERNAL, f"hid_open_path({path!r}) failed: {e}") from e
        return BackendDevice(self, dev)

    def close_device(self, device: BackendDevice) -> Status:
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        device.closed = True
        device.native.close()
        return Status.SUCCESS

    def write_report(self, device: BackendDevice, report: bytes) -> Status:
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        try:
            written = device.native.write(report)
        except (OSError, ValueError) as e:
            self.log.error("hid_write failed: %s", e)
            return Status.DEVICE_IO
        if written < 0:
            self.log.error("hid_write failed: %s", device.native.error())
            return Status.DEVICE_IO
        return Status.SUCCESS

    def read_report(self, device: BackendDevice, buffer: bytearray,
                    timeout_ms: int) -> Status:
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        dev = device.native
        try:
            if timeout_ms < 0:
                data = dev.read(len(buffer))
            elif timeout_ms == 0:
                dev.set_nonblocking(1)
                try:
                    data = dev.read(len(buffer))
                finally:
                    dev.set_nonblocking(0)
            else:
                data = dev.read(len(buffer), timeout_ms)
        except (OSError, ValueError) as e:
            self.log.error("hid_read failed: %s", e)
            return Status.DEVICE_IO
        if not data:
            return Status.TIMEOUT
        self._fill(buffer, data)
        return Status.SUCCESS
