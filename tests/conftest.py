"""In-memory backend and simulated relay firmware shared by the tests.

No real USB hardware required: ``FakeBackend`` implements the backend
hooks over a list of ``FakeUsbDevice`` objects, each running a small
simulation of the controller's command set.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from relacon.backend import Backend, BackendDevice, BackendError
from relacon.capabilities import PID_ADU218, PID_RELACON, VID_ONTRAK, VID_PIDCODES
from relacon.device import RelaconApi
from relacon.models import Status
from relacon.protocol import REPORT_BUF_LEN, REPORT_ID_CMD, response_payload


# =========================================================================
# Simulated firmware
# =========================================================================

class RelayFirmware:
    """Answers protocol commands the way the controller does."""

    def __init__(self, num_relays: int = 8, num_inputs: int = 8):
        self.relays = 0
        self.inputs = 0
        self.counters = [0] * num_inputs
        self.debounce = 0
        self.watchdog = 0
        self.commands: List[str] = []

    def handle(self, text: str) -> Optional[str]:
        self.commands.append(text)
        if text == 'PI':
            return str(self.inputs)
        if text == 'PK':
            return str(self.relays)
        if text == 'DB':
            return str(self.debounce)
        if text == 'WD':
            return str(self.watchdog)
        if text.startswith('RPK'):
            return str((self.relays >> int(text[3:])) & 1)
        if text.startswith('SK'):
            self.relays |= 1 << int(text[2:])
        elif text.startswith('RK'):
            self.relays &= ~(1 << int(text[2:]))
        elif text.startswith('MK'):
            self.relays = int(text[2:])
        elif text.startswith('RE'):
            return str(self.counters[int(text[2:])])
        elif text.startswith('RC'):
            index = int(text[2:])
            count, self.counters[index] = self.counters[index], 0
            return str(count)
        elif text.startswith('DB'):
            self.debounce = int(text[2:])
        elif text.startswith('WD'):
            self.watchdog = int(text[2:])
        return None


def make_report(text, report_id: int = REPORT_ID_CMD) -> bytes:
    data = text.encode('ascii') if isinstance(text, str) else text
    return bytes([report_id]) + data.ljust(REPORT_BUF_LEN - 1, b'\x00')


# =========================================================================
# Fake backend
# =========================================================================

@dataclass
class FakeUsbDevice:
    vid: int = VID_PIDCODES
    pid: int = PID_RELACON
    manufacturer: Optional[str] = 'pid.codes'
    product: Optional[str] = 'Relacon'
    serial: Optional[str] = 'R0001'
    eligible: bool = True
    string_error: bool = False
    string_oom: bool = False
    open_error: bool = False
    firmware: RelayFirmware = field(default_factory=RelayFirmware)
    # Raw reports returned before any firmware response
    injected: deque = field(default_factory=deque)
    pending: deque = field(default_factory=deque)
    written: List[bytes] = field(default_factory=list)
    open_count: int = 0
    write_error: bool = False
    read_error: bool = False

    def inject(self, text, report_id: int = REPORT_ID_CMD):
        """Queue a raw report that the next read returns instead of the firmware reply."""
        self.injected.append(make_report(text, report_id))


class FakeBackend(Backend):
    name = 'fake'

    def __init__(self, devices=(), logger=None):
        super().__init__(logger)
        self.devices = list(devices)
        self.freed: List[FakeUsbDevice] = []
        self.read_timeouts: List[int] = []

    def _enumerate_native(self):
        return self.devices

    def _native_ids(self, native):
        return native.vid, native.pid

    def _is_eligible(self, native):
        return native.eligible

    def _fetch_strings(self, native):
        if native.string_oom:
            raise MemoryError
        if native.string_error:
            raise BackendError(Status.INTERNAL, "device busy")
        return native.manufacturer, native.product, native.serial

    def _free_natives(self, natives):
        self.freed.extend(natives)

    def _open_native(self, handle):
        native = handle.native
        if native.open_error:
            raise BackendError(Status.INTERNAL, "claim failed")
        native.open_count += 1
        return BackendDevice(self, native)

    def close_device(self, device):
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        device.closed = True
        device.native.open_count -= 1
        return Status.SUCCESS

    def write_report(self, device, report):
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        native = device.native
        if native.write_error:
            return Status.DEVICE_IO
        native.written.append(bytes(report))
        reply = native.firmware.handle(response_payload(report).decode('ascii'))
        if reply is not None:
            native.pending.append(make_report(reply))
        return Status.SUCCESS

    def read_report(self, device, buffer, timeout_ms):
        if not self._check_device(device):
            return Status.INVALID_ARGUMENT
        native = device.native
        self.read_timeouts.append(timeout_ms)
        if native.read_error:
            return Status.DEVICE_IO
        if native.injected:
            native.pending.clear()
            self._fill(buffer, native.injected.popleft())
            return Status.SUCCESS
        if not native.pending:
            return Status.TIMEOUT
        self._fill(buffer, native.pending.popleft())
        return Status.SUCCESS


# =========================================================================
# Fixtures
# =========================================================================

@pytest.fixture
def fake_device():
    return FakeUsbDevice()


@pytest.fixture
def make_device():
    """Factory for FakeUsbDevice with overrides."""
    return FakeUsbDevice


@pytest.fixture
def make_backend():
    def factory(*devices):
        backend = FakeBackend(devices)
        assert backend.initialize() == Status.SUCCESS
        return backend
    return factory


@pytest.fixture
def backend(make_backend, fake_device):
    return make_backend(fake_device)


@pytest.fixture
def api(backend):
    return RelaconApi(backend)


@pytest.fixture
def session(api):
    s = api.open()
    assert s is not None
    yield s
    if not s.closed:
        s.close()


@pytest.fixture
def adu218():
    return FakeUsbDevice(vid=VID_ONTRAK, pid=PID_ADU218, manufacturer='Ontrak',
                         product='ADU218 USB Relay I/O Interface', serial='B02468')
