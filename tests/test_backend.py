"""Tests for backend -- listing construction, cursor and handle lifetime.

Uses the in-memory FakeBackend from conftest.
"""

import sys
from unittest.mock import MagicMock, patch

from relacon.backend import (
    BACKENDS,
    EntryHandle,
    default_backend_name,
    load_backend,
    to_single_byte,
)
from relacon.capabilities import PID_ADU200, VID_ONTRAK
from relacon.models import Status


# =========================================================================
# Listing construction
# =========================================================================

class TestCreateListing:

    def test_single_device(self, backend, fake_device):
        status, listing = backend.create_listing()
        assert status == Status.SUCCESS
        entry = listing.next_entry()
        assert entry.vid == fake_device.vid
        assert entry.pid == fake_device.pid
        assert entry.manufacturer == 'pid.codes'
        assert entry.product == 'Relacon'
        assert entry.serial_number == 'R0001'
        assert (entry.num_relays, entry.num_inputs) == (8, 8)
        assert isinstance(entry.handle, EntryHandle)

    def test_unknown_devices_skipped(self, make_backend, make_device):
        backend = make_backend(make_device(vid=0x046D, pid=0xC52B), make_device())
        _, listing = backend.create_listing()
        assert [e.pid for e in listing] == [make_device().pid]

    def test_unsupported_table_entry_skipped(self, make_backend, make_device):
        backend = make_backend(make_device(vid=VID_ONTRAK, pid=PID_ADU200))
        _, listing = backend.create_listing()
        assert len(listing) == 0

    def test_ineligible_entries_skipped(self, make_backend, make_device):
        backend = make_backend(make_device(serial='A', eligible=False),
                               make_device(serial='B'))
        _, listing = backend.create_listing()
        assert [e.serial_number for e in listing] == ['B']

    def test_string_failure_skips_candidate(self, make_backend, make_device, caplog):
        backend = make_backend(make_device(serial='A', string_error=True),
                               make_device(serial='B'))
        status, listing = backend.create_listing()
        assert status == Status.SUCCESS
        assert [e.serial_number for e in listing] == ['B']
        assert "skipping" in caplog.text

    def test_missing_strings_are_none(self, make_backend, make_device):
        backend = make_backend(make_device(manufacturer=None, product=None, serial=None))
        _, listing = backend.create_listing()
        entry = listing.next_entry()
        assert entry.manufacturer is None
        assert entry.product is None
        assert entry.serial_number is None

    def test_out_of_memory_rolls_back(self, make_backend, make_device):
        good = make_device(serial='A')
        backend = make_backend(good, make_device(serial='B', string_oom=True))
        status, listing = backend.create_listing()
        assert status == Status.OUT_OF_MEMORY
        assert listing is None
        assert backend.freed == [good, backend.devices[1]]

    def test_empty_bus(self, make_backend):
        status, listing = make_backend().create_listing()
        assert status == Status.SUCCESS
        assert listing.next_entry() is None

    def test_requires_initialize(self, backend):
        backend.shutdown()
        assert backend.create_listing().status == Status.INTERNAL

    def test_non_ascii_strings_reduced(self, make_backend, make_device):
        backend = make_backend(make_device(manufacturer='Größe'))
        _, listing = backend.create_listing()
        assert listing.next_entry().manufacturer == 'Gr??e'


# =========================================================================
# Cursor and lifetime
# =========================================================================

class TestDeviceListing:

    def test_forward_only(self, make_backend, make_device):
        backend = make_backend(make_device(serial='A'), make_device(serial='B'))
        _, listing = backend.create_listing()
        assert listing.next_entry().serial_number == 'A'
        assert listing.next_entry().serial_number == 'B'
        assert listing.next_entry() is None
        assert listing.next_entry() is None

    def test_iteration_shares_cursor(self, make_backend, make_device):
        backend = make_backend(make_device(serial='A'), make_device(serial='B'))
        _, listing = backend.create_listing()
        listing.next_entry()
        assert [e.serial_number for e in listing] == ['B']
        assert list(listing) == []

    def test_listing_next_via_backend(self, backend):
        _, listing = backend.create_listing()
        assert backend.listing_next(listing) is not None
        assert backend.listing_next(listing) is None

    def test_destroy_releases_natives(self, backend, fake_device):
        _, listing = backend.create_listing()
        assert listing.destroy() == Status.SUCCESS
        assert listing.destroyed
        assert backend.freed == [fake_device]
        assert listing.next_entry() is None

    def test_double_destroy(self, backend):
        _, listing = backend.create_listing()
        listing.destroy()
        assert listing.destroy() == Status.INVALID_ARGUMENT

    def test_destroy_listing_wrong_backend(self, backend, make_backend):
        _, listing = backend.create_listing()
        other = make_backend()
        assert other.destroy_listing(listing) == Status.INVALID_ARGUMENT
        assert backend.destroy_listing(listing) == Status.SUCCESS

    def test_context_manager(self, backend):
        _, listing = backend.create_listing()
        with listing as entries:
            assert entries.next_entry() is not None
        assert listing.destroyed

    def test_entries_survive_snapshot(self, backend):
        _, listing = backend.create_listing()
        copy = listing.next_entry().snapshot()
        listing.destroy()
        assert copy.product == 'Relacon'
        assert copy.handle is None


# =========================================================================
# open_device
# =========================================================================

class TestOpenDevice:

    def test_open_and_close(self, backend, fake_device):
        _, listing = backend.create_listing()
        status, device = backend.open_device(listing.next_entry().handle)
        assert status == Status.SUCCESS
        assert fake_device.open_count == 1
        assert backend.close_device(device) == Status.SUCCESS
        assert fake_device.open_count == 0

    def test_close_twice(self, backend):
        _, listing = backend.create_listing()
        _, device = backend.open_device(listing.next_entry().handle)
        backend.close_device(device)
        assert backend.close_device(device) == Status.INVALID_ARGUMENT

    def test_handle_from_destroyed_listing(self, backend, fake_device):
        _, listing = backend.create_listing()
        handle = listing.next_entry().handle
        listing.destroy()
        assert backend.open_device(handle).status == Status.INVALID_ARGUMENT
        assert fake_device.open_count == 0

    def test_handle_from_other_backend(self, backend, make_backend, make_device):
        _, listing = backend.create_listing()
        other = make_backend(make_device())
        assert other.open_device(listing.next_entry().handle).status == \
            Status.INVALID_ARGUMENT

    def test_not_a_handle(self, backend):
        assert backend.open_device(object()).status == Status.INVALID_ARGUMENT

    def test_open_failure(self, make_backend, make_device):
        backend = make_backend(make_device(open_error=True))
        _, listing = backend.create_listing()
        assert backend.open_device(listing.next_entry().handle).status == Status.INTERNAL


# =========================================================================
# Lifecycle
# =========================================================================

class TestBackendLifecycle:

    def test_shutdown(self, backend):
        assert backend.shutdown() == Status.SUCCESS
        assert not backend.initialized

    def test_shutdown_twice(self, backend):
        backend.shutdown()
        assert backend.shutdown() == Status.INTERNAL


class TestToSingleByte:

    def test_ascii_unchanged(self):
        assert to_single_byte('ADU218') == 'ADU218'

    def test_none(self):
        assert to_single_byte(None) is None

    def test_replacement(self):
        assert to_single_byte('µA') == '?A'


# =========================================================================
# Backend selection
# =========================================================================

class TestLoadBackend:

    def test_default_name_windows(self):
        with patch.object(sys, 'platform', 'win32'):
            assert default_backend_name() == 'hidapi'

    def test_default_name_linux(self):
        with patch.object(sys, 'platform', 'linux'):
            assert default_backend_name() == 'pyusb'

    def test_registry(self):
        assert set(BACKENDS) == {'pyusb', 'hidapi'}

    def test_unknown_name(self):
        assert load_backend('serial').status == Status.INVALID_PARAM

    @patch('relacon.backend.importlib.import_module')
    def test_import_error(self, mock_import):
        mock_import.side_effect = ImportError("No module named 'hid'")
        assert load_backend('hidapi').status == Status.INTERNAL

    @patch('relacon.backend.importlib.import_module')
    def test_constructs_and_initializes(self, mock_import):
        cls = mock_import.return_value.PyUsbBackend
        cls.return_value.initialize.return_value = Status.SUCCESS
        status, backend = load_backend('pyusb', filter_collection_usage=None)
        assert status == Status.SUCCESS
        assert backend is cls.return_value
        mock_import.assert_called_once_with('relacon.backend_pyusb')
        cls.assert_called_once()

    @patch('relacon.backend.importlib.import_module')
    def test_initialize_failure(self, mock_import):
        backend = MagicMock()
        backend.initialize.return_value = Status.INTERNAL
        mock_import.return_value.PyUsbBackend.return_value = backend
        assert load_backend('pyusb').status == Status.INTERNAL

