"""
relacon - driver for USB-HID relay controllers

Supports the OnTrak ADU208/ADU218 and the open-source Relacon board
(8 relays, 8 digital inputs with event counters, debounce and watchdog
settings).

Usage:
    # As a library
    from relacon import initialize
    api = initialize()
    with api.open() as session:
        session.write_relays(0x0F)

    # Command line
    relacon -l              List devices
    relacon 0x0f            Write the relay port
    relacon -g              Read digital inputs
"""

from relacon.__version__ import __version__
from relacon.backend import Backend, DeviceListing, load_backend
from relacon.capabilities import DeviceCapabilities, query_capabilities
from relacon.device import RelaconApi, Session, initialize
from relacon.models import (
    DebounceConfig,
    DeviceInfo,
    Result,
    Status,
    WatchdogConfig,
)

__all__ = [
    '__version__',
    'Backend',
    'DebounceConfig',
    'DeviceCapabilities',
    'DeviceInfo',
    'DeviceListing',
    'RelaconApi',
    'Result',
    'Session',
    'Status',
    'WatchdogConfig',
    'initialize',
    'load_backend',
    'query_capabilities',
]
