"""
Static table of supported relay controllers.

Only devices listed here (and marked supported) are ever surfaced by
enumeration; everything else on the bus is ignored.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

VID_ONTRAK = 0x0A07
VID_PIDCODES = 0x1209

PID_ADU200 = 200
PID_ADU208 = 208
PID_ADU218 = 218
PID_RELACON = 0xFA70


@dataclass(frozen=True)
class DeviceCapabilities:
    """Relay and digital input counts for one device model."""
    num_relays: int
    num_inputs: int


@dataclass(frozen=True)
class DeviceTableEntry:
    name: str
    capabilities: DeviceCapabilities
    supported: bool = True


SUPPORTED_DEVICES: Dict[Tuple[int, int], DeviceTableEntry] = {
    (VID_ONTRAK, PID_ADU208): DeviceTableEntry('ADU208', DeviceCapabilities(8, 8)),
    (VID_ONTRAK, PID_ADU218): DeviceTableEntry('ADU218', DeviceCapabilities(8, 8)),
    (VID_PIDCODES, PID_RELACON): DeviceTableEntry('Relacon', DeviceCapabilities(8, 8)),
    # Uses a different port layout, not handled by the session core yet
    (VID_ONTRAK, PID_ADU200): DeviceTableEntry(
        'ADU200', DeviceCapabilities(4, 4), supported=False),
}


def query_capabilities(vid: int, pid: int) -> Optional[DeviceCapabilities]:
    """Capabilities for (vid, pid), or None if the device is not supported."""
    entry = SUPPORTED_DEVICES.get((vid, pid))
    if entry is None or not entry.supported:
        return None
    return entry.capabilities
