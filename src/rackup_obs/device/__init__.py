"""
Recording device module for RackUp OBS.

Supports pluggable devices:
- ObsDevice: OBS Studio over obs-websocket (default)
- SimulationDevice: writes placeholder files, no OBS needed

Usage:
    from rackup_obs.device import create_device
    device = create_device(config.obs.device, config)
"""

from rackup_obs.device.base import (
    ConnectionState,
    DeviceStatus,
    RecordingDevice,
    create_device,
    get_available_devices,
    register_device,
)

# Implementations register themselves on import
from rackup_obs.device.obs import ObsDevice
from rackup_obs.device.simulation import SimulationDevice

__all__ = [
    "ConnectionState",
    "DeviceStatus",
    "RecordingDevice",
    "register_device",
    "get_available_devices",
    "create_device",
    "ObsDevice",
    "SimulationDevice",
]
