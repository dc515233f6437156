"""
Abstract base class for recording devices.

A device owns the single logical connection to whatever actually writes
the video (OBS in production, a simulation in development). Implementations
register themselves by name so the application can pick one from config.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Union
import logging

from rackup_obs.errors import DeviceConnectionError
from rackup_obs.recording import filename as codec
from rackup_obs.recording.filename import RecordingIdentity

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class DeviceStatus:
    """Snapshot of the device's recording output."""
    connected: bool = False
    recording: bool = False
    recording_duration_ms: int = 0

    def to_dict(self) -> Dict[str, Union[bool, int]]:
        return {
            "connected": self.connected,
            "recording": self.recording,
            "recordingDuration": self.recording_duration_ms,
        }


class RecordingDevice(ABC):
    """
    Base class for recording devices.

    The device does not guard against a double start; the orchestrator
    checks status and serializes control calls before reaching it.
    """

    def __init__(self, config):
        """
        Initialize the device.

        Args:
            config: Configuration object
        """
        self.config = config
        self.state = ConnectionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @abstractmethod
    def connect(self) -> None:
        """
        Establish the device session. Idempotent.

        Raises:
            DeviceConnectionError: if the device cannot be reached
        """
        pass

    def connect_in_background(self) -> None:
        """Connect without failing the caller; implementations may keep retrying."""
        try:
            self.connect()
        except DeviceConnectionError as e:
            logger.warning(f"Device connection failed: {e}")

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session and stop any reconnection attempts."""
        pass

    @abstractmethod
    def get_status(self) -> DeviceStatus:
        """
        Query whether the device is recording.

        Raises:
            DeviceConnectionError: when not connected
        """
        pass

    @abstractmethod
    def start_recording(self, directory: str, filename: str) -> str:
        """
        Start writing to ``directory/filename``.

        Returns:
            Path of the file actually being written
        """
        pass

    @abstractmethod
    def stop_recording(self) -> str:
        """
        Stop writing.

        Returns:
            Absolute path of the file the device wrote

        Raises:
            NotRecordingError: nothing was recording
        """
        pass

    @abstractmethod
    def set_overlay_text(self, text: str) -> None:
        """Push a line of text onto the device-side overlay source."""
        pass

    @abstractmethod
    def get_screenshot(self) -> bytes:
        """Grab a still of the current output as encoded image bytes."""
        pass

    # =========================================================================
    # Path helpers (no device I/O)
    # =========================================================================

    def generate_directory(self, session_date: Optional[str] = None) -> str:
        """
        Directory for a session: ``<base>/<YYYY>/<MM>``.

        Args:
            session_date: ISO date or datetime string; today when omitted
        """
        when = _parse_session_date(session_date) if session_date else datetime.now()
        base = Path(self.config.recording.base_dir).expanduser()
        return str(base / f"{when.year:04d}" / f"{when.month:02d}")

    def generate_filename(self, player1: str, player2: str, frame_number: int) -> str:
        return self.generate_segment_filename(player1, player2, frame_number, 1)

    def generate_segment_filename(
        self,
        player1: str,
        player2: str,
        frame_number: int,
        segment: int,
    ) -> str:
        now = datetime.now()
        identity = RecordingIdentity(
            date=now.date(),
            time=now.time(),
            player1=codec.sanitize_player_name(player1),
            player2=codec.sanitize_player_name(player2),
            frame_number=frame_number,
            segment=segment,
            extension=self.config.recording.container,
        )
        return codec.encode(identity)


def _parse_session_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unrecognised session date {value!r}, using today")
        return datetime.now()


# =============================================================================
# Device Registry
# =============================================================================

_device_registry: Dict[str, type] = {}


def register_device(device_type: str):
    """
    Decorator to register a device implementation.

    Usage:
        @register_device("obs")
        class ObsDevice(RecordingDevice):
            ...
    """
    def decorator(cls):
        _device_registry[device_type] = cls
        logger.debug(f"Registered device type: {device_type}")
        return cls
    return decorator


def get_available_devices() -> list:
    """Get list of registered device types."""
    return list(_device_registry.keys())


def create_device(device_type: str, config) -> RecordingDevice:
    """
    Create a device of the specified type.

    Raises:
        ValueError: unknown device type
    """
    if device_type not in _device_registry:
        raise ValueError(
            f"Unknown device type: {device_type}. "
            f"Available: {list(_device_registry.keys())}"
        )
    return _device_registry[device_type](config)
