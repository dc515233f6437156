"""
Simulation recording device for testing.

Provides a virtual device that works without OBS.
Useful for development and testing on machines without a capture setup.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rackup_obs.device.base import (
    ConnectionState,
    DeviceStatus,
    RecordingDevice,
    register_device,
)
from rackup_obs.errors import DeviceConnectionError, NotRecordingError

logger = logging.getLogger(__name__)

# Placeholder still framed by JPEG SOI/EOI markers
PLACEHOLDER_JPEG = bytes.fromhex(
    "ffd8ffe000104a46494600010100000100010000ffdb004300080606070605080707"
    "070909080a0c140d0c0b0b0c1912130f141d1a1f1e1d1a1c1c20242e2720222c231c"
    "1c2837292c30313434341f27393d38323c2e333432ffc0000b080001000101011100"
    "ffc4001f0000010501010101010100000000000000000102030405060708090a0bff"
    "da0008010100003f007fffd9"
)


@register_device("simulation")
class SimulationDevice(RecordingDevice):
    """
    Virtual recording device.

    Writes a placeholder file at the requested target so the rest of the
    pipeline (listing, renames, streaming) has something real to work on.
    """

    def __init__(self, config):
        """Initialize simulation device."""
        super().__init__(config)
        self._lock = threading.Lock()
        self._current: Optional[Path] = None
        self._started_at: Optional[datetime] = None
        self.overlay_text = ""
        self.started: List[str] = []
        self.reachable = True

    def connect(self) -> None:
        if not self.reachable:
            raise DeviceConnectionError("Simulated device unreachable")
        if self.state is not ConnectionState.CONNECTED:
            self.state = ConnectionState.CONNECTED
            logger.info("[SIMULATION] Device connected")

    def disconnect(self) -> None:
        self.state = ConnectionState.DISCONNECTED

    def _ensure_connected(self) -> None:
        if self.state is not ConnectionState.CONNECTED:
            raise DeviceConnectionError("Simulated device is not connected")

    def get_status(self) -> DeviceStatus:
        self._ensure_connected()
        with self._lock:
            duration = 0
            if self._started_at:
                duration = int((datetime.now() - self._started_at).total_seconds() * 1000)
            return DeviceStatus(
                connected=True,
                recording=self._current is not None,
                recording_duration_ms=duration,
            )

    def start_recording(self, directory: str, filename: str) -> str:
        self._ensure_connected()
        with self._lock:
            file_path = Path(directory) / filename
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(f"SIMULATION: {filename}\n".encode())
            self._current = file_path
            self._started_at = datetime.now()
            self.started.append(str(file_path))

        logger.info(f"[SIMULATION] Recording started: {file_path}")
        return str(file_path)

    def stop_recording(self) -> str:
        self._ensure_connected()
        with self._lock:
            if self._current is None:
                raise NotRecordingError("Simulated device is not recording")
            file_path, self._current = self._current, None
            self._started_at = None

        logger.info(f"[SIMULATION] Recording stopped: {file_path}")
        return str(file_path)

    def set_overlay_text(self, text: str) -> None:
        self._ensure_connected()
        self.overlay_text = text

    def get_screenshot(self) -> bytes:
        self._ensure_connected()
        return PLACEHOLDER_JPEG
