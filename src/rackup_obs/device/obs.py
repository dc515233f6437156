"""
OBS Studio recording device.

Talks to OBS over obs-websocket v5 using obsws-python's request client.
Keeps one session open, reconnects in the background with exponential
backoff whenever the session drops, and serializes requests because the
underlying websocket is not safe for concurrent use.
"""

import base64
import logging
import threading
from typing import Any, Callable, Optional

import obsws_python as obs
from obsws_python.error import OBSSDKError, OBSSDKRequestError, OBSSDKTimeoutError
from websocket import WebSocketException

from rackup_obs.device.base import (
    ConnectionState,
    DeviceStatus,
    RecordingDevice,
    register_device,
)
from rackup_obs.errors import DeviceConnectionError, NotRecordingError

logger = logging.getLogger(__name__)

# obs-websocket RequestStatus.OutputNotActive
OUTPUT_NOT_ACTIVE = 501

# Profile RecFormat2 values whose file extension differs from the value
RECORDING_FORMAT_EXTENSIONS = {
    "fragmented_mp4": "mp4",
    "hybrid_mp4": "mp4",
    "fragmented_mov": "mov",
    "hybrid_mov": "mov",
    "mpegts": "ts",
}

TRANSPORT_ERRORS = (OSError, WebSocketException, OBSSDKTimeoutError)


@register_device("obs")
class ObsDevice(RecordingDevice):
    """
    OBS Studio controlled through obs-websocket.

    Provides:
    - Record start/stop with per-recording output path
    - Text overlay updates
    - Program-scene screenshots
    - Best-effort setup of the virtual camera and scorebug browser source
    """

    def __init__(self, config, client_factory: Optional[Callable[..., Any]] = None):
        """
        Initialize the OBS device. Does not connect.

        Args:
            config: Configuration object with obs settings
            client_factory: Builds the request client; defaults to obsws_python.ReqClient
        """
        super().__init__(config)
        self._client_factory = client_factory or obs.ReqClient
        self._client = None
        self._recording = False

        self._io_lock = threading.RLock()
        self._reconnect_thread: Optional[threading.Thread] = None
        self._reconnect_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._should_reconnect = True

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(self) -> None:
        """Open the websocket session. No-op when already connected."""
        obs_config = self.config.obs

        with self._io_lock:
            if self.state is ConnectionState.CONNECTED:
                return

            self.state = ConnectionState.CONNECTING
            url = f"ws://{obs_config.host}:{obs_config.port}"
            try:
                self._client = self._client_factory(
                    host=obs_config.host,
                    port=obs_config.port,
                    password=obs_config.password or None,
                    timeout=obs_config.timeout_sec,
                )
            except (OBSSDKError, OSError, WebSocketException) as e:
                self._client = None
                self.state = ConnectionState.DISCONNECTED
                raise DeviceConnectionError(f"Cannot connect to OBS at {url}: {e}")

            self.state = ConnectionState.CONNECTED
            self._should_reconnect = True
            self._stop_event.clear()
            logger.info(f"[OBS] Connected to {url}")

            # Sync recording state on connect
            try:
                self._recording = bool(self._client.get_record_status().output_active)
            except OBSSDKError as e:
                logger.debug(f"[OBS] GetRecordStatus failed on connect: {e}")

        if obs_config.auto_setup:
            self._auto_setup()

    def connect_in_background(self) -> None:
        """Try to connect now; on failure keep retrying from a daemon thread."""
        try:
            self.connect()
        except DeviceConnectionError as e:
            logger.warning(f"[OBS] Initial connection failed: {e}")
            logger.warning("[OBS] Will keep retrying in the background...")
            self._schedule_reconnect()

    def disconnect(self) -> None:
        """Close the session and stop reconnecting."""
        self._should_reconnect = False
        self._stop_event.set()

        with self._io_lock:
            client, self._client = self._client, None
            was_connected = self.state is ConnectionState.CONNECTED
            self.state = ConnectionState.DISCONNECTED
            self._recording = False

        if client is not None:
            try:
                client.disconnect()
            except (OSError, WebSocketException) as e:
                logger.debug(f"[OBS] Error closing websocket: {e}")
        if was_connected:
            logger.info("[OBS] Disconnected")

    def _schedule_reconnect(self) -> None:
        with self._reconnect_lock:
            if not self._should_reconnect:
                return
            if self._reconnect_thread and self._reconnect_thread.is_alive():
                return

            self._reconnect_thread = threading.Thread(
                target=self._reconnect_loop,
                name="obs-reconnect",
                daemon=True
            )
            self._reconnect_thread.start()

    def _reconnect_loop(self) -> None:
        """Retry until connected or disconnect() is called."""
        delay = self.config.obs.reconnect_initial_delay_sec
        max_delay = self.config.obs.reconnect_max_delay_sec

        while self._should_reconnect:
            logger.info(f"[OBS] Reconnecting in {delay:g}s...")
            if self._stop_event.wait(delay):
                return
            try:
                self.connect()
                return
            except DeviceConnectionError as e:
                logger.warning(f"[OBS] Reconnect failed: {e}")
            delay = min(delay * 2, max_delay)

    def _handle_transport_failure(self, error: Exception) -> None:
        with self._io_lock:
            self._client = None
            self.state = ConnectionState.DISCONNECTED
            self._recording = False
        logger.error(f"[OBS] Connection lost: {error}")
        self._schedule_reconnect()

    def _call(self, request: str, *args, **kwargs):
        """Issue one request, translating transport failures."""
        with self._io_lock:
            if self.state is not ConnectionState.CONNECTED or self._client is None:
                raise DeviceConnectionError(
                    "OBS is not connected. Check that OBS is running "
                    "with WebSocket server enabled."
                )
            try:
                return getattr(self._client, request)(*args, **kwargs)
            except OBSSDKRequestError:
                raise
            except TRANSPORT_ERRORS as e:
                failure = e
            except OBSSDKError as e:
                raise DeviceConnectionError(f"OBS request {request} failed: {e}")

        self._handle_transport_failure(failure)
        raise DeviceConnectionError(f"OBS request {request} failed: {failure}")

    def _request(self, request: str, *args, **kwargs):
        """Like _call, but OBS request errors also surface as connection errors."""
        try:
            return self._call(request, *args, **kwargs)
        except OBSSDKRequestError as e:
            raise DeviceConnectionError(str(e))

    # =========================================================================
    # Recording control
    # =========================================================================

    def get_status(self) -> DeviceStatus:
        status = self._request("get_record_status")
        self._recording = bool(status.output_active)
        return DeviceStatus(
            connected=True,
            recording=self._recording,
            recording_duration_ms=int(getattr(status, "output_duration", 0) or 0),
        )

    def start_recording(self, directory: str, filename: str) -> str:
        # OBS appends the container extension itself
        stem, dot, requested = filename.rpartition(".")
        if not dot:
            stem, requested = filename, ""

        extension = self._recording_extension() or requested or self.config.recording.container
        if requested and requested.lower() != extension.lower():
            logger.warning(
                f"[OBS] Requested .{requested} but OBS records .{extension}; "
                f"writing {stem}.{extension}"
            )

        self._request("set_profile_parameter", "Output", "FilePath", directory)
        self._request("set_profile_parameter", "Output", "FilenameFormatting", stem)
        self._request("start_record")
        self._recording = True

        written = f"{directory.rstrip('/')}/{stem}.{extension}"
        logger.info(f"[OBS] Recording started: {written}")
        return written

    def _recording_extension(self) -> Optional[str]:
        """File extension of the recording format set in the active profile."""
        try:
            mode = self._call("get_profile_parameter", "Output", "Mode").parameter_value
            section = "AdvOut" if mode == "Advanced" else "SimpleOutput"
            for name in ("RecFormat2", "RecFormat"):
                value = self._call("get_profile_parameter", section, name).parameter_value
                if value:
                    return RECORDING_FORMAT_EXTENSIONS.get(value, value)
        except OBSSDKRequestError as e:
            logger.debug(f"[OBS] Could not read recording format: {e}")
        return None

    def stop_recording(self) -> str:
        try:
            result = self._call("stop_record")
        except OBSSDKRequestError as e:
            if e.code == OUTPUT_NOT_ACTIVE:
                self._recording = False
                raise NotRecordingError("OBS is not recording")
            raise DeviceConnectionError(str(e))

        self._recording = False
        logger.info(f"[OBS] Recording stopped: {result.output_path}")
        return result.output_path

    def set_overlay_text(self, text: str) -> None:
        self._request(
            "set_input_settings",
            self.config.obs.overlay_text_source,
            {"text": text},
            True,
        )
        logger.info("[OBS] Overlay text updated")

    def get_screenshot(self) -> bytes:
        scene = self._current_scene_name()
        result = self._request(
            "get_source_screenshot",
            scene,
            "jpg",
            self.config.obs.screenshot_width,
            None,
            self.config.obs.screenshot_quality,
        )
        # Returned as a data URI
        _, _, payload = result.image_data.partition(",")
        return base64.b64decode(payload or result.image_data)

    def _current_scene_name(self) -> str:
        return self._request("get_current_program_scene").current_program_scene_name

    # =========================================================================
    # Auto-setup on connect
    # =========================================================================

    def _auto_setup(self) -> None:
        self._ensure_virtual_camera()
        self._ensure_browser_source()

    def _ensure_virtual_camera(self) -> None:
        try:
            status = self._request("get_virtual_cam_status")
            if not status.output_active:
                self._request("start_virtual_cam")
                logger.info("[OBS] Virtual Camera started")
            else:
                logger.info("[OBS] Virtual Camera already running")
        except DeviceConnectionError as e:
            logger.warning(f"[OBS] Could not start Virtual Camera: {e}")

    def _ensure_browser_source(self) -> None:
        source_name = self.config.obs.scorebug_source
        overlay_url = f"http://localhost:{self.config.server.port}/overlay"

        try:
            scene_name = self._current_scene_name()
            items = self._request("get_scene_item_list", scene_name).scene_items

            if any(item.get("sourceName") == source_name for item in items):
                # Update URL in case server port changed
                try:
                    self._request("set_input_settings", source_name, {"url": overlay_url}, True)
                except DeviceConnectionError as e:
                    logger.debug(f"[OBS] Could not update scorebug URL: {e}")
                logger.info(f'[OBS] Browser source "{source_name}" already exists')
                return

            self._request(
                "create_input",
                scene_name,
                source_name,
                "browser_source",
                {
                    "url": overlay_url,
                    "width": 1920,
                    "height": 1080,
                    "fps": 30,
                    "shutdown": False,
                    "restart_when_active": False,
                    "css": "",
                },
                True,
            )
            logger.info(f'[OBS] Created browser source "{source_name}"')

            # Highest index renders on top of the camera
            items = self._request("get_scene_item_list", scene_name).scene_items
            for item in items:
                if item.get("sourceName") == source_name:
                    self._request(
                        "set_scene_item_index",
                        scene_name,
                        item["sceneItemId"],
                        len(items) - 1,
                    )
                    logger.info(f'[OBS] Moved "{source_name}" to top of scene')
                    break
        except DeviceConnectionError as e:
            logger.warning(f"[OBS] Could not set up browser source: {e}")
