"""
Recording orchestrator.

Sequences recording operations against the device and the recordings
directory:
- start / stop / discard of the current recording
- frame transitions (stop the old frame, start the next)
- review (stop and hand back the file without restarting)
- resume (continue a frame in a new ``_ptN`` segment)
- flag edits on finished recordings

Every operation that starts or stops the device holds one control lock
for its whole duration, so concurrent requests cannot interleave device
commands. The device acknowledges a stop before the file is finalized, so
anything that touches the file afterwards waits out the finalization
delay first: the next start waits inside the lock, while renames and
deletes run later on the deferred task queue.
"""

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path, PurePath
from typing import Callable, Iterable, List, Optional

from rackup_obs.errors import (
    DeviceConnectionError,
    NotRecordingError,
    OperationInProgressError,
    PathEscapeError,
    RackupError,
    RecordingActiveError,
    ValidationError,
)
from rackup_obs.recording import filename as codec
from rackup_obs.recording.library import RecordingLibrary, RecordingMeta

logger = logging.getLogger(__name__)


class SlotState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


def display_name(name: str, nickname: Optional[str] = None) -> str:
    """Player name as shown on the stream overlay."""
    if nickname:
        return f'{name} "{nickname}"'
    return name


def _check_filename(filename: str) -> None:
    """A client-supplied filename must be one plain path component."""
    if not isinstance(filename, str):
        raise ValidationError("filename must be a string")
    if (
        filename in (".", "..")
        or "/" in filename
        or "\\" in filename
        or PurePath(filename).name != filename
    ):
        raise PathEscapeError(f"Invalid recording filename: {filename}")


class RecordingOrchestrator:
    """
    Owns the active recording pointer and all device control calls.

    The active pointer is the path (relative to the recordings directory)
    currently being written. It is set as soon as the device accepts a
    start and cleared when the stop is acknowledged; while set, that file
    is left out of listings.
    """

    def __init__(
        self,
        config,
        device,
        library: RecordingLibrary,
        overlay,
        tasks,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Configuration object with recording settings
            device: RecordingDevice to control
            library: RecordingLibrary for the recordings directory
            overlay: OverlayBroadcaster notified of recording changes
            tasks: DeferredTaskQueue for post-finalization work
            sleep: Blocking wait used for the finalization delay
        """
        self.config = config
        self.device = device
        self.library = library
        self.overlay = overlay
        self.tasks = tasks
        self._sleep = sleep

        self._control_lock = threading.Lock()
        self._active_path: Optional[str] = None
        self._finalizing_until = 0.0

    @property
    def finalize_delay(self) -> float:
        return self.config.recording.finalize_delay_sec

    @property
    def active_path(self) -> Optional[str]:
        return self._active_path

    @property
    def state(self) -> SlotState:
        if self._active_path is not None:
            return SlotState.RECORDING
        if time.monotonic() < self._finalizing_until:
            return SlotState.FINALIZING
        return SlotState.IDLE

    @contextmanager
    def _control(self, operation: str):
        """Hold the recording-control lock, waiting a bounded time for it."""
        timeout = self.config.recording.lock_timeout_sec
        if not self._control_lock.acquire(timeout=timeout):
            logger.warning(f"Rejected {operation}: another recording operation is in progress")
            raise OperationInProgressError(
                f"Another recording operation is in progress ({operation} rejected)"
            )
        try:
            yield
        finally:
            self._control_lock.release()

    # =========================================================================
    # Operations
    # =========================================================================

    def start(self, filename: Optional[str] = None, directory: Optional[str] = None) -> str:
        """
        Start recording to ``directory/filename``.

        Returns:
            The filename recording was started with
        """
        with self._control("start"):
            self._check_idle()

            if directory:
                # The active pointer is relative to the base directory
                self.library.relative(directory)
            else:
                directory = self.device.generate_directory()
            if filename:
                _check_filename(filename)
            else:
                filename = f"recording_{int(time.time() * 1000)}.{self.config.recording.container}"

            self._start_locked(directory, filename)
            return filename

    def stop(self, flags: Optional[Iterable[str]] = None) -> str:
        """
        Stop the current recording.

        Unknown flags are dropped with a warning; the rest are merged into
        the filename once the file is finalized.

        Returns:
            Absolute path of the stopped file
        """
        accepted = self._accept_flags(flags or ())

        with self._control("stop"):
            file_path = self._stop_locked()

        if accepted:
            self.tasks.schedule(
                self.finalize_delay,
                self._apply_flags,
                file_path,
                accepted,
                description=f"apply flags {list(accepted)} to {Path(file_path).name}",
            )
        return file_path

    def discard(self) -> str:
        """
        Stop the current recording and delete it once finalized.

        Returns:
            Absolute path of the discarded file
        """
        with self._control("discard"):
            file_path = self._stop_locked()

        self.tasks.schedule(
            self.finalize_delay,
            self._delete_file,
            file_path,
            description=f"discard {Path(file_path).name}",
        )
        return file_path

    def transition(
        self,
        player1: str,
        player2: str,
        score: str,
        session_date: Optional[str],
        frame_number: int,
        player1_nickname: Optional[str] = None,
        player2_nickname: Optional[str] = None,
    ) -> Optional[str]:
        """
        Move recording on to the next frame.

        Stops the running recording (if any), waits for it to finalize,
        starts the new frame's recording and updates the overlay text.

        Returns:
            Absolute path of the recording that was stopped, or None
        """
        stopped: Optional[str] = None

        with self._control("transition"):
            status = self.device.get_status()
            if status.recording:
                stopped = self._stop_locked()
            elif self._active_path is not None:
                logger.warning(f"Clearing stale active recording {self._active_path}")
                self._clear_active()

            directory = self.device.generate_directory(session_date)
            filename = self.device.generate_filename(player1, player2, frame_number)
            self._start_locked(directory, filename)

        text = (
            f"{display_name(player1, player1_nickname)} vs "
            f"{display_name(player2, player2_nickname)} | {score}"
        )
        self._push_overlay_text(text)
        return stopped

    def review(self) -> str:
        """
        Stop for review without restarting.

        Returns:
            Path of the finalized file relative to the recordings directory
        """
        with self._control("review"):
            file_path = self._stop_locked()
            self._sleep(self.finalize_delay)

        try:
            return self.library.relative(file_path)
        except PathEscapeError:
            logger.warning(f"Reviewed file is outside the recordings directory: {file_path}")
            return file_path

    def resume(
        self,
        player1: str,
        player2: str,
        session_date: Optional[str],
        frame_number: int,
    ) -> int:
        """
        Continue a frame in a new segment.

        Returns:
            The segment number started
        """
        with self._control("resume"):
            self._check_idle()

            directory = self.device.generate_directory(session_date)
            existing = self.library.find_segments(
                directory,
                codec.sanitize_player_name(player1),
                codec.sanitize_player_name(player2),
                frame_number,
            )
            # The un-suffixed file is segment 1
            segment = max(max(existing, default=1) + 1, 2)

            filename = self.device.generate_segment_filename(
                player1, player2, frame_number, segment
            )
            self._start_locked(directory, filename)

        logger.info(f"Resumed frame {frame_number} as segment {segment}")
        return segment

    def edit_flags(self, relative_path: str, flags: Iterable[str]) -> RecordingMeta:
        """Replace a finished recording's flags."""
        flags = codec.validate_flags(flags)
        relative_path = self.library.relative(self.library.resolve(relative_path))
        if self._active_path is not None and relative_path == self._active_path:
            raise RecordingActiveError("Cannot edit the recording in progress")
        return self.library.set_flags(relative_path, flags)

    def list_recordings(self) -> List[RecordingMeta]:
        """Finished recordings, newest first. The active file is never listed."""
        return self.library.list_recordings(exclude=self._active_path)

    def set_overlay_text(self, player1: str, player2: str, score: str, date: str) -> None:
        """Push a free-standing scoreline onto the device overlay."""
        self.device.set_overlay_text(f"{player1} vs {player2} | {score} | {date}")

    def shutdown(self) -> None:
        """Stop any active recording before the process exits."""
        if self._active_path is None:
            return
        logger.info("Stopping active recording...")
        try:
            self.stop()
        except RackupError as e:
            logger.error(f"Failed to stop recording at shutdown: {e}")

    # =========================================================================
    # Locked steps
    # =========================================================================

    def _check_idle(self) -> None:
        if self._active_path is not None:
            raise RecordingActiveError(f"Already recording: {self._active_path}")
        if self.device.get_status().recording:
            raise RecordingActiveError("Device is already recording")

    def _await_finalization(self) -> None:
        remaining = self._finalizing_until - time.monotonic()
        if remaining > 0:
            logger.debug(f"Waiting {remaining:.2f}s for previous recording to finalize")
            self._sleep(remaining)

    def _start_locked(self, directory: str, filename: str) -> None:
        # Refuse targets outside the base directory before touching anything
        self.library.relative(Path(directory) / filename)

        self._await_finalization()
        target_dir = self.library.ensure_directory(directory)
        written = self.device.start_recording(str(target_dir), filename)

        self._active_path = self.library.relative(written)
        self.overlay.set_recording(True)
        logger.info(f"Recording started: {self._active_path}")

    def _stop_locked(self) -> str:
        try:
            file_path = self.device.stop_recording()
        except NotRecordingError:
            if self._active_path is not None:
                logger.warning(f"Device was not recording; clearing {self._active_path}")
                self._clear_active()
            raise

        self._clear_active()
        self._finalizing_until = time.monotonic() + self.finalize_delay
        logger.info(f"Recording stopped: {file_path}")
        return file_path

    def _clear_active(self) -> None:
        self._active_path = None
        self.overlay.set_recording(False)

    def _push_overlay_text(self, text: str) -> None:
        try:
            self.device.set_overlay_text(text)
        except DeviceConnectionError as e:
            logger.warning(f"Could not update overlay text: {e}")

    @staticmethod
    def _accept_flags(flags: Iterable[str]) -> tuple:
        accepted = []
        for flag in flags:
            if flag in codec.ALLOWED_FLAGS:
                accepted.append(flag)
            else:
                logger.warning(f"Ignoring unknown flag on stop: {flag!r}")
        return codec.normalize_flags(accepted)

    # =========================================================================
    # Deferred work (runs on the task queue, outside the control lock)
    # =========================================================================

    def _apply_flags(self, file_path: str, flags: tuple) -> None:
        renamed = self.library.merge_flags(file_path, flags)
        if renamed:
            logger.info(f"Flagged recording {Path(file_path).name} -> {renamed.name}")

    def _delete_file(self, file_path: str) -> None:
        self.library.delete(file_path)
        logger.info(f"Discarded recording {Path(file_path).name}")
