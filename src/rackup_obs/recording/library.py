"""
Recording library.

The recordings directory is the only record of what has been captured.
Handles:
- Listing recordings with identities decoded from their filenames
- Safe resolution of client-supplied relative paths
- Flag renames and deletion
- Segment discovery for resumed frames
- Disk space reporting
"""

import os
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import psutil

from rackup_obs.errors import (
    PathEscapeError,
    RecordingFilesystemError,
    RecordingNotFoundError,
    UnparseableFilenameError,
    UnsupportedMediaError,
)
from rackup_obs.recording import filename as codec
from rackup_obs.recording.filename import RecordingIdentity, Unparseable

logger = logging.getLogger(__name__)

VIDEO_MIMETYPES = {
    ".mkv": "video/x-matroska",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".flv": "video/x-flv",
    ".ts": "video/mp2t",
}


@dataclass(frozen=True)
class RecordingMeta:
    """A recording as found on disk."""
    identity: RecordingIdentity
    relative_path: str
    size_bytes: int
    parsed: bool = True

    def to_dict(self) -> Dict[str, Any]:
        ident = self.identity
        return {
            "relativePath": self.relative_path,
            "date": ident.date.isoformat(),
            "time": ident.time.strftime("%H:%M"),
            "player1": ident.player1,
            "player2": ident.player2,
            "frameNumber": ident.frame_number,
            "segment": ident.segment,
            "flags": list(ident.flags),
            "extension": ident.extension,
            "sizeBytes": self.size_bytes,
            "parsed": self.parsed,
        }


class RecordingLibrary:
    """
    Filesystem view of the recordings directory.

    Relative paths handed out and accepted here are POSIX-style and
    relative to the configured base directory.
    """

    def __init__(self, config):
        """
        Initialize the library.

        Args:
            config: Configuration object with recording settings
        """
        self.config = config
        self.base_dir = Path(config.recording.base_dir).expanduser().resolve()
        self._lock = threading.Lock()

        self._init_directories()

    def _init_directories(self) -> None:
        """Create the base directory if it doesn't exist."""
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create recordings directory {self.base_dir}: {e}")
            return
        logger.info(f"Recording library at {self.base_dir}")

    # =========================================================================
    # Paths
    # =========================================================================

    def resolve(self, relative_path: str) -> Path:
        """
        Resolve a client-supplied path inside the base directory.

        Raises:
            PathEscapeError: if the path leaves the base directory
        """
        if not relative_path:
            raise PathEscapeError("Empty path")

        candidate = (self.base_dir / relative_path).resolve()
        if candidate == self.base_dir or self.base_dir not in candidate.parents:
            raise PathEscapeError(f"Path outside recordings directory: {relative_path}")
        return candidate

    def relative(self, path: Union[str, Path]) -> str:
        """Express an absolute path relative to the base directory."""
        absolute = Path(path).expanduser().resolve()
        try:
            return absolute.relative_to(self.base_dir).as_posix()
        except ValueError:
            raise PathEscapeError(f"Path outside recordings directory: {path}")

    @staticmethod
    def is_video(path: Union[str, Path]) -> bool:
        return Path(path).suffix.lower() in VIDEO_MIMETYPES

    def require_video(self, path: Path) -> str:
        """
        Check that a path names a video file.

        Returns:
            The file's mimetype
        """
        mimetype = VIDEO_MIMETYPES.get(path.suffix.lower())
        if mimetype is None:
            raise UnsupportedMediaError(f"Not a video file: {path.name}")
        return mimetype

    # =========================================================================
    # Listing
    # =========================================================================

    def describe(self, path: Path) -> RecordingMeta:
        """Build metadata for one file from its name and stat()."""
        stat = path.stat()
        decoded = codec.decode(path.name)

        if isinstance(decoded, Unparseable):
            identity = decoded.degraded(datetime.fromtimestamp(stat.st_mtime))
            parsed = False
        else:
            identity = decoded
            parsed = True

        return RecordingMeta(
            identity=identity,
            relative_path=self.relative(path),
            size_bytes=stat.st_size,
            parsed=parsed,
        )

    def list_recordings(self, exclude: Optional[str] = None) -> List[RecordingMeta]:
        """
        List every video file under the base directory, newest first.

        Args:
            exclude: Relative path to leave out (the file being written)
        """
        recordings = []

        for video_file in self._iter_videos(self.base_dir):
            try:
                meta = self.describe(video_file)
            except FileNotFoundError:
                # Renamed or deleted between listing and stat
                continue
            except OSError as e:
                logger.warning(f"Skipping unreadable recording {video_file}: {e}")
                continue

            if exclude and meta.relative_path == exclude:
                continue
            recordings.append(meta)

        recordings.sort(key=lambda m: m.relative_path, reverse=True)
        recordings.sort(key=lambda m: (m.identity.date, m.identity.time), reverse=True)
        return recordings

    def _iter_videos(self, directory: Path) -> Iterable[Path]:
        if not directory.is_dir():
            return []
        return (p for p in directory.rglob("*") if p.is_file() and self.is_video(p))

    def find_segments(
        self,
        directory: Union[str, Path],
        player1: str,
        player2: str,
        frame_number: int,
    ) -> List[int]:
        """
        Segment numbers already recorded for a matchup and frame.

        The un-suffixed file counts as segment 1.
        """
        segments = []
        directory = Path(directory)
        if not directory.is_dir():
            return segments

        for video_file in directory.iterdir():
            if not video_file.is_file() or not self.is_video(video_file):
                continue
            decoded = codec.decode(video_file.name)
            if isinstance(decoded, Unparseable):
                continue
            if decoded.same_frame(player1, player2, frame_number):
                segments.append(decoded.segment)

        return sorted(segments)

    # =========================================================================
    # Mutation
    # =========================================================================

    def set_flags(self, relative_path: str, flags: Iterable[str]) -> RecordingMeta:
        """
        Replace the flag set encoded in a recording's filename.

        Flags are validated before anything on disk is touched.

        Raises:
            InvalidFlagError: unknown flag
            PathEscapeError: path outside the base directory
            RecordingNotFoundError: no such file
            UnparseableFilenameError: the name does not follow the grammar
            RecordingFilesystemError: the rename failed
        """
        flags = codec.validate_flags(flags)
        source = self.resolve(relative_path)
        self.require_video(source)

        decoded = codec.decode(source.name)
        if isinstance(decoded, Unparseable):
            raise UnparseableFilenameError(f"Filename not in recording format: {source.name}")

        with self._lock:
            if not source.is_file():
                raise RecordingNotFoundError(f"Recording not found: {relative_path}")

            target = source.with_name(codec.encode(decoded.with_flags(flags)))
            if target != source:
                self._rename(source, target)

            return self.describe(target)

    def merge_flags(self, path: Union[str, Path], flags: Iterable[str]) -> Optional[Path]:
        """
        Add flags to whatever the filename already carries.

        Returns:
            The new path, or None if the name is not in recording format
            or the file has since been renamed or deleted
        """
        source = Path(path)
        decoded = codec.decode(source.name)
        if isinstance(decoded, Unparseable):
            logger.warning(f"Cannot apply flags to unrecognised file: {source.name}")
            return None

        merged = codec.validate_flags(decoded.flags + tuple(flags))
        target = source.with_name(codec.encode(decoded.with_flags(merged)))

        with self._lock:
            if not source.exists():
                logger.info(f"{source.name} was renamed or removed; skipping flags {list(merged)}")
                return None
            if target != source:
                self._rename(source, target)
        return target

    def _rename(self, source: Path, target: Path) -> None:
        if target.exists():
            raise RecordingFilesystemError(
                f"Target already exists: {target.name}", path=str(target)
            )
        try:
            os.rename(source, target)
        except FileNotFoundError:
            raise RecordingNotFoundError(f"Recording not found: {source.name}")
        except OSError as e:
            raise RecordingFilesystemError(f"Rename failed: {e}", path=str(source))

        logger.info(f"Renamed {source.name} -> {target.name}")

    def delete(self, path: Union[str, Path]) -> None:
        """Delete a recording file."""
        path = Path(path)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                raise RecordingNotFoundError(f"Recording not found: {path.name}")
            except OSError as e:
                raise RecordingFilesystemError(f"Delete failed: {e}", path=str(path))

        logger.info(f"Deleted recording: {path}")

    @staticmethod
    def ensure_directory(directory: Union[str, Path]) -> Path:
        """Create a recording target directory."""
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RecordingFilesystemError(
                f"Cannot create directory {directory}: {e}", path=str(directory)
            )
        return directory

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Get disk usage for the recordings volume."""
        try:
            usage = psutil.disk_usage(str(self.base_dir))
        except OSError as e:
            logger.error(f"Error getting storage status: {e}")
            return {"error": str(e), "path": str(self.base_dir)}

        return {
            "path": str(self.base_dir),
            "total_gb": round(usage.total / (1024 ** 3), 2),
            "free_gb": round(usage.free / (1024 ** 3), 2),
            "used_percent": usage.percent,
        }
