"""
Exception taxonomy for RackUp OBS.

Every error carries the HTTP status the API layer reports it with.
"""

from typing import Optional


class RackupError(Exception):
    """Base exception for all RackUp OBS errors."""

    status_code = 500


class DeviceConnectionError(RackupError, ConnectionError):
    """Raised when the recording device is unreachable or the session dropped."""

    pass


class NotRecordingError(RackupError):
    """Raised when stop/review is requested with nothing recording."""

    pass


class OperationInProgressError(RackupError):
    """Raised when another recording-control operation holds the lock."""

    status_code = 409


class RecordingActiveError(RackupError):
    """Raised when an operation conflicts with the recording in progress."""

    status_code = 409


class RecordingFilesystemError(RackupError):
    """Raised when a filesystem step on the critical path fails."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class ValidationError(RackupError):
    """Raised for bad client input. No filesystem mutation is attempted."""

    status_code = 400


class InvalidFlagError(ValidationError):
    """Raised when a flag is outside the allowed vocabulary."""

    def __init__(self, flag: str):
        self.flag = flag
        super().__init__(f"Unknown flag: {flag}")


class UnparseableFilenameError(ValidationError):
    """Raised when an operation needs a structured name and the file has none."""

    pass


class UnsupportedMediaError(ValidationError):
    """Raised when a path does not point at a video file."""

    pass


class PathEscapeError(ValidationError):
    """Raised when a relative path resolves outside the recordings directory."""

    status_code = 403


class RecordingNotFoundError(RackupError):
    """Raised when a referenced recording does not exist."""

    status_code = 404
