"""Frame recording: filename codec, library and orchestration."""

from rackup_obs.recording.filename import (
    ALLOWED_FLAGS,
    RecordingIdentity,
    Unparseable,
    decode,
    encode,
)
from rackup_obs.recording.library import RecordingLibrary, RecordingMeta

__all__ = [
    "ALLOWED_FLAGS",
    "RecordingIdentity",
    "Unparseable",
    "decode",
    "encode",
    "RecordingLibrary",
    "RecordingMeta",
]
