"""
Filename codec for frame recordings.

A recording's filename is its only persistent record, so the name carries
the whole identity:

    YYYY-MM-DD_HHmm_<player1>-vs-<player2>_Frame<NNN>[_ptN][flag]...<.ext>

e.g. ``2025-08-15_2035_Paddy-vs-Mick_Frame012_pt2[brush][foul].mkv``.

``encode`` and ``decode`` are pure; nothing here touches the filesystem.
``decode`` never raises: a name that does not follow the grammar comes back
as an ``Unparseable`` value which the caller can turn into a degraded
identity once it knows the file's modification time.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import PurePath
from typing import Iterable, Optional, Tuple, Union

from rackup_obs.errors import InvalidFlagError

# Closed flag vocabulary, kept sorted
ALLOWED_FLAGS = ("brush", "clearance", "foul", "highlight")

UNKNOWN_PLAYER = "Unknown"
PLAYER_SEPARATOR = "-vs-"
FRAME_MARKER = "_Frame"
SEGMENT_MARKER = "_pt"

_PLAYER_CHARS = re.compile(r"[A-Za-z0-9_-]+")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_EXTENSION_CHARS = re.compile(r"[A-Za-z0-9]+")


def normalize_flags(flags: Iterable[str]) -> Tuple[str, ...]:
    """Return flags sorted and deduplicated."""
    return tuple(sorted(set(flags)))


def validate_flags(flags: Iterable[str]) -> Tuple[str, ...]:
    """
    Check every flag against the allowed vocabulary.

    Returns:
        The normalized flag tuple

    Raises:
        InvalidFlagError: on the first flag outside the vocabulary
    """
    flags = list(flags)
    for flag in flags:
        if flag not in ALLOWED_FLAGS:
            raise InvalidFlagError(str(flag))
    return normalize_flags(flags)


def sanitize_player_name(name: str) -> str:
    """Make a display name safe for use as a filename token."""
    cleaned = _UNSAFE_CHARS.sub("_", name.strip()) or UNKNOWN_PLAYER
    # A literal separator inside a name would split it on decode
    while PLAYER_SEPARATOR in cleaned:
        cleaned = cleaned.replace(PLAYER_SEPARATOR, "-vs_")
    if cleaned.endswith("-vs"):
        cleaned = cleaned[:-3] + "_vs"
    return cleaned


def is_valid_player_token(name: str) -> bool:
    """A name the grammar can carry without ambiguity."""
    return (
        bool(_PLAYER_CHARS.fullmatch(name))
        and PLAYER_SEPARATOR not in name
        and not name.endswith("-vs")
    )


@dataclass(frozen=True)
class RecordingIdentity:
    """Structured identity of one frame recording."""
    date: date
    time: time
    player1: str
    player2: str
    frame_number: int
    segment: int = 1
    flags: Tuple[str, ...] = field(default_factory=tuple)
    extension: str = "mkv"

    def __post_init__(self):
        object.__setattr__(self, "flags", normalize_flags(self.flags))
        object.__setattr__(self, "time", self.time.replace(second=0, microsecond=0))

    def with_flags(self, flags: Iterable[str]) -> "RecordingIdentity":
        return RecordingIdentity(
            date=self.date,
            time=self.time,
            player1=self.player1,
            player2=self.player2,
            frame_number=self.frame_number,
            segment=self.segment,
            flags=tuple(flags),
            extension=self.extension,
        )

    def same_frame(self, player1: str, player2: str, frame_number: int) -> bool:
        """True when this recording belongs to the given matchup and frame."""
        return (
            self.player1 == player1
            and self.player2 == player2
            and self.frame_number == frame_number
        )


@dataclass(frozen=True)
class Unparseable:
    """A filename that does not follow the recording grammar."""
    filename: str

    def degraded(self, modified: datetime) -> RecordingIdentity:
        """Build the placeholder identity used to keep the file listable."""
        suffix = PurePath(self.filename).suffix.lstrip(".")
        return RecordingIdentity(
            date=modified.date(),
            time=modified.time(),
            player1=UNKNOWN_PLAYER,
            player2=UNKNOWN_PLAYER,
            frame_number=0,
            extension=suffix,
        )


DecodeResult = Union[RecordingIdentity, Unparseable]


def encode(identity: RecordingIdentity) -> str:
    """
    Render an identity as a filename.

    Raises:
        InvalidFlagError: if a flag is outside the vocabulary
        ValueError: if a field cannot be represented in the grammar
    """
    flags = validate_flags(identity.flags)

    for player in (identity.player1, identity.player2):
        if not is_valid_player_token(player):
            raise ValueError(f"Player name not filename-safe: {player!r}")
    if identity.frame_number < 1:
        raise ValueError(f"Frame number must be positive: {identity.frame_number}")
    if identity.segment < 1:
        raise ValueError(f"Segment must be positive: {identity.segment}")
    if not _EXTENSION_CHARS.fullmatch(identity.extension):
        raise ValueError(f"Invalid extension: {identity.extension!r}")

    segment = f"{SEGMENT_MARKER}{identity.segment}" if identity.segment > 1 else ""
    flag_run = "".join(f"[{flag}]" for flag in flags)

    return (
        f"{identity.date:%Y-%m-%d}_{identity.time:%H%M}_"
        f"{identity.player1}{PLAYER_SEPARATOR}{identity.player2}"
        f"{FRAME_MARKER}{identity.frame_number:03d}"
        f"{segment}{flag_run}.{identity.extension}"
    )


class _GrammarError(Exception):
    pass


def _require(condition: bool, reason: str) -> None:
    if not condition:
        raise _GrammarError(reason)


def _digits(text: str, length: Optional[int] = None) -> int:
    _require(text.isascii() and text.isdigit(), f"expected digits, got {text!r}")
    if length is not None:
        _require(len(text) == length, f"expected {length} digits, got {text!r}")
    return int(text)


def _parse(name: str) -> RecordingIdentity:
    # Extension
    stem, dot, extension = name.rpartition(".")
    _require(bool(dot) and bool(stem), "missing extension")
    _require(bool(_EXTENSION_CHARS.fullmatch(extension)), "bad extension")

    # Flag run, read from the right
    flags = []
    while stem.endswith("]"):
        start = stem.rfind("[")
        _require(start != -1, "unbalanced flag bracket")
        token = stem[start + 1:-1]
        _require(token in ALLOWED_FLAGS, f"unknown flag {token!r}")
        flags.append(token)
        stem = stem[:start]

    # Optional _ptN segment
    segment = 1
    marker = stem.rfind(SEGMENT_MARKER)
    if marker != -1:
        tail = stem[marker + len(SEGMENT_MARKER):]
        if tail.isascii() and tail.isdigit():
            _require(not tail.startswith("0"), "segment has leading zero")
            segment = int(tail)
            _require(segment >= 2, "segment suffix below 2")
            stem = stem[:marker]

    # _FrameNNN
    marker = stem.rfind(FRAME_MARKER)
    _require(marker != -1, "missing frame marker")
    frame_text = stem[marker + len(FRAME_MARKER):]
    frame_number = _digits(frame_text)
    _require(len(frame_text) >= 3, "frame number not zero-padded")
    _require(len(frame_text) == 3 or not frame_text.startswith("0"), "frame over-padded")
    _require(frame_number >= 1, "frame number must be positive")
    head = stem[:marker]

    # YYYY-MM-DD_HHmm_
    _require(len(head) > 16, "missing date/time/players")
    _require(head[4] == "-" and head[7] == "-", "bad date separators")
    _require(head[10] == "_" and head[15] == "_", "bad date/time separators")
    try:
        day = date(_digits(head[0:4], 4), _digits(head[5:7], 2), _digits(head[8:10], 2))
        clock = time(_digits(head[11:13], 2), _digits(head[13:15], 2))
    except ValueError as e:
        raise _GrammarError(str(e))

    # <player1>-vs-<player2>
    player1, separator, player2 = head[16:].partition(PLAYER_SEPARATOR)
    _require(bool(separator), "missing player separator")
    _require(is_valid_player_token(player1), "bad player1")
    _require(is_valid_player_token(player2), "bad player2")

    return RecordingIdentity(
        date=day,
        time=clock,
        player1=player1,
        player2=player2,
        frame_number=frame_number,
        segment=segment,
        flags=tuple(flags),
        extension=extension,
    )


def decode(filename: str) -> DecodeResult:
    """
    Parse a filename (or path; only the final component is read).

    Returns:
        RecordingIdentity on success, Unparseable otherwise
    """
    name = PurePath(filename).name
    try:
        return _parse(name)
    except _GrammarError:
        return Unparseable(name)
