"""
Live overlay state broadcaster.

Holds the one overlay state record for the process and fans every change
out to the attached Server-Sent-Events subscribers. Each subscriber is a
bounded queue drained by its own HTTP response; a subscriber that cannot
take another event is treated as gone and dropped without affecting the
others.
"""

import copy
import json
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Set

from rackup_obs.errors import ValidationError

logger = logging.getLogger(__name__)

KEEPALIVE = ":keepalive\n\n"

MATCH_UPDATE = "match_update"
SCORE_UPDATE = "score_update"
VISIBILITY = "visibility"
RECORDING_STATUS = "recording_status"


@dataclass
class OverlayPlayer:
    """A player as shown on the scorebug."""
    id: str
    name: str
    nickname: Optional[str] = None
    emoji: Optional[str] = None
    score: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["OverlayPlayer"]:
        if not data:
            return None
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            nickname=data.get("nickname"),
            emoji=data.get("emoji"),
            score=int(data.get("score", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "name": self.name, "score": self.score}
        if self.nickname is not None:
            data["nickname"] = self.nickname
        if self.emoji is not None:
            data["emoji"] = self.emoji
        return data


@dataclass
class OverlayState:
    """Everything the overlay page renders."""
    visible: bool = False
    is_recording: bool = False
    player_a: Optional[OverlayPlayer] = None
    player_b: Optional[OverlayPlayer] = None
    session_date: Optional[str] = None
    frame_number: int = 0
    last_winner_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visible": self.visible,
            "isRecording": self.is_recording,
            "playerA": self.player_a.to_dict() if self.player_a else None,
            "playerB": self.player_b.to_dict() if self.player_b else None,
            "sessionDate": self.session_date,
            "frameNumber": self.frame_number,
            "lastWinnerId": self.last_winner_id,
        }


def _strict_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected a boolean, got {type(value).__name__}")
    return value


def _player(value: Any) -> Optional[OverlayPlayer]:
    if value is not None and not isinstance(value, dict):
        raise TypeError(f"expected an object, got {type(value).__name__}")
    return OverlayPlayer.from_dict(value)


# Wire name -> (attribute, converter)
_WIRE_FIELDS = {
    "visible": ("visible", _strict_bool),
    "isRecording": ("is_recording", _strict_bool),
    "playerA": ("player_a", _player),
    "playerB": ("player_b", _player),
    "sessionDate": ("session_date", lambda v: None if v is None else str(v)),
    "frameNumber": ("frame_number", int),
    "lastWinnerId": ("last_winner_id", lambda v: None if v is None else str(v)),
}


class SubscriberGone(Exception):
    """Raised when a subscriber can no longer accept events."""


class Subscriber:
    """
    One attached event stream.

    Writes never block: a full queue means the client stopped reading.
    """

    def __init__(self, max_queue: int = 256):
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=max_queue)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def write(self, chunk: str) -> None:
        if self.closed:
            raise SubscriberGone()
        try:
            self._queue.put_nowait(chunk)
        except queue.Full:
            raise SubscriberGone()

    def close(self) -> None:
        self._closed.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass  # reader checks the closed flag

    def events(self, poll_interval: float = 1.0) -> Iterator[str]:
        """Yield queued chunks until the subscriber is closed."""
        while not self.closed:
            try:
                chunk = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                continue
            if chunk is None:
                break
            yield chunk


def format_event(event_type: str, data: Dict[str, Any]) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


class OverlayBroadcaster:
    """
    Process-wide overlay state plus its subscriber registry.

    Created once at startup and handed to whatever needs it.
    """

    def __init__(self, heartbeat_interval: float = 15.0):
        self.heartbeat_interval = heartbeat_interval
        self._state = OverlayState()
        self._clients: Set[Subscriber] = set()
        self._lock = threading.RLock()
        self._heartbeat_stop: Optional[threading.Event] = None
        self._heartbeat_thread: Optional[threading.Thread] = None

    # =========================================================================
    # State
    # =========================================================================

    def get_state(self) -> OverlayState:
        """Return a copy of the current state."""
        with self._lock:
            return copy.deepcopy(self._state)

    def update_match(
        self,
        player_a: Optional[OverlayPlayer],
        player_b: Optional[OverlayPlayer],
        session_date: Optional[str],
        frame_number: int,
    ) -> None:
        with self._lock:
            self._state.player_a = copy.deepcopy(player_a)
            self._state.player_b = copy.deepcopy(player_b)
            self._state.session_date = session_date
            self._state.frame_number = frame_number
            self._state.last_winner_id = None
            self._broadcast(MATCH_UPDATE)

    def update_score(self, winner_id: str, player_a_score: int, player_b_score: int) -> None:
        with self._lock:
            if self._state.player_a:
                self._state.player_a.score = player_a_score
            if self._state.player_b:
                self._state.player_b.score = player_b_score
            self._state.last_winner_id = winner_id
            self._broadcast(SCORE_UPDATE)

    def set_visibility(self, visible: bool) -> None:
        with self._lock:
            self._state.visible = visible
            self._broadcast(VISIBILITY)

    def set_recording(self, is_recording: bool) -> None:
        with self._lock:
            self._state.is_recording = is_recording
            self._broadcast(RECORDING_STATUS)

    def update_full(self, partial: Dict[str, Any]) -> None:
        """
        Shallow-merge wire-format fields into the state.

        Every field is converted before any is applied, so a bad value
        leaves the state untouched.

        Raises:
            ValidationError: a known field has a value of the wrong type
        """
        changes = {}
        for key, value in partial.items():
            if key not in _WIRE_FIELDS:
                logger.debug(f"Ignoring unknown overlay field: {key}")
                continue
            attribute, convert = _WIRE_FIELDS[key]
            try:
                changes[attribute] = convert(value)
            except (TypeError, ValueError, AttributeError):
                raise ValidationError(f"Invalid value for {key}: {value!r}")

        with self._lock:
            for attribute, value in changes.items():
                setattr(self._state, attribute, value)
            self._broadcast(MATCH_UPDATE)

    # =========================================================================
    # Subscribers
    # =========================================================================

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def add_client(self, subscriber: Subscriber) -> None:
        """Register a subscriber and send it the full current state."""
        with self._lock:
            self._clients.add(subscriber)
            if len(self._clients) == 1:
                self._start_heartbeat()
            self._send(subscriber, MATCH_UPDATE, self._state.to_dict())
        logger.debug(f"Overlay client attached ({self.client_count} total)")

    def remove_client(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._clients:
                return
            self._clients.discard(subscriber)
            subscriber.close()
            if not self._clients:
                self._stop_heartbeat()
        logger.debug(f"Overlay client detached ({self.client_count} total)")

    def close(self) -> None:
        """Detach every subscriber."""
        with self._lock:
            for subscriber in list(self._clients):
                self.remove_client(subscriber)

    def _broadcast(self, event_type: str) -> None:
        data = self._state.to_dict()
        for subscriber in list(self._clients):
            self._send(subscriber, event_type, data)

    def _send(self, subscriber: Subscriber, event_type: str, data: Dict[str, Any]) -> None:
        self._write(subscriber, format_event(event_type, data))

    def _write(self, subscriber: Subscriber, chunk: str) -> None:
        try:
            subscriber.write(chunk)
        except SubscriberGone:
            self.remove_client(subscriber)

    # =========================================================================
    # Heartbeat
    # =========================================================================

    def _start_heartbeat(self) -> None:
        stop = threading.Event()
        self._heartbeat_stop = stop
        self._heartbeat_thread = threading.Thread(
            target=self._heartbeat_loop,
            args=(stop,),
            name="overlay-heartbeat",
            daemon=True
        )
        self._heartbeat_thread.start()

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_stop:
            self._heartbeat_stop.set()
        self._heartbeat_stop = None
        self._heartbeat_thread = None

    @property
    def heartbeat_running(self) -> bool:
        thread = self._heartbeat_thread
        return thread is not None and thread.is_alive()

    def _heartbeat_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.heartbeat_interval):
            with self._lock:
                for subscriber in list(self._clients):
                    self._write(subscriber, KEEPALIVE)
