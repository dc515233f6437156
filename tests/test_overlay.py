import json
import time

import pytest

from rackup_obs.errors import ValidationError
from rackup_obs.overlay import OverlayBroadcaster, OverlayPlayer, Subscriber
from rackup_obs.overlay.broadcaster import KEEPALIVE, format_event


def parse(chunk):
    lines = chunk.rstrip("\n").split("\n")
    assert lines[0].startswith("event: ")
    assert lines[1].startswith("data: ")
    return lines[0][len("event: "):], json.loads(lines[1][len("data: "):])


def players():
    return (
        OverlayPlayer(id="p1", name="Paddy", nickname="The Hammer", emoji="🎱", score=0),
        OverlayPlayer(id="p2", name="Mick", score=0),
    )


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestState:
    def test_initial_state(self, overlay):
        assert overlay.get_state().to_dict() == {
            "visible": False,
            "isRecording": False,
            "playerA": None,
            "playerB": None,
            "sessionDate": None,
            "frameNumber": 0,
            "lastWinnerId": None,
        }

    def test_get_state_is_a_copy(self, overlay):
        overlay.update_match(*players(), "2025-08-15", 1)

        snapshot = overlay.get_state()
        snapshot.player_a.score = 99

        assert overlay.get_state().player_a.score == 0

    def test_update_score(self, overlay):
        overlay.update_match(*players(), "2025-08-15", 1)

        overlay.update_score("p1", 1, 0)

        state = overlay.get_state()
        assert state.player_a.score == 1
        assert state.player_b.score == 0
        assert state.last_winner_id == "p1"

    def test_new_match_clears_last_winner(self, overlay):
        overlay.update_match(*players(), "2025-08-15", 1)
        overlay.update_score("p1", 1, 0)

        overlay.update_match(*players(), "2025-08-15", 2)

        assert overlay.get_state().last_winner_id is None

    def test_update_full_merges_wire_fields(self, overlay):
        overlay.update_full({
            "visible": True,
            "playerA": {"id": "p1", "name": "Paddy", "score": 3},
            "frameNumber": 4,
            "unknownField": "ignored",
        })

        state = overlay.get_state()
        assert state.visible is True
        assert state.player_a == OverlayPlayer(id="p1", name="Paddy", score=3)
        assert state.frame_number == 4
        assert state.player_b is None

    @pytest.mark.parametrize("partial", [
        {"visible": True, "frameNumber": "six"},
        {"visible": True, "playerA": "Paddy"},
        {"visible": "false"},
        {"isRecording": 1},
    ])
    def test_update_full_rejects_bad_values_atomically(self, overlay, drain, partial):
        subscriber = Subscriber()
        overlay.add_client(subscriber)
        drain(subscriber)

        with pytest.raises(ValidationError):
            overlay.update_full(partial)

        state = overlay.get_state()
        assert (state.visible, state.is_recording, state.player_a) == (False, False, None)
        assert drain(subscriber) == []

    def test_update_full_broadcasts_once(self, overlay, drain):
        subscriber = Subscriber()
        overlay.add_client(subscriber)
        drain(subscriber)

        overlay.update_full({"visible": True, "isRecording": False, "frameNumber": 2})

        assert [parse(c)[0] for c in drain(subscriber)] == ["match_update"]


class TestSubscribers:
    def test_first_event_is_full_state(self, overlay, drain):
        overlay.set_visibility(True)
        subscriber = Subscriber()

        overlay.add_client(subscriber)

        (chunk,) = drain(subscriber)
        event, data = parse(chunk)
        assert event == "match_update"
        assert data == overlay.get_state().to_dict()

    def test_each_change_is_broadcast(self, overlay, drain):
        subscribers = [Subscriber(), Subscriber()]
        for s in subscribers:
            overlay.add_client(s)
            drain(s)

        overlay.update_match(*players(), "2025-08-15", 1)
        overlay.update_score("p2", 0, 1)
        overlay.set_visibility(True)
        overlay.set_recording(True)

        for s in subscribers:
            events = [parse(c)[0] for c in drain(s)]
            assert events == ["match_update", "score_update", "visibility", "recording_status"]

    def test_stalled_subscriber_is_dropped(self, overlay, drain):
        healthy = Subscriber()
        stalled = Subscriber(max_queue=1)
        overlay.add_client(healthy)
        overlay.add_client(stalled)
        assert overlay.client_count == 2

        overlay.set_visibility(True)

        assert overlay.client_count == 1
        assert stalled.closed
        events = [parse(c)[0] for c in drain(healthy)]
        assert events == ["match_update", "visibility"]

    def test_remove_client_closes_stream(self, overlay):
        subscriber = Subscriber()
        overlay.add_client(subscriber)

        overlay.remove_client(subscriber)
        overlay.remove_client(subscriber)

        assert overlay.client_count == 0
        assert list(subscriber.events(poll_interval=0.01)) == []

    def test_events_yields_queued_chunks(self, overlay):
        subscriber = Subscriber()
        overlay.add_client(subscriber)
        stream = subscriber.events(poll_interval=0.01)

        assert parse(next(stream))[0] == "match_update"
        overlay.set_visibility(True)
        assert parse(next(stream))[0] == "visibility"

    def test_format_event(self):
        assert format_event("visibility", {"visible": True}) == (
            'event: visibility\ndata: {"visible": true}\n\n'
        )


class TestHeartbeat:
    @pytest.fixture
    def overlay(self):
        overlay = OverlayBroadcaster(heartbeat_interval=0.05)
        yield overlay
        overlay.close()

    def test_runs_only_while_clients_attached(self, overlay, drain):
        assert not overlay.heartbeat_running
        subscriber = Subscriber()

        overlay.add_client(subscriber)
        assert overlay.heartbeat_running

        seen = []
        assert wait_for(lambda: seen.extend(drain(subscriber)) or KEEPALIVE in seen)

        overlay.remove_client(subscriber)
        assert not overlay.heartbeat_running

    def test_restarts_for_next_client(self, overlay, drain):
        first = Subscriber()
        overlay.add_client(first)
        overlay.remove_client(first)

        second = Subscriber()
        overlay.add_client(second)

        assert overlay.heartbeat_running
        seen = []
        assert wait_for(lambda: seen.extend(drain(second)) or KEEPALIVE in seen)
