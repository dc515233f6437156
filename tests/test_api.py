import base64

import pytest

from rackup_obs.device.simulation import PLACEHOLDER_JPEG

FRAME_12 = "2025/08/2025-08-15_2035_Paddy-vs-Mick_Frame012.mkv"


def transition(client, frame=1, **overrides):
    body = {
        "player1": "Paddy",
        "player2": "Mick",
        "score": "0-0",
        "sessionDate": "2025-08-15",
        "frameNumber": frame,
    }
    body.update(overrides)
    return client.post("/api/recording/transition", json=body)


class TestDevice:
    def test_status(self, client):
        response = client.get("/api/device/status")

        assert response.status_code == 200
        assert response.get_json() == {"connected": True, "recording": False, "recordingDuration": 0}

    def test_status_when_disconnected(self, client, device):
        device.disconnect()

        response = client.get("/api/device/status")

        assert response.status_code == 500
        assert "not connected" in response.get_json()["error"]

    def test_screenshot(self, client):
        data = client.get("/api/device/screenshot").get_json()

        assert data["mimeType"] == "image/jpeg"
        assert base64.b64decode(data["imageData"]) == PLACEHOLDER_JPEG

    def test_overlay_text(self, client, device):
        response = client.post("/api/device/overlay-text", json={
            "player1": "Paddy", "player2": "Mick", "score": "3-2", "date": "2025-08-15",
        })

        assert response.get_json() == {"success": True}
        assert device.overlay_text == "Paddy vs Mick | 3-2 | 2025-08-15"

    def test_overlay_text_missing_fields(self, client):
        response = client.post("/api/device/overlay-text", json={"player1": "Paddy"})
        assert response.status_code == 400


class TestRecordingControl:
    def test_start_and_stop(self, client, device):
        response = client.post("/api/recording/start", json={"filename": "warmup.mkv"})
        assert response.get_json() == {"success": True, "message": "Recording started: warmup.mkv"}

        response = client.post("/api/recording/stop")

        assert response.status_code == 200
        assert response.get_json()["filePath"] == device.started[0]

    def test_start_while_recording(self, client):
        client.post("/api/recording/start")
        assert client.post("/api/recording/start").status_code == 409

    def test_start_outside_recordings(self, client, tmp_path):
        response = client.post("/api/recording/start", json={"directory": str(tmp_path)})
        assert response.status_code == 403

    def test_start_rejects_path_in_filename(self, client):
        response = client.post("/api/recording/start", json={"filename": "../../../escape.mkv"})

        assert response.status_code == 403
        assert client.get("/api/device/status").get_json()["recording"] is False

    def test_stop_when_idle(self, client):
        response = client.post("/api/recording/stop", json={})
        assert response.status_code == 500
        assert "not recording" in response.get_json()["error"]

    def test_stop_ignores_unknown_flags(self, client, tasks):
        transition(client, frame=4)

        response = client.post("/api/recording/stop", json={"flags": ["foul", "scratch"]})
        assert response.status_code == 200
        assert tasks.join(timeout=2.0)

        (recording,) = client.get("/api/recordings").get_json()["recordings"]
        assert recording["flags"] == ["foul"]

    def test_discard(self, client, tasks):
        client.post("/api/recording/start")

        assert client.post("/api/recording/discard").get_json() == {"success": True}
        assert tasks.join(timeout=2.0)
        assert client.get("/api/recordings").get_json() == {"recordings": []}

    def test_transition_sequence(self, client):
        first = transition(client, frame=1, player1Nickname="The Hammer")
        assert first.get_json() == {"success": True, "videoFilePath": None}

        second = transition(client, frame=2)
        assert second.get_json()["videoFilePath"].endswith("_Paddy-vs-Mick_Frame001.mkv")

    def test_transition_requires_fields(self, client):
        response = client.post("/api/recording/transition", json={"player1": "Paddy"})

        assert response.status_code == 400
        assert "Missing fields" in response.get_json()["error"]

    def test_transition_bad_frame_number(self, client):
        assert transition(client, frame="twelve").status_code == 400
        assert transition(client, frame=0).status_code == 400

    def test_review_then_resume(self, client):
        transition(client, frame=3)

        review = client.post("/api/recording/review").get_json()
        assert review["videoFilePath"].startswith("2025/08/")
        assert review["videoFilePath"].endswith("_Frame003.mkv")

        resume = client.post("/api/recording/resume", json={
            "player1": "Paddy", "player2": "Mick", "sessionDate": "2025-08-15", "frameNumber": 3,
        })
        assert resume.get_json() == {"success": True, "segment": 2}


class TestRecordings:
    def test_listing(self, client, make_recording):
        make_recording(FRAME_12, size=10)

        recordings = client.get("/api/recordings").get_json()["recordings"]

        assert [r["relativePath"] for r in recordings] == [FRAME_12]
        assert recordings[0]["frameNumber"] == 12

    def test_stream_range(self, client, make_recording):
        make_recording(FRAME_12, size=1000)

        response = client.get(
            "/api/recordings/stream",
            query_string={"path": FRAME_12},
            headers={"Range": "bytes=0-99"},
        )

        assert response.status_code == 206
        assert response.headers["Content-Range"] == "bytes 0-99/1000"
        assert response.headers["Accept-Ranges"] == "bytes"
        assert response.headers["Content-Type"] == "video/x-matroska"
        assert len(response.data) == 100

    def test_stream_whole_file(self, client, make_recording):
        make_recording(FRAME_12, size=1000)

        response = client.get("/api/recordings/stream", query_string={"path": FRAME_12})

        assert response.status_code == 200
        assert len(response.data) == 1000

    @pytest.mark.parametrize("path, status", [
        ("../secrets.mkv", 403),
        ("2025/08/notes.txt", 400),
        ("2025/08/missing.mkv", 404),
    ])
    def test_stream_errors(self, client, path, status):
        response = client.get("/api/recordings/stream", query_string={"path": path})
        assert response.status_code == status

    def test_stream_active_recording(self, client, orchestrator):
        client.post("/api/recording/start", json={"filename": "live.mkv"})

        response = client.get(
            "/api/recordings/stream", query_string={"path": orchestrator.active_path}
        )

        assert response.status_code == 409

    def test_flag_edit(self, client, make_recording):
        make_recording(FRAME_12)

        response = client.post(
            "/api/recordings/flag", json={"relativePath": FRAME_12, "flags": ["foul", "brush"]}
        )

        assert response.status_code == 200
        assert response.get_json()["relativePath"] == (
            "2025/08/2025-08-15_2035_Paddy-vs-Mick_Frame012[brush][foul].mkv"
        )

    def test_flag_edit_unknown_flag(self, client, make_recording):
        original = make_recording(FRAME_12)

        response = client.post(
            "/api/recordings/flag", json={"relativePath": FRAME_12, "flags": ["scratch"]}
        )

        assert response.status_code == 400
        assert response.get_json() == {"error": "Unknown flag: scratch"}
        assert original.is_file()

    def test_flag_edit_missing_file(self, client):
        response = client.post("/api/recordings/flag", json={"relativePath": FRAME_12, "flags": []})
        assert response.status_code == 404

    def test_flag_edit_active_recording(self, client, orchestrator):
        transition(client, frame=1)

        response = client.post(
            "/api/recordings/flag",
            json={"relativePath": orchestrator.active_path, "flags": ["brush"]},
        )

        assert response.status_code == 409

    def test_flag_edit_active_recording_unnormalized_path(self, client, orchestrator):
        transition(client, frame=1)

        response = client.post(
            "/api/recordings/flag",
            json={"relativePath": "./" + orchestrator.active_path, "flags": ["brush"]},
        )

        assert response.status_code == 409
        assert client.get("/api/recordings").get_json() == {"recordings": []}


class TestOverlay:
    def test_state(self, client):
        assert client.get("/api/overlay/state").get_json()["visible"] is False

    def test_match_score_visibility(self, client):
        client.post("/api/overlay/match", json={
            "playerA": {"id": "p1", "name": "Paddy", "score": 0},
            "playerB": {"id": "p2", "name": "Mick", "nickname": "Slim", "score": 0},
            "sessionDate": "2025-08-15",
            "frameNumber": 1,
        })
        client.post("/api/overlay/score", json={"winnerId": "p2", "playerAScore": 0, "playerBScore": 1})
        client.post("/api/overlay/visibility", json={"visible": True})

        state = client.get("/api/overlay/state").get_json()

        assert state["visible"] is True
        assert state["playerB"] == {"id": "p2", "name": "Mick", "nickname": "Slim", "score": 1}
        assert state["lastWinnerId"] == "p2"
        assert state["frameNumber"] == 1

    def test_partial_update(self, client):
        response = client.post("/api/overlay/update", json={"visible": True, "frameNumber": 6})

        assert response.get_json() == {"success": True}
        state = client.get("/api/overlay/state").get_json()
        assert (state["visible"], state["frameNumber"]) == (True, 6)

    @pytest.mark.parametrize("body", [
        {"visible": True, "frameNumber": "six"},
        {"visible": True, "playerA": "Paddy"},
        {"visible": "false"},
    ])
    def test_partial_update_rejects_bad_values(self, client, body):
        response = client.post("/api/overlay/update", json=body)

        assert response.status_code == 400
        assert "error" in response.get_json()
        state = client.get("/api/overlay/state").get_json()
        assert (state["visible"], state["frameNumber"], state["playerA"]) == (False, 0, None)

    def test_score_requires_integers(self, client):
        response = client.post(
            "/api/overlay/score", json={"winnerId": "p1", "playerAScore": "x", "playerBScore": 0}
        )
        assert response.status_code == 400

    def test_recording_reflected_in_state(self, client):
        client.post("/api/recording/start")
        assert client.get("/api/overlay/state").get_json()["isRecording"] is True

    def test_event_stream(self, client, overlay):
        response = client.get("/api/overlay/events", buffered=False)

        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"
        assert response.headers["Cache-Control"] == "no-cache"
        assert overlay.client_count == 1

        stream = iter(response.response)
        first = next(stream)
        if isinstance(first, bytes):
            first = first.decode()
        assert first.startswith("event: match_update\ndata: ")

        response.close()
        assert overlay.client_count == 0


class TestServer:
    def test_health(self, client):
        data = client.get("/api/health").get_json()

        assert data["status"] == "ok"
        assert data["device"] == {"type": "simulation", "state": "connected"}
        assert data["recording"] == "idle"
        assert "free_gb" in data["storage"]

    def test_cors_allows_localhost(self, client):
        response = client.get("/api/overlay/state", headers={"Origin": "http://localhost:5173"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    def test_cors_rejects_other_origins(self, client):
        response = client.get("/api/overlay/state", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_error_body_is_json(self, client):
        response = client.post("/api/recordings/flag", data="not json", content_type="text/plain")

        assert response.status_code == 400
        assert response.get_json() == {"error": "Request body required"}
