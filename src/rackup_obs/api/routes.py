"""
REST API routes for RackUp OBS.

Base path: /api (configurable)
"""

import base64
import logging
from datetime import datetime
from typing import Any, Dict, Iterable

from flask import Blueprint, Response, jsonify, request, send_file

from rackup_obs.errors import (
    RackupError,
    RecordingActiveError,
    RecordingNotFoundError,
    ValidationError,
)
from rackup_obs.overlay.broadcaster import OverlayPlayer, Subscriber

logger = logging.getLogger(__name__)


def create_api_blueprint(app_context):
    """
    Create Flask blueprint with all API routes.

    Args:
        app_context: RackupApp (or any object exposing the same services)

    Returns:
        Flask Blueprint
    """
    base_path = app_context.config.server.api_base_path
    api = Blueprint("api", __name__, url_prefix=base_path)

    def get_device():
        return app_context.device

    def get_orchestrator():
        return app_context.orchestrator

    def get_library():
        return app_context.library

    def get_overlay():
        return app_context.overlay

    @api.errorhandler(RackupError)
    def handle_rackup_error(e: RackupError):
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {e}")
        return jsonify({"error": str(e)}), e.status_code

    # =========================================================================
    # Health
    # =========================================================================

    @api.route("/health", methods=["GET"])
    def health_check():
        """Simple health check endpoint."""
        device = get_device()
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "device": {
                "type": app_context.config.obs.device,
                "state": device.state.value,
            },
            "recording": get_orchestrator().state.value,
            "storage": get_library().get_status(),
        })

    # =========================================================================
    # Device Endpoints
    # =========================================================================

    @api.route("/device/status", methods=["GET"])
    def device_status():
        """Whether the device is connected and recording."""
        return jsonify(get_device().get_status().to_dict())

    @api.route("/device/screenshot", methods=["GET"])
    def device_screenshot():
        """Still of the current program output, base64-encoded JPEG."""
        image = get_device().get_screenshot()
        return jsonify({
            "imageData": base64.b64encode(image).decode("ascii"),
            "mimeType": "image/jpeg",
        })

    @api.route("/device/overlay-text", methods=["POST"])
    def device_overlay_text():
        """
        Push a scoreline onto the device's text overlay.

        Request body:
        {
            "player1": "string",
            "player2": "string",
            "score": "string",
            "date": "string"
        }
        """
        data = _json_body()
        _require_fields(data, ["player1", "player2", "score", "date"])

        get_orchestrator().set_overlay_text(
            str(data["player1"]), str(data["player2"]), str(data["score"]), str(data["date"])
        )
        return jsonify({"success": True})

    # =========================================================================
    # Recording Control
    # =========================================================================

    @api.route("/recording/start", methods=["POST"])
    def start_recording():
        """
        Start recording.

        Request body (optional):
        {
            "filename": "string",
            "directory": "absolute path inside the recordings directory"
        }
        """
        data = _json_body(required=False)
        filename = get_orchestrator().start(
            filename=data.get("filename"),
            directory=data.get("directory"),
        )
        return jsonify({"success": True, "message": f"Recording started: {filename}"})

    @api.route("/recording/stop", methods=["POST"])
    def stop_recording():
        """
        Stop recording.

        Request body (optional):
        {
            "flags": ["brush", "foul"]
        }

        Unknown flags are ignored.
        """
        data = _json_body(required=False)
        flags = data.get("flags") or []
        if not isinstance(flags, list):
            logger.warning(f"Ignoring non-list flags on stop: {flags!r}")
            flags = []

        file_path = get_orchestrator().stop([str(f) for f in flags])
        return jsonify({"success": True, "filePath": file_path})

    @api.route("/recording/discard", methods=["POST"])
    def discard_recording():
        """Stop recording and delete the file once finalized."""
        get_orchestrator().discard()
        return jsonify({"success": True})

    @api.route("/recording/transition", methods=["POST"])
    def transition_recording():
        """
        Stop the current frame's recording and start the next.

        Request body:
        {
            "player1": "string",
            "player2": "string",
            "player1Nickname": "string (optional)",
            "player2Nickname": "string (optional)",
            "score": "string",
            "sessionDate": "ISO date",
            "frameNumber": int
        }
        """
        data = _json_body()
        _require_fields(data, ["player1", "player2", "score", "sessionDate", "frameNumber"])

        stopped = get_orchestrator().transition(
            player1=str(data["player1"]),
            player2=str(data["player2"]),
            score=str(data["score"]),
            session_date=str(data["sessionDate"]),
            frame_number=_frame_number(data["frameNumber"]),
            player1_nickname=data.get("player1Nickname"),
            player2_nickname=data.get("player2Nickname"),
        )
        return jsonify({"success": True, "videoFilePath": stopped})

    @api.route("/recording/review", methods=["POST"])
    def review_recording():
        """Stop for review; the recording is not restarted."""
        relative_path = get_orchestrator().review()
        return jsonify({"videoFilePath": relative_path})

    @api.route("/recording/resume", methods=["POST"])
    def resume_recording():
        """
        Continue a frame in a new segment.

        Request body:
        {
            "player1": "string",
            "player2": "string",
            "sessionDate": "ISO date",
            "frameNumber": int
        }
        """
        data = _json_body()
        _require_fields(data, ["player1", "player2", "sessionDate", "frameNumber"])

        segment = get_orchestrator().resume(
            player1=str(data["player1"]),
            player2=str(data["player2"]),
            session_date=str(data["sessionDate"]),
            frame_number=_frame_number(data["frameNumber"]),
        )
        return jsonify({"success": True, "segment": segment})

    # =========================================================================
    # Recordings
    # =========================================================================

    @api.route("/recordings", methods=["GET"])
    def list_recordings():
        """List finished recordings, newest first."""
        recordings = get_orchestrator().list_recordings()
        return jsonify({"recordings": [r.to_dict() for r in recordings]})

    @api.route("/recordings/stream", methods=["GET"])
    def stream_recording():
        """
        Stream a recording, honouring Range requests.

        Query params:
        - path: path relative to the recordings directory
        """
        library = get_library()
        relative_path = request.args.get("path", "")

        file_path = library.resolve(relative_path)
        mimetype = library.require_video(file_path)
        if not file_path.is_file():
            raise RecordingNotFoundError(f"Recording not found: {relative_path}")
        if library.relative(file_path) == get_orchestrator().active_path:
            raise RecordingActiveError("Recording still in progress")

        return send_file(file_path, mimetype=mimetype, conditional=True)

    @api.route("/recordings/flag", methods=["POST"])
    def flag_recording():
        """
        Replace a recording's flags.

        Request body:
        {
            "relativePath": "2025/08/...mkv",
            "flags": ["brush"]
        }
        """
        data = _json_body()
        _require_fields(data, ["relativePath", "flags"])
        flags = data["flags"]
        if not isinstance(flags, list) or not all(isinstance(f, str) for f in flags):
            raise ValidationError("flags must be a list of strings")

        meta = get_orchestrator().edit_flags(str(data["relativePath"]), flags)
        return jsonify(meta.to_dict())

    # =========================================================================
    # Overlay
    # =========================================================================

    @api.route("/overlay/state", methods=["GET"])
    def overlay_state():
        return jsonify(get_overlay().get_state().to_dict())

    @api.route("/overlay/events", methods=["GET"])
    def overlay_events():
        """Server-Sent-Events stream of overlay changes."""
        overlay = get_overlay()
        subscriber = Subscriber(app_context.config.overlay.subscriber_queue_size)
        overlay.add_client(subscriber)

        def generate():
            try:
                yield from subscriber.events()
            finally:
                overlay.remove_client(subscriber)

        return Response(
            generate(),
            mimetype="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    @api.route("/overlay/update", methods=["POST"])
    def overlay_update():
        """Merge arbitrary overlay fields (wire names) into the state."""
        get_overlay().update_full(_json_body())
        return jsonify({"success": True})

    @api.route("/overlay/match", methods=["POST"])
    def overlay_match():
        """
        Set the players and frame shown on the overlay.

        Request body:
        {
            "playerA": {"id", "name", "nickname"?, "emoji"?, "score"},
            "playerB": {...},
            "sessionDate": "ISO date",
            "frameNumber": int
        }
        """
        data = _json_body()
        get_overlay().update_match(
            _player(data.get("playerA")),
            _player(data.get("playerB")),
            data.get("sessionDate"),
            _frame_number(data.get("frameNumber", 0), minimum=0),
        )
        return jsonify({"success": True})

    @api.route("/overlay/score", methods=["POST"])
    def overlay_score():
        """
        Record a frame win.

        Request body:
        {
            "winnerId": "string",
            "playerAScore": int,
            "playerBScore": int
        }
        """
        data = _json_body()
        _require_fields(data, ["winnerId", "playerAScore", "playerBScore"])
        try:
            score_a = int(data["playerAScore"])
            score_b = int(data["playerBScore"])
        except (TypeError, ValueError):
            raise ValidationError("Scores must be integers")

        get_overlay().update_score(str(data["winnerId"]), score_a, score_b)
        return jsonify({"success": True})

    @api.route("/overlay/visibility", methods=["POST"])
    def overlay_visibility():
        """Show or hide the overlay. Request body: {"visible": bool}"""
        data = _json_body()
        _require_fields(data, ["visible"])
        get_overlay().set_visibility(bool(data["visible"]))
        return jsonify({"success": True})

    return api


# =============================================================================
# Helper Functions
# =============================================================================

def _json_body(required: bool = True) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise ValidationError("Request body required")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        raise ValidationError(f"Missing fields: {missing}")


def _frame_number(value: Any, minimum: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid frameNumber: {value!r}")
    if number < minimum:
        raise ValidationError(f"frameNumber must be at least {minimum}")
    return number


def _player(data: Any):
    if data is not None and not isinstance(data, dict):
        raise ValidationError("Player must be an object")
    try:
        return OverlayPlayer.from_dict(data)
    except (TypeError, ValueError):
        raise ValidationError("Invalid player")
