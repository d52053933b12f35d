"""
Flask routes for Fidget Index.

Handles config, monitoring start/stop/state/frame/video-feed, per-session alert
settings and history, engagement samples, and the phone camera signaling relay
(room creation, SSE event stream, signal forwarding, leave).
"""

import json
import logging
import threading
from typing import Optional

from flask import Blueprint, Response, jsonify, request

import config
from engagement_monitor import MonitoringSession
from services.alert_engine import AlertSettings
from services.engagement_store import InMemoryEngagementStore
from services.signaling_relay import (
    MailboxSocket,
    SignalingRelay,
    build_phone_url,
    generate_room_id,
    validate_role,
)
from utils.video_source_handler import VideoSourceType

logger = logging.getLogger(__name__)

# Create a blueprint for better organization
api = Blueprint('api', __name__)

# Process-wide collaborators shared by every request
store = InMemoryEngagementStore()
relay = SignalingRelay()

# The active monitoring session (one video source at a time)
monitoring_session = None  # type: Optional[MonitoringSession]
_session_lock = threading.Lock()

SOURCE_TYPES = {
    "webcam": VideoSourceType.WEBCAM,
    "file": VideoSourceType.FILE,
    "stream": VideoSourceType.STREAM,
    "partner": VideoSourceType.PARTNER,
}


def register_routes(app) -> None:
    """Attach every route in this module to the Flask app."""
    app.register_blueprint(api)


def _error(message: str, status: int, details: Optional[str] = None):
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return jsonify(body), status


def _session_id_arg() -> Optional[str]:
    return (request.args.get("sessionId") or "").strip() or None


def _limit_arg() -> Optional[int]:
    raw = request.args.get("limit")
    if raw is None:
        return None
    limit = int(raw)
    if limit <= 0:
        raise ValueError("limit must be positive")
    return limit


@api.route("/favicon.ico")
def favicon():
    return "", 204


# ============================================================================
# Configuration Routes
# ============================================================================

@api.route("/config/all", methods=["GET"])
def get_all_config():
    """Non-secret server configuration for the dashboard."""
    try:
        return jsonify(config.build_config_response())
    except Exception as e:
        return _error("Failed to get configuration", 500, str(e))


# ============================================================================
# Monitoring Routes
# ============================================================================

@api.route("/monitoring/start", methods=["POST"])
def start_monitoring():
    """
    Start engagement monitoring for a session.

    Request Body:
        {
            "sessionId": "session-1",
            "sourceType": "webcam" | "file" | "stream" | "partner",
            "sourcePath": "path or URL for file/stream",
            "roomId": "signaling room of the phone camera (partner)"
        }

    Returns:
        JSON: {"success": true, "sessionId": ..., "sourceType": ...}
    """
    global monitoring_session

    if not request.is_json:
        return _error("Request must be JSON", 400)

    data = request.get_json(silent=True) or {}
    session_id = str(data.get("sessionId") or "").strip()
    if not session_id:
        return _error("Missing sessionId", 400)

    source_type_str = str(data.get("sourceType") or "webcam").lower()
    source_type = SOURCE_TYPES.get(source_type_str)
    if not source_type:
        return _error(
            f"Invalid sourceType: {source_type_str}. Must be 'webcam', 'file', 'stream', or 'partner'", 400
        )
    source_path = data.get("sourcePath")
    room_id = data.get("roomId")
    if source_type == VideoSourceType.FILE and not source_path:
        return _error("sourcePath is required for file sources", 400)
    # Partner frames are pushed via POST /monitoring/frame; no path is used
    if source_type == VideoSourceType.PARTNER:
        source_path = None

    try:
        with _session_lock:
            if monitoring_session is not None:
                monitoring_session.close()
                monitoring_session = None
            session = MonitoringSession(session_id, store, relay=relay)
            if not session.start_monitoring(source_type, source_path, room_id=room_id):
                session.close()
                return _error("Failed to start monitoring. Check video source.", 500)
            monitoring_session = session

        return jsonify({
            "success": True,
            "message": f"Monitoring started from {source_type_str}",
            "sessionId": session_id,
            "sourceType": source_type_str,
            "roomId": room_id,
        })
    except Exception as e:
        logger.exception("Failed to start monitoring")
        return _error("Failed to start monitoring", 500, str(e))


@api.route("/monitoring/stop", methods=["POST"])
def stop_monitoring():
    global monitoring_session

    try:
        with _session_lock:
            if monitoring_session is not None:
                monitoring_session.close()
                monitoring_session = None
        return jsonify({"success": True, "message": "Monitoring stopped"})
    except Exception as e:
        return _error("Failed to stop monitoring", 500, str(e))


@api.route("/monitoring/state", methods=["GET"])
def get_monitoring_state():
    """
    Current engagement state of the active session.

    Returns:
        JSON: {
            "sessionId": "...",
            "isRunning": true,
            "sample": {"totalSubjects": 4, "boredCount": 1, "boredomPercentage": 25.0, ...},
            "subjects": [{"box": [...], "engagementScore": 70.0, "classification": "engaged", ...}],
            "alert": {"severity": "warning", "inCooldown": true},
            "visual": {"active": true, "severity": "warning", "message": "..."},
            "cues": [{"kind": "sound", "frequencyHz": 660, ...}]
        }
        Pending cues are returned once and then cleared.
    """
    session = monitoring_session
    if session is None:
        return _error("Monitoring not started", 404)
    try:
        return jsonify(session.get_current_state())
    except Exception as e:
        return _error("Failed to get monitoring state", 500, str(e))


@api.route("/monitoring/frame", methods=["POST"])
def monitoring_frame():
    """
    Receive one frame from the host browser for the partner (phone) source.
    Expects a raw JPEG body or multipart/form-data with an image file.
    """
    session = monitoring_session
    if session is None or session.source_type != VideoSourceType.PARTNER:
        return _error("Partner monitoring not started", 404)
    try:
        data = request.get_data()
        if not data and request.files:
            f = request.files.get("frame") or request.files.get("image") or next(iter(request.files.values()), None)
            if f:
                data = f.read()
        if not data:
            return _error("No image data", 400)
        if not session.push_partner_frame(data):
            return _error("Invalid or unsupported image", 400)
        return "", 204
    except Exception as e:
        return _error("Failed to process frame", 500, str(e))


@api.route("/monitoring/video-feed", methods=["GET"])
def monitoring_video_feed():
    """
    Stream the presented frames of the active session as MJPEG.

    Returns 404 when monitoring is not running.
    """
    session = monitoring_session
    if session is None or not session.is_running:
        return _error("Monitoring not started", 404)

    boundary = b"frame"
    stop_event = threading.Event()
    interval = 1.0 / max(1, min(30, config.FRAME_REFRESH_HZ))

    def generate():
        while session.is_running:
            jpeg = session.get_last_frame_jpeg()
            if jpeg:
                yield (
                    b"--" + boundary + b"\r\n"
                    b"Content-Type: image/jpeg\r\n"
                    b"Content-Length: " + str(len(jpeg)).encode() + b"\r\n\r\n"
                    + jpeg + b"\r\n"
                )
            stop_event.wait(interval)

    return Response(
        generate(),
        mimetype="multipart/x-mixed-replace; boundary=frame",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================================
# Alert and Sample Routes
# ============================================================================

@api.route("/alerts/settings", methods=["GET", "PUT"])
def alert_settings_route():
    """
    GET: alert settings of a session (defaults if never saved).
    PUT: update some or all settings; body uses the same camelCase keys as GET.
         The Pushover API token is write-only and never returned.
    """
    session_id = _session_id_arg()
    if not session_id:
        return _error("Missing sessionId", 400)

    try:
        current = store.load_alert_settings(session_id) or AlertSettings()
        if request.method == "GET":
            return jsonify(current.to_dict())

        if not request.is_json:
            return _error("Request must be JSON", 400)
        updated = AlertSettings.from_dict(request.get_json(silent=True), base=current)
        session = monitoring_session
        if session is not None and session.session_id == session_id:
            session.update_settings(updated)
        else:
            store.save_alert_settings(session_id, updated)
        return jsonify(updated.to_dict())
    except ValueError as e:
        return _error("Invalid alert settings", 400, str(e))
    except Exception as e:
        return _error("Failed to handle alert settings", 500, str(e))


@api.route("/alerts/history", methods=["GET"])
def alert_history():
    """Alerts raised for a session, oldest first, with their delivered flag."""
    session_id = _session_id_arg()
    if not session_id:
        return _error("Missing sessionId", 400)
    try:
        return jsonify({"sessionId": session_id, "alerts": store.get_alerts(session_id, _limit_arg())})
    except ValueError as e:
        return _error("Invalid request", 400, str(e))
    except Exception as e:
        return _error("Failed to get alert history", 500, str(e))


@api.route("/sessions/<session_id>/samples", methods=["GET"])
def session_samples(session_id):
    """Persisted engagement samples (one per emission interval), oldest first."""
    try:
        samples = store.get_samples(session_id, _limit_arg())
        return jsonify({"sessionId": session_id, "samples": [s.to_dict() for s in samples]})
    except ValueError as e:
        return _error("Invalid request", 400, str(e))
    except Exception as e:
        return _error("Failed to get samples", 500, str(e))


# ============================================================================
# Signaling Routes (phone camera)
# ============================================================================

def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@api.route("/signaling/rooms", methods=["POST"])
def create_signaling_room():
    """
    Allocate a room id for pairing a phone camera.

    Returns:
        JSON: {"roomId": "...", "phoneUrl": "{base}/phone-camera?room=..."}
    """
    room_id = generate_room_id()
    return jsonify({"roomId": room_id, "phoneUrl": build_phone_url(room_id)}), 201


@api.route("/signaling/<room_id>", methods=["GET"])
def signaling_room_status(room_id):
    return jsonify({"roomId": room_id, "exists": relay.has_room(room_id), "occupants": relay.occupants(room_id)})


@api.route("/signaling/<room_id>/events", methods=["GET"])
def signaling_events(room_id):
    """
    Server-Sent Events stream for one peer. Opening the stream joins the room
    under ?role=host|phone; closing it leaves the room. Events: connected,
    peer-joined, peer-left, signal.
    """
    try:
        role = validate_role((request.args.get("role") or "").lower())
    except ValueError as e:
        return _error("Invalid role", 400, str(e))

    socket = MailboxSocket()
    keepalive = config.SIGNALING_KEEPALIVE_SEC

    def generate():
        # Join only once the stream is being consumed so the finally below always runs
        try:
            relay.join(room_id, role, socket)
            yield _sse("connected", {"roomId": room_id, "role": role})
            # A later join for the same role replaces this socket; the stream then ends
            while relay.is_attached(room_id, role, socket):
                item = socket.receive(timeout=keepalive)
                if item is None:
                    yield ": keep-alive\n\n"
                    continue
                event, data = item
                yield _sse(event, data)
        finally:
            socket.close()
            relay.leave(room_id, role, socket)

    return Response(
        generate(),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no'
        }
    )


@api.route("/signaling/<room_id>/signal", methods=["POST"])
def signaling_signal(room_id):
    """
    Forward a signaling message to the other peer of the room.

    Request Body:
        {"type": "offer" | "answer" | "ice-candidate", "roomId": "...", "from": "host" | "phone", "payload": {...}}

    Returns:
        JSON: {"delivered": bool}. false means no peer was there to receive it.
    """
    if not request.is_json:
        return _error("Request must be JSON", 400)
    message = request.get_json(silent=True)
    if not isinstance(message, dict):
        return _error("Invalid signal message", 400)
    if message.get("roomId", room_id) != room_id:
        return _error("Invalid signal message", 400, "roomId does not match the URL")
    try:
        delivered = relay.relay(room_id, str(message.get("from") or "").lower(), message)
        return jsonify({"delivered": delivered})
    except ValueError as e:
        return _error("Invalid signal message", 400, str(e))


@api.route("/signaling/<room_id>/leave", methods=["POST"])
def signaling_leave(room_id):
    """Explicit leave: {"role": "host" | "phone"}."""
    data = request.get_json(silent=True) or {}
    try:
        left = relay.leave(room_id, validate_role(str(data.get("role") or "").lower()))
        return jsonify({"success": True, "left": left})
    except ValueError as e:
        return _error("Invalid role", 400, str(e))
