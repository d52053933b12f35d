"""
API endpoint tests.

Uses Flask test client. Does not require a running server, a camera or
mediapipe: monitoring sessions are built with a fake feature extractor.
"""

import json
import sys
import os

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import patch

import numpy as np


def get_app_client():
    """Create Flask app and test client. Lazy to avoid import-time side effects."""
    from app import app
    app.config["TESTING"] = True
    return app.test_client()


class _NoFaceExtractor:
    def extract(self, frame):
        return []

    def is_available(self):
        return True

    def get_name(self):
        return "none"

    def close(self):
        pass


def _reset_routes_state():
    import routes
    if routes.monitoring_session is not None:
        routes.monitoring_session.close()
    routes.monitoring_session = None
    routes.store.clear()


class TestStaticRoutes(unittest.TestCase):
    """Test static and config routes."""

    def setUp(self):
        self.client = get_app_client()

    def test_favicon_returns_204(self):
        """GET /favicon.ico should return 204."""
        r = self.client.get("/favicon.ico")
        self.assertEqual(r.status_code, 204)

    def test_config_all(self):
        """GET /config/all returns grouped settings without secrets."""
        r = self.client.get("/config/all")
        self.assertEqual(r.status_code, 200)
        data = r.get_json()
        for key in ("scheduling", "alerts", "pushover", "detection", "signaling"):
            self.assertIn(key, data)
        self.assertEqual(data["alerts"]["cooldownSec"], 30.0)
        self.assertNotIn("apiToken", json.dumps(data))


class TestMonitoringRoutes(unittest.TestCase):
    """Test monitoring start/stop/state/frame."""

    def setUp(self):
        self.client = get_app_client()
        _reset_routes_state()
        self.addCleanup(_reset_routes_state)

    def _start_partner(self, session_id="s1"):
        from engagement_monitor import MonitoringSession

        def session_factory(sid, store, relay=None):
            return MonitoringSession(sid, store, relay=relay, extractor_factory=_NoFaceExtractor, synchronous_dispatch=True)

        with patch("routes.MonitoringSession", side_effect=session_factory):
            return self.client.post("/monitoring/start", json={"sessionId": session_id, "sourceType": "partner", "roomId": "r1"})

    def test_start_requires_json(self):
        r = self.client.post("/monitoring/start", data="x")
        self.assertEqual(r.status_code, 400)

    def test_start_requires_session_id(self):
        r = self.client.post("/monitoring/start", json={"sourceType": "webcam"})
        self.assertEqual(r.status_code, 400)

    def test_start_invalid_source(self):
        r = self.client.post("/monitoring/start", json={"sessionId": "s1", "sourceType": "vhs"})
        self.assertEqual(r.status_code, 400)
        self.assertIn("Invalid sourceType", r.get_json()["error"])

    def test_start_file_requires_path(self):
        r = self.client.post("/monitoring/start", json={"sessionId": "s1", "sourceType": "file"})
        self.assertEqual(r.status_code, 400)

    def test_state_before_start_is_404(self):
        self.assertEqual(self.client.get("/monitoring/state").status_code, 404)
        self.assertEqual(self.client.get("/monitoring/video-feed").status_code, 404)

    def test_partner_lifecycle(self):
        import cv2
        r = self._start_partner()
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()["success"])

        state = self.client.get("/monitoring/state").get_json()
        self.assertEqual(state["sessionId"], "s1")
        self.assertTrue(state["isRunning"])
        self.assertEqual(state["sourceType"], "partner")
        self.assertEqual(state["sample"]["totalSubjects"], 0)

        ok, buf = cv2.imencode(".jpg", np.zeros((24, 32, 3), dtype=np.uint8))
        r = self.client.post("/monitoring/frame", data=buf.tobytes(), content_type="image/jpeg")
        self.assertEqual(r.status_code, 204)
        r = self.client.post("/monitoring/frame", data=b"garbage", content_type="image/jpeg")
        self.assertEqual(r.status_code, 400)

        r = self.client.post("/monitoring/stop")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.client.get("/monitoring/state").status_code, 404)

    def test_frame_without_partner_session(self):
        r = self.client.post("/monitoring/frame", data=b"\xff\xd8", content_type="image/jpeg")
        self.assertEqual(r.status_code, 404)

    def test_stop_when_idle(self):
        r = self.client.post("/monitoring/stop")
        self.assertEqual(r.status_code, 200)


class TestAlertRoutes(unittest.TestCase):
    """Test alert settings, history and samples."""

    def setUp(self):
        self.client = get_app_client()
        _reset_routes_state()
        self.addCleanup(_reset_routes_state)

    def test_settings_require_session(self):
        self.assertEqual(self.client.get("/alerts/settings").status_code, 400)

    def test_default_settings(self):
        data = self.client.get("/alerts/settings?sessionId=s1").get_json()
        self.assertEqual(data["boredomThreshold"], 40.0)
        self.assertTrue(data["enableSound"])

    def test_put_settings_roundtrip(self):
        r = self.client.put(
            "/alerts/settings?sessionId=s1",
            json={"boredomThreshold": 25, "enablePushover": True, "pushoverApiToken": "tok", "pushoverUserKey": "usr"},
        )
        self.assertEqual(r.status_code, 200)
        data = self.client.get("/alerts/settings?sessionId=s1").get_json()
        self.assertEqual(data["boredomThreshold"], 25)
        self.assertTrue(data["enablePushover"])
        self.assertEqual(data["pushoverApiToken"], "")
        self.assertTrue(data["pushoverConfigured"])

    def test_put_invalid_settings(self):
        r = self.client.put("/alerts/settings?sessionId=s1", json={"boredomThreshold": 140})
        self.assertEqual(r.status_code, 400)
        self.assertIn("details", r.get_json())
        r = self.client.put("/alerts/settings?sessionId=s1", json={"loudness": 3})
        self.assertEqual(r.status_code, 400)

    def test_history_and_samples(self):
        import routes
        from services.alert_engine import AlertEngine
        from utils.metrics_aggregator import EngagementSample
        sample = EngagementSample(4, 1, 0, 3, 75.0, 30.0, 1700000000.0)
        routes.store.record_sample("s1", sample)
        event = AlertEngine().evaluate(sample, 0.0)
        alert_id = routes.store.record_alert("s1", event)
        routes.store.mark_alert_delivered(alert_id)

        alerts = self.client.get("/alerts/history?sessionId=s1").get_json()["alerts"]
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0]["severity"], "critical")
        self.assertTrue(alerts[0]["delivered"])

        samples = self.client.get("/sessions/s1/samples").get_json()["samples"]
        self.assertEqual(samples[0]["boredomPercentage"], 75.0)
        self.assertEqual(self.client.get("/sessions/s1/samples?limit=0").status_code, 400)


class TestSignalingRoutes(unittest.TestCase):
    """Test room creation, SSE join, signal forwarding and leave."""

    def setUp(self):
        self.client = get_app_client()

    def test_create_room(self):
        r = self.client.post("/signaling/rooms")
        self.assertEqual(r.status_code, 201)
        data = r.get_json()
        self.assertTrue(data["roomId"])
        self.assertTrue(data["phoneUrl"].endswith(f"/phone-camera?room={data['roomId']}"))

    def test_events_invalid_role(self):
        r = self.client.get("/signaling/r-bad/events?role=viewer")
        self.assertEqual(r.status_code, 400)

    def test_signal_dropped_without_peer(self):
        r = self.client.post(
            "/signaling/r-empty/signal",
            json={"type": "offer", "roomId": "r-empty", "from": "host", "payload": {}},
        )
        self.assertEqual(r.status_code, 200)
        self.assertFalse(r.get_json()["delivered"])

    def test_signal_validation(self):
        r = self.client.post("/signaling/r1/signal", json={"type": "bogus", "from": "host"})
        self.assertEqual(r.status_code, 400)
        r = self.client.post("/signaling/r1/signal", json={"type": "offer", "from": "host", "roomId": "other"})
        self.assertEqual(r.status_code, 400)

    def test_host_stream_receives_phone_answer(self):
        import routes
        room = "r-stream"
        r = self.client.get(f"/signaling/{room}/events?role=host")
        self.assertEqual(r.status_code, 200)
        self.assertIn("text/event-stream", r.content_type)
        chunks = r.iter_encoded()
        first = next(chunks)
        self.assertIn(b"event: connected", first)
        self.assertTrue(routes.relay.has_room(room))

        answer = {"type": "answer", "roomId": room, "from": "phone", "payload": {"sdp": "v=0"}}
        r2 = self.client.post(f"/signaling/{room}/signal", json=answer)
        self.assertTrue(r2.get_json()["delivered"])
        second = next(chunks)
        self.assertIn(b"event: signal", second)
        self.assertIn(b'"sdp": "v=0"', second)
        r.close()
        routes.relay.leave(room, "host")

    def test_unread_stream_never_joins(self):
        """A client that disconnects before the first event leaves no socket behind."""
        import routes
        from app import app
        room = "r-dropped"
        with app.test_request_context(f"/signaling/{room}/events?role=phone"):
            response = routes.signaling_events(room)
            self.assertEqual(response.status_code, 200)
            self.assertFalse(routes.relay.has_room(room))
            response.close()
        self.assertFalse(routes.relay.has_room(room))

    def test_explicit_leave(self):
        import routes
        from services.signaling_relay import MailboxSocket
        routes.relay.join("r-leave", "phone", MailboxSocket())
        r = self.client.post("/signaling/r-leave/leave", json={"role": "phone"})
        self.assertTrue(r.get_json()["left"])
        self.assertFalse(routes.relay.has_room("r-leave"))
        r = self.client.post("/signaling/r-leave/leave", json={"role": "nobody"})
        self.assertEqual(r.status_code, 400)


if __name__ == "__main__":
    unittest.main()
