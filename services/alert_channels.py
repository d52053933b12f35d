"""
Alert delivery channels.

Sound, vibration and the visual banner are rendered by the dashboard in the
browser, so their channels post cues to a ClientCueBoard that the dashboard
drains through GET /monitoring/state. Pushover is server-side and goes out over
HTTP with requests.

Every channel implements attempt(severity, message) -> bool: True means the
channel confirmed delivery (cue queued, push accepted).
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

import config
from services.alert_engine import AlertSettings, Severity

logger = logging.getLogger(__name__)

PUSHOVER_TITLE = "Fidget Index Alert"
PUSHOVER_TIMEOUT_SEC = 10


@dataclass(frozen=True)
class ToneSpec:
    frequency_hz: int
    duration_ms: int
    beeps: int


TONES = {
    Severity.CRITICAL: ToneSpec(frequency_hz=880, duration_ms=500, beeps=2),
    Severity.WARNING: ToneSpec(frequency_hz=660, duration_ms=300, beeps=1),
}

VIBRATION_PATTERNS = {
    Severity.CRITICAL: [500, 100, 500, 100, 500],
    Severity.WARNING: [300, 100, 300],
}


class ClientCueBoard:
    """Thread-safe queue of cues for the dashboard. Oldest cues drop when full."""

    def __init__(self, maxlen: int = 50):
        self._cues: deque = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def post(self, cue: Dict[str, Any]) -> None:
        with self._lock:
            self._cues.append(dict(cue))

    def drain(self) -> List[Dict[str, Any]]:
        """Return and remove every pending cue."""
        with self._lock:
            cues = list(self._cues)
            self._cues.clear()
        return cues

    def clear(self) -> None:
        with self._lock:
            self._cues.clear()


class AlertChannel(ABC):
    name = "channel"

    @abstractmethod
    def attempt(self, severity: Severity, message: str = "") -> bool:
        pass


class SoundChannel(AlertChannel):
    name = "sound"

    def __init__(self, cue_board: ClientCueBoard):
        self.cue_board = cue_board

    def attempt(self, severity: Severity, message: str = "") -> bool:
        tone = TONES[severity]
        self.cue_board.post({
            "kind": "sound",
            "severity": severity.value,
            "frequencyHz": tone.frequency_hz,
            "durationMs": tone.duration_ms,
            "beeps": tone.beeps,
        })
        return True


class VibrationChannel(AlertChannel):
    name = "vibration"

    def __init__(self, cue_board: ClientCueBoard):
        self.cue_board = cue_board

    def attempt(self, severity: Severity, message: str = "") -> bool:
        self.cue_board.post({
            "kind": "vibration",
            "severity": severity.value,
            "pattern": list(VIBRATION_PATTERNS[severity]),
        })
        return True


class VisualChannel(AlertChannel):
    """
    On-screen alert banner. The flag stays raised for display_sec after the
    last alert, then reads as inactive.
    """
    name = "visual"

    def __init__(self, display_sec: float = None, clock=time.monotonic):
        self.display_sec = float(config.ALERT_COOLDOWN_SEC if display_sec is None else display_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._severity: Optional[Severity] = None
        self._message = ""
        self._raised_at: Optional[float] = None

    def attempt(self, severity: Severity, message: str = "") -> bool:
        with self._lock:
            self._severity = severity
            self._message = message
            self._raised_at = self._clock()
        return True

    def state(self) -> Dict[str, Any]:
        with self._lock:
            active = self._raised_at is not None and self._clock() - self._raised_at < self.display_sec
            return {
                "active": active,
                "severity": self._severity.value if active and self._severity else None,
                "message": self._message if active else "",
            }

    def clear(self) -> None:
        with self._lock:
            self._severity = None
            self._message = ""
            self._raised_at = None


class PushoverChannel(AlertChannel):
    """Push notification (phone / smartwatch) through the Pushover messages API."""
    name = "pushover"

    def __init__(self, api_token: str, user_key: str, api_url: str = None, session: requests.Session = None):
        self.api_token = api_token
        self.user_key = user_key
        self.api_url = api_url or config.PUSHOVER_API_URL
        self.http = session or requests

    @staticmethod
    def build_payload(severity: Severity, message: str) -> Dict[str, Any]:
        critical = severity is Severity.CRITICAL
        return {
            "title": PUSHOVER_TITLE,
            "message": message,
            "priority": 1 if critical else 0,
            "sound": "siren" if critical else "pushover",
        }

    def attempt(self, severity: Severity, message: str = "") -> bool:
        if not (self.api_token and self.user_key):
            logger.warning("Pushover credentials missing; push not sent")
            return False
        payload = self.build_payload(severity, message)
        payload.update({"token": self.api_token, "user": self.user_key})
        try:
            response = self.http.post(self.api_url, data=payload, timeout=PUSHOVER_TIMEOUT_SEC)
        except requests.RequestException as e:
            logger.warning("Pushover request failed: %s", e)
            return False
        if not response.ok:
            logger.warning("Pushover API error %s: %s", response.status_code, response.text[:200])
            return False
        return True


def build_channels(settings: AlertSettings, cue_board: ClientCueBoard, visual: VisualChannel) -> List[AlertChannel]:
    """Enabled channels for a session, in dispatch order."""
    channels: List[AlertChannel] = []
    if settings.enable_visual:
        channels.append(visual)
    if settings.enable_sound:
        channels.append(SoundChannel(cue_board))
    if settings.enable_vibration:
        channels.append(VibrationChannel(cue_board))
    if settings.enable_pushover:
        token, user = settings.effective_pushover_credentials()
        channels.append(PushoverChannel(api_token=token, user_key=user))
    return channels
