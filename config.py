"""
=============================================================================
CONFIGURATION FOR FIDGET INDEX (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
modules read these constants; nothing secret is stored in code. Values come
from the environment (your .env file, loaded by app.py, or system variables).

MAIN GROUPS OF SETTINGS:
------------------------
  1. Server       — Host, port, debug mode and log level.
  2. Scheduling   — How often frames are processed and samples persisted.
  3. Alerts       — Default thresholds, cooldown and the dispatch pool.
  4. Pushover     — Optional push notifications to a phone or smartwatch.
  5. Detection    — Face mesh limits and partner (phone) frame size.
  6. Signaling    — Phone camera links and SSE keep-alive.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables override everything.
  - If an env var is not set, a safe default is used (e.g. port 5000).
  - Real API keys are never defaults in code.
=============================================================================
"""

import os
import sys


# ----------------------------------------------------------------------------
# Remove surrounding quotes from env values (sometimes .env has "value")
# ----------------------------------------------------------------------------
def _strip_quotes(s: str) -> str:
    if not s:
        return s
    s = s.strip()
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'")):
        return s[1:-1].strip()
    return s


# ============================================================================
# SERVER
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = os.getenv("FLASK_DEBUG", "false").lower() == "true"
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================================
# SCHEDULING (frame pump and sample cadence)
# ============================================================================
# The capture loop runs at display refresh rate; the extract/score/aggregate
# path runs at most once per FRAME_PROCESS_INTERVAL_MS (100 ms ~ 10 Hz).
# ----------------------------------------------------------------------------
FRAME_PROCESS_INTERVAL_MS: int = int(os.getenv("FRAME_PROCESS_INTERVAL_MS", "100"))
FRAME_REFRESH_HZ: int = int(os.getenv("FRAME_REFRESH_HZ", "60"))
# One EngagementSample is persisted per interval (skipped when no faces were seen)
SAMPLE_EMIT_INTERVAL_SEC: float = float(os.getenv("SAMPLE_EMIT_INTERVAL_SEC", "5"))

# ============================================================================
# ALERTS (defaults for new sessions; each session can override via /alerts/settings)
# ============================================================================
#   critical: average score < ALERT_CRITICAL_SCORE or boredom > ALERT_CRITICAL_BOREDOM
#   warning:  average score < ALERT_WARNING_SCORE, boredom > ALERT_WARNING_BOREDOM,
#             or boredom >= ALERT_BOREDOM_THRESHOLD
# At most one alert per ALERT_COOLDOWN_SEC.
# ----------------------------------------------------------------------------
ALERT_COOLDOWN_SEC: float = float(os.getenv("ALERT_COOLDOWN_SEC", "30"))
ALERT_BOREDOM_THRESHOLD: float = float(os.getenv("ALERT_BOREDOM_THRESHOLD", "40"))
ALERT_CRITICAL_SCORE: float = float(os.getenv("ALERT_CRITICAL_SCORE", "40"))
ALERT_WARNING_SCORE: float = float(os.getenv("ALERT_WARNING_SCORE", "60"))
ALERT_CRITICAL_BOREDOM: float = float(os.getenv("ALERT_CRITICAL_BOREDOM", "60"))
ALERT_WARNING_BOREDOM: float = float(os.getenv("ALERT_WARNING_BOREDOM", "40"))
ALERT_DISPATCH_WORKERS: int = int(os.getenv("ALERT_DISPATCH_WORKERS", "4"))

# ============================================================================
# PUSHOVER (optional — push alerts to a phone or smartwatch)
# ============================================================================
# Server-wide credentials; a session may also supply its own in alert settings.
# ----------------------------------------------------------------------------
PUSHOVER_API_TOKEN: str = _strip_quotes(os.getenv("PUSHOVER_API_TOKEN") or "")
PUSHOVER_USER_KEY: str = _strip_quotes(os.getenv("PUSHOVER_USER_KEY") or "")
PUSHOVER_API_URL: str = os.getenv("PUSHOVER_API_URL", "https://api.pushover.net/1/messages.json")

# ============================================================================
# DETECTION
# ============================================================================
MAX_FACES: int = int(os.getenv("MAX_FACES", "10"))
# Minimum confidence for face detection and tracking (0.01-0.99)
MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.5"))
# Partner frames wider than this are downscaled before detection
PARTNER_FRAME_MAX_WIDTH: int = int(os.getenv("PARTNER_FRAME_MAX_WIDTH", "1280"))

# ============================================================================
# SIGNALING (phone camera pairing)
# ============================================================================
# Base URL the phone opens: {PHONE_CAMERA_BASE_URL}/phone-camera?room={room_id}
PHONE_CAMERA_BASE_URL: str = (os.getenv("PHONE_CAMERA_BASE_URL") or f"http://localhost:{FLASK_PORT}").strip().rstrip("/")
# Seconds between SSE keep-alive comments on idle signaling streams
SIGNALING_KEEPALIVE_SEC: float = float(os.getenv("SIGNALING_KEEPALIVE_SEC", "15"))

# ============================================================================
# Helper Functions
# ============================================================================

def warn_missing_config() -> None:
    """
    Print warnings when optional configuration is missing or inconsistent.
    Call from app startup. Does not raise.
    """
    notes = []
    if bool(PUSHOVER_API_TOKEN) != bool(PUSHOVER_USER_KEY):
        notes.append("set both PUSHOVER_API_TOKEN and PUSHOVER_USER_KEY (only one is set)")
    if FRAME_PROCESS_INTERVAL_MS <= 0:
        notes.append("FRAME_PROCESS_INTERVAL_MS must be positive")
    if ALERT_CRITICAL_SCORE > ALERT_WARNING_SCORE:
        notes.append("ALERT_CRITICAL_SCORE is above ALERT_WARNING_SCORE")
    if notes:
        print("Config warning: " + "; ".join(notes), file=sys.stderr)


def is_pushover_enabled() -> bool:
    """True when server-wide Pushover credentials are configured."""
    return bool(PUSHOVER_API_TOKEN and PUSHOVER_USER_KEY)


def build_config_response() -> dict:
    """
    Build the configuration response for GET /config/all. Never includes secrets.
    """
    return {
        "scheduling": {
            "frameProcessIntervalMs": FRAME_PROCESS_INTERVAL_MS,
            "frameRefreshHz": FRAME_REFRESH_HZ,
            "sampleEmitIntervalSec": SAMPLE_EMIT_INTERVAL_SEC,
        },
        "alerts": {
            "cooldownSec": ALERT_COOLDOWN_SEC,
            "boredomThreshold": ALERT_BOREDOM_THRESHOLD,
            "criticalScore": ALERT_CRITICAL_SCORE,
            "warningScore": ALERT_WARNING_SCORE,
            "criticalBoredom": ALERT_CRITICAL_BOREDOM,
            "warningBoredom": ALERT_WARNING_BOREDOM,
        },
        "pushover": {
            "enabled": is_pushover_enabled(),
        },
        "detection": {
            "maxFaces": MAX_FACES,
            "minFaceConfidence": MIN_FACE_CONFIDENCE,
        },
        "signaling": {
            "phoneCameraBaseUrl": PHONE_CAMERA_BASE_URL,
            "keepaliveSec": SIGNALING_KEEPALIVE_SEC,
        },
    }
