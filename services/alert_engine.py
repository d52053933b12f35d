"""
Alert engine: threshold + cooldown state machine over engagement samples.

Each MonitoringSession owns one AlertEngine. The engine is Idle until a sample
crosses a severity threshold, then raises one AlertEvent and enters Cooldown for
cooldown_sec; samples evaluated during Cooldown never alert. Delivery happens in
AlertDispatcher, off the tick thread, one channel at a time with failures
isolated per channel.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import config
from utils.metrics_aggregator import EngagementSample

logger = logging.getLogger(__name__)


class Severity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"


# camelCase wire name -> AlertSettings attribute
_SETTINGS_WIRE_NAMES = {
    "criticalScore": "critical_score",
    "warningScore": "warning_score",
    "criticalBoredom": "critical_boredom",
    "warningBoredom": "warning_boredom",
    "boredomThreshold": "boredom_threshold",
    "cooldownSec": "cooldown_sec",
    "enableSound": "enable_sound",
    "enableVibration": "enable_vibration",
    "enableVisual": "enable_visual",
    "enablePushover": "enable_pushover",
    "pushoverUserKey": "pushover_user_key",
    "pushoverApiToken": "pushover_api_token",
}


@dataclass
class AlertSettings:
    """
    Per-session alert configuration, persisted through the EngagementStore.

    Percentages and scores are on the 0-100 scale.
    """
    critical_score: float = field(default_factory=lambda: config.ALERT_CRITICAL_SCORE)
    warning_score: float = field(default_factory=lambda: config.ALERT_WARNING_SCORE)
    critical_boredom: float = field(default_factory=lambda: config.ALERT_CRITICAL_BOREDOM)
    warning_boredom: float = field(default_factory=lambda: config.ALERT_WARNING_BOREDOM)
    boredom_threshold: float = field(default_factory=lambda: config.ALERT_BOREDOM_THRESHOLD)
    cooldown_sec: float = field(default_factory=lambda: config.ALERT_COOLDOWN_SEC)
    enable_sound: bool = True
    enable_vibration: bool = True
    enable_visual: bool = True
    enable_pushover: bool = False
    pushover_user_key: str = ""
    pushover_api_token: str = ""

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ValueError when a threshold is out of range or inconsistent."""
        for name in ("critical_score", "warning_score", "critical_boredom", "warning_boredom", "boredom_threshold"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100")
        if isinstance(self.cooldown_sec, bool) or not isinstance(self.cooldown_sec, (int, float)) or self.cooldown_sec < 0:
            raise ValueError("cooldown_sec must be a non-negative number")
        if self.critical_score > self.warning_score:
            raise ValueError("critical_score must not exceed warning_score")
        if self.warning_boredom > self.critical_boredom:
            raise ValueError("warning_boredom must not exceed critical_boredom")

    def effective_pushover_credentials(self) -> Tuple[str, str]:
        """(api_token, user_key), falling back to the server-wide Pushover config."""
        token = self.pushover_api_token or config.PUSHOVER_API_TOKEN
        user = self.pushover_user_key or config.PUSHOVER_USER_KEY
        return token, user

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        out = {wire: getattr(self, attr) for wire, attr in _SETTINGS_WIRE_NAMES.items()}
        if not include_secrets:
            token, user = self.effective_pushover_credentials()
            out["pushoverApiToken"] = ""
            out["pushoverConfigured"] = bool(token and user)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional['AlertSettings'] = None) -> 'AlertSettings':
        """
        Build settings from a camelCase payload. Keys not present keep the
        value from `base` (or the defaults). Unknown keys raise ValueError.
        """
        if not isinstance(data, dict):
            raise ValueError("Alert settings must be a JSON object")
        unknown = set(data) - set(_SETTINGS_WIRE_NAMES) - {"pushoverConfigured"}
        if unknown:
            raise ValueError(f"Unknown alert settings: {', '.join(sorted(unknown))}")
        values = {f.name: getattr(base, f.name) for f in fields(cls)} if base is not None else {}
        for wire, attr in _SETTINGS_WIRE_NAMES.items():
            if wire in data:
                values[attr] = data[wire]
        # An empty token in a payload means "keep the stored one"; to_dict never echoes it
        if base is not None and not data.get("pushoverApiToken"):
            values["pushover_api_token"] = base.pushover_api_token
        for attr in ("enable_sound", "enable_vibration", "enable_visual", "enable_pushover"):
            if attr in values and not isinstance(values[attr], bool):
                raise ValueError(f"{attr} must be a boolean")
        return cls(**values)


@dataclass
class AlertState:
    """Mutable per-session alert state. Only AlertEngine writes it."""
    last_alert_at: Optional[float] = None  # monotonic seconds
    current_severity: Optional[Severity] = None


@dataclass(frozen=True)
class AlertEvent:
    severity: Severity
    boredom_percentage: float
    average_score: float
    message: str
    channels_attempted: Tuple[str, ...]
    created_at: float  # Unix timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "boredomPercentage": self.boredom_percentage,
            "averageScore": self.average_score,
            "message": self.message,
            "channelsAttempted": list(self.channels_attempted),
            "createdAt": self.created_at,
        }


@dataclass
class DeliveryReport:
    """Outcome of one dispatch: which channels were tried and which confirmed."""
    alert_id: Optional[int]
    attempted: List[str] = field(default_factory=list)
    confirmed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return bool(self.confirmed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "attempted": list(self.attempted),
            "confirmed": list(self.confirmed),
            "failed": list(self.failed),
        }


def classify_severity(sample: EngagementSample, settings: AlertSettings) -> Optional[Severity]:
    """Severity reached by a sample, or None. Critical wins over warning."""
    avg = sample.average_engagement_score
    boredom = sample.boredom_percentage
    if avg < settings.critical_score or boredom > settings.critical_boredom:
        return Severity.CRITICAL
    if (
        avg < settings.warning_score
        or boredom > settings.warning_boredom
        or boredom >= settings.boredom_threshold
    ):
        return Severity.WARNING
    return None


def build_alert_message(severity: Severity, average_score: float, boredom_percentage: float) -> str:
    avg = round(average_score)
    bored = round(boredom_percentage)
    if severity is Severity.CRITICAL:
        return f"Critical: Engagement dropped to {avg}%! {bored}% of audience is disengaged."
    return f"Warning: Engagement at {avg}%. {bored}% showing signs of disengagement."


class AlertEngine:
    """
    Usage:
        engine = AlertEngine(settings, channel_names=["sound", "visual"])
        event = engine.evaluate(sample, time.monotonic())
        if event:
            dispatcher.dispatch(event)
    """

    def __init__(
        self,
        settings: Optional[AlertSettings] = None,
        channel_names: Sequence[str] = (),
        wall_clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or AlertSettings()
        self.channel_names = tuple(channel_names)
        self.state = AlertState()
        self._wall_clock = wall_clock

    def is_idle(self, now: float) -> bool:
        last = self.state.last_alert_at
        return last is None or now - last >= self.settings.cooldown_sec

    def evaluate(self, sample: EngagementSample, now: float) -> Optional[AlertEvent]:
        """
        Check one sample against the thresholds.

        Args:
            sample: Aggregate for the current tick
            now: Monotonic seconds

        Returns:
            The raised AlertEvent, or None (no subjects, in cooldown, or below threshold)
        """
        if sample.total_subjects <= 0:
            return None
        if not self.is_idle(now):
            return None
        # Cooldown elapsed
        self.state.current_severity = None

        severity = classify_severity(sample, self.settings)
        if severity is None:
            return None

        self.state.last_alert_at = now
        self.state.current_severity = severity
        event = AlertEvent(
            severity=severity,
            boredom_percentage=sample.boredom_percentage,
            average_score=sample.average_engagement_score,
            message=build_alert_message(severity, sample.average_engagement_score, sample.boredom_percentage),
            channels_attempted=self.channel_names,
            created_at=self._wall_clock(),
        )
        logger.info("Alert raised (%s): %s", severity.value, event.message)
        return event

    def reset(self) -> None:
        """Drop the AlertState; the next qualifying sample alerts immediately."""
        self.state = AlertState()


class AlertDispatcher:
    """
    Fans an AlertEvent out to every channel, records it, and marks it delivered
    when at least one channel confirmed.

    Each channel is attempted once; an exception or a False return marks that
    channel failed without affecting the others. With synchronous=True dispatch
    runs inline and returns the DeliveryReport (used by tests); otherwise it is
    submitted to a thread pool and a Future is returned.
    """

    def __init__(
        self,
        channels: Sequence[Any],
        store: Any = None,
        session_id: Optional[str] = None,
        synchronous: bool = False,
        max_workers: int = None,
    ):
        self.channels = list(channels)
        self.store = store
        self.session_id = session_id
        self.synchronous = synchronous
        self._executor = None
        if not synchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=int(max_workers or config.ALERT_DISPATCH_WORKERS),
                thread_name_prefix="alert-dispatch",
            )

    @property
    def channel_names(self) -> List[str]:
        return [c.name for c in self.channels]

    def dispatch(self, event: AlertEvent):
        if self.synchronous:
            return self.deliver(event)
        return self._executor.submit(self.deliver, event)

    def deliver(self, event: AlertEvent) -> DeliveryReport:
        alert_id = None
        if self.store is not None:
            try:
                alert_id = self.store.record_alert(self.session_id, event)
            except Exception as e:
                logger.warning("Failed to persist alert: %s", e)

        report = DeliveryReport(alert_id=alert_id)
        for channel in self.channels:
            report.attempted.append(channel.name)
            try:
                ok = bool(channel.attempt(event.severity, event.message))
            except Exception as e:
                logger.warning("Alert channel %s failed: %s", channel.name, e)
                ok = False
            (report.confirmed if ok else report.failed).append(channel.name)

        if report.delivered and alert_id is not None:
            try:
                self.store.mark_alert_delivered(alert_id)
            except Exception as e:
                logger.warning("Failed to mark alert %s delivered: %s", alert_id, e)

        return report

    def shutdown(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
            self.synchronous = True
