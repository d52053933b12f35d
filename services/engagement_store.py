"""
Persistence collaborator for engagement samples, alerts and alert settings.

The monitoring pipeline only talks to the EngagementStore interface; the
in-memory implementation below backs the bundled HTTP service. Swap in a
database-backed store by implementing the same methods.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional

from services.alert_engine import AlertEvent, AlertSettings
from utils.metrics_aggregator import EngagementSample


class EngagementStore(ABC):
    """Abstract persistence for one or many monitoring sessions."""

    @abstractmethod
    def record_sample(self, session_id: str, sample: EngagementSample) -> None:
        pass

    @abstractmethod
    def record_alert(self, session_id: str, event: AlertEvent) -> int:
        """Persist an alert and return its id."""
        pass

    @abstractmethod
    def mark_alert_delivered(self, alert_id: int) -> None:
        pass

    @abstractmethod
    def save_alert_settings(self, session_id: str, settings: AlertSettings) -> None:
        pass

    @abstractmethod
    def load_alert_settings(self, session_id: str) -> Optional[AlertSettings]:
        """Stored settings for the session, or None if never saved."""
        pass

    @abstractmethod
    def get_samples(self, session_id: str, limit: Optional[int] = None) -> List[EngagementSample]:
        pass

    @abstractmethod
    def get_alerts(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        pass


class InMemoryEngagementStore(EngagementStore):
    """
    Process-local store guarded by a single lock.

    Alerts are kept as dicts: the AlertEvent fields plus id, sessionId and the
    delivered flag.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._samples: Dict[str, List[EngagementSample]] = defaultdict(list)
        self._alerts: Dict[int, Dict[str, Any]] = {}
        self._settings: Dict[str, AlertSettings] = {}
        self._ids = itertools.count(1)

    def record_sample(self, session_id: str, sample: EngagementSample) -> None:
        with self._lock:
            self._samples[session_id].append(sample)

    def record_alert(self, session_id: str, event: AlertEvent) -> int:
        with self._lock:
            alert_id = next(self._ids)
            row = event.to_dict()
            row.update({"id": alert_id, "sessionId": session_id, "delivered": False})
            self._alerts[alert_id] = row
            return alert_id

    def mark_alert_delivered(self, alert_id: int) -> None:
        with self._lock:
            row = self._alerts.get(alert_id)
            if row is None:
                raise KeyError(f"Unknown alert id: {alert_id}")
            row["delivered"] = True

    def save_alert_settings(self, session_id: str, settings: AlertSettings) -> None:
        with self._lock:
            self._settings[session_id] = settings

    def load_alert_settings(self, session_id: str) -> Optional[AlertSettings]:
        with self._lock:
            return self._settings.get(session_id)

    def get_samples(self, session_id: str, limit: Optional[int] = None) -> List[EngagementSample]:
        with self._lock:
            rows = list(self._samples.get(session_id, []))
        return rows[-limit:] if limit else rows

    def get_alerts(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._alerts.values() if r["sessionId"] == session_id]
        return rows[-limit:] if limit else rows

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
            self._alerts.clear()
            self._settings.clear()
