"""
Metrics Aggregator Module

Turns the ScoredSubjects of one tick into a session-level EngagementSample and
throttles how often samples reach the persistence collaborator.

The tick loop runs at ~10 Hz but samples are only persisted every
SAMPLE_EMIT_INTERVAL_SEC (5 s by default). An interval in which no face was
seen is skipped entirely rather than persisted as a meaningless zero sample.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable, List, Optional

from utils.engagement_scorer import Classification, ScoredSubject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngagementSample:
    """Aggregate over every scored subject in one tick."""
    total_subjects: int
    engaged_count: int
    neutral_count: int
    bored_count: int
    boredom_percentage: float  # 0-100
    average_engagement_score: float  # 0-100
    timestamp: float  # Unix timestamp

    def to_dict(self) -> dict:
        d = asdict(self)
        return {
            "totalSubjects": d["total_subjects"],
            "engagedCount": d["engaged_count"],
            "neutralCount": d["neutral_count"],
            "boredCount": d["bored_count"],
            "boredomPercentage": d["boredom_percentage"],
            "averageEngagementScore": d["average_engagement_score"],
            "timestamp": d["timestamp"],
        }


def aggregate(scored_subjects: List[ScoredSubject], timestamp: float) -> EngagementSample:
    """
    Build an EngagementSample from one tick's subjects.

    Percentage and mean are 0 for an empty list.
    """
    total = len(scored_subjects)
    engaged = sum(1 for s in scored_subjects if s.classification is Classification.ENGAGED)
    bored = sum(1 for s in scored_subjects if s.classification is Classification.BORED)
    neutral = total - engaged - bored
    if total == 0:
        return EngagementSample(0, 0, 0, 0, 0.0, 0.0, timestamp)
    return EngagementSample(
        total_subjects=total,
        engaged_count=engaged,
        neutral_count=neutral,
        bored_count=bored,
        boredom_percentage=bored / total * 100.0,
        average_engagement_score=sum(s.engagement_score for s in scored_subjects) / total,
        timestamp=timestamp,
    )


class MetricsAggregator:
    """
    Rolling per-tick aggregate with throttled emission.

    Usage:
        aggregator = MetricsAggregator(sink=lambda sample: store.record_sample(sid, sample))
        aggregator.on_tick(scored_subjects)
        aggregator.emit_if_due(time.monotonic())
    """

    def __init__(
        self,
        sink: Optional[Callable[[EngagementSample], None]] = None,
        emit_interval_sec: float = 5.0,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            sink: Receives each emitted sample (the persistence collaborator)
            emit_interval_sec: Seconds between emissions
            wall_clock: Source of sample timestamps (Unix seconds)
        """
        self._sink = sink
        self._emit_interval_sec = float(emit_interval_sec)
        self._wall_clock = wall_clock
        self._current: EngagementSample = aggregate([], 0.0)
        # Most recent tick that actually had subjects since the last emission
        self._pending: Optional[EngagementSample] = None
        self._last_emit_at: Optional[float] = None

    @property
    def current(self) -> EngagementSample:
        """The latest tick result (zeros before the first tick)."""
        return self._current

    def on_tick(self, scored_subjects: List[ScoredSubject]) -> EngagementSample:
        """Replace the rolling result with this tick's aggregate and return it."""
        sample = aggregate(list(scored_subjects), self._wall_clock())
        self._current = sample
        if sample.total_subjects > 0:
            self._pending = sample
        return sample

    def emit_if_due(self, now_monotonic: float) -> Optional[EngagementSample]:
        """
        Emit a sample if the cadence interval has elapsed.

        The first call only starts the interval. Returns the emitted sample, or
        None when not due or when nothing was observed since the last emission.
        """
        if self._last_emit_at is None:
            self._last_emit_at = now_monotonic
            return None
        if now_monotonic - self._last_emit_at < self._emit_interval_sec:
            return None
        self._last_emit_at = now_monotonic

        sample, self._pending = self._pending, None
        if sample is None:
            logger.debug("No subjects since last emission; skipping sample")
            return None
        if self._sink is not None:
            try:
                self._sink(sample)
            except Exception as e:
                logger.warning("Failed to persist engagement sample: %s", e)
        return sample

    def reset(self) -> None:
        """Discard the rolling and pending results (session stop)."""
        self._current = aggregate([], 0.0)
        self._pending = None
        self._last_emit_at = None
