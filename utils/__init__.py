"""
Utilities package for Fidget Index.

Frame intake, scheduling, per-face geometry, engagement scoring and
session-level aggregation. The MediaPipe extractor is not imported here so that
mediapipe only loads when monitoring starts.
"""

from .feature_extractor_interface import FeatureExtractorInterface, SubjectObservation
from .engagement_scorer import Classification, EngagementScorer, ScoredSubject
from .metrics_aggregator import EngagementSample, MetricsAggregator
from .frame_scheduler import FrameScheduler

__all__ = [
    'FeatureExtractorInterface',
    'SubjectObservation',
    'Classification',
    'EngagementScorer',
    'ScoredSubject',
    'EngagementSample',
    'MetricsAggregator',
    'FrameScheduler',
]
