"""
Feature Extractor Interface Module

This module defines the contract between the engagement pipeline and whatever
computer-vision backend turns a video frame into per-face measurements. The
pipeline only ever sees SubjectObservation objects, so any backend (MediaPipe,
a remote model, a test double) can be swapped in without touching scoring,
aggregation or alerting.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np


# Expression keys, in the order the scorer and the dashboard expect them
EXPRESSION_KEYS: Tuple[str, ...] = (
    "neutral",
    "happy",
    "sad",
    "angry",
    "fearful",
    "disgusted",
    "surprised",
)

# Mouth aspect ratio above this means the mouth is open wide enough to be a yawn
YAWN_MAR_THRESHOLD: float = 0.6

# Chin-to-nose-tip over chin-to-nose-bridge. Facing forward sits around 0.35-0.45;
# below this the head is pitched down (roughly more than 20 degrees).
LOOKING_DOWN_PITCH_RATIO: float = 0.28


def neutral_expressions() -> Dict[str, float]:
    """Return an expression vector that is entirely neutral."""
    probs = {k: 0.0 for k in EXPRESSION_KEYS}
    probs["neutral"] = 1.0
    return probs


@dataclass
class SubjectObservation:
    """
    Measurements for one detected face in one frame.

    is_yawning / is_looking_down are derived from the ratios when not given
    explicitly, so an extractor only has to supply the geometry.
    """
    box: Tuple[int, int, int, int]  # (left, top, width, height) in pixels
    mouth_aspect_ratio: float = 0.0
    head_pitch_ratio: float = 0.4
    expressions: Dict[str, float] = field(default_factory=neutral_expressions)
    is_yawning: Optional[bool] = None
    is_looking_down: Optional[bool] = None

    def __post_init__(self):
        # Missing keys read as 0 so partial vectors from a backend stay usable
        self.expressions = {k: float(self.expressions.get(k, 0.0) or 0.0) for k in EXPRESSION_KEYS}
        if self.is_yawning is None:
            self.is_yawning = bool(self.mouth_aspect_ratio > YAWN_MAR_THRESHOLD)
        if self.is_looking_down is None:
            self.is_looking_down = bool(self.head_pitch_ratio < LOOKING_DOWN_PITCH_RATIO)

    def to_dict(self) -> dict:
        return {
            "box": list(self.box),
            "mouthAspectRatio": float(self.mouth_aspect_ratio),
            "headPitchRatio": float(self.head_pitch_ratio),
            "expressionProbabilities": dict(self.expressions),
            "isYawning": bool(self.is_yawning),
            "isLookingDown": bool(self.is_looking_down),
        }


class FeatureExtractorInterface(ABC):
    """
    Abstract interface for feature extraction backends.

    Implementations must return an empty list (never raise) when no face is in
    the frame. Index order follows detection order and is not stable across
    frames, so callers must not treat index N as the same person over time.
    """

    @abstractmethod
    def extract(self, frame: np.ndarray) -> List[SubjectObservation]:
        """
        Extract one observation per detected face.

        Args:
            frame: BGR image array (OpenCV format)

        Returns:
            List of SubjectObservation, possibly empty
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if the backend is loaded and usable."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the backend name (e.g. "mediapipe")."""
        pass

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation does nothing.
        """
        pass
