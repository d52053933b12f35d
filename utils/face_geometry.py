"""
Face Geometry Helpers

Pure numpy functions that turn a MediaPipe Face Mesh landmark array (468 or 478
points, pixel space, shape (N, 2) or (N, 3)) into the ratios the engagement
pipeline consumes:

- Mouth Aspect Ratio (MAR): vertical lip opening / mouth width. Yawning > 0.6.
- Head-pitch ratio: (chin - nose tip) / (chin - nose bridge) along y.
  Facing forward sits around 0.35-0.45; looking down drops below 0.28.
- Expression estimates: a landmark-only approximation of the seven-class
  expression vector (neutral, happy, sad, angry, fearful, disgusted, surprised).
  Fear and disgust cannot be separated from geometry alone and stay at 0.

Kept free of mediapipe/cv2 imports so tests can exercise it with synthetic
landmarks.
"""

from typing import Dict, Tuple

import numpy as np

from utils.feature_extractor_interface import EXPRESSION_KEYS

# MediaPipe Face Mesh indices
UPPER_LIP = 13
LOWER_LIP = 14
MOUTH_LEFT = 61
MOUTH_RIGHT = 291
NOSE_TIP = 1
NOSE_BRIDGE = 168
CHIN = 152
FOREHEAD = 10
LEFT_BROW_INNER = 107
RIGHT_BROW_INNER = 336
LEFT_EYE_TOP = 159
RIGHT_EYE_TOP = 386

MIN_LANDMARKS = 468

# Expression heuristics, all as fractions of face height
_SMILE_LIFT_ONSET = 0.01
_SMILE_LIFT_RANGE = 0.03
_BROW_RAISE_SURPRISE = 0.10
_BROW_RAISE_RANGE = 0.05
_BROW_LOWER_ANGRY = 0.06
_BROW_LOWER_RANGE = 0.03
_SURPRISE_MAR_FULL = 0.35


def _xy(landmarks: np.ndarray, idx: int) -> np.ndarray:
    return np.asarray(landmarks[idx, :2], dtype=np.float64)


def _distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def has_full_mesh(landmarks: np.ndarray) -> bool:
    """True if the array is a 2D landmark array with at least the 468 mesh points."""
    return (
        isinstance(landmarks, np.ndarray)
        and landmarks.ndim == 2
        and landmarks.shape[0] >= MIN_LANDMARKS
        and landmarks.shape[1] >= 2
    )


def mouth_aspect_ratio(landmarks: np.ndarray) -> float:
    """Vertical lip opening divided by mouth width. 0 when width is degenerate."""
    vertical = _distance(_xy(landmarks, UPPER_LIP), _xy(landmarks, LOWER_LIP))
    horizontal = _distance(_xy(landmarks, MOUTH_LEFT), _xy(landmarks, MOUTH_RIGHT))
    return vertical / horizontal if horizontal > 0 else 0.0


def head_pitch_ratio(landmarks: np.ndarray) -> float:
    """
    Chin-to-nose-tip distance normalised by chin-to-nose-bridge distance (y axis).

    Pitching the head down pushes the nose tip toward the chin in image space,
    so the ratio shrinks. Returns 0.4 (facing forward) when the span is degenerate.
    """
    chin_y = float(landmarks[CHIN, 1])
    span = chin_y - float(landmarks[NOSE_BRIDGE, 1])
    if span <= 0:
        return 0.4
    return (chin_y - float(landmarks[NOSE_TIP, 1])) / span


def face_height(landmarks: np.ndarray) -> float:
    return abs(float(landmarks[CHIN, 1]) - float(landmarks[FOREHEAD, 1]))


def bounding_box(landmarks: np.ndarray) -> Tuple[int, int, int, int]:
    """(left, top, width, height) enclosing every landmark."""
    xs = landmarks[:, 0]
    ys = landmarks[:, 1]
    left, top = int(np.min(xs)), int(np.min(ys))
    right, bottom = int(np.max(xs)), int(np.max(ys))
    return (left, top, right - left, bottom - top)


def _ramp(value: float, onset: float, span: float) -> float:
    return float(np.clip((value - onset) / span, 0.0, 1.0))


def estimate_expressions(landmarks: np.ndarray) -> Dict[str, float]:
    """
    Approximate expression probabilities from landmark geometry.

    Smile lift (mouth corners above the lip centre) drives "happy", corner droop
    drives "sad", raised brows with an open mouth drive "surprised" and lowered
    brows drive "angry". Whatever is left goes to "neutral". The vector sums to 1.
    """
    probs = {k: 0.0 for k in EXPRESSION_KEYS}
    fh = face_height(landmarks)
    if fh <= 0:
        probs["neutral"] = 1.0
        return probs

    lip_center_y = (float(landmarks[UPPER_LIP, 1]) + float(landmarks[LOWER_LIP, 1])) / 2.0
    corner_y = (float(landmarks[MOUTH_LEFT, 1]) + float(landmarks[MOUTH_RIGHT, 1])) / 2.0
    # Positive when the corners sit above the lip centre (y grows downward)
    smile_lift = (lip_center_y - corner_y) / fh

    eye_top_y = (float(landmarks[LEFT_EYE_TOP, 1]) + float(landmarks[RIGHT_EYE_TOP, 1])) / 2.0
    brow_y = (float(landmarks[LEFT_BROW_INNER, 1]) + float(landmarks[RIGHT_BROW_INNER, 1])) / 2.0
    brow_raise = (eye_top_y - brow_y) / fh

    mar = mouth_aspect_ratio(landmarks)

    happy = _ramp(smile_lift, _SMILE_LIFT_ONSET, _SMILE_LIFT_RANGE)
    sad = _ramp(-smile_lift, _SMILE_LIFT_ONSET, _SMILE_LIFT_RANGE)
    surprised = _ramp(brow_raise, _BROW_RAISE_SURPRISE, _BROW_RAISE_RANGE) * float(
        np.clip(mar / _SURPRISE_MAR_FULL, 0.0, 1.0)
    )
    angry = _ramp(-brow_raise, -_BROW_LOWER_ANGRY, _BROW_LOWER_RANGE) * (1.0 - happy)

    probs.update(happy=happy, sad=sad, surprised=surprised, angry=angry)
    probs["neutral"] = max(0.0, 1.0 - max(happy, sad, surprised, angry))

    total = sum(probs.values())
    if total <= 0:
        probs["neutral"] = 1.0
        return probs
    return {k: v / total for k, v in probs.items()}
