"""
Synthetic landmark generator for geometry and extractor tests.

Creates MediaPipe-style 468x3 face landmarks in pixel space (640x480 frame)
with known mouth, brow and head-pitch geometry. Only the indices used by
utils/face_geometry.py are placed deliberately; every other point sits at the
face centre.

Neutral face (face height 240 px):
  MAR 0.05, head-pitch ratio 0.4, corners level with the lip centre,
  brows 0.08 face-heights above the eye tops -> expressions all neutral.
"""

from typing import Tuple

import numpy as np

from utils import face_geometry as fg

CX = 320.0
FOREHEAD_Y = 160.0
CHIN_Y = 400.0
NOSE_BRIDGE_Y = 220.0
MOUTH_Y = 350.0
MOUTH_HALF_WIDTH = 40.0
EYE_TOP_Y = 250.0
FACE_HEIGHT = CHIN_Y - FOREHEAD_Y


def _nose_tip_y(pitch_ratio: float) -> float:
    return CHIN_Y - pitch_ratio * (CHIN_Y - NOSE_BRIDGE_Y)


def make_face_landmarks(
    mouth_open_px: float = 4.0,
    smile_lift_px: float = 0.0,
    brow_raise: float = 0.08,
    pitch_ratio: float = 0.4,
    offset: Tuple[float, float] = (0.0, 0.0),
) -> np.ndarray:
    """
    Build a 468x3 landmark array.

    Args:
        mouth_open_px: Distance between inner upper and lower lip
        smile_lift_px: How far the mouth corners sit above the lip centre (negative = droop)
        brow_raise: Inner-brow height above the eye tops, as a fraction of face height
        pitch_ratio: Target head-pitch ratio
        offset: (dx, dy) translation of the whole face
    """
    lm = np.zeros((468, 3), dtype=np.float64)
    lm[:, 0] = CX
    lm[:, 1] = (FOREHEAD_Y + CHIN_Y) / 2.0

    lm[fg.FOREHEAD] = (CX, FOREHEAD_Y, 0)
    lm[fg.CHIN] = (CX, CHIN_Y, 0)
    lm[fg.NOSE_BRIDGE] = (CX, NOSE_BRIDGE_Y, 0)
    lm[fg.NOSE_TIP] = (CX, _nose_tip_y(pitch_ratio), 0)

    lm[fg.UPPER_LIP] = (CX, MOUTH_Y - mouth_open_px / 2.0, 0)
    lm[fg.LOWER_LIP] = (CX, MOUTH_Y + mouth_open_px / 2.0, 0)
    lm[fg.MOUTH_LEFT] = (CX - MOUTH_HALF_WIDTH, MOUTH_Y - smile_lift_px, 0)
    lm[fg.MOUTH_RIGHT] = (CX + MOUTH_HALF_WIDTH, MOUTH_Y - smile_lift_px, 0)

    brow_y = EYE_TOP_Y - brow_raise * FACE_HEIGHT
    lm[fg.LEFT_EYE_TOP] = (CX - 30, EYE_TOP_Y, 0)
    lm[fg.RIGHT_EYE_TOP] = (CX + 30, EYE_TOP_Y, 0)
    lm[fg.LEFT_BROW_INNER] = (CX - 20, brow_y, 0)
    lm[fg.RIGHT_BROW_INNER] = (CX + 20, brow_y, 0)

    # Jaw line so the bounding box has width
    lm[234] = (CX - 100, 280.0, 0)
    lm[454] = (CX + 100, 280.0, 0)

    lm[:, 0] += offset[0]
    lm[:, 1] += offset[1]
    return lm


def make_neutral_landmarks() -> np.ndarray:
    return make_face_landmarks()


def make_yawn_landmarks() -> np.ndarray:
    """Mouth open 50 px over an 80 px mouth -> MAR 0.625."""
    return make_face_landmarks(mouth_open_px=50.0)


def make_smile_landmarks() -> np.ndarray:
    """Corners 10 px above the lip centre -> happy saturates."""
    return make_face_landmarks(smile_lift_px=10.0)


def make_frown_landmarks() -> np.ndarray:
    """Corners 10 px below the lip centre -> sad saturates."""
    return make_face_landmarks(smile_lift_px=-10.0)


def make_looking_down_landmarks() -> np.ndarray:
    return make_face_landmarks(pitch_ratio=0.2)


def make_surprised_landmarks() -> np.ndarray:
    """Brows raised well above the eyes with the mouth open."""
    return make_face_landmarks(mouth_open_px=30.0, brow_raise=0.16)
