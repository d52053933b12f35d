"""
MediaPipe Feature Extractor Implementation

MediaPipe Face Mesh backed implementation of FeatureExtractorInterface. Tracks
up to MAX_FACES faces per frame (a room or classroom view), converts each face's
landmarks to pixel space and derives the SubjectObservation ratios via
utils.face_geometry.

Detection strategy:
1. Primary: FaceMesh in tracking mode (fast, continuous video)
2. Fallback: FaceMesh in static mode after repeated tracking misses
"""

import logging
from typing import List

import cv2
import mediapipe as mp
import numpy as np

import config
from utils import face_geometry
from utils.feature_extractor_interface import FeatureExtractorInterface, SubjectObservation

logger = logging.getLogger(__name__)

# Tracking misses before the static-mode mesh is consulted
_STATIC_FALLBACK_AFTER = 3


class MediaPipeFeatureExtractor(FeatureExtractorInterface):
    """
    MediaPipe-based feature extractor.

    Usage:
        extractor = MediaPipeFeatureExtractor()
        observations = extractor.extract(frame_bgr)
    """

    def __init__(self, max_faces: int = None, min_detection_confidence: float = None):
        """
        Args:
            max_faces: Maximum faces to track per frame (default: config.MAX_FACES)
            min_detection_confidence: Detection confidence floor (default: config.MIN_FACE_CONFIDENCE)
        """
        self._max_faces = int(max_faces or config.MAX_FACES)
        conf = config.MIN_FACE_CONFIDENCE if min_detection_confidence is None else min_detection_confidence
        self._det_conf = max(0.01, min(0.99, float(conf)))

        self.mp_face_mesh = mp.solutions.face_mesh
        self.face_mesh = self._new_mesh(static=False)
        # Created on first use; most sessions never need it
        self._face_mesh_static = None
        self._consecutive_misses = 0
        self._available = True

    def _new_mesh(self, static: bool):
        return self.mp_face_mesh.FaceMesh(
            static_image_mode=static,
            max_num_faces=self._max_faces,
            refine_landmarks=True,
            min_detection_confidence=self._det_conf,
            min_tracking_confidence=self._det_conf,
        )

    def extract(self, frame: np.ndarray) -> List[SubjectObservation]:
        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            return []
        if frame.ndim != 3 or frame.shape[2] != 3:
            return []

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        height, width = frame.shape[:2]

        results = self.face_mesh.process(rgb)
        if results.multi_face_landmarks:
            self._consecutive_misses = 0
            return self._to_observations(results.multi_face_landmarks, width, height)

        self._consecutive_misses += 1
        if self._consecutive_misses >= _STATIC_FALLBACK_AFTER:
            if self._face_mesh_static is None:
                self._face_mesh_static = self._new_mesh(static=True)
            results = self._face_mesh_static.process(rgb)
            if results.multi_face_landmarks:
                self._consecutive_misses = 0
                return self._to_observations(results.multi_face_landmarks, width, height)
        return []

    def _to_observations(self, faces, width: int, height: int) -> List[SubjectObservation]:
        observations = []
        for face_landmarks in faces:
            pts = np.array(
                [[lm.x * width, lm.y * height, lm.z * width] for lm in face_landmarks.landmark],
                dtype=np.float64,
            )
            if not face_geometry.has_full_mesh(pts):
                continue
            observations.append(
                SubjectObservation(
                    box=face_geometry.bounding_box(pts),
                    mouth_aspect_ratio=face_geometry.mouth_aspect_ratio(pts),
                    head_pitch_ratio=face_geometry.head_pitch_ratio(pts),
                    expressions=face_geometry.estimate_expressions(pts),
                )
            )
        return observations

    def is_available(self) -> bool:
        return self._available

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        """Release MediaPipe graphs."""
        for mesh in (self.face_mesh, self._face_mesh_static):
            if mesh is None:
                continue
            try:
                mesh.close()
            except Exception as e:
                logger.debug("FaceMesh close failed: %s", e)
        self._face_mesh_static = None
        self._available = False
