"""
Video Source Handler Module

Unified frame intake for the monitoring pipeline:
- Webcam (default camera)
- Local video files
- Video streams (RTSP, HTTP, etc.)
- Partner: frames pushed over HTTP by the host browser, which receives them
  from a phone over a peer-to-peer media channel negotiated through the
  signaling relay

Every source answers read_frame() -> (ok, frame). A source that has nothing to
offer yet returns (False, None); the frame scheduler treats that as "skip this
tick", never as an error.
"""

import logging
import sys
import threading
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

import config

logger = logging.getLogger(__name__)


class VideoSourceType(Enum):
    """Enumeration of supported video source types."""
    WEBCAM = "webcam"
    FILE = "file"
    STREAM = "stream"
    PARTNER = "partner"


class PartnerFrameBuffer:
    """
    Latest-frame slot for a peer-supplied source. Thread-safe.

    Only the newest frame is kept; writers overwrite, readers copy.
    """

    def __init__(self, max_width: int = None):
        self._frame: Optional[np.ndarray] = None
        self._lock = threading.Lock()
        self.max_width = int(max_width or config.PARTNER_FRAME_MAX_WIDTH)

    def set_frame(self, frame_bgr: Optional[np.ndarray]) -> None:
        with self._lock:
            self._frame = frame_bgr.copy() if frame_bgr is not None else None

    def get_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame.copy() if self._frame is not None else None

    def has_frame(self) -> bool:
        with self._lock:
            return self._frame is not None

    def clear(self) -> None:
        self.set_frame(None)

    def set_frame_from_bytes(self, image_bytes: bytes) -> bool:
        """
        Decode image bytes (e.g. JPEG) to BGR and store as the latest frame.
        Frames wider than max_width are downscaled to bound detection latency.
        Returns True if decoding succeeded.
        """
        if not image_bytes:
            return False
        arr = np.frombuffer(image_bytes, dtype=np.uint8)
        frame = cv2.imdecode(arr, cv2.IMREAD_COLOR)
        if frame is None:
            return False
        h, w = frame.shape[:2]
        if w > self.max_width:
            scale = self.max_width / w
            frame = cv2.resize(frame, (self.max_width, int(round(h * scale))), interpolation=cv2.INTER_AREA)
        self.set_frame(frame)
        return True


def _open_first_camera(indices=(0, 1, 2)) -> Optional[cv2.VideoCapture]:
    apis = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY] if sys.platform == "win32" else [cv2.CAP_ANY]
    for api in apis:
        for index in indices:
            try:
                cap = cv2.VideoCapture(index, api)
                if cap.isOpened() and cap.read()[0]:
                    return cap
                cap.release()
            except Exception as e:
                logger.debug("Camera %s (api %s) unavailable: %s", index, api, e)
    return None


class VideoSourceHandler:
    """
    Handler for managing video sources of different types.

    Usage:
        handler = VideoSourceHandler()
        handler.initialize_source(VideoSourceType.WEBCAM)
        ok, frame = handler.read_frame()
    """

    def __init__(self, partner_buffer: Optional[PartnerFrameBuffer] = None):
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self.source_path: Optional[str] = None
        self.partner = partner_buffer or PartnerFrameBuffer()

    def initialize_source(self, source_type: VideoSourceType, source_path: Optional[str] = None) -> bool:
        """
        Initialize a video source.

        Args:
            source_type: Type of video source
            source_path: Path or URL (required for FILE, optional for STREAM)

        Returns:
            True if the source is ready to be read
        """
        self.release()
        self.source_type = source_type
        self.source_path = source_path

        try:
            if source_type == VideoSourceType.WEBCAM:
                self.cap = _open_first_camera() or cv2.VideoCapture(0)
                if self.cap.isOpened():
                    self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 1280)
                    self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 720)
                    self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type == VideoSourceType.FILE:
                if not source_path:
                    raise ValueError("source_path is required for FILE source type")
                self.cap = cv2.VideoCapture(source_path)

            elif source_type == VideoSourceType.STREAM:
                if not source_path:
                    logger.warning("STREAM source selected without a path; falling back to webcam")
                    self.cap = _open_first_camera(indices=(0, 1)) or cv2.VideoCapture(0)
                else:
                    self.cap = cv2.VideoCapture(source_path)
                    self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type == VideoSourceType.PARTNER:
                # Frames arrive later via the partner buffer; nothing to open
                self.partner.clear()
                return True

            else:
                raise ValueError(f"Unsupported source type: {source_type}")

            return self.cap is not None and self.cap.isOpened()

        except Exception as e:
            logger.error("Error initializing video source: %s", e)
            self.release()
            return False

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read the newest frame.

        Returns:
            (success, frame): frame is a BGR array when success is True
        """
        if self.source_type == VideoSourceType.PARTNER:
            frame = self.partner.get_frame()
            return (True, frame) if frame is not None else (False, None)

        if not self.cap or not self.cap.isOpened():
            return False, None
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return False, None
        return True, frame

    def detach_partner(self) -> None:
        """Drop the peer-supplied frame; the source stays unready until frames resume."""
        self.partner.clear()

    def release(self) -> None:
        """Release the current video source and free resources."""
        if self.cap:
            self.cap.release()
            self.cap = None
        if self.source_type == VideoSourceType.PARTNER:
            self.partner.clear()
        self.source_type = None
        self.source_path = None
