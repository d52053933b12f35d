"""
Engagement Monitor.

Per-session orchestration of the real-time pipeline:

    video source -> FrameScheduler -> FeatureExtractor -> EngagementScorer
    -> MetricsAggregator -> AlertEngine -> alert channels + persistence

One MonitoringSession drives one video source. The scheduler thread runs
extraction, scoring, aggregation and alert evaluation serially, so samples are
produced in timestamp order; alert delivery runs on the dispatcher's pool.
Stopping discards the partial tick and the alert cooldown, so a restarted
session never inherits state from the previous run.

Client-side alert cues (sound, vibration) and the visual flag are consumed by
GET /monitoring/state; the video feed reads the last presented frame.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import cv2
import numpy as np

import config
from services.alert_channels import ClientCueBoard, VisualChannel, build_channels
from services.alert_engine import AlertDispatcher, AlertEngine, AlertSettings
from services.engagement_store import EngagementStore
from services.signaling_relay import PHONE, RoomEvent, SignalingRelay
from utils.engagement_scorer import EngagementScorer, ScoredSubject
from utils.feature_extractor_interface import FeatureExtractorInterface, SubjectObservation
from utils.frame_scheduler import FrameScheduler
from utils.metrics_aggregator import EngagementSample, MetricsAggregator
from utils.video_source_handler import VideoSourceHandler, VideoSourceType

logger = logging.getLogger(__name__)


def default_extractor_factory() -> FeatureExtractorInterface:
    # Imported here so that mediapipe is only loaded when monitoring actually starts
    from utils.mediapipe_extractor import MediaPipeFeatureExtractor
    return MediaPipeFeatureExtractor()


class MonitoringSession:
    """
    Usage:
        session = MonitoringSession("session-1", store)
        session.start_monitoring(VideoSourceType.WEBCAM)
        state = session.get_current_state()
        session.stop_monitoring()
    """

    def __init__(
        self,
        session_id: str,
        store: EngagementStore,
        relay: Optional[SignalingRelay] = None,
        extractor_factory: Callable[[], FeatureExtractorInterface] = default_extractor_factory,
        synchronous_dispatch: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = session_id
        self.store = store
        self.relay = relay
        self._extractor_factory = extractor_factory
        self._clock = clock

        self.extractor: Optional[FeatureExtractorInterface] = None
        self.scorer = EngagementScorer()
        self.video_handler = VideoSourceHandler()
        self.aggregator = MetricsAggregator(
            sink=self._persist_sample,
            emit_interval_sec=config.SAMPLE_EMIT_INTERVAL_SEC,
        )

        self.cue_board = ClientCueBoard()
        self.settings = self._load_settings()
        # The banner stays up for as long as the session is in cooldown
        self.visual = VisualChannel(display_sec=self.settings.cooldown_sec, clock=clock)
        self.dispatcher = AlertDispatcher(
            build_channels(self.settings, self.cue_board, self.visual),
            store=store,
            session_id=session_id,
            synchronous=synchronous_dispatch,
        )
        self.alert_engine = AlertEngine(self.settings, channel_names=self.dispatcher.channel_names)

        self.scheduler = FrameScheduler(
            process_interval_sec=config.FRAME_PROCESS_INTERVAL_MS / 1000.0,
            refresh_interval_sec=1.0 / max(1, config.FRAME_REFRESH_HZ),
            present=self._present,
            clock=clock,
        )

        self.is_running = False
        self.source_type: Optional[VideoSourceType] = None
        self.room_id: Optional[str] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

        self.lock = threading.Lock()
        self._scored: List[ScoredSubject] = []
        self._last_frame: Optional[np.ndarray] = None
        self._last_frame_lock = threading.Lock()

    def _load_settings(self) -> AlertSettings:
        try:
            stored = self.store.load_alert_settings(self.session_id)
        except Exception as e:
            logger.warning("Failed to load alert settings for %s: %s", self.session_id, e)
            stored = None
        return stored or AlertSettings()

    def start_monitoring(
        self,
        source_type: VideoSourceType = VideoSourceType.WEBCAM,
        source_path: Optional[str] = None,
        room_id: Optional[str] = None,
        threaded: bool = True,
    ) -> bool:
        """
        Start monitoring a video source.

        Args:
            source_type: WEBCAM, FILE, STREAM or PARTNER
            source_path: File path or stream URL (FILE/STREAM)
            room_id: Signaling room of the phone camera (PARTNER)
            threaded: If False the caller drives self.scheduler.tick()

        Returns:
            bool: True if monitoring started
        """
        if self.is_running:
            self.stop_monitoring()

        with self.lock:
            self._scored = []
        self.aggregator.reset()
        self.alert_engine.reset()
        self.visual.clear()
        self.cue_board.clear()

        if self.extractor is None:
            try:
                self.extractor = self._extractor_factory()
            except Exception as e:
                logger.error("Feature extractor unavailable: %s", e)
                return False

        if not self.video_handler.initialize_source(source_type, source_path):
            logger.error("Failed to initialize video source %s (path=%s)", source_type.value, source_path)
            return False

        self.source_type = source_type
        self.room_id = room_id
        if source_type == VideoSourceType.PARTNER and self.relay is not None and room_id:
            self._unsubscribe = self.relay.subscribe(self._on_room_event)

        self.is_running = True
        self.scheduler.start(self.video_handler, self.process_frame, threaded=threaded)
        logger.info(
            "Monitoring started: session=%s source=%s path=%s room=%s",
            self.session_id, source_type.value, source_path, room_id,
        )
        return True

    def stop_monitoring(self) -> None:
        """Stop the scheduler, release the source and discard per-run state."""
        with self.lock:
            was_running = self.is_running
            self.is_running = False
        self.scheduler.stop()
        self.video_handler.release()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        with self.lock:
            self._scored = []
        self.aggregator.reset()
        self.alert_engine.reset()
        self.visual.clear()
        with self._last_frame_lock:
            self._last_frame = None

        if self.extractor is not None:
            self.extractor.close()
            self.extractor = None
        self.source_type = None
        self.room_id = None
        if was_running:
            logger.info("Monitoring stopped: session=%s", self.session_id)

    def close(self) -> None:
        self.stop_monitoring()
        self.dispatcher.shutdown()

    def _extract(self, extractor: FeatureExtractorInterface, frame: np.ndarray) -> List[SubjectObservation]:
        try:
            observations = extractor.extract(frame)
        except Exception as e:
            logger.warning("Feature extraction failed: %s", e)
            return []
        if not isinstance(observations, list) or not all(isinstance(o, SubjectObservation) for o in observations):
            logger.warning("Feature extractor returned malformed output; treating as no subjects")
            return []
        return observations

    def process_frame(self, frame: np.ndarray, now: Optional[float] = None) -> EngagementSample:
        """
        Run one pipeline tick on a frame.

        Extraction errors count as zero subjects. Returns the tick's sample.
        A tick that finishes after stop_monitoring() leaves no trace.
        """
        extractor = self.extractor
        observations = self._extract(extractor, frame) if extractor is not None else []
        scored = [self.scorer.score(o) for o in observations]
        now = self._clock() if now is None else now

        with self.lock:
            if not self.is_running:
                return self.aggregator.current
            self._scored = scored
            sample = self.aggregator.on_tick(scored)
            self.aggregator.emit_if_due(now)
            event = self.alert_engine.evaluate(sample, now)
            if event is not None:
                self.dispatcher.dispatch(event)
        return sample

    def _persist_sample(self, sample: EngagementSample) -> None:
        self.store.record_sample(self.session_id, sample)

    def _present(self, frame: np.ndarray) -> None:
        with self._last_frame_lock:
            self._last_frame = frame

    def _on_room_event(self, event: RoomEvent) -> None:
        if event.kind == "left" and event.role == PHONE and event.room_id == self.room_id:
            logger.info("Phone left room %s; partner source detached", event.room_id)
            self.video_handler.detach_partner()

    def push_partner_frame(self, image_bytes: bytes) -> bool:
        """Store a JPEG/PNG frame from the host browser as the newest partner frame."""
        if self.source_type != VideoSourceType.PARTNER:
            return False
        return self.video_handler.partner.set_frame_from_bytes(image_bytes)

    def update_settings(self, settings: AlertSettings) -> None:
        """Persist new alert settings and apply them; the cooldown in progress is kept."""
        self.store.save_alert_settings(self.session_id, settings)
        self.settings = settings
        self.visual.display_sec = float(settings.cooldown_sec)
        self.dispatcher.channels = build_channels(settings, self.cue_board, self.visual)
        self.alert_engine.settings = settings
        self.alert_engine.channel_names = tuple(self.dispatcher.channel_names)

    def get_last_frame_jpeg(self) -> Optional[bytes]:
        """Most recent presented frame as JPEG bytes, or None."""
        with self._last_frame_lock:
            if self._last_frame is None:
                return None
            frame_to_encode = self._last_frame.copy()
        ok, buf = cv2.imencode(".jpg", frame_to_encode)
        return buf.tobytes() if ok else None

    def get_current_state(self, drain_cues: bool = True) -> Dict[str, Any]:
        """
        Snapshot for the dashboard: latest sample, per-subject scores, the
        visual flag and pending client cues (drained unless drain_cues=False).
        """
        with self.lock:
            sample = self.aggregator.current
            subjects = [s.to_dict() for s in self._scored]
        state = self.alert_engine.state
        now = self._clock()
        return {
            "sessionId": self.session_id,
            "isRunning": self.is_running,
            "sourceType": self.source_type.value if self.source_type else None,
            "roomId": self.room_id,
            "sample": sample.to_dict(),
            "subjects": subjects,
            "alert": {
                "severity": state.current_severity.value if state.current_severity else None,
                "inCooldown": not self.alert_engine.is_idle(now),
            },
            "visual": self.visual.state(),
            "cues": self.cue_board.drain() if drain_cues else [],
        }
