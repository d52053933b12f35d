"""
Frame Scheduler Module

Decouples the capture rate from the processing rate. A loop runs at display
refresh cadence (default 60 Hz); every tick reads the newest frame from the
source and presents it (video-feed preview), but the expensive
extract -> score -> aggregate path only runs once per process interval
(default 100 ms, ~10 Hz) measured on a monotonic clock.

There is no frame queue: each tick reads whatever frame is newest, so stale
frames are dropped implicitly. A source that is not ready yet (no frame, or a
read error) just skips the tick.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

FrameSink = Callable[[np.ndarray], None]


class FrameScheduler:
    """
    Bounded-cadence frame pump.

    Usage:
        scheduler = FrameScheduler(process_interval_sec=0.1)
        scheduler.start(video_handler, sink=session.process_frame)
        ...
        scheduler.stop()

    `source` is anything with read_frame() -> (ok, frame), e.g. VideoSourceHandler.
    """

    def __init__(
        self,
        process_interval_sec: float = 0.1,
        refresh_interval_sec: float = 1.0 / 60.0,
        present: Optional[FrameSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            process_interval_sec: Minimum seconds between two sink calls
            refresh_interval_sec: Loop cadence (display refresh)
            present: Called with every frame read, processed or not
            clock: Monotonic time source
        """
        self.process_interval_sec = float(process_interval_sec)
        self.refresh_interval_sec = float(refresh_interval_sec)
        self._present = present
        self._clock = clock

        self._source: Any = None
        self._sink: Optional[FrameSink] = None
        self._last_processed_at: Optional[float] = None
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self.ticks = 0
        self.processed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, source: Any, sink: FrameSink, threaded: bool = True) -> None:
        """
        Begin pumping frames from `source` into `sink`.

        Args:
            source: Object with read_frame() -> (bool, frame)
            sink: Processing callback, invoked at most once per process interval
            threaded: If False, nothing is scheduled; the caller drives tick()
        """
        self.stop()
        with self._lock:
            self._source = source
            self._sink = sink
            self._last_processed_at = None
            self._stop_event = threading.Event()
            self._running = True
        if threaded:
            self._thread = threading.Thread(target=self._loop, name="frame-scheduler", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """Cancel the pending re-schedule. Safe to call repeatedly."""
        with self._lock:
            self._running = False
            self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def _loop(self) -> None:
        stop_event = self._stop_event
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(self.refresh_interval_sec)

    def _read(self) -> Tuple[bool, Optional[np.ndarray]]:
        try:
            ok, frame = self._source.read_frame()
        except Exception as e:
            logger.debug("Video source not ready: %s", e)
            return False, None
        if not ok or frame is None:
            return False, None
        return True, frame

    def tick(self, now: Optional[float] = None) -> bool:
        """
        Run one scheduling cycle.

        Returns:
            True if the sink was invoked for this tick, False if the tick was
            skipped (stopped, source unready, or under the process interval).
        """
        if not self._running or self._source is None:
            return False
        self.ticks += 1

        ok, frame = self._read()
        if not ok:
            return False

        if self._present is not None:
            try:
                self._present(frame)
            except Exception as e:
                logger.debug("Frame presentation failed: %s", e)

        now = self._clock() if now is None else now
        if self._last_processed_at is not None and now - self._last_processed_at < self.process_interval_sec:
            return False
        self._last_processed_at = now

        try:
            self._sink(frame)
        except Exception as e:
            # The sink owns its error handling; anything escaping is logged, never fatal
            logger.warning("Frame processing failed: %s", e)
        self.processed += 1
        return True
