"""
Measurement orchestrator.

Four free-running periodic tasks share the pipeline state:

==============  ========  =====================================================
task            rate      work
==============  ========  =====================================================
``sample``      30 Hz     crop the measurement region, extract one sample
``face``        100 Hz    detect (when idle) or track the face
``spectral``    10 Hz     FFT of the sample buffer → last spectrum
``estimation``  10 Hz     aggregate spectra, fuse BPM candidates
==============  ========  =====================================================

Every component owns its state behind its own lock.  Results for consumers
are published as one immutable :class:`MonitorSnapshot` whose reference is
swapped atomically, so a reader never observes a half-updated cycle.  No
task ever raises: missing frames, a lost face or a short buffer simply make
the tick a no-op, and the next tick is the retry.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from .bpm_estimator import AccuracyStatus, BpmEstimate, BpmEstimator, BpmHistoryPoint
from .camera import FrameSource
from .errors import ExtractionError, NoFaceTrack, NoFrame, PulseMonitorError
from .face_tracking import FaceTracking, HaarFaceDetector, TemplateFaceTracker, TrackState
from .geometry import Rect
from .region_tracker import RegionTracker
from .sample_buffer import Sample, SampleBuffer
from .sample_extractor import SampleExtractor
from .spectral_analyzer import SpectralAnalyzer, SpectrumPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorSnapshot:
    """Read-only view of the latest results, for rendering and logging."""

    preview: Optional[np.ndarray] = None
    measurement_image: Optional[np.ndarray] = None
    region: Optional[Rect] = None
    face: Optional[Rect] = None
    track_state: TrackState = TrackState.IDLE
    green_history: Tuple[Sample, ...] = ()
    buffer_fill: float = 0.0
    last_spectrum: Tuple[SpectrumPoint, ...] = ()
    averaged_spectrum: Tuple[SpectrumPoint, ...] = ()
    bpm_history: Tuple[BpmHistoryPoint, ...] = ()
    accuracy: Optional[AccuracyStatus] = None

    @property
    def bpm(self) -> Optional[float]:
        """Latest reported BPM, or *None* while there is no data."""
        return self.bpm_history[-1].bpm if self.bpm_history else None


class _PeriodicTask:
    """Runs *func* every *interval* seconds on a daemon thread; late ticks are skipped."""

    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        self.name = name
        self.interval = interval
        self.func = func
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        deadline = time.monotonic()
        while not self._stop.is_set():
            try:
                self.func()
            except Exception:                                # noqa: BLE001
                logger.exception("%s task failed", self.name)
            deadline += self.interval
            now = time.monotonic()
            if deadline < now:
                # Running late: drop the missed ticks instead of queueing them
                deadline = now
            self._stop.wait(deadline - now)


class PulseMonitor:
    """
    Drives the rPPG pipeline from a frame source.

    Parameters
    ----------
    frame_source:
        Provides the most recent camera frame.
    fps:
        Sampling rate; also the rate the spectral axis is computed for.
    face_tracking:
        Face-track state machine; an OpenCV Haar detector with a template
        tracker is used when omitted.
    face_hz, spectral_hz, estimation_hz:
        Rates of the other periodic tasks.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        fps: float = 30.0,
        face_tracking: Optional[FaceTracking] = None,
        face_hz: float = 100.0,
        spectral_hz: float = 10.0,
        estimation_hz: float = 10.0,
    ) -> None:
        self.frame_source = frame_source
        self.fps = fps
        self.face_tracking = face_tracking if face_tracking is not None else FaceTracking(
            HaarFaceDetector(), TemplateFaceTracker()
        )
        self.region_tracker = RegionTracker()
        self.extractor = SampleExtractor()
        self.buffer = SampleBuffer()
        self.analyzer = SpectralAnalyzer(fps=fps, sample_count=self.buffer.capacity)
        self.estimator = BpmEstimator()

        self._snapshot = MonitorSnapshot()
        self._publish_lock = threading.Lock()
        self._sampling = threading.Lock()
        self._tasks: List[_PeriodicTask] = [
            _PeriodicTask("sample", 1.0 / fps, self.sample_tick),
            _PeriodicTask("face", 1.0 / face_hz, self.face_tick),
            _PeriodicTask("spectral", 1.0 / spectral_hz, self.spectral_tick),
            _PeriodicTask("estimation", 1.0 / estimation_hz, self.estimation_tick),
        ]
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        for task in self._tasks:
            task.start()
        self._running = True
        logger.info("Pulse monitor started (%.0f fps).", self.fps)

    def stop(self) -> None:
        if not self._running:
            return
        for task in self._tasks:
            task.stop()
        self._running = False
        logger.info("Pulse monitor stopped.")

    def close(self) -> None:
        self.stop()
        self.face_tracking.close()

    def __enter__(self) -> "PulseMonitor":
        self.start()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    @property
    def running(self) -> bool:
        return self._running

    def snapshot(self) -> MonitorSnapshot:
        with self._publish_lock:
            return self._snapshot

    def reset(self) -> None:
        """
        Forget every sample, spectrum, estimate and the face track.

        Running tasks are paused for the reset so no in-flight tick can
        publish pre-reset results afterwards.
        """
        was_running = self._running
        self.stop()
        self.buffer.reset()
        self.region_tracker.reset()
        self.estimator.reset()
        self.face_tracking.reset()
        with self._publish_lock:
            self._snapshot = MonitorSnapshot()
        logger.info("Measurement reset.")
        if was_running:
            self.start()

    # ------------------------------------------------------------------
    # Periodic tasks
    # ------------------------------------------------------------------

    def sample_tick(self) -> Optional[Sample]:
        """Extract one brightness sample from the latest frame."""
        if not self._sampling.acquire(blocking=False):
            return None
        try:
            return self._sample()
        except PulseMonitorError as exc:
            logger.debug("Sampling skipped: %s", exc)
            return None
        finally:
            self._sampling.release()

    def face_tick(self) -> TrackState:
        """Advance face detection / tracking on the latest frame."""
        frame = self.frame_source.latest_frame()
        if frame is None:
            return self.face_tracking.state
        state = self.face_tracking.step(frame)
        self._publish(face=self.face_tracking.face, track_state=state)
        return state

    def spectral_tick(self) -> Tuple[SpectrumPoint, ...]:
        """Analyze the sample buffer and publish the resulting spectrum."""
        spectrum = tuple(self.analyzer.analyze(self.buffer.values()))
        self._publish(last_spectrum=spectrum)
        return spectrum

    def estimation_tick(self) -> Optional[BpmEstimate]:
        """Fuse the most recently published spectrum into the BPM estimate."""
        spectrum = self.snapshot().last_spectrum
        result = self.estimator.estimate(self.buffer.values(), spectrum)
        self._publish(
            bpm_history=self.estimator.bpm_history,
            averaged_spectrum=self.estimator.averaged_spectrum,
            accuracy=self.estimator.accuracy,
        )
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _sample(self) -> Optional[Sample]:
        frame = self.frame_source.latest_frame()
        if frame is None:
            raise NoFrame("no camera frame yet")

        h, w = frame.shape[:2]
        face = self.face_tracking.face
        if face is not None:
            region = self.region_tracker.update(face, (w, h))
        elif self.region_tracker.region is not None:
            region = self.region_tracker.region.clipped((w, h))
        else:
            self._publish(preview=frame)
            raise NoFaceTrack("no face tracked and no previous region")

        measurement = region.crop(frame)
        try:
            value = self.extractor.extract(measurement)
        except ExtractionError:
            self._publish(preview=frame, region=region)
            raise

        sample = self.buffer.push_value(value)
        self._publish(
            preview=frame,
            measurement_image=measurement,
            region=region,
            green_history=self.buffer.snapshot(),
            buffer_fill=self.buffer.fill_ratio,
        )
        return sample

    def _publish(self, **changes) -> None:
        with self._publish_lock:
            self._snapshot = dataclasses.replace(self._snapshot, **changes)
