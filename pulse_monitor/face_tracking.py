"""
Face detection and tracking.

Detection is expensive, so it only runs while no face is tracked; once a
face is found, a cheap incremental tracker follows it from frame to frame.
The lifecycle is an explicit state machine::

    IDLE ──detect()──▶ DETECTING ──face──▶ TRACKING
      ▲                    │                   │
      └──────no face───────┘◀──confidence < 0.3┘

Detection runs on a dedicated worker thread and never blocks the caller.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Optional, Protocol, Tuple

import cv2
import numpy as np

from .geometry import Rect

logger = logging.getLogger(__name__)

#: Tracker confidence below which the track is dropped.
MIN_TRACK_CONFIDENCE = 0.3


class TrackState(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    TRACKING = "tracking"


class FaceDetector(Protocol):
    def detect(self, image: np.ndarray) -> Optional[Rect]:
        """Return the normalized bounding box of at most one face."""


class FaceTracker(Protocol):
    def start(self, image: np.ndarray, face: Rect) -> None:
        """Initialise the tracker from a detection on *image*."""

    def track(self, previous: Rect, image: np.ndarray) -> Optional[Tuple[Rect, float]]:
        """Return the updated normalized box and a confidence in [0, 1]."""


def _gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


# ---------------------------------------------------------------------------
# OpenCV backends
# ---------------------------------------------------------------------------

class HaarFaceDetector:
    """
    Frontal face detector based on OpenCV's bundled Haar cascade.

    Parameters
    ----------
    scale_factor:
        Image pyramid step of ``detectMultiScale``.
    min_neighbors:
        Neighbour count a candidate needs to be kept.
    min_size_fraction:
        Smallest face size as a fraction of the shorter image side.
    """

    def __init__(
        self,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size_fraction: float = 0.15,
    ) -> None:
        path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        self._cascade = cv2.CascadeClassifier(path)
        if self._cascade.empty():
            raise RuntimeError(f"Cannot load face cascade from {path}")
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size_fraction = min_size_fraction

    def detect(self, image: np.ndarray) -> Optional[Rect]:
        gray = cv2.equalizeHist(_gray(image))
        h, w = gray.shape[:2]
        side = max(1, int(min(w, h) * self.min_size_fraction))
        faces = self._cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(side, side),
        )
        if len(faces) == 0:
            return None
        fx, fy, fw, fh = max(faces, key=lambda f: f[2] * f[3])
        return Rect(fx / w, fy / h, fw / w, fh / h)


class TemplateFaceTracker:
    """
    Incremental tracker: normalized cross-correlation of the detected face
    against a search window around its previous position.

    The correlation peak, clipped to [0, 1], is the tracking confidence.

    Parameters
    ----------
    search_margin:
        Extra search area around the previous box, as a fraction of its size.
    """

    def __init__(self, search_margin: float = 0.25) -> None:
        self.search_margin = search_margin
        self._template: Optional[np.ndarray] = None

    def start(self, image: np.ndarray, face: Rect) -> None:
        h, w = image.shape[:2]
        template = face.scaled(w, h).clipped((w, h)).crop(_gray(image))
        self._template = np.ascontiguousarray(template)

    def track(self, previous: Rect, image: np.ndarray) -> Optional[Tuple[Rect, float]]:
        if self._template is None:
            return None
        gray = _gray(image)
        h, w = gray.shape[:2]
        th, tw = self._template.shape[:2]

        box = previous.scaled(w, h)
        search = Rect(
            box.x - box.width * self.search_margin,
            box.y - box.height * self.search_margin,
            box.width * (1.0 + 2.0 * self.search_margin),
            box.height * (1.0 + 2.0 * self.search_margin),
        ).clipped((w, h))
        sx, sy, _, _ = search.to_pixels()
        window = search.crop(gray)
        if window.shape[0] < th or window.shape[1] < tw:
            return previous, 0.0

        scores = cv2.matchTemplate(window, self._template, cv2.TM_CCOEFF_NORMED)
        _, best, _, (mx, my) = cv2.minMaxLoc(scores)
        found = Rect((sx + mx) / w, (sy + my) / h, tw / w, th / h)
        return found, float(np.clip(best, 0.0, 1.0))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class FaceTracking:
    """
    Face-track state machine driving a detector and a tracker.

    Parameters
    ----------
    detector:
        Full-image face detector, run while no face is tracked.
    tracker:
        Incremental tracker, run while a face is tracked.
    min_confidence:
        The track is dropped when the tracker confidence falls below this.
    """

    def __init__(
        self,
        detector: FaceDetector,
        tracker: FaceTracker,
        min_confidence: float = MIN_TRACK_CONFIDENCE,
    ) -> None:
        self.detector = detector
        self.tracker = tracker
        self.min_confidence = min_confidence

        self._state = TrackState.IDLE
        self._face: Optional[Rect] = None
        self._confidence: float = 0.0
        self._pending: Optional[Future] = None
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="face-detect")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def step(self, image: np.ndarray) -> TrackState:
        """
        Advance the state machine with the latest *image*.

        Starts a background detection when idle, tracks when tracking and
        does nothing while a detection is in flight.
        """
        state = self.state
        if state is TrackState.IDLE:
            self._start_detection(image)
        elif state is TrackState.TRACKING:
            self._track(image)
        return self.state

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the in-flight detection, if any, has finished."""
        pending = self._pending
        if pending is not None:
            pending.result(timeout)

    @property
    def state(self) -> TrackState:
        with self._lock:
            return self._state

    @property
    def face(self) -> Optional[Rect]:
        """The tracked face box (normalized), or *None* without a track."""
        with self._lock:
            return self._face if self._state is TrackState.TRACKING else None

    @property
    def confidence(self) -> float:
        with self._lock:
            return self._confidence

    def reset(self) -> None:
        """Drop the current track; an in-flight detection is discarded."""
        with self._lock:
            self._state = TrackState.IDLE
            self._face = None
            self._confidence = 0.0

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _start_detection(self, image: np.ndarray) -> None:
        with self._lock:
            if self._state is not TrackState.IDLE:
                return
            self._state = TrackState.DETECTING
        self._pending = self._executor.submit(self._detect, image)

    def _detect(self, image: np.ndarray) -> None:
        try:
            face = self.detector.detect(image)
            if face is not None:
                self.tracker.start(image, face)
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Face detection failed: %s", exc)
            face = None

        with self._lock:
            if self._state is not TrackState.DETECTING:
                return
            if face is None:
                self._state = TrackState.IDLE
                return
            self._state = TrackState.TRACKING
            self._face = face
            self._confidence = 1.0
        logger.info("Face detected at %s", face)

    def _track(self, image: np.ndarray) -> None:
        with self._lock:
            previous = self._face
        if previous is None:
            return

        try:
            result = self.tracker.track(previous, image)
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Face tracking failed: %s", exc)
            result = None

        with self._lock:
            if self._state is not TrackState.TRACKING:
                return
            if result is None or result[1] < self.min_confidence:
                self._state = TrackState.IDLE
                self._face = None
                self._confidence = 0.0 if result is None else result[1]
                lost = True
            else:
                self._face, self._confidence = result
                lost = False
        if lost:
            logger.info("Face track lost (confidence %.2f).", self._confidence)
