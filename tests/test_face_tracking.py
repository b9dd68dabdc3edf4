"""
Unit tests for the face-track state machine and the OpenCV backends.
Run with:  pytest tests/
"""

from __future__ import annotations

import threading
from typing import List, Optional, Tuple

import numpy as np
import pytest

from pulse_monitor.face_tracking import (
    FaceTracking,
    HaarFaceDetector,
    TemplateFaceTracker,
    TrackState,
)
from pulse_monitor.geometry import Rect


FACE = Rect(0.25, 0.25, 0.5, 0.5)
IMAGE = np.zeros((120, 160, 3), dtype=np.uint8)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeDetector:
    def __init__(self, face: Optional[Rect] = FACE, error: bool = False,
                 gate: Optional[threading.Event] = None) -> None:
        self.face = face
        self.error = error
        self.gate = gate
        self.calls = 0

    def detect(self, image: np.ndarray) -> Optional[Rect]:
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.error:
            raise RuntimeError("detector crashed")
        return self.face


class FakeTracker:
    def __init__(self, confidences: List[float]) -> None:
        self.confidences = list(confidences)
        self.started: List[Rect] = []

    def start(self, image: np.ndarray, face: Rect) -> None:
        self.started.append(face)

    def track(self, previous: Rect, image: np.ndarray) -> Optional[Tuple[Rect, float]]:
        confidence = self.confidences.pop(0)
        if confidence < 0:
            raise RuntimeError("tracker crashed")
        return previous.offset(0.01, 0.0), confidence


def _tracking(detector=None, tracker=None) -> FaceTracking:
    return FaceTracking(detector or FakeDetector(), tracker or FakeTracker([1.0] * 10))


# ---------------------------------------------------------------------------
# FaceTracking state machine
# ---------------------------------------------------------------------------

class TestFaceTracking:

    def test_starts_idle(self):
        ft = _tracking()
        assert ft.state is TrackState.IDLE
        assert ft.face is None
        ft.close()

    def test_detection_starts_track(self):
        tracker = FakeTracker([1.0])
        ft = _tracking(tracker=tracker)
        ft.step(IMAGE)
        ft.wait(5.0)
        assert ft.state is TrackState.TRACKING
        assert ft.face == FACE
        assert tracker.started == [FACE]
        ft.close()

    def test_no_face_returns_to_idle(self):
        ft = _tracking(detector=FakeDetector(face=None))
        ft.step(IMAGE)
        ft.wait(5.0)
        assert ft.state is TrackState.IDLE
        assert ft.face is None
        ft.close()

    def test_detector_failure_treated_as_no_face(self):
        ft = _tracking(detector=FakeDetector(error=True))
        ft.step(IMAGE)
        ft.wait(5.0)
        assert ft.state is TrackState.IDLE
        ft.close()

    def test_single_detection_in_flight(self):
        gate = threading.Event()
        detector = FakeDetector(gate=gate)
        ft = _tracking(detector=detector)
        assert ft.step(IMAGE) is TrackState.DETECTING
        assert ft.step(IMAGE) is TrackState.DETECTING
        assert ft.step(IMAGE) is TrackState.DETECTING
        gate.set()
        ft.wait(5.0)
        assert detector.calls == 1
        assert ft.state is TrackState.TRACKING
        ft.close()

    def test_confident_tracking_updates_face(self):
        ft = _tracking(tracker=FakeTracker([0.9]))
        ft.step(IMAGE)
        ft.wait(5.0)
        assert ft.step(IMAGE) is TrackState.TRACKING
        assert ft.face.x == pytest.approx(FACE.x + 0.01)
        assert ft.confidence == pytest.approx(0.9)
        ft.close()

    def test_low_confidence_drops_track(self):
        ft = _tracking(tracker=FakeTracker([0.5, 0.29]))
        ft.step(IMAGE)
        ft.wait(5.0)
        assert ft.step(IMAGE) is TrackState.TRACKING
        assert ft.step(IMAGE) is TrackState.IDLE
        assert ft.face is None
        ft.close()

    def test_tracker_failure_drops_track(self):
        ft = _tracking(tracker=FakeTracker([-1.0]))
        ft.step(IMAGE)
        ft.wait(5.0)
        assert ft.step(IMAGE) is TrackState.IDLE
        ft.close()

    def test_lost_track_triggers_new_detection(self):
        detector = FakeDetector()
        ft = _tracking(detector=detector, tracker=FakeTracker([0.1]))
        ft.step(IMAGE)
        ft.wait(5.0)
        ft.step(IMAGE)                               # lost
        ft.step(IMAGE)                               # detect again
        ft.wait(5.0)
        assert detector.calls == 2
        assert ft.state is TrackState.TRACKING
        ft.close()

    def test_reset(self):
        ft = _tracking()
        ft.step(IMAGE)
        ft.wait(5.0)
        ft.reset()
        assert ft.state is TrackState.IDLE
        assert ft.face is None
        ft.close()


# ---------------------------------------------------------------------------
# OpenCV backends
# ---------------------------------------------------------------------------

class TestOpenCVBackends:

    def test_haar_detector_blank_image(self):
        detector = HaarFaceDetector()
        assert detector.detect(np.zeros((240, 320, 3), dtype=np.uint8)) is None

    def _noise(self, seed: int = 3) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return rng.integers(0, 256, (200, 200, 3), dtype=np.uint8)

    def test_template_tracker_without_start(self):
        assert TemplateFaceTracker().track(FACE, self._noise()) is None

    def test_template_tracker_same_image(self):
        image = self._noise()
        tracker = TemplateFaceTracker()
        tracker.start(image, FACE)
        box, confidence = tracker.track(FACE, image)
        assert confidence > 0.99
        assert (box.x, box.y, box.width, box.height) == pytest.approx((0.25, 0.25, 0.5, 0.5))

    def test_template_tracker_follows_shift(self):
        image = self._noise()
        tracker = TemplateFaceTracker()
        tracker.start(image, FACE)
        shifted = np.roll(image, 6, axis=1)
        box, confidence = tracker.track(FACE, shifted)
        assert confidence > 0.99
        assert box.x == pytest.approx(56 / 200)
        assert box.y == pytest.approx(0.25)

    def test_template_tracker_low_confidence_on_new_scene(self):
        tracker = TemplateFaceTracker()
        tracker.start(self._noise(1), FACE)
        _, confidence = tracker.track(FACE, self._noise(2))
        assert confidence < 0.3
