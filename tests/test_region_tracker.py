"""
Unit tests for Rect and RegionTracker.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_monitor.geometry import Rect
from pulse_monitor.region_tracker import REGION_HISTORY, RegionTracker


IMAGE_SIZE = (640, 480)
FACE = Rect(0.25, 0.2, 0.5, 0.5)          # 320 × 240 px at (160, 96)


def _approx(rect: Rect):
    return pytest.approx((rect.x, rect.y, rect.width, rect.height))


class TestRect:

    def test_from_center(self):
        r = Rect.from_center(0.5, 0.5, 0.2, 0.4)
        assert (r.x, r.y, r.width, r.height) == pytest.approx((0.4, 0.3, 0.2, 0.4))

    def test_clipped_stays_inside_image(self):
        r = Rect(-50, 400, 800, 200).clipped((640, 480))
        assert r.x == 0
        assert r.max_x == 640
        assert r.max_y == 480
        assert r.width > 0 and r.height > 0

    def test_clipped_never_degenerate(self):
        r = Rect(1000, 1000, 10, 10).clipped((640, 480))
        assert r.width >= 1.0
        assert r.height >= 1.0
        assert r.max_x <= 640 and r.max_y <= 480

    def test_crop_shape(self):
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        patch = Rect(10, 20, 30, 40).crop(image)
        assert patch.shape == (40, 30, 3)


class TestRegionTracker:

    def test_no_region_before_first_observation(self):
        tracker = RegionTracker()
        assert tracker.region is None
        assert len(tracker) == 0

    def test_region_is_lower_face_band(self):
        tracker = RegionTracker()
        region = tracker.update(FACE, IMAGE_SIZE)
        # Full face width, bottom 40 % of the face height
        assert _approx(region) == (160.0, 240.0, 320.0, 96.0)
        assert tracker.region == region

    def test_single_observation_is_its_own_mean(self):
        tracker = RegionTracker()
        region = tracker.update(FACE, IMAGE_SIZE)
        expected = RegionTracker.measurement_rect(FACE.scaled(*IMAGE_SIZE))
        assert _approx(region) == (expected.x, expected.y, expected.width, expected.height)

    def test_mean_of_two_observations(self):
        tracker = RegionTracker()
        tracker.update(Rect(0.0, 0.0, 0.5, 0.5), IMAGE_SIZE)
        region = tracker.update(Rect(0.2, 0.2, 0.5, 0.5), IMAGE_SIZE)
        # Same size, origin halfway between (0, 144) and (128, 240)
        assert _approx(region) == (64.0, 192.0, 320.0, 96.0)

    def test_constant_input_converges_to_last_rectangle(self):
        tracker = RegionTracker()
        for _ in range(200):
            region = tracker.update(FACE, IMAGE_SIZE)
        last = RegionTracker.measurement_rect(FACE.scaled(*IMAGE_SIZE))
        assert len(tracker) == REGION_HISTORY
        assert _approx(region) == (last.x, last.y, last.width, last.height)

    def test_old_observations_are_evicted(self):
        tracker = RegionTracker(history=3)
        tracker.update(Rect(0.0, 0.0, 0.5, 0.5), IMAGE_SIZE)
        for _ in range(3):
            region = tracker.update(FACE, IMAGE_SIZE)
        assert _approx(region) == (160.0, 240.0, 320.0, 96.0)

    def test_region_clipped_to_image(self):
        tracker = RegionTracker()
        region = tracker.update(Rect(0.8, 0.8, 0.5, 0.5), IMAGE_SIZE)
        assert region.x >= 0 and region.y >= 0
        assert region.max_x <= IMAGE_SIZE[0]
        assert region.max_y <= IMAGE_SIZE[1]
        assert region.width >= 1 and region.height >= 1

    def test_reset(self):
        tracker = RegionTracker()
        tracker.update(FACE, IMAGE_SIZE)
        tracker.reset()
        assert tracker.region is None
        assert len(tracker) == 0
