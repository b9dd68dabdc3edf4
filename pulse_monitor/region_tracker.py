"""
Measurement region tracking.

The brightness samples come from the lower part of the face (cheeks and
upper lip), which is mostly skin and free of eyes and hair.  The region is
derived from the face bounding box on every observation and then averaged
over the most recent observations to damp the jitter of the face tracker.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional, Tuple

from .geometry import Rect

#: Centre of the region relative to the face box, ``y`` measured from the
#: bottom edge of the face.
REGION_CENTER: Tuple[float, float] = (0.5, 0.2)
#: Size of the region relative to the face box.
REGION_SIZE: Tuple[float, float] = (1.0, 0.4)
#: Number of observations the region is averaged over.
REGION_HISTORY = 120


class RegionTracker:
    """
    Smoothed measurement region derived from face observations.

    Parameters
    ----------
    history:
        Number of most recent region rectangles averaged together.
    """

    def __init__(self, history: int = REGION_HISTORY) -> None:
        self._rects: Deque[Rect] = deque(maxlen=history)
        self._region: Optional[Rect] = None
        self._lock = threading.Lock()

    def update(self, face_box: Rect, image_size: Tuple[int, int]) -> Rect:
        """
        Record a new face observation and return the smoothed region.

        Parameters
        ----------
        face_box:
            Face bounding box in normalized image coordinates.
        image_size:
            ``(width, height)`` of the image in pixels.
        """
        img_w, img_h = image_size
        rect = self.measurement_rect(face_box.scaled(img_w, img_h))

        with self._lock:
            self._rects.append(rect)
            n = len(self._rects)
            mean = Rect(
                sum(r.x for r in self._rects) / n,
                sum(r.y for r in self._rects) / n,
                sum(r.width for r in self._rects) / n,
                sum(r.height for r in self._rects) / n,
            )
            self._region = mean.clipped(image_size)
            return self._region

    @staticmethod
    def measurement_rect(face: Rect) -> Rect:
        """Sub-rectangle of *face* (pixels) that is sampled for brightness."""
        cx, cy = REGION_CENTER
        rw, rh = REGION_SIZE
        relative = Rect.from_center(cx, 1.0 - cy, rw, rh)
        return relative.scaled(face.width, face.height).offset(face.x, face.y)

    @property
    def region(self) -> Optional[Rect]:
        """The last smoothed region, or *None* before the first observation."""
        with self._lock:
            return self._region

    def __len__(self) -> int:
        with self._lock:
            return len(self._rects)

    def reset(self) -> None:
        with self._lock:
            self._rects.clear()
            self._region = None
