"""
Rectangle value type shared by the face tracking and region tracking code.

Rectangles use the image convention of OpenCV / numpy: the origin is the
top-left corner and ``y`` grows downwards.  The same type holds normalized
coordinates (0 – 1, relative to the image) and absolute pixel coordinates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_center(cls, cx: float, cy: float, width: float, height: float) -> "Rect":
        return cls(cx - width / 2.0, cy - height / 2.0, width, height)

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def scaled(self, sx: float, sy: float) -> "Rect":
        """Multiply every coordinate by the given factors (normalized → pixels)."""
        return Rect(self.x * sx, self.y * sy, self.width * sx, self.height * sy)

    def offset(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def clipped(self, image_size: Tuple[int, int]) -> "Rect":
        """
        Clip into ``(width, height)`` image bounds.

        The result is never degenerate: it keeps at least one pixel in
        each direction, even when the rectangle lies outside the image.
        """
        img_w, img_h = image_size
        x0 = min(max(self.x, 0.0), img_w - 1.0)
        y0 = min(max(self.y, 0.0), img_h - 1.0)
        x1 = min(max(self.max_x, x0 + 1.0), float(img_w))
        y1 = min(max(self.max_y, y0 + 1.0), float(img_h))
        return Rect(x0, y0, x1 - x0, y1 - y0)

    def to_pixels(self) -> Tuple[int, int, int, int]:
        """Return integer ``(x, y, w, h)``, each side at least one pixel."""
        x, y = int(self.x), int(self.y)
        w = max(1, int(round(self.max_x)) - x)
        h = max(1, int(round(self.max_y)) - y)
        return x, y, w, h

    def crop(self, image):
        """Return the pixels of *image* (H × W × C array) covered by this rectangle."""
        x, y, w, h = self.to_pixels()
        return image[y:y + h, x:x + w]
