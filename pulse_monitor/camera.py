"""
Frame sources.

``Camera`` wraps OpenCV ``VideoCapture`` (a webcam index or a video file)
and keeps only the most recent frame, read on a background thread, so the
periodic tasks can ask for "the latest frame" at their own cadence.
``StaticFrameSource`` always serves the same image, which is handy for
demos and tests without a camera.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def latest_frame(self) -> Optional[np.ndarray]:
        """Return the most recent BGR frame, or *None* if none is available yet."""


class StaticFrameSource:
    """Frame source serving one fixed image."""

    def __init__(self, image: np.ndarray) -> None:
        self._image = image

    @classmethod
    def from_file(cls, path: str) -> "StaticFrameSource":
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if image is None:
            raise RuntimeError(f"Cannot read image {path}")
        return cls(image)

    def latest_frame(self) -> Optional[np.ndarray]:
        return self._image


class Camera:
    """
    Latest-frame wrapper around ``cv2.VideoCapture``.

    Parameters
    ----------
    source:
        OpenCV device index, or the path of a video file.
    resolution:
        (width, height) requested from the device.
    fps:
        Target frame rate requested from the device.
    flip_horizontal:
        Mirror the image left-to-right (selfie view).
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
        flip_horizontal: bool = False,
    ) -> None:
        self.source = source
        self.resolution = resolution
        self.fps = fps
        self.flip_horizontal = flip_horizontal

        self._cap: "cv2.VideoCapture | None" = None
        self._frame: Optional[np.ndarray] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Open the device and start the reader thread."""
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open video capture source {self.source!r}")
        w, h = self.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cap = cap

        self._stop.clear()
        self._reader = threading.Thread(target=self._read_loop, name="camera", daemon=True)
        self._reader.start()
        logger.info(
            "Camera opened – source=%r resolution=%s fps=%d",
            self.source, self.resolution, self.fps,
        )

    def close(self) -> None:
        """Stop the reader thread and release the device."""
        if self._cap is None:
            return
        self._stop.set()
        if self._reader is not None:
            self._reader.join(timeout=1.0)
            self._reader = None
        self._cap.release()
        self._cap = None
        with self._lock:
            self._frame = None
        logger.info("Camera closed.")

    def __enter__(self) -> "Camera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    @property
    def running(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def latest_frame(self) -> Optional[np.ndarray]:
        """Return the most recent BGR frame (H × W × 3, uint8), or *None*."""
        with self._lock:
            return self._frame

    def _read_loop(self) -> None:
        null_streak = 0
        while not self._stop.is_set():
            ok, frame = self._cap.read()
            if not ok:
                null_streak += 1
                if null_streak >= 10:
                    logger.error("Capture returned 10 consecutive empty frames – stopping.")
                    break
                continue
            null_streak = 0
            if self.flip_horizontal:
                frame = cv2.flip(frame, 1)
            # Frames are replaced, never mutated, so readers can keep a reference.
            with self._lock:
                self._frame = frame
            if isinstance(self.source, str):
                # Pace video files at their nominal rate
                self._stop.wait(1.0 / self.fps)
