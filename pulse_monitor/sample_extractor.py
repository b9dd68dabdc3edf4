"""
Green-channel brightness sampling.

Green light is absorbed most strongly by haemoglobin, so the mean green
intensity of a skin patch carries the pulse wave.  One scalar sample is
produced per frame from the cropped measurement region.
"""

from __future__ import annotations

import cv2
import numpy as np

from .errors import ExtractionError

#: Bytes per RGBA pixel; also the decimation factor that keeps one byte per pixel.
DECIMATION = 4
#: Offset of the green byte inside an RGBA pixel.
GREEN_OFFSET = 1


class SampleExtractor:
    """
    Compute one brightness sample from a measurement image.

    The image is rendered to packed RGBA bytes and decimated by 4 with a
    one-tap filter sitting on the green byte.  The sum of the green bytes is
    divided by the byte count *before* decimation, so the value is a quarter
    of the mean green intensity.  The scale is the same for every sample,
    which is all the spectral analysis needs.
    """

    def extract(self, image: np.ndarray) -> float:
        """
        Return the brightness sample of *image*.

        Parameters
        ----------
        image:
            BGR (H × W × 3) or BGRA (H × W × 4) ``uint8`` array.

        Raises
        ------
        ExtractionError
            If the image is empty or its pixel format is not supported.
        """
        rgba = self._to_rgba(image)
        data = rgba.reshape(-1).astype(np.float32)
        decimated = data[GREEN_OFFSET::DECIMATION]
        return float(np.float32(decimated.sum(dtype=np.float32) / np.float32(data.size)))

    @staticmethod
    def _to_rgba(image: np.ndarray) -> np.ndarray:
        if not isinstance(image, np.ndarray) or image.ndim != 3:
            raise ExtractionError(
                f"unsupported image shape {getattr(image, 'shape', None)}"
            )
        if image.dtype != np.uint8:
            raise ExtractionError(f"unsupported pixel type {image.dtype}")
        h, w, channels = image.shape
        if h == 0 or w == 0:
            raise ExtractionError(f"empty image ({w}×{h})")
        if channels == 3:
            return cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_BGR2RGBA)
        if channels == 4:
            return cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_BGRA2RGBA)
        raise ExtractionError(f"unsupported channel count {channels}")
