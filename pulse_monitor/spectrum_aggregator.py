"""
Temporal averaging of spectra.

A single 512-sample spectrum is noisy: a head movement or a lighting change
easily produces a spurious peak.  The aggregator keeps the most recent
spectra, each pre-scaled by the confidence weight of the signal it came
from, and averages them bin by bin.  The dominant heart-rate candidate is
the peak of that averaged curve.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np

from .spectral_analyzer import SpectrumPoint

logger = logging.getLogger(__name__)

#: Number of weighted spectra averaged together.
SPECTRUM_HISTORY = 200


class SpectrumAggregator:
    """
    Rolling, weighted average of band-limited spectra.

    Parameters
    ----------
    history:
        Maximum number of spectra kept; the oldest is evicted first.
    """

    def __init__(self, history: int = SPECTRUM_HISTORY) -> None:
        self._history: Deque[np.ndarray] = deque(maxlen=history)
        self._lock = threading.Lock()

    def aggregate(
        self,
        intensities: Sequence[float],
        frequencies: Sequence[float],
        weight: float,
    ) -> Tuple[List[SpectrumPoint], Optional[float]]:
        """
        Push one spectrum and return ``(averaged_curve, dominant_bpm)``.

        Parameters
        ----------
        intensities:
            Intensity of each band bin for the current cycle.
        frequencies:
            BPM of each band bin (same length as *intensities*).
        weight:
            Confidence weight the spectrum is scaled by before insertion.

        An empty spectrum leaves the history untouched and returns
        ``([], None)``.
        """
        values = np.asarray(intensities, dtype=np.float32)
        axis = np.asarray(frequencies, dtype=np.float32)
        if values.size == 0:
            return [], None
        if values.shape != axis.shape:
            raise ValueError(
                f"{values.size} intensities for {axis.size} frequencies"
            )

        with self._lock:
            if self._history and self._history[-1].shape != values.shape:
                logger.info(
                    "Spectrum length changed (%d → %d bins); clearing history.",
                    self._history[-1].size, values.size,
                )
                self._history.clear()

            self._history.append(np.float32(weight) * values)
            averaged = np.mean(np.stack(self._history), axis=0, dtype=np.float32)

        curve = [SpectrumPoint(float(b), float(v)) for b, v in zip(axis, averaged)]
        dominant = float(axis[int(np.argmax(averaged))])
        return curve, dominant

    @property
    def history_length(self) -> int:
        with self._lock:
            return len(self._history)

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
