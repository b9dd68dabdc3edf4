"""
Confidence-weighted heart-rate estimation.

Each estimation cycle produces a raw BPM candidate (the peak of the averaged
spectrum) together with a confidence weight: the inverse standard deviation
of the brightness signal, which is high when the signal is calm and low when
motion or lighting changes dominate it.  The reported BPM is the weighted
mean of the most recent candidates, with weights clipped so that no single
cycle can dominate.

Accuracy bands of the weight
----------------------------
===============  ============
weight           status
===============  ============
``[0, 2)``       insufficient
``[2, 4)``       low
``[4, 7)``       good
``[7, ∞)``       excellent
===============  ============
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .spectral_analyzer import SpectrumPoint
from .spectrum_aggregator import SpectrumAggregator

logger = logging.getLogger(__name__)

#: Upper clip of the per-cycle weight; also the weight of a perfectly flat signal.
MAX_WEIGHT = 5.0
#: Number of raw candidates fused into the reported BPM.
RAW_HISTORY = 100
#: Time span of the reported BPM history, in seconds.
BPM_HISTORY_SECONDS = 60.0


class AccuracyKind(Enum):
    INSUFFICIENT = "insufficient"
    LOW = "low"
    GOOD = "good"
    EXCELLENT = "excellent"


@dataclass(frozen=True)
class AccuracyStatus:
    """Classification of the latest (unclipped) confidence weight."""

    value: float

    @property
    def kind(self) -> AccuracyKind:
        if self.value < 2.0:
            return AccuracyKind.INSUFFICIENT
        if self.value < 4.0:
            return AccuracyKind.LOW
        if self.value < 7.0:
            return AccuracyKind.GOOD
        return AccuracyKind.EXCELLENT


class RawBpmEstimate(NamedTuple):
    bpm: float
    weight: float


class BpmHistoryPoint(NamedTuple):
    bpm: float
    timestamp: float


@dataclass(frozen=True)
class BpmEstimate:
    """Result of one estimation cycle."""

    bpm: float
    accuracy: AccuracyStatus
    dominant_bpm: float
    averaged_spectrum: Tuple[SpectrumPoint, ...]


def confidence_weight(samples: Sequence[float]) -> float:
    """
    Inverse population standard deviation of *samples*.

    A perfectly flat signal has no deviation; its weight is
    :data:`MAX_WEIGHT` instead of infinity.  An empty signal weighs 0.
    """
    data = np.asarray(samples, dtype=np.float32)
    if data.size == 0:
        return 0.0
    deviation = data - np.float32(data.mean())
    std = float(np.sqrt(np.mean(deviation * deviation)))
    if std == 0.0:
        return MAX_WEIGHT
    return float(np.float32(1.0 / std))


def weighted_bpm(estimates: Sequence[RawBpmEstimate], max_weight: float = MAX_WEIGHT) -> float:
    """
    Weighted mean of the candidates, weights clipped to ``[0, max_weight]``.

    Falls back to the plain mean when every clipped weight is zero.
    """
    bpms = np.array([e.bpm for e in estimates], dtype=np.float32)
    weights = np.clip(np.array([e.weight for e in estimates], dtype=np.float32), 0.0, max_weight)
    total = float(weights.sum())
    if total <= 0.0:
        return float(bpms.mean())
    return float(np.dot(bpms, weights) / total)


class BpmEstimator:
    """
    Fuses per-cycle BPM candidates into the reported heart rate.

    Parameters
    ----------
    aggregator:
        Spectrum aggregator fed once per cycle; a new one is created when
        omitted.
    raw_history:
        Number of raw candidates fused together.
    history_seconds:
        Time span of :attr:`bpm_history`.
    max_weight:
        Clip applied to the weights when fusing.
    clock:
        Time source for the history timestamps (monotonic seconds).
    """

    def __init__(
        self,
        aggregator: Optional[SpectrumAggregator] = None,
        raw_history: int = RAW_HISTORY,
        history_seconds: float = BPM_HISTORY_SECONDS,
        max_weight: float = MAX_WEIGHT,
        clock=time.monotonic,
    ) -> None:
        self.aggregator = aggregator if aggregator is not None else SpectrumAggregator()
        self.history_seconds = history_seconds
        self.max_weight = max_weight
        self._clock = clock

        self._raw: Deque[RawBpmEstimate] = deque(maxlen=raw_history)
        self._history: List[BpmHistoryPoint] = []
        self._averaged: Tuple[SpectrumPoint, ...] = ()
        self._accuracy: Optional[AccuracyStatus] = None
        self._lock = threading.Lock()
        # Held for a whole cycle so reset() never interleaves with one
        self._cycle = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def estimate(
        self,
        samples: Sequence[float],
        spectrum: Sequence[SpectrumPoint],
        now: Optional[float] = None,
    ) -> Optional[BpmEstimate]:
        """
        Run one estimation cycle.

        Parameters
        ----------
        samples:
            Current content of the sample buffer.
        spectrum:
            Band-limited spectrum of the latest spectral cycle.
        now:
            Timestamp of the cycle; the clock is read when omitted.

        Returns *None* when the cycle is skipped (empty spectrum).
        """
        with self._cycle:
            return self._estimate(samples, spectrum, now)

    def _estimate(
        self,
        samples: Sequence[float],
        spectrum: Sequence[SpectrumPoint],
        now: Optional[float],
    ) -> Optional[BpmEstimate]:
        now = self._clock() if now is None else now

        if len(spectrum) == 0:
            logger.debug("Estimation skipped: no spectrum yet.")
            self._evict(now)
            return None

        weight = confidence_weight(samples)
        intensities = [p.intensity for p in spectrum]
        frequencies = [p.bpm for p in spectrum]
        averaged, dominant = self.aggregator.aggregate(intensities, frequencies, weight)

        with self._lock:
            self._averaged = tuple(averaged)
            if dominant is None:
                raw = list(self._raw)
            else:
                self._raw.append(RawBpmEstimate(dominant, weight))
                raw = list(self._raw)

        if not raw:
            self._evict(now)
            return None

        bpm = weighted_bpm(raw, self.max_weight)
        accuracy = AccuracyStatus(raw[-1].weight)

        with self._lock:
            self._accuracy = accuracy
            history = self._history + [BpmHistoryPoint(bpm, now)]
            self._history = self._recent(history, now)

        logger.debug(
            "BPM %.1f (candidate %.1f, weight %.2f, %s)",
            bpm, raw[-1].bpm, weight, accuracy.kind.value,
        )
        return BpmEstimate(bpm, accuracy, raw[-1].bpm, tuple(averaged))

    @property
    def latest_bpm(self) -> Optional[float]:
        """The last reported BPM, or *None* while there is no data."""
        with self._lock:
            return self._history[-1].bpm if self._history else None

    @property
    def accuracy(self) -> Optional[AccuracyStatus]:
        with self._lock:
            return self._accuracy

    @property
    def bpm_history(self) -> Tuple[BpmHistoryPoint, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def raw_history(self) -> Tuple[RawBpmEstimate, ...]:
        with self._lock:
            return tuple(self._raw)

    @property
    def averaged_spectrum(self) -> Tuple[SpectrumPoint, ...]:
        with self._lock:
            return self._averaged

    def reset(self) -> None:
        """Forget all candidates and history; waits for a running cycle to finish."""
        with self._cycle:
            with self._lock:
                self._raw.clear()
                self._history = []
                self._averaged = ()
                self._accuracy = None
            self.aggregator.reset()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _recent(self, history: List[BpmHistoryPoint], now: float) -> List[BpmHistoryPoint]:
        return [p for p in history if p.timestamp + self.history_seconds > now]

    def _evict(self, now: float) -> None:
        with self._lock:
            self._history = self._recent(self._history, now)
