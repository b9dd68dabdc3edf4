"""
Rolling buffer of brightness samples.

The sampling task writes at the frame rate while the spectral and
estimation tasks read at their own cadence, so every access goes through
a lock and readers only ever receive copies.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

import numpy as np

#: Number of samples fed to the FFT; also the capacity of the buffer.
FFT_SAMPLE_COUNT = 512


@dataclass(frozen=True)
class Sample:
    value: float
    timestamp: float


class SampleBuffer:
    """
    Thread-safe FIFO of the most recent brightness samples.

    Parameters
    ----------
    capacity:
        Maximum number of samples kept; the oldest is evicted first.
    """

    def __init__(self, capacity: int = FFT_SAMPLE_COUNT) -> None:
        self.capacity = capacity
        self._samples: Deque[Sample] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def push(self, sample: Sample) -> None:
        with self._lock:
            self._samples.append(sample)

    def push_value(self, value: float, timestamp: Optional[float] = None) -> Sample:
        """Wrap *value* in a :class:`Sample` stamped with the monotonic clock and push it."""
        sample = Sample(
            float(np.float32(value)),
            time.monotonic() if timestamp is None else timestamp,
        )
        self.push(sample)
        return sample

    def snapshot(self) -> Tuple[Sample, ...]:
        """Return the buffered samples, oldest first."""
        with self._lock:
            return tuple(self._samples)

    def values(self) -> np.ndarray:
        """Return the sample values as a fresh ``float32`` array, oldest first."""
        with self._lock:
            return np.fromiter(
                (s.value for s in self._samples), dtype=np.float32, count=len(self._samples)
            )

    @property
    def is_full(self) -> bool:
        with self._lock:
            return len(self._samples) == self.capacity

    @property
    def fill_ratio(self) -> float:
        """How full the buffer is (0 – 1)."""
        with self._lock:
            return len(self._samples) / self.capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
