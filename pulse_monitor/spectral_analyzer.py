"""
Spectral analysis of the brightness signal.

Algorithm
---------
1. Wait until exactly ``FFT_SAMPLE_COUNT`` (512) samples are available.
2. Multiply by a normalized Hann window.
3. Real-to-complex FFT using the split packing trick: the 512 real samples
   are packed into 256 complex values (even → real, odd → imaginary), a
   256-point complex FFT is taken and the result is unpacked into the
   257-bin spectrum of the real signal.
4. Squared magnitude per bin, converted to decibels
   (``20·log10(m / 10)``) to compress the dynamic range.
5. Keep only the bins that correspond to a plausible resting heart rate
   (50 – 100 BPM at the known frame rate).

The packed layout and the 2× scale of the forward transform follow the
convention of vectorised DSP libraries: bin 0 carries the DC term in its
real part and the Nyquist term in its imaginary part.
"""

from __future__ import annotations

import logging
from fractions import Fraction
from typing import List, NamedTuple, Sequence, Tuple

import numpy as np
from scipy.signal import get_window

from .errors import InsufficientSamples
from .sample_buffer import FFT_SAMPLE_COUNT

logger = logging.getLogger(__name__)

#: Reference amplitude of the decibel conversion.
DB_REFERENCE = 10.0
#: Scale of the normalized Hann window: 0.8165 · (1 - cos), unit RMS.
HANN_NORMALIZATION = float(np.sqrt(8.0 / 3.0))
#: Floor applied before taking the logarithm so silent bins stay finite.
MAGNITUDE_FLOOR = float(np.finfo(np.float32).tiny)


class SpectrumPoint(NamedTuple):
    bpm: float
    intensity: float


def normalized_hann(n: int) -> np.ndarray:
    """Periodic Hann window of length *n*, scaled to unit RMS."""
    window = get_window("hann", n, fftbins=True) * HANN_NORMALIZATION
    return window.astype(np.float32)


def packed_real_fft(signal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Forward FFT of a real, even-length signal in split packed form.

    Returns ``(real, imag)``, each of length ``n / 2``.  Entries
    ``1 .. n/2 - 1`` hold twice the DFT bins of the same index; entry 0
    holds twice the DC term in ``real`` and twice the Nyquist term in
    ``imag``.
    """
    x = np.asarray(signal, dtype=np.float32)
    n = x.size
    half = n // 2

    z = (x[0::2] + 1j * x[1::2]).astype(np.complex64)
    zf = np.fft.fft(z)
    # conj(Z[(half - k) % half]) for every k
    zr = np.conj(np.roll(zf[::-1], 1))

    even = (zf + zr) / 2.0
    odd = (zf - zr) / 2.0j
    twiddle = np.exp(-2.0j * np.pi * np.arange(half) / n)
    spectrum = 2.0 * (even + twiddle * odd)

    real = spectrum.real.astype(np.float32)
    imag = spectrum.imag.astype(np.float32)
    real[0] = np.float32(2.0 * (even[0] + odd[0]).real)
    imag[0] = np.float32(2.0 * (even[0] - odd[0]).real)
    return real, imag


class SpectralAnalyzer:
    """
    Turns a full sample buffer into a BPM-indexed intensity curve.

    Parameters
    ----------
    fps:
        Sampling rate of the brightness signal (frames per second).
    bpm_low:
        Lower edge of the heart-rate band (default 50 BPM).
    bpm_high:
        Upper edge of the heart-rate band (default 100 BPM).
    sample_count:
        FFT length; a power of two.
    """

    def __init__(
        self,
        fps: float = 30.0,
        bpm_low: int = 50,
        bpm_high: int = 100,
        sample_count: int = FFT_SAMPLE_COUNT,
    ) -> None:
        if sample_count < 2 or sample_count & (sample_count - 1):
            raise ValueError(f"sample_count must be a power of two, got {sample_count}")
        self.fps = fps
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high
        self.sample_count = sample_count
        self._window = normalized_hann(sample_count)

        # Bin range of the band, integer arithmetic on the integral frame rate
        per_minute = int(fps) * 60
        self.min_index: int = bpm_low * sample_count // per_minute
        self.max_index: int = bpm_high * sample_count // per_minute

        self._frequencies = np.array(
            [self.bin_to_bpm(i) for i in range(self.min_index, self.max_index + 1)],
            dtype=np.float32,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def spectrum(self, samples: Sequence[float]) -> np.ndarray:
        """
        Return the decibel spectrum (``sample_count / 2 + 1`` bins).

        An empty array is returned unless exactly ``sample_count`` samples
        are supplied.
        """
        try:
            data = self._require_full(samples)
        except InsufficientSamples as exc:
            logger.debug("Spectrum skipped: %s", exc)
            return np.array([], dtype=np.float32)

        real, imag = packed_real_fft(data * self._window)

        half = self.sample_count // 2
        magnitudes = np.empty(half + 1, dtype=np.float32)
        magnitudes[1:half] = real[1:] ** 2 + imag[1:] ** 2
        magnitudes[0] = abs(real[0])
        magnitudes[half] = abs(imag[0])

        magnitudes = np.maximum(magnitudes, np.float32(MAGNITUDE_FLOOR))
        return (20.0 * np.log10(magnitudes / np.float32(DB_REFERENCE))).astype(np.float32)

    def analyze(self, samples: Sequence[float]) -> List[SpectrumPoint]:
        """
        Return the heart-rate band of the spectrum as ``(bpm, intensity)`` points.

        An empty list is returned while the buffer is not yet full.
        """
        decibels = self.spectrum(samples)
        if decibels.size == 0 or self.max_index >= decibels.size:
            return []
        band = decibels[self.min_index:self.max_index + 1]
        return [
            SpectrumPoint(float(bpm), float(intensity))
            for bpm, intensity in zip(self._frequencies, band)
        ]

    def bin_to_bpm(self, index: int) -> float:
        """BPM of FFT bin *index*, rounded to float32 once."""
        bpm = Fraction(index) * Fraction(float(self.fps)) * 60 / self.sample_count
        return float(np.float32(float(bpm)))

    def _require_full(self, samples: Sequence[float]) -> np.ndarray:
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim != 1 or data.size != self.sample_count:
            raise InsufficientSamples(
                f"{data.size} samples, exactly {self.sample_count} required"
            )
        return data

    @property
    def frequencies(self) -> np.ndarray:
        """BPM axis of the band returned by :meth:`analyze`."""
        return self._frequencies.copy()

    @property
    def bin_width(self) -> float:
        """Spacing between two adjacent bins, in BPM."""
        return float(self.fps) * 60.0 / self.sample_count
