"""
Unit tests for SpectralAnalyzer and SpectrumAggregator.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_monitor.spectral_analyzer import (
    HANN_NORMALIZATION,
    SpectralAnalyzer,
    SpectrumPoint,
    normalized_hann,
    packed_real_fft,
)
from pulse_monitor.spectrum_aggregator import SpectrumAggregator


FPS = 30.0


def _sine(bpm: float, n: int = 512, fps: float = FPS, offset: float = 100.0) -> np.ndarray:
    t = np.arange(n) / fps
    return (offset + np.sin(2 * np.pi * (bpm / 60.0) * t)).astype(np.float32)


# ---------------------------------------------------------------------------
# FFT helpers
# ---------------------------------------------------------------------------

class TestFFTHelpers:

    def test_hann_window_shape(self):
        w = normalized_hann(512)
        assert w.dtype == np.float32
        assert w.shape == (512,)
        assert w[0] == pytest.approx(0.0, abs=1e-7)
        assert w.max() == pytest.approx(HANN_NORMALIZATION, rel=1e-5)
        rms = float(np.sqrt(np.mean(w.astype(np.float64) ** 2)))
        assert rms == pytest.approx(1.0, rel=1e-3)
        # Periodic window: symmetric around n/2
        assert w[1] == pytest.approx(w[-1])

    def test_packed_fft_matches_real_fft(self):
        rng = np.random.default_rng(7)
        x = rng.normal(size=512).astype(np.float32)
        real, imag = packed_real_fft(x)
        ref = 2.0 * np.fft.rfft(x.astype(np.float64))

        assert real.shape == imag.shape == (256,)
        np.testing.assert_allclose(real[1:], ref[1:256].real, atol=1e-3)
        np.testing.assert_allclose(imag[1:], ref[1:256].imag, atol=1e-3)
        assert real[0] == pytest.approx(ref[0].real, abs=1e-3)
        assert imag[0] == pytest.approx(ref[256].real, abs=1e-3)


# ---------------------------------------------------------------------------
# SpectralAnalyzer tests
# ---------------------------------------------------------------------------

class TestSpectralAnalyzer:

    @pytest.mark.parametrize("n", [0, 1, 100, 511])
    def test_short_buffer_returns_empty(self, n):
        sa = SpectralAnalyzer(fps=FPS)
        assert sa.analyze(np.ones(n, dtype=np.float32)) == []
        assert sa.spectrum(np.ones(n, dtype=np.float32)).size == 0

    def test_oversized_buffer_returns_empty(self):
        assert SpectralAnalyzer(fps=FPS).analyze(np.ones(513)) == []

    def test_full_spectrum_has_257_bins(self):
        spectrum = SpectralAnalyzer(fps=FPS).spectrum(_sine(75.0))
        assert spectrum.shape == (257,)
        assert spectrum.dtype == np.float32

    def test_band_limits_at_30_fps(self):
        sa = SpectralAnalyzer(fps=FPS)
        assert sa.min_index == 14             # floor(50 * 512 / 1800)
        assert sa.max_index == 28             # floor(100 * 512 / 1800)
        points = sa.analyze(_sine(75.0))
        assert len(points) == 15
        assert all(isinstance(p, SpectrumPoint) for p in points)
        assert points[0].bpm == pytest.approx(49.21875)
        assert points[-1].bpm == pytest.approx(98.4375)

    def test_bins_are_evenly_spaced(self):
        sa = SpectralAnalyzer(fps=FPS)
        np.testing.assert_allclose(np.diff(sa.frequencies), sa.bin_width, rtol=1e-6)

    def test_bin_to_bpm_is_exact(self):
        sa = SpectralAnalyzer(fps=FPS)
        assert sa.bin_to_bpm(21) == 73.828125
        assert sa.bin_to_bpm(256) == 900.0
        # Repeated calls never drift
        assert {sa.bin_to_bpm(17) for _ in range(100)} == {sa.bin_to_bpm(17)}

    def test_sine_at_75_bpm_detected(self):
        sa = SpectralAnalyzer(fps=FPS)
        points = sa.analyze(_sine(75.0))
        peak = max(points, key=lambda p: p.intensity)
        assert abs(peak.bpm - 75.0) <= sa.bin_width

    @pytest.mark.parametrize("bpm", [55.0, 66.0, 90.0])
    def test_sine_in_band_detected(self, bpm):
        sa = SpectralAnalyzer(fps=FPS)
        peak = max(sa.analyze(_sine(bpm)), key=lambda p: p.intensity)
        assert abs(peak.bpm - bpm) <= sa.bin_width

    def test_flat_signal_stays_finite(self):
        spectrum = SpectralAnalyzer(fps=FPS).spectrum(np.full(512, 30.0, dtype=np.float32))
        assert np.all(np.isfinite(spectrum))

    def test_non_power_of_two_rejected(self):
        with pytest.raises(ValueError):
            SpectralAnalyzer(sample_count=500)


# ---------------------------------------------------------------------------
# SpectrumAggregator tests
# ---------------------------------------------------------------------------

class TestSpectrumAggregator:

    FREQS = [60.0, 70.0, 80.0]

    def test_empty_spectrum_skips_cycle(self):
        agg = SpectrumAggregator()
        agg.aggregate([1.0, 2.0, 3.0], self.FREQS, 1.0)
        curve, dominant = agg.aggregate([], [], 1.0)
        assert curve == []
        assert dominant is None
        assert agg.history_length == 1

    def test_single_spectrum_scaled_by_weight(self):
        agg = SpectrumAggregator()
        curve, dominant = agg.aggregate([1.0, 3.0, 2.0], self.FREQS, 2.0)
        assert [p.intensity for p in curve] == pytest.approx([2.0, 6.0, 4.0])
        assert [p.bpm for p in curve] == self.FREQS
        assert dominant == 70.0

    def test_average_across_history(self):
        agg = SpectrumAggregator()
        agg.aggregate([4.0, 0.0, 0.0], self.FREQS, 1.0)
        agg.aggregate([0.0, 1.0, 0.0], self.FREQS, 1.0)
        curve, dominant = agg.aggregate([0.0, 1.0, 0.0], self.FREQS, 1.0)
        assert [p.intensity for p in curve] == pytest.approx([4 / 3, 2 / 3, 0.0])
        # One loud cycle still dominates a quieter, repeated one
        assert dominant == 60.0

    def test_history_capped(self):
        agg = SpectrumAggregator(history=200)
        for _ in range(250):
            agg.aggregate([1.0, 2.0, 3.0], self.FREQS, 1.0)
        assert agg.history_length == 200

    def test_oldest_spectrum_evicted(self):
        agg = SpectrumAggregator(history=2)
        agg.aggregate([100.0, 0.0, 0.0], self.FREQS, 1.0)
        agg.aggregate([0.0, 0.0, 1.0], self.FREQS, 1.0)
        _, dominant = agg.aggregate([0.0, 0.0, 1.0], self.FREQS, 1.0)
        assert dominant == 80.0

    def test_band_length_change_clears_history(self):
        agg = SpectrumAggregator()
        agg.aggregate([1.0, 2.0, 3.0], self.FREQS, 1.0)
        curve, _ = agg.aggregate([5.0, 1.0], [60.0, 70.0], 1.0)
        assert agg.history_length == 1
        assert [p.intensity for p in curve] == pytest.approx([5.0, 1.0])

    def test_mismatched_axis_rejected(self):
        with pytest.raises(ValueError):
            SpectrumAggregator().aggregate([1.0, 2.0], self.FREQS, 1.0)

    def test_reset(self):
        agg = SpectrumAggregator()
        agg.aggregate([1.0, 2.0, 3.0], self.FREQS, 1.0)
        agg.reset()
        assert agg.history_length == 0
