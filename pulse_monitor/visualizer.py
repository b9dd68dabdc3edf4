"""
Real-time overlay visualiser.

Draws the following elements onto a copy of the preview frame:
  • The tracked face box and the measurement region.
  • BPM readout coloured by the accuracy status.
  • Buffer fill bar while the first 512 samples are collected.
  • A scrolling strip of the green-channel samples.
  • The averaged spectrum with the dominant bin highlighted.
  • Optional frame-rate counter.

It only reads :class:`~pulse_monitor.monitor.MonitorSnapshot` values.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from .bpm_estimator import AccuracyKind
from .face_tracking import TrackState
from .monitor import MonitorSnapshot
from .spectral_analyzer import SpectrumPoint


# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN  = (0, 220,  80)
_RED    = (0,  50, 220)
_YELLOW = (0, 210, 210)
_ORANGE = (0, 140, 255)
_WHITE  = (255, 255, 255)
_BLACK  = (0, 0, 0)
_CYAN   = (220, 200,  0)
_PURPLE = (150, 100, 180)
_DARK   = (30, 30, 30)

_ACCURACY_COLOURS: Dict[AccuracyKind, Tuple[int, int, int]] = {
    AccuracyKind.INSUFFICIENT: _RED,
    AccuracyKind.LOW: _ORANGE,
    AccuracyKind.GOOD: _YELLOW,
    AccuracyKind.EXCELLENT: _GREEN,
}


class Visualizer:
    """
    Renders monitor snapshots onto OpenCV frames.

    Parameters
    ----------
    strip_height:
        Pixel height of the green-channel strip at the bottom of the frame.
    spectrum_width:
        Pixel width of the spectrum panel on the right of the frame.
    show_fps:
        Whether to overlay the rendering frame rate.
    """

    def __init__(
        self,
        strip_height: int = 80,
        spectrum_width: int = 160,
        show_fps: bool = True,
    ) -> None:
        self.strip_height = strip_height
        self.spectrum_width = spectrum_width
        self.show_fps = show_fps

        self._fps_tick = cv2.getTickCount()
        self._fps_display: float = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def draw(self, snapshot: MonitorSnapshot) -> Optional[np.ndarray]:
        """Return an annotated copy of the snapshot's preview frame, or *None*."""
        if snapshot.preview is None:
            return None
        frame = snapshot.preview.copy()
        h, w = frame.shape[:2]
        self._update_fps()

        if snapshot.face is not None:
            fx, fy, fw, fh = snapshot.face.scaled(w, h).to_pixels()
            cv2.rectangle(frame, (fx, fy), (fx + fw, fy + fh), _PURPLE, 1)

        if snapshot.region is not None:
            tracking = snapshot.track_state is TrackState.TRACKING
            colour = _GREEN if tracking else _YELLOW
            x, y, rw, rh = snapshot.region.to_pixels()
            cv2.rectangle(frame, (x, y), (x + rw, y + rh), colour, 2)

        self._draw_bpm(frame, snapshot)

        if snapshot.buffer_fill < 1.0:
            self._draw_fill_bar(frame, snapshot.buffer_fill)

        if len(snapshot.green_history) > 1:
            values = np.array([s.value for s in snapshot.green_history], dtype=np.float32)
            self._draw_strip(frame, values)

        if snapshot.averaged_spectrum:
            self._draw_spectrum(frame, snapshot.averaged_spectrum)

        if self.show_fps:
            cv2.putText(
                frame,
                f"FPS {self._fps_display:.1f}",
                (w - 100, 20),
                cv2.FONT_HERSHEY_SIMPLEX, 0.45, _WHITE, 1, cv2.LINE_AA,
            )
        return frame

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_bpm(self, frame: np.ndarray, snapshot: MonitorSnapshot) -> None:
        bpm = snapshot.bpm
        if bpm is None or snapshot.accuracy is None:
            if snapshot.track_state is TrackState.TRACKING:
                status = "Measuring..."
            else:
                status = "Looking for a face..."
            cv2.putText(
                frame, status,
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 0.7, _YELLOW, 2, cv2.LINE_AA,
            )
            return

        kind = snapshot.accuracy.kind
        col = _ACCURACY_COLOURS[kind]
        cv2.putText(
            frame, f"{bpm:.0f} BPM",
            (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, _BLACK, 5, cv2.LINE_AA,
        )
        cv2.putText(
            frame, f"{bpm:.0f} BPM",
            (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, col, 3, cv2.LINE_AA,
        )
        cv2.putText(
            frame, f"accuracy: {kind.value} ({snapshot.accuracy.value:.1f})",
            (16, 78), cv2.FONT_HERSHEY_SIMPLEX, 0.45, col, 1, cv2.LINE_AA,
        )

    def _draw_fill_bar(self, frame: np.ndarray, fill: float) -> None:
        h, w = frame.shape[:2]
        bar_w = int((w - 32) * min(fill, 1.0))
        y0, y1 = h - self.strip_height - 12, h - self.strip_height - 4
        cv2.rectangle(frame, (16, y0), (w - 16, y1), _DARK, -1)
        cv2.rectangle(frame, (16, y0), (16 + bar_w, y1), _CYAN, -1)
        cv2.putText(
            frame, "collecting samples",
            (16, y0 - 2), cv2.FONT_HERSHEY_SIMPLEX, 0.35, _CYAN, 1, cv2.LINE_AA,
        )

    def _draw_strip(self, frame: np.ndarray, values: np.ndarray) -> None:
        """Draw the green-channel samples in a dark strip at the bottom of the frame."""
        h, w = frame.shape[:2]
        top = h - self.strip_height
        cv2.rectangle(frame, (0, top), (w, h), _DARK, -1)

        mn, mx = float(values.min()), float(values.max())
        rng = mx - mn if mx != mn else 1.0
        norm = (values - mn) / rng

        margin = 6
        plot_h = self.strip_height - 2 * margin
        xs = np.linspace(0, w - 1, len(norm)).astype(np.int32)
        ys = (top + margin + (1.0 - norm) * plot_h).astype(np.int32)
        pts = np.column_stack([xs, ys])
        cv2.polylines(frame, [pts[:, None, :]], False, _GREEN, 1, cv2.LINE_AA)

        cv2.putText(
            frame, "green",
            (4, top + 14), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _draw_spectrum(self, frame: np.ndarray, spectrum: Sequence[SpectrumPoint]) -> None:
        """Draw the averaged spectrum as a bar graph on the right side."""
        h, w = frame.shape[:2]
        panel_x = w - self.spectrum_width - 10
        panel_y = 100
        panel_h = h - panel_y - self.strip_height - 20
        if panel_h <= 30 or panel_x <= 0:
            return
        cv2.rectangle(frame, (panel_x, panel_y), (w - 10, panel_y + panel_h), _DARK, -1)

        intensity = np.array([p.intensity for p in spectrum], dtype=np.float32)
        lo, hi = float(intensity.min()), float(intensity.max())
        norm = (intensity - lo) / (hi - lo) if hi > lo else np.ones_like(intensity)
        peak = int(np.argmax(intensity))

        bar_w = max(1, (self.spectrum_width - 20) // len(spectrum))
        y_bottom = panel_y + panel_h - 10
        for i, value in enumerate(norm):
            x = panel_x + 10 + i * bar_w
            y_top = y_bottom - int(value * (panel_h - 30))
            colour = _YELLOW if i == peak else _PURPLE
            cv2.rectangle(frame, (x, y_top), (x + bar_w - 1, y_bottom), colour, -1)

        cv2.putText(
            frame, f"peak {spectrum[peak].bpm:.0f}",
            (panel_x + 10, panel_y + 16), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _update_fps(self) -> None:
        now = cv2.getTickCount()
        elapsed = (now - self._fps_tick) / cv2.getTickFrequency()
        if elapsed > 0:
            self._fps_display = 1.0 / elapsed
        self._fps_tick = now
