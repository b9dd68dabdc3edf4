"""
Error taxonomy of the measurement pipeline.

None of these conditions is fatal: every periodic task treats them as
"nothing to do this tick" and the next tick is the retry.
"""

from __future__ import annotations


class PulseMonitorError(Exception):
    """Base class for all pipeline errors."""


class NoFrame(PulseMonitorError):
    """The frame source has not produced an image yet."""


class NoFaceTrack(PulseMonitorError):
    """No face is tracked and no measurement region is known."""


class ExtractionError(PulseMonitorError):
    """The measurement image cannot be turned into a brightness sample."""


class InsufficientSamples(PulseMonitorError):
    """The sample buffer is not full enough for spectral analysis."""
