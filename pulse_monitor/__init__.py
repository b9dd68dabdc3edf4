"""
Pulse Monitor — camera-based heart-rate estimation (rPPG).
Look at the camera; the system tracks your face, samples the green channel of
a cheek region, and turns its periodic brightness variation into BPM.
"""

__version__ = "0.1.0"
__author__ = "pulse_monitor"
