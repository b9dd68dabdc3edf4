#!/usr/bin/env python3
"""
Pulse Monitor – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --source SRC         OpenCV camera index or video file (default: 0)
    --image PATH         Measure on a still image instead of a camera
    --resolution WxH     Camera resolution (default: 640x480)
    --fps INT            Sampling rate (default: 30)
    --no-flip            Disable horizontal mirror
    --save PATH          Save annotated video to file (optional)
    --headless           Run without display window (log BPM to stdout)
    --verbose            Debug logging

Keyboard shortcuts (when a window is open)
------------------------------------------
    q / ESC  – quit
    r        – reset the measurement
    s        – save a single annotated frame as PNG
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
import time
from pathlib import Path
from typing import Union

# Must be set before cv2 is imported so Qt5 uses X11/XWayland instead of
# looking for a Wayland plugin that is not bundled with pip-installed opencv.
import os
os.environ.setdefault("QT_QPA_PLATFORM", "xcb")

import cv2

from pulse_monitor.camera import Camera, StaticFrameSource
from pulse_monitor.monitor import PulseMonitor
from pulse_monitor.visualizer import Visualizer

logger = logging.getLogger("pulse_monitor")

WINDOW_NAME = "Pulse Monitor"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Camera-based heart-rate monitor (rPPG)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--source", default="0",
                        help="OpenCV camera index or path of a video file")
    parser.add_argument("--image", type=Path, default=None,
                        help="Measure on a still image instead of a camera")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--fps", type=int, default=30,
                        help="Sampling rate in frames per second")
    parser.add_argument("--no-flip", action="store_true",
                        help="Disable horizontal image flip")
    parser.add_argument("--save", type=Path, default=None,
                        help="Save annotated video to this file path")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; log BPM to stdout only")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def _source(value: str) -> Union[int, str]:
    return int(value) if value.isdigit() else value


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    if args.image is not None:
        try:
            source = StaticFrameSource.from_file(args.image)
        except RuntimeError as exc:
            logger.error("%s", exc)
            return 1
        source_ctx = contextlib.nullcontext(source)
    else:
        source = Camera(
            source=_source(args.source),
            resolution=(res_w, res_h),
            fps=args.fps,
            flip_horizontal=not args.no_flip,
        )
        source_ctx = source

    vis = Visualizer(show_fps=not args.headless)
    writer: cv2.VideoWriter | None = None

    logger.info("Starting pulse monitor.  Press 'q' or ESC to quit.")
    if not args.headless:
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)

    frame_interval = 1.0 / args.fps
    last_log = 0.0

    try:
        with source_ctx, PulseMonitor(source, fps=float(args.fps)) as monitor:
            while True:
                snapshot = monitor.snapshot()
                annotated = vis.draw(snapshot)

                if annotated is not None and args.save and writer is None:
                    h, w = annotated.shape[:2]
                    fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                    writer = cv2.VideoWriter(str(args.save), fourcc, args.fps, (w, h))
                    logger.info("Saving video to %s", args.save)
                if writer is not None and annotated is not None:
                    writer.write(annotated)

                now = time.monotonic()
                if args.headless and now - last_log >= 1.0:
                    last_log = now
                    ts = time.strftime("%H:%M:%S")
                    if snapshot.bpm is not None and snapshot.accuracy is not None:
                        print(
                            f"[{ts}] BPM={snapshot.bpm:.1f}  "
                            f"accuracy={snapshot.accuracy.kind.value} "
                            f"({snapshot.accuracy.value:.2f})  face={snapshot.track_state.value}"
                        )
                    else:
                        print(
                            f"[{ts}] Waiting for signal…  "
                            f"buffer={snapshot.buffer_fill * 100:.0f}%  "
                            f"face={snapshot.track_state.value}"
                        )

                if args.headless:
                    time.sleep(frame_interval)
                    continue

                if annotated is not None:
                    cv2.imshow(WINDOW_NAME, annotated)
                key = cv2.waitKey(max(1, int(frame_interval * 1000))) & 0xFF
                if key in (ord("q"), 27):          # q or ESC
                    logger.info("Quit requested by user.")
                    break
                elif key == ord("r"):
                    monitor.reset()
                elif key == ord("s") and annotated is not None:
                    fname = f"snapshot_{int(time.time())}.png"
                    cv2.imwrite(fname, annotated)
                    logger.info("Saved snapshot: %s", fname)

    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        if writer is not None:
            writer.release()
        if not args.headless:
            cv2.destroyAllWindows()

    return 0


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
