#!/usr/bin/env python3
"""
PPG Vitals – command-line runner.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --source SRC         Camera index or video file path (default: 0)
    --resolution WxH     Camera resolution (default: 640x480)
    --fps INT            Target frame rate  (default: 30)
    --duration FLOAT     Stop after this many seconds (default: run until Ctrl-C)
    --export-dir PATH    Record the session and export CSV/JSON here on exit
    --filter-design      "butterworth" (default) or "legacy"
    --sensitivity FLOAT  Peak-detection sensitivity multiplier (default: 1.0)
    --bpm-offset INT     Additive BPM calibration offset
    --spo2-offset INT    Additive SpO2 calibration offset
    --refractory FLOAT   Minimum time between beats in ms (default: 250)
    --log-level LEVEL    Logging level (default: INFO)

Readings are logged about once per second.  The SpO2 value is an
uncalibrated, experimental estimate and must not be used for diagnosis.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from ppg_vitals.camera import FrameSource
from ppg_vitals.config import FILTER_DESIGNS, PipelineConfig
from ppg_vitals.exporter import ExportError, export_session
from ppg_vitals.pipeline import VitalSignsPipeline
from ppg_vitals.session import SessionRecorder

logger = logging.getLogger("ppg_vitals")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fingertip PPG vital-signs monitor (camera or video file)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--source", default="0",
                        help="Camera index or path to a video file")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--fps", type=int, default=30,
                        help="Target capture frame rate")
    parser.add_argument("--duration", type=float, default=None,
                        help="Stop after this many seconds of input")
    parser.add_argument("--export-dir", type=Path, default=None,
                        help="Record the session and export CSV/JSON to this directory")
    parser.add_argument("--filter-design", choices=FILTER_DESIGNS, default="butterworth",
                        help="Bandpass coefficient design")
    parser.add_argument("--sensitivity", type=float, default=1.0,
                        help="Peak-detection sensitivity multiplier")
    parser.add_argument("--bpm-offset", type=int, default=0,
                        help="Additive BPM calibration offset")
    parser.add_argument("--spo2-offset", type=int, default=0,
                        help="Additive SpO2 calibration offset")
    parser.add_argument("--refractory", type=float, default=250.0,
                        help="Refractory period between beats in ms")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging verbosity")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, fps: float) -> PipelineConfig:
    """Design the filters for the rate frames actually arrive at."""
    return PipelineConfig.for_frame_rate(
        fps,
        filter_design=args.filter_design,
        refractory_ms=args.refractory,
        sensitivity=args.sensitivity,
        bpm_offset=args.bpm_offset,
        spo2_offset=args.spo2_offset,
    )


def _parse_source(source: str) -> int | str:
    return int(source) if source.isdigit() else source


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    source = FrameSource(
        source=_parse_source(args.source),
        resolution=(res_w, res_h),
        fps=args.fps,
    )
    recorder = SessionRecorder() if args.export_dir else None

    try:
        with source:
            try:
                config = build_config(args, source.fps).validate()
            except ValueError as exc:
                logger.error("Invalid configuration: %s", exc)
                return 1
            pipeline = VitalSignsPipeline(config, recorder=recorder)
            if recorder is not None:
                recorder.start()

            log_interval = max(1, int(round(source.fps)))
            first_ts: float | None = None
            frame_idx = 0
            logger.info("Place a fingertip over the lens.  Press Ctrl-C to stop.")

            for frame, ts in source.frames():
                if first_ts is None:
                    first_ts = ts
                if args.duration is not None and ts - first_ts > args.duration * 1000.0:
                    break

                result = pipeline.process_frame(frame, ts)

                if frame_idx % log_interval == 0:
                    snap = pipeline.snapshot
                    if result is not None and result.finger_present and snap.bpm > 0:
                        logger.info(
                            "BPM=%d  SpO2=%d%% (experimental)  quality=%d%%  RR=%.0f ms%s",
                            snap.bpm, snap.spo2, snap.signal_quality, snap.last_rr,
                            "  IRREGULAR" if snap.is_arrhythmic else "",
                        )
                    else:
                        logger.info(
                            "Waiting for signal…  finger=%s",
                            bool(result and result.finger_present),
                        )
                frame_idx += 1

    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        session = recorder.stop() if recorder is not None and recorder.is_recording else None

    if session is not None:
        try:
            export_session(session, args.export_dir)
        except ExportError as exc:
            logger.error("Export failed: %s", exc)
            return 2

    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
