"""Run one vital-signs session over a simulated or recorded PPG stream.

Usage:
    python scripts/run_session.py [--hr 72] [--duration 10] [--noise clean]
    python scripts/run_session.py --csv recording.csv --calibrate SPO2=95 SYSTOLIC=118

CSV input holds one sample per row: ``value[,timestamp_ms[,quality[,finger]]]``.
Prints the final result, diagnostics and a once-per-second trace as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import fields
from typing import Any

# Ensure project root is on sys.path so src/config imports work
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import numpy as np

from config.settings import Settings
from src.pipeline.processor import VitalSignsProcessor
from src.ppg_system.exceptions import (
    ConfigurationError,
    CrossValidationError,
    PPGSystemError,
)
from src.ppg_system.schemas import CalibrationReference, RawSample
from src.simulator import NOISE_PRESETS, PPGSimulator, samples_from_values

_REFERENCE_FIELDS = {f.name for f in fields(CalibrationReference)} - {"timestamp"}


def _parse_reference(pairs: list[str]) -> CalibrationReference:
    """Build a reference from ``NAME=VALUE`` pairs, e.g. ``SPO2=95``."""
    values: dict[str, float] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        name = name.strip().lower()
        if not sep or name not in _REFERENCE_FIELDS:
            raise ConfigurationError(
                f"Bad calibration entry {pair!r}; expected NAME=VALUE with NAME in "
                f"{sorted(_REFERENCE_FIELDS)}"
            )
        try:
            values[name] = float(raw)
        except ValueError as exc:
            raise ConfigurationError(f"Bad calibration value in {pair!r}") from exc
    return CalibrationReference(**values)


def _load_csv(path: str, fs: float, skip_header: int) -> list[RawSample]:
    try:
        data = np.loadtxt(path, delimiter=",", ndmin=2, skiprows=skip_header)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Cannot read samples from {path}: {exc}") from exc
    if data.shape[1] == 1:
        return samples_from_values(data[:, 0], fs)
    samples = []
    for row in data:
        samples.append(RawSample(
            value=float(row[0]),
            timestamp=float(row[1]),
            quality=float(row[2]) if len(row) > 2 else 100.0,
            finger_detected=bool(row[3]) if len(row) > 3 else True,
        ))
    return samples


def _trace_entry(result: Any) -> dict[str, Any]:
    return {
        "t_ms": round(result.timestamp, 1),
        "heart_rate": result.heart_rate,
        "spo2": result.spo2,
        "blood_pressure": result.blood_pressure,
        "glucose": result.glucose,
        "lipids": list(result.lipids),
        "arrhythmia": result.arrhythmia_status,
        "precision": round(result.overall_precision, 3),
        "status": result.status,
        "stale": result.stale,
    }


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run a PPG vital-signs session and print a JSON summary"
    )
    parser.add_argument("--hr", type=float, default=72.0, help="Simulated heart rate (bpm)")
    parser.add_argument("--duration", type=float, default=10.0, help="Simulated duration (s)")
    parser.add_argument("--noise", choices=sorted(NOISE_PRESETS), default="clean")
    parser.add_argument("--irregularity", type=float, default=0.0,
                        help="Relative RR jitter of the simulated rhythm")
    parser.add_argument("--quality", type=float, default=80.0, help="Simulated quality (0-100)")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--csv", help="Read samples from a CSV file instead of simulating")
    parser.add_argument("--skip-header", type=int, default=0, help="CSV header lines to skip")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--calibrate", nargs="+", metavar="NAME=VALUE",
                        help="Reference measurements, e.g. SPO2=95 SYSTOLIC=118 (repeatable)",
                        action="append")
    parser.add_argument("--estimate-environment", action="store_true",
                        help="Estimate light and motion from the signal")
    parser.add_argument("--strict", action="store_true",
                        help="Exit with an error if the final snapshot fails cross-validation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    settings = Settings.from_env()
    if args.config:
        settings = Settings.from_yaml(args.config, base=settings)
    if args.estimate_environment:
        settings.environment.auto_estimate = True

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    processor: VitalSignsProcessor | None = None
    try:
        fs = settings.channels.sample_rate
        if args.csv:
            samples = _load_csv(args.csv, fs, args.skip_header)
        else:
            sim = PPGSimulator(fs=fs, duration=args.duration, seed=args.seed)
            samples = sim.generate_samples(
                hr=args.hr,
                irregularity=args.irregularity,
                noise_level=args.noise,
                quality=args.quality,
            )

        processor = VitalSignsProcessor(settings)
        for pairs in args.calibrate or []:
            processor.add_calibration_reference(_parse_reference(pairs))
        processor.start()

        trace: list[dict[str, Any]] = []
        result = None
        step = max(1, int(round(fs)))
        for i, sample in enumerate(samples):
            result = processor.process_signal(sample)
            if (i + 1) % step == 0:
                trace.append(_trace_entry(result))
        diagnostics = processor.get_diagnostics()
        processor.stop()

        if args.strict and result is not None and not result.correlation_validated:
            raise CrossValidationError(
                f"Final snapshot failed cross-validation: {list(result.inconsistencies)}"
            )

        output = {
            "source": args.csv or "simulator",
            "samples": len(samples),
            "result": result.to_dict() if result is not None else None,
            "diagnostics": diagnostics,
            "trace": trace,
        }
        print(json.dumps(output, indent=2, default=float))

    except PPGSystemError as exc:
        if processor is not None and processor.is_running:
            processor.stop()
        print(json.dumps({"error": type(exc).__name__, "detail": str(exc)}), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
