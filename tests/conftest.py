"""Shared pytest fixtures for PPG vital-signs system tests."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import yaml

from config.settings import AccelerationConfig, Settings
from src.ppg_system.schemas import RawSample

FS = 30.0


def _make_sine(
    freq: float = 1.2,
    duration: float = 10.0,
    amplitude: float = 1.0,
    offset: float = 0.0,
    fs: float = FS,
) -> np.ndarray:
    """Sine-like PPG stand-in sampled at ``fs``."""
    t = np.arange(int(round(duration * fs))) / fs
    return offset + amplitude * np.sin(2 * np.pi * freq * t)


def _as_samples(values: np.ndarray, quality: float = 80.0, fs: float = FS) -> list[RawSample]:
    return [
        RawSample(value=float(v), timestamp=i * 1000.0 / fs, quality=quality)
        for i, v in enumerate(values)
    ]


@pytest.fixture
def sine_signal() -> np.ndarray:
    """10 s of a 1.2 Hz sine (72 bpm) at 30 Hz, amplitude 1.0."""
    return _make_sine()


@pytest.fixture
def sine_samples(sine_signal: np.ndarray) -> list[RawSample]:
    return _as_samples(sine_signal)


@pytest.fixture
def flatline_samples() -> list[RawSample]:
    """100 samples of constant 0.5, finger detected, quality 80."""
    return _as_samples(np.full(100, 0.5))


@pytest.fixture
def settings() -> Settings:
    """Default settings with the in-process enhancement backend."""
    return Settings(acceleration=AccelerationConfig(backend="numeric"))


@pytest.fixture
def rules_path(tmp_path: Path) -> Path:
    """Copy of the default validation rules with a tighter glucose range."""
    default = Path(Settings().validation_rules)
    with open(default) as f:
        rules = yaml.safe_load(f)
    rules["ranges"]["glucose"] = {"min": 80, "max": 120}
    path = tmp_path / "rules.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(rules, f)
    return path
