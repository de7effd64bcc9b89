"""Composable noise pipeline for PPG signal corruption."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class NoiseConfig:
    """Configuration for the noise pipeline.

    Attributes:
        baseline_wander_amp: amplitude of respiratory/postural baseline drift,
            relative to a unit pulse amplitude.
        gaussian_std: standard deviation of additive sensor noise.
        motion_probability: probability of finger-motion artifacts.
    """

    baseline_wander_amp: float = 0.10
    gaussian_std: float = 0.05
    motion_probability: float = 0.15


NOISE_PRESETS: dict[str, NoiseConfig] = {
    "clean": NoiseConfig(
        baseline_wander_amp=0.0,
        gaussian_std=0.0,
        motion_probability=0.0,
    ),
    "low": NoiseConfig(
        baseline_wander_amp=0.05,
        gaussian_std=0.02,
        motion_probability=0.05,
    ),
    "medium": NoiseConfig(
        baseline_wander_amp=0.10,
        gaussian_std=0.05,
        motion_probability=0.15,
    ),
    "high": NoiseConfig(
        baseline_wander_amp=0.20,
        gaussian_std=0.15,
        motion_probability=0.40,
    ),
}


def add_baseline_wander(
    signal: np.ndarray,
    time: np.ndarray,
    rng: np.random.Generator,
    config: NoiseConfig,
) -> np.ndarray:
    """Add low-frequency baseline wander (respiration, finger pressure)."""
    if config.baseline_wander_amp == 0.0:
        return signal
    freq = rng.uniform(0.1, 0.4)
    amp = config.baseline_wander_amp
    wander = amp * np.sin(2 * np.pi * freq * time + rng.uniform(0, 2 * np.pi))
    wander += 0.5 * amp * np.sin(2 * np.pi * freq * 0.3 * time + rng.uniform(0, 2 * np.pi))
    return signal + wander


def add_gaussian_noise(
    signal: np.ndarray,
    rng: np.random.Generator,
    config: NoiseConfig,
) -> np.ndarray:
    """Add white Gaussian noise."""
    if config.gaussian_std == 0.0:
        return signal
    noise = rng.normal(0, config.gaussian_std, len(signal))
    return signal + noise


def add_motion_artifact(
    signal: np.ndarray,
    fs: float,
    rng: np.random.Generator,
    config: NoiseConfig,
) -> np.ndarray:
    """Add brief finger-motion excursions (0.3-1.5 s Gaussian bumps)."""
    if rng.random() >= config.motion_probability or len(signal) < 4:
        return signal

    result = signal.copy()
    n_bumps = rng.integers(1, 4)
    for _ in range(n_bumps):
        width = max(3, int(rng.uniform(0.3, 1.5) * fs))
        loc = rng.integers(0, max(1, len(signal) - width))
        amp = rng.uniform(0.5, 1.5) * rng.choice([-1, 1])
        bump = amp * np.exp(
            -((np.arange(width) - width / 2) ** 2) / (width / 6) ** 2
        )
        end = min(loc + width, len(result))
        result[loc:end] += bump[: end - loc]
    return result


def apply_noise_pipeline(
    signal: np.ndarray,
    time: np.ndarray,
    fs: float,
    rng: np.random.Generator,
    config: NoiseConfig,
) -> np.ndarray:
    """Apply the full noise pipeline in order."""
    out = add_baseline_wander(signal, time, rng, config)
    out = add_gaussian_noise(out, rng, config)
    out = add_motion_artifact(out, fs, rng, config)
    return out
