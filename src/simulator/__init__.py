"""PPG Simulator: synthetic finger-camera PPG sample streams."""

from src.simulator.noise import NoiseConfig, NOISE_PRESETS
from src.simulator.ppg_simulator import PPGSimulator, pulse_shape, samples_from_values

__all__ = [
    "NoiseConfig",
    "NOISE_PRESETS",
    "PPGSimulator",
    "pulse_shape",
    "samples_from_values",
]
