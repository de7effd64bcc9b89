"""PPG simulator facade: synthetic finger-camera PPG sample streams."""

from __future__ import annotations

from typing import Optional

import numpy as np

from src.ppg_system.schemas import RawSample
from src.simulator.noise import NOISE_PRESETS, NoiseConfig, apply_noise_pipeline

FS_PPG = 30.0
DURATION = 10.0
WAVEFORMS = ("pulse", "sine")


def pulse_shape(phase: np.ndarray) -> np.ndarray:
    """One beat of a PPG pulse: systolic upstroke plus dicrotic wave.

    Args:
        phase: beat phase in [0, 1).

    Returns:
        Waveform in roughly [-0.5, 0.5].
    """
    systolic = np.exp(-((phase - 0.2) / 0.1) ** 2)
    dicrotic = 0.35 * np.exp(-((phase - 0.5) / 0.09) ** 2)
    wave = systolic + dicrotic
    return wave - 0.5 * wave.max(initial=1.0)


class PPGSimulator:
    """Facade for generating synthetic PPG data.

    Args:
        fs: sampling frequency in Hz (default 30, one sample per video frame).
        duration: signal duration in seconds (default 10).
        seed: random seed for reproducibility. ``None`` for non-deterministic.
    """

    def __init__(
        self,
        fs: float = FS_PPG,
        duration: float = DURATION,
        seed: int | None = None,
    ) -> None:
        self.fs = fs
        self.duration = duration
        self.n_samples = int(round(fs * duration))
        self.time = np.arange(self.n_samples) / fs
        self._rng = np.random.default_rng(seed)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_signal(
        self,
        hr: float = 72.0,
        amplitude: float = 1.0,
        offset: float = 0.0,
        irregularity: float = 0.0,
        waveform: str = "pulse",
        noise_level: str = "clean",
        noise_config: NoiseConfig | None = None,
    ) -> np.ndarray:
        """Generate a PPG trace.

        Args:
            hr: mean heart rate in bpm.
            amplitude: peak-to-peak pulse amplitude (``sine``: twice the sine amplitude).
            offset: DC level added to the trace.
            irregularity: relative standard deviation of beat-to-beat intervals.
            waveform: ``pulse`` (systolic + dicrotic shape) or ``sine``.
            noise_level: key into ``NOISE_PRESETS``.
            noise_config: explicit noise configuration (overrides ``noise_level``).

        Returns:
            1-D float64 array of length ``n_samples``.
        """
        if waveform not in WAVEFORMS:
            raise ValueError(f"Unknown waveform {waveform!r}; expected one of {WAVEFORMS}")

        phase = self._beat_phase(hr, irregularity)
        if waveform == "sine":
            clean = 0.5 * amplitude * np.sin(2 * np.pi * phase)
        else:
            clean = amplitude * pulse_shape(np.mod(phase, 1.0))

        nc = noise_config or NOISE_PRESETS.get(noise_level, NOISE_PRESETS["clean"])
        return apply_noise_pipeline(clean, self.time, self.fs, self._rng, nc) + offset

    def generate_samples(
        self,
        hr: float = 72.0,
        amplitude: float = 1.0,
        offset: float = 0.0,
        irregularity: float = 0.0,
        waveform: str = "pulse",
        noise_level: str = "clean",
        quality: float = 80.0,
        finger_detected: bool = True,
        start_ms: float = 0.0,
    ) -> list[RawSample]:
        """Generate a stream of RawSample with timestamps in milliseconds."""
        signal = self.generate_signal(
            hr=hr,
            amplitude=amplitude,
            offset=offset,
            irregularity=irregularity,
            waveform=waveform,
            noise_level=noise_level,
        )
        return samples_from_values(
            signal, self.fs, quality=quality, finger_detected=finger_detected, start_ms=start_ms
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _beat_phase(self, hr: float, irregularity: float) -> np.ndarray:
        """Cumulative beat phase; the integer part counts beats."""
        if irregularity <= 0.0:
            return (hr / 60.0) * self.time

        mean_rr = 60.0 / hr
        onsets = [0.0]
        while onsets[-1] <= self.duration:
            rr = mean_rr * (1.0 + irregularity * self._rng.normal())
            onsets.append(onsets[-1] + max(rr, 0.3 * mean_rr))
        onsets_arr = np.asarray(onsets)
        beat = np.searchsorted(onsets_arr, self.time, side="right") - 1
        start = onsets_arr[beat]
        length = onsets_arr[beat + 1] - start
        return beat + (self.time - start) / length


def samples_from_values(
    values: np.ndarray,
    fs: float,
    quality: float = 80.0,
    finger_detected: bool = True,
    start_ms: float = 0.0,
    quality_override: Optional[dict[int, float]] = None,
) -> list[RawSample]:
    """Wrap raw values as RawSample with frame timestamps.

    Args:
        quality_override: optional per-index quality (e.g. to simulate dropouts).
    """
    step_ms = 1000.0 / fs
    overrides = quality_override or {}
    return [
        RawSample(
            value=float(v),
            timestamp=start_ms + i * step_ms,
            quality=overrides.get(i, quality),
            finger_detected=finger_detected,
        )
        for i, v in enumerate(values)
    ]
