"""Glucose channel."""

from __future__ import annotations

from collections import deque
from typing import Optional

import numpy as np

from config.settings import ChannelConfig, FilterConfig
from src.channels.base import VitalChannel, stability
from src.ppg_system.exceptions import InsufficientDataError
from src.ppg_system.schemas import GlucoseResult, VitalSignType
from src.preprocessing.utils import smooth, zero_crossing_rate

BASELINE_GLUCOSE = 90.0
MIN_GLUCOSE = 70.0
MAX_GLUCOSE = 180.0
MIN_SAMPLES = 10


def waveform_features(window: np.ndarray, fs: float) -> dict[str, float]:
    """Shape features of a smoothed PPG window against its median baseline.

    Returns:
        ``auc`` mean positive excursion above the baseline,
        ``peak_valley_ratio`` mean local-peak over mean local-valley excursion
        (1.0 when either is missing), ``frequency`` rough pulse frequency in Hz
        from baseline crossings, ``amplitude`` peak-to-peak span.
    """
    baseline = float(np.median(window))
    excursion = window - baseline
    auc = float(np.clip(excursion, 0.0, None).sum() / len(window))

    inner = window[1:-1]
    is_peak = (inner > window[:-2]) & (inner > window[2:])
    is_valley = (inner < window[:-2]) & (inner < window[2:])
    peaks = inner[is_peak] - baseline
    valleys = baseline - inner[is_valley]
    ratio = 1.0
    if len(peaks) and len(valleys) and valleys.mean() > 1e-9:
        ratio = float(peaks.mean() / valleys.mean())

    return {
        "auc": auc,
        "peak_valley_ratio": ratio,
        "frequency": zero_crossing_rate(window, fs) / 2.0,
        "amplitude": float(np.ptp(window)),
    }


class GlucoseChannel(VitalChannel):
    """Baseline 90 mg/dL plus weighted waveform-shape terms, clamped to [70, 180]."""

    kind = VitalSignType.GLUCOSE

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        filter_config: Optional[FilterConfig] = None,
    ) -> None:
        config = config or ChannelConfig()
        super().__init__(config, filter_config, buffer_size=config.glucose_window)
        self._estimates: deque[float] = deque(maxlen=10)

    def empty_result(self) -> GlucoseResult:
        return GlucoseResult()

    def _compute(self, filtered: float) -> tuple[GlucoseResult, float]:
        window = self.state.window()
        if len(window) < MIN_SAMPLES:
            raise InsufficientDataError(MIN_SAMPLES, len(window))

        features = waveform_features(smooth(window), self.config.sample_rate)
        glucose = BASELINE_GLUCOSE
        glucose += features["auc"] * 20.0
        glucose += (features["peak_valley_ratio"] - 1.0) * 15.0
        glucose += features["amplitude"] * 10.0
        if features["frequency"] > 0:
            glucose += (features["frequency"] - 0.5) * 10.0
        glucose = float(np.clip(glucose, MIN_GLUCOSE, MAX_GLUCOSE))

        self._estimates.append(glucose)
        confidence = stability(self._estimates, scale=15.0)
        if abs(glucose - BASELINE_GLUCOSE) > 30.0:
            confidence *= 0.7
        return GlucoseResult(glucose=glucose), confidence

    def _reset_features(self) -> None:
        self._estimates.clear()
