"""Lipids channel: total cholesterol and triglycerides."""

from __future__ import annotations

from collections import deque
from typing import Optional

import numpy as np

from config.settings import ChannelConfig, FilterConfig
from src.channels.base import VitalChannel, stability
from src.channels.glucose import waveform_features
from src.ppg_system.exceptions import InsufficientDataError
from src.ppg_system.schemas import LipidsResult, VitalSignType
from src.preprocessing.utils import smooth

BASELINE_CHOLESTEROL = 180.0
BASELINE_TRIGLYCERIDES = 150.0
CHOLESTEROL_RANGE = (120.0, 300.0)
TRIGLYCERIDES_RANGE = (70.0, 250.0)
MIN_SAMPLES = 30


class LipidsChannel(VitalChannel):
    """Baseline plus feature-weighted lipid estimates.

    Uses the same waveform features as the glucose channel over a longer
    window; a steeper, narrower pulse (high peak/valley ratio) raises both
    estimates, a larger perfusion area raises triglycerides more.
    """

    kind = VitalSignType.LIPIDS

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        filter_config: Optional[FilterConfig] = None,
    ) -> None:
        config = config or ChannelConfig()
        super().__init__(config, filter_config, buffer_size=config.lipids_window)
        self._estimates: deque[float] = deque(maxlen=10)

    def empty_result(self) -> LipidsResult:
        return LipidsResult()

    def _compute(self, filtered: float) -> tuple[LipidsResult, float]:
        window = self.state.window()
        if len(window) < MIN_SAMPLES:
            raise InsufficientDataError(MIN_SAMPLES, len(window))

        features = waveform_features(smooth(window, window=9), self.config.sample_rate)
        shape = features["peak_valley_ratio"] - 1.0

        cholesterol = BASELINE_CHOLESTEROL
        cholesterol += features["amplitude"] * 15.0
        cholesterol += features["auc"] * 25.0
        cholesterol += shape * 20.0

        triglycerides = BASELINE_TRIGLYCERIDES
        triglycerides += features["amplitude"] * 10.0
        triglycerides += features["auc"] * 35.0
        triglycerides += shape * 15.0

        result = LipidsResult(
            total_cholesterol=float(np.clip(cholesterol, *CHOLESTEROL_RANGE)),
            triglycerides=float(np.clip(triglycerides, *TRIGLYCERIDES_RANGE)),
        )
        self._estimates.append(result.total_cholesterol)
        return result, stability(self._estimates, scale=20.0)

    def _reset_features(self) -> None:
        self._estimates.clear()
