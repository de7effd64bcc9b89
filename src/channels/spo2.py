"""SpO2 channel."""

from __future__ import annotations

from collections import deque
from typing import Optional

import numpy as np

from config.settings import ChannelConfig, FilterConfig
from src.channels.base import VitalChannel, stability
from src.ppg_system.schemas import SpO2Result, VitalSignType

BASELINE_SPO2 = 97.0
MIN_SPO2 = 90.0
MAX_SPO2 = 100.0


class SpO2Channel(VitalChannel):
    """Baseline 97% plus a small linear term from the filtered value."""

    kind = VitalSignType.SPO2
    slope = 2.0

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        filter_config: Optional[FilterConfig] = None,
    ) -> None:
        super().__init__(config, filter_config)
        self._estimates: deque[float] = deque(maxlen=10)

    def empty_result(self) -> SpO2Result:
        return SpO2Result()

    def _compute(self, filtered: float) -> tuple[SpO2Result, float]:
        spo2 = float(np.clip(BASELINE_SPO2 + self.slope * filtered, MIN_SPO2, MAX_SPO2))
        self._estimates.append(spo2)
        return SpO2Result(spo2=spo2), stability(self._estimates, scale=2.0)

    def _reset_features(self) -> None:
        self._estimates.clear()
