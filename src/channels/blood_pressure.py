"""Blood pressure channel.

Candidate systolic/diastolic values are computed per sample from pulse
amplitude, signal level and a zero-crossing pulse-rate estimate, then
stabilised over a short history with IQR outlier rejection.
"""

from __future__ import annotations

from collections import deque
from typing import Optional

import numpy as np

from config.settings import ChannelConfig, FilterConfig
from src.channels.base import VitalChannel
from src.ppg_system.exceptions import InsufficientDataError
from src.ppg_system.schemas import BloodPressureResult, VitalSignType
from src.preprocessing.utils import reject_outliers_iqr, zero_crossing_rate

DEFAULT_SYSTOLIC = 120.0
DEFAULT_DIASTOLIC = 80.0
MIN_SYSTOLIC, MAX_SYSTOLIC = 80.0, 190.0
MIN_DIASTOLIC, MAX_DIASTOLIC = 50.0, 120.0
MIN_PULSE_PRESSURE, MAX_PULSE_PRESSURE = 25.0, 70.0
MIN_GAP = 20.0
MIN_SAMPLES = 5


class BloodPressureChannel(VitalChannel):
    """Estimates systolic and diastolic pressure from the PPG waveform.

    Systolic reacts more strongly to amplitude and pulse rate than
    diastolic. Output is ``0.6 * median + 0.4 * mean`` of the IQR-filtered
    history, with ``systolic - diastolic >= 20`` enforced last.
    """

    kind = VitalSignType.BLOOD_PRESSURE

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        filter_config: Optional[FilterConfig] = None,
    ) -> None:
        config = config or ChannelConfig()
        super().__init__(config, filter_config, buffer_size=config.blood_pressure_window)
        self._systolic: deque[float] = deque(maxlen=config.blood_pressure_history)
        self._diastolic: deque[float] = deque(maxlen=config.blood_pressure_history)

    def empty_result(self) -> BloodPressureResult:
        return BloodPressureResult()

    def _compute(self, filtered: float) -> tuple[BloodPressureResult, float]:
        window = self.state.window()
        if len(window) < MIN_SAMPLES:
            raise InsufficientDataError(MIN_SAMPLES, len(window))

        amplitude = float(np.ptp(window))
        level = float(window.mean())
        pulse_rate = self._estimate_pulse_rate(window)

        systolic = self._candidate_systolic(amplitude, level, pulse_rate)
        diastolic = self._candidate_diastolic(amplitude, level, pulse_rate, systolic)
        self._systolic.append(systolic)
        self._diastolic.append(diastolic)

        final_sys, final_dia, precision = self._stabilise()
        return BloodPressureResult(final_sys, final_dia, precision), precision

    def _estimate_pulse_rate(self, window: np.ndarray) -> float:
        """Zero-crossing pulse rate in bpm (0 when the window has no crossings)."""
        return zero_crossing_rate(window, self.config.sample_rate) * 30.0

    @staticmethod
    def _candidate_systolic(amplitude: float, level: float, pulse_rate: float) -> float:
        hr_term = 0.5 * (pulse_rate - 70.0) if pulse_rate > 0 else 0.0
        value = DEFAULT_SYSTOLIC + amplitude * 25.0 + level * 5.0 + hr_term
        return float(np.clip(value, MIN_SYSTOLIC, MAX_SYSTOLIC))

    @staticmethod
    def _candidate_diastolic(
        amplitude: float, level: float, pulse_rate: float, systolic: float
    ) -> float:
        hr_term = 0.3 * (pulse_rate - 70.0) if pulse_rate > 0 else 0.0
        value = DEFAULT_DIASTOLIC + amplitude * 15.0 + level * 3.0 + hr_term
        pulse_pressure = systolic - value
        if pulse_pressure < MIN_PULSE_PRESSURE:
            value = systolic - MIN_PULSE_PRESSURE
        elif pulse_pressure > MAX_PULSE_PRESSURE:
            value = systolic - MAX_PULSE_PRESSURE
        return float(np.clip(value, MIN_DIASTOLIC, MAX_DIASTOLIC))

    def _stabilise(self) -> tuple[float, float, float]:
        sys_values = reject_outliers_iqr(np.asarray(self._systolic))
        dia_values = reject_outliers_iqr(np.asarray(self._diastolic))
        systolic = 0.6 * float(np.median(sys_values)) + 0.4 * float(sys_values.mean())
        diastolic = 0.6 * float(np.median(dia_values)) + 0.4 * float(dia_values.mean())

        if systolic - diastolic < MIN_GAP:
            diastolic = systolic - MIN_GAP

        rsd = 0.5 * (sys_values.std() / systolic + dia_values.std() / diastolic)
        fill = len(self._systolic) / self._systolic.maxlen
        precision = float(np.clip((1.0 - rsd) * fill, 0.0, 1.0))
        return systolic, diastolic, precision

    def _reset_features(self) -> None:
        self._systolic.clear()
        self._diastolic.clear()
