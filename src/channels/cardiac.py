"""Cardiac channel: heart rate and rhythm regularity from beat timing."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from config.settings import ChannelConfig, FilterConfig, PeakDetectorConfig
from src.channels.base import VitalChannel
from src.ppg_system.exceptions import InsufficientDataError
from src.ppg_system.schemas import (
    CardiacResult,
    RRIntervalData,
    SuggestedAdjustments,
    VitalSignType,
)
from src.prediction.peak_detector import PeakIntervalDetector
from src.preprocessing.utils import coefficient_of_variation

logger = logging.getLogger(__name__)

MIN_HEART_RATE = 40.0
MAX_HEART_RATE = 180.0
ARRHYTHMIA_REGULARITY = 0.7
DEFAULT_BAND = (0.5, 4.0)


class CardiacChannel(VitalChannel):
    """Runs peak/interval detection over the filtered buffer.

    Heart rate is ``60000 / mean(RR)`` clamped to [40, 180] bpm, or 0
    while no stable interval set exists. Rhythm regularity is
    ``max(0, 1 - 3 * CV(RR))``; below 0.7 the rhythm is flagged.

    Intervals from an external peak tracker can be supplied with
    ``seed_intervals``; they drive rhythm analysis while they hold at
    least three entries.
    """

    kind = VitalSignType.CARDIAC

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        filter_config: Optional[FilterConfig] = None,
        detector_config: Optional[PeakDetectorConfig] = None,
    ) -> None:
        config = config or ChannelConfig()
        super().__init__(config, filter_config, buffer_size=config.cardiac_window)
        self.detector = PeakIntervalDetector(
            detector_config or PeakDetectorConfig(sample_rate=config.sample_rate)
        )
        self._seed: Optional[RRIntervalData] = None

    def seed_intervals(self, rr_data: Optional[RRIntervalData]) -> None:
        self._seed = rr_data

    def empty_result(self) -> CardiacResult:
        return CardiacResult()

    def _compute(self, filtered: float) -> tuple[CardiacResult, float]:
        window = self.state.window()
        start = self.state.samples_seen - len(window)
        detection = self.detector.detect_peaks(window, start_index=start)

        detected = detection.intervals
        seeded = self._seed.intervals if self._seed is not None and len(self._seed) >= 3 else []
        rate_intervals = detected or seeded
        rhythm_intervals = seeded or detected
        if not rate_intervals:
            raise InsufficientDataError(
                self.detector.config.min_consecutive_intervals,
                self.detector.consecutive_valid,
                "consecutive intervals",
            )

        heart_rate = float(np.clip(
            60000.0 / float(np.mean(rate_intervals)), MIN_HEART_RATE, MAX_HEART_RATE
        ))
        regularity = self._regularity(rhythm_intervals)
        result = CardiacResult(
            heart_rate=heart_rate,
            arrhythmia_detected=regularity < ARRHYTHMIA_REGULARITY,
            rhythm_regularity=regularity,
            interval_count=len(rate_intervals),
            rmssd=self._rmssd(rhythm_intervals),
        )
        return result, 0.4 + 0.6 * regularity

    @staticmethod
    def _regularity(intervals: list[float]) -> float:
        if len(intervals) < 2:
            return 1.0
        return max(0.0, 1.0 - 3.0 * coefficient_of_variation(np.asarray(intervals)))

    @staticmethod
    def _rmssd(intervals: list[float]) -> float:
        """Root mean square of successive interval differences (ms)."""
        if len(intervals) < 2:
            return 0.0
        return float(np.sqrt(np.mean(np.diff(np.asarray(intervals)) ** 2)))

    def _reset_features(self) -> None:
        self.detector.reset()
        self._seed = None

    def _suggest_adjustments(self, amplitude: float, confidence: float) -> SuggestedAdjustments:
        adjustments = super()._suggest_adjustments(amplitude, confidence)
        if confidence < 0.4:
            adjustments.frequency_range_min, adjustments.frequency_range_max = DEFAULT_BAND
        return adjustments
