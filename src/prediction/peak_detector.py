"""Multi-criterion PPG peak detection with adaptive thresholding.

Detects systolic peaks and diastolic valleys in a smoothed PPG window and
keeps a running buffer of inter-beat intervals across calls.

Usage:
    detector = PeakIntervalDetector(PeakDetectorConfig(sample_rate=30))
    result = detector.detect_peaks(window, start_index=n_seen - len(window))
    if result.intervals:
        bpm = 60000.0 / np.mean(result.intervals)
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

import numpy as np

from config.settings import PeakDetectorConfig
from src.ppg_system.schemas import PeakDetectionResult, RRIntervalData
from src.preprocessing.utils import rescale_span

logger = logging.getLogger(__name__)


class PeakIntervalDetector:
    """Detect beats and RR intervals from a smoothed PPG series.

    A candidate is accepted as a peak only when it is a strict local maximum,
    the curve is concave there, the rising edge before it is steep enough,
    it stands out from the surrounding baseline, and it is far enough from
    the previously accepted peak.

    Windows are rescaled to a fixed peak-to-peak span before feature
    extraction so that thresholds do not depend on signal units.

    Indices passed through ``start_index`` are absolute sample counts, so a
    caller sliding a buffer over a stream never gets the same beat twice.
    A window that does not reach past the end of the previously analysed
    range is treated as the start of a new series and clears that state.

    Args:
        config: Detector configuration.
    """

    def __init__(self, config: Optional[PeakDetectorConfig] = None) -> None:
        self.config = config or PeakDetectorConfig()
        self.min_distance = self.config.min_rr_ms * self.config.sample_rate / 1000.0
        self.threshold = self.config.threshold_min
        self.reset()

    def reset(self) -> None:
        cfg = self.config
        self._rr = RRIntervalData(
            capacity=cfg.interval_capacity, min_ms=cfg.min_rr_ms, max_ms=cfg.max_rr_ms
        )
        self._consecutive_valid = 0
        self._peaks: deque[int] = deque(maxlen=64)
        self._last_peak_time = 0.0
        self.threshold = cfg.threshold_min
        self._analysed_end: Optional[int] = None

    @property
    def consecutive_valid(self) -> int:
        return self._consecutive_valid

    def detect_peaks(
        self,
        values: np.ndarray,
        start_index: int = 0,
    ) -> PeakDetectionResult:
        """Detect peaks and valleys in one analysis window.

        Args:
            values: Smoothed PPG window.
            start_index: Absolute sample index of ``values[0]``.

        Returns:
            PeakDetectionResult with window-relative peak and valley indices
            and the current stable interval set (empty until enough
            consecutive plausible intervals have been seen).
        """
        cfg = self.config
        signal = np.asarray(values, dtype=np.float64)
        n = len(signal)
        end = start_index + n
        if self._analysed_end is not None and end <= self._analysed_end:
            logger.debug(
                "Window ending at %d does not pass %d; starting a new series",
                end, self._analysed_end,
            )
            self.reset()
        self._analysed_end = end

        if n < 2 * cfg.derivative_window or float(np.ptp(signal)) < cfg.min_raw_span:
            return self._result([], [], start_index)

        scaled = rescale_span(signal, cfg.feature_span)
        d1, d2, slope_sum = self._features(scaled)
        self.threshold = self._adaptive_threshold(slope_sum)

        margin = max(cfg.neighborhood, cfg.baseline_half_window)
        for i in range(margin, n - margin):
            absolute = start_index + i
            if self._peaks and absolute <= self._peaks[-1]:
                continue
            if self._is_peak(scaled, d2, slope_sum, i) and self._far_enough(absolute):
                self._accept_peak(absolute)

        valleys = [
            i for i in range(margin, n - margin) if self._is_valley(scaled, i)
        ]
        return self._result(
            [p for p in self._peaks if start_index <= p < start_index + n],
            valleys,
            start_index,
        )

    def get_intervals(self) -> list[float]:
        """Stable RR intervals (ms), empty until enough consecutive valid ones."""
        if self._consecutive_valid < self.config.min_consecutive_intervals:
            return []
        intervals = np.asarray(self._rr.intervals)
        if len(intervals) == 0:
            return []
        mean = intervals.mean()
        std = intervals.std()
        return [float(x) for x in intervals if abs(x - mean) <= 2.0 * std]

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def _features(self, scaled: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        cfg = self.config
        kernel = np.ones(cfg.derivative_window) / cfg.derivative_window
        d1 = np.convolve(np.gradient(scaled), kernel, mode="same")
        d2 = np.gradient(d1)
        rising = np.clip(d1, 0.0, None)
        # trailing window: emphasises the rising edge leading into a peak
        slope_sum = np.convolve(rising, np.ones(cfg.slope_sum_window))[: len(scaled)]
        return d1, d2, slope_sum

    def _adaptive_threshold(self, slope_sum: np.ndarray) -> float:
        cfg = self.config
        recent = slope_sum[-cfg.threshold_history:]
        value = float(recent.mean() + 0.35 * np.ptp(recent))
        return float(np.clip(value, cfg.threshold_min, cfg.threshold_max))

    def _baseline(self, scaled: np.ndarray, i: int) -> float:
        cfg = self.config
        lo = max(0, i - cfg.baseline_half_window)
        hi = min(len(scaled), i + cfg.baseline_half_window + 1)
        idx = np.arange(lo, hi)
        idx = idx[np.abs(idx - i) > cfg.baseline_exclusion]
        return float(scaled[idx].mean())

    # ------------------------------------------------------------------
    # Acceptance criteria
    # ------------------------------------------------------------------

    def _is_peak(
        self,
        scaled: np.ndarray,
        d2: np.ndarray,
        slope_sum: np.ndarray,
        i: int,
    ) -> bool:
        t = self.threshold
        k = self.config.neighborhood
        neighbours = np.concatenate((scaled[i - k:i], scaled[i + 1:i + k + 1]))
        if not np.all(scaled[i] > neighbours):
            return False
        if d2[i] >= -0.3 * t:
            return False
        if slope_sum[i] <= 1.2 * t:
            return False
        return scaled[i] - self._baseline(scaled, i) > 2.5 * t

    def _is_valley(self, scaled: np.ndarray, i: int) -> bool:
        k = self.config.valley_neighborhood
        neighbours = np.concatenate((scaled[i - k:i], scaled[i + 1:i + k + 1]))
        if not np.all(scaled[i] < neighbours):
            return False
        return self._baseline(scaled, i) - scaled[i] > 2.5 * self.threshold

    def _far_enough(self, absolute: int) -> bool:
        if not self._peaks:
            return True
        return absolute - self._peaks[-1] > self.min_distance

    # ------------------------------------------------------------------
    # Interval bookkeeping
    # ------------------------------------------------------------------

    def _accept_peak(self, absolute: int) -> None:
        fs = self.config.sample_rate
        if self._peaks:
            rr_ms = (absolute - self._peaks[-1]) * 1000.0 / fs
            if self._rr.add(rr_ms):
                self._consecutive_valid += 1
            else:
                logger.debug("Rejected RR interval %.1f ms", rr_ms)
                self._consecutive_valid = 0
        self._peaks.append(absolute)
        self._last_peak_time = absolute * 1000.0 / fs

    def _result(
        self,
        peaks: list[int],
        valleys: list[int],
        start_index: int,
    ) -> PeakDetectionResult:
        return PeakDetectionResult(
            peak_indices=[p - start_index for p in peaks],
            valley_indices=valleys,
            intervals=self.get_intervals(),
            last_peak_time=self._last_peak_time,
        )
