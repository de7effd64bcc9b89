"""Single-state adaptive Kalman filter for per-channel smoothing."""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

import numpy as np

from config.settings import FilterConfig
from src.acceleration.backends import EnhancementBackend

logger = logging.getLogger(__name__)


class AdaptiveFilter:
    """Kalman-style estimator with dynamic process and measurement noise.

    Each step predicts ``P += Q``, computes ``k = P / (P + R)``, updates the
    estimate toward the measurement and shrinks ``P`` by ``(1 - k)``.

    In adaptive mode ``Q`` follows the variance of the last few gains and
    ``R`` widens on outliers and narrows on close agreement. A run of
    outliers longer than ``max_outlier_run`` is treated as a level change
    and the filter re-acquires with its nominal noise terms.

    Args:
        config: Filter configuration.
        backend: Optional enhancement backend used by ``filter_batch``.
        initial_estimate: Starting estimate (default 0.0).
    """

    max_outlier_run = 3

    def __init__(
        self,
        config: Optional[FilterConfig] = None,
        backend: Optional[EnhancementBackend] = None,
        initial_estimate: float = 0.0,
    ) -> None:
        self.config = config or FilterConfig()
        self.backend = backend
        self._initial_estimate = initial_estimate
        self._gains: deque[float] = deque(maxlen=self.config.gain_history)
        self.fallback_count = 0
        self.reset()

    def reset(self) -> None:
        """Restore the initial estimate, covariance and noise terms."""
        self.estimate = float(self._initial_estimate)
        self.error_covariance = self.config.initial_covariance
        self.process_noise = self.config.process_noise
        self.measurement_noise = self.config.measurement_noise
        self._gains.clear()
        self._outlier_run = 0

    # ------------------------------------------------------------------
    # Scalar recurrence
    # ------------------------------------------------------------------

    def filter(self, measurement: float) -> float:
        """Fold one measurement into the estimate and return the new estimate."""
        measurement = float(measurement)
        if self.config.adaptive:
            self._adapt_measurement_noise(abs(measurement - self.estimate))

        self.error_covariance += self.process_noise
        gain = self.error_covariance / (self.error_covariance + self.measurement_noise)
        self.estimate += gain * (measurement - self.estimate)
        self.error_covariance *= 1.0 - gain

        self._gains.append(gain)
        if self.config.adaptive:
            self._adapt_process_noise()
        return self.estimate

    def _adapt_measurement_noise(self, deviation: float) -> None:
        cfg = self.config
        if deviation > cfg.outlier_ratio * self.measurement_noise:
            self._outlier_run += 1
            if self._outlier_run > self.max_outlier_run:
                # sustained deviation: level change, not an outlier
                self.measurement_noise = cfg.measurement_noise
                self.error_covariance = cfg.initial_covariance
                self._outlier_run = 0
            else:
                self.measurement_noise = min(
                    self.measurement_noise * 2.0, cfg.max_measurement_noise
                )
            return

        self._outlier_run = 0
        if deviation < cfg.inlier_ratio * self.measurement_noise:
            self.measurement_noise = max(
                self.measurement_noise * 0.9, cfg.min_measurement_noise
            )

    def _adapt_process_noise(self) -> None:
        if len(self._gains) < 2:
            return
        gain_variance = float(np.var(self._gains))
        self.process_noise = float(np.clip(
            self.config.process_noise + gain_variance,
            self.config.min_process_noise,
            self.config.max_process_noise,
        ))

    # ------------------------------------------------------------------
    # Batch mode
    # ------------------------------------------------------------------

    def filter_batch(self, values: np.ndarray) -> np.ndarray:
        """Filter buffered samples in chunks of ``config.batch_size``.

        The configured backend runs each chunk with noise terms frozen at
        their current values, and only the last filtered value of a chunk
        is kept as state for the next one. If the backend raises, the
        scalar recurrence runs on that chunk instead.
        """
        values = np.asarray(values, dtype=np.float64)
        if values.size == 0:
            return values
        if self.backend is None:
            return self._filter_scalar(values)
        size = max(1, self.config.batch_size)
        return np.concatenate([
            self._filter_chunk(values[i:i + size]) for i in range(0, len(values), size)
        ])

    def _filter_chunk(self, values: np.ndarray) -> np.ndarray:
        context = {
            "estimate": self.estimate,
            "covariance": self.error_covariance,
            "process_noise": self.process_noise,
            "measurement_noise": self.measurement_noise,
        }
        try:
            result = self.backend.enhance(values, context)
            filtered = np.asarray(result.values, dtype=np.float64)
            if filtered.shape != values.shape:
                raise ValueError(
                    f"backend returned {filtered.shape}, expected {values.shape}"
                )
        except Exception as exc:
            self.fallback_count += 1
            logger.warning(
                "Batch filtering via %s failed (%s); using scalar recurrence",
                self.backend.name, exc,
            )
            return self._filter_scalar(values)

        self.estimate = float(filtered[-1])
        for _ in range(len(values)):
            self.error_covariance += self.process_noise
            self.error_covariance *= self.measurement_noise / (
                self.error_covariance + self.measurement_noise
            )
        return filtered

    def _filter_scalar(self, values: np.ndarray) -> np.ndarray:
        return np.array([self.filter(v) for v in values])
