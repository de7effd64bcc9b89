"""Signal enhancement backends.

An enhancement backend takes a numeric buffer and returns an enhanced
buffer of the same length plus a confidence scalar. Callers must not care
which backend actually served a request:

    backend = build_backend(AccelerationConfig(backend="offloaded"))
    result = backend.enhance(window)   # EnhancementResult(values, confidence)

``NumericBackend`` runs in-process. ``OffloadedBackend`` hands the call to a
worker thread and gives up after a timeout. ``FallbackBackend`` wraps any
primary backend and serves the request in-process when the primary fails.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Optional

import numpy as np

from config.settings import AccelerationConfig, FilterConfig
from src.ppg_system.exceptions import (
    AcceleratorTimeoutError,
    AcceleratorUnavailableError,
    ConfigurationError,
    InsufficientDataError,
)
from src.ppg_system.schemas import EnhancementResult

logger = logging.getLogger(__name__)


def kalman_sweep(
    values: np.ndarray,
    estimate: float,
    covariance: float,
    process_noise: float,
    measurement_noise: float,
) -> tuple[np.ndarray, float]:
    """Run the scalar Kalman recurrence over a whole buffer at once.

    With fixed noise terms the gain sequence does not depend on the data,
    so the estimates reduce to a first-order linear recurrence
    ``x_i = (1 - k_i) x_{i-1} + k_i m_i`` solved with cumulative products.

    Returns:
        (filtered values, error covariance after the last sample)
    """
    values = np.asarray(values, dtype=np.float64)
    n = len(values)
    gains = np.empty(n)
    p = covariance
    for i in range(n):
        p += process_noise
        k = p / (p + measurement_noise)
        gains[i] = k
        p *= 1.0 - k

    decay = np.cumprod(1.0 - gains)
    if n and decay[-1] > 1e-250:
        filtered = decay * (estimate + np.cumsum(gains * values / decay))
    else:
        # cumulative product underflowed; step through explicitly
        filtered = np.empty(n)
        x = estimate
        for i in range(n):
            x += gains[i] * (values[i] - x)
            filtered[i] = x
    return filtered, p


def _enhancement_confidence(raw: np.ndarray, enhanced: np.ndarray) -> float:
    """Agreement between raw and enhanced buffers, 1.0 for identical."""
    span = float(np.ptp(raw))
    if span < 1e-9:
        return 1.0
    residual = float(np.sqrt(np.mean((raw - enhanced) ** 2)))
    return float(np.clip(1.0 - residual / span, 0.0, 1.0))


class EnhancementBackend(ABC):
    """Black-box ``enhance(buffer) -> (buffer, confidence)`` capability."""

    name = "base"

    @abstractmethod
    def enhance(
        self,
        buffer: np.ndarray,
        context: Optional[dict[str, Any]] = None,
    ) -> EnhancementResult:
        """Enhance a buffer.

        Args:
            buffer: 1-D numeric buffer.
            context: Optional filter state (``estimate``, ``covariance``,
                ``process_noise``, ``measurement_noise``).
        """

    @property
    def fallback_count(self) -> int:
        return 0

    def shutdown(self) -> None:
        """Release any resources held by the backend."""


class NumericBackend(EnhancementBackend):
    """In-process vectorized Kalman smoothing."""

    name = "numeric"

    def __init__(self, config: Optional[FilterConfig] = None) -> None:
        self.config = config or FilterConfig()

    def enhance(
        self,
        buffer: np.ndarray,
        context: Optional[dict[str, Any]] = None,
    ) -> EnhancementResult:
        values = np.asarray(buffer, dtype=np.float64)
        if values.size == 0:
            raise InsufficientDataError(1, 0)
        ctx = context or {}
        filtered, _ = kalman_sweep(
            values,
            estimate=float(ctx.get("estimate", values[0])),
            covariance=float(ctx.get("covariance", self.config.initial_covariance)),
            process_noise=float(ctx.get("process_noise", self.config.process_noise)),
            measurement_noise=float(ctx.get("measurement_noise", self.config.measurement_noise)),
        )
        return EnhancementResult(
            values=filtered,
            confidence=_enhancement_confidence(values, filtered),
            backend=self.name,
        )


class OffloadedBackend(EnhancementBackend):
    """Runs a worker backend on a thread pool with a bounded wait.

    Args:
        worker: Backend executed on the pool (default: NumericBackend).
        timeout_s: Maximum wait for one request in seconds.
        max_workers: Pool size.
    """

    name = "offloaded"

    def __init__(
        self,
        worker: Optional[EnhancementBackend] = None,
        timeout_s: float = 1.5,
        max_workers: int = 1,
    ) -> None:
        self.worker = worker or NumericBackend()
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ppg-enhance"
        )
        self._closed = False

    def enhance(
        self,
        buffer: np.ndarray,
        context: Optional[dict[str, Any]] = None,
    ) -> EnhancementResult:
        if self._closed:
            raise AcceleratorUnavailableError("Offloaded backend has been shut down")

        future = self._executor.submit(
            self.worker.enhance,
            np.array(buffer, dtype=np.float64, copy=True),
            dict(context) if context else None,
        )
        try:
            result = future.result(timeout=self.timeout_s)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise AcceleratorTimeoutError(self.timeout_s) from exc
        except Exception as exc:
            raise AcceleratorUnavailableError(f"Worker failed: {exc}") from exc
        return EnhancementResult(result.values, result.confidence, backend=self.name)

    def shutdown(self) -> None:
        """Stop accepting requests and drop queued ones."""
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)


class FallbackBackend(EnhancementBackend):
    """Serve from ``primary``; on any failure serve from ``fallback``."""

    name = "fallback"

    def __init__(
        self,
        primary: EnhancementBackend,
        fallback: Optional[EnhancementBackend] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or NumericBackend()
        self._fallback_count = 0

    @property
    def fallback_count(self) -> int:
        return self._fallback_count

    def enhance(
        self,
        buffer: np.ndarray,
        context: Optional[dict[str, Any]] = None,
    ) -> EnhancementResult:
        try:
            return self.primary.enhance(buffer, context)
        except Exception as exc:
            self._fallback_count += 1
            logger.warning(
                "Enhancement backend %s failed (%s); serving from %s (fallbacks=%d)",
                self.primary.name, exc, self.fallback.name, self._fallback_count,
            )
        return self.fallback.enhance(buffer, context)

    def shutdown(self) -> None:
        self.primary.shutdown()
        self.fallback.shutdown()


def build_backend(
    config: Optional[AccelerationConfig] = None,
    filter_config: Optional[FilterConfig] = None,
) -> EnhancementBackend:
    """Create the backend named in the acceleration config.

    Raises:
        ConfigurationError: unknown backend name.
    """
    config = config or AccelerationConfig()
    if config.backend == "numeric":
        return NumericBackend(filter_config)
    if config.backend == "offloaded":
        primary = OffloadedBackend(
            worker=NumericBackend(filter_config),
            timeout_s=config.timeout_s,
            max_workers=config.max_workers,
        )
        return FallbackBackend(primary, NumericBackend(filter_config))
    raise ConfigurationError(f"Unknown enhancement backend: {config.backend!r}")
