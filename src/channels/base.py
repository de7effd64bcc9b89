"""Vital-sign channel contract and shared per-channel state."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Iterable, Optional

import numpy as np

from config.settings import ChannelConfig, FilterConfig
from src.ppg_system.exceptions import InsufficientDataError
from src.ppg_system.schemas import ChannelFeedback, SuggestedAdjustments, VitalSignType
from src.preprocessing.adaptive_filter import AdaptiveFilter

logger = logging.getLogger(__name__)

NEAR_ZERO = 1e-6


class ChannelState:
    """Filter, confidence and recent-value buffer owned by one channel.

    Confidence is blended ``0.8 * old + 0.2 * instant`` and kept in
    [0.1, 0.95] on success; on invalid input it only decays.
    """

    initial_confidence = 0.5
    min_confidence = 0.1
    max_confidence = 0.95

    def __init__(self, buffer_size: int, filter_config: Optional[FilterConfig] = None) -> None:
        self.filter = AdaptiveFilter(filter_config)
        self.buffer: deque[float] = deque(maxlen=buffer_size)
        self.confidence = self.initial_confidence
        self.last_feedback: Optional[ChannelFeedback] = None
        self.samples_seen = 0

    def reset(self) -> None:
        self.filter.reset()
        self.buffer.clear()
        self.confidence = self.initial_confidence
        self.last_feedback = None
        self.samples_seen = 0

    def push(self, value: float) -> None:
        self.buffer.append(value)
        self.samples_seen += 1

    def window(self, size: Optional[int] = None) -> np.ndarray:
        values = np.fromiter(self.buffer, dtype=np.float64, count=len(self.buffer))
        if size is not None:
            values = values[-size:]
        return values

    def span(self, size: Optional[int] = None) -> float:
        values = self.window(size)
        return float(np.ptp(values)) if len(values) else 0.0

    def blend_confidence(self, instant: float) -> float:
        blended = 0.8 * self.confidence + 0.2 * float(instant)
        self.confidence = float(np.clip(blended, self.min_confidence, self.max_confidence))
        return self.confidence

    def decay_confidence(self, factor: float) -> float:
        self.confidence = float(np.clip(self.confidence * factor, 0.0, 1.0))
        return self.confidence


def stability(history: Iterable[float], scale: float) -> float:
    """Map the spread of recent estimates to [0, 1]; 1.0 means no spread."""
    values = np.asarray(list(history), dtype=np.float64)
    if len(values) < 2:
        return 0.5
    return float(np.clip(1.0 - values.std() / scale, 0.0, 1.0))


class VitalChannel(ABC):
    """Contract shared by all vital-sign channels.

    ``process_signal`` never raises for bad input: non-finite or dead
    (near-zero) samples and windows too short for feature extraction
    yield ``empty_result()`` and a decayed confidence.

    Subclasses implement ``empty_result`` and ``_compute``; ``_compute``
    receives the filtered sample and may raise ``InsufficientDataError``.

    Args:
        config: Channel buffer configuration.
        filter_config: Configuration of the channel's AdaptiveFilter.
        buffer_size: Recent-buffer length (default ``config.recent_buffer``).
    """

    kind: VitalSignType

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        filter_config: Optional[FilterConfig] = None,
        buffer_size: Optional[int] = None,
    ) -> None:
        self.config = config or ChannelConfig()
        self.state = ChannelState(buffer_size or self.config.recent_buffer, filter_config)

    @property
    def channel_id(self) -> str:
        return self.kind.value

    def process_signal(self, value: float, timestamp: Optional[float] = None) -> Any:
        """Filter one conditioned sample and compute this channel's result."""
        value = float(value)
        if not math.isfinite(value) or self._is_dead(value):
            self.state.decay_confidence(0.8)
            return self.empty_result()

        filtered = self.state.filter.filter(value)
        self.state.push(filtered)
        try:
            result, instant = self._compute(filtered)
        except InsufficientDataError as exc:
            logger.debug("%s channel: %s", self.channel_id, exc)
            self.state.decay_confidence(0.9)
            result, success = self.empty_result(), False
        else:
            self.state.blend_confidence(instant)
            success = True

        self.state.last_feedback = self._build_feedback(success, timestamp)
        return result

    def get_confidence(self) -> float:
        return self.state.confidence

    def get_feedback(self) -> Optional[ChannelFeedback]:
        return self.state.last_feedback

    def reset(self) -> None:
        self.state.reset()
        self._reset_features()

    @abstractmethod
    def empty_result(self) -> Any:
        """Neutral result returned when nothing can be computed."""

    @abstractmethod
    def _compute(self, filtered: float) -> tuple[Any, float]:
        """Return (typed result, instantaneous confidence)."""

    def _reset_features(self) -> None:
        """Clear subclass feature history."""

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def _is_dead(self, value: float) -> bool:
        return abs(value) < NEAR_ZERO and self.state.span() < NEAR_ZERO

    def _build_feedback(self, success: bool, timestamp: Optional[float]) -> Optional[ChannelFeedback]:
        if len(self.state.buffer) < self.config.min_feedback_samples:
            return None
        amplitude = self.state.span(self.config.recent_buffer)
        confidence = self.state.confidence
        return ChannelFeedback(
            channel_id=self.channel_id,
            signal_quality=confidence,
            suggested_adjustments=self._suggest_adjustments(amplitude, confidence),
            timestamp=timestamp if timestamp is not None else time.time() * 1000.0,
            success=success,
        )

    def _suggest_adjustments(self, amplitude: float, confidence: float) -> SuggestedAdjustments:
        """Advisory gain and smoothing changes, as multipliers of current settings."""
        adjustments = SuggestedAdjustments()
        if amplitude < 0.1 and confidence < 0.5:
            adjustments.amplification_factor = 1.2
        elif amplitude > 5.0:
            adjustments.amplification_factor = 0.9

        if confidence < 0.4:
            adjustments.filter_strength = 1.2
        elif confidence > 0.8 and amplitude < 0.1:
            adjustments.filter_strength = 0.9
        return adjustments
