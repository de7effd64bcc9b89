"""Signal distribution: fan-out of one PPG stream to independent channels.

Each registered channel has its own ``ChannelConditioner`` (gain, smoothing
strength, optional band-pass). Channel feedback only ever changes that
channel's conditioner, and only after every channel has processed the
current cycle, so each cycle sees a consistent set of settings.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Optional

import numpy as np
from scipy.signal import sosfilt, sosfilt_zi

from config.settings import DistributorConfig
from src.channels.base import VitalChannel
from src.ppg_system.exceptions import ConfigurationError, LowSignalQualityError
from src.ppg_system.schemas import (
    ChannelFeedback,
    DistributionResult,
    RawSample,
    SuggestedAdjustments,
    VitalSignType,
)
from src.preprocessing.utils import design_bandpass

logger = logging.getLogger(__name__)


class ChannelConditioner:
    """Per-channel input conditioning owned by the distributor.

    The value is optionally band-passed (causal, streaming ``sosfilt``),
    scaled by ``gain``, then exponentially smoothed with
    ``alpha = 1 / (filter_strength * noise_reduction)``. Gain is applied
    after the band-pass so gain changes never ring the filter.
    """

    def __init__(self, config: DistributorConfig, sample_rate: float) -> None:
        self.config = config
        self.sample_rate = sample_rate
        self.reset()

    def reset(self) -> None:
        self.gain = 1.0
        self.filter_strength = self.config.min_filter_strength
        self.band: Optional[tuple[float, float]] = None
        self._sos: Optional[np.ndarray] = None
        self._zi: Optional[np.ndarray] = None
        self._smoothed: Optional[float] = None

    def condition(self, value: float, noise_reduction: float = 1.0) -> float:
        x = value
        if self._sos is not None:
            if self._zi is None:
                self._zi = sosfilt_zi(self._sos) * x
            y, self._zi = sosfilt(self._sos, [x], zi=self._zi)
            x = float(y[0])
        x *= self.gain

        alpha = float(np.clip(1.0 / (self.filter_strength * max(noise_reduction, 1e-6)), 0.05, 1.0))
        if self._smoothed is None:
            self._smoothed = x
        else:
            self._smoothed += alpha * (x - self._smoothed)
        return self._smoothed

    def apply(self, adjustments: SuggestedAdjustments) -> bool:
        """Fold suggested multipliers into the conditioning state."""
        cfg = self.config
        changed = False
        if adjustments.amplification_factor is not None:
            gain = float(np.clip(self.gain * adjustments.amplification_factor, cfg.min_gain, cfg.max_gain))
            changed |= gain != self.gain
            self.gain = gain
        if adjustments.filter_strength is not None:
            strength = float(np.clip(
                self.filter_strength * adjustments.filter_strength,
                cfg.min_filter_strength,
                cfg.max_filter_strength,
            ))
            changed |= strength != self.filter_strength
            self.filter_strength = strength
        low, high = adjustments.frequency_range_min, adjustments.frequency_range_max
        if low is not None and high is not None and (low, high) != self.band:
            self.set_band(low, high)
            changed = True
        return changed

    def set_band(self, low: float, high: float) -> None:
        self.band = (low, high)
        self._sos = design_bandpass(self.sample_rate, low, high, self.config.bandpass_order)
        self._zi = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "gain": round(self.gain, 4),
            "filter_strength": round(self.filter_strength, 4),
            "band": list(self.band) if self.band else None,
        }


class SignalDistributor:
    """Fans each raw sample out to every registered channel.

    Args:
        config: Distributor configuration.
        sample_rate: Stream sampling rate in Hz (for band-pass design).
        channels: Channels to register immediately.
    """

    def __init__(
        self,
        config: Optional[DistributorConfig] = None,
        sample_rate: float = 30.0,
        channels: Iterable[VitalChannel] = (),
    ) -> None:
        self.config = config or DistributorConfig()
        self.sample_rate = sample_rate
        self._channels: dict[VitalSignType, VitalChannel] = {}
        self._conditioners: dict[VitalSignType, ChannelConditioner] = {}
        self._last: Optional[DistributionResult] = None
        self.cycles = 0
        self.rejected = 0
        for channel in channels:
            self.register_channel(channel)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_channel(self, channel: VitalChannel) -> None:
        """Add a channel; one channel per vital-sign kind.

        Raises:
            ConfigurationError: a channel of the same kind is registered.
        """
        if channel.kind in self._channels:
            raise ConfigurationError(f"Channel already registered: {channel.kind.value}")
        self._channels[channel.kind] = channel
        self._conditioners[channel.kind] = ChannelConditioner(self.config, self.sample_rate)
        logger.info("Registered %s channel", channel.kind.value)

    def unregister_channel(self, kind: VitalSignType) -> None:
        self._channels.pop(kind, None)
        self._conditioners.pop(kind, None)

    @property
    def channels(self) -> dict[VitalSignType, VitalChannel]:
        return dict(self._channels)

    def get_channel(self, kind: VitalSignType) -> Optional[VitalChannel]:
        return self._channels.get(kind)

    def get_conditioner(self, kind: VitalSignType) -> Optional[ChannelConditioner]:
        return self._conditioners.get(kind)

    @property
    def last_result(self) -> Optional[DistributionResult]:
        return self._last

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def check_quality(self, sample: RawSample) -> None:
        """Raise LowSignalQualityError when the sample fails the quality gate."""
        if not sample.finger_detected:
            raise LowSignalQualityError("No finger detected")
        if sample.quality < self.config.quality_threshold:
            raise LowSignalQualityError(
                f"Quality {sample.quality:.1f} below threshold {self.config.quality_threshold:.1f}"
            )

    def passes_quality_gate(self, sample: RawSample) -> bool:
        try:
            self.check_quality(sample)
        except LowSignalQualityError:
            return False
        return True

    def process_signal(self, sample: RawSample, noise_reduction: float = 1.0) -> DistributionResult:
        """Run one distribution cycle.

        Samples failing the quality gate are not processed; the last good
        snapshot (or an empty one) is returned with ``stale=True``.
        """
        try:
            self.check_quality(sample)
        except LowSignalQualityError as exc:
            self.rejected += 1
            logger.debug("Sample at %.0f ms rejected: %s", sample.timestamp, exc)
            if self._last is not None:
                return replace(self._last, stale=True)
            return self._empty(sample.timestamp)

        results: dict[VitalSignType, Any] = {}
        feedback: dict[VitalSignType, ChannelFeedback] = {}
        confidences: dict[VitalSignType, float] = {}
        for kind, channel in self._channels.items():
            value = self._conditioners[kind].condition(sample.value, noise_reduction)
            try:
                results[kind] = channel.process_signal(value, sample.timestamp)
            except Exception:
                logger.exception("%s channel failed; using neutral result", kind.value)
                results[kind] = channel.empty_result()
            confidences[kind] = channel.get_confidence()
            channel_feedback = channel.get_feedback()
            if channel_feedback is not None:
                feedback[kind] = channel_feedback

        # conditioning changes take effect from the next cycle
        for kind, channel_feedback in feedback.items():
            self.apply_feedback(kind, channel_feedback)

        self.cycles += 1
        self._last = DistributionResult(
            results=results,
            feedback=feedback,
            confidences=confidences,
            diagnostics=self.get_diagnostics(),
            timestamp=sample.timestamp,
        )
        return self._last

    def apply_feedback(self, kind: VitalSignType, feedback: ChannelFeedback) -> bool:
        """Apply one channel's suggestions to that channel's conditioner only."""
        conditioner = self._conditioners.get(kind)
        if conditioner is None or feedback.suggested_adjustments.is_empty:
            return False
        changed = conditioner.apply(feedback.suggested_adjustments)
        if changed:
            logger.debug(
                "%s conditioning -> %s", kind.value, conditioner.to_dict()
            )
        return changed

    def reset(self) -> None:
        for channel in self._channels.values():
            channel.reset()
        for conditioner in self._conditioners.values():
            conditioner.reset()
        self._last = None
        self.cycles = 0
        self.rejected = 0

    def get_diagnostics(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "rejected": self.rejected,
            "conditioners": {
                kind.value: conditioner.to_dict()
                for kind, conditioner in self._conditioners.items()
            },
        }

    def _empty(self, timestamp: float) -> DistributionResult:
        return DistributionResult(
            results={kind: channel.empty_result() for kind, channel in self._channels.items()},
            feedback={},
            confidences={kind: 0.0 for kind in self._channels},
            diagnostics=self.get_diagnostics(),
            timestamp=timestamp,
            stale=True,
        )
