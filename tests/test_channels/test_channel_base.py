"""Unit tests for the shared channel contract and state."""

import math

import numpy as np
import pytest

from src.channels import SpO2Channel
from src.channels.base import ChannelState, stability
from src.channels.cardiac import CardiacChannel, DEFAULT_BAND
from src.ppg_system.schemas import SpO2Result


class TestChannelState:

    def setup_method(self) -> None:
        self.state = ChannelState(buffer_size=5)

    def test_buffer_is_bounded(self) -> None:
        for v in range(8):
            self.state.push(float(v))
        assert list(self.state.buffer) == [3.0, 4.0, 5.0, 6.0, 7.0]
        assert self.state.samples_seen == 8
        assert self.state.span() == 4.0
        np.testing.assert_array_equal(self.state.window(2), [6.0, 7.0])

    def test_blend_confidence_is_clamped(self) -> None:
        for _ in range(50):
            self.state.blend_confidence(1.0)
        assert self.state.confidence == pytest.approx(0.95)
        for _ in range(50):
            self.state.blend_confidence(0.0)
        assert self.state.confidence == pytest.approx(0.1)

    def test_blend_weights(self) -> None:
        assert self.state.blend_confidence(1.0) == pytest.approx(0.8 * 0.5 + 0.2)

    def test_decay(self) -> None:
        assert self.state.decay_confidence(0.8) == pytest.approx(0.4)

    def test_reset(self) -> None:
        self.state.push(1.0)
        self.state.decay_confidence(0.5)
        self.state.reset()
        assert len(self.state.buffer) == 0
        assert self.state.confidence == 0.5
        assert self.state.samples_seen == 0


class TestStability:

    def test_constant_history_is_fully_stable(self) -> None:
        assert stability([98.0] * 10, scale=2.0) == 1.0

    def test_wide_spread_is_unstable(self) -> None:
        assert stability([90.0, 100.0] * 5, scale=2.0) == 0.0

    def test_short_history(self) -> None:
        assert stability([98.0], scale=2.0) == 0.5


class TestInvalidInput:

    def test_dead_input_returns_neutral_result(self) -> None:
        channel = SpO2Channel()
        assert channel.process_signal(0.0) == SpO2Result()
        assert channel.get_confidence() == pytest.approx(0.4)
        assert len(channel.state.buffer) == 0

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_input(self, value: float) -> None:
        channel = SpO2Channel()
        assert channel.process_signal(value).spo2 == 0.0
        assert channel.get_confidence() < 0.5

    def test_zero_after_live_signal_is_processed(self) -> None:
        """A zero inside a live stream is data, not a dead sensor."""
        channel = SpO2Channel()
        for _ in range(5):
            channel.process_signal(0.5)
        assert channel.process_signal(0.0).spo2 > 0


class TestFeedback:

    def test_no_feedback_before_enough_samples(self) -> None:
        channel = SpO2Channel()
        for _ in range(9):
            channel.process_signal(0.5)
        assert channel.get_feedback() is None
        channel.process_signal(0.5)
        assert channel.get_feedback() is not None

    def test_weak_failing_channel_asks_for_gain_and_band(self) -> None:
        channel = CardiacChannel()
        for i in range(12):
            channel.process_signal(0.5, timestamp=i * 33.3)
        feedback = channel.get_feedback()
        assert feedback.channel_id == "cardiac"
        assert feedback.success is False
        adjustments = feedback.suggested_adjustments
        assert adjustments.amplification_factor == 1.2
        assert adjustments.filter_strength == 1.2
        assert (adjustments.frequency_range_min, adjustments.frequency_range_max) == DEFAULT_BAND

    def test_large_amplitude_asks_for_less_gain(self) -> None:
        channel = SpO2Channel()
        for i in range(20):
            channel.process_signal(10.0 if i % 2 else -10.0)
        assert channel.get_feedback().suggested_adjustments.amplification_factor == 0.9

    def test_reset_clears_feedback(self) -> None:
        channel = SpO2Channel()
        for _ in range(12):
            channel.process_signal(0.5)
        channel.reset()
        assert channel.get_feedback() is None
        assert channel.get_confidence() == 0.5
