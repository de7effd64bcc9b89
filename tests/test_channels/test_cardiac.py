"""Unit tests for the cardiac channel."""

import numpy as np
import pytest

from config.settings import FilterConfig
from src.channels.cardiac import CardiacChannel
from src.ppg_system.schemas import CardiacResult, RRIntervalData


def _run(channel: CardiacChannel, values) -> list[CardiacResult]:
    return [channel.process_signal(v, timestamp=i * 1000.0 / 30) for i, v in enumerate(values)]


class TestPeriodicPulse:

    def test_heart_rate_from_sine(self, sine_signal) -> None:
        """1.2 Hz pulse for 10 s reads 72 bpm with a regular rhythm."""
        channel = CardiacChannel(filter_config=FilterConfig(adaptive=False))
        result = _run(channel, sine_signal)[-1]
        assert result.heart_rate == pytest.approx(72.0, abs=5.0)
        assert result.rhythm_regularity > 0.8
        assert not result.arrhythmia_detected
        assert channel.get_confidence() > 0.5

    def test_reset_forgets_rhythm(self, sine_signal) -> None:
        channel = CardiacChannel(filter_config=FilterConfig(adaptive=False))
        _run(channel, sine_signal)
        channel.reset()
        assert channel.detector.get_intervals() == []
        assert channel.process_signal(0.5) == CardiacResult()


class TestNoPulse:

    def test_flatline_gives_zero_rate(self, flatline_samples) -> None:
        channel = CardiacChannel()
        results = _run(channel, [s.value for s in flatline_samples])
        assert all(r.heart_rate == 0 for r in results)
        assert channel.get_confidence() < 0.5


class TestSeededIntervals:

    def test_regular_seed_drives_rate(self) -> None:
        channel = CardiacChannel()
        channel.seed_intervals(RRIntervalData([800.0] * 5))
        result = _run(channel, [0.5] * 20)[-1]
        assert result.heart_rate == pytest.approx(75.0)
        assert result.rhythm_regularity == pytest.approx(1.0)
        assert not result.arrhythmia_detected

    def test_irregular_seed_flags_arrhythmia(self) -> None:
        channel = CardiacChannel()
        channel.seed_intervals(RRIntervalData([600.0, 1100.0, 650.0, 1200.0, 700.0]))
        result = _run(channel, [0.5] * 20)[-1]
        assert result.arrhythmia_detected
        assert result.rhythm_regularity < 0.7

    def test_rmssd_from_seeded_rhythm(self) -> None:
        channel = CardiacChannel()
        channel.seed_intervals(RRIntervalData([800.0, 850.0, 800.0, 850.0, 800.0]))
        result = _run(channel, [0.5] * 20)[-1]
        assert result.rmssd == pytest.approx(50.0)
        assert result.to_dict()["rmssd"] == 50.0

    def test_rmssd_zero_for_constant_rhythm(self) -> None:
        channel = CardiacChannel()
        channel.seed_intervals(RRIntervalData([800.0] * 5))
        assert _run(channel, [0.5] * 20)[-1].rmssd == 0.0

    def test_short_seed_ignored(self) -> None:
        channel = CardiacChannel()
        channel.seed_intervals(RRIntervalData([800.0, 800.0]))
        assert _run(channel, [0.5] * 20)[-1].heart_rate == 0

    def test_seed_rhythm_with_detected_rate(self, sine_signal) -> None:
        """Detected beats set the rate; the seeded intervals set the rhythm."""
        channel = CardiacChannel(filter_config=FilterConfig(adaptive=False))
        channel.seed_intervals(RRIntervalData([600.0, 1100.0, 650.0, 1200.0, 700.0]))
        result = _run(channel, sine_signal)[-1]
        assert result.heart_rate == pytest.approx(72.0, abs=5.0)
        assert result.arrhythmia_detected


class TestRangeInvariant:

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_rate_in_bounds_or_zero(self, seed: int) -> None:
        rng = np.random.default_rng(seed)
        values = np.cumsum(rng.normal(0, 0.3, 400))
        for result in _run(CardiacChannel(), values):
            assert result.heart_rate == 0 or 40 <= result.heart_rate <= 180

    def test_fast_pulse_rate_in_bounds(self) -> None:
        t = np.arange(300) / 30.0
        values = np.sin(2 * np.pi * 3.5 * t)
        for result in _run(CardiacChannel(), values):
            assert result.heart_rate == 0 or 40 <= result.heart_rate <= 180
