"""Tests for the PPG simulator facade."""

import numpy as np
import pytest

from config.settings import FilterConfig
from src.channels.cardiac import CardiacChannel
from src.simulator import PPGSimulator, pulse_shape, samples_from_values


def _dominant_frequency(signal: np.ndarray, fs: float) -> float:
    spectrum = np.abs(np.fft.rfft(signal - signal.mean()))
    freqs = np.fft.rfftfreq(len(signal), d=1.0 / fs)
    return float(freqs[np.argmax(spectrum)])


class TestPulseShape:
    def test_systolic_peak_position(self):
        phase = np.linspace(0, 1, 1000, endpoint=False)
        wave = pulse_shape(phase)
        assert phase[np.argmax(wave)] == pytest.approx(0.2, abs=0.01)

    def test_centered_range(self):
        wave = pulse_shape(np.linspace(0, 1, 1000, endpoint=False))
        assert wave.max() == pytest.approx(0.5, abs=0.01)
        assert wave.min() == pytest.approx(-0.5, abs=0.01)


class TestGenerateSignal:
    def test_length_and_dtype(self):
        sim = PPGSimulator(seed=0)
        signal = sim.generate_signal()
        assert signal.shape == (300,)
        assert signal.dtype == np.float64

    def test_custom_duration(self):
        sim = PPGSimulator(fs=25.0, duration=4.0, seed=0)
        assert len(sim.generate_signal()) == 100

    def test_seed_reproducible(self):
        a = PPGSimulator(seed=3).generate_signal(noise_level="medium")
        b = PPGSimulator(seed=3).generate_signal(noise_level="medium")
        np.testing.assert_array_equal(a, b)

    @pytest.mark.parametrize("hr", [60.0, 72.0, 90.0])
    def test_pulse_rate_matches_hr(self, hr):
        signal = PPGSimulator(seed=0).generate_signal(hr=hr)
        assert _dominant_frequency(signal, 30.0) == pytest.approx(hr / 60.0, abs=0.11)

    def test_pulse_waveform_repeats_every_beat(self):
        signal = PPGSimulator(seed=0).generate_signal(hr=60.0)
        np.testing.assert_allclose(signal[270:300], signal[0:30], atol=1e-9)
        assert np.ptp(signal[270:300]) == pytest.approx(1.0, abs=0.02)

    def test_offset_and_amplitude(self):
        signal = PPGSimulator(seed=0).generate_signal(waveform="sine", amplitude=2.0, offset=0.5)
        assert np.ptp(signal) == pytest.approx(2.0, abs=0.05)
        assert signal.mean() == pytest.approx(0.5, abs=0.05)

    def test_irregularity_changes_timing(self):
        regular = PPGSimulator(seed=5).generate_signal(waveform="sine")
        irregular = PPGSimulator(seed=5).generate_signal(waveform="sine", irregularity=0.2)
        assert irregular.shape == regular.shape
        assert not np.allclose(regular, irregular)

    def test_unknown_waveform(self):
        with pytest.raises(ValueError):
            PPGSimulator(seed=0).generate_signal(waveform="square")

    def test_sine_stream_reads_heart_rate(self):
        sim = PPGSimulator(seed=0)
        samples = sim.generate_samples(hr=72.0, waveform="sine", amplitude=2.0)
        channel = CardiacChannel(filter_config=FilterConfig(adaptive=False))
        for s in samples:
            result = channel.process_signal(s.value, s.timestamp)
        assert result.heart_rate == pytest.approx(72.0, abs=5.0)


class TestSamples:
    def test_generate_samples_metadata(self):
        samples = PPGSimulator(seed=0).generate_samples(quality=65.0, start_ms=500.0)
        assert len(samples) == 300
        assert samples[0].timestamp == 500.0
        assert samples[1].timestamp - samples[0].timestamp == pytest.approx(1000.0 / 30)
        assert all(s.quality == 65.0 and s.finger_detected for s in samples)

    def test_quality_override(self):
        samples = samples_from_values(np.zeros(5), 30.0, quality=80.0, quality_override={2: 10.0})
        assert [s.quality for s in samples] == [80.0, 80.0, 10.0, 80.0, 80.0]

    def test_finger_flag(self):
        samples = samples_from_values(np.zeros(3), 30.0, finger_detected=False)
        assert not any(s.finger_detected for s in samples)
