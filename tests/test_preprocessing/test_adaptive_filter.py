"""Unit tests for the adaptive Kalman filter."""

import numpy as np
import pytest

from config.settings import FilterConfig
from src.acceleration.backends import EnhancementBackend, NumericBackend
from src.preprocessing.adaptive_filter import AdaptiveFilter


class _BrokenBackend(EnhancementBackend):
    name = "broken"

    def enhance(self, buffer, context=None):
        raise RuntimeError("device lost")


class _RecordingBackend(NumericBackend):
    name = "recording"

    def __init__(self, config=None) -> None:
        super().__init__(config)
        self.sizes: list[int] = []

    def enhance(self, buffer, context=None):
        self.sizes.append(len(buffer))
        return super().enhance(buffer, context)


class TestConvergence:

    @pytest.mark.parametrize("initial", [0.0, -100.0, 50.0])
    @pytest.mark.parametrize("value", [0.5, 10.0])
    def test_constant_input_converges(self, initial: float, value: float) -> None:
        """Output ends within 1% of a constant input regardless of the start."""
        filt = AdaptiveFilter(initial_estimate=initial)
        out = [filt.filter(value) for _ in range(60)]
        assert out[-1] == pytest.approx(value, rel=0.01)

    def test_no_overshoot_on_step(self) -> None:
        filt = AdaptiveFilter()
        out = np.array([filt.filter(1.0) for _ in range(30)])
        assert np.all(out <= 1.0 + 1e-12)
        assert np.all(np.diff(out) >= -1e-12)

    def test_smooths_noise(self) -> None:
        rng = np.random.default_rng(1)
        noisy = 1.0 + rng.normal(0, 0.2, 300)
        filt = AdaptiveFilter(initial_estimate=1.0)
        out = np.array([filt.filter(v) for v in noisy])
        assert np.std(out[50:]) < np.std(noisy[50:])


class TestNoiseAdaptation:

    def test_outlier_widens_measurement_noise(self) -> None:
        filt = AdaptiveFilter(initial_estimate=1.0)
        before = filt.measurement_noise
        filt.filter(5.0)
        assert filt.measurement_noise == pytest.approx(2 * before)

    def test_agreement_narrows_measurement_noise(self) -> None:
        filt = AdaptiveFilter(initial_estimate=1.0)
        filt.filter(1.0)
        assert filt.measurement_noise < FilterConfig().measurement_noise

    def test_noise_terms_stay_clamped(self) -> None:
        cfg = FilterConfig()
        filt = AdaptiveFilter(cfg)
        rng = np.random.default_rng(2)
        for v in rng.normal(0, 50, 500):
            filt.filter(v)
            assert cfg.min_process_noise <= filt.process_noise <= cfg.max_process_noise
            assert cfg.min_measurement_noise <= filt.measurement_noise <= cfg.max_measurement_noise

    def test_fixed_mode_keeps_noise_terms(self) -> None:
        cfg = FilterConfig(adaptive=False)
        filt = AdaptiveFilter(cfg)
        for v in (0.0, 10.0, -10.0, 3.0):
            filt.filter(v)
        assert filt.process_noise == cfg.process_noise
        assert filt.measurement_noise == cfg.measurement_noise

    def test_reset_restores_initial_state(self) -> None:
        filt = AdaptiveFilter(initial_estimate=2.0)
        for v in (10.0, 20.0, 30.0):
            filt.filter(v)
        filt.reset()
        assert filt.estimate == 2.0
        assert filt.error_covariance == FilterConfig().initial_covariance
        assert filt.measurement_noise == FilterConfig().measurement_noise


class TestBatchMode:

    def test_scalar_batch_matches_loop(self) -> None:
        values = np.linspace(0.0, 1.0, 30)
        batch = AdaptiveFilter().filter_batch(values)
        loop_filter = AdaptiveFilter()
        loop = np.array([loop_filter.filter(v) for v in values])
        np.testing.assert_allclose(batch, loop)

    def test_backend_batch_updates_state(self) -> None:
        cfg = FilterConfig(adaptive=False)
        filt = AdaptiveFilter(cfg, backend=NumericBackend(cfg))
        values = np.full(30, 2.0)
        out = filt.filter_batch(values)
        assert out.shape == values.shape
        assert filt.estimate == pytest.approx(out[-1])
        assert filt.error_covariance < cfg.initial_covariance

    def test_backend_batch_matches_fixed_recurrence(self) -> None:
        """With frozen noise terms the vectorised sweep equals the scalar loop."""
        cfg = FilterConfig(adaptive=False)
        values = np.sin(np.linspace(0, 6, 40))
        batch = AdaptiveFilter(cfg, backend=NumericBackend(cfg)).filter_batch(values)
        loop_filter = AdaptiveFilter(cfg)
        loop = np.array([loop_filter.filter(v) for v in values])
        np.testing.assert_allclose(batch, loop, atol=1e-9)

    def test_failing_backend_falls_back_to_scalar(self) -> None:
        values = np.linspace(0.0, 1.0, 20)
        filt = AdaptiveFilter(backend=_BrokenBackend())
        out = filt.filter_batch(values)
        reference = AdaptiveFilter().filter_batch(values)
        np.testing.assert_allclose(out, reference)
        assert filt.fallback_count == 1

    def test_empty_batch(self) -> None:
        assert AdaptiveFilter().filter_batch(np.array([])).size == 0

    def test_backend_called_per_batch_size_chunk(self) -> None:
        cfg = FilterConfig(adaptive=False, batch_size=30)
        backend = _RecordingBackend(cfg)
        out = AdaptiveFilter(cfg, backend=backend).filter_batch(np.linspace(0.0, 1.0, 70))
        assert backend.sizes == [30, 30, 10]
        assert out.shape == (70,)

    def test_chunked_batch_matches_fixed_recurrence(self) -> None:
        cfg = FilterConfig(adaptive=False, batch_size=7)
        values = np.sin(np.linspace(0, 6, 40))
        batch = AdaptiveFilter(cfg, backend=NumericBackend(cfg)).filter_batch(values)
        loop_filter = AdaptiveFilter(cfg)
        loop = np.array([loop_filter.filter(v) for v in values])
        np.testing.assert_allclose(batch, loop, atol=1e-9)

    def test_each_failing_chunk_falls_back(self) -> None:
        cfg = FilterConfig(batch_size=10)
        filt = AdaptiveFilter(cfg, backend=_BrokenBackend())
        filt.filter_batch(np.linspace(0.0, 1.0, 25))
        assert filt.fallback_count == 3
