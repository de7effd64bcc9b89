"""Integration tests for VitalSignsProcessor."""

import threading

import numpy as np
import pytest

from config.settings import EnvironmentConfig, Settings
from src.acceleration.backends import (
    EnhancementBackend,
    FallbackBackend,
    NumericBackend,
    OffloadedBackend,
)
from src.pipeline.processor import VitalSignsProcessor, quality_trend
from src.ppg_system.exceptions import AcceleratorUnavailableError
from src.ppg_system.schemas import CalibrationReference, RawSample, RRIntervalData


class _BlockingBackend(EnhancementBackend):
    name = "blocking"

    def __init__(self, release: threading.Event) -> None:
        self.release = release

    def enhance(self, buffer, context=None):
        self.release.wait(timeout=10.0)
        return NumericBackend().enhance(buffer, context)


def _sample(i: int, value: float = 0.5, quality: float = 80.0, finger: bool = True) -> RawSample:
    return RawSample(value=value, timestamp=i * 1000.0 / 30, quality=quality, finger_detected=finger)


def _run(processor: VitalSignsProcessor, samples, rr_data=None):
    return [processor.process_signal(s, rr_data) for s in samples]


def _references():
    return [
        CalibrationReference(spo2=97.0, systolic=120.0, diastolic=80.0, timestamp=1000.0),
        CalibrationReference(spo2=97.0, systolic=120.0, diastolic=80.0, timestamp=2000.0),
    ]


class TestLifecycle:

    def test_stopped_processor_returns_empty_result(self, settings) -> None:
        processor = VitalSignsProcessor(settings)
        result = processor.process_signal(_sample(0))
        assert result.heart_rate == 0
        assert result.spo2 == 0
        assert result.status == "error"
        assert not processor.is_running

    def test_start_stop(self, settings) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        assert processor.is_running
        assert processor.process_signal(_sample(0)).spo2 > 0
        processor.stop()
        assert not processor.is_running
        assert processor.process_signal(_sample(1)).spo2 == 0

    def test_reset_keeps_calibration(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        for reference in _references():
            processor.add_calibration_reference(reference)
        _run(processor, flatline_samples[:20])
        processor.reset()
        assert processor.last_result is None
        assert processor.distributor.cycles == 0
        assert processor.calibration.is_system_calibrated()
        assert processor.get_diagnostics()["processing"]["samples"] == 0


class TestFlatline:

    def test_flatline_session(self, settings, flatline_samples) -> None:
        """A constant signal yields no pulse but consistent resting values."""
        processor = VitalSignsProcessor(settings)
        processor.start()
        result = _run(processor, flatline_samples)[-1]
        assert result.heart_rate == 0
        assert result.arrhythmia_status == "--"
        assert result.correlation_validated
        assert result.inconsistencies == ()
        assert 90 <= result.spo2 <= 100
        assert 80 <= result.systolic <= 200
        assert 40 <= result.diastolic <= 120
        assert result.systolic - result.diastolic >= 20
        assert 70 <= result.glucose <= 300
        assert 100 <= result.total_cholesterol <= 300
        assert 50 <= result.triglycerides <= 300
        assert result.status == "needs_calibration"
        assert not result.stale
        assert 0.0 <= result.overall_precision <= 1.0

    def test_results_are_integers(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        result = _run(processor, flatline_samples)[-1]
        for value in (result.spo2, result.systolic, result.diastolic, result.glucose):
            assert isinstance(value, int)


class TestPulseStream:

    def test_rate_in_bounds_or_zero(self, settings, sine_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        for result in _run(processor, sine_samples):
            assert result.heart_rate == 0 or 40 <= result.heart_rate <= 180
            if result.systolic and result.diastolic:
                assert result.systolic - result.diastolic >= 20

    def test_random_stream_keeps_ranges(self, settings) -> None:
        rng = np.random.default_rng(7)
        values = np.cumsum(rng.normal(0, 0.5, 300))
        processor = VitalSignsProcessor(settings)
        processor.start()
        for i, v in enumerate(values):
            result = processor.process_signal(_sample(i, value=float(v)))
            assert result.spo2 == 0 or 90 <= result.spo2 <= 100
            assert result.glucose == 0 or 70 <= result.glucose <= 300


class TestStaleResults:

    def test_rejected_sample_replays_last_fresh(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        fresh = _run(processor, flatline_samples[:10])[-1]
        stale = processor.process_signal(_sample(20, quality=5.0))
        assert stale.stale
        assert not stale.is_valid
        assert stale.spo2 == fresh.spo2
        assert stale.age_ms == pytest.approx(_sample(20).timestamp - fresh.timestamp)
        assert stale.age_ms > 0

    def test_rejected_before_any_good_sample(self, settings) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        result = processor.process_signal(_sample(0, finger=False))
        assert result.stale
        assert result.spo2 == 0
        assert result.heart_rate == 0


class TestCalibrationStatus:

    def test_status_leaves_needs_calibration(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        before = _run(processor, flatline_samples[:10])[-1]
        assert before.status == "needs_calibration"
        assert not before.is_calibrated

        for reference in _references():
            assert processor.add_calibration_reference(reference)
        after = processor.process_signal(_sample(10))
        assert after.is_calibrated
        assert after.status in ("valid", "calibrating", "error")


class TestExternalIntervals:

    def test_irregular_intervals_flag_arrhythmia(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        rr = RRIntervalData([600.0, 1100.0, 650.0, 1200.0, 700.0])
        result = _run(processor, flatline_samples[:20], rr_data=rr)[-1]
        assert result.heart_rate > 0
        assert result.arrhythmia_status == "ARRHYTHMIA DETECTED"
        assert result.arrhythmia_count == 1
        assert result.rhythm_regularity < 0.7
        assert result.rmssd == pytest.approx(501.25, abs=0.01)
        assert result.to_dict()["arrhythmia"]["rmssd"] == pytest.approx(501.2, abs=0.1)


class TestEnvironment:

    def test_conditions_lower_confidence(self, settings) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        processor.update_environmental_conditions(light_level=10.0)
        result = processor.process_signal(_sample(0))
        assert result.environmental_confidence == pytest.approx(0.8)

    def test_auto_estimation(self, flatline_samples) -> None:
        settings = Settings(environment=EnvironmentConfig(auto_estimate=True))
        processor = VitalSignsProcessor(settings)
        processor.start()
        _run(processor, flatline_samples[:30])
        environment = processor.get_diagnostics()["environment"]
        assert environment["light_level"] == 10.0
        assert environment["amplification"] == pytest.approx(1.4)

    def test_auto_estimation_keeps_supplied_light(self, flatline_samples) -> None:
        settings = Settings(environment=EnvironmentConfig(auto_estimate=True))
        processor = VitalSignsProcessor(settings)
        processor.start()
        processor.update_environmental_conditions(light_level=50.0)
        _run(processor, flatline_samples[:30])
        environment = processor.get_diagnostics()["environment"]
        assert environment["light_level"] == 50.0
        assert environment["amplification"] == pytest.approx(1.0)


class TestAcceleration:

    def test_timeout_is_served_by_fallback(self, settings, flatline_samples) -> None:
        release = threading.Event()
        backend = FallbackBackend(
            OffloadedBackend(_BlockingBackend(release), timeout_s=0.02), NumericBackend()
        )
        processor = VitalSignsProcessor(settings, backend=backend)
        processor.start()
        try:
            results = _run(processor, flatline_samples[:5])
            assert all(r.spo2 > 0 for r in results)
            enhancement = processor.get_diagnostics()["enhancement"]
            assert enhancement["backend"] == "fallback"
            assert enhancement["fallback_count"] == 5
        finally:
            release.set()
            processor.stop()
            backend.shutdown()

    def test_stop_leaves_injected_backend_open(self, settings, flatline_samples) -> None:
        backend = OffloadedBackend(timeout_s=1.0)
        try:
            processor = VitalSignsProcessor(settings, backend=backend)
            processor.start()
            _run(processor, flatline_samples[:3])
            processor.stop()
            assert backend.enhance(np.ones(10)).values.shape == (10,)
        finally:
            backend.shutdown()

    def test_stop_closes_owned_backend(self, flatline_samples) -> None:
        settings = Settings()
        settings.acceleration.backend = "offloaded"
        processor = VitalSignsProcessor(settings)
        processor.start()
        owned = processor.backend
        processor.stop()
        with pytest.raises(AcceleratorUnavailableError):
            owned.primary.enhance(np.ones(10))
        processor.start()
        assert processor.backend is not owned
        assert _run(processor, flatline_samples[:3])[-1].spo2 > 0
        processor.stop()

    def test_unavailable_backend_uses_in_process_enhancement(self, settings, flatline_samples) -> None:
        backend = OffloadedBackend()
        backend.shutdown()
        processor = VitalSignsProcessor(settings, backend=backend)
        processor.start()
        result = _run(processor, flatline_samples[:5])[-1]
        assert result.spo2 > 0
        assert result.enhancement_confidence == pytest.approx(1.0)

    def test_disabled_acceleration(self, flatline_samples) -> None:
        settings = Settings()
        settings.acceleration.enabled = False
        processor = VitalSignsProcessor(settings)
        processor.start()
        _run(processor, flatline_samples[:5])
        assert processor.get_diagnostics()["enhancement"]["backend"] is None


class TestDiagnostics:

    def test_diagnostic_sections(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        _run(processor, flatline_samples[:10])
        diagnostics = processor.get_diagnostics()
        assert set(diagnostics) == {
            "signal_quality", "calibration", "environment",
            "processing", "distributor", "enhancement",
        }
        assert diagnostics["processing"]["samples"] == 10
        assert diagnostics["signal_quality"]["average"] == pytest.approx(0.8)
        assert diagnostics["calibration"]["reference_count"] == 0

    def test_result_serializes(self, settings, flatline_samples) -> None:
        processor = VitalSignsProcessor(settings)
        processor.start()
        data = _run(processor, flatline_samples[:10])[-1].to_dict()
        assert data["blood_pressure"].count("/") == 1
        assert data["status"] == "needs_calibration"


class TestQualityTrend:

    def test_short_history_is_stable(self) -> None:
        assert quality_trend([0.1, 0.9]) == "stable"

    def test_improving(self) -> None:
        assert quality_trend([0.2, 0.2, 0.2, 0.8, 0.8, 0.8]) == "improving"

    def test_deteriorating(self) -> None:
        assert quality_trend([0.8, 0.8, 0.8, 0.2, 0.2, 0.2]) == "deteriorating"

    def test_within_margin(self) -> None:
        assert quality_trend([0.5, 0.5, 0.5, 0.55, 0.55, 0.55]) == "stable"
