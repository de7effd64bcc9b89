"""Per-session vital-signs processor.

Wires the environmental adjuster, the enhancement backend, the signal
distributor with its channels, the cross-validator and the calibration
manager into one sample-in / result-out pipeline. Every collaborator is an
explicit instance owned by (or injected into) the processor, so sessions
never share state.

Usage:
    processor = VitalSignsProcessor(Settings())
    processor.start()
    for sample in samples:
        result = processor.process_signal(sample)
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import replace
from typing import Any, Optional

import numpy as np

from config.settings import Settings
from src.acceleration.backends import EnhancementBackend, NumericBackend, build_backend
from src.channels import CardiacChannel, build_default_channels
from src.distribution.distributor import SignalDistributor
from src.interpretation.calibration import CalibrationManager
from src.interpretation.cross_validator import CrossValidator
from src.ppg_system.exceptions import AcceleratorUnavailableError, ProcessorStateError
from src.ppg_system.schemas import (
    AdjustmentFactors,
    BloodPressureResult,
    CalibrationReference,
    CardiacResult,
    DistributionResult,
    GlucoseResult,
    LipidsResult,
    Measurements,
    RawSample,
    RRIntervalData,
    SpO2Result,
    Vital,
    VitalSignType,
    VitalSignsResult,
)
from src.preprocessing.environment import EnvironmentalAdjuster

logger = logging.getLogger(__name__)

# contribution of each component to overall precision
PRECISION_WEIGHTS: dict[str, float] = {
    "blood_pressure": 0.3,
    "spo2": 0.2,
    "glucose": 0.1,
    "lipids": 0.1,
    "validation": 0.1,
    "signal_quality": 0.2,
}


class VitalSignsProcessor:
    """One capture session: raw PPG samples in, VitalSignsResult out.

    Args:
        settings: Application settings.
        distributor: Pre-built distributor (default: all enabled channels).
        calibration: Calibration manager.
        validator: Cross-validator.
        environment: Environmental adjuster.
        backend: Enhancement backend (default: from ``settings.acceleration``).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        distributor: Optional[SignalDistributor] = None,
        calibration: Optional[CalibrationManager] = None,
        validator: Optional[CrossValidator] = None,
        environment: Optional[EnvironmentalAdjuster] = None,
        backend: Optional[EnhancementBackend] = None,
    ) -> None:
        self.settings = settings or Settings()
        s = self.settings
        self.environment = environment or EnvironmentalAdjuster(s.environment)
        self.calibration = calibration or CalibrationManager(s.calibration)
        self.validator = validator or CrossValidator(s.validation_rules)
        self.distributor = distributor or SignalDistributor(
            s.distributor, s.channels.sample_rate, build_default_channels(s)
        )
        self._owns_backend = backend is None
        self.backend = backend
        if self.backend is None and s.acceleration.enabled:
            self.backend = build_backend(s.acceleration, s.filter)
        self._numeric = NumericBackend(s.filter)
        self._running = False
        self._backend_closed = False
        self._clear_session()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._backend_closed and self._owns_backend and self.settings.acceleration.enabled:
            self.backend = build_backend(self.settings.acceleration, self.settings.filter)
            self._backend_closed = False
        self._running = True
        logger.info("Vital-signs session started")

    def stop(self) -> None:
        """Stop processing and cancel pending requests on an owned backend.

        A backend passed in by the caller is left running; closing it is
        the caller's job.
        """
        self._running = False
        if self.backend is not None and self._owns_backend:
            self.backend.shutdown()
            self._backend_closed = True
        logger.info("Vital-signs session stopped after %d samples", self._samples)

    def reset(self) -> None:
        """Clear session state; calibration references and conditions are kept."""
        self.distributor.reset()
        self._clear_session()
        logger.info("Vital-signs session reset")

    def _clear_session(self) -> None:
        s = self.settings
        self._window: deque[float] = deque(maxlen=s.acceleration.window_size)
        self._raw_window: deque[float] = deque(
            maxlen=max(s.environment.estimation_interval, s.environment.min_estimation_samples)
        )
        self._quality: deque[float] = deque(maxlen=30)
        self._processing_ms: deque[float] = deque(maxlen=100)
        self._last_fresh: Optional[VitalSignsResult] = None
        self._last_result: Optional[VitalSignsResult] = None
        self._arrhythmia_count = 0
        self._was_arrhythmic = False
        self._enhancement_confidence = 1.0
        self._samples = 0

    # ------------------------------------------------------------------
    # Operator inputs
    # ------------------------------------------------------------------

    def add_calibration_reference(self, reference: CalibrationReference) -> bool:
        return self.calibration.add_reference_data(reference)

    def update_environmental_conditions(self, **conditions: Any) -> AdjustmentFactors:
        return self.environment.update_conditions(**conditions)

    @property
    def last_result(self) -> Optional[VitalSignsResult]:
        return self._last_result

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_signal(
        self,
        sample: RawSample,
        rr_data: Optional[RRIntervalData] = None,
    ) -> VitalSignsResult:
        """Process one raw sample into a result snapshot.

        Never raises for signal problems: rejected samples replay the last
        fresh snapshot marked stale, and processing while stopped returns
        the empty result.
        """
        try:
            self._require_running()
        except ProcessorStateError as exc:
            logger.warning("%s; returning empty result", exc)
            return VitalSignsResult.empty(sample.timestamp)

        started = time.perf_counter()
        try:
            result = self._process(sample, rr_data)
        finally:
            self._processing_ms.append((time.perf_counter() - started) * 1000.0)
        self._last_result = result
        return result

    def _require_running(self) -> None:
        if not self._running:
            raise ProcessorStateError("Processor is not running")

    def _process(self, sample: RawSample, rr_data: Optional[RRIntervalData]) -> VitalSignsResult:
        self._samples += 1
        self._quality.append(sample.quality / 100.0)
        self._maybe_estimate_environment(sample.value)

        factors = self.environment.get_adjustment_factors()
        value = self.environment.apply_signal_adjustment(sample.value)
        if self.distributor.passes_quality_gate(sample):
            value = self._enhance(value)

        cardiac = self.distributor.get_channel(VitalSignType.CARDIAC)
        if isinstance(cardiac, CardiacChannel) and rr_data is not None:
            cardiac.seed_intervals(rr_data)

        distribution = self.distributor.process_signal(
            replace(sample, value=value), noise_reduction=factors.noise_reduction
        )
        if distribution.stale:
            return self._stale_result(sample.timestamp)
        return self._fresh_result(distribution, factors, sample.timestamp)

    def _maybe_estimate_environment(self, raw_value: float) -> None:
        cfg = self.settings.environment
        if not cfg.auto_estimate:
            return
        self._raw_window.append(raw_value)
        if self._samples % cfg.estimation_interval == 0:
            self.environment.estimate_conditions(np.asarray(self._raw_window))

    def _enhance(self, value: float) -> float:
        self._window.append(value)
        if self.backend is None:
            self._enhancement_confidence = 1.0
            return value
        window = np.asarray(self._window)
        try:
            result = self.backend.enhance(window)
        except AcceleratorUnavailableError as exc:
            logger.warning("Enhancement unavailable (%s); using in-process backend", exc)
            result = self._numeric.enhance(window)
        self._enhancement_confidence = result.confidence
        return float(result.values[-1])

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------

    def _stale_result(self, timestamp: float) -> VitalSignsResult:
        if self._last_fresh is None:
            return replace(VitalSignsResult.empty(timestamp), stale=True)
        return replace(
            self._last_fresh,
            stale=True,
            age_ms=max(0.0, timestamp - self._last_fresh.timestamp),
        )

    def _fresh_result(
        self,
        distribution: DistributionResult,
        factors: AdjustmentFactors,
        timestamp: float,
    ) -> VitalSignsResult:
        results = distribution.results
        confidences = distribution.confidences
        cardiac = results.get(VitalSignType.CARDIAC, CardiacResult())
        spo2 = results.get(VitalSignType.SPO2, SpO2Result())
        bp = results.get(VitalSignType.BLOOD_PRESSURE, BloodPressureResult())
        glucose = results.get(VitalSignType.GLUCOSE, GlucoseResult())
        lipids = results.get(VitalSignType.LIPIDS, LipidsResult())

        measurements = Measurements(
            heart_rate=cardiac.heart_rate,
            spo2=spo2.spo2,
            systolic=bp.systolic,
            diastolic=bp.diastolic,
            glucose=glucose.glucose,
            cholesterol=lipids.total_cholesterol,
            triglycerides=lipids.triglycerides,
        )
        validation = self.validator.validate_measurements(measurements)
        adjusted = self.validator.apply_adjustments(measurements, validation)
        final = self._calibrate(adjusted)

        def channel_confidence(kind: VitalSignType, present: bool) -> float:
            return confidences.get(kind, 0.0) if present else 0.0

        confidence = {
            "heart_rate": channel_confidence(VitalSignType.CARDIAC, final[Vital.HEART_RATE] > 0),
            "spo2": channel_confidence(VitalSignType.SPO2, final[Vital.SPO2] > 0),
            "blood_pressure": channel_confidence(VitalSignType.BLOOD_PRESSURE, final[Vital.SYSTOLIC] > 0),
            "glucose": channel_confidence(VitalSignType.GLUCOSE, final[Vital.GLUCOSE] > 0),
            "lipids": channel_confidence(VitalSignType.LIPIDS, final[Vital.CHOLESTEROL] > 0),
        }
        signal_quality = float(np.mean(self._quality)) if self._quality else 0.0
        precision = (
            PRECISION_WEIGHTS["blood_pressure"] * bp.precision
            + PRECISION_WEIGHTS["spo2"] * confidence["spo2"]
            + PRECISION_WEIGHTS["glucose"] * confidence["glucose"]
            + PRECISION_WEIGHTS["lipids"] * confidence["lipids"]
            + PRECISION_WEIGHTS["validation"] * validation.confidence
            + PRECISION_WEIGHTS["signal_quality"] * signal_quality
        )
        overall = float(np.clip(
            precision * factors.confidence * self._enhancement_confidence, 0.0, 1.0
        ))

        result = VitalSignsResult(
            timestamp=timestamp,
            heart_rate=final[Vital.HEART_RATE],
            spo2=final[Vital.SPO2],
            systolic=final[Vital.SYSTOLIC],
            diastolic=final[Vital.DIASTOLIC],
            glucose=final[Vital.GLUCOSE],
            total_cholesterol=final[Vital.CHOLESTEROL],
            triglycerides=final[Vital.TRIGLYCERIDES],
            arrhythmia_status=self._arrhythmia_status(cardiac),
            arrhythmia_count=self._arrhythmia_count,
            rhythm_regularity=cardiac.rhythm_regularity,
            rmssd=cardiac.rmssd,
            confidence=confidence,
            blood_pressure_precision=bp.precision,
            overall_precision=overall,
            status=self._status(overall),
            is_calibrated=self.calibration.is_system_calibrated(),
            correlation_validated=validation.is_valid,
            inconsistencies=tuple(validation.inconsistencies),
            environmental_confidence=factors.confidence,
            enhancement_confidence=self._enhancement_confidence,
        )
        self._last_fresh = result
        return result

    def _calibrate(self, measurements: Measurements) -> dict[Vital, int]:
        """Calibrate, clamp and round every field; zero stays zero."""
        final: dict[Vital, int] = {}
        for vital in Vital:
            value = measurements.get(vital) or 0.0
            if value:
                value = self.validator.clamp(
                    vital, self.calibration.apply_calibration(vital, value)
                )
            final[vital] = int(round(value))

        if final[Vital.SYSTOLIC] and final[Vital.DIASTOLIC]:
            systolic, diastolic = self.validator.enforce_pressure_gap(
                final[Vital.SYSTOLIC], final[Vital.DIASTOLIC]
            )
            final[Vital.SYSTOLIC], final[Vital.DIASTOLIC] = int(systolic), int(diastolic)
        return final

    def _arrhythmia_status(self, cardiac: CardiacResult) -> str:
        if cardiac.heart_rate <= 0:
            return "--"
        if cardiac.arrhythmia_detected and not self._was_arrhythmic:
            self._arrhythmia_count += 1
            logger.info("Arrhythmia detected (event %d)", self._arrhythmia_count)
        self._was_arrhythmic = cardiac.arrhythmia_detected
        return "ARRHYTHMIA DETECTED" if cardiac.arrhythmia_detected else "NORMAL RHYTHM"

    def _status(self, overall: float) -> str:
        if not self.calibration.is_system_calibrated():
            return "needs_calibration"
        if overall < 0.3:
            return "error"
        if overall < 0.6:
            return "calibrating"
        return "valid"

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_diagnostics(self) -> dict[str, Any]:
        quality = list(self._quality)
        factors = self.environment.get_adjustment_factors()
        conditions = self.environment.get_current_conditions()
        timings = list(self._processing_ms)
        return {
            "signal_quality": {
                "last": quality[-1] if quality else 0.0,
                "average": float(np.mean(quality)) if quality else 0.0,
                "trend": quality_trend(quality),
            },
            "calibration": {
                "is_calibrated": self.calibration.is_system_calibrated(),
                "confidence": self.calibration.get_calibration_confidence(),
                "reference_count": self.calibration.get_reference_count(),
                "last_updated": self.calibration.get_last_calibration_time(),
            },
            "environment": {
                "light_level": conditions.light_level,
                "motion_level": conditions.motion_level,
                "amplification": factors.signal_amplification,
                "confidence": factors.confidence,
            },
            "processing": {
                "samples": self._samples,
                "last_ms": timings[-1] if timings else 0.0,
                "average_ms": float(np.mean(timings)) if timings else 0.0,
                "arrhythmia_events": self._arrhythmia_count,
            },
            "distributor": self.distributor.get_diagnostics(),
            "enhancement": {
                "backend": self.backend.name if self.backend is not None else None,
                "confidence": self._enhancement_confidence,
                "fallback_count": self.backend.fallback_count if self.backend is not None else 0,
            },
        }


def quality_trend(history: list[float], margin: float = 0.1) -> str:
    """Compare the mean of the last three readings to the three before."""
    if len(history) < 6:
        return "stable"
    recent = float(np.mean(history[-3:]))
    previous = float(np.mean(history[-6:-3]))
    if recent > previous + margin:
        return "improving"
    if recent < previous - margin:
        return "deteriorating"
    return "stable"
