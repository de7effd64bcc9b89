"""Data classes for PPG vital-signs system input and output."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Iterable, Optional

import numpy as np


class VitalSignType(str, Enum):
    """Processing channel kinds, one per derived vital sign."""

    CARDIAC = "cardiac"
    SPO2 = "spo2"
    BLOOD_PRESSURE = "blood_pressure"
    GLUCOSE = "glucose"
    LIPIDS = "lipids"


class Vital(str, Enum):
    """Individual measurement fields."""

    HEART_RATE = "heart_rate"
    SPO2 = "spo2"
    SYSTOLIC = "systolic"
    DIASTOLIC = "diastolic"
    GLUCOSE = "glucose"
    CHOLESTEROL = "cholesterol"
    TRIGLYCERIDES = "triglycerides"


# ============== Input ==============


@dataclass(frozen=True)
class RawSample:
    """One PPG sample as delivered by the extraction layer."""

    value: float
    timestamp: float  # ms
    quality: float = 100.0  # 0-100
    finger_detected: bool = True


# ============== Channel feedback ==============


@dataclass
class SuggestedAdjustments:
    """Conditioning changes a channel asks the distributor for."""

    amplification_factor: Optional[float] = None
    filter_strength: Optional[float] = None
    frequency_range_min: Optional[float] = None
    frequency_range_max: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict[str, float]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass
class ChannelFeedback:
    """Advisory feedback produced by a channel after processing."""

    channel_id: str
    signal_quality: float
    suggested_adjustments: SuggestedAdjustments
    timestamp: float
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "signal_quality": round(self.signal_quality, 4),
            "suggested_adjustments": self.suggested_adjustments.to_dict(),
            "timestamp": self.timestamp,
            "success": self.success,
        }


# ============== Channel results ==============


@dataclass(frozen=True)
class CardiacResult:
    heart_rate: float = 0.0
    arrhythmia_detected: bool = False
    rhythm_regularity: float = 0.0
    interval_count: int = 0
    rmssd: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "heart_rate": round(self.heart_rate, 1),
            "arrhythmia_detected": self.arrhythmia_detected,
            "rhythm_regularity": round(self.rhythm_regularity, 4),
            "interval_count": self.interval_count,
            "rmssd": round(self.rmssd, 1),
        }


@dataclass(frozen=True)
class SpO2Result:
    spo2: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"spo2": round(self.spo2, 1)}


@dataclass(frozen=True)
class BloodPressureResult:
    systolic: float = 0.0
    diastolic: float = 0.0
    precision: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "systolic": round(self.systolic, 1),
            "diastolic": round(self.diastolic, 1),
            "precision": round(self.precision, 4),
        }


@dataclass(frozen=True)
class GlucoseResult:
    glucose: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"glucose": round(self.glucose, 1)}


@dataclass(frozen=True)
class LipidsResult:
    total_cholesterol: float = 0.0
    triglycerides: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cholesterol": round(self.total_cholesterol, 1),
            "triglycerides": round(self.triglycerides, 1),
        }


@dataclass
class PeakDetectionResult:
    """Output of one peak/interval detection pass."""

    peak_indices: list[int]
    valley_indices: list[int]
    intervals: list[float]  # ms
    last_peak_time: float  # ms, derived from sample index


class RRIntervalData:
    """Bounded FIFO of inter-beat intervals in milliseconds.

    Intervals outside [min_ms, max_ms] are rejected, not stored.
    """

    MIN_INTERVAL_MS = 300.0
    MAX_INTERVAL_MS = 2000.0

    def __init__(
        self,
        intervals: Iterable[float] = (),
        capacity: int = 20,
        min_ms: float = MIN_INTERVAL_MS,
        max_ms: float = MAX_INTERVAL_MS,
    ) -> None:
        self.capacity = capacity
        self.min_ms = min_ms
        self.max_ms = max_ms
        self._intervals: deque[float] = deque(maxlen=capacity)
        self.extend(intervals)

    def add(self, interval_ms: float) -> bool:
        """Append an interval; returns False when it was rejected."""
        if not self.min_ms <= interval_ms <= self.max_ms:
            return False
        self._intervals.append(float(interval_ms))
        return True

    def extend(self, intervals: Iterable[float]) -> int:
        return sum(1 for iv in intervals if self.add(iv))

    def clear(self) -> None:
        self._intervals.clear()

    @property
    def intervals(self) -> list[float]:
        return list(self._intervals)

    def __len__(self) -> int:
        return len(self._intervals)


# ============== Calibration ==============


@dataclass
class CalibrationReference:
    """Operator-entered ground-truth measurement."""

    spo2: Optional[float] = None
    systolic: Optional[float] = None
    diastolic: Optional[float] = None
    glucose: Optional[float] = None
    cholesterol: Optional[float] = None
    triglycerides: Optional[float] = None
    heart_rate: Optional[float] = None
    timestamp: Optional[float] = None  # ms

    def values(self) -> dict[Vital, float]:
        """Reference fields that were supplied."""
        result: dict[Vital, float] = {}
        for vital in Vital:
            value = getattr(self, vital.value)
            if value is not None:
                result[vital] = float(value)
        return result

    @property
    def is_empty(self) -> bool:
        return not self.values()


@dataclass
class CalibrationFactors:
    """Per-vital multiplicative factors learned from references."""

    factors: dict[Vital, float] = field(
        default_factory=lambda: {vital: 1.0 for vital in Vital}
    )
    confidence: float = 0.0
    last_updated: float = 0.0

    def factor(self, vital: Vital) -> float:
        return self.factors.get(vital, 1.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "factors": {v.value: round(f, 4) for v, f in self.factors.items()},
            "confidence": round(self.confidence, 4),
            "last_updated": self.last_updated,
        }


# ============== Cross validation ==============


@dataclass
class Measurements:
    """Snapshot of vitals handed to the cross-validator."""

    heart_rate: Optional[float] = None
    spo2: Optional[float] = None
    systolic: Optional[float] = None
    diastolic: Optional[float] = None
    glucose: Optional[float] = None
    cholesterol: Optional[float] = None
    triglycerides: Optional[float] = None

    def get(self, vital: Vital) -> Optional[float]:
        return getattr(self, vital.value)

    def set(self, vital: Vital, value: Optional[float]) -> None:
        setattr(self, vital.value, value)

    def to_dict(self) -> dict[str, float]:
        return {
            vital.value: self.get(vital)
            for vital in Vital
            if self.get(vital) is not None
        }


@dataclass
class ValidationResult:
    """Outcome of range and cross-correlation checks."""

    is_valid: bool = True
    confidence: float = 1.0
    adjustment_factors: dict[Vital, float] = field(default_factory=dict)
    inconsistencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "confidence": round(self.confidence, 4),
            "adjustment_factors": {
                v.value: round(f, 4) for v, f in self.adjustment_factors.items()
            },
            "inconsistencies": list(self.inconsistencies),
        }


# ============== Environment ==============


@dataclass
class EnvironmentalConditions:
    """Ambient conditions around the capture."""

    light_level: float = 50.0  # 0-100
    temperature: float = 22.0  # Celsius
    device_model: str = "unknown"
    screen_brightness: float = 75.0  # 0-100
    battery_level: float = 100.0  # 0-100
    motion_level: float = 0.0  # 0-100
    last_updated: float = 0.0  # ms


@dataclass(frozen=True)
class AdjustmentFactors:
    signal_amplification: float = 1.0
    noise_reduction: float = 1.0
    signal_offset: float = 0.0
    confidence: float = 1.0

    def to_dict(self) -> dict[str, float]:
        return {
            "signal_amplification": round(self.signal_amplification, 4),
            "noise_reduction": round(self.noise_reduction, 4),
            "signal_offset": round(self.signal_offset, 4),
            "confidence": round(self.confidence, 4),
        }


# ============== Enhancement ==============


@dataclass
class EnhancementResult:
    """Enhanced buffer returned by an enhancement backend."""

    values: np.ndarray
    confidence: float
    backend: str = "numeric"


# ============== Distribution ==============


@dataclass
class DistributionResult:
    """Per-channel outputs of one distributor cycle."""

    results: dict[VitalSignType, Any]
    feedback: dict[VitalSignType, ChannelFeedback]
    confidences: dict[VitalSignType, float]
    diagnostics: dict[str, Any]
    timestamp: float
    stale: bool = False


# ============== Output ==============


@dataclass(frozen=True)
class VitalSignsResult:
    """Terminal display-ready snapshot for one processed sample."""

    timestamp: float
    heart_rate: int = 0
    spo2: int = 0
    systolic: int = 0
    diastolic: int = 0
    glucose: int = 0
    total_cholesterol: int = 0
    triglycerides: int = 0
    arrhythmia_status: str = "--"
    arrhythmia_count: int = 0
    rhythm_regularity: float = 0.0
    rmssd: float = 0.0
    confidence: dict[str, float] = field(default_factory=dict)
    blood_pressure_precision: float = 0.0
    overall_precision: float = 0.0
    status: str = "error"  # valid | calibrating | needs_calibration | error
    is_calibrated: bool = False
    correlation_validated: bool = False
    inconsistencies: tuple[str, ...] = ()
    environmental_confidence: float = 0.0
    enhancement_confidence: float = 0.0
    stale: bool = False
    age_ms: float = 0.0

    @property
    def blood_pressure(self) -> str:
        if self.systolic <= 0 or self.diastolic <= 0:
            return "--/--"
        return f"{self.systolic}/{self.diastolic}"

    @property
    def lipids(self) -> tuple[int, int]:
        return (self.total_cholesterol, self.triglycerides)

    @property
    def is_valid(self) -> bool:
        return self.correlation_validated and not self.stale

    @classmethod
    def empty(cls, timestamp: float) -> VitalSignsResult:
        return cls(timestamp=timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "heart_rate": self.heart_rate,
            "spo2": self.spo2,
            "blood_pressure": self.blood_pressure,
            "systolic": self.systolic,
            "diastolic": self.diastolic,
            "glucose": self.glucose,
            "lipids": {
                "total_cholesterol": self.total_cholesterol,
                "triglycerides": self.triglycerides,
            },
            "arrhythmia": {
                "status": self.arrhythmia_status,
                "count": self.arrhythmia_count,
                "rhythm_regularity": round(self.rhythm_regularity, 4),
                "rmssd": round(self.rmssd, 1),
            },
            "confidence": {k: round(v, 4) for k, v in self.confidence.items()},
            "precision": {
                "overall": round(self.overall_precision, 4),
                "blood_pressure": round(self.blood_pressure_precision, 4),
                "environmental": round(self.environmental_confidence, 4),
                "enhancement": round(self.enhancement_confidence, 4),
            },
            "status": self.status,
            "is_calibrated": self.is_calibrated,
            "correlation_validated": self.correlation_validated,
            "inconsistencies": list(self.inconsistencies),
            "stale": self.stale,
            "age_ms": round(self.age_ms, 1),
        }
