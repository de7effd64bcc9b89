"""Reference-based calibration of derived vitals.

Operator-entered reference measurements are kept in a small FIFO. For each
vital the factor is the mean ratio ``reference / theoretical_normal`` over
the references that supplied it. Applying calibration blends toward the
factor by the calibration confidence, so a single reference barely moves
the output:

    value * (factor * confidence + (1 - confidence))
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import replace
from typing import Optional, Union

import numpy as np

from config.settings import CalibrationConfig
from src.ppg_system.exceptions import CalibrationError
from src.ppg_system.schemas import (
    CalibrationFactors,
    CalibrationReference,
    Vital,
    VitalSignType,
)

logger = logging.getLogger(__name__)

THEORETICAL_NORMALS: dict[Vital, float] = {
    Vital.SPO2: 97.0,
    Vital.SYSTOLIC: 120.0,
    Vital.DIASTOLIC: 80.0,
    Vital.GLUCOSE: 100.0,
    Vital.CHOLESTEROL: 180.0,
    Vital.TRIGLYCERIDES: 150.0,
    Vital.HEART_RATE: 70.0,
}

# channel kind -> fields whose factors are averaged for that kind
_KIND_FIELDS: dict[VitalSignType, tuple[Vital, ...]] = {
    VitalSignType.CARDIAC: (Vital.HEART_RATE,),
    VitalSignType.SPO2: (Vital.SPO2,),
    VitalSignType.BLOOD_PRESSURE: (Vital.SYSTOLIC, Vital.DIASTOLIC),
    VitalSignType.GLUCOSE: (Vital.GLUCOSE,),
    VitalSignType.LIPIDS: (Vital.CHOLESTEROL, Vital.TRIGLYCERIDES),
}


def _now_ms() -> float:
    return time.time() * 1000.0


class CalibrationManager:
    """Learns per-vital multiplicative correction factors.

    Args:
        config: Capacity and minimum reference count.
    """

    def __init__(self, config: Optional[CalibrationConfig] = None) -> None:
        self.config = config or CalibrationConfig()
        self._references: deque[CalibrationReference] = deque(maxlen=self.config.capacity)
        self._factors = CalibrationFactors()

    def add_reference_data(self, reference: CalibrationReference) -> bool:
        """Store a reference and recompute factors.

        Returns:
            False when the reference carries no usable field.
        """
        try:
            self._validate(reference)
        except CalibrationError as exc:
            logger.warning("Calibration reference rejected: %s", exc)
            return False

        if reference.timestamp is None:
            reference = replace(reference, timestamp=_now_ms())
        self._references.append(reference)
        self._recompute(reference.timestamp)
        logger.info(
            "Calibration reference accepted (%d stored, calibrated=%s)",
            len(self._references), self.is_system_calibrated(),
        )
        return True

    def apply_calibration(self, vital: Union[Vital, VitalSignType], value: float) -> float:
        """Calibrate a value; passes through until calibrated and for zero."""
        if not self.is_system_calibrated() or value == 0:
            return value
        confidence = self._factors.confidence
        factor = self._factor_for(vital)
        return value * (factor * confidence + (1.0 - confidence))

    def is_system_calibrated(self) -> bool:
        return len(self._references) >= self.config.min_references

    def get_calibration_confidence(self) -> float:
        return self._factors.confidence

    def get_calibration_factors(self) -> CalibrationFactors:
        return CalibrationFactors(
            factors=dict(self._factors.factors),
            confidence=self._factors.confidence,
            last_updated=self._factors.last_updated,
        )

    def get_reference_count(self) -> int:
        return len(self._references)

    def get_last_calibration_time(self) -> Optional[float]:
        return self._factors.last_updated if self._references else None

    def reset_calibration(self) -> None:
        self._references.clear()
        self._factors = CalibrationFactors()
        logger.info("Calibration reset")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(reference: CalibrationReference) -> None:
        values = reference.values()
        if not values:
            raise CalibrationError("reference has no measurement fields")
        for vital, value in values.items():
            if not math.isfinite(value) or value <= 0:
                raise CalibrationError(f"{vital.value}={value} is not a positive number")

    def _recompute(self, timestamp: float) -> None:
        ratios: dict[Vital, list[float]] = {vital: [] for vital in Vital}
        for reference in self._references:
            for vital, value in reference.values().items():
                ratios[vital].append(value / THEORETICAL_NORMALS[vital])

        self._factors = CalibrationFactors(
            factors={
                vital: float(np.mean(values)) if values else 1.0
                for vital, values in ratios.items()
            },
            confidence=min(1.0, len(self._references) / self.config.capacity),
            last_updated=timestamp,
        )

    def _factor_for(self, vital: Union[Vital, VitalSignType]) -> float:
        if isinstance(vital, VitalSignType):
            return float(np.mean([self._factors.factor(v) for v in _KIND_FIELDS[vital]]))
        return self._factors.factor(vital)
