"""Cross-validation of simultaneously estimated vitals.

Checks each vital against its physiological range, checks the blood
pressure pair for inversion and abnormal pulse pressure, then applies
pairwise plausibility rules (HR vs BP, SpO2 vs HR, glucose vs lipids).
Every finding adds an inconsistency message and may record a correction
factor; factors are only applied by ``apply_adjustments``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import numpy as np
import yaml

from src.ppg_system.exceptions import OutOfPhysiologicalRangeError
from src.ppg_system.schemas import Measurements, ValidationResult, Vital

logger = logging.getLogger(__name__)

_DEFAULT_RULES_PATH = Path(__file__).resolve().parents[2] / "config" / "validation_rules.yaml"


def _load_rules(path: Path | None = None) -> dict:
    p = path or _DEFAULT_RULES_PATH
    with open(p) as f:
        return yaml.safe_load(f)


def _present(value: Optional[float]) -> bool:
    return value is not None and value != 0


class CrossValidator:
    """Rule-based physiological plausibility checks across vitals.

    Args:
        rules_path: Path to YAML rules (default: config/validation_rules.yaml).
    """

    def __init__(self, rules_path: Path | str | None = None) -> None:
        self.rules = _load_rules(Path(rules_path) if rules_path else None)
        self.ranges: dict[Vital, tuple[float, float]] = {
            Vital(name): (float(r["min"]), float(r["max"]))
            for name, r in self.rules["ranges"].items()
        }
        bp = self.rules.get("blood_pressure", {})
        self.min_gap = float(bp.get("min_gap", 20))

    # ------------------------------------------------------------------
    # Bounds
    # ------------------------------------------------------------------

    def bounds(self, vital: Vital) -> tuple[float, float]:
        return self.ranges[vital]

    def clamp(self, vital: Vital, value: float) -> float:
        low, high = self.bounds(vital)
        return float(np.clip(value, low, high))

    def check_range(self, vital: Vital, value: float) -> None:
        """Raise OutOfPhysiologicalRangeError when value is outside its range."""
        low, high = self.bounds(vital)
        if not low <= value <= high:
            raise OutOfPhysiologicalRangeError(vital.value, value, low, high)

    def enforce_pressure_gap(self, systolic: float, diastolic: float) -> tuple[float, float]:
        """Spread a too-narrow pressure pair around its midpoint."""
        if systolic - diastolic >= self.min_gap:
            return systolic, diastolic
        mid = (systolic + diastolic) / 2.0
        half = self.min_gap / 2.0
        systolic = self.clamp(Vital.SYSTOLIC, round(mid + half))
        diastolic = self.clamp(
            Vital.DIASTOLIC, min(round(mid - half), systolic - self.min_gap)
        )
        return systolic, diastolic

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_measurements(self, measurements: Measurements) -> ValidationResult:
        factors: dict[Vital, float] = {}
        issues: list[str] = []

        self._check_ranges(measurements, factors, issues)
        self._check_blood_pressure(measurements, factors, issues)
        self._check_correlations(measurements, factors, issues)

        scoring = self.rules.get("scoring", {})
        penalty = scoring.get("penalty_per_inconsistency", 0.15)
        floor = scoring.get("min_confidence", 0.1)
        limit = scoring.get("max_inconsistencies", 4)

        if issues:
            logger.debug("Cross-validation found %d inconsistencies: %s", len(issues), issues)
        return ValidationResult(
            is_valid=len(issues) <= limit,
            confidence=max(floor, 1.0 - penalty * len(issues)),
            adjustment_factors=factors,
            inconsistencies=issues,
        )

    def apply_adjustments(
        self,
        measurements: Measurements,
        result: ValidationResult,
    ) -> Measurements:
        """Apply recorded factors, re-clamp, and re-enforce the pressure gap.

        Measurements without inconsistencies are returned unchanged.
        """
        if not result.inconsistencies and not result.adjustment_factors:
            return replace(measurements)

        adjusted = replace(measurements)
        for vital in Vital:
            value = adjusted.get(vital)
            if not _present(value):
                continue
            value *= result.adjustment_factors.get(vital, 1.0)
            adjusted.set(vital, self.clamp(vital, round(value)))

        if _present(adjusted.systolic) and _present(adjusted.diastolic):
            adjusted.systolic, adjusted.diastolic = self.enforce_pressure_gap(
                adjusted.systolic, adjusted.diastolic
            )
        return adjusted

    # ------------------------------------------------------------------
    # Range checks
    # ------------------------------------------------------------------

    def _check_ranges(
        self,
        m: Measurements,
        factors: dict[Vital, float],
        issues: list[str],
    ) -> None:
        for vital in self.ranges:
            value = m.get(vital)
            if not _present(value):
                continue
            try:
                self.check_range(vital, value)
            except OutOfPhysiologicalRangeError as exc:
                bound = exc.low if value < exc.low else exc.high
                factors[vital] = bound / value
                issues.append(f"Out of range: {exc}")

    def _check_blood_pressure(
        self,
        m: Measurements,
        factors: dict[Vital, float],
        issues: list[str],
    ) -> None:
        if not (_present(m.systolic) and _present(m.diastolic)):
            return
        bp = self.rules.get("blood_pressure", {})
        if m.diastolic >= m.systolic:
            inversion = bp.get("inversion_factors", {"systolic": 1.2, "diastolic": 0.8})
            factors[Vital.SYSTOLIC] = inversion["systolic"]
            factors[Vital.DIASTOLIC] = inversion["diastolic"]
            issues.append(
                f"Diastolic ({m.diastolic:.0f}) not below systolic ({m.systolic:.0f})"
            )
            return

        pulse_pressure = m.systolic - m.diastolic
        if not bp.get("pulse_pressure_min", 20) <= pulse_pressure <= bp.get("pulse_pressure_max", 60):
            issues.append(f"Abnormal pulse pressure ({pulse_pressure:.0f} mmHg)")

    # ------------------------------------------------------------------
    # Cross-correlation checks
    # ------------------------------------------------------------------

    def _check_correlations(
        self,
        m: Measurements,
        factors: dict[Vital, float],
        issues: list[str],
    ) -> None:
        rules = self.rules.get("correlations", {})

        def nudge(rule: dict) -> None:
            for name, factor in rule.get("factors", {}).items():
                vital = Vital(name)
                factors[vital] = factors.get(vital, 1.0) * factor

        hr, spo2 = m.heart_rate, m.spo2
        sys, dia = m.systolic, m.diastolic

        if _present(hr) and _present(sys) and _present(dia):
            rule = rules.get("tachycardia_hypotension")
            if rule and hr > rule["heart_rate_above"] and sys < rule["systolic_below"] and dia < rule["diastolic_below"]:
                issues.append(f"Elevated heart rate ({hr:.0f}) with low blood pressure ({sys:.0f}/{dia:.0f})")
                nudge(rule)
            rule = rules.get("bradycardia_hypertension")
            if rule and hr < rule["heart_rate_below"] and sys > rule["systolic_above"] and dia > rule["diastolic_above"]:
                issues.append(f"Low heart rate ({hr:.0f}) with high blood pressure ({sys:.0f}/{dia:.0f})")
                nudge(rule)

        if _present(spo2) and _present(hr):
            rule = rules.get("hypoxemia_heart_rate")
            if rule and spo2 < rule["spo2_below"] and hr < rule["heart_rate_below"]:
                issues.append(f"Low SpO2 ({spo2:.0f}%) without compensatory heart rate ({hr:.0f})")
                nudge(rule)
            rule = rules.get("saturation_tachycardia")
            if rule and spo2 > rule["spo2_above"] and hr > rule["heart_rate_above"]:
                issues.append(f"High SpO2 ({spo2:.0f}%) with marked tachycardia ({hr:.0f})")

        if _present(m.glucose):
            rule = rules.get("glucose_cholesterol")
            if rule and _present(m.cholesterol) and m.glucose > rule["glucose_above"] and m.cholesterol < rule["cholesterol_below"]:
                issues.append(f"High glucose ({m.glucose:.0f}) with low cholesterol ({m.cholesterol:.0f})")
                nudge(rule)
            rule = rules.get("glucose_triglycerides")
            if rule and _present(m.triglycerides) and m.glucose > rule["glucose_above"] and m.triglycerides < rule["triglycerides_below"]:
                issues.append(f"High glucose ({m.glucose:.0f}) with low triglycerides ({m.triglycerides:.0f})")
                nudge(rule)
