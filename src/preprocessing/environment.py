"""Environmental signal adjustment.

Ambient conditions (light, temperature, screen brightness, battery, motion,
device model) each contribute independent multiplicative effects on signal
amplification and noise reduction and additive effects on the offset.
The raw value is adjusted as ``(value + offset) * amplification``; the
noise-reduction factor is handed to the distributor as a smoothing
multiplier instead of being applied to the value.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, fields, replace
from typing import Any, Optional

import numpy as np

from config.settings import EnvironmentConfig
from src.ppg_system.schemas import AdjustmentFactors, EnvironmentalConditions
from src.preprocessing.utils import smooth

logger = logging.getLogger(__name__)

# device model -> (amplification, noise reduction)
DEVICE_PROFILES: dict[str, tuple[float, float]] = {
    "iphone": (0.95, 1.0),
    "samsung": (1.05, 1.0),
    "pixel": (0.9, 1.1),
    "xiaomi": (1.1, 1.0),
}


def compute_adjustment_factors(conditions: EnvironmentalConditions) -> AdjustmentFactors:
    """Derive adjustment factors from a full set of conditions."""
    amplification = 1.0
    noise_reduction = 1.0
    offset = 0.0
    confidence = 1.0

    if conditions.light_level < 20:
        amplification *= 1.4
        noise_reduction *= 1.2
        confidence *= 0.8
    elif conditions.light_level > 80:
        # saturation
        amplification *= 0.8
        offset -= 0.05
        confidence *= 0.9

    if conditions.temperature < 18 or conditions.temperature > 26:
        deviation = min(abs(conditions.temperature - 22.0) / 10.0, 1.0)
        amplification *= 1.0 + 0.2 * deviation
        confidence *= 1.0 - 0.2 * deviation

    if conditions.screen_brightness > 90:
        noise_reduction *= 1.2
        offset += 0.02
        confidence *= 0.95

    if conditions.battery_level < 20:
        noise_reduction *= 1.1
        confidence *= 0.9

    if conditions.motion_level > 30:
        motion = min(conditions.motion_level / 100.0, 1.0)
        noise_reduction *= 1.0 + 0.5 * motion
        confidence *= 1.0 - 0.4 * motion

    device_amp, device_nr = DEVICE_PROFILES.get(conditions.device_model.lower(), (1.0, 1.0))
    amplification *= device_amp
    noise_reduction *= device_nr

    return AdjustmentFactors(
        signal_amplification=amplification,
        noise_reduction=noise_reduction,
        signal_offset=offset,
        confidence=confidence,
    )


class EnvironmentalAdjuster:
    """Holds current ambient conditions and the factors derived from them.

    Args:
        config: Auto-estimation settings.
    """

    def __init__(self, config: Optional[EnvironmentConfig] = None) -> None:
        self.config = config or EnvironmentConfig()
        self.reset()

    def reset(self) -> None:
        self._conditions = EnvironmentalConditions(last_updated=time.time() * 1000.0)
        self._factors = AdjustmentFactors()
        self._external: set[str] = set()

    def update_conditions(self, **changes: Any) -> AdjustmentFactors:
        """Merge partial conditions and recompute factors.

        Conditions supplied here are treated as sensor readings and are
        never overwritten by :meth:`estimate_conditions` until ``reset``.

        Raises:
            TypeError: unknown condition name.
        """
        known = {f.name for f in fields(EnvironmentalConditions)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown environmental conditions: {sorted(unknown)}")
        self._external.update(name for name in changes if name != "last_updated")
        return self._apply(changes)

    def _apply(self, changes: dict[str, Any]) -> AdjustmentFactors:
        changes.setdefault("last_updated", time.time() * 1000.0)
        self._conditions = replace(self._conditions, **changes)
        self._factors = compute_adjustment_factors(self._conditions)
        logger.info(
            "Environmental factors recomputed: %s", self._factors.to_dict()
        )
        return self._factors

    def apply_signal_adjustment(self, value: float) -> float:
        if value == 0:
            return value
        return (value + self._factors.signal_offset) * self._factors.signal_amplification

    def estimate_conditions(self, recent_values: np.ndarray) -> bool:
        """Estimate light and motion from recent raw values.

        Light follows the raw peak-to-peak span. Motion follows the spread
        of what is left after smoothing, so a steady pulse reads as still.
        Conditions already supplied through :meth:`update_conditions` are
        left alone.

        Returns:
            False when fewer than ``min_estimation_samples`` values are given
            or every estimated condition was supplied externally.
        """
        cfg = self.config
        values = np.asarray(recent_values, dtype=np.float64)
        if len(values) < cfg.min_estimation_samples:
            return False
        span = float(np.ptp(values))
        residual = values - smooth(values)
        estimates = {
            "light_level": float(np.clip(span * cfg.light_per_span, 10.0, 100.0)),
            "motion_level": min(100.0, float(residual.std()) * cfg.motion_per_residual),
        }
        estimates = {k: v for k, v in estimates.items() if k not in self._external}
        if not estimates:
            logger.debug("All estimated conditions are sensor-supplied; skipping estimate")
            return False
        self._apply(estimates)
        return True

    def get_adjustment_factors(self) -> AdjustmentFactors:
        return self._factors

    def get_current_conditions(self) -> EnvironmentalConditions:
        return replace(self._conditions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conditions": asdict(self._conditions),
            "factors": self._factors.to_dict(),
        }
