"""Configuration management for the PPG vital-signs system."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class FilterConfig:
    """Configuration for the per-channel adaptive Kalman filter."""

    process_noise: float = 0.01
    measurement_noise: float = 0.1
    initial_covariance: float = 1.0
    adaptive: bool = True
    gain_history: int = 10
    min_process_noise: float = 0.001
    max_process_noise: float = 0.1
    outlier_ratio: float = 3.0
    """Deviation (in units of measurement noise) above which R is doubled."""

    inlier_ratio: float = 0.5
    min_measurement_noise: float = 0.01
    max_measurement_noise: float = 10.0
    batch_size: int = 30
    """Samples per backend call in ``AdaptiveFilter.filter_batch``."""


@dataclass
class PeakDetectorConfig:
    """Configuration for multi-criterion peak and interval detection."""

    sample_rate: float = 30.0
    derivative_window: int = 3
    slope_sum_window: int = 5
    neighborhood: int = 4
    valley_neighborhood: int = 3
    baseline_half_window: int = 6
    baseline_exclusion: int = 2
    min_rr_ms: float = 450.0
    max_rr_ms: float = 1500.0
    interval_capacity: int = 20
    min_consecutive_intervals: int = 3
    threshold_history: int = 30
    threshold_min: float = 0.15
    threshold_max: float = 0.7
    feature_span: float = 10.0
    """Peak-to-peak span each window is rescaled to before feature extraction."""

    min_raw_span: float = 1e-3


@dataclass
class ChannelConfig:
    """Buffer sizes and windows shared by the vital-sign channels."""

    sample_rate: float = 30.0
    recent_buffer: int = 30
    cardiac_window: int = 150
    blood_pressure_window: int = 60
    blood_pressure_history: int = 12
    glucose_window: int = 60
    lipids_window: int = 90
    min_feedback_samples: int = 10


@dataclass
class DistributorConfig:
    """Configuration for fan-out and per-channel conditioning."""

    quality_threshold: float = 30.0
    min_gain: float = 0.5
    max_gain: float = 4.0
    min_filter_strength: float = 1.0
    max_filter_strength: float = 5.0
    bandpass_order: int = 2
    enabled_channels: list[str] = field(
        default_factory=lambda: ["cardiac", "spo2", "blood_pressure", "glucose", "lipids"]
    )


@dataclass
class AccelerationConfig:
    """Signal enhancement backend selection."""

    enabled: bool = True
    backend: str = "numeric"  # "numeric" or "offloaded"
    timeout_s: float = 1.5
    window_size: int = 30
    max_workers: int = 1


@dataclass
class CalibrationConfig:
    capacity: int = 5
    min_references: int = 2


@dataclass
class EnvironmentConfig:
    auto_estimate: bool = False
    """Estimate light and motion from the raw signal when no sensor data is supplied."""

    estimation_interval: int = 30
    min_estimation_samples: int = 10

    light_per_span: float = 25.0
    """Light level per unit of raw peak-to-peak span; a unit-amplitude pulse reads 50."""

    motion_per_residual: float = 500.0
    """Motion level per unit of residual std after smoothing away the pulse."""


_DEFAULT_VALIDATION_RULES = str(Path(__file__).resolve().parent / "validation_rules.yaml")


@dataclass
class Settings:
    """Top-level application settings."""

    filter: FilterConfig = field(default_factory=FilterConfig)
    peak_detector: PeakDetectorConfig = field(default_factory=PeakDetectorConfig)
    channels: ChannelConfig = field(default_factory=ChannelConfig)
    distributor: DistributorConfig = field(default_factory=DistributorConfig)
    acceleration: AccelerationConfig = field(default_factory=AccelerationConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    log_level: str = "INFO"
    validation_rules: str = _DEFAULT_VALIDATION_RULES

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        settings = cls(
            log_level=os.getenv("PPG_LOG_LEVEL", "INFO"),
            validation_rules=os.getenv("PPG_VALIDATION_RULES", _DEFAULT_VALIDATION_RULES),
        )
        threshold = os.getenv("PPG_QUALITY_THRESHOLD")
        if threshold is not None:
            settings.distributor.quality_threshold = float(threshold)
        timeout = os.getenv("PPG_ACCELERATOR_TIMEOUT")
        if timeout is not None:
            settings.acceleration.timeout_s = float(timeout)
        return settings

    @classmethod
    def from_yaml(cls, path: str, base: Optional[Settings] = None) -> Settings:
        """Load settings from YAML config file."""
        config_path = Path(path)
        settings = base or cls()
        if not config_path.exists():
            return settings
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if "filter" in data:
            settings.filter = FilterConfig(**data["filter"])
        if "peak_detector" in data:
            settings.peak_detector = PeakDetectorConfig(**data["peak_detector"])
        if "channels" in data:
            settings.channels = ChannelConfig(**data["channels"])
        if "distributor" in data:
            settings.distributor = DistributorConfig(**data["distributor"])
        if "acceleration" in data:
            settings.acceleration = AccelerationConfig(**data["acceleration"])
        if "calibration" in data:
            settings.calibration = CalibrationConfig(**data["calibration"])
        if "environment" in data:
            settings.environment = EnvironmentConfig(**data["environment"])
        for key in ("log_level", "validation_rules"):
            if key in data:
                setattr(settings, key, data[key])
        return settings
