"""Vital-sign channels, one per derived vital sign."""

from __future__ import annotations

from typing import Optional

from config.settings import Settings
from src.channels.base import ChannelState, VitalChannel
from src.channels.blood_pressure import BloodPressureChannel
from src.channels.cardiac import CardiacChannel
from src.channels.glucose import GlucoseChannel
from src.channels.lipids import LipidsChannel
from src.channels.spo2 import SpO2Channel
from src.ppg_system.exceptions import ConfigurationError
from src.ppg_system.schemas import VitalSignType

CHANNEL_REGISTRY: dict[VitalSignType, type[VitalChannel]] = {
    VitalSignType.CARDIAC: CardiacChannel,
    VitalSignType.SPO2: SpO2Channel,
    VitalSignType.BLOOD_PRESSURE: BloodPressureChannel,
    VitalSignType.GLUCOSE: GlucoseChannel,
    VitalSignType.LIPIDS: LipidsChannel,
}


def build_default_channels(settings: Optional[Settings] = None) -> list[VitalChannel]:
    """Instantiate every channel enabled in ``settings.distributor``.

    Raises:
        ConfigurationError: an enabled channel name is not a known kind.
    """
    settings = settings or Settings()
    channels: list[VitalChannel] = []
    for name in settings.distributor.enabled_channels:
        try:
            kind = VitalSignType(name)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown channel kind: {name!r}") from exc
        if kind is VitalSignType.CARDIAC:
            channels.append(CardiacChannel(
                settings.channels, settings.filter, settings.peak_detector
            ))
        else:
            channels.append(CHANNEL_REGISTRY[kind](settings.channels, settings.filter))
    return channels


__all__ = [
    "CHANNEL_REGISTRY",
    "BloodPressureChannel",
    "CardiacChannel",
    "ChannelState",
    "GlucoseChannel",
    "LipidsChannel",
    "SpO2Channel",
    "VitalChannel",
    "build_default_channels",
]
