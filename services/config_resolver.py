"""Lookup of per-device channel configuration."""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from app.schemas import ChannelSetting, DeviceSetting
from datastore.device_settings import DeviceSettingsStore
from models.records import ChannelConfig, DeviceConfig, ShiftWindow, DAY_SHIFT_LABEL, NIGHT_SHIFT_LABEL
from services.errors import ConfigNotFound, MalformedDeviceConfig


def _window(name: str, start: Optional[str], stop: Optional[str]) -> Optional[ShiftWindow]:
    if not start or not stop:
        return None
    return ShiftWindow(name=name, start=start, stop=stop)


def _channel_config(number: int, setting: ChannelSetting) -> ChannelConfig:
    return ChannelConfig(
        channel=number,
        on_threshold=setting.on_threshold,
        low_efficiency_threshold=setting.low_efficiency_threshold,
        morning_shift=_window(DAY_SHIFT_LABEL, setting.morning_shift_start, setting.morning_shift_end),
        night_shift=_window(NIGHT_SHIFT_LABEL, setting.night_shift_start, setting.night_shift_end),
    )


def to_device_config(setting: DeviceSetting) -> DeviceConfig:
    channels = {number: _channel_config(number, channel) for number, channel in setting.channels.items()}
    return DeviceConfig(device_id=setting.device_id, channels=channels)


class DeviceConfigResolver:
    """Resolves a device identifier to its classification settings."""

    def __init__(self, store: DeviceSettingsStore) -> None:
        self.store = store

    def resolve(self, device_id: str) -> DeviceConfig:
        try:
            setting = self.store.get(device_id)
        except ValidationError as exc:
            raise MalformedDeviceConfig(
                f"Device settings for {device_id!r} are invalid ({exc.error_count()} errors)."
            ) from exc
        if setting is None:
            raise ConfigNotFound(device_id)
        return to_device_config(setting)
