"""Pydantic schemas for stored documents and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.records import (
    CHANNELS,
    SENTINEL_CHANNEL,
    ChannelStatus,
    ReadingUpdate,
    ScanStrategy,
)

# Flat field names used by documents exported from the original collections.
_LEGACY_READING_KEYS = {
    number: (("value", f"ch{number}"), ("status", f"ch{number}_status"), ("shift", f"ch{number}_shift"))
    for number in CHANNELS
}
_LEGACY_SETTING_KEYS = {number: f"ch{number}" for number in CHANNELS}


def _check_channel_numbers(channels: Dict[int, Any]) -> Dict[int, Any]:
    for number in channels:
        if number not in CHANNELS:
            raise ValueError(f"channel {number} is outside {CHANNELS.start}..{CHANNELS.stop - 1}")
    return channels


def _promote_identifier(payload: Dict[str, Any], field: str, legacy_key: str) -> None:
    legacy = payload.pop(legacy_key, None)
    if field not in payload and legacy is not None:
        payload[field] = str(legacy)


class ChannelReading(BaseModel):
    """Raw value and derived fields for one channel of a record."""

    value: Optional[float] = None
    status: Optional[ChannelStatus] = None
    shift: Optional[str] = None


class DeviceReading(BaseModel):
    """A telemetry record as persisted in the readings store."""

    model_config = ConfigDict(extra="allow")

    record_id: str
    device_id: str
    date: Optional[str] = Field(default=None, description="Calendar date as YY/MM/DD.")
    time: Optional[str] = Field(default=None, description="Clock time as HH:MM.")
    channels: Dict[int, ChannelReading] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        _promote_identifier(payload, "record_id", "_id")
        _promote_identifier(payload, "device_id", "deviceno")
        if "channels" not in payload:
            channels: Dict[int, Dict[str, Any]] = {}
            for number, keys in _LEGACY_READING_KEYS.items():
                entry = {name: payload.pop(key) for name, key in keys if key in payload}
                if entry:
                    channels[number] = entry
            payload["channels"] = channels
        return payload

    @field_validator("channels")
    @classmethod
    def _channels_in_range(cls, value: Dict[int, ChannelReading]) -> Dict[int, ChannelReading]:
        return _check_channel_numbers(value)

    @property
    def is_unenriched(self) -> bool:
        """True while the sentinel channel lacks a status or a shift."""
        sentinel = self.channels.get(SENTINEL_CHANNEL)
        return sentinel is None or sentinel.status is None or sentinel.shift is None

    def pending_changes(self, update: ReadingUpdate) -> ReadingUpdate:
        """Return the part of ``update`` that differs from the stored fields."""
        statuses = {
            number: status
            for number, status in update.statuses.items()
            if number not in self.channels or self.channels[number].status != status
        }
        shifts = {
            number: shift
            for number, shift in update.shifts.items()
            if number not in self.channels or self.channels[number].shift != shift
        }
        return ReadingUpdate(record_id=update.record_id, statuses=statuses, shifts=shifts)

    def apply(self, update: ReadingUpdate) -> None:
        for number, status in update.statuses.items():
            self.channels.setdefault(number, ChannelReading()).status = status
        for number, shift in update.shifts.items():
            self.channels.setdefault(number, ChannelReading()).shift = shift


class ChannelSetting(BaseModel):
    """Thresholds and shift windows configured for one channel."""

    model_config = ConfigDict(populate_by_name=True)

    on_threshold: Optional[float] = Field(default=None, alias="ON_Threshold")
    low_efficiency_threshold: Optional[float] = Field(
        default=None, alias="LOW_Effeciency_Threshold"
    )
    morning_shift_start: Optional[str] = Field(default=None, alias="Morning_shift_start")
    morning_shift_end: Optional[str] = Field(default=None, alias="Morning_shift_end")
    night_shift_start: Optional[str] = Field(default=None, alias="Night_shift_start")
    night_shift_end: Optional[str] = Field(default=None, alias="Night_shift_end")


class DeviceSetting(BaseModel):
    """Per-device configuration document maintained outside this service."""

    model_config = ConfigDict(extra="allow")

    device_id: str
    channels: Dict[int, ChannelSetting] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        _promote_identifier(payload, "device_id", "deviceno")
        if "channels" not in payload:
            payload["channels"] = {
                number: payload.pop(key)
                for number, key in _LEGACY_SETTING_KEYS.items()
                if isinstance(payload.get(key), dict)
            }
        return payload

    @field_validator("channels")
    @classmethod
    def _channels_in_range(cls, value: Dict[int, ChannelSetting]) -> Dict[int, ChannelSetting]:
        return _check_channel_numbers(value)


class PassStatus(str, Enum):
    """Outcome of a reconciliation pass attempt."""

    completed = "completed"
    failed = "failed"
    skipped = "skipped"


class PassReport(BaseModel):
    """Counters and timing for one reconciliation pass attempt."""

    pass_id: str
    status: PassStatus
    strategy: ScanStrategy
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    scanned: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    unchanged: int = Field(default=0, ge=0)
    skipped_no_config: int = Field(default=0, ge=0)
    failed_records: int = Field(default=0, ge=0)
    channel_issues: int = Field(default=0, ge=0)
    error: Optional[str] = None


class RunnerStatus(BaseModel):
    """Snapshot of the runner and scheduler exposed via the API."""

    running: bool
    scheduler_enabled: bool
    interval_seconds: float
    strategy: ScanStrategy
    batch_size: int
    passes_completed: int = 0
    passes_failed: int = 0
    passes_skipped: int = 0
    last_report: Optional[PassReport] = None
