"""Derivation of per-channel status and shift fields for one record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from app.schemas import DeviceReading
from models.records import (
    CHANNELS,
    DAY_SHIFT_LABEL,
    NIGHT_SHIFT_LABEL,
    ChannelConfig,
    DeviceConfig,
    ReadingUpdate,
    ShiftWindow,
)
from services.classifiers import classify_shift, classify_status, parse_clock, parse_reading_date
from services.errors import MalformedTimeOrDate


@dataclass(frozen=True)
class DerivationIssue:
    """A field that could not be derived; ``channel`` is None for record-wide issues."""

    reason: str
    channel: Optional[int] = None


@dataclass
class Enrichment:
    update: ReadingUpdate
    issues: List[DerivationIssue] = field(default_factory=list)


def _check_window(window: ShiftWindow) -> None:
    parse_clock(window.start)
    parse_clock(window.stop)


class ReadingEnricher:
    """Pure derivation component that can be unit tested in isolation."""

    def __init__(
        self,
        day_label: str = DAY_SHIFT_LABEL,
        night_label: str = NIGHT_SHIFT_LABEL,
    ) -> None:
        self.day_label = day_label
        self.night_label = night_label

    def enrich(self, reading: DeviceReading, config: DeviceConfig) -> Enrichment:
        result = Enrichment(update=ReadingUpdate(record_id=reading.record_id))

        clock: Optional[tuple[int, int]] = None
        try:
            clock = self._reading_clock(reading)
        except MalformedTimeOrDate as exc:
            result.issues.append(DerivationIssue(reason=f"shift skipped: {exc}"))

        for number in CHANNELS:
            channel = reading.channels.get(number)
            setting = config.channels.get(number)
            if channel is None or channel.value is None or setting is None:
                continue

            if setting.on_threshold is None or setting.low_efficiency_threshold is None:
                result.issues.append(
                    DerivationIssue(reason="status skipped: thresholds not configured", channel=number)
                )
            else:
                result.update.statuses[number] = classify_status(
                    channel.value, setting.on_threshold, setting.low_efficiency_threshold
                )

            if setting.morning_shift is not None:
                try:
                    _check_window(setting.morning_shift)
                except MalformedTimeOrDate as exc:
                    result.issues.append(
                        DerivationIssue(reason=f"morning window ignored: {exc}", channel=number)
                    )

            if clock is None:
                continue
            try:
                result.update.shifts[number] = self._shift_for(reading, clock, setting)
            except MalformedTimeOrDate as exc:
                result.issues.append(DerivationIssue(reason=f"shift skipped: {exc}", channel=number))

        return result

    @staticmethod
    def _reading_clock(reading: DeviceReading) -> tuple[int, int]:
        if not reading.date or not reading.time:
            raise MalformedTimeOrDate("record has no date or time")
        parse_reading_date(reading.date)
        return parse_clock(reading.time)

    def _shift_for(
        self, reading: DeviceReading, clock: tuple[int, int], setting: ChannelConfig
    ) -> str:
        if setting.night_shift is None:
            raise MalformedTimeOrDate("night shift window not configured")
        night = ShiftWindow(
            name=self.night_label,
            start=setting.night_shift.start,
            stop=setting.night_shift.stop,
        )
        hour, minute = clock
        return classify_shift(reading.date or "", hour, minute, night, day_label=self.day_label)
