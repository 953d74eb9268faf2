"""Pure classification rules for channel readings.

``classify_status`` maps a numeric reading onto ``ON``/``LOW``/``OFF`` using a
channel's two thresholds. ``classify_shift`` attributes a reading's clock time
to the night window or to the day label, moving the small hours of an
overnight window back onto the calendar day the shift started.
"""

from __future__ import annotations

import re
from datetime import date, timedelta

from models.records import DAY_SHIFT_LABEL, ChannelStatus, ShiftWindow
from services.errors import MalformedTimeOrDate

_CLOCK_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{1,2})\s*$")
_DATE_PATTERN = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{1,2})\s*$")
_MINUTES_PER_DAY = 24 * 60


def classify_status(
    value: float, on_threshold: float, low_efficiency_threshold: float
) -> ChannelStatus:
    """Classify a channel reading against its thresholds.

    Inverted thresholds are not corrected; whichever comparison matches first
    wins.
    """
    if value > low_efficiency_threshold:
        return ChannelStatus.ON
    if value > on_threshold:
        return ChannelStatus.LOW
    return ChannelStatus.OFF


def parse_clock(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` into ``(hour, minute)``."""
    match = _CLOCK_PATTERN.match(value or "")
    if match is None:
        raise MalformedTimeOrDate(f"invalid clock time {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise MalformedTimeOrDate(f"clock time {value!r} is out of range")
    return hour, minute


def parse_reading_date(value: str) -> date:
    """Parse a ``YY/MM/DD`` reading date, anchoring the year in 2000."""
    match = _DATE_PATTERN.match(value or "")
    if match is None:
        raise MalformedTimeOrDate(f"invalid reading date {value!r}")
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(2000 + year, month, day)
    except ValueError as exc:
        raise MalformedTimeOrDate(f"reading date {value!r} is out of range") from exc


def format_reading_date(value: date) -> str:
    # Year is unpadded like month and day: 2005-01-09 renders as 5/1/9.
    return f"{value.year % 100}/{value.month}/{value.day}"


def subtract_one_day(value: str) -> str:
    """Return the ``YY/MM/DD`` date one calendar day before ``value``."""
    return format_reading_date(parse_reading_date(value) - timedelta(days=1))


def _minutes(value: str) -> int:
    hour, minute = parse_clock(value)
    return hour * 60 + minute


def classify_shift(
    reading_date: str,
    hour: int,
    minute: int,
    night: ShiftWindow,
    day_label: str = DAY_SHIFT_LABEL,
) -> str:
    """Label a reading time as ``"<date> <shift>"``.

    Only the night window is tested; anything outside it gets ``day_label``.
    When the night window wraps past midnight, readings before its stop time
    belong to the shift that began the previous day.
    """
    current = hour * 60 + minute
    if not 0 <= current < _MINUTES_PER_DAY:
        raise MalformedTimeOrDate(f"clock time {hour}:{minute} is out of range")
    night_start = _minutes(night.start)
    night_stop = _minutes(night.stop)

    if night_start > night_stop:
        if current >= night_start:
            return f"{reading_date} {night.name}"
        if current < night_stop:
            return f"{subtract_one_day(reading_date)} {night.name}"
        return f"{reading_date} {day_label}"

    if night_start <= current < night_stop:
        return f"{reading_date} {night.name}"
    return f"{reading_date} {day_label}"
