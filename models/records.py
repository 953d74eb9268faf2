"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

CHANNELS = range(1, 9)
SENTINEL_CHANNEL = 1

DAY_SHIFT_LABEL = "morning"
NIGHT_SHIFT_LABEL = "night"


class ChannelStatus(str, Enum):
    """Operational state derived from a channel reading."""

    ON = "ON"
    LOW = "LOW"
    OFF = "OFF"


class ScanStrategy(str, Enum):
    """How a pass walks the eligible records."""

    paged = "paged"
    exhaustive = "exhaustive"


@dataclass(frozen=True, slots=True)
class ShiftWindow:
    """A named clock window with ``HH:MM`` bounds; ``stop`` is exclusive."""

    name: str
    start: str
    stop: str


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    channel: int
    on_threshold: Optional[float] = None
    low_efficiency_threshold: Optional[float] = None
    morning_shift: Optional[ShiftWindow] = None
    night_shift: Optional[ShiftWindow] = None


@dataclass(frozen=True, slots=True)
class DeviceConfig:
    """Per-channel classification settings for one device."""

    device_id: str
    channels: Dict[int, ChannelConfig] = field(default_factory=dict)


@dataclass(slots=True)
class ReadingUpdate:
    """Derived fields staged for a single record.

    Only channels present in ``statuses``/``shifts`` are written back; any
    other stored field is left as is.
    """

    record_id: str
    statuses: Dict[int, ChannelStatus] = field(default_factory=dict)
    shifts: Dict[int, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.statuses and not self.shifts
