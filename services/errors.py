"""Exceptions raised while reconciling device readings."""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class ConfigNotFound(ReconciliationError, KeyError):
    """No device settings exist for a record's device."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"No device settings found for device {device_id!r}.")
        self.device_id = device_id

    def __str__(self) -> str:
        return self.args[0]


class MalformedDeviceConfig(ReconciliationError, ValueError):
    """Stored device settings could not be interpreted."""


class MalformedTimeOrDate(ReconciliationError, ValueError):
    """A date, clock time or shift bound failed to parse."""


class StoreUnavailable(ReconciliationError, RuntimeError):
    """A backing store could not be read or written; aborts the pass."""
