from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_READINGS_NAME_ENV = "READINGS_STORE_NAME"
_READINGS_PATH_ENV = "READINGS_STORE_PATH"
_SETTINGS_NAME_ENV = "DEVICE_SETTINGS_STORE_NAME"
_SETTINGS_PATH_ENV = "DEVICE_SETTINGS_PATH"
_INTERVAL_ENV = "RECONCILE_INTERVAL_SECONDS"
_BATCH_SIZE_ENV = "RECONCILE_BATCH_SIZE"
_STRATEGY_ENV = "RECONCILE_SCAN_STRATEGY"
_WORKER_COUNT_ENV = "RECONCILER_WORKER_COUNT"
_SCHEDULER_ENABLED_ENV = "RECONCILE_SCHEDULER_ENABLED"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_SCAN_STRATEGIES = ("paged", "exhaustive")
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    readings_store_name: str
    readings_store_path: Optional[str]
    device_settings_store_name: str
    device_settings_path: Optional[str]
    reconcile_interval_seconds: float
    reconcile_batch_size: int
    scan_strategy: str
    reconciler_workers: int
    scheduler_enabled: bool
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_strategy(default: str) -> str:
    candidate = _read_str_env(_STRATEGY_ENV, default).lower()
    return candidate if candidate in _SCAN_STRATEGIES else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        readings_store_name=_read_str_env(_READINGS_NAME_ENV, "devicedatas"),
        readings_store_path=_read_optional_env(_READINGS_PATH_ENV, "./tmp/devicedatas.json"),
        device_settings_store_name=_read_str_env(_SETTINGS_NAME_ENV, "device_settings"),
        device_settings_path=_read_optional_env(_SETTINGS_PATH_ENV, "./tmp/device_settings.json"),
        reconcile_interval_seconds=_read_positive_float(_INTERVAL_ENV, 30.0),
        reconcile_batch_size=_read_positive_int(_BATCH_SIZE_ENV, 100),
        scan_strategy=_read_strategy("paged"),
        reconciler_workers=_read_positive_int(_WORKER_COUNT_ENV, 1),
        scheduler_enabled=_read_bool(_SCHEDULER_ENABLED_ENV, True),
        log_level=_read_log_level("INFO"),
    )
