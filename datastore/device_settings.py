from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from app.schemas import DeviceSetting
from datastore.json_collection import JsonDocumentCollection
from settings import get_settings


class DeviceSettingsStore(JsonDocumentCollection[DeviceSetting]):
    """Per-device channel configuration, read-only for the reconciler."""

    document_type = DeviceSetting
    key_field = "device_id"


@lru_cache
def build_default_settings_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> DeviceSettingsStore:
    settings = get_settings()
    store_name = settings.device_settings_store_name if name is None else name
    store_path = settings.device_settings_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return DeviceSettingsStore(name=store_name, persistence_path=persistence)
