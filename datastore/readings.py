from __future__ import annotations

import copy
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from app.schemas import DeviceReading
from datastore.json_collection import JsonDocumentCollection
from models.records import ReadingUpdate
from settings import get_settings


def _set_channel_field(document: Dict[str, Any], number: int, name: str, value: Any) -> None:
    """Write one derived field in the document's own layout.

    Documents with a ``channels`` mapping get ``channels.<n>.<name>``; flat
    documents get ``ch<n>_<name>`` next to their ``ch<n>`` reading.
    """
    channels = document.get("channels")
    if not isinstance(channels, dict):
        document[f"ch{number}_{name}"] = value
        return
    key: Any = number if number in channels else str(number)
    entry = channels.get(key)
    if not isinstance(entry, dict):
        entry = channels[key] = {}
    entry[name] = value


def write_derived_fields(document: Dict[str, Any], update: ReadingUpdate) -> None:
    """Patch ``document`` in place with the statuses and shifts in ``update``."""
    for number, status in update.statuses.items():
        _set_channel_field(document, number, "status", status.value)
    for number, shift in update.shifts.items():
        _set_channel_field(document, number, "shift", shift)


class ReadingStore(JsonDocumentCollection[DeviceReading]):
    """Telemetry records awaiting or carrying derived channel fields."""

    document_type = DeviceReading
    key_field = "record_id"

    def find_unenriched(self, skip: int = 0, limit: Optional[int] = None) -> list[DeviceReading]:
        """Return eligible records in insertion order, windowed by ``skip``/``limit``.

        Each stored version is validated once, so walking the collection page by
        page does not re-parse documents that have not changed.
        """
        with self._lock:
            self._refresh()
            eligible = [reading for reading in self._valid_documents() if reading.is_unenriched]
        end = None if limit is None else skip + limit
        return [reading.model_copy(deep=True) for reading in eligible[skip:end]]

    def bulk_update(self, updates: Sequence[ReadingUpdate]) -> int:
        """Apply staged updates in one write; returns the number of records changed.

        Only the derived keys are touched; every other key of the stored
        document, legacy identifiers and raw readings included, is written back
        as it was loaded. Updates for missing or invalid records are ignored.
        """
        with self._lock:
            self._refresh()
            changed: Dict[str, Dict[str, Any]] = {}
            for update in updates:
                if update.is_empty:
                    continue
                document = changed.get(update.record_id)
                if document is None:
                    raw = self._raw.get(update.record_id)
                    if raw is None or self._cached(update.record_id, raw) is None:
                        continue
                    document = changed[update.record_id] = copy.deepcopy(raw)
                write_derived_fields(document, update)
            if not changed:
                return 0
            candidate = dict(self._raw)
            candidate.update(changed)
            self._commit(candidate)
            return len(changed)


@lru_cache
def build_default_readings_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> ReadingStore:
    settings = get_settings()
    store_name = settings.readings_store_name if name is None else name
    store_path = settings.readings_store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return ReadingStore(name=store_name, persistence_path=persistence)
