"""JSON-file backed document collection shared by the stores."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Generic, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

DocumentT = TypeVar("DocumentT", bound=BaseModel)


class JsonDocumentCollection(Generic[DocumentT]):
    """Documents keyed by id, held in memory and mirrored to a JSON file.

    The file is re-read whenever its modification time moves, so records
    written by another process show up on the next query. Raw payloads are
    kept as stored; documents that fail validation stay on disk untouched.
    """

    document_type: Type[DocumentT]
    key_field: str

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._raw: Dict[str, Dict[str, Any]] = {}
        self._loaded_mtime: Optional[int] = None
        self._validated: Dict[str, Tuple[Dict[str, Any], Optional[DocumentT]]] = {}
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)

    def put(self, document: DocumentT) -> None:
        key = str(getattr(document, self.key_field))
        with self._lock:
            self._refresh()
            candidate = dict(self._raw)
            candidate[key] = document.model_dump(mode="json")
            self._commit(candidate)

    def get(self, key: str) -> Optional[DocumentT]:
        """Return the validated document or None; raises ``ValidationError`` if malformed."""
        with self._lock:
            self._refresh()
            raw = self._raw.get(key)
        if raw is None:
            return None
        return self._validate(key, raw)

    def scan(self) -> list[DocumentT]:
        with self._lock:
            self._refresh()
            documents = self._valid_documents()
        return [document.model_copy(deep=True) for document in documents]

    def __len__(self) -> int:
        with self._lock:
            self._refresh()
            return len(self._raw)

    def _validate(self, key: str, raw: Dict[str, Any]) -> DocumentT:
        return self.document_type.model_validate({**raw, self.key_field: key})

    def _valid_documents(self) -> list[DocumentT]:
        """Validated documents in insertion order; caller holds the lock."""
        documents = []
        for key, raw in self._raw.items():
            document = self._cached(key, raw)
            if document is not None:
                documents.append(document)
        return documents

    def _cached(self, key: str, raw: Dict[str, Any]) -> Optional[DocumentT]:
        """Validate ``raw`` once per stored version; None if it is invalid.

        Returned instances are shared, so callers hand out copies.
        """
        entry = self._validated.get(key)
        if entry is not None and entry[0] is raw:
            return entry[1]
        try:
            document: Optional[DocumentT] = self._validate(key, raw)
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid document in %s.",
                self.name,
                extra={"record_id": key, "reason": f"{exc.error_count()} validation errors"},
            )
            document = None
        self._validated[key] = (raw, document)
        return document

    def _refresh(self) -> None:
        if not self.persistence_path:
            return
        try:
            if not self.persistence_path.exists():
                self._raw = {}
                self._validated = {}
                self._loaded_mtime = None
                return
            mtime = self.persistence_path.stat().st_mtime_ns
            if mtime == self._loaded_mtime:
                return
            data = json.loads(self.persistence_path.read_text() or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreUnavailable(f"Could not load collection {self.name!r}: {exc}") from exc

        if not isinstance(data, dict):
            raise StoreUnavailable(f"Collection {self.name!r} is not a JSON object.")
        self._raw = {str(key): value for key, value in data.items() if isinstance(value, dict)}
        self._validated = {}
        self._loaded_mtime = mtime

    def _commit(self, candidate: Dict[str, Dict[str, Any]]) -> None:
        """Persist ``candidate`` and make it current; nothing changes on failure."""
        if self.persistence_path:
            temp_path = self.persistence_path.with_name(self.persistence_path.name + ".tmp")
            try:
                temp_path.write_text(json.dumps(candidate, indent=2, sort_keys=True))
                os.replace(temp_path, self.persistence_path)
                self._loaded_mtime = self.persistence_path.stat().st_mtime_ns
            except OSError as exc:
                raise StoreUnavailable(f"Could not write collection {self.name!r}: {exc}") from exc
        self._raw = candidate
