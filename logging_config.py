from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Any, Dict, Iterable, Sequence

from settings import get_settings

# Keys the reconciler passes through ``extra=``; rendered as ``key=value``.
PASS_CONTEXT_KEYS = (
    "pass_id",
    "strategy",
    "offset",
    "row_count",
    "scanned",
    "updated",
    "unchanged",
    "skipped",
    "failed",
    "duration_ms",
)
RECORD_CONTEXT_KEYS = (
    "record_id",
    "device_id",
    "channel",
    "status",
    "reason",
)

# Chatty third-party loggers held at WARNING unless LOG_LEVEL is DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_configured = False


class ContextualFormatter(logging.Formatter):
    """Append pass and record context to each line, timestamps in UTC."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        keys = extra_keys if extra_keys is not None else PASS_CONTEXT_KEYS + RECORD_CONTEXT_KEYS
        self._extra_keys: Sequence[str] = tuple(keys)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = [
            f"{key}={getattr(record, key)}"
            for key in self._extra_keys
            if getattr(record, key, None) is not None
        ]
        if not context:
            return message
        return f"{message} | {' '.join(context)}"


def _logging_dict(level: str | int) -> Dict[str, Any]:
    quiet_level = level if str(level).upper() == "DEBUG" else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "contextual": {
                "()": "logging_config.ContextualFormatter",
                "fmt": "%(asctime)sZ | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
                "style": "%",
                "extra_keys": list(PASS_CONTEXT_KEYS + RECORD_CONTEXT_KEYS),
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "contextual",
            }
        },
        "loggers": {name: {"level": quiet_level} for name in _NOISY_LOGGERS},
        "root": {"handlers": ["default"], "level": level},
    }


def configure_logging(level: str | int | None = None) -> None:
    """Install the contextual formatter on the root logger once per process.

    ``level`` overrides ``LOG_LEVEL``. Calls after the first are ignored so the
    API lifespan and the ``run-once`` command can both call it safely.
    """
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level
    dictConfig(_logging_dict(log_level))
    _configured = True
