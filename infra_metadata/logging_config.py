"""Structured logging configuration (JSON or text format)."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import LoggingConfig

# Structured fields callers attach through ``extra=``
_EXTRA_FIELDS = ("watcher", "version", "previous_version", "path", "status_code", "key")

# Attributes lifted from metadata errors (TransportError, DecodeError, NotFound)
_ERROR_ATTRS = ("path", "status_code", "key")


def error_fields(exc: BaseException) -> dict[str, Any]:
    """Structured context carried by a metadata error, for use as ``extra``."""
    fields = {}
    for attr in _ERROR_ATTRS:
        val = getattr(exc, attr, None)
        if val is not None:
            fields[attr] = val
    return fields


class JSONFormatter(logging.Formatter):
    """Emits log records as single-line JSON objects.

    Error context (request path, HTTP status, lookup key) is taken from
    ``extra`` fields first and otherwise from the exception in ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                payload[key] = val

        if record.exc_info and record.exc_info[1]:
            for key, val in error_fields(record.exc_info[1]).items():
                payload.setdefault(key, val)
            payload["error_type"] = type(record.exc_info[1]).__name__
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(config: LoggingConfig) -> None:
    """Install a single stderr handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if config.format == "json" else TextFormatter())
    root.addHandler(handler)

    # Connection pool chatter from every poll tick
    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
