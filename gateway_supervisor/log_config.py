"""
Structured logging for the gateway supervisor.

Every log line is a single JSON object:

    {"ts": ..., "level": "info", "logger": "supervisor", "event": "gateway.ready", ...}

Callers log dotted event names with keyword context instead of formatted
messages. Exceptions are passed as ``exc=`` and rendered as type + message.
"""

import json
import logging
import os
import sys
import time
from typing import Any

_CONFIGURED = False
_ROOT_NAME = "gateway_supervisor"


class JsonFormatter(logging.Formatter):
    """Render records produced by StructuredLogger as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": round(record.created, 3),
            "level": record.levelname.lower(),
            "logger": record.name.removeprefix(f"{_ROOT_NAME}."),
            "event": record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if fields:
            payload.update(fields)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    """Install the JSON handler once. Safe to call from every module."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger(_ROOT_NAME)
    root.handlers = [handler]
    root.setLevel(getattr(logging, resolved, logging.INFO))
    root.propagate = False
    _CONFIGURED = True


class StructuredLogger:
    """Event logger that carries bound context into every line."""

    def __init__(self, logger: logging.Logger, context: dict[str, Any]):
        self._logger = logger
        self.context = context

    def bind(self, **context: Any) -> "StructuredLogger":
        return StructuredLogger(self._logger, {**self.context, **context})

    def _emit(self, level: int, event: str, fields: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return

        exc = fields.pop("exc", None)
        merged = {**self.context, **fields}
        if exc is not None:
            merged["error_type"] = type(exc).__name__
            merged["error"] = str(exc)

        self._logger.log(level, event, extra={"fields": merged})

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, fields)

    def warn(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, fields)

    warning = warn

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, fields)


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Component name (e.g. "supervisor", "directory")
        **context: Fields attached to every line (service, sandbox_id, ...)
    """
    return StructuredLogger(logging.getLogger(f"{_ROOT_NAME}.{name}"), context)


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.time() start mark."""
    return int((time.time() - start) * 1000)
