"""Logging setup for the budget_revision package (plain text or one JSON object per line)."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from flask import Flask, g, has_request_context, request

_LOGGER_PREFIX = "budget_revision"

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(username)s/%(unit_id)s] %(message)s"


class RequestContextFilter(logging.Filter):
    """Attach the acting user and unit (when inside a request) to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        username = None
        unit_id = None
        path = None
        if has_request_context():
            ctx = g.get("budget_ctx")
            if ctx is not None:
                username = ctx.username
                unit_id = ctx.unit_id
            path = request.path
        record.username = username or "-"
        record.unit_id = unit_id if unit_id is not None else "-"
        record.path = path
        return True


class _JSONEncoder(json.JSONEncoder):
    """Handle datetime and Decimal in log payloads."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the budget_revision namespace."""
    if name.startswith(_LOGGER_PREFIX):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(app: Flask) -> None:
    """Configure the package logger from LOG_LEVEL / LOG_FORMAT (idempotent per handler)."""
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())

    for existing in list(logger.handlers):
        if getattr(existing, "_budget_handler", False):
            logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler._budget_handler = True
    handler.addFilter(RequestContextFilter())
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
