"""Structured JSON logging with correlation ID support.

Two ways to attach fields to a line:
- API code: ``extra={"extra_fields": safe_log_context(...)}`` (redacted)
- domain code: plain ``extra={"reservation_id": ...}`` (internal ids only)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "extra_fields"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, correlationId."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlationId"] = correlation_id

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value
        entry.update(getattr(record, "extra_fields", None) or {})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    return handler


def configure_root_logging(level: int = logging.INFO) -> None:
    """Send every ``stayza.*`` stdlib logger through one JSON handler.

    Safe to call more than once (each app instance calls it).
    """
    base = logging.getLogger("stayza")
    if any(isinstance(h.formatter, JsonFormatter) for h in base.handlers):
        return
    base.addHandler(_json_handler())
    base.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Logger with its own JSON handler (API and worker modules)."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_json_handler())
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger
