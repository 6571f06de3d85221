"""Structured JSON logging for production observability.

In dev: human-readable format
In prod (LOG_FORMAT=json): JSON lines for log aggregators (Datadog, CloudWatch, etc.)

Every record carries the current request ID (set by RequestIDMiddleware) so a
link visit and the cart calls it triggers can be correlated.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from config.settings import settings
from checkout_links.middleware.request_id import request_id_var


class RequestIDFilter(logging.Filter):
    """Copy the request ID context var onto each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """Emit structured JSON log lines."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log["exception"] = self.formatException(record.exc_info)
        request_id = getattr(record, "request_id", "-")
        if request_id and request_id != "-":
            log["request_id"] = request_id
        return json.dumps(log, default=str)


def setup_logging():
    """Configure logging based on environment."""
    log_format = settings.LOG_FORMAT
    log_level = settings.LOG_LEVEL.upper()

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDFilter())
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))

    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
