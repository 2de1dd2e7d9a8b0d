"""
Structured JSON logging.

Every line is one JSON object: timestamp, level, logger, message, the
request's correlation id when there is one, and any ``extra={...}`` fields
(call_id, broadcast_id, event_type, ...) as top-level keys.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from broadcaster.config import get_settings

# Filled per request by CorrelationIdMiddleware.
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Third-party loggers held at WARNING unless overridden by env.
_QUIET_LOGGERS = {
    "httpx": None,
    "httpcore": None,
    "uvicorn.access": None,
    "sqlalchemy.engine": "SQLALCHEMY_LOG_LEVEL",
    "sqlalchemy.pool": "SQLALCHEMY_LOG_LEVEL",
}


class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            payload["correlation_id"] = correlation_id

        context = getattr(record, "extra_data", None)
        if isinstance(context, dict):
            payload.update(context)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES or key == "extra_data":
                continue
            # Never let a context field shadow a base field.
            payload[f"extra_{key}" if key in payload else key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def get_logger(name: str) -> logging.Logger:
    """Module logger; output is configured once by ``setup_logging``."""
    return logging.getLogger(name)


def setup_logging(level: str | None = None) -> None:
    """Install the JSON handler on the root logger.

    Args:
        level: Root level override; defaults to ``Settings.log_level``.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or get_settings().log_level)

    for name, env_var in _QUIET_LOGGERS.items():
        override = os.getenv(env_var, "").strip().upper() if env_var else ""
        logging.getLogger(name).setLevel(override or logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context: Any,
) -> None:
    """Log ``message`` with ``context`` merged into the JSON line."""
    logger.log(level, message, extra={"extra_data": context})
