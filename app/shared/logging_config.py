"""
Structured logging configuration for the knowledge service.

JSON lines in production, a readable single-line format in development
(ENVIRONMENT=development). Every record carries the request correlation ID
and any `extra={...}` fields passed by the caller.

Usage:
    from app.shared.logging_config import setup_logging

    setup_logging(service_name=settings.SERVICE_NAME)

    logger = logging.getLogger("Javari.Knowledge.Retriever")
    logger.info("Search complete", extra={"method": "hybrid", "result_count": 4})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.shared.correlation import get_correlation_id

# Attributes every LogRecord has; anything else came in through `extra`
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "correlation_id", "message", "taskName",
}

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai",
    "postgrest",
    "supabase",
    "asyncio",
)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class CorrelationIdFilter(logging.Filter):
    """Stamp the current correlation ID onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id and correlation_id != "-":
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in _extra_fields(record).items():
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)


class HumanReadableFormatter(logging.Formatter):
    """Readable format for local development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        correlation_id = getattr(record, "correlation_id", "-")

        extras = ", ".join(f"{k}={v}" for k, v in _extra_fields(record).items())
        formatted = f"{timestamp} [{record.levelname}] [{correlation_id}] {record.name}: {record.getMessage()}"
        if extras:
            formatted += f" | {extras}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(
    service_name: str,
    level: Optional[str] = None,
    json_output: Optional[bool] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        service_name: Name of the service stamped on JSON records
        level: Log level; defaults to LOG_LEVEL or INFO
        json_output: JSON vs human-readable; defaults to JSON unless
                     ENVIRONMENT=development
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, level, logging.INFO)

    environment = os.getenv("ENVIRONMENT", "production").lower()
    if json_output is None:
        json_output = environment != "development"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JSONFormatter(service_name) if json_output else HumanReadableFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger(f"{service_name}.startup").info(
        "Logging configured",
        extra={"log_level": level, "json_output": json_output, "environment": environment},
    )
