# backend/tracker/utils/logging.py
"""
Logging configuration for the position tracker.

One stdout handler on the root logger, text or JSON, with the request's
correlation ID attached to every record.

Usage:
    from tracker.utils import setup_logging

    # In main.py, before creating the FastAPI app
    setup_logging()

Log Levels:
    DEBUG   - Cache hits/misses, singleton initialization
    INFO    - Ledger mutations, recalculations, price refreshes
    WARNING - Missing prices or FX rates, rejected requests
    ERROR   - Failed recalculations, provider outages

Environment Configuration:
    LOG_LEVEL=INFO        # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_FORMAT=text       # text (default) or json
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from tracker.config import settings
from tracker.utils.context import get_correlation_id

# timestamp | level | correlation_id | logger | message
TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "-"

# Third-party loggers kept at WARNING
NOISY_LOGGERS = [
    "yfinance",
    "peewee",
    "urllib3",
    "httpx",
    "httpcore",
    "aiosqlite",
    "asyncio",
]

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# LogRecord attributes that are not user-supplied `extra` fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "correlation_id",
    "message",
    "asctime",
}


# =============================================================================
# FILTER / FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """Sets record.correlation_id from the request context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "...", "level": "INFO", "logger": "tracker.services...",
         "correlation_id": "...", "message": "...", "extra": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)
        if extra:
            entry["extra"] = extra

        return json.dumps(entry)


# =============================================================================
# SETUP
# =============================================================================

def parse_log_level(value: str) -> int:
    """
    Raises:
        ValueError: Unknown level name
    """
    name = value.upper().strip()
    if name not in LEVELS:
        raise ValueError(f"Invalid log level: '{value}'. Valid levels are: {', '.join(LEVELS)}")
    return LEVELS[name]


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure the root logger. Safe to call more than once.

    Args:
        level: Log level name (default: settings.log_level)
        log_format: 'text' or 'json' (default: settings.log_format)
    """
    level_name = level or settings.log_level
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.setLevel(parse_log_level(level_name))
    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level_name}, format={format_type}")
