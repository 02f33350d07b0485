# backend/tracker/utils/__init__.py
"""
Cross-cutting utilities:
- logging: Root logger setup with correlation IDs
- context: Request-scoped correlation ID
- date_utils: Date ranges and month arithmetic
- sql: LIKE escaping and dialect-aware upserts

Usage:
    from tracker.utils import setup_logging, get_correlation_id
    from tracker.utils.date_utils import date_range
"""

from tracker.utils.context import get_correlation_id, reset_correlation_id, set_correlation_id
from tracker.utils.logging import setup_logging
from tracker.utils.sql import escape_like_pattern

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "reset_correlation_id",
    "escape_like_pattern",
]
