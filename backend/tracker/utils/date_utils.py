# backend/tracker/utils/date_utils.py
"""
Date utility functions for the position ledger.

Shared date arithmetic for the price caches, the FX service and the
analytics series. Centralizing these keeps day and month stepping
consistent across services.

Usage:
    from tracker.utils.date_utils import date_range, add_months

    days = date_range(start_date, end_date)
"""

from datetime import date, datetime, timedelta, timezone


def date_range(start_date: date, end_date: date) -> list[date]:
    """
    Every calendar day from start_date to end_date, inclusive.

    Example:
        >>> date_range(date(2024, 1, 30), date(2024, 2, 1))
        [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]
    """
    days = []
    current = start_date
    while current <= end_date:
        days.append(current)
        current += timedelta(days=1)
    return days


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, months: int) -> date:
    """
    Shift a date by whole months, clamping the day to the target month.

    Example:
        >>> add_months(date(2024, 1, 31), 1)
        date(2024, 2, 29)
    """
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    # Last day of the target month
    next_month = date(year + month // 12, month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(d.day, last_day))


def months_between(earlier: date, later: date) -> int:
    """Calendar months between two dates, ignoring the day of month."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def utc_today() -> date:
    """Current date in UTC; all ledger dates are UTC calendar days."""
    return datetime.now(timezone.utc).date()
