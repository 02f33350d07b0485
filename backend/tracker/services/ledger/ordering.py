# backend/tracker/services/ledger/ordering.py
"""
Timeline ordering for ledger events and snapshots.

Every place that linearizes a position's history (validator, recalculation,
profit/loss basis selection) sorts with timeline_sort_key. Order:

    1. effective date, ascending (ISO "YYYY-MM-DD")
    2. created_at, ascending; unsaved items sort last on their day
    3. id, ascending; unsaved items sort last

Keys are plain strings and ints so that the same key works for ORM rows,
LedgerEvent / SnapshotState dataclasses and anything else exposing
`date`, `created_at` and `id` attributes.
"""

import sys
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any, TypeVar

# Creation timestamp assumed for events that are not persisted yet
NEW_RECORD_CREATED_AT_SORT_KEY = "9999-12-31T23:59:59.999999"
NEW_RECORD_ID_SORT_KEY = sys.maxsize

T = TypeVar("T")


def normalize_timestamp(value: datetime | None) -> datetime | None:
    """
    Convert a timestamp to naive UTC.

    PostgreSQL returns aware datetimes, SQLite returns naive ones stored as
    UTC; both compare equal after normalization.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _date_key(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _created_at_key(value: datetime | None) -> str:
    normalized = normalize_timestamp(value)
    if normalized is None:
        return NEW_RECORD_CREATED_AT_SORT_KEY
    return normalized.isoformat(timespec="microseconds")


def timeline_sort_key(item: Any) -> tuple[str, str, int]:
    """Sort key implementing the (date, created_at, id) timeline order."""
    item_id = getattr(item, "id", None)
    return (
        _date_key(item.date),
        _created_at_key(getattr(item, "created_at", None)),
        NEW_RECORD_ID_SORT_KEY if item_id is None else item_id,
    )


def sort_timeline(items: Iterable[T], reverse: bool = False) -> list[T]:
    """
    Return items in timeline order.

    Use reverse=True for "latest first" selection. Ties on the full key keep
    their input order, so a batch of unsaved same-day events keeps the order
    it was submitted in.
    """
    return sorted(items, key=timeline_sort_key, reverse=reverse)


def created_no_later_than(item: Any, other: Any) -> bool:
    """True if item was created at or before other (unsaved items never are)."""
    item_ts = normalize_timestamp(getattr(item, "created_at", None))
    other_ts = normalize_timestamp(getattr(other, "created_at", None))
    if item_ts is None:
        return False
    if other_ts is None:
        return True
    return item_ts <= other_ts
