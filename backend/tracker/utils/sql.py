# backend/tracker/utils/sql.py
"""
SQL utility functions.

This module provides helpers for query construction shared by the services:
- escape_like_pattern: Escape special characters in LIKE patterns
- upsert_rows: INSERT ... ON CONFLICT DO UPDATE for PostgreSQL and SQLite

Usage:
    from tracker.utils.sql import escape_like_pattern, upsert_rows

    safe_pattern = f"%{escape_like_pattern(user_input)}%"
    query = query.where(Position.name.ilike(safe_pattern, escape="\\\\"))

    await upsert_rows(db, Quote, rows, ["symbol", "date"], ["price", "provider"])
"""

from collections.abc import Sequence
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def escape_like_pattern(value: str) -> str:
    """
    Escape special characters in a SQL LIKE pattern.

    SQL LIKE patterns use special characters:
    - % matches any sequence of characters
    - _ matches any single character
    - \\ is the escape character

    Example:
        >>> escape_like_pattern("100%_cash")
        '100\\\\%\\\\_cash'
    """
    # Backslash first, it is the escape character
    return (
        value
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


async def upsert_rows(
        db: AsyncSession,
        model: type,
        rows: Sequence[dict[str, Any]],
        conflict_columns: Sequence[str],
        update_columns: Sequence[str],
) -> int:
    """
    Insert rows, updating update_columns where conflict_columns already exist.

    Picks the dialect-specific insert construct from the session's bind, so
    the same cache writes run on PostgreSQL and on the SQLite test database.

    Returns:
        Number of rows sent to the database
    """
    if not rows:
        return 0

    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

    stmt = insert(model).values(list(rows))
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: getattr(stmt.excluded, column) for column in update_columns},
    )
    await db.execute(stmt)
    return len(rows)
