# tests/utils/test_sql.py
"""
Tests for SQL utility functions.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from tracker.models import Quote
from tracker.utils.sql import escape_like_pattern, upsert_rows


class TestEscapeLikePattern:
    """Tests for escape_like_pattern function."""

    def test_escape_percent_wildcard(self):
        """Should escape % wildcard."""
        assert escape_like_pattern("test%value") == "test\\%value"

    def test_escape_underscore_wildcard(self):
        """Should escape _ wildcard."""
        assert escape_like_pattern("test_value") == "test\\_value"

    def test_escape_backslash(self):
        """Should escape backslash."""
        assert escape_like_pattern("test\\value") == "test\\\\value"

    def test_no_escape_needed(self):
        """Should return unchanged if no special characters."""
        assert escape_like_pattern("Vanguard All-World") == "Vanguard All-World"

    def test_escape_order_matters(self):
        """Should escape backslash before wildcards to avoid double escaping."""
        assert escape_like_pattern("\\%") == "\\\\\\%"


class TestUpsertRows:
    """Tests for the dialect-aware upsert used by the price and FX caches."""

    async def test_empty_rows_write_nothing(self, db):
        """Should return 0 without touching the database."""
        assert await upsert_rows(db, Quote, [], ["symbol", "date"], ["price"]) == 0

    async def test_inserts_then_updates_on_conflict(self, db):
        """Should update the price of an existing (symbol, date) row."""
        day = date(2024, 3, 1)
        await upsert_rows(
            db, Quote,
            [{"symbol": "AAPL", "date": day, "price": Decimal("180"), "provider": "mock"}],
            ["symbol", "date"], ["price", "provider"],
        )
        written = await upsert_rows(
            db, Quote,
            [{"symbol": "AAPL", "date": day, "price": Decimal("181.5"), "provider": "mock"}],
            ["symbol", "date"], ["price", "provider"],
        )

        rows = (await db.execute(select(Quote.price).where(Quote.symbol == "AAPL"))).scalars().all()
        assert written == 1
        assert rows == [Decimal("181.5")]
