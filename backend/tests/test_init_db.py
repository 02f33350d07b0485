# tests/test_init_db.py
"""
Tests for seeding the shared default categories.
"""

from sqlalchemy import select

from init_db import DEFAULT_CATEGORIES, seed_default_categories
from tracker.models import PositionCategory, PositionType


class TestSeedDefaultCategories:
    """Tests for seed_default_categories."""

    async def test_seeds_every_default(self, db):
        """Should add each default category once, shared by all users."""
        added = await seed_default_categories(db)

        assert added == len(DEFAULT_CATEGORIES)
        result = await db.execute(select(PositionCategory).order_by(PositionCategory.display_order))
        categories = result.scalars().all()
        assert [c.name for c in categories] == [name for name, _ in DEFAULT_CATEGORIES]
        assert all(c.user_id is None for c in categories)

    async def test_liability_categories(self, db):
        await seed_default_categories(db)

        result = await db.execute(
            select(PositionCategory.name).where(PositionCategory.position_type == PositionType.LIABILITY)
        )
        assert set(result.scalars().all()) == {"Mortgage", "Loans", "Credit Cards"}

    async def test_idempotent(self, db):
        """Should add nothing the second time."""
        await seed_default_categories(db)

        assert await seed_default_categories(db) == 0

    async def test_fills_gaps(self, db):
        """Should only add the categories that are missing."""
        db.add(PositionCategory(user_id=None, name="Stocks", position_type=PositionType.ASSET))
        await db.flush()

        assert await seed_default_categories(db) == len(DEFAULT_CATEGORIES) - 1
