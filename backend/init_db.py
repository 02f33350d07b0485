#!/usr/bin/env python3
# backend/init_db.py
"""
Database initialization script.

Creates all tables (for development databases not managed by Alembic)
and seeds the shared default position categories:
    python backend/init_db.py
"""
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.database import SessionLocal, engine
from tracker.models import Base, PositionCategory, PositionType
from tracker.utils import setup_logging

logger = logging.getLogger(__name__)

# (name, type); user_id NULL makes them visible to every user
DEFAULT_CATEGORIES: list[tuple[str, PositionType]] = [
    ("Stocks", PositionType.ASSET),
    ("Funds", PositionType.ASSET),
    ("Crypto", PositionType.ASSET),
    ("Cash", PositionType.ASSET),
    ("Real Estate", PositionType.ASSET),
    ("Domains", PositionType.ASSET),
    ("Other", PositionType.ASSET),
    ("Mortgage", PositionType.LIABILITY),
    ("Loans", PositionType.LIABILITY),
    ("Credit Cards", PositionType.LIABILITY),
]


async def seed_default_categories(db: AsyncSession) -> int:
    """Insert the shared categories that do not exist yet. Returns how many were added."""
    result = await db.execute(
        select(PositionCategory.name).where(PositionCategory.user_id.is_(None))
    )
    existing = set(result.scalars().all())

    added = 0
    for order, (name, position_type) in enumerate(DEFAULT_CATEGORIES):
        if name in existing:
            continue
        db.add(PositionCategory(user_id=None, name=name, position_type=position_type, display_order=order))
        added += 1

    await db.flush()
    return added


async def init_db() -> None:
    """Create all database tables defined in models, then seed defaults."""
    logger.info("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        added = await seed_default_categories(session)
        await session.commit()

    logger.info(f"Tables created, {added} default categories added")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_db())
