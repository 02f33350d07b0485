# backend/tracker/database.py
"""
Database connection and session management.

This module configures SQLAlchemy's asyncio extension with:
- Connection pooling for production performance (asyncpg)
- Environment-aware settings (aiosqlite in-memory for tests)
- Health check capabilities

Pool Configuration (configurable via environment variables):
- DB_POOL_SIZE: Persistent connections (default: 5)
- DB_POOL_MAX_OVERFLOW: Burst capacity (default: 10)
- DB_POOL_RECYCLE: Connection lifetime (default: 3600s)
- DB_POOL_PRE_PING: Health checks (default: True)

One AsyncSession is one unit of work: it is never shared between
concurrently running coroutines.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def _create_engine() -> AsyncEngine:
    """
    Create the async SQLAlchemy engine with environment-appropriate configuration.

    Configuration varies by database type:
    - SQLite (tests/dev): StaticPool so an in-memory database is shared
    - PostgreSQL: asyncpg with configurable connection pooling
    """
    if settings.is_sqlite:
        logger.info("Configuring SQLite database (aiosqlite)")
        return create_async_engine(
            settings.database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )

    logger.info(
        f"Configuring PostgreSQL database pool: "
        f"size={settings.db_pool_size}, "
        f"max_overflow={settings.db_pool_max_overflow}, "
        f"recycle={settings.db_pool_recycle}s, "
        f"pre_ping={settings.db_pool_pre_ping}"
    )

    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_timeout=30,
        echo=settings.debug,
    )


engine = _create_engine()
SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session per request.

    The request is one transaction: it commits when the handler returns
    normally and rolls back on any exception.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database_health() -> dict:
    """
    Check database connectivity and pool status.

    Used by health check endpoints to verify database availability.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

        pool = engine.pool
        pool_status = {"class": type(pool).__name__}
        if hasattr(pool, "checkedout"):
            pool_status.update({
                "pool_size": pool.size(),
                "checked_in": pool.checkedin(),
                "checked_out": pool.checkedout(),
                "overflow": pool.overflow(),
            })

        return {
            "status": "healthy",
            "database": "postgresql" if not settings.is_sqlite else "sqlite",
            "pool": pool_status,
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }
