"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from fuel_dispatch.app.core.config import settings


def _engine_options() -> dict:
    # SQLite drivers reject pool sizing arguments
    if settings.database_url.startswith("sqlite"):
        return {"echo": settings.db_echo, "future": True}
    return {
        "echo": settings.db_echo,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "future": True,
    }


# Create async engine
engine = create_async_engine(settings.database_url, **_engine_options())

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention used by every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db():
    """
    FastAPI dependency for database sessions.

    Yields an async database session and ensures it's properly closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(db: AsyncSession):
    """
    Run a block of writes as one transaction.

    Commits when the block exits normally and rolls back on any exception,
    so multi-row effects are applied together or not at all.

    Usage:
        async with unit_of_work(db):
            db.add(discharge)
            await db.execute(update(...))
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
