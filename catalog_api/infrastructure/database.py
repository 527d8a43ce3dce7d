"""Database configuration and session management.

Provides async SQLAlchemy engine and session factory builders. The engine
is created once per application and handed to services explicitly.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from catalog_api.infrastructure.config import Settings

# Base class for models
Base = declarative_base()


def create_engine(settings: Settings, **kwargs) -> AsyncEngine:
    """Create the async engine for the configured database.

    Args:
        settings: Application settings.
        **kwargs: Extra engine options (e.g. poolclass for tests).

    Returns:
        AsyncEngine instance.
    """
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        **kwargs,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine.

    Args:
        engine: Async engine.

    Returns:
        Session factory producing AsyncSession objects.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables. Development and test helper only."""
    # Import models so they are registered on Base.metadata
    from catalog_api.catalog import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Check database connectivity.

    Returns:
        True if a trivial query succeeds.
    """
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
    return True
