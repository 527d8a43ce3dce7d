"""Shared resource context.

Holds the pooled clients every request uses. Built once at startup and
passed explicitly into services; nothing here is a module-level global.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from catalog_api.infrastructure.cache import CacheBackend, build_cache_backend
from catalog_api.infrastructure.config import Settings
from catalog_api.infrastructure.database import create_engine, create_session_factory
from catalog_api.infrastructure.object_store import ObjectStore, build_object_store
from catalog_api.infrastructure.staging import StagingArea

logger = structlog.get_logger()


@dataclass
class ResourceContext:
    """Pooled clients and settings shared by all requests.

    Attributes:
        settings: Application settings.
        engine: Async database engine.
        session_factory: Factory for relational sessions.
        cache: Cache backend.
        object_store: Object store gateway.
        staging: Local staging area for uploads.
    """

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    cache: CacheBackend
    object_store: ObjectStore
    staging: StagingArea

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResourceContext":
        """Build every resource from settings."""
        engine = create_engine(settings)
        return cls(
            settings=settings,
            engine=engine,
            session_factory=create_session_factory(engine),
            cache=build_cache_backend(settings),
            object_store=build_object_store(settings),
            staging=StagingArea(settings.staging_dir),
        )

    async def close(self) -> None:
        """Release pooled connections."""
        await self.cache.close()
        await self.engine.dispose()
        logger.info("Resources closed")
