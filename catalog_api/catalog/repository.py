"""Catalog repositories.

CatalogItemRepository performs relational reads and writes inside a
caller-owned session. CacheAsideRepository sits in front of it for reads
by id: the relational store stays the source of truth and the cache is a
fail-open, rebuildable copy.
"""

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from catalog_api.catalog.models import AttachmentModel, CatalogItemModel
from catalog_api.domain.entities import CatalogItem
from catalog_api.domain.exceptions import NotFoundError, StorageFatal, StorageTransient
from catalog_api.infrastructure.cache import CacheBackend, cache_key

logger = structlog.get_logger()

CATALOG_ITEM = "catalog_item"


class CatalogItemRepository:
    """Repository for catalog item database operations.

    Example usage:
        async with session_factory() as session:
            repo = CatalogItemRepository(session)
            item = await repo.get_by_id(item_id)
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def save(self, item: CatalogItemModel) -> CatalogItemModel:
        """Add an item (and its attachments) to the session and flush.

        Args:
            item: Item to save.

        Returns:
            Saved item.
        """
        self.session.add(item)
        await self.session.flush()
        return item

    async def get_by_id(self, item_id: str) -> CatalogItemModel | None:
        """Get item by ID with its attachments loaded.

        Args:
            item_id: Item ID.

        Returns:
            Item if found, None otherwise.
        """
        query = (
            select(CatalogItemModel)
            .where(CatalogItemModel.id == item_id)
            .options(selectinload(CatalogItemModel.attachments))
        )

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_all(
        self,
        category_id: str | None = None,
        search: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[CatalogItemModel]:
        """Find items with filtering, sorting, and pagination.

        Args:
            category_id: Filter by category reference.
            search: Search in name and description.
            sort_by: Sort field (price, created_at, updated_at, name).
            sort_order: Sort order (asc, desc).
            limit: Maximum results.
            offset: Result offset for pagination.

        Returns:
            Sequence of matching items with attachments loaded.
        """
        query = select(CatalogItemModel).options(selectinload(CatalogItemModel.attachments))

        conditions = self._conditions(category_id, search)
        if conditions:
            query = query.where(and_(*conditions))

        sort_column = self._get_sort_column(sort_by)
        if sort_order.lower() == "desc":
            query = query.order_by(sort_column.desc(), CatalogItemModel.id)
        else:
            query = query.order_by(sort_column.asc(), CatalogItemModel.id)

        query = query.limit(limit).offset(offset)

        result = await self.session.execute(query)
        return result.scalars().all()

    async def count(
        self,
        category_id: str | None = None,
        search: str | None = None,
    ) -> int:
        """Count items matching filters."""
        query = select(func.count(CatalogItemModel.id))

        conditions = self._conditions(category_id, search)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.session.execute(query)
        return result.scalar_one()

    async def delete(self, item: CatalogItemModel) -> None:
        """Delete an item and, by cascade, its attachment rows."""
        await self.session.delete(item)
        await self.session.flush()

    async def key_is_referenced(self, key: str) -> bool:
        """Check whether any attachment row points at a storage key."""
        query = select(AttachmentModel.id).where(AttachmentModel.storage_key == key).limit(1)
        result = await self.session.execute(query)
        return result.first() is not None

    async def find_unfinalized_attachments(self, limit: int = 100) -> Sequence[AttachmentModel]:
        """Find attachments whose storage has not been confirmed.

        Args:
            limit: Maximum results.

        Returns:
            Oldest pending attachments first.
        """
        query = (
            select(AttachmentModel)
            .where(AttachmentModel.finalized_at.is_(None))
            .order_by(AttachmentModel.created_at, AttachmentModel.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def mark_finalized(self, attachment_ids: list[str], finalized_at: datetime) -> int:
        """Record confirmed storage for attachments.

        Args:
            attachment_ids: Attachments whose objects were stored.
            finalized_at: Confirmation timestamp.

        Returns:
            Number of rows updated.
        """
        if not attachment_ids:
            return 0
        result = await self.session.execute(
            update(AttachmentModel)
            .where(AttachmentModel.id.in_(attachment_ids))
            .values(finalized_at=finalized_at, staging_path=None)
        )
        return result.rowcount

    def _conditions(self, category_id: str | None, search: str | None) -> list[Any]:
        conditions = []
        if category_id is not None:
            conditions.append(CatalogItemModel.category_id == category_id)
        if search:
            search_pattern = f"%{search}%"
            conditions.append(
                or_(
                    CatalogItemModel.name.ilike(search_pattern),
                    CatalogItemModel.description.ilike(search_pattern),
                )
            )
        return conditions

    def _get_sort_column(self, sort_by: str) -> Any:
        """Get SQLAlchemy column for sorting.

        Args:
            sort_by: Sort field name.

        Returns:
            SQLAlchemy column.
        """
        columns = {
            "price": CatalogItemModel.price_cents,
            "created_at": CatalogItemModel.created_at,
            "updated_at": CatalogItemModel.updated_at,
            "name": CatalogItemModel.name,
        }
        return columns.get(sort_by, CatalogItemModel.created_at)


class CacheAsideRepository:
    """Read-through, write-invalidate access to catalog items.

    Reads try the cache first and fall back to the relational store,
    repopulating the cache on a hit in the store. Misses for unknown ids
    are never cached. Writers call invalidate after their commit; the
    entry is deleted rather than rewritten so a slow writer can never
    store a stale snapshot over a newer one.

    Concurrent misses for the same id each load from the store; the cache
    TTL bounds how long any stale entry can survive a failed invalidation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheBackend,
        ttl_seconds: int,
    ) -> None:
        """Initialize repository.

        Args:
            session_factory: Factory for relational sessions.
            cache: Cache backend.
            ttl_seconds: Lifetime of cached snapshots.
        """
        self.session_factory = session_factory
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def get(self, item_id: str) -> CatalogItem:
        """Get an item by id.

        Args:
            item_id: Item ID.

        Returns:
            The item snapshot.

        Raises:
            NotFoundError: If the item does not exist in the relational store.
            StorageFatal: If the relational store fails.
        """
        key = cache_key(CATALOG_ITEM, item_id)

        cached = await self._cache_get(key)
        if cached is not None:
            return cached

        item = await self._load(item_id)
        if item is None:
            raise NotFoundError(CATALOG_ITEM, item_id)

        try:
            await self.cache.set(key, json.dumps(item.to_dict()), self.ttl_seconds)
        except StorageTransient as e:
            logger.warning("Cache populate failed", key=key, error=e.message)
        return item

    async def invalidate(self, item_id: str) -> None:
        """Drop the cached snapshot of an item. Never raises."""
        key = cache_key(CATALOG_ITEM, item_id)
        try:
            await self.cache.delete(key)
        except StorageTransient as e:
            logger.warning("Cache invalidation failed", key=key, error=e.message)
            return
        logger.debug("Cache invalidated", key=key)

    async def _cache_get(self, key: str) -> CatalogItem | None:
        try:
            raw = await self.cache.get(key)
        except StorageTransient as e:
            logger.warning("Cache read failed, treating as miss", key=key, error=e.message)
            return None
        if raw is None:
            return None

        try:
            item = CatalogItem.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, ArithmeticError) as e:
            logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            return None
        logger.debug("Cache hit", key=key)
        return item

    async def _load(self, item_id: str) -> CatalogItem | None:
        try:
            async with self.session_factory() as session:
                model = await CatalogItemRepository(session).get_by_id(item_id)
                return model.to_entity() if model else None
        except SQLAlchemyError as e:
            raise StorageFatal(f"Failed to load {CATALOG_ITEM} {item_id}: {e}") from e
