"""Catalog query service.

Paginated, filtered listing straight from the relational store. Listings
are not cached; single-item reads go through CacheAsideRepository.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_api.catalog.repository import CatalogItemRepository
from catalog_api.domain.entities import CatalogItem
from catalog_api.domain.exceptions import StorageFatal

T = TypeVar("T")


@dataclass
class ItemFilter:
    """Filter parameters for item listing.

    Attributes:
        category_id: Filter by category reference.
        search: Text search in name/description.
    """

    category_id: str | None = None
    search: str | None = None


@dataclass
class PaginationParams:
    """Pagination parameters.

    Attributes:
        page: Page number (1-indexed).
        page_size: Items per page.
        sort_by: Sort field.
        sort_order: Sort order (asc/desc).
    """

    page: int = 1
    page_size: int = 20
    sort_by: str = "created_at"
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        """Calculate offset from page number."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        """Get limit (alias for page_size)."""
        return self.page_size


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result container."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class CatalogQueryService:
    """Read-only catalog listing."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def search_items(
        self,
        filters: ItemFilter,
        pagination: PaginationParams,
    ) -> PaginatedResult[CatalogItem]:
        """Search items with filters and pagination.

        Args:
            filters: Filter parameters.
            pagination: Pagination parameters.

        Returns:
            Paginated item snapshots (finalized attachments only).

        Raises:
            StorageFatal: If the relational store fails.
        """
        try:
            async with self.session_factory() as session:
                repository = CatalogItemRepository(session)
                models = await repository.find_all(
                    category_id=filters.category_id,
                    search=filters.search,
                    sort_by=pagination.sort_by,
                    sort_order=pagination.sort_order,
                    limit=pagination.limit,
                    offset=pagination.offset,
                )
                total = await repository.count(
                    category_id=filters.category_id,
                    search=filters.search,
                )
                items = [model.to_entity() for model in models]
        except SQLAlchemyError as e:
            raise StorageFatal(f"Failed to list catalog items: {e}") from e

        return PaginatedResult(
            items=items,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )
