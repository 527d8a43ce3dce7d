"""Catalog persistence.

Relational models, repositories and the listing query service.
"""

from catalog_api.catalog.models import AttachmentModel, CatalogItemModel
from catalog_api.catalog.repository import (
    CATALOG_ITEM,
    CacheAsideRepository,
    CatalogItemRepository,
)
from catalog_api.catalog.service import (
    CatalogQueryService,
    ItemFilter,
    PaginatedResult,
    PaginationParams,
)

__all__ = [
    # Models
    "AttachmentModel",
    "CatalogItemModel",
    # Repositories
    "CATALOG_ITEM",
    "CacheAsideRepository",
    "CatalogItemRepository",
    # Queries
    "CatalogQueryService",
    "ItemFilter",
    "PaginatedResult",
    "PaginationParams",
]
