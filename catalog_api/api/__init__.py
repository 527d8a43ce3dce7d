"""API layer module.

Contains FastAPI routers, middleware and response schemas.
"""

from catalog_api.api.attachments import router as attachments_router
from catalog_api.api.health import router as health_router
from catalog_api.api.items import router as items_router

__all__ = [
    "attachments_router",
    "health_router",
    "items_router",
]
