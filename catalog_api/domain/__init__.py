"""Domain layer.

Typed catalog records and the error taxonomy shared by every layer.
"""

from catalog_api.domain.entities import (
    MAX_PRICE,
    Attachment,
    CatalogItem,
    Principal,
    UploadDescriptor,
    price_from_cents,
    price_to_cents,
)
from catalog_api.domain.exceptions import (
    AuthError,
    CatalogError,
    ConflictError,
    IngestionError,
    NotFoundError,
    StorageError,
    StorageFatal,
    StorageTransient,
    UploadAborted,
    UploadProtocolError,
    UploadRejected,
    ValidationError,
)

__all__ = [
    # Entities
    "MAX_PRICE",
    "Attachment",
    "CatalogItem",
    "Principal",
    "UploadDescriptor",
    "price_from_cents",
    "price_to_cents",
    # Exceptions
    "AuthError",
    "CatalogError",
    "ConflictError",
    "IngestionError",
    "NotFoundError",
    "StorageError",
    "StorageFatal",
    "StorageTransient",
    "UploadAborted",
    "UploadProtocolError",
    "UploadRejected",
    "ValidationError",
]
