"""API schemas for the catalog API.

Pydantic models for response serialization. Request bodies are multipart
and are validated by the ingestion pipeline and the item documents in
the catalog service.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from catalog_api.domain.entities import Attachment, CatalogItem


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Item Schemas
# ============================================================================


class AttachmentResponse(BaseModel):
    """Finalized attachment."""

    id: str
    content_type: str
    size: int = Field(..., description="Size in bytes")
    checksum: str = Field(..., description="SHA-256 hex digest")
    filename: str | None = None
    position: int

    @classmethod
    def from_entity(cls, attachment: Attachment) -> "AttachmentResponse":
        return cls(
            id=attachment.id,
            content_type=attachment.content_type,
            size=attachment.size,
            checksum=attachment.checksum,
            filename=attachment.filename,
            position=attachment.position,
        )


class ItemResponse(BaseModel):
    """Catalog item."""

    id: str
    name: str
    description: str | None = None
    price: Decimal = Field(..., description="Price with two decimal places")
    category_id: str | None = None
    attachments: list[AttachmentResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, item: CatalogItem) -> "ItemResponse":
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            price=item.price,
            category_id=item.category_id,
            attachments=[AttachmentResponse.from_entity(a) for a in item.attachments],
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class ItemListResponse(PaginatedResponse):
    """Page of catalog items."""

    items: list[ItemResponse]


# ============================================================================
# Reconciliation Schemas
# ============================================================================


class PendingAttachmentResponse(BaseModel):
    """Attachment whose storage has not been confirmed."""

    id: str
    item_id: str
    storage_key: str
    content_type: str
    size: int

    @classmethod
    def from_entity(cls, attachment: Attachment) -> "PendingAttachmentResponse":
        return cls(
            id=attachment.id,
            item_id=attachment.item_id,
            storage_key=attachment.storage_key,
            content_type=attachment.content_type,
            size=attachment.size,
        )


class PendingAttachmentListResponse(BaseModel):
    """Unfinalized attachments."""

    attachments: list[PendingAttachmentResponse]
    count: int


class ReconcileResponse(BaseModel):
    """Outcome of a reconciliation sweep."""

    finalized: int
    still_pending: int
