"""SQLAlchemy models for the catalog.

Defines the catalog_items and catalog_attachments tables.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_api.domain.entities import Attachment, CatalogItem, price_from_cents
from catalog_api.infrastructure.database import Base


class CatalogItemModel(Base):
    """Catalog item row.

    Attributes:
        id: Unique item identifier (UUID string).
        name: Display name.
        description: Item description.
        price_cents: Price in cents.
        category_id: Opaque category reference.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    __tablename__ = "catalog_items"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    attachments: Mapped[list["AttachmentModel"]] = relationship(
        "AttachmentModel",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="AttachmentModel.position",
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<CatalogItemModel(id={self.id}, name={self.name[:30]})>"

    def to_entity(self) -> CatalogItem:
        """Convert to a domain entity.

        Only attachments with confirmed storage are included.

        Returns:
            CatalogItem snapshot.
        """
        return CatalogItem(
            id=self.id,
            name=self.name,
            description=self.description,
            price=price_from_cents(self.price_cents),
            category_id=self.category_id,
            attachments=tuple(a.to_entity() for a in self.attachments if a.finalized_at),
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )


class AttachmentModel(Base):
    """Attachment row.

    A row is written in the same transaction as its item, before the bytes
    are finalized in the object store. finalized_at stays NULL until the
    object store confirms the write; staging_path points at the bytes a
    later finalize attempt can still use.
    """

    __tablename__ = "catalog_attachments"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("catalog_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    storage_key: Mapped[str] = mapped_column(String(200), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    staging_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    item: Mapped["CatalogItemModel"] = relationship(
        "CatalogItemModel", back_populates="attachments"
    )

    __table_args__ = (
        UniqueConstraint("item_id", "storage_key", name="uq_attachment_item_key"),
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<AttachmentModel(id={self.id}, key={self.storage_key})>"

    def to_entity(self) -> Attachment:
        return Attachment(
            id=self.id,
            item_id=self.item_id,
            storage_key=self.storage_key,
            content_type=self.content_type,
            size=self.size,
            checksum=self.checksum,
            filename=self.filename,
            position=self.position,
            finalized_at=_as_utc(self.finalized_at) if self.finalized_at else None,
        )


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
