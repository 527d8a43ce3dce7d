"""Domain entities for the catalog.

Plain typed records shared by every layer. They carry no persistence or
transport behaviour beyond conversion to and from cache snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from catalog_api.domain.exceptions import ValidationError

CENTS = Decimal("0.01")
MAX_PRICE = Decimal("9999999999999.99")


def price_to_cents(price: Decimal) -> int:
    """Convert a decimal price to integer cents.

    Args:
        price: Price in major currency units.

    Returns:
        Price in cents.

    Raises:
        ValidationError: If the price is negative, above MAX_PRICE or has
            sub-cent precision.
    """
    try:
        quantized = price.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValidationError(f"Invalid price: {price}", details={"price": str(price)}) from e
    if quantized != price:
        raise ValidationError(
            f"Price {price} has more than two decimal places",
            details={"price": str(price)},
        )
    if quantized < 0:
        raise ValidationError(
            f"Price cannot be negative: {price}",
            details={"price": str(price)},
        )
    if quantized > MAX_PRICE:
        raise ValidationError(
            f"Price cannot exceed {MAX_PRICE}: {price}",
            details={"price": str(price), "max_price": str(MAX_PRICE)},
        )
    return int(quantized * 100)


def price_from_cents(cents: int) -> Decimal:
    """Convert integer cents to a decimal price."""
    return (Decimal(cents) / 100).quantize(CENTS)


@dataclass(frozen=True)
class Principal:
    """Verified caller identity supplied by the identity collaborator.

    Attributes:
        subject: Stable identifier of the caller.
        roles: Roles granted to the caller.
        expiry: When the verification stops being valid.
    """

    subject: str
    roles: frozenset[str] = frozenset()
    expiry: datetime | None = None

    @property
    def is_expired(self) -> bool:
        """Check whether the principal's verification has lapsed."""
        return self.expiry is not None and datetime.now(timezone.utc) >= self.expiry

    def has_role(self, role: str) -> bool:
        """Check whether the principal holds a role."""
        return role in self.roles

    def __str__(self) -> str:
        return self.subject


@dataclass(frozen=True)
class Attachment:
    """Binary attachment owned by a catalog item.

    Attributes:
        id: Attachment identifier.
        item_id: Owning catalog item id.
        storage_key: Content-addressed object store key.
        content_type: MIME type preserved from the upload.
        size: Size in bytes.
        checksum: SHA-256 hex digest of the content.
        filename: Client-supplied file name, if any.
        position: Ordering within the item.
        finalized_at: When storage was confirmed durable, None until then.
    """

    id: str
    item_id: str
    storage_key: str
    content_type: str
    size: int
    checksum: str
    filename: str | None = None
    position: int = 0
    finalized_at: datetime | None = None

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "item_id": self.item_id,
            "storage_key": self.storage_key,
            "content_type": self.content_type,
            "size": self.size,
            "checksum": self.checksum,
            "filename": self.filename,
            "position": self.position,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        """Create from a dictionary produced by to_dict."""
        finalized_at = data.get("finalized_at")
        return cls(
            id=data["id"],
            item_id=data["item_id"],
            storage_key=data["storage_key"],
            content_type=data["content_type"],
            size=data["size"],
            checksum=data["checksum"],
            filename=data.get("filename"),
            position=data.get("position", 0),
            finalized_at=datetime.fromisoformat(finalized_at) if finalized_at else None,
        )


@dataclass(frozen=True)
class CatalogItem:
    """A purchasable catalog entry.

    Attributes:
        id: Unique item identifier.
        name: Display name.
        description: Optional long description.
        price: Fixed-point price in major currency units.
        category_id: Opaque category reference.
        attachments: Finalized attachments in display order.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: str
    name: str
    price: Decimal
    description: str | None = None
    category_id: str | None = None
    attachments: tuple[Attachment, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible snapshot.

        The price is serialized as a string so it never passes through a float.
        """
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": str(self.price),
            "category_id": self.category_id,
            "attachments": [a.to_dict() for a in self.attachments],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogItem":
        """Create from a snapshot produced by to_dict."""
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            price=Decimal(data["price"]),
            category_id=data.get("category_id"),
            attachments=tuple(Attachment.from_dict(a) for a in data.get("attachments", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class UploadDescriptor:
    """A validated, staged upload awaiting finalization.

    Attributes:
        field_name: Multipart field the part arrived under.
        content_type: Declared MIME type of the part.
        size: Number of bytes staged.
        checksum: SHA-256 hex digest of the staged bytes.
        staged_path: Location of the staged bytes.
        filename: Client-supplied file name, if any.
    """

    field_name: str
    content_type: str
    size: int
    checksum: str
    staged_path: Path
    filename: str | None = None
