"""Catalog service.

Orchestrates catalog operations across the relational store, the cache
and the object store. Writes follow a fixed saga:

  1. authorize the principal, then ingest and stage the request body
  2. write item and attachment rows in one transaction and commit
     (on failure: roll back, discard staged bytes, nothing else changes)
  3. finalize staged attachments into the object store with bounded
     retries, marking each row finalized once stored
  4. invalidate the cached item
  5. on item delete, remove objects no row references any more
     (best effort); objects dropped by an update stay as orphans

A row whose finalize never succeeds stays unfinalized and hidden from
readers until the reconciliation sweep stores it.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_api.application.finalizer import AttachmentFinalizer, PendingObject
from catalog_api.application.ingestion import (
    FieldPolicy,
    UploadIngestionPipeline,
    UploadSchema,
)
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
from catalog_api.domain.entities import (
    Attachment,
    CatalogItem,
    Principal,
    UploadDescriptor,
    price_to_cents,
)
from catalog_api.domain.exceptions import (
    AuthError,
    CatalogError,
    ConflictError,
    NotFoundError,
    StorageFatal,
    ValidationError,
)
from catalog_api.infrastructure.object_store import storage_key
from catalog_api.infrastructure.resources import ResourceContext

logger = structlog.get_logger()

ADMIN_ROLE = "admin"
ITEM_FIELD = "item"
ATTACHMENT_FIELD = "attachment"
ITEM_DOCUMENT_TYPES = frozenset({"application/json", "text/plain"})


# ============================================================================
# Item documents
# ============================================================================


class ItemDocument(BaseModel):
    """JSON document sent in the item part of a create request."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=10000)
    price: Decimal
    category_id: str | None = Field(default=None, max_length=100)


class ItemPatchDocument(BaseModel):
    """JSON document sent in the item part of an update request.

    Only fields present in the document are changed.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=10000)
    price: Decimal | None = None
    category_id: str | None = Field(default=None, max_length=100)
    remove_attachments: list[str] = Field(default_factory=list)


def _parse_document(raw: bytes | None, document_cls: type[BaseModel]) -> BaseModel:
    if raw is None:
        return document_cls()
    try:
        return document_cls.model_validate_json(raw)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid item document", details={"errors": errors}) from e


def _translate_db_error(error: SQLAlchemyError, item_id: str) -> CatalogError:
    if isinstance(error, IntegrityError):
        return ConflictError(
            f"Write to {CATALOG_ITEM} {item_id} violates a uniqueness constraint",
            details={"resource_id": item_id},
        )
    return StorageFatal(f"Failed to write {CATALOG_ITEM} {item_id}: {error}")


def require_role(principal: Principal, role: str) -> Principal:
    """Check a verified principal before any core logic runs.

    Raises:
        AuthError: If the principal has expired (401) or lacks the role (403).
    """
    if principal.is_expired:
        raise AuthError("Credentials have expired", details={"subject": principal.subject})
    if not principal.has_role(role):
        raise AuthError(
            f"Role '{role}' is required",
            forbidden=True,
            details={"subject": principal.subject},
        )
    return principal


# ============================================================================
# Service
# ============================================================================


class CatalogService:
    """Service for catalog item operations.

    Example usage:
        service = CatalogService(resources)
        item = await service.create_item(principal, request.stream(), content_type)
    """

    def __init__(self, resources: ResourceContext) -> None:
        """Initialize service.

        Args:
            resources: Shared pooled clients and settings.
        """
        settings = resources.settings
        self.settings = settings
        self.session_factory = resources.session_factory
        self.object_store = resources.object_store
        self.staging = resources.staging
        self.repository = CacheAsideRepository(
            resources.session_factory,
            resources.cache,
            settings.ttl_for(CATALOG_ITEM),
        )
        self.queries = CatalogQueryService(resources.session_factory)
        self.pipeline = UploadIngestionPipeline(resources.staging)
        self.finalizer = AttachmentFinalizer(
            resources.session_factory,
            resources.object_store,
            resources.staging,
            settings,
        )

        attachment_field = FieldPolicy(
            name=ATTACHMENT_FIELD,
            max_bytes=settings.max_upload_bytes,
            content_types=frozenset(settings.allowed_attachment_types),
            multiple=True,
        )
        self.create_schema = UploadSchema(
            fields=(
                FieldPolicy(
                    name=ITEM_FIELD,
                    max_bytes=settings.max_item_document_bytes,
                    content_types=ITEM_DOCUMENT_TYPES,
                    required=True,
                    staged=False,
                ),
                attachment_field,
            )
        )
        self.update_schema = UploadSchema(
            fields=(
                FieldPolicy(
                    name=ITEM_FIELD,
                    max_bytes=settings.max_item_document_bytes,
                    content_types=ITEM_DOCUMENT_TYPES,
                    staged=False,
                ),
                attachment_field,
            )
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_item(self, item_id: str) -> CatalogItem:
        """Get an item by id, served from cache when possible.

        Raises:
            NotFoundError: If the item does not exist.
        """
        return await self.repository.get(item_id)

    async def list_items(
        self,
        pagination: PaginationParams,
        filters: ItemFilter | None = None,
    ) -> PaginatedResult[CatalogItem]:
        """List items with pagination."""
        return await self.queries.search_items(filters or ItemFilter(), pagination)

    async def get_attachment_content(
        self,
        item_id: str,
        attachment_id: str,
    ) -> tuple[Attachment, AsyncIterator[bytes]]:
        """Open a finalized attachment for streaming.

        Args:
            item_id: Owning item id.
            attachment_id: Attachment id.

        Returns:
            Attachment metadata and a stream of its bytes.

        Raises:
            NotFoundError: If the item or a finalized attachment does not exist.
        """
        item = await self.repository.get(item_id)
        for attachment in item.attachments:
            if attachment.id == attachment_id:
                stream = await self.object_store.get(attachment.storage_key)
                return attachment, stream
        raise NotFoundError("attachment", attachment_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_item(
        self,
        principal: Principal,
        body: AsyncIterator[bytes],
        content_type: str | None,
    ) -> CatalogItem:
        """Create an item from a multipart body.

        Args:
            principal: Verified caller.
            body: Un-read request body.
            content_type: Request Content-Type header.

        Returns:
            The created item.
        """
        require_role(principal, ADMIN_ROLE)
        form = await self.pipeline.ingest(body, content_type, self.create_schema)

        item_id = str(uuid4())
        committed = False
        try:
            document = _parse_document(form.values.get(ITEM_FIELD), ItemDocument)
            model = CatalogItemModel(
                id=item_id,
                name=document.name,
                description=document.description,
                price_cents=price_to_cents(document.price),
                category_id=document.category_id,
                attachments=[],
            )
            pending = self._attach(model, form.uploads, existing_keys=set())

            async with self._transaction(item_id) as session:
                await CatalogItemRepository(session).save(model)
            committed = True
        finally:
            if not committed:
                form.discard(self.staging)

        logger.info(
            "Catalog item created",
            item_id=item_id,
            subject=principal.subject,
            attachments=len(pending),
        )

        await self.finalizer.finalize(pending)
        await self.repository.invalidate(item_id)
        return await self._load(item_id)

    async def update_item(
        self,
        principal: Principal,
        item_id: str,
        body: AsyncIterator[bytes],
        content_type: str | None,
    ) -> CatalogItem:
        """Update an item from a multipart body.

        Fields present in the item document are changed, attachment parts
        are appended and attachments listed in remove_attachments are
        removed. Objects of removed attachments are not deleted from the
        object store.

        Raises:
            NotFoundError: If the item does not exist.
        """
        require_role(principal, ADMIN_ROLE)
        form = await self.pipeline.ingest(body, content_type, self.update_schema)

        committed = False
        try:
            document = _parse_document(form.values.get(ITEM_FIELD), ItemPatchDocument)

            async with self._transaction(item_id) as session:
                model = await CatalogItemRepository(session).get_by_id(item_id)
                if model is None:
                    raise NotFoundError(CATALOG_ITEM, item_id)

                self._apply_changes(model, document)
                removed = self._detach(model, document.remove_attachments, form.uploads)
                pending = self._attach(
                    model,
                    form.uploads,
                    existing_keys={a.storage_key for a in model.attachments},
                )
                model.updated_at = datetime.now(timezone.utc)
            committed = True
        finally:
            if not committed:
                form.discard(self.staging)

        logger.info(
            "Catalog item updated",
            item_id=item_id,
            subject=principal.subject,
            added=len(pending),
            removed=len(removed),
        )

        await self.finalizer.finalize(pending)
        await self.repository.invalidate(item_id)
        # Identical content maps to the same key, so a later upload may
        # already reference a removed object. Removed objects stay in the
        # store as orphans.
        for attachment in removed:
            self.staging.discard(attachment.staging_path)
        return await self._load(item_id)

    async def delete_item(self, principal: Principal, item_id: str) -> None:
        """Delete an item and its attachments.

        Raises:
            NotFoundError: If the item does not exist.
        """
        require_role(principal, ADMIN_ROLE)

        async with self._transaction(item_id) as session:
            repository = CatalogItemRepository(session)
            model = await repository.get_by_id(item_id)
            if model is None:
                raise NotFoundError(CATALOG_ITEM, item_id)

            removed = list(model.attachments)
            await repository.delete(model)

        logger.info("Catalog item deleted", item_id=item_id, subject=principal.subject)

        await self.repository.invalidate(item_id)
        await self._delete_objects(removed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, item_id: str) -> AsyncIterator[AsyncSession]:
        """Open a session that commits on exit and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Catalog write failed, rolled back", item_id=item_id, error=str(e))
                raise _translate_db_error(e, item_id) from e
            except Exception:
                await session.rollback()
                raise

    async def _load(self, item_id: str) -> CatalogItem:
        """Read an item from the relational store without touching the cache."""
        try:
            async with self.session_factory() as session:
                model = await CatalogItemRepository(session).get_by_id(item_id)
                if model is None:
                    raise NotFoundError(CATALOG_ITEM, item_id)
                return model.to_entity()
        except SQLAlchemyError as e:
            raise StorageFatal(f"Failed to load {CATALOG_ITEM} {item_id}: {e}") from e

    def _apply_changes(self, model: CatalogItemModel, document: ItemPatchDocument) -> None:
        changed = document.model_fields_set
        for required in ("name", "price"):
            if required in changed and getattr(document, required) is None:
                raise ValidationError(
                    f"Field '{required}' cannot be null",
                    details={"field": required},
                )

        if "name" in changed:
            model.name = document.name
        if "description" in changed:
            model.description = document.description
        if "price" in changed:
            model.price_cents = price_to_cents(document.price)
        if "category_id" in changed:
            model.category_id = document.category_id

    def _detach(
        self,
        model: CatalogItemModel,
        attachment_ids: list[str],
        uploads: list[UploadDescriptor],
    ) -> list[AttachmentModel]:
        """Remove attachments from an item.

        An attachment whose content is uploaded again in the same request
        is kept.
        """
        by_id = {a.id: a for a in model.attachments}
        unknown = [aid for aid in attachment_ids if aid not in by_id]
        if unknown:
            raise ValidationError(
                "Unknown attachments in remove_attachments",
                details={"attachment_ids": unknown},
            )

        incoming = {storage_key(model.id, u.checksum) for u in uploads}
        removed = []
        for attachment_id in dict.fromkeys(attachment_ids):
            attachment = by_id[attachment_id]
            if attachment.storage_key in incoming:
                continue
            model.attachments.remove(attachment)
            removed.append(attachment)
        return removed

    def _attach(
        self,
        model: CatalogItemModel,
        uploads: list[UploadDescriptor],
        existing_keys: set[str],
    ) -> list[PendingObject]:
        """Add attachment rows for staged uploads.

        Content already attached to the item is not added again; its
        duplicate staged bytes are discarded.

        Returns:
            Objects to finalize once the rows are committed.
        """
        keys = set(existing_keys)
        position = max((a.position for a in model.attachments), default=-1) + 1
        pending: list[PendingObject] = []

        for upload in uploads:
            key = storage_key(model.id, upload.checksum)
            if key in keys:
                logger.debug("Duplicate attachment content skipped", item_id=model.id, key=key)
                self.staging.discard(upload.staged_path)
                continue
            keys.add(key)

            attachment = AttachmentModel(
                id=str(uuid4()),
                item_id=model.id,
                storage_key=key,
                content_type=upload.content_type,
                size=upload.size,
                checksum=upload.checksum,
                filename=upload.filename,
                position=position,
                staging_path=str(upload.staged_path),
                finalized_at=None,
            )
            model.attachments.append(attachment)
            position += 1
            pending.append(
                PendingObject(
                    attachment_id=attachment.id,
                    item_id=model.id,
                    key=key,
                    content_type=upload.content_type,
                    size=upload.size,
                    checksum=upload.checksum,
                    staged_path=Path(upload.staged_path),
                )
            )
        return pending

    async def _delete_objects(self, removed: list[AttachmentModel]) -> None:
        """Delete stored objects that no attachment row references any more."""
        for attachment in removed:
            self.staging.discard(attachment.staging_path)
            if attachment.finalized_at is None:
                continue
            try:
                async with self.session_factory() as session:
                    referenced = await CatalogItemRepository(session).key_is_referenced(
                        attachment.storage_key
                    )
            except SQLAlchemyError as e:
                logger.warning(
                    "Reference check failed, object left in place",
                    key=attachment.storage_key,
                    error=str(e),
                )
                continue
            if referenced:
                logger.info("Object still referenced, not deleted", key=attachment.storage_key)
                continue
            await self.object_store.delete(attachment.storage_key)
