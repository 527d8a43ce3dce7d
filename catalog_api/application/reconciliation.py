"""Reconciliation of unfinalized attachments.

Attachment rows are committed before their bytes reach the object store.
When finalize exhausts its retries the row stays unfinalized and keeps a
pointer to its staged bytes. This service lists those rows and runs a
single best-effort sweep over them; scheduling the sweep is up to the
caller.
"""

from dataclasses import dataclass
from pathlib import Path

import structlog
from sqlalchemy.exc import SQLAlchemyError

from catalog_api.application.finalizer import AttachmentFinalizer, PendingObject
from catalog_api.catalog.repository import CATALOG_ITEM, CacheAsideRepository, CatalogItemRepository
from catalog_api.domain.entities import Attachment
from catalog_api.domain.exceptions import StorageFatal, StorageTransient
from catalog_api.infrastructure.resources import ResourceContext

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    """Outcome of one sweep.

    Attributes:
        finalized: Attachments confirmed during the sweep.
        still_pending: Attachments that remain unfinalized.
    """

    finalized: int = 0
    still_pending: int = 0


class ReconciliationService:
    """Finds and repairs attachments whose storage was never confirmed."""

    def __init__(self, resources: ResourceContext) -> None:
        self.session_factory = resources.session_factory
        self.object_store = resources.object_store
        self.staging = resources.staging
        self.repository = CacheAsideRepository(
            resources.session_factory,
            resources.cache,
            resources.settings.ttl_for(CATALOG_ITEM),
        )
        self.finalizer = AttachmentFinalizer(
            resources.session_factory,
            resources.object_store,
            resources.staging,
            resources.settings,
        )

    async def list_unfinalized_attachments(self, limit: int = 100) -> list[Attachment]:
        """List attachments lacking a confirmed storage descriptor.

        Args:
            limit: Maximum results.

        Returns:
            Oldest pending attachments first.
        """
        return [obj for obj, _ in await self._pending(limit)]

    async def retry_unfinalized(self, limit: int = 100) -> ReconcileResult:
        """Run one sweep over pending attachments.

        For each pending row: if the object already exists it is marked
        finalized; otherwise the staged bytes are stored (one attempt) and
        the row is marked. Rows with no staged bytes left are reported and
        stay pending.

        Args:
            limit: Maximum rows examined.

        Returns:
            Counts of finalized and still pending attachments.
        """
        pending = await self._pending(limit)
        stored: list[PendingObject] = []

        for attachment, staged_path in pending:
            obj = PendingObject(
                attachment_id=attachment.id,
                item_id=attachment.item_id,
                key=attachment.storage_key,
                content_type=attachment.content_type,
                size=attachment.size,
                checksum=attachment.checksum,
                staged_path=staged_path,
            )
            try:
                if not await self.object_store.exists(obj.key):
                    if not self.staging.exists(staged_path):
                        logger.error(
                            "Staged bytes missing for unfinalized attachment",
                            attachment_id=obj.attachment_id,
                            key=obj.key,
                        )
                        continue
                    await self.finalizer.store(obj, retry=False)
            except (StorageTransient, OSError) as e:
                logger.warning(
                    "Reconciliation attempt failed",
                    attachment_id=obj.attachment_id,
                    key=obj.key,
                    error=str(e),
                )
                continue
            stored.append(obj)

        finalized = 0
        if stored and await self.finalizer.mark_finalized(stored):
            finalized = len(stored)
            for obj in stored:
                self.staging.discard(obj.staged_path)
            for item_id in dict.fromkeys(obj.item_id for obj in stored):
                await self.repository.invalidate(item_id)

        result = ReconcileResult(finalized=finalized, still_pending=len(pending) - finalized)
        logger.info(
            "Reconciliation sweep finished",
            examined=len(pending),
            finalized=result.finalized,
            still_pending=result.still_pending,
        )
        return result

    async def _pending(self, limit: int) -> list[tuple[Attachment, Path | None]]:
        try:
            async with self.session_factory() as session:
                rows = await CatalogItemRepository(session).find_unfinalized_attachments(limit)
                return [
                    (row.to_entity(), Path(row.staging_path) if row.staging_path else None)
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise StorageFatal(f"Failed to list unfinalized attachments: {e}") from e
