"""Attachment finalization.

Moves staged bytes into the object store under their content-addressed
key and records the confirmation on the attachment rows. Used by the
write saga right after commit and by the reconciliation sweep.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from catalog_api.catalog.repository import CatalogItemRepository
from catalog_api.domain.exceptions import StorageTransient
from catalog_api.infrastructure.config import Settings
from catalog_api.infrastructure.object_store import ObjectMetadata, ObjectStore, StoredDescriptor
from catalog_api.infrastructure.staging import StagingArea

logger = structlog.get_logger()


@dataclass(frozen=True)
class PendingObject:
    """An attachment row whose bytes still need to reach the object store."""

    attachment_id: str
    item_id: str
    key: str
    content_type: str
    size: int
    checksum: str
    staged_path: Path | None


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Object store put failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


class AttachmentFinalizer:
    """Stores staged uploads and marks their rows finalized."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        object_store: ObjectStore,
        staging: StagingArea,
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.object_store = object_store
        self.staging = staging
        self.settings = settings

    async def store(self, pending: PendingObject, retry: bool = True) -> StoredDescriptor:
        """Put staged bytes under their key.

        Args:
            pending: Object to store.
            retry: Retry transient failures with bounded exponential backoff.

        Returns:
            Descriptor of the stored object.

        Raises:
            StorageTransient: If every attempt failed.
            OSError: If the staged bytes cannot be read.
        """
        if pending.staged_path is None:
            raise FileNotFoundError(f"No staged bytes for attachment {pending.attachment_id}")

        metadata = ObjectMetadata(
            content_type=pending.content_type,
            checksum=pending.checksum,
            size=pending.size,
        )
        attempts = self.settings.finalize_max_attempts if retry else 1

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self.settings.finalize_backoff_seconds,
                max=self.settings.finalize_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(StorageTransient),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                with self.staging.open(pending.staged_path) as data:
                    return await self.object_store.put(pending.key, data, metadata)

    async def finalize(self, pending: list[PendingObject]) -> list[PendingObject]:
        """Store every pending object and mark the stored ones finalized.

        Failures are logged and the rows stay unfinalized for the
        reconciliation sweep; nothing is raised.

        Args:
            pending: Objects to store.

        Returns:
            The objects that were stored and recorded.
        """
        stored: list[PendingObject] = []
        for obj in pending:
            try:
                await self.store(obj)
            except (StorageTransient, OSError) as e:
                logger.error(
                    "Attachment finalize failed, left for reconciliation",
                    attachment_id=obj.attachment_id,
                    item_id=obj.item_id,
                    key=obj.key,
                    error=str(e),
                )
                continue
            stored.append(obj)

        if stored and await self.mark_finalized(stored):
            for obj in stored:
                self.staging.discard(obj.staged_path)
            return stored
        return []

    async def mark_finalized(self, stored: list[PendingObject]) -> bool:
        """Record confirmed storage in a short transaction.

        Returns:
            True if the rows were updated.
        """
        async with self.session_factory() as session:
            try:
                await CatalogItemRepository(session).mark_finalized(
                    [obj.attachment_id for obj in stored],
                    datetime.now(timezone.utc),
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(
                    "Failed to record finalized attachments, left for reconciliation",
                    attachment_ids=[obj.attachment_id for obj in stored],
                    error=str(e),
                )
                return False

        logger.info(
            "Attachments finalized",
            attachment_ids=[obj.attachment_id for obj in stored],
        )
        return True
