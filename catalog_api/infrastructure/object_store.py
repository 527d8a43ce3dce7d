"""Object store gateway.

Content-addressed put/get/delete over a remote blob store. Keys are
derived from the owning item and the content checksum, so identical bytes
under the same item always land on the same object and a repeated put is
a no-op.

Implementations:
  - S3ObjectStore: boto3 client, blocking calls run in worker threads.
  - InMemoryObjectStore: dictionary-backed test double.
"""

import asyncio
import hashlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, BinaryIO, Protocol

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from catalog_api.domain.exceptions import NotFoundError, StorageTransient
from catalog_api.infrastructure.config import Settings

logger = structlog.get_logger()

CHECKSUM_METADATA_KEY = "sha256"
READ_CHUNK_SIZE = 64 * 1024

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def storage_key(item_id: str, checksum: str) -> str:
    """Derive the object key for an attachment.

    Args:
        item_id: Owning catalog item id.
        checksum: SHA-256 hex digest of the content.

    Returns:
        Key in the form {item_id}/{checksum}.
    """
    return f"{item_id}/{checksum}"


@dataclass(frozen=True)
class ObjectMetadata:
    """Metadata written alongside an object."""

    content_type: str
    checksum: str
    size: int


@dataclass(frozen=True)
class StoredDescriptor:
    """Confirmation of a durable object write."""

    key: str
    content_type: str
    checksum: str
    size: int


class ObjectStore(Protocol):
    """Content-addressed blob store."""

    async def put(self, key: str, data: BinaryIO, metadata: ObjectMetadata) -> StoredDescriptor: ...

    async def get(self, key: str) -> AsyncIterator[bytes]: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None: ...


class S3ObjectStore:
    """S3-compatible object store.

    boto3 clients are thread-safe, so a single client is shared by all
    requests and each blocking call is pushed to a worker thread.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        """Initialize store.

        Args:
            client: boto3 S3 client.
            bucket: Target bucket name.
        """
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        """Create a store from application settings."""
        client = boto3.client(
            "s3",
            region_name=settings.object_store_region,
            endpoint_url=settings.object_store_endpoint_url,
            config=BotoConfig(retries={"max_attempts": 2, "mode": "standard"}),
        )
        logger.info(
            "Using S3 object store",
            bucket=settings.object_store_bucket,
            endpoint=settings.object_store_endpoint_url,
        )
        return cls(client, settings.object_store_bucket)

    async def _head(self, key: str) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise StorageTransient(f"Object HEAD failed: {e}", details={"key": key}) from e
        except BotoCoreError as e:
            raise StorageTransient(f"Object HEAD failed: {e}", details={"key": key}) from e

    async def put(self, key: str, data: BinaryIO, metadata: ObjectMetadata) -> StoredDescriptor:
        """Store an object unless an identical one already exists.

        Args:
            key: Content-addressed key.
            data: Readable binary stream positioned at the start.
            metadata: Content type, checksum and size of the stream.

        Returns:
            Descriptor of the stored object.

        Raises:
            StorageTransient: On any backend failure; safe to retry.
        """
        descriptor = StoredDescriptor(
            key=key,
            content_type=metadata.content_type,
            checksum=metadata.checksum,
            size=metadata.size,
        )

        head = await self._head(key)
        if head and head.get("Metadata", {}).get(CHECKSUM_METADATA_KEY) == metadata.checksum:
            logger.debug("Object already stored", key=key)
            return descriptor

        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=metadata.content_type,
                ContentLength=metadata.size,
                Metadata={CHECKSUM_METADATA_KEY: metadata.checksum},
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageTransient(f"Object PUT failed: {e}", details={"key": key}) from e

        logger.info("Object stored", key=key, size=metadata.size)
        return descriptor

    async def get(self, key: str) -> AsyncIterator[bytes]:
        """Open an object for streaming.

        Raises:
            NotFoundError: If no object exists under the key.
            StorageTransient: On backend failure.
        """
        try:
            response = await asyncio.to_thread(
                self.client.get_object, Bucket=self.bucket, Key=key
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError("object", key) from e
            raise StorageTransient(f"Object GET failed: {e}", details={"key": key}) from e
        except BotoCoreError as e:
            raise StorageTransient(f"Object GET failed: {e}", details={"key": key}) from e

        return _iter_body(response["Body"])

    async def exists(self, key: str) -> bool:
        return await self._head(key) is not None

    async def delete(self, key: str) -> None:
        """Delete an object, logging instead of raising on failure."""
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning("Object delete failed, leaving orphan", key=key, error=str(e))
            return
        logger.info("Object deleted", key=key)


async def _iter_body(body: Any) -> AsyncIterator[bytes]:
    try:
        while chunk := await asyncio.to_thread(body.read, READ_CHUNK_SIZE):
            yield chunk
    finally:
        body.close()


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class InMemoryObjectStore:
    """Dictionary-backed object store.

    Attributes:
        objects: Stored bytes by key.
        metadata: Stored metadata by key.
        writes: Number of puts that actually wrote bytes.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, ObjectMetadata] = {}
        self.writes = 0

    async def put(self, key: str, data: BinaryIO, metadata: ObjectMetadata) -> StoredDescriptor:
        descriptor = StoredDescriptor(
            key=key,
            content_type=metadata.content_type,
            checksum=metadata.checksum,
            size=metadata.size,
        )
        existing = self.metadata.get(key)
        if existing and existing.checksum == metadata.checksum:
            return descriptor

        content = data.read()
        if hashlib.sha256(content).hexdigest() != metadata.checksum:
            raise StorageTransient("Checksum mismatch on put", details={"key": key})
        self.objects[key] = content
        self.metadata[key] = metadata
        self.writes += 1
        return descriptor

    async def get(self, key: str) -> AsyncIterator[bytes]:
        if key not in self.objects:
            raise NotFoundError("object", key)
        return _iter_bytes(self.objects[key])

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.metadata.pop(key, None)


async def _iter_bytes(content: bytes) -> AsyncIterator[bytes]:
    for start in range(0, len(content), READ_CHUNK_SIZE):
        yield content[start : start + READ_CHUNK_SIZE]


def build_object_store(settings: Settings) -> ObjectStore:
    """Select the object store backend from settings.

    Args:
        settings: Application settings.

    Returns:
        S3 store, or the in-memory store when object_store_backend is "memory".
    """
    if settings.object_store_backend == "memory":
        logger.warning("Using in-memory object store, attachments are not durable")
        return InMemoryObjectStore()
    return S3ObjectStore.from_settings(settings)
