"""Tests for object store gateways."""

import hashlib
import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from catalog_api.domain.exceptions import NotFoundError, StorageTransient
from catalog_api.infrastructure.object_store import (
    CHECKSUM_METADATA_KEY,
    InMemoryObjectStore,
    ObjectMetadata,
    S3ObjectStore,
    storage_key,
)

DATA = b"attachment bytes" * 100
CHECKSUM = hashlib.sha256(DATA).hexdigest()
METADATA = ObjectMetadata(content_type="image/png", checksum=CHECKSUM, size=len(DATA))
KEY = storage_key("item-1", CHECKSUM)


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def test_storage_key_is_content_addressed() -> None:
    assert storage_key("item-1", "abc") == "item-1/abc"


# ============================================================================
# In-memory store
# ============================================================================


class TestInMemoryObjectStore:
    """Tests for the in-memory double."""

    @pytest.mark.asyncio
    async def test_put_is_idempotent(self):
        store = InMemoryObjectStore()

        first = await store.put(KEY, io.BytesIO(DATA), METADATA)
        second = await store.put(KEY, io.BytesIO(DATA), METADATA)

        assert first == second
        assert store.writes == 1
        assert await store.exists(KEY)

    @pytest.mark.asyncio
    async def test_get_streams_content(self):
        store = InMemoryObjectStore()
        await store.put(KEY, io.BytesIO(DATA), METADATA)

        stream = await store.get(KEY)

        assert b"".join([chunk async for chunk in stream]) == DATA

    @pytest.mark.asyncio
    async def test_get_missing(self):
        with pytest.raises(NotFoundError):
            await InMemoryObjectStore().get("missing")

    @pytest.mark.asyncio
    async def test_checksum_mismatch(self):
        with pytest.raises(StorageTransient):
            await InMemoryObjectStore().put(KEY, io.BytesIO(b"other"), METADATA)


# ============================================================================
# S3 store
# ============================================================================


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def s3_store(s3_client) -> S3ObjectStore:
    return S3ObjectStore(s3_client, "catalog-test")


class TestS3ObjectStore:
    """Tests for the boto3-backed store."""

    @pytest.mark.asyncio
    async def test_put_uploads_new_object(self, s3_store, s3_client):
        s3_client.head_object.side_effect = client_error("404")

        descriptor = await s3_store.put(KEY, io.BytesIO(DATA), METADATA)

        assert descriptor.key == KEY
        assert descriptor.checksum == CHECKSUM
        kwargs = s3_client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "catalog-test"
        assert kwargs["Key"] == KEY
        assert kwargs["ContentType"] == "image/png"
        assert kwargs["Metadata"] == {CHECKSUM_METADATA_KEY: CHECKSUM}

    @pytest.mark.asyncio
    async def test_put_skips_identical_object(self, s3_store, s3_client):
        s3_client.head_object.return_value = {"Metadata": {CHECKSUM_METADATA_KEY: CHECKSUM}}

        descriptor = await s3_store.put(KEY, io.BytesIO(DATA), METADATA)

        assert descriptor.size == len(DATA)
        s3_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_put_failure_is_transient(self, s3_store, s3_client):
        s3_client.head_object.side_effect = client_error("404")
        s3_client.put_object.side_effect = client_error("SlowDown", "PutObject")

        with pytest.raises(StorageTransient):
            await s3_store.put(KEY, io.BytesIO(DATA), METADATA)

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self, s3_store, s3_client):
        s3_client.head_object.side_effect = EndpointConnectionError(endpoint_url="http://s3")

        with pytest.raises(StorageTransient):
            await s3_store.put(KEY, io.BytesIO(DATA), METADATA)

    @pytest.mark.asyncio
    async def test_get_missing_object(self, s3_store, s3_client):
        s3_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")

        with pytest.raises(NotFoundError):
            await s3_store.get(KEY)

    @pytest.mark.asyncio
    async def test_get_streams_body(self, s3_store, s3_client):
        s3_client.get_object.return_value = {"Body": io.BytesIO(DATA)}

        stream = await s3_store.get(KEY)

        assert b"".join([chunk async for chunk in stream]) == DATA

    @pytest.mark.asyncio
    async def test_exists(self, s3_store, s3_client):
        s3_client.head_object.return_value = {"Metadata": {}}
        assert await s3_store.exists(KEY) is True

        s3_client.head_object.side_effect = client_error("NotFound")
        assert await s3_store.exists(KEY) is False

    @pytest.mark.asyncio
    async def test_delete_failure_is_swallowed(self, s3_store, s3_client):
        s3_client.delete_object.side_effect = client_error("AccessDenied", "DeleteObject")

        await s3_store.delete(KEY)

        s3_client.delete_object.assert_called_once_with(Bucket="catalog-test", Key=KEY)
