"""Tests for the reconciliation sweep."""

import json
from dataclasses import replace

import pytest
import pytest_asyncio

from catalog_api.application.catalog_service import CatalogService
from catalog_api.application.reconciliation import ReconciliationService
from catalog_api.catalog.repository import CATALOG_ITEM
from catalog_api.domain.exceptions import StorageTransient
from catalog_api.infrastructure.cache import cache_key
from catalog_api.infrastructure.object_store import InMemoryObjectStore

PNG = b"\x89PNG\r\n\x1a\n" + b"reconcile" * 20


class SwitchableObjectStore(InMemoryObjectStore):
    """In-memory store that can be taken offline."""

    def __init__(self) -> None:
        super().__init__()
        self.available = False

    async def put(self, key, data, metadata):
        if not self.available:
            raise StorageTransient("object store unavailable", details={"key": key})
        return await super().put(key, data, metadata)


@pytest.fixture
def store() -> SwitchableObjectStore:
    return SwitchableObjectStore()


@pytest.fixture
def context(resources, store):
    return replace(resources, object_store=store)


@pytest_asyncio.fixture
async def pending_item(context, admin, multipart, chunked):
    """Create an item whose only attachment failed to finalize."""
    body, content_type = multipart(
        [
            ("item", None, "application/json", json.dumps({"name": "Lamp", "price": "1.00"}).encode()),
            ("attachment", "lamp.png", "image/png", PNG),
        ]
    )
    return await CatalogService(context).create_item(admin, chunked(body), content_type)


class TestRetryUnfinalized:
    """Tests for retry_unfinalized."""

    @pytest.mark.asyncio
    async def test_sweep_finalizes_when_store_recovers(self, context, store, pending_item):
        service = CatalogService(context)
        await service.get_item(pending_item.id)
        store.available = True

        result = await ReconciliationService(context).retry_unfinalized()

        assert result.finalized == 1
        assert result.still_pending == 0
        assert cache_key(CATALOG_ITEM, pending_item.id) not in context.cache
        item = await service.get_item(pending_item.id)
        assert len(item.attachments) == 1
        assert store.objects[item.attachments[0].storage_key] == PNG
        assert list(context.staging.root.iterdir()) == []
        assert await ReconciliationService(context).list_unfinalized_attachments() == []

    @pytest.mark.asyncio
    async def test_sweep_leaves_pending_while_store_is_down(self, context, pending_item):
        result = await ReconciliationService(context).retry_unfinalized()

        assert result.finalized == 0
        assert result.still_pending == 1
        assert len(list(context.staging.root.iterdir())) == 1

    @pytest.mark.asyncio
    async def test_existing_object_is_marked_without_upload(self, context, store, pending_item):
        """An object stored before the row was marked is only recorded."""
        pending = await ReconciliationService(context).list_unfinalized_attachments()
        store.objects[pending[0].storage_key] = PNG

        result = await ReconciliationService(context).retry_unfinalized()

        assert result.finalized == 1
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_missing_staged_bytes_stay_pending(self, context, store, pending_item):
        for path in context.staging.root.iterdir():
            path.unlink()
        store.available = True

        result = await ReconciliationService(context).retry_unfinalized()

        assert result.finalized == 0
        assert result.still_pending == 1

    @pytest.mark.asyncio
    async def test_nothing_pending(self, context):
        result = await ReconciliationService(context).retry_unfinalized()

        assert result.finalized == 0
        assert result.still_pending == 0
