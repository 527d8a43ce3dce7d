"""Shared fixtures.

Every test gets its own SQLite database file, staging directory,
in-memory cache and in-memory object store. The engine uses NullPool so
the same resources work from pytest-asyncio tests and from TestClient,
which run on different event loops.
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Iterator

import pytest
from sqlalchemy.pool import NullPool

from catalog_api.domain.entities import Principal
from catalog_api.infrastructure.cache import InMemoryCacheBackend
from catalog_api.infrastructure.config import Settings
from catalog_api.infrastructure.database import create_all, create_engine, create_session_factory
from catalog_api.infrastructure.object_store import InMemoryObjectStore
from catalog_api.infrastructure.resources import ResourceContext
from catalog_api.infrastructure.staging import StagingArea

ADMIN_TOKEN = "test-admin-token"
VIEWER_TOKEN = "test-viewer-token"
BOUNDARY = "catalogtestboundary"

Part = tuple[str, str | None, str | None, bytes]


def run_sync(coro):
    """Run a coroutine on a private loop, leaving the current loop untouched."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ============================================================================
# Resources
# ============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing every backend at test doubles."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        redis_url="",
        object_store_backend="memory",
        staging_dir=tmp_path / "staging",
        max_upload_bytes=1024,
        max_item_document_bytes=4096,
        finalize_max_attempts=3,
        finalize_backoff_seconds=0,
        finalize_backoff_max_seconds=0,
        api_tokens={
            ADMIN_TOKEN: {"subject": "alice", "roles": ["admin"]},
            VIEWER_TOKEN: {"subject": "bob", "roles": ["viewer"]},
        },
    )


@pytest.fixture
def resources(settings: Settings) -> Iterator[ResourceContext]:
    """Resource context over a fresh SQLite schema."""
    engine = create_engine(settings, poolclass=NullPool)
    run_sync(create_all(engine))
    context = ResourceContext(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        cache=InMemoryCacheBackend(),
        object_store=InMemoryObjectStore(),
        staging=StagingArea(settings.staging_dir),
    )
    yield context
    run_sync(engine.dispose())


@pytest.fixture
def admin_token() -> str:
    return ADMIN_TOKEN


@pytest.fixture
def viewer_token() -> str:
    return VIEWER_TOKEN


@pytest.fixture
def admin() -> Principal:
    return Principal(subject="alice", roles=frozenset({"admin"}))


@pytest.fixture
def viewer() -> Principal:
    return Principal(subject="bob", roles=frozenset({"viewer"}))


# ============================================================================
# Multipart helpers
# ============================================================================


def build_multipart(parts: list[Part], boundary: str = BOUNDARY) -> tuple[bytes, str]:
    """Encode parts as a multipart/form-data body.

    Args:
        parts: (field name, filename, content type, data) tuples.
        boundary: Boundary string.

    Returns:
        Body bytes and the matching Content-Type header value.
    """
    body = bytearray()
    for name, filename, content_type, data in parts:
        disposition = f'form-data; name="{name}"'
        if filename:
            disposition += f'; filename="{filename}"'
        body += f"--{boundary}\r\n".encode()
        body += f"Content-Disposition: {disposition}\r\n".encode()
        if content_type:
            body += f"Content-Type: {content_type}\r\n".encode()
        body += b"\r\n" + data + b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return bytes(body), f"multipart/form-data; boundary={boundary}"


class ChunkedBody:
    """Async body iterator that records how many bytes were consumed."""

    def __init__(self, data: bytes, chunk_size: int = 64) -> None:
        self.data = data
        self.chunk_size = chunk_size
        self.consumed = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self.data), self.chunk_size):
            chunk = self.data[start : start + self.chunk_size]
            self.consumed += len(chunk)
            yield chunk


@pytest.fixture
def multipart() -> Callable[..., tuple[bytes, str]]:
    """Builder for multipart bodies."""
    return build_multipart


@pytest.fixture
def chunked() -> Callable[..., ChunkedBody]:
    """Factory for chunked async bodies."""
    return ChunkedBody
