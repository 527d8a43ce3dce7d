"""Tests for the upload ingestion pipeline."""

import hashlib
from pathlib import Path

import pytest

from catalog_api.application.ingestion import FieldPolicy, UploadIngestionPipeline, UploadSchema
from catalog_api.domain.exceptions import (
    UploadAborted,
    UploadProtocolError,
    UploadRejected,
    ValidationError,
)
from catalog_api.infrastructure.staging import StagingArea

MAX_BYTES = 1024

SCHEMA = UploadSchema(
    fields=(
        FieldPolicy(
            name="item",
            max_bytes=4096,
            content_types=frozenset({"application/json", "text/plain"}),
            required=True,
            staged=False,
        ),
        FieldPolicy(
            name="attachment",
            max_bytes=MAX_BYTES,
            content_types=frozenset({"image/png", "application/pdf"}),
            multiple=True,
        ),
    )
)


class RecordingStaging(StagingArea):
    """Staging area that records the size of every discarded file."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.discarded_sizes: list[int] = []

    def discard(self, path) -> None:
        if path is not None and Path(path).exists():
            self.discarded_sizes.append(Path(path).stat().st_size)
        super().discard(path)


@pytest.fixture
def staging(tmp_path) -> RecordingStaging:
    return RecordingStaging(tmp_path / "staging")


@pytest.fixture
def pipeline(staging) -> UploadIngestionPipeline:
    return UploadIngestionPipeline(staging)


def staged_files(staging: StagingArea) -> list[Path]:
    return list(staging.root.iterdir())


# ============================================================================
# Happy path
# ============================================================================


class TestIngest:
    """Tests for successful ingestion."""

    @pytest.mark.asyncio
    async def test_stages_files_and_keeps_values(self, pipeline, staging, multipart, chunked):
        """File parts are staged with checksum; value parts stay in memory."""
        png = b"\x89PNG" + b"a" * 300
        body, content_type = multipart(
            [
                ("item", None, "application/json", b'{"name": "Lamp", "price": "9.99"}'),
                ("attachment", "lamp.png", "image/png", png),
            ]
        )

        form = await pipeline.ingest(chunked(body, 37), content_type, SCHEMA)

        assert form.values["item"] == b'{"name": "Lamp", "price": "9.99"}'
        assert len(form.uploads) == 1
        upload = form.uploads[0]
        assert upload.field_name == "attachment"
        assert upload.filename == "lamp.png"
        assert upload.content_type == "image/png"
        assert upload.size == len(png)
        assert upload.checksum == hashlib.sha256(png).hexdigest()
        assert upload.staged_path.read_bytes() == png

    @pytest.mark.asyncio
    async def test_value_part_without_content_type(self, pipeline, multipart, chunked):
        """A plain form field defaults to text/plain."""
        body, content_type = multipart([("item", None, None, b'{"name": "A", "price": "1"}')])

        form = await pipeline.ingest(chunked(body), content_type, SCHEMA)

        assert "item" in form.values
        assert form.uploads == []

    @pytest.mark.asyncio
    async def test_multiple_attachments_in_order(self, pipeline, multipart, chunked):
        body, content_type = multipart(
            [
                ("item", None, "application/json", b"{}"),
                ("attachment", "a.png", "image/png", b"first"),
                ("attachment", "b.pdf", "application/pdf", b"second"),
            ]
        )

        form = await pipeline.ingest(chunked(body, 16), content_type, SCHEMA)

        assert [u.filename for u in form.uploads] == ["a.png", "b.pdf"]
        assert [u.size for u in form.uploads] == [5, 6]

    @pytest.mark.asyncio
    async def test_part_at_exact_limit_is_accepted(self, pipeline, multipart, chunked):
        data = b"x" * MAX_BYTES
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("attachment", "max.png", "image/png", data),
            ]
        )

        form = await pipeline.ingest(chunked(body), content_type, SCHEMA)

        assert form.uploads[0].size == MAX_BYTES


# ============================================================================
# Size limits
# ============================================================================


class TestSizeLimit:
    """Tests for per-part size enforcement."""

    @pytest.mark.asyncio
    async def test_oversized_part_aborts_early(self, pipeline, staging, multipart, chunked):
        """A part of max+1 bytes aborts before the body is fully read."""
        trailer = b"t" * 8192
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("attachment", "big.png", "image/png", b"x" * (MAX_BYTES + 1)),
                ("attachment", "tail.png", "image/png", trailer),
            ]
        )
        stream = chunked(body, 64)

        with pytest.raises(UploadAborted) as exc_info:
            await pipeline.ingest(stream, content_type, SCHEMA)

        assert exc_info.value.details == {"field": "attachment", "limit": MAX_BYTES}
        assert stream.consumed < len(body)
        assert staging.discarded_sizes
        assert all(size <= MAX_BYTES for size in staging.discarded_sizes)
        assert staged_files(staging) == []

    @pytest.mark.asyncio
    async def test_oversized_part_in_single_chunk(self, pipeline, staging, multipart, chunked):
        """The overflowing chunk is never written to staging."""
        body, content_type = multipart(
            [("attachment", "big.png", "image/png", b"x" * (MAX_BYTES * 4))]
        )

        with pytest.raises(UploadAborted):
            await pipeline.ingest(chunked(body, len(body)), content_type, SCHEMA)

        assert all(size <= MAX_BYTES for size in staging.discarded_sizes)
        assert staged_files(staging) == []

    @pytest.mark.asyncio
    async def test_earlier_staged_parts_are_discarded(self, pipeline, staging, multipart, chunked):
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("attachment", "ok.png", "image/png", b"ok" * 10),
                ("attachment", "big.png", "image/png", b"x" * (MAX_BYTES + 10)),
            ]
        )

        with pytest.raises(UploadAborted):
            await pipeline.ingest(chunked(body), content_type, SCHEMA)

        assert staged_files(staging) == []


# ============================================================================
# Validation
# ============================================================================


class TestValidation:
    """Tests for field and content type validation."""

    @pytest.mark.asyncio
    async def test_unsupported_content_type(self, pipeline, staging, multipart, chunked):
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("attachment", "run.exe", "application/x-msdownload", b"MZ"),
            ]
        )

        with pytest.raises(UploadRejected) as exc_info:
            await pipeline.ingest(chunked(body), content_type, SCHEMA)

        assert exc_info.value.details["content_type"] == "application/x-msdownload"
        assert staged_files(staging) == []

    @pytest.mark.asyncio
    async def test_file_without_content_type_is_rejected(self, pipeline, multipart, chunked):
        """Files default to application/octet-stream, which is not allowed."""
        body, content_type = multipart([("attachment", "blob", None, b"data")])

        with pytest.raises(UploadRejected):
            await pipeline.ingest(chunked(body), content_type, SCHEMA)

    @pytest.mark.asyncio
    async def test_unknown_field(self, pipeline, multipart, chunked):
        body, content_type = multipart([("thumbnail", "t.png", "image/png", b"png")])

        with pytest.raises(ValidationError):
            await pipeline.ingest(chunked(body), content_type, SCHEMA)

    @pytest.mark.asyncio
    async def test_repeated_single_field(self, pipeline, multipart, chunked):
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("item", None, None, b"{}"),
            ]
        )

        with pytest.raises(ValidationError):
            await pipeline.ingest(chunked(body), content_type, SCHEMA)

    @pytest.mark.asyncio
    async def test_missing_required_field(self, pipeline, staging, multipart, chunked):
        body, content_type = multipart([("attachment", "a.png", "image/png", b"png")])

        with pytest.raises(ValidationError) as exc_info:
            await pipeline.ingest(chunked(body), content_type, SCHEMA)

        assert exc_info.value.details == {"missing": ["item"]}
        assert staged_files(staging) == []


# ============================================================================
# Framing
# ============================================================================


class TestFraming:
    """Tests for malformed multipart input."""

    @pytest.mark.asyncio
    async def test_missing_content_type(self, pipeline, chunked):
        with pytest.raises(UploadProtocolError):
            await pipeline.ingest(chunked(b"irrelevant"), None, SCHEMA)

    @pytest.mark.asyncio
    async def test_not_multipart(self, pipeline, chunked):
        with pytest.raises(UploadProtocolError):
            await pipeline.ingest(chunked(b"{}"), "application/json", SCHEMA)

    @pytest.mark.asyncio
    async def test_missing_boundary(self, pipeline, chunked):
        with pytest.raises(UploadProtocolError):
            await pipeline.ingest(chunked(b"{}"), "multipart/form-data", SCHEMA)

    @pytest.mark.asyncio
    async def test_truncated_body(self, pipeline, staging, multipart, chunked):
        """A body that ends before the closing boundary is rejected and cleaned up."""
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("attachment", "a.png", "image/png", b"p" * 500),
            ]
        )

        with pytest.raises(UploadProtocolError):
            await pipeline.ingest(chunked(body[:-100]), content_type, SCHEMA)

        assert staged_files(staging) == []

    @pytest.mark.asyncio
    async def test_garbage_body(self, pipeline, chunked):
        with pytest.raises(UploadProtocolError):
            await pipeline.ingest(
                chunked(b"this is not multipart at all\r\n"),
                "multipart/form-data; boundary=abc",
                SCHEMA,
            )


# ============================================================================
# Cancellation
# ============================================================================


class TestCancellation:
    """Tests for cleanup when the consumer stops mid-body."""

    @pytest.mark.asyncio
    async def test_error_from_body_discards_staging(self, pipeline, staging, multipart):
        """An exception raised at a chunk boundary leaves nothing staged."""
        body, content_type = multipart(
            [
                ("item", None, None, b"{}"),
                ("attachment", "a.png", "image/png", b"p" * 800),
            ]
        )

        async def interrupted():
            yield body[: len(body) // 2]
            raise ConnectionResetError("client went away")

        with pytest.raises(ConnectionResetError):
            await pipeline.ingest(interrupted(), content_type, SCHEMA)

        assert staged_files(staging) == []
