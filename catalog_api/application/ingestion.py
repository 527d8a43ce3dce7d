"""Upload ingestion pipeline.

Streams a multipart/form-data body chunk by chunk:
  - validates each part's field name and content type against a schema
    as soon as its headers are complete,
  - hashes and counts bytes incrementally, aborting the moment a part
    would exceed its limit (the overflowing chunk is never staged and no
    further body chunks are read),
  - stages file parts on disk and keeps small value parts in memory.

Every await on the body iterator is a suspension point. If the task is
cancelled there, or any error is raised, all parts staged so far are
discarded before the exception propagates.
"""

import hashlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

import structlog
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, MultipartState, parse_options_header

from catalog_api.domain.entities import UploadDescriptor
from catalog_api.domain.exceptions import (
    UploadAborted,
    UploadProtocolError,
    UploadRejected,
    ValidationError,
)
from catalog_api.infrastructure.staging import StagingArea

logger = structlog.get_logger()

DEFAULT_FILE_CONTENT_TYPE = "application/octet-stream"
DEFAULT_VALUE_CONTENT_TYPE = "text/plain"


# ============================================================================
# Schema
# ============================================================================


@dataclass(frozen=True)
class FieldPolicy:
    """Expected multipart field.

    Attributes:
        name: Field name.
        max_bytes: Maximum size of a single part for this field.
        content_types: Accepted content types, None accepts any.
        required: Whether the field must be present.
        multiple: Whether the field may repeat.
        staged: Stage bytes on disk (files) instead of keeping them in memory.
    """

    name: str
    max_bytes: int
    content_types: frozenset[str] | None = None
    required: bool = False
    multiple: bool = False
    staged: bool = True


@dataclass(frozen=True)
class UploadSchema:
    """Set of fields accepted by one operation."""

    fields: tuple[FieldPolicy, ...]

    def get(self, name: str) -> FieldPolicy | None:
        for policy in self.fields:
            if policy.name == name:
                return policy
        return None


@dataclass
class IngestedForm:
    """Result of a successful ingestion.

    Attributes:
        values: In-memory value parts by field name.
        uploads: Staged file parts in arrival order.
    """

    values: dict[str, bytes] = field(default_factory=dict)
    uploads: list[UploadDescriptor] = field(default_factory=list)

    def discard(self, staging: StagingArea) -> None:
        """Remove every staged part."""
        for upload in self.uploads:
            staging.discard(upload.staged_path)


# ============================================================================
# Pipeline
# ============================================================================


class _Event(Enum):
    PART_BEGIN = "part_begin"
    HEADER_FIELD = "header_field"
    HEADER_VALUE = "header_value"
    HEADER_END = "header_end"
    HEADERS_FINISHED = "headers_finished"
    PART_DATA = "part_data"
    PART_END = "part_end"


@dataclass
class _Part:
    policy: FieldPolicy | None = None
    filename: str | None = None
    content_type: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    header_field: bytearray = field(default_factory=bytearray)
    header_value: bytearray = field(default_factory=bytearray)
    hasher: Any = field(default_factory=hashlib.sha256)
    size: int = 0
    path: Path | None = None
    handle: BinaryIO | None = None
    buffer: bytearray = field(default_factory=bytearray)


class UploadIngestionPipeline:
    """Validates and stages multipart request bodies."""

    def __init__(self, staging: StagingArea) -> None:
        """Initialize pipeline.

        Args:
            staging: Where file parts are written.
        """
        self.staging = staging

    async def ingest(
        self,
        body: AsyncIterator[bytes],
        content_type: str | None,
        schema: UploadSchema,
    ) -> IngestedForm:
        """Consume a multipart body.

        Args:
            body: Request body chunks. Only read after the caller has
                been authenticated.
            content_type: Request Content-Type header.
            schema: Fields the operation accepts.

        Returns:
            Staged uploads and in-memory values.

        Raises:
            ValidationError: Unknown, repeated or missing fields.
            UploadAborted: A part exceeded its size limit.
            UploadRejected: A part had an unsupported content type.
            UploadProtocolError: Malformed multipart framing.
        """
        boundary = _boundary_from_header(content_type)
        events: list[tuple[_Event, bytes]] = []
        parser = MultipartParser(boundary, _callbacks(events))

        form = IngestedForm()
        seen: set[str] = set()
        part = _Part()
        completed = False

        try:
            async for chunk in body:
                if not chunk:
                    continue
                try:
                    parser.write(chunk)
                except MultipartParseError as e:
                    raise UploadProtocolError(f"Malformed multipart body: {e}") from e

                for event, data in events:
                    if event is _Event.PART_BEGIN:
                        part = _Part()
                    elif event is _Event.HEADER_FIELD:
                        part.header_field += data
                    elif event is _Event.HEADER_VALUE:
                        part.header_value += data
                    elif event is _Event.HEADER_END:
                        part.headers.append(
                            (
                                part.header_field.decode("latin-1").lower(),
                                part.header_value.decode("utf-8", errors="replace"),
                            )
                        )
                        part.header_field.clear()
                        part.header_value.clear()
                    elif event is _Event.HEADERS_FINISHED:
                        self._open_part(part, schema, seen)
                    elif event is _Event.PART_DATA:
                        self._write(part, data)
                    elif event is _Event.PART_END:
                        self._close_part(part, form)
                events.clear()

            if parser.state != MultipartState.END:
                raise UploadProtocolError("Multipart body ended before the closing boundary")
            parser.finalize()

            missing = [s.name for s in schema.fields if s.required and s.name not in seen]
            if missing:
                raise ValidationError(
                    f"Missing required fields: {', '.join(missing)}",
                    details={"missing": missing},
                )

            completed = True
            logger.info(
                "Upload ingested",
                uploads=len(form.uploads),
                values=sorted(form.values),
                bytes=sum(u.size for u in form.uploads),
            )
            return form
        finally:
            if not completed:
                if part.handle is not None:
                    part.handle.close()
                self.staging.discard(part.path)
                form.discard(self.staging)

    def _open_part(self, part: _Part, schema: UploadSchema, seen: set[str]) -> None:
        disposition = dict(part.headers).get("content-disposition")
        if disposition is None:
            raise UploadProtocolError("Part is missing a Content-Disposition header")
        _, options = parse_options_header(disposition)
        raw_name = options.get(b"name")
        if raw_name is None:
            raise UploadProtocolError("Part Content-Disposition has no field name")
        name = raw_name.decode("utf-8", errors="replace")

        policy = schema.get(name)
        if policy is None:
            raise ValidationError(f"Unexpected field '{name}'", details={"field": name})
        if name in seen and not policy.multiple:
            raise ValidationError(f"Field '{name}' may only appear once", details={"field": name})
        seen.add(name)

        raw_filename = options.get(b"filename")
        part.filename = raw_filename.decode("utf-8", errors="replace") if raw_filename else None

        default_type = DEFAULT_FILE_CONTENT_TYPE if policy.staged else DEFAULT_VALUE_CONTENT_TYPE
        raw_type = dict(part.headers).get("content-type") or default_type
        media_type, _ = parse_options_header(raw_type)
        part.content_type = media_type.decode("latin-1").lower()
        if policy.content_types is not None and part.content_type not in policy.content_types:
            raise UploadRejected(name, part.content_type, sorted(policy.content_types))

        part.policy = policy
        if policy.staged:
            part.path, part.handle = self.staging.create()

    def _write(self, part: _Part, data: bytes) -> None:
        policy = part.policy
        if policy is None:
            raise UploadProtocolError("Part data arrived before its headers")
        if part.size + len(data) > policy.max_bytes:
            logger.warning(
                "Upload aborted, part too large",
                field=policy.name,
                limit=policy.max_bytes,
                received=part.size,
            )
            raise UploadAborted(policy.name, policy.max_bytes)

        part.size += len(data)
        part.hasher.update(data)
        if part.handle is not None:
            part.handle.write(data)
        else:
            part.buffer += data

    def _close_part(self, part: _Part, form: IngestedForm) -> None:
        policy = part.policy
        if policy is None:
            raise UploadProtocolError("Part ended before its headers")
        if part.handle is None:
            form.values[policy.name] = bytes(part.buffer)
            return

        part.handle.close()
        part.handle = None
        form.uploads.append(
            UploadDescriptor(
                field_name=policy.name,
                content_type=part.content_type,
                size=part.size,
                checksum=part.hasher.hexdigest(),
                staged_path=part.path,
                filename=part.filename,
            )
        )
        # Ownership moved to the form
        part.path = None


def _boundary_from_header(content_type: str | None) -> bytes:
    if not content_type:
        raise UploadProtocolError("Missing Content-Type header")
    media_type, options = parse_options_header(content_type)
    if media_type.lower() != b"multipart/form-data":
        raise UploadProtocolError(
            f"Expected multipart/form-data, got {media_type.decode('latin-1')}"
        )
    boundary = options.get(b"boundary")
    if not boundary:
        raise UploadProtocolError("Multipart Content-Type has no boundary")
    return boundary


def _callbacks(events: list[tuple[_Event, bytes]]) -> dict:
    def data_callback(event: _Event):
        def callback(data: bytes, start: int, end: int) -> None:
            events.append((event, data[start:end]))

        return callback

    def notify_callback(event: _Event):
        def callback() -> None:
            events.append((event, b""))

        return callback

    return {
        "on_part_begin": notify_callback(_Event.PART_BEGIN),
        "on_header_field": data_callback(_Event.HEADER_FIELD),
        "on_header_value": data_callback(_Event.HEADER_VALUE),
        "on_header_end": notify_callback(_Event.HEADER_END),
        "on_headers_finished": notify_callback(_Event.HEADERS_FINISHED),
        "on_part_data": data_callback(_Event.PART_DATA),
        "on_part_end": notify_callback(_Event.PART_END),
    }
