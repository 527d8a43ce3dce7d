"""Domain exceptions.

All errors raised by the resource access layer. The API layer maps each
class to an HTTP status; services only raise and propagate them.
"""

from typing import Any


class CatalogError(Exception):
    """Base class for all catalog exceptions.

    All catalog errors should inherit from this class to allow
    catching them at the application and API layers.
    """

    error_code = "CATALOG_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize catalog error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Request Errors
# ============================================================================


class ValidationError(CatalogError):
    """Raised for malformed input the caller can fix."""

    error_code = "VALIDATION_ERROR"


class NotFoundError(CatalogError):
    """Raised when a record or stored object does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize not found error.

        Args:
            resource_type: Type of the missing resource (e.g. "catalog_item").
            resource_id: Identifier that was looked up.
        """
        super().__init__(
            f"{resource_type} {resource_id} not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(CatalogError):
    """Raised when a write violates a uniqueness constraint."""

    error_code = "CONFLICT"


class AuthError(CatalogError):
    """Raised when the identity collaborator rejects the caller.

    Attributes:
        forbidden: True when the caller is authenticated but lacks a role.
    """

    error_code = "UNAUTHORIZED"

    def __init__(
        self,
        message: str,
        forbidden: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.forbidden = forbidden
        if forbidden:
            self.error_code = "FORBIDDEN"


# ============================================================================
# Ingestion Errors
# ============================================================================


class IngestionError(CatalogError):
    """Base class for upload ingestion errors."""

    pass


class UploadAborted(IngestionError):
    """Raised when a part exceeds its configured size limit."""

    error_code = "UPLOAD_TOO_LARGE"

    def __init__(self, field_name: str, limit: int) -> None:
        """Initialize upload aborted error.

        Args:
            field_name: Multipart field that overflowed.
            limit: Maximum allowed size in bytes.
        """
        super().__init__(
            f"Field '{field_name}' exceeds the maximum size of {limit} bytes",
            details={"field": field_name, "limit": limit},
        )


class UploadRejected(IngestionError):
    """Raised when a part has an unsupported content type."""

    error_code = "UNSUPPORTED_MEDIA_TYPE"

    def __init__(self, field_name: str, content_type: str, allowed: list[str]) -> None:
        """Initialize upload rejected error.

        Args:
            field_name: Multipart field name.
            content_type: Content type that was sent.
            allowed: Content types accepted for the field.
        """
        super().__init__(
            f"Content type '{content_type}' is not accepted for field '{field_name}'",
            details={"field": field_name, "content_type": content_type, "allowed": allowed},
        )


class UploadProtocolError(IngestionError):
    """Raised when the multipart framing is malformed."""

    error_code = "MALFORMED_MULTIPART"


# ============================================================================
# Storage Errors
# ============================================================================


class StorageError(CatalogError):
    """Base class for storage backend errors."""

    pass


class StorageTransient(StorageError):
    """Raised for retryable cache or object store I/O failures."""

    error_code = "STORAGE_UNAVAILABLE"


class StorageFatal(StorageError):
    """Raised when the relational store is unavailable or fails."""

    error_code = "STORAGE_ERROR"
