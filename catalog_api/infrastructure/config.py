"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

import tempfile
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class TokenGrant(BaseModel):
    """Principal granted to a bearer token by the static identity verifier."""

    subject: str
    roles: list[str] = Field(default_factory=list)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://catalog:catalog_dev_password@db:5432/catalog"

    # Cache (empty URL selects the in-process cache)
    redis_url: str = "redis://cache:6379/0"
    cache_socket_timeout_seconds: float = 1.0
    cache_ttl_seconds: dict[str, int] = {"catalog_item": 60 * 60 * 3}
    cache_default_ttl_seconds: int = 60 * 15

    # Object store ("s3" or "memory")
    object_store_backend: str = "s3"
    object_store_bucket: str = "catalog-attachments"
    object_store_region: str = "us-east-1"
    object_store_endpoint_url: str | None = None

    # Uploads
    max_upload_bytes: int = 10 * 1024 * 1024
    max_item_document_bytes: int = 64 * 1024
    allowed_attachment_types: list[str] = [
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/gif",
        "application/pdf",
    ]
    # Staged paths are stored on attachment rows. Reconciliation can only
    # re-upload them on a host that sees the same directory, so point this
    # at shared storage when several instances run the sweep.
    staging_dir: Path = Path(tempfile.gettempdir()) / "catalog-staging"

    # Finalize retries
    finalize_max_attempts: int = 4
    finalize_backoff_seconds: float = 0.5
    finalize_backoff_max_seconds: float = 8.0

    # Authentication
    api_tokens: dict[str, TokenGrant] = {
        "dev-admin-token-change-in-production": TokenGrant(
            subject="dev-admin", roles=["admin"]
        ),
    }
    token_lifetime_seconds: int = 60 * 60

    # Logging
    log_level: str = "INFO"

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"

    def ttl_for(self, resource_type: str) -> int:
        """Get the cache TTL for a resource type.

        Args:
            resource_type: Cache resource type (e.g. "catalog_item").

        Returns:
            TTL in seconds.
        """
        return self.cache_ttl_seconds.get(resource_type, self.cache_default_ttl_seconds)


settings = Settings()
