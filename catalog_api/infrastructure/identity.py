"""Identity verification.

Resolves an opaque bearer credential into a Principal. The catalog core
never inspects credentials itself; it only checks the principal it is
handed.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog

from catalog_api.domain.entities import Principal
from catalog_api.domain.exceptions import AuthError
from catalog_api.infrastructure.config import Settings

logger = structlog.get_logger()


class IdentityVerifier(Protocol):
    """Verifies caller credentials."""

    async def verify(self, credential: str) -> Principal: ...


class StaticTokenVerifier:
    """Maps configured bearer tokens to principals.

    Stands in for an external identity provider in development and tests.
    Each verification is valid for token_lifetime_seconds.
    """

    def __init__(self, settings: Settings) -> None:
        self.grants = dict(settings.api_tokens)
        self.lifetime = timedelta(seconds=settings.token_lifetime_seconds)

    async def verify(self, credential: str) -> Principal:
        """Resolve a token.

        Raises:
            AuthError: If the token is unknown.
        """
        grant = self.grants.get(credential)
        if grant is None:
            logger.warning("Unknown bearer token")
            raise AuthError("Invalid credentials")
        return Principal(
            subject=grant.subject,
            roles=frozenset(grant.roles),
            expiry=datetime.now(timezone.utc) + self.lifetime,
        )
