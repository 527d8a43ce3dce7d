"""API middleware for the catalog API.

Provides:
- Request ID correlation
- Identity verification (before any route reads the request body)
- Error handling
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from catalog_api.api.errors import error_response
from catalog_api.domain.exceptions import AuthError

logger = structlog.get_logger()


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID for correlation.

    Generates or extracts a request ID and adds it to:
    - Request state for access in handlers
    - Response headers for client correlation
    - Log context for tracing
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=getattr(response, "status_code", 500),
                duration_ms=round(duration_ms, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.HEADER_NAME] = request_id
        return response


# ============================================================================
# Identity Middleware
# ============================================================================


# Paths that don't require authentication
PUBLIC_PATHS = {
    "/health",
    "/ready",
    "/docs",
    "/redoc",
    "/openapi.json",
}

# Catalog reads are public; operator endpoints are not
READ_METHODS = {"GET", "HEAD"}
OPERATOR_PREFIX = "/attachments"


def requires_identity(request: Request) -> bool:
    """Check whether a request must carry verified credentials."""
    path = request.url.path.rstrip("/") or "/"
    if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc"):
        return False
    if path.startswith(OPERATOR_PREFIX):
        return True
    return request.method not in READ_METHODS


class IdentityMiddleware(BaseHTTPMiddleware):
    """Resolves the bearer credential into a principal.

    Uses the IdentityVerifier on app.state.identity and stores the result
    on request.state.principal. Runs before the route, so a rejected
    caller never has its body read.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        if not requires_identity(request):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", None)
        path = request.url.path

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            logger.warning("Missing authorization header", path=path, method=request.method)
            return error_response(AuthError("Missing Authorization header"), request_id)

        parts = auth_header.split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
            logger.warning("Invalid authorization format", path=path, method=request.method)
            return error_response(
                AuthError("Invalid Authorization header format. Use 'Bearer <token>'"),
                request_id,
            )

        try:
            principal = await request.app.state.identity.verify(parts[1].strip())
        except AuthError as e:
            return error_response(e, request_id)

        request.state.principal = principal
        structlog.contextvars.bind_contextvars(subject=principal.subject)
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("subject")


# ============================================================================
# Error Handling Middleware
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for consistent error handling.

    Catches unhandled exceptions and returns standardized error responses.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.exception(
                "Unhandled exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
            )

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error_code": "INTERNAL_ERROR",
                    "message": "An internal error occurred",
                    "details": {},
                    "request_id": request_id,
                },
            )


# ============================================================================
# Middleware Setup
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application.

    Middleware is added in reverse order (last added = first executed),
    so request IDs are assigned before identity checks and error handling.

    Args:
        app: FastAPI application instance.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(IdentityMiddleware)
    app.add_middleware(RequestIdMiddleware)
