"""Error rendering.

Maps domain exceptions to HTTP responses with the standard error body.
"""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from catalog_api.domain.exceptions import (
    AuthError,
    CatalogError,
    ConflictError,
    NotFoundError,
    StorageFatal,
    StorageTransient,
    UploadAborted,
    UploadProtocolError,
    UploadRejected,
    ValidationError,
)

logger = structlog.get_logger()

STATUS_CODES: dict[type[CatalogError], int] = {
    ValidationError: 400,
    UploadProtocolError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    UploadAborted: 413,
    UploadRejected: 415,
    StorageTransient: 503,
    StorageFatal: 500,
}


def status_for(exc: CatalogError) -> int:
    """Get the HTTP status for a domain exception."""
    if isinstance(exc, AuthError):
        return status.HTTP_403_FORBIDDEN if exc.forbidden else status.HTTP_401_UNAUTHORIZED
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            return STATUS_CODES[exc_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(exc: CatalogError, request_id: str | None) -> JSONResponse:
    """Render a domain exception as the standard error body."""
    headers = None
    if isinstance(exc, AuthError) and not exc.forbidden:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=status_for(exc),
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": request_id,
        },
        headers=headers,
    )


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    """Handle domain exceptions raised by routes."""
    request_id = getattr(request.state, "request_id", None)
    level = "error" if status_for(exc) >= 500 else "info"
    getattr(logger, level)(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error_code=exc.error_code,
        error=exc.message,
    )
    return error_response(exc, request_id)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render query/path parameter validation failures."""
    errors = [
        {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return error_response(
        ValidationError("Invalid request parameters", details={"errors": errors}),
        getattr(request.state, "request_id", None),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the application."""
    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
