"""Catalog item API endpoints.

Create and update take multipart bodies: an "item" part holding the JSON
item document and any number of "attachment" file parts. Routes hand the
un-read body stream to the catalog service.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse

from catalog_api.api.schemas import ErrorResponse, ItemListResponse, ItemResponse
from catalog_api.application.catalog_service import CatalogService
from catalog_api.catalog.service import ItemFilter, PaginationParams
from catalog_api.domain.entities import Principal
from catalog_api.domain.exceptions import AuthError

router = APIRouter(prefix="/items", tags=["Items"])

# One month
ATTACHMENT_CACHE_CONTROL = "max-age=2629746"


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> CatalogService:
    """Get catalog service bound to the application's resources."""
    return CatalogService(request.app.state.resources)


def get_principal(request: Request) -> Principal:
    """Get the principal verified by the identity middleware."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise AuthError("Authentication required")
    return principal


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=ItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
    },
    summary="Create catalog item",
)
async def create_item(
    request: Request,
    service: Annotated[CatalogService, Depends(get_service)],
    principal: Annotated[Principal, Depends(get_principal)],
) -> ItemResponse:
    """Create an item with optional attachments."""
    item = await service.create_item(
        principal,
        request.stream(),
        request.headers.get("content-type"),
    )
    return ItemResponse.from_entity(item)


@router.get(
    "",
    response_model=ItemListResponse,
    summary="List catalog items",
)
async def list_items(
    service: Annotated[CatalogService, Depends(get_service)],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    sort_by: Annotated[str, Query(pattern="^(price|created_at|updated_at|name)$")] = "created_at",
    sort_order: Annotated[str, Query(pattern="^(asc|desc)$")] = "desc",
    category_id: str | None = None,
    search: str | None = None,
) -> ItemListResponse:
    """List items, newest first by default."""
    result = await service.list_items(
        PaginationParams(page=page, page_size=page_size, sort_by=sort_by, sort_order=sort_order),
        ItemFilter(category_id=category_id, search=search),
    )
    return ItemListResponse(
        items=[ItemResponse.from_entity(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_next,
    )


@router.get(
    "/{item_id}",
    response_model=ItemResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get catalog item",
)
async def get_item(
    item_id: str,
    service: Annotated[CatalogService, Depends(get_service)],
) -> ItemResponse:
    item = await service.get_item(item_id)
    return ItemResponse.from_entity(item)


@router.put(
    "/{item_id}",
    response_model=ItemResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
    },
    summary="Update catalog item",
)
async def update_item(
    item_id: str,
    request: Request,
    service: Annotated[CatalogService, Depends(get_service)],
    principal: Annotated[Principal, Depends(get_principal)],
) -> ItemResponse:
    """Change fields, append attachments or remove attachments."""
    item = await service.update_item(
        principal,
        item_id,
        request.stream(),
        request.headers.get("content-type"),
    )
    return ItemResponse.from_entity(item)


@router.delete(
    "/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Delete catalog item",
)
async def delete_item(
    item_id: str,
    service: Annotated[CatalogService, Depends(get_service)],
    principal: Annotated[Principal, Depends(get_principal)],
) -> Response:
    await service.delete_item(principal, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{item_id}/attachments/{attachment_id}",
    response_class=StreamingResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Download attachment",
)
async def get_attachment(
    item_id: str,
    attachment_id: str,
    service: Annotated[CatalogService, Depends(get_service)],
) -> StreamingResponse:
    """Stream a finalized attachment's bytes."""
    attachment, stream = await service.get_attachment_content(item_id, attachment_id)
    return StreamingResponse(
        stream,
        media_type=attachment.content_type,
        headers={
            "Cache-Control": ATTACHMENT_CACHE_CONTROL,
            "Content-Length": str(attachment.size),
            "ETag": f'"{attachment.checksum}"',
        },
    )
