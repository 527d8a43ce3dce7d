"""Attachment reconciliation endpoints.

Operator endpoints for attachments whose storage was never confirmed.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from catalog_api.api.items import get_principal
from catalog_api.api.schemas import (
    ErrorResponse,
    PendingAttachmentListResponse,
    PendingAttachmentResponse,
    ReconcileResponse,
)
from catalog_api.application.catalog_service import ADMIN_ROLE, require_role
from catalog_api.application.reconciliation import ReconciliationService
from catalog_api.domain.entities import Principal

router = APIRouter(prefix="/attachments", tags=["Attachments"])


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return ReconciliationService(request.app.state.resources)


def require_operator(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    """Require an unexpired principal holding the admin role."""
    return require_role(principal, ADMIN_ROLE)


@router.get(
    "/unfinalized",
    response_model=PendingAttachmentListResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="List unfinalized attachments",
)
async def list_unfinalized(
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
    _principal: Annotated[Principal, Depends(require_operator)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> PendingAttachmentListResponse:
    attachments = await service.list_unfinalized_attachments(limit)
    return PendingAttachmentListResponse(
        attachments=[PendingAttachmentResponse.from_entity(a) for a in attachments],
        count=len(attachments),
    )


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Retry finalizing pending attachments",
)
async def reconcile(
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
    _principal: Annotated[Principal, Depends(require_operator)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> ReconcileResponse:
    """Run one reconciliation sweep."""
    result = await service.retry_unfinalized(limit)
    return ReconcileResponse(finalized=result.finalized, still_pending=result.still_pending)
