"""
Outbox routes backing the tenant admin "Outbox" screen and delivery workers.

Messages are always addressed through their tenant; an id that belongs to a
different tenant is reported as not found.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import require_service_role
from app.features.automation.domain.models import OUTBOX_CHANNELS, OUTBOX_STATUSES
from app.features.automation.errors import OutboxMessageNotFoundError, OutboxTransitionError
from app.features.automation.repository import outbox_repository
from app.features.automation.repository.outbox_repository import MAX_LIST_LIMIT
from app.features.automation.services.outbox_service import OutboxService

from .schemas import (
    ManualSendResponse,
    MarkFailedRequest,
    OutboxListResponse,
    OutboxMessageResponse,
)

router = APIRouter(
    prefix="/tenants/{tenant_id}/outbox",
    tags=["outbox"],
    dependencies=[Depends(require_service_role)],
)


def get_outbox_service() -> OutboxService:
    return OutboxService(outbox_repository)


def _translate(e: OutboxMessageNotFoundError | OutboxTransitionError) -> HTTPException:
    if isinstance(e, OutboxMessageNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "error": str(e),
            "current_status": e.current_status,
            "target_status": e.target_status,
        },
    )


@router.get("", response_model=OutboxListResponse)
async def list_outbox_messages(
    tenant_id: str,
    status_filter: str | None = Query(None, alias="status"),
    channel: str | None = Query(None),
    limit: int = Query(MAX_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    service: OutboxService = Depends(get_outbox_service),
):
    if status_filter and status_filter not in OUTBOX_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status '{status_filter}'"
        )
    if channel and channel not in OUTBOX_CHANNELS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown channel '{channel}'"
        )

    messages = await service.list_messages(
        tenant_id, status=status_filter, channel=channel, limit=limit
    )
    return {"messages": [m.to_dict() for m in messages], "count": len(messages)}


@router.get("/{message_id}", response_model=OutboxMessageResponse)
async def get_outbox_message(
    tenant_id: str, message_id: str, service: OutboxService = Depends(get_outbox_service)
):
    try:
        message = await service.get_message(tenant_id, message_id)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return message.to_dict()


@router.post("/{message_id}/mark-processing", response_model=OutboxMessageResponse)
async def mark_processing(
    tenant_id: str, message_id: str, service: OutboxService = Depends(get_outbox_service)
):
    try:
        message = await service.mark_processing(tenant_id, message_id)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return message.to_dict()


@router.post("/{message_id}/mark-sent", response_model=OutboxMessageResponse)
async def mark_sent(
    tenant_id: str, message_id: str, service: OutboxService = Depends(get_outbox_service)
):
    try:
        message = await service.mark_sent(tenant_id, message_id)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return message.to_dict()


@router.post("/{message_id}/mark-failed", response_model=OutboxMessageResponse)
async def mark_failed(
    tenant_id: str,
    message_id: str,
    body: MarkFailedRequest,
    service: OutboxService = Depends(get_outbox_service),
):
    try:
        message = await service.mark_failed(tenant_id, message_id, body.error)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return message.to_dict()


@router.post("/{message_id}/cancel", response_model=OutboxMessageResponse)
async def cancel_message(
    tenant_id: str, message_id: str, service: OutboxService = Depends(get_outbox_service)
):
    try:
        message = await service.cancel(tenant_id, message_id)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return message.to_dict()


@router.post("/{message_id}/retry", response_model=OutboxMessageResponse)
async def retry_message(
    tenant_id: str, message_id: str, service: OutboxService = Depends(get_outbox_service)
):
    try:
        message = await service.retry(tenant_id, message_id)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return message.to_dict()


@router.post("/{message_id}/manual-send", response_model=ManualSendResponse)
async def manual_send(
    tenant_id: str, message_id: str, service: OutboxService = Depends(get_outbox_service)
):
    try:
        result = await service.record_manual_send(tenant_id, message_id)
    except (OutboxMessageNotFoundError, OutboxTransitionError) as e:
        raise _translate(e) from e
    return {"url": result["url"], "message": result["message"].to_dict()}
