"""Sync API endpoints."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, status

from src.api.dependencies import get_current_principal, get_sync_fanout, get_sync_service
from src.models.enums import ContentType, SyncState
from src.schemas.auth import MessageResponse
from src.schemas.sync import (
    DeliveryStatusResponse,
    FavoriteResponse,
    SyncAckRequest,
    SyncCreateResponse,
    SyncEvent,
    SyncRecordResponse,
    SyncStatsResponse,
)
from src.services.auth_gate import Principal
from src.services.sync_service import FAVORITES_LIMIT, SyncFanout, SyncService, ingest_sync

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


@router.post("", response_model=SyncCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_sync(
    event: Annotated[SyncEvent, Body()],
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    fanout: Annotated[SyncFanout, Depends(get_sync_fanout)],
):
    """Submit content from the calling device and push it to its connected siblings."""
    result = await ingest_sync(service, fanout, principal.user_id, principal.device_id, event)
    return SyncCreateResponse(
        sync=SyncRecordResponse.model_validate(result.record),
        delivered_to=result.fanout.delivered,
        failed=sorted(result.fanout.failed),
    )


@router.get("/recent", response_model=list[SyncRecordResponse])
async def list_recent(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    content_type: ContentType | None = None,
    since: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
):
    """Recent syncs, newest first."""
    return service.list_recent(
        principal.user_id, content_type=content_type, since=since, limit=limit
    )


@router.get("/favorites", response_model=list[SyncRecordResponse])
async def list_favorites(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    limit: Annotated[int, Query(ge=1, le=100)] = FAVORITES_LIMIT,
):
    return service.list_favorites(principal.user_id, limit=limit)


@router.get("/stats", response_model=SyncStatsResponse)
async def get_stats(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
):
    return service.get_stats(principal.user_id)


@router.get("/{sync_id}", response_model=SyncRecordResponse)
async def get_sync(
    sync_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
):
    return service.get_sync(sync_id, principal.user_id)


@router.post("/{sync_id}/favorite", response_model=FavoriteResponse)
async def toggle_favorite(
    sync_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    fanout: Annotated[SyncFanout, Depends(get_sync_fanout)],
):
    """Flip the favorite flag; connected devices get refreshed lists."""
    is_favorite = service.toggle_favorite(sync_id, principal.user_id)
    await fanout.broadcast_lists(service, principal.user_id)
    return FavoriteResponse(sync_id=sync_id, is_favorite=is_favorite)


@router.delete("/{sync_id}", response_model=MessageResponse)
async def delete_sync(
    sync_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    fanout: Annotated[SyncFanout, Depends(get_sync_fanout)],
):
    """Soft-delete a sync and tell connected devices."""
    service.soft_delete(sync_id, principal.user_id)
    await fanout.broadcast_deleted(service, principal.user_id, sync_id)
    return MessageResponse(message="Sync deleted")


@router.post("/{sync_id}/ack", response_model=DeliveryStatusResponse)
async def acknowledge_sync(
    sync_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    ack: SyncAckRequest | None = None,
):
    """Report delivery of a sync to the calling device."""
    ack = ack or SyncAckRequest()
    return service.acknowledge_sync(
        sync_id,
        principal.user_id,
        principal.device_id,
        state=SyncState(ack.state),
        error_message=ack.error_message,
    )
