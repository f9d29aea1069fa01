"""Security event API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_current_principal, get_security_event_service
from src.schemas.security import ResolveEventRequest, SecurityEventResponse
from src.services.auth_gate import Principal
from src.services.security_events import SecurityEventService

router = APIRouter(prefix="/api/v1/security", tags=["security"])


@router.get("/events", response_model=list[SecurityEventResponse])
async def list_events(
    principal: Annotated[Principal, Depends(get_current_principal)],
    events: Annotated[SecurityEventService, Depends(get_security_event_service)],
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
):
    """Most recent security events of the user."""
    return events.get_recent_events(principal.user_id, limit=limit)


@router.get("/events/unresolved", response_model=list[SecurityEventResponse])
async def list_unresolved_events(
    principal: Annotated[Principal, Depends(get_current_principal)],
    events: Annotated[SecurityEventService, Depends(get_security_event_service)],
):
    """Unresolved events of high severity or above."""
    return events.get_unresolved_events(principal.user_id)


@router.post("/events/{event_id}/resolve", response_model=SecurityEventResponse)
async def resolve_event(
    event_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    events: Annotated[SecurityEventService, Depends(get_security_event_service)],
    body: ResolveEventRequest | None = None,
):
    return events.resolve(event_id, principal.user_id, body.notes if body else None)
