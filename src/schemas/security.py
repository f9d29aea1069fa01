"""Security event schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import SecurityEventSeverity, SecurityEventType


class SecurityEventResponse(BaseModel):
    """Security event response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: str | None
    event_type: SecurityEventType
    severity: SecurityEventSeverity
    event_description: str | None
    ip_address: str | None
    is_resolved: bool
    resolved_at: datetime | None
    resolution_notes: str | None
    created_at: datetime


class ResolveEventRequest(BaseModel):
    notes: str | None = Field(None, max_length=2000)
