"""Sync event schemas.

Submissions are tagged by ``content_type`` and real-time client messages by
``type``; an unknown tag is rejected at the boundary.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from src.models.enums import ContentType, SyncState


class SyncEventBase(BaseModel):
    """Fields shared by every kind of sync submission."""

    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    parent_sync_id: str | None = Field(None, max_length=36)
    target_devices: list[str] | None = None


class ClipboardSync(SyncEventBase):
    content_type: Literal["clipboard"]


class NoteSync(SyncEventBase):
    content_type: Literal["note"]


class LinkSync(SyncEventBase):
    content_type: Literal["link"]

    @field_validator("content")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("Link content must be an http(s) URL")
        return v


class FileSync(SyncEventBase):
    """A file reference. The content is a path or storage URL, never the bytes."""

    content_type: Literal["file"]

    @model_validator(mode="after")
    def require_filename(self) -> "FileSync":
        if not self.metadata.get("filename"):
            raise ValueError("File syncs require metadata.filename")
        return self


SyncEvent = Annotated[
    ClipboardSync | NoteSync | LinkSync | FileSync, Field(discriminator="content_type")
]
SyncEventAdapter: TypeAdapter[SyncEvent] = TypeAdapter(SyncEvent)


class SyncRecordResponse(BaseModel):
    """A sync record as served to clients."""

    id: str
    user_id: str
    source_device_id: str | None
    content_type: ContentType
    content: dict[str, Any]
    metadata: dict[str, Any]
    parent_sync_id: str | None
    version: int
    size_bytes: int
    checksum: str
    is_favorite: bool
    is_deleted: bool
    created_at: datetime


class SyncCreateResponse(BaseModel):
    sync: SyncRecordResponse
    delivered_to: list[str]
    failed: list[str]


class SyncBatchResponse(BaseModel):
    recent: list[SyncRecordResponse]
    favorites: list[SyncRecordResponse]


class SyncStatsResponse(BaseModel):
    total: int
    favorites: int
    by_type: dict[str, int]


class FavoriteResponse(BaseModel):
    sync_id: str
    is_favorite: bool


class SyncAckRequest(BaseModel):
    """Delivery report from a receiving device."""

    state: Literal["completed", "failed", "conflict"] = "completed"
    error_message: str | None = Field(None, max_length=2000)


class DeliveryStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sync_id: str
    device_id: str
    sync_state: SyncState
    last_sync_attempt: datetime | None
    last_successful_sync: datetime | None
    retry_count: int
    error_message: str | None


# Real-time client messages


class SyncIdData(BaseModel):
    sync_id: str = Field(..., validation_alias=AliasChoices("sync_id", "syncId"))


class SyncRequestData(BaseModel):
    content_type: ContentType | None = None
    since: datetime | None = None
    limit: int = Field(50, ge=1, le=200)


class SyncCreateMessage(BaseModel):
    type: Literal["sync:create"]
    data: SyncEvent


class SyncAckMessage(BaseModel):
    type: Literal["sync:ack"]
    data: SyncIdData


class SyncRequestMessage(BaseModel):
    type: Literal["sync:request"]
    data: SyncRequestData = Field(default_factory=SyncRequestData)


class ToggleFavoriteMessage(BaseModel):
    type: Literal["sync:toggle-favorite"]
    data: SyncIdData


class SyncDeleteMessage(BaseModel):
    type: Literal["sync:delete"]
    data: SyncIdData


class PongMessage(BaseModel):
    type: Literal["pong"]
    data: dict[str, Any] = Field(default_factory=dict)


ClientMessage = Annotated[
    SyncCreateMessage
    | SyncAckMessage
    | SyncRequestMessage
    | ToggleFavoriteMessage
    | SyncDeleteMessage
    | PongMessage,
    Field(discriminator="type"),
]
ClientMessageAdapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)

CLIENT_MESSAGE_TYPES = frozenset(
    {"sync:create", "sync:ack", "sync:request", "sync:toggle-favorite", "sync:delete", "pong"}
)
