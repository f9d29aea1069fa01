"""Device schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import DeviceType, OSType


class DeviceResponse(BaseModel):
    """Device response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    device_name: str
    device_type: DeviceType
    os_type: OSType
    browser_type: str | None
    last_ip_address: str | None
    is_active: bool
    is_online: bool
    sync_enabled: bool
    auto_sync: bool
    sync_interval: int
    last_active: datetime | None
    created_at: datetime
    is_current: bool = False


class DeviceSettingsUpdate(BaseModel):
    """Update a device's name and sync preferences."""

    device_name: str | None = Field(None, min_length=1, max_length=255)
    sync_enabled: bool | None = None
    auto_sync: bool | None = None
    sync_interval: int | None = Field(None, ge=10, le=86400)  # seconds
