"""Pydantic schemas for API requests and responses."""

from src.schemas.auth import AuthResponse, UserLogin, UserRegister, UserResponse
from src.schemas.device import DeviceResponse, DeviceSettingsUpdate
from src.schemas.security import SecurityEventResponse
from src.schemas.sync import SyncEvent, SyncRecordResponse

__all__ = [
    "UserRegister",
    "UserLogin",
    "UserResponse",
    "AuthResponse",
    "DeviceResponse",
    "DeviceSettingsUpdate",
    "SecurityEventResponse",
    "SyncEvent",
    "SyncRecordResponse",
]
