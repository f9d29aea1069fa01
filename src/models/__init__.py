"""SQLAlchemy models."""

from src.models.device import Device
from src.models.device_auth import DeviceAuthentication
from src.models.security_event import SecurityEvent
from src.models.sync_delivery_status import SyncDeliveryStatus
from src.models.sync_record import SyncRecord
from src.models.user import User

__all__ = [
    "User",
    "Device",
    "DeviceAuthentication",
    "SyncRecord",
    "SyncDeliveryStatus",
    "SecurityEvent",
]
