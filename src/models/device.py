"""Device model."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from src.database import Base
from src.models.enums import DeviceType, OSType
from src.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class Device(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A physical or browser client bound to exactly one user."""

    __tablename__ = "devices"
    __table_args__ = (UniqueConstraint("user_id", "device_token", name="uq_user_device_token"),)

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_name = Column(String(255), nullable=False)
    device_type = Column(
        Enum(DeviceType, name="devicetype", values_callable=lambda x: [e.value for e in x]),
        default=DeviceType.OTHER,
        nullable=False,
    )
    os_type = Column(
        Enum(OSType, name="ostype", values_callable=lambda x: [e.value for e in x]),
        default=OSType.OTHER,
        nullable=False,
    )
    browser_type = Column(String(50), nullable=True)
    last_ip_address = Column(String(45), nullable=True)
    device_token = Column(String(64), nullable=False)  # user-agent fingerprint
    device_settings = Column(JSON, nullable=False, default=dict)

    # Trust flag: set on login, cleared on logout
    is_active = Column(Boolean, default=True, nullable=False)
    # Presence flag: set while a live connection is registered
    is_online = Column(Boolean, default=False, nullable=False)

    sync_enabled = Column(Boolean, default=True, nullable=False)
    auto_sync = Column(Boolean, default=True, nullable=False)
    sync_interval = Column(Integer, default=300, nullable=False)  # seconds
    last_active = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="devices")
    authentications = relationship(
        "DeviceAuthentication", back_populates="device", cascade="all, delete-orphan"
    )
    delivery_statuses = relationship(
        "SyncDeliveryStatus", back_populates="device", cascade="all, delete-orphan"
    )
