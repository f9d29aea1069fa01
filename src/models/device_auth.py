"""Refresh token record model."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from src.database import Base
from src.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class DeviceAuthentication(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One row per refresh token issued to a device.

    ``created_at`` is the issuance time. The token itself is never stored,
    only its keyed digest.
    """

    __tablename__ = "device_authentications"

    device_id = Column(
        String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_valid = Column(Boolean, default=True, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by_ip = Column(String(45), nullable=True)

    # Relationships
    device = relationship("Device", back_populates="authentications")
