"""Sync record model."""

from sqlalchemy import JSON, Boolean, Column, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from src.database import Base
from src.models.enums import ContentType
from src.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class SyncRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One immutable content event submitted by a device.

    Only ``is_deleted`` and ``is_favorite`` change after creation.
    """

    __tablename__ = "sync_records"
    __table_args__ = (Index("ix_sync_records_user_created", "user_id", "created_at"),)

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_device_id = Column(
        String(36), ForeignKey("devices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    content_type = Column(
        Enum(ContentType, name="contenttype", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    content = Column(JSON, nullable=False)  # {"value": ..., "timestamp": ...}
    metadata_ = Column("metadata", JSON, nullable=True)
    parent_sync_id = Column(String(36), ForeignKey("sync_records.id"), nullable=True)
    version = Column(Integer, default=1, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    checksum = Column(String(64), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    is_favorite = Column(Boolean, default=False, nullable=False)

    # Relationships
    user = relationship("User", back_populates="sync_records")
    delivery_statuses = relationship(
        "SyncDeliveryStatus", back_populates="sync_record", cascade="all, delete-orphan"
    )

    @property
    def value(self) -> str:
        """The raw synced content."""
        return self.content["value"]
