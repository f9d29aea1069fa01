"""Per-device delivery status of a sync record."""

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from src.database import Base
from src.models.enums import ConflictResolutionStrategy, SyncState
from src.models.mixins import UUIDPrimaryKeyMixin


class SyncDeliveryStatus(Base, UUIDPrimaryKeyMixin):
    """Whether one device has received a given sync record."""

    __tablename__ = "sync_delivery_statuses"
    __table_args__ = (UniqueConstraint("sync_id", "device_id", name="uq_sync_device"),)

    sync_id = Column(
        String(36), ForeignKey("sync_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_id = Column(
        String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sync_state = Column(
        Enum(SyncState, name="syncstate", values_callable=lambda x: [e.value for e in x]),
        default=SyncState.PENDING,
        nullable=False,
    )
    last_sync_attempt = Column(DateTime(timezone=True), nullable=True)
    last_successful_sync = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    version = Column(Integer, nullable=True)
    conflict_resolution_strategy = Column(
        Enum(
            ConflictResolutionStrategy,
            name="conflictresolutionstrategy",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )

    # Relationships
    sync_record = relationship("SyncRecord", back_populates="delivery_statuses")
    device = relationship("Device", back_populates="delivery_statuses")
