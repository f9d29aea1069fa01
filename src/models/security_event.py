"""Security audit event model."""

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from src.database import Base
from src.models.enums import SecurityEventSeverity, SecurityEventType
from src.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class SecurityEvent(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Append-only audit record. Resolution is the only mutation."""

    __tablename__ = "security_events"

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_id = Column(
        String(36), ForeignKey("devices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    event_type = Column(
        Enum(
            SecurityEventType,
            name="securityeventtype",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    severity = Column(
        Enum(
            SecurityEventSeverity,
            name="securityeventseverity",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    event_description = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    is_resolved = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    # Relationships
    user = relationship("User", backref="security_events")
    device = relationship("Device", backref="security_events")
