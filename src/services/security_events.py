"""Security event audit trail."""

import logging

from sqlalchemy.orm import Session

from src.models.device import Device
from src.models.enums import SecurityEventSeverity, SecurityEventType
from src.models.mixins import utcnow
from src.models.security_event import SecurityEvent
from src.models.user import User
from src.services.errors import NotFoundError

logger = logging.getLogger(__name__)


class SecurityEventService:
    """Records and queries security events.

    Recording only adds the event to the session; the caller's commit makes
    it durable together with the change that triggered it.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        user_id: str,
        event_type: SecurityEventType,
        severity: SecurityEventSeverity,
        description: str,
        device_id: str | None = None,
        ip_address: str | None = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            user_id=user_id,
            device_id=device_id,
            event_type=event_type,
            severity=severity,
            event_description=description,
            ip_address=ip_address,
        )
        self.db.add(event)
        logger.info(f"Security event {event_type.value} ({severity.value}) for user {user_id}")
        return event

    def log_login(
        self,
        user: User,
        device: Device | None,
        success: bool,
        ip_address: str | None = None,
        reason: str = "invalid credentials",
    ) -> SecurityEvent:
        if success:
            description = f"Login successful from device {device.device_name}"
        else:
            description = f"Login failed: {reason}"
        return self.record(
            user.id,
            SecurityEventType.LOGIN_SUCCESS if success else SecurityEventType.LOGIN_FAILED,
            SecurityEventSeverity.LOW if success else SecurityEventSeverity.MEDIUM,
            description,
            device_id=device.id if device else None,
            ip_address=ip_address,
        )

    def log_device_paired(
        self, user: User, device: Device, ip_address: str | None = None
    ) -> SecurityEvent:
        return self.record(
            user.id,
            SecurityEventType.DEVICE_PAIRED,
            SecurityEventSeverity.MEDIUM,
            f"New device paired: {device.device_name}",
            device_id=device.id,
            ip_address=ip_address,
        )

    def log_device_removed(
        self,
        user_id: str,
        device: Device,
        removed_by: Device | None = None,
        ip_address: str | None = None,
    ) -> SecurityEvent:
        # The removed device row is about to disappear, so the event hangs off the remover
        by = f" by {removed_by.device_name}" if removed_by else ""
        return self.record(
            user_id,
            SecurityEventType.DEVICE_REMOVED,
            SecurityEventSeverity.MEDIUM,
            f"Device {device.device_name} removed{by}",
            device_id=removed_by.id if removed_by and removed_by.id != device.id else None,
            ip_address=ip_address,
        )

    def log_suspicious_activity(
        self,
        user_id: str,
        description: str,
        device_id: str | None = None,
        ip_address: str | None = None,
    ) -> SecurityEvent:
        return self.record(
            user_id,
            SecurityEventType.SUSPICIOUS_ACTIVITY,
            SecurityEventSeverity.HIGH,
            description,
            device_id=device_id,
            ip_address=ip_address,
        )

    def log_password_changed(self, user: User, device: Device | None) -> SecurityEvent:
        return self.record(
            user.id,
            SecurityEventType.PASSWORD_CHANGED,
            SecurityEventSeverity.MEDIUM,
            "Password changed successfully",
            device_id=device.id if device else None,
        )

    def log_password_reset_requested(self, user: User) -> SecurityEvent:
        return self.record(
            user.id,
            SecurityEventType.PASSWORD_RESET_REQUESTED,
            SecurityEventSeverity.LOW,
            "Password reset requested",
        )

    def log_logout(self, user_id: str, device: Device) -> SecurityEvent:
        return self.record(
            user_id,
            SecurityEventType.LOGOUT,
            SecurityEventSeverity.LOW,
            f"Logged out from device {device.device_name}",
            device_id=device.id,
            ip_address=device.last_ip_address,
        )

    def get_recent_events(self, user_id: str, limit: int = 10) -> list[SecurityEvent]:
        return (
            self.db.query(SecurityEvent)
            .filter(SecurityEvent.user_id == user_id)
            .order_by(SecurityEvent.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_unresolved_events(self, user_id: str) -> list[SecurityEvent]:
        """Unresolved events of high severity or above."""
        return (
            self.db.query(SecurityEvent)
            .filter(
                SecurityEvent.user_id == user_id,
                SecurityEvent.is_resolved.is_(False),
                SecurityEvent.severity.in_(
                    [SecurityEventSeverity.HIGH, SecurityEventSeverity.CRITICAL]
                ),
            )
            .order_by(SecurityEvent.created_at.desc())
            .all()
        )

    def resolve(self, event_id: str, user_id: str, notes: str | None = None) -> SecurityEvent:
        event = (
            self.db.query(SecurityEvent)
            .filter(SecurityEvent.id == event_id, SecurityEvent.user_id == user_id)
            .first()
        )
        if not event:
            raise NotFoundError("Security event not found")

        event.is_resolved = True
        event.resolved_at = utcnow()
        event.resolution_notes = notes
        self.db.commit()
        self.db.refresh(event)
        return event
