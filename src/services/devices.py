"""Device registry: fingerprint-based device resolution and management."""

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.device import Device
from src.models.device_auth import DeviceAuthentication
from src.models.mixins import as_utc, utcnow
from src.models.user import User
from src.services.errors import DeviceNotFoundError
from src.services.notifications import EmailNotifier
from src.services.security_events import SecurityEventService
from src.services.user_agent import parse_user_agent

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 300

UPDATABLE_SETTINGS = ("device_name", "sync_enabled", "auto_sync", "sync_interval")


class DeviceRegistry:
    """Resolves, creates and maintains a user's devices."""

    def __init__(
        self,
        db: Session,
        notifier: EmailNotifier | None = None,
        security_events: SecurityEventService | None = None,
    ):
        self.db = db
        self.notifier = notifier or EmailNotifier()
        self.security_events = security_events or SecurityEventService(db)

    def resolve_or_create_device(
        self,
        user: User,
        user_agent: str | None,
        ip_address: str | None,
        device_name: str | None = None,
    ) -> Device:
        """Find the device for this client, creating it on first sight.

        Re-login from the same client reuses the same row and reactivates it.
        A new device gets a ``device_paired`` security event and an email alert.
        """
        info = parse_user_agent(user_agent)

        device = self._find_by_token(user.id, info.fingerprint)
        if device:
            device.is_active = True
            device.last_active = utcnow()
            device.last_ip_address = ip_address
            self.db.commit()
            self.db.refresh(device)
            return device

        device = Device(
            user_id=user.id,
            device_name=device_name or info.name,
            device_type=info.type,
            os_type=info.os,
            browser_type=info.browser,
            last_ip_address=ip_address,
            device_token=info.fingerprint,
            device_settings={},
            is_active=True,
            sync_enabled=True,
            auto_sync=True,
            sync_interval=DEFAULT_SYNC_INTERVAL,
            last_active=utcnow(),
        )
        self.db.add(device)
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent login from the same client created it first
            self.db.rollback()
            existing = self._find_by_token(user.id, info.fingerprint)
            if existing is None:
                raise
            return self.resolve_or_create_device(user, user_agent, ip_address, device_name)

        self.security_events.log_device_paired(user, device, ip_address)
        self.db.commit()
        self.db.refresh(device)
        logger.info(f"Paired new device {device.id} ({device.device_name}) for user {user.id}")

        self.notifier.send_new_device_alert(user, device)
        return device

    def _find_by_token(self, user_id: str, device_token: str) -> Device | None:
        return (
            self.db.query(Device)
            .filter(Device.user_id == user_id, Device.device_token == device_token)
            .first()
        )

    def get_device(self, device_id: str) -> Device | None:
        return self.db.query(Device).filter(Device.id == device_id).first()

    def get_user_device(
        self, user_id: str, device_id: str, active_only: bool = False
    ) -> Device | None:
        """Get a device owned by the user, or None."""
        query = self.db.query(Device).filter(Device.id == device_id, Device.user_id == user_id)
        if active_only:
            query = query.filter(Device.is_active.is_(True))
        return query.first()

    def list_user_devices(self, user_id: str) -> list[Device]:
        """All of a user's devices, most recently active first."""
        devices = self.db.query(Device).filter(Device.user_id == user_id).all()
        # Never-seen devices sort last regardless of backend NULL ordering
        return sorted(
            devices,
            key=lambda d: (d.last_active is not None, as_utc(d.last_active or d.created_at)),
            reverse=True,
        )

    def update_status(self, device_id: str, is_connected: bool) -> None:
        """Record presence for a device.

        Best-effort: failures are logged and never raised.
        """
        try:
            device = self.get_device(device_id)
            if not device:
                return
            device.is_online = is_connected
            device.last_active = utcnow()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Failed to update status for device {device_id}: {e}")

    def update_settings(self, user_id: str, device_id: str, changes: dict[str, Any]) -> Device:
        device = self.get_user_device(user_id, device_id)
        if not device:
            raise DeviceNotFoundError()

        for field, value in changes.items():
            if field in UPDATABLE_SETTINGS and value is not None:
                setattr(device, field, value)
        self.db.commit()
        self.db.refresh(device)
        return device

    def invalidate_authentications(self, device_id: str, ip_address: str | None = None) -> int:
        """Invalidate every still-valid refresh token of a device."""
        return (
            self.db.query(DeviceAuthentication)
            .filter(
                DeviceAuthentication.device_id == device_id,
                DeviceAuthentication.is_valid.is_(True),
            )
            .update(
                {
                    DeviceAuthentication.is_valid: False,
                    DeviceAuthentication.revoked_at: utcnow(),
                    DeviceAuthentication.revoked_by_ip: ip_address,
                },
                synchronize_session=False,
            )
        )

    def remove_device(
        self,
        user_id: str,
        device_id: str,
        removed_by_id: str | None = None,
        ip_address: str | None = None,
    ) -> Device:
        """Delete a device owned by the user.

        Its refresh tokens and delivery rows go with it.
        """
        device = self.get_user_device(user_id, device_id)
        if not device:
            raise DeviceNotFoundError()

        user = device.user
        removed_by = self.get_device(removed_by_id) if removed_by_id else None

        device_name = device.device_name
        self.invalidate_authentications(device.id, ip_address)
        self.security_events.log_device_removed(user.id, device, removed_by, ip_address)
        self.db.delete(device)
        self.db.commit()
        logger.info(f"Removed device {device_id} for user {user.id}")

        self.notifier.send_device_removed_alert(user, device_name)
        return device
