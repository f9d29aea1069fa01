"""Email notifications for account and device events."""

import logging

from src.config import get_settings
from src.models.device import Device
from src.models.user import User
from src.services.errors import TransientInfrastructureError
from src.tasks.mail import send_email

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Queues account emails on the Celery worker.

    Dispatch is fire-and-forget: a broker failure is logged and swallowed,
    except where the caller asks for ``required=True`` (registration), in
    which case it surfaces as ``TransientInfrastructureError``.
    """

    def __init__(self) -> None:
        self.settings = get_settings()

    def _display_name(self, user: User) -> str:
        return user.full_name or user.username

    def _dispatch(self, to: str, subject: str, body: str, required: bool = False) -> bool:
        try:
            send_email.delay(to, subject, body)
            return True
        except Exception as e:
            if required:
                logger.error(f"Failed to queue required email '{subject}': {e}")
                raise TransientInfrastructureError("Failed to send email, please try again") from e
            logger.error(f"Failed to queue email '{subject}': {e}")
            return False

    def send_verification(self, user: User, token: str, required: bool = False) -> bool:
        url = f"{self.settings.frontend_url}/verify-email?token={token}"
        body = (
            f"Hi {self._display_name(user)},\n\n"
            f"Please confirm your email address by opening the link below:\n{url}\n"
        )
        return self._dispatch(user.email, "Verify Your Email Address", body, required=required)

    def send_password_reset(self, user: User, token: str) -> bool:
        url = f"{self.settings.frontend_url}/reset-password?token={token}"
        body = (
            f"Hi {self._display_name(user)},\n\n"
            f"Reset your password within {self.settings.password_reset_expire_minutes} minutes:\n"
            f"{url}\n\nIf you did not ask for this, ignore this email.\n"
        )
        return self._dispatch(user.email, "Reset Your Password", body)

    def send_new_device_alert(self, user: User, device: Device) -> bool:
        body = (
            f"Hi {self._display_name(user)},\n\n"
            f"A new device signed in to your account:\n"
            f"  Device: {device.device_name} ({device.device_type.value})\n"
            f"  IP address: {device.last_ip_address or 'unknown'}\n\n"
            "If this wasn't you, remove the device and change your password.\n"
        )
        return self._dispatch(user.email, "New Device Login Detected", body)

    def send_device_removed_alert(self, user: User, device_name: str) -> bool:
        body = (
            f"Hi {self._display_name(user)},\n\n"
            f"The device '{device_name}' was removed from your account and can no longer sync.\n"
        )
        return self._dispatch(user.email, "Device Removed", body)
