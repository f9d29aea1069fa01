"""QR pairing sessions kept in Redis."""

import json
import logging
import secrets

import redis

from src.config import get_settings
from src.models.mixins import utcnow
from src.services.devices import DeviceRegistry
from src.services.errors import (
    ConflictError,
    DeviceNotFoundError,
    NotFoundError,
    TransientInfrastructureError,
)

logger = logging.getLogger(__name__)

PAIRING_PENDING = "pending"
PAIRING_AUTHENTICATED = "authenticated"

# Confirmed sessions only need to live until the owner's next poll
AUTHENTICATED_TTL_SECONDS = 30


def pairing_key(qr_id: str) -> str:
    return f"qr_login:{qr_id}"


class PairingService:
    """Short-lived pairing sessions a user's devices confirm by scanning a QR code."""

    def __init__(self, client: redis.Redis, registry: DeviceRegistry):
        self.client = client
        self.registry = registry
        self.settings = get_settings()

    def _load(self, qr_id: str, user_id: str) -> dict:
        try:
            raw = self.client.get(pairing_key(qr_id))
        except redis.RedisError as e:
            logger.error(f"Pairing store unavailable: {e}")
            raise TransientInfrastructureError() from e

        session = json.loads(raw) if raw else None
        # Another user's session is reported exactly like a missing one
        if not session or session.get("user_id") != user_id:
            raise NotFoundError("Pairing session not found or expired")
        return session

    def _store(self, qr_id: str, session: dict, ttl: int) -> None:
        try:
            self.client.set(pairing_key(qr_id), json.dumps(session), ex=ttl)
        except redis.RedisError as e:
            logger.error(f"Pairing store unavailable: {e}")
            raise TransientInfrastructureError() from e

    def generate(self, user_id: str) -> dict:
        """Create a pending session and the URL to encode in the QR code."""
        qr_id = secrets.token_urlsafe(16)
        ttl = self.settings.pairing_session_ttl_seconds
        self._store(
            qr_id,
            {"user_id": user_id, "status": PAIRING_PENDING, "created_at": utcnow().isoformat()},
            ttl,
        )
        logger.info(f"Generated pairing session for user {user_id}")
        return {
            "qr_id": qr_id,
            "qr_url": f"{self.settings.frontend_url}/qr-login?code={qr_id}",
            "expires_in": ttl,
        }

    def authenticate(self, qr_id: str, user_id: str, device_id: str) -> dict:
        """Confirm a pending session from one of the owner's active devices."""
        session = self._load(qr_id, user_id)
        if session["status"] != PAIRING_PENDING:
            raise ConflictError("Pairing session already used")
        if not self.registry.get_user_device(user_id, device_id, active_only=True):
            raise DeviceNotFoundError()

        session.update(
            status=PAIRING_AUTHENTICATED,
            device_id=device_id,
            authenticated_at=utcnow().isoformat(),
        )
        self._store(qr_id, session, AUTHENTICATED_TTL_SECONDS)
        logger.info(f"Pairing session confirmed by device {device_id}")
        return self._view(qr_id, session)

    def status(self, qr_id: str, user_id: str) -> dict:
        return self._view(qr_id, self._load(qr_id, user_id))

    @staticmethod
    def _view(qr_id: str, session: dict) -> dict:
        return {
            "qr_id": qr_id,
            "status": session["status"],
            "device_id": session.get("device_id"),
            "authenticated_at": session.get("authenticated_at"),
        }
