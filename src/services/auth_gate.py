"""Connection auth gate shared by HTTP requests and WebSocket connections."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.services.auth import AuthService
from src.services.errors import (
    AuthenticationError,
    AuthenticationRequiredError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    TokenExpiredError,
    TransientInfrastructureError,
)
from src.services.tokens import TokenClaims, TokenPair

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    """States a privileged request passes through at the gate."""

    UNAUTHENTICATED = "unauthenticated"
    ACCESS_VALID = "access_valid"
    ACCESS_EXPIRED = "access_expired"
    REFRESH_ATTEMPTED = "refresh_attempted"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Principal:
    """The authorized caller: an active user on an active device it owns."""

    user_id: str
    device_id: str
    email: str
    username: str
    device_name: str


@dataclass(frozen=True)
class GateDecision:
    principal: Principal
    state: GateState
    refreshed: TokenPair | None = None
    via_refresh: bool = False


class ConnectionAuthGate:
    """Validates an access token and its device binding.

    An expired access token is exchanged once for a new pair when the caller
    also supplied a refresh token and device id. The new pair is returned in
    the decision so the transport can hand it back to the client.
    """

    def __init__(self, auth: AuthService, deadline: float | None = None):
        self.auth = auth
        self.tokens = auth.tokens
        self.deadline = deadline
        self.state = GateState.UNAUTHENTICATED

    def authorize(
        self,
        access_token: str | None,
        refresh_token: str | None = None,
        device_id: str | None = None,
        ip_address: str | None = None,
    ) -> GateDecision:
        """Run the gate.

        Raises:
            AuthenticationRequiredError: missing token, or expired token that
                could not be refreshed
            InvalidCredentialsError: any other verification failure
        """
        self.state = GateState.UNAUTHENTICATED
        try:
            decision = self._authorize(access_token, refresh_token, device_id, ip_address)
        except AuthenticationError:
            self.state = GateState.REJECTED
            raise
        self.state = GateState.AUTHORIZED
        return decision

    def _authorize(
        self,
        access_token: str | None,
        refresh_token: str | None,
        device_id: str | None,
        ip_address: str | None,
    ) -> GateDecision:
        if not access_token:
            raise AuthenticationRequiredError()

        refreshed = None
        try:
            claims = self.tokens.verify_access(access_token)
            self.state = GateState.ACCESS_VALID
        except TokenExpiredError:
            self.state = GateState.ACCESS_EXPIRED
            if not refresh_token or not device_id:
                raise AuthenticationRequiredError() from None
            refreshed = self._refresh(refresh_token, device_id, ip_address)
            # Retry verification once with the substituted token
            claims = self.tokens.verify_access(refreshed.access_token)
        except AuthenticationError as e:
            raise InvalidCredentialsError() from e

        if device_id and device_id != claims.device_id:
            self._record_device_mismatch(claims, device_id, ip_address)
            raise InvalidCredentialsError()

        user, device = self.auth.validate_user_device(claims.user_id, claims.device_id)
        principal = Principal(
            user_id=user.id,
            device_id=device.id,
            email=user.email,
            username=user.username,
            device_name=device.device_name,
        )
        return GateDecision(
            principal=principal,
            state=GateState.AUTHORIZED,
            refreshed=refreshed,
            via_refresh=refreshed is not None,
        )

    def _refresh(self, refresh_token: str, device_id: str, ip_address: str | None) -> TokenPair:
        self.state = GateState.REFRESH_ATTEMPTED
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise AuthenticationRequiredError("Authentication timed out")
        try:
            result = self.auth.refresh_tokens(
                refresh_token, device_id, ip_address, deadline=self.deadline
            )
        except InvalidRefreshTokenError as e:
            raise AuthenticationRequiredError() from e
        logger.info(f"Transparently refreshed credentials for device {device_id}")
        return result.tokens

    def _record_device_mismatch(
        self, claims: TokenClaims, device_id: str, ip_address: str | None
    ) -> None:
        try:
            user = self.auth.validate_user(claims.user_id)
        except AuthenticationError:
            return
        self.auth.security_events.log_suspicious_activity(
            user.id,
            f"Access token for device {claims.device_id} presented with device id {device_id}",
            device_id=claims.device_id,
            ip_address=ip_address,
        )
        self.auth.db.commit()


def _authorize_in_session(
    session_factory: Callable[[], Session],
    access_token: str | None,
    refresh_token: str | None,
    device_id: str | None,
    ip_address: str | None,
    deadline: float | None = None,
) -> GateDecision:
    db = session_factory()
    try:
        gate = ConnectionAuthGate(AuthService(db), deadline=deadline)
        return gate.authorize(access_token, refresh_token, device_id, ip_address)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Credential store unavailable during authentication: {e}")
        raise TransientInfrastructureError() from e
    finally:
        db.close()


async def authorize_connection(
    session_factory: Callable[[], Session],
    access_token: str | None,
    refresh_token: str | None = None,
    device_id: str | None = None,
    ip_address: str | None = None,
    timeout: float | None = None,
) -> GateDecision:
    """Run the gate off the event loop, bounded by the credential store timeout.

    A gate that does not finish in time rejects the caller instead of
    holding the request or connection open. The worker thread cannot be
    cancelled, so it gets the same deadline and abandons a token rotation
    the caller would never receive.
    """
    if timeout is None:
        timeout = get_settings().credential_store_timeout_seconds
    deadline = time.monotonic() + timeout
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(
                _authorize_in_session,
                session_factory,
                access_token,
                refresh_token,
                device_id,
                ip_address,
                deadline,
            ),
            timeout,
        )
    except TimeoutError:
        logger.warning(f"Authentication timed out after {timeout}s")
        raise AuthenticationRequiredError("Authentication timed out") from None
