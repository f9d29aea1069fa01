"""Access and refresh token issuing and verification."""

import hashlib
import hmac
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt

from src.config import Settings, get_settings
from src.services.errors import InvalidTokenError, TokenExpiredError, WrongTokenTypeError

ACCESS_TOKEN_TYPE = "access"  # noqa: S105
REFRESH_TOKEN_TYPE = "refresh"  # noqa: S105


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims carried by either token kind."""

    user_id: str
    device_id: str
    token_type: str
    expires_at: datetime
    email: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


class TokenService:
    """Signs access tokens and refresh tokens with separate secrets."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def issue_access_token(self, user_id: str, device_id: str, email: str | None = None) -> str:
        """Create a short-lived access token bound to a device."""
        now = datetime.now(UTC)
        to_encode = {
            "sub": user_id,
            "device_id": device_id,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(minutes=self.settings.access_token_expire_minutes),
        }
        if email:
            to_encode["email"] = email
        return jwt.encode(
            to_encode, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm
        )

    def issue_refresh_token(self, user_id: str, device_id: str) -> tuple[str, datetime]:
        """Create a refresh token and return it with its expiry.

        The ``jti`` keeps two tokens issued within the same second distinct.
        """
        now = datetime.now(UTC)
        expires_at = now + timedelta(days=self.settings.refresh_token_expire_days)
        to_encode = {
            "sub": user_id,
            "device_id": device_id,
            "type": REFRESH_TOKEN_TYPE,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(
            to_encode, self.settings.jwt_refresh_secret, algorithm=self.settings.jwt_algorithm
        )
        return token, expires_at

    def issue_pair(self, user_id: str, device_id: str, email: str | None = None) -> TokenPair:
        access_token = self.issue_access_token(user_id, device_id, email)
        refresh_token, expires_at = self.issue_refresh_token(user_id, device_id)
        return TokenPair(access_token, refresh_token, expires_at)

    def verify_access(self, token: str) -> TokenClaims:
        """Verify an access token.

        Raises:
            TokenExpiredError: the signature is valid but the token expired
            InvalidTokenError: bad signature, malformed token or missing claims
        """
        payload = self._decode(token, self.settings.jwt_secret)
        if payload.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
            raise WrongTokenTypeError()
        return self._claims(payload)

    def verify_refresh(self, token: str) -> TokenClaims:
        """Verify a refresh token, additionally checking its type claim."""
        payload = self._decode(token, self.settings.jwt_refresh_secret)
        if payload.get("type") != REFRESH_TOKEN_TYPE:
            raise WrongTokenTypeError()
        return self._claims(payload)

    def hash_refresh_token(self, token: str) -> str:
        """Keyed digest used to store and look up refresh tokens."""
        if not isinstance(token, str) or not token:
            raise ValueError("Token must be a non-empty string")
        return hmac.new(
            self.settings.jwt_refresh_secret.encode(), token.encode(), hashlib.sha256
        ).hexdigest()

    def _decode(self, token: str, secret: str) -> dict:
        try:
            return jwt.decode(token, secret, algorithms=[self.settings.jwt_algorithm])
        except ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except JWTError as e:
            raise InvalidTokenError() from e

    @staticmethod
    def _claims(payload: dict) -> TokenClaims:
        user_id = payload.get("sub")
        device_id = payload.get("device_id")
        exp = payload.get("exp")
        if not user_id or not device_id or exp is None:
            raise InvalidTokenError()
        return TokenClaims(
            user_id=str(user_id),
            device_id=str(device_id),
            token_type=payload.get("type", ACCESS_TOKEN_TYPE),
            expires_at=datetime.fromtimestamp(exp, UTC),
            email=payload.get("email"),
        )

