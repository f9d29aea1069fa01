"""Authentication service: passwords, accounts, login, refresh and logout."""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import timedelta

from passlib.context import CryptContext
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.device import Device
from src.models.device_auth import DeviceAuthentication
from src.models.mixins import as_utc, utcnow
from src.models.user import User
from src.services.devices import DeviceRegistry
from src.services.errors import (
    AuthenticationError,
    ConflictError,
    DeviceNotFoundError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    ValidationError,
)
from src.services.notifications import EmailNotifier
from src.services.security_events import SecurityEventService
from src.services.tokens import TokenPair, TokenService

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def generate_token() -> str:
    """Random single-use token for email verification and password reset."""
    return secrets.token_urlsafe(32)


@dataclass
class LoginResult:
    user: User
    device: Device
    tokens: TokenPair


@dataclass
class RefreshResult:
    user: User
    device: Device
    tokens: TokenPair


class AuthService:
    """Account lifecycle and per-device credential management."""

    def __init__(
        self,
        db: Session,
        tokens: TokenService | None = None,
        registry: DeviceRegistry | None = None,
        notifier: EmailNotifier | None = None,
        security_events: SecurityEventService | None = None,
    ):
        self.db = db
        self.settings = get_settings()
        self.tokens = tokens or TokenService()
        self.notifier = notifier or EmailNotifier()
        self.security_events = security_events or SecurityEventService(db)
        self.registry = registry or DeviceRegistry(db, self.notifier, self.security_events)

    # Accounts

    def get_user_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def get_user_by_identifier(self, identifier: str) -> User | None:
        """Look a user up by email or username."""
        identifier = identifier.strip()
        return (
            self.db.query(User)
            .filter(or_(User.email == identifier.lower(), User.username == identifier))
            .first()
        )

    def register(
        self, email: str, username: str, password: str, full_name: str | None = None
    ) -> User:
        """Create an unverified account and send its verification email.

        The existence check, the insert and the email dispatch share one
        transaction: a duplicate or a failed dispatch leaves nothing behind.

        Raises:
            ConflictError: email or username already registered
            TransientInfrastructureError: verification email could not be queued
        """
        email = email.strip().lower()
        username = username.strip()

        try:
            existing = (
                self.db.query(User.id)
                .filter(or_(func.lower(User.email) == email, User.username == username))
                .first()
            )
            if existing:
                raise ConflictError("Email or username already registered")

            user = User(
                email=email,
                username=username,
                full_name=full_name,
                password_hash=get_password_hash(password),
                email_verified=False,
                verification_token=generate_token(),
            )
            self.db.add(user)
            self.db.flush()

            self.notifier.send_verification(user, user.verification_token, required=True)
            self.db.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent registration of the same email or username
            self.db.rollback()
            raise ConflictError("Email or username already registered") from e
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(user)
        logger.info(f"Registered user {user.id}")
        return user

    def verify_email(self, token: str) -> User:
        user = self.db.query(User).filter(User.verification_token == token).first()
        if not user:
            raise ValidationError("Invalid or expired verification token")

        user.email_verified = True
        user.verification_token = None
        self.db.commit()
        self.db.refresh(user)
        return user

    def resend_verification(self, email: str) -> None:
        """Send a fresh verification link. Silent for unknown or verified emails."""
        user = self.get_user_by_email(email)
        if not user or user.email_verified:
            return

        user.verification_token = generate_token()
        self.db.commit()
        self.notifier.send_verification(user, user.verification_token)

    def forgot_password(self, email: str) -> None:
        """Start a password reset. Silent for unknown emails."""
        user = self.get_user_by_email(email)
        if not user:
            return

        user.reset_password_token = generate_token()
        user.reset_token_expires = utcnow() + timedelta(
            minutes=self.settings.password_reset_expire_minutes
        )
        self.security_events.log_password_reset_requested(user)
        self.db.commit()
        self.notifier.send_password_reset(user, user.reset_password_token)

    def reset_password(self, token: str, new_password: str) -> User:
        """Consume a reset token and set a new password.

        Every device must sign in again afterwards.
        """
        user = self.db.query(User).filter(User.reset_password_token == token).first()
        if not user or not user.reset_token_expires or as_utc(user.reset_token_expires) < utcnow():
            raise ValidationError("Invalid or expired reset token")

        user.password_hash = get_password_hash(new_password)
        user.reset_password_token = None
        user.reset_token_expires = None
        for device in user.devices:
            self.registry.invalidate_authentications(device.id)
        self.security_events.log_password_changed(user, None)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Password reset for user {user.id}")
        return user

    # Sessions

    def login(
        self,
        identifier: str,
        password: str,
        user_agent: str | None,
        ip_address: str | None = None,
        device_name: str | None = None,
    ) -> LoginResult:
        """Authenticate by email or username and issue tokens for this device.

        Raises:
            InvalidCredentialsError: unknown identifier, wrong password or
                inactive account, deliberately indistinguishable
            EmailNotVerifiedError: correct password but unverified email
        """
        user = self.get_user_by_identifier(identifier)

        if not user or not verify_password(password, user.password_hash):
            if user:
                self._record_failed_login(user, ip_address, "invalid credentials")
            logger.info("Rejected login with invalid credentials")
            raise InvalidCredentialsError()

        if not user.is_active:
            self._record_failed_login(user, ip_address, "account not active")
            raise InvalidCredentialsError()

        if not user.email_verified:
            self._record_failed_login(user, ip_address, "email not verified")
            raise EmailNotVerifiedError()

        device = self.registry.resolve_or_create_device(user, user_agent, ip_address, device_name)

        user.last_login = utcnow()
        self.security_events.log_login(user, device, success=True, ip_address=ip_address)
        tokens = self.issue_tokens(user, device)
        return LoginResult(user=user, device=device, tokens=tokens)

    def _record_failed_login(self, user: User, ip_address: str | None, reason: str) -> None:
        self.security_events.log_login(
            user, None, success=False, ip_address=ip_address, reason=reason
        )
        self.db.commit()

    def issue_tokens(self, user: User, device: Device) -> TokenPair:
        """Issue a token pair and make its refresh token the device's only valid one."""
        pair = self.tokens.issue_pair(user.id, device.id, user.email)
        self.registry.invalidate_authentications(device.id)
        self.db.add(
            DeviceAuthentication(
                device_id=device.id,
                token_hash=self.tokens.hash_refresh_token(pair.refresh_token),
                expires_at=pair.refresh_expires_at,
                is_valid=True,
            )
        )
        self.db.commit()
        return pair

    def refresh_tokens(
        self,
        refresh_token: str,
        device_id: str,
        ip_address: str | None = None,
        deadline: float | None = None,
    ) -> RefreshResult:
        """Rotate a refresh token.

        The presented token is invalidated with a conditional update, so of
        two concurrent attempts with the same token exactly one succeeds.
        Every failure raises the same ``InvalidRefreshTokenError``.

        ``deadline`` is a ``time.monotonic()`` value. Past it the rotation is
        rolled back and the presented token stays valid, since the caller
        has stopped waiting for the new pair.
        """
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except AuthenticationError as e:
            raise InvalidRefreshTokenError() from e

        user = self.db.query(User).filter(User.id == claims.user_id).first()
        if not user or not user.is_active:
            raise InvalidRefreshTokenError()

        if claims.device_id != device_id:
            self.security_events.log_suspicious_activity(
                user.id,
                "Refresh token presented for a different device",
                device_id=claims.device_id,
                ip_address=ip_address,
            )
            self.db.commit()
            raise InvalidRefreshTokenError()

        device = self.registry.get_user_device(user.id, device_id, active_only=True)
        if not device:
            raise InvalidRefreshTokenError()

        token_hash = self.tokens.hash_refresh_token(refresh_token)
        now = utcnow()
        rotated = (
            self.db.query(DeviceAuthentication)
            .filter(
                DeviceAuthentication.token_hash == token_hash,
                DeviceAuthentication.device_id == device.id,
                DeviceAuthentication.is_valid.is_(True),
                DeviceAuthentication.expires_at > now,
            )
            .update(
                {
                    DeviceAuthentication.is_valid: False,
                    DeviceAuthentication.revoked_at: now,
                    DeviceAuthentication.revoked_by_ip: ip_address,
                },
                synchronize_session=False,
            )
        )
        if rotated != 1:
            self.db.rollback()
            self._record_refresh_reuse(user, device, token_hash, ip_address)
            raise InvalidRefreshTokenError()

        pair = self.tokens.issue_pair(user.id, device.id, user.email)
        self.db.add(
            DeviceAuthentication(
                device_id=device.id,
                token_hash=self.tokens.hash_refresh_token(pair.refresh_token),
                expires_at=pair.refresh_expires_at,
                is_valid=True,
            )
        )
        device.last_active = now
        if deadline is not None and time.monotonic() > deadline:
            self.db.rollback()
            logger.warning(f"Refresh for device {device_id} missed its deadline, rolled back")
            raise InvalidRefreshTokenError()
        self.db.commit()
        logger.info(f"Rotated refresh token for device {device.id}")
        return RefreshResult(user=user, device=device, tokens=pair)

    def _record_refresh_reuse(
        self, user: User, device: Device, token_hash: str, ip_address: str | None
    ) -> None:
        revoked = (
            self.db.query(DeviceAuthentication.id)
            .filter(
                DeviceAuthentication.token_hash == token_hash,
                DeviceAuthentication.is_valid.is_(False),
            )
            .first()
        )
        if revoked:
            self.security_events.log_suspicious_activity(
                user.id,
                "Revoked refresh token was presented again",
                device_id=device.id,
                ip_address=ip_address,
            )
            self.db.commit()

    def logout(self, user_id: str, device_id: str, ip_address: str | None = None) -> Device:
        """Revoke trust in a device: deactivate it and invalidate all its refresh tokens."""
        device = self.registry.get_user_device(user_id, device_id)
        if not device:
            raise DeviceNotFoundError()

        revoked = self.registry.invalidate_authentications(device.id, ip_address)
        device.is_active = False
        self.security_events.log_logout(user_id, device)
        self.db.commit()
        logger.info(f"Logged out device {device.id} ({revoked} refresh tokens revoked)")
        return device

    # Lookups for the auth gate

    def validate_user(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            raise InvalidCredentialsError()
        return user

    def validate_user_device(self, user_id: str, device_id: str) -> tuple[User, Device]:
        """Return the active user and the active device it owns, or fail generically."""
        user = self.validate_user(user_id)
        device = self.registry.get_user_device(user.id, device_id, active_only=True)
        if not device:
            raise InvalidCredentialsError()
        return user, device
