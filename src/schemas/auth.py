"""Authentication schemas."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

from src.models.enums import AccountStatus
from src.schemas.device import DeviceResponse


class UserRegister(BaseModel):
    """User registration request."""

    email: EmailStr = Field(..., max_length=255)
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str | None = Field(None, max_length=255)


class UserLogin(BaseModel):
    """Login with an email address or a username."""

    identifier: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("identifier", "email", "username"),
    )
    password: str = Field(..., min_length=1, max_length=128)
    device_name: str | None = Field(None, max_length=255)


class UserResponse(BaseModel):
    """User information response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    full_name: str | None
    email_verified: bool
    account_status: AccountStatus
    last_login: datetime | None
    created_at: datetime


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse


class AuthResponse(BaseModel):
    """Tokens for the signed-in device."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105
    user: UserResponse
    device: DeviceResponse


class TokenRefreshResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105
    device_id: str


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=255)


class EmailRequest(BaseModel):
    """Request carrying only an email (resend verification, forgot password)."""

    email: EmailStr = Field(..., max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=255)
    new_password: str = Field(..., min_length=8, max_length=128)


class MessageResponse(BaseModel):
    message: str


class PairingResponse(BaseModel):
    """A freshly generated QR pairing session."""

    qr_id: str
    qr_url: str
    expires_in: int


class PairingStatusResponse(BaseModel):
    qr_id: str
    status: str
    device_id: str | None = None
    authenticated_at: datetime | None = None
