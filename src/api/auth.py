"""Authentication API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request, status

from src.api.dependencies import (
    get_auth_service,
    get_client_ip,
    get_current_principal,
    get_pairing_service,
)
from src.schemas.auth import (
    AuthResponse,
    EmailRequest,
    MessageResponse,
    PairingResponse,
    PairingStatusResponse,
    RegisterResponse,
    ResetPasswordRequest,
    TokenRefreshResponse,
    UserLogin,
    UserRegister,
    UserResponse,
    VerifyEmailRequest,
)
from src.schemas.device import DeviceResponse
from src.services.auth import AuthService
from src.services.auth_gate import Principal
from src.services.errors import InvalidRefreshTokenError
from src.services.pairing import PairingService
from src.services.realtime import SessionDirectory, get_session_directory

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

RESET_REQUESTED_MESSAGE = "If an account exists for this email, a reset link has been sent"
VERIFICATION_RESENT_MESSAGE = "If this email needs verification, a new link has been sent"


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    """Register a new user. The account stays unverified until the email link is used."""
    user = auth.register(
        user_data.email, user_data.username, user_data.password, user_data.full_name
    )
    return RegisterResponse(
        message="Registration successful, please verify your email",
        user=UserResponse.model_validate(user),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    """Login with email or username; issues tokens bound to the calling device."""
    result = auth.login(
        credentials.identifier,
        credentials.password,
        user_agent=request.headers.get("user-agent"),
        ip_address=get_client_ip(request),
        device_name=credentials.device_name,
    )
    device = DeviceResponse.model_validate(result.device)
    device.is_current = True
    return AuthResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=UserResponse.model_validate(result.user),
        device=device,
    )


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    body: VerifyEmailRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    auth.verify_email(body.token)
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    body: EmailRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    auth.resend_verification(body.email)
    return MessageResponse(message=VERIFICATION_RESENT_MESSAGE)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: EmailRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    auth.forgot_password(body.email)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    auth.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset, please sign in again")


@router.post("/refresh-token", response_model=TokenRefreshResponse)
async def refresh_token(
    request: Request,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    refresh_token: Annotated[str | None, Header()] = None,
    device_id: Annotated[str | None, Header()] = None,
):
    """Rotate a refresh token (``refresh-token`` and ``device-id`` headers)."""
    if not refresh_token or not device_id:
        raise InvalidRefreshTokenError()

    result = auth.refresh_tokens(refresh_token, device_id, get_client_ip(request))
    return TokenRefreshResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        device_id=result.device.id,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    principal: Annotated[Principal, Depends(get_current_principal)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    directory: Annotated[SessionDirectory, Depends(get_session_directory)],
):
    """Sign this device out everywhere: refresh tokens revoked, live connection closed."""
    auth.logout(principal.user_id, principal.device_id, get_client_ip(request))
    await directory.disconnect_device(principal.device_id, reason="Logged out")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def get_me(
    principal: Annotated[Principal, Depends(get_current_principal)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
):
    """Get current user information."""
    return auth.validate_user(principal.user_id)


@router.post("/qr/generate", response_model=PairingResponse)
async def generate_pairing(
    principal: Annotated[Principal, Depends(get_current_principal)],
    pairing: Annotated[PairingService, Depends(get_pairing_service)],
):
    """Start a QR pairing session for the current user."""
    return pairing.generate(principal.user_id)


@router.post("/qr/{qr_id}/authenticate", response_model=PairingStatusResponse)
async def authenticate_pairing(
    qr_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    pairing: Annotated[PairingService, Depends(get_pairing_service)],
):
    """Confirm a pairing session from the scanning device."""
    return pairing.authenticate(qr_id, principal.user_id, principal.device_id)


@router.get("/qr/{qr_id}", response_model=PairingStatusResponse)
async def pairing_status(
    qr_id: str,
    principal: Annotated[Principal, Depends(get_current_principal)],
    pairing: Annotated[PairingService, Depends(get_pairing_service)],
):
    return pairing.status(qr_id, principal.user_id)
