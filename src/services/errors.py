"""Domain-level exceptions raised by the service layer.

These do not depend on FastAPI. ``src.main`` translates them to HTTP
responses and the WebSocket endpoint turns them into ``sync:error``
messages or close codes.
"""


class ServiceError(Exception):
    """Base class for all service-level errors."""

    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(ServiceError):
    """Invalid or expired credentials, device mismatch, unverified email."""

    default_message = "Invalid credentials"


class InvalidCredentialsError(AuthenticationError):
    default_message = "Invalid credentials"


class AuthenticationRequiredError(AuthenticationError):
    default_message = "Authentication required"


class InvalidRefreshTokenError(AuthenticationError):
    default_message = "Invalid refresh token"


class EmailNotVerifiedError(AuthenticationError):
    default_message = "Email not verified"


class TokenExpiredError(AuthenticationError):
    default_message = "Token expired"


class InvalidTokenError(AuthenticationError):
    default_message = "Invalid token"


class WrongTokenTypeError(InvalidTokenError):
    default_message = "Invalid token type"


class ConflictError(ServiceError):
    """Uniqueness violation such as a duplicate email or username."""

    default_message = "Resource already exists"


class NotFoundError(ServiceError):
    """Resource missing or not owned by the caller."""

    default_message = "Not found"


class DeviceNotFoundError(NotFoundError):
    default_message = "Device not found"


class SyncNotFoundError(NotFoundError):
    default_message = "Sync not found"


class ValidationError(ServiceError):
    """Malformed or oversized payload, rejected before persistence."""

    default_message = "Invalid request"


class TransientInfrastructureError(ServiceError):
    """Durable store, cache or broker unavailable."""

    default_message = "Service temporarily unavailable"
