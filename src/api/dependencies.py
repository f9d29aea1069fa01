"""FastAPI dependencies: services, the auth gate and the route policy."""

from typing import Annotated

from fastapi import Depends, FastAPI, Request, Response
from fastapi.dependencies.models import Dependant
from fastapi.routing import APIRoute, APIWebSocketRoute
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from src.database import get_db, get_session_factory
from src.services.auth import AuthService
from src.services.auth_gate import Principal, authorize_connection
from src.services.devices import DeviceRegistry
from src.services.pairing import PairingService
from src.services.realtime import SessionDirectory, get_session_directory
from src.services.security_events import SecurityEventService
from src.services.sync_cache import SyncCache, get_redis, get_sync_cache
from src.services.sync_service import SyncFanout, SyncService

security = HTTPBearer(auto_error=False)

# Routes reachable without the auth gate. Anything not listed here must
# depend on get_current_principal.
PUBLIC_ROUTES: frozenset[tuple[str, str]] = frozenset(
    {
        ("POST", "/api/v1/auth/register"),
        ("POST", "/api/v1/auth/login"),
        ("POST", "/api/v1/auth/verify-email"),
        ("POST", "/api/v1/auth/resend-verification"),
        ("POST", "/api/v1/auth/forgot-password"),
        ("POST", "/api/v1/auth/reset-password"),
        ("POST", "/api/v1/auth/refresh-token"),
        ("GET", "/health"),
    }
)

# WebSocket routes run the gate themselves during the handshake
HANDSHAKE_GATED_ROUTES: frozenset[str] = frozenset({"/api/v1/ws/sync"})

NEW_ACCESS_TOKEN_HEADER = "new-access-token"  # noqa: S105
NEW_REFRESH_TOKEN_HEADER = "new-refresh-token"  # noqa: S105


def get_client_ip(request: Request) -> str | None:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_current_principal(
    request: Request,
    response: Response,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
) -> Principal:
    """Run the auth gate for an HTTP request.

    An expired access token is refreshed once when ``refresh-token`` and
    ``device-id`` headers are present; the new pair is returned in the
    ``new-access-token`` and ``new-refresh-token`` response headers.
    """
    decision = await authorize_connection(
        session_factory,
        credentials.credentials if credentials else None,
        refresh_token=request.headers.get("refresh-token"),
        device_id=request.headers.get("device-id"),
        ip_address=get_client_ip(request),
    )
    if decision.refreshed is not None:
        response.headers[NEW_ACCESS_TOKEN_HEADER] = decision.refreshed.access_token
        response.headers[NEW_REFRESH_TOKEN_HEADER] = decision.refreshed.refresh_token
    return decision.principal


def _is_gated(dependant: Dependant) -> bool:
    return any(
        dep.call is get_current_principal or _is_gated(dep) for dep in dependant.dependencies
    )


def assert_route_policies(app: FastAPI) -> None:
    """Refuse to start if a route is neither gated nor explicitly public."""
    violations = []
    for route in app.routes:
        if isinstance(route, APIRoute):
            if _is_gated(route.dependant):
                continue
            if all((method, route.path) in PUBLIC_ROUTES for method in route.methods):
                continue
            violations.append(f"{sorted(route.methods)} {route.path}")
        elif isinstance(route, APIWebSocketRoute) and route.path not in HANDSHAKE_GATED_ROUTES:
            violations.append(f"WEBSOCKET {route.path}")
    if violations:
        raise RuntimeError(f"Routes without an auth policy: {', '.join(violations)}")


def get_auth_service(db: Annotated[Session, Depends(get_db)]) -> AuthService:
    """Get auth service with dependencies."""
    return AuthService(db)


def get_device_registry(db: Annotated[Session, Depends(get_db)]) -> DeviceRegistry:
    return DeviceRegistry(db)


def get_security_event_service(db: Annotated[Session, Depends(get_db)]) -> SecurityEventService:
    return SecurityEventService(db)


def get_sync_service(
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[SyncCache, Depends(get_sync_cache)],
) -> SyncService:
    """Get sync service with dependencies."""
    return SyncService(db, cache)


def get_sync_fanout(
    directory: Annotated[SessionDirectory, Depends(get_session_directory)],
) -> SyncFanout:
    return SyncFanout(directory)


def get_pairing_service(db: Annotated[Session, Depends(get_db)]) -> PairingService:
    return PairingService(get_redis(), DeviceRegistry(db))
