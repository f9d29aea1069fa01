"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api import auth, devices, security, sync, websocket
from src.api.dependencies import (
    NEW_ACCESS_TOKEN_HEADER,
    NEW_REFRESH_TOKEN_HEADER,
    assert_route_policies,
)
from src.config import get_settings
from src.database import get_session_factory
from src.services.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ServiceError,
    TransientInfrastructureError,
    ValidationError,
)
from src.services.realtime import DeviceStatusUpdater, get_session_directory

logger = logging.getLogger(__name__)
settings = get_settings()

ERROR_STATUS_CODES: list[tuple[type[ServiceError], int]] = [
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, 422),
    (TransientInfrastructureError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    assert_route_policies(app)

    # Presence writes go through the same session factory the handlers use
    factory_provider = app.dependency_overrides.get(get_session_factory, get_session_factory)
    get_session_directory().configure(DeviceStatusUpdater(factory_provider()))
    yield
    get_session_directory().configure(None)


app = FastAPI(
    title="Device Sync API",
    description="Cross-device clipboard, link, note and file sync",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for development
if settings.is_development:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER],
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Translate service-layer errors to HTTP responses."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=status_code, content={"detail": exc.message}, headers=headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Register routers
app.include_router(auth.router)
app.include_router(devices.router)
app.include_router(sync.router)
app.include_router(security.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "environment": settings.environment}
