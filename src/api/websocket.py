"""WebSocket endpoint for real-time cross-device sync."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, sessionmaker

from src.database import get_session_factory
from src.schemas.device import DeviceResponse
from src.schemas.sync import (
    CLIENT_MESSAGE_TYPES,
    ClientMessageAdapter,
    PongMessage,
    SyncAckMessage,
    SyncCreateMessage,
    SyncDeleteMessage,
    SyncRequestMessage,
    ToggleFavoriteMessage,
)
from src.services.auth_gate import GateDecision, Principal, authorize_connection
from src.services.devices import DeviceRegistry
from src.services.errors import ServiceError
from src.services.realtime import (
    DeviceSession,
    SessionDirectory,
    SyncEventName,
    get_session_directory,
)
from src.services.sync_cache import SyncCache, get_sync_cache
from src.services.sync_service import SyncFanout, SyncService, ingest_sync

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/ws", tags=["websocket"])

AUTH_FAILED_CLOSE_CODE = 4001
PING_INTERVAL_SECONDS = 30


@dataclass
class ConnectionCredentials:
    """Tokens the server holds for one connection, updated on refresh."""

    access_token: str
    refresh_token: str | None


def build_init_data(db: Session, service: SyncService, principal: Principal) -> dict:
    registry = DeviceRegistry(db)
    devices = []
    current = None
    for device in registry.list_user_devices(principal.user_id):
        data = DeviceResponse.model_validate(device)
        data.is_current = device.id == principal.device_id
        payload = data.model_dump(mode="json")
        devices.append(payload)
        if data.is_current:
            current = payload
    return {
        "stats": service.get_stats(principal.user_id),
        "devices": devices,
        "currentDevice": current,
    }


class SyncConnection:
    """Handles the messages of one authorized device connection."""

    def __init__(
        self,
        websocket: WebSocket,
        session: DeviceSession,
        principal: Principal,
        credentials: ConnectionCredentials,
        session_factory: sessionmaker,
        directory: SessionDirectory,
        cache: SyncCache,
    ):
        self.websocket = websocket
        self.session = session
        self.principal = principal
        self.credentials = credentials
        self.session_factory = session_factory
        self.directory = directory
        self.cache = cache
        self.fanout = SyncFanout(directory)
        self.ip_address = websocket.client.host if websocket.client else None

    async def send(self, event: SyncEventName, data: dict) -> bool:
        return await self.directory.send(self.session, event, data)

    async def announce_refresh(self, decision: GateDecision) -> None:
        if decision.refreshed is None:
            return
        self.credentials.access_token = decision.refreshed.access_token
        self.credentials.refresh_token = decision.refreshed.refresh_token
        await self.send(
            SyncEventName.AUTH_REFRESHED,
            {
                "access_token": decision.refreshed.access_token,
                "refresh_token": decision.refreshed.refresh_token,
            },
        )

    async def reauthorize(self) -> bool:
        """Re-run the gate before a privileged message."""
        try:
            decision = await authorize_connection(
                self.session_factory,
                self.credentials.access_token,
                self.credentials.refresh_token,
                self.principal.device_id,
                self.ip_address,
            )
        except ServiceError as e:
            logger.info(f"Closing connection of device {self.principal.device_id}: {e.message}")
            try:
                await self.websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=e.message)
            except Exception as close_error:
                logger.debug(f"Close after failed re-authorization failed: {close_error}")
            return False
        self.principal = decision.principal
        await self.announce_refresh(decision)
        return True

    async def send_init_data(self) -> None:
        with self.session_factory() as db:
            service = SyncService(db, self.cache)
            await self.send(SyncEventName.INIT_DATA, build_init_data(db, service, self.principal))

    async def handle(self, raw: dict) -> None:
        """Validate and dispatch one client message."""
        try:
            message = ClientMessageAdapter.validate_python(raw)
        except PydanticValidationError as e:
            message_type = raw.get("type") if isinstance(raw, dict) else None
            if message_type not in CLIENT_MESSAGE_TYPES:
                await self.send(
                    SyncEventName.SYNC_ERROR, {"message": f"Unknown message type: {message_type}"}
                )
            else:
                error = e.errors()[0]
                await self.send(
                    SyncEventName.SYNC_ERROR,
                    {"message": f"Invalid {message_type} message: {error['msg']}"},
                )
            return

        if isinstance(message, PongMessage):
            return

        if not await self.reauthorize():
            raise WebSocketDisconnect(code=AUTH_FAILED_CLOSE_CODE)

        user_id = self.principal.user_id
        with self.session_factory() as db:
            service = SyncService(db, self.cache)
            try:
                if isinstance(message, SyncCreateMessage):
                    result = await ingest_sync(
                        service, self.fanout, user_id, self.principal.device_id, message.data
                    )
                    await self.send(
                        SyncEventName.SYNC_ACK,
                        {
                            "sync_id": result.record["id"],
                            "status": "success",
                            "delivered_to": result.fanout.delivered,
                        },
                    )
                elif isinstance(message, SyncAckMessage):
                    service.acknowledge_sync(
                        message.data.sync_id, user_id, self.principal.device_id
                    )
                elif isinstance(message, SyncRequestMessage):
                    await self.send(
                        SyncEventName.SYNC_BATCH,
                        service.get_batch(
                            user_id,
                            content_type=message.data.content_type,
                            since=message.data.since,
                            limit=message.data.limit,
                        ),
                    )
                elif isinstance(message, ToggleFavoriteMessage):
                    service.toggle_favorite(message.data.sync_id, user_id)
                    await self.fanout.broadcast_lists(service, user_id)
                elif isinstance(message, SyncDeleteMessage):
                    service.soft_delete(message.data.sync_id, user_id)
                    await self.fanout.broadcast_deleted(service, user_id, message.data.sync_id)
            except ServiceError as e:
                await self.send(SyncEventName.SYNC_ERROR, {"message": e.message})

    async def handle_client(self) -> None:
        """Process client messages in receipt order until the connection ends."""
        while True:
            try:
                raw = await self.websocket.receive_json()
            except WebSocketDisconnect:
                break
            except ValueError:
                await self.send(SyncEventName.SYNC_ERROR, {"message": "Invalid JSON"})
                continue
            except Exception:
                break

            try:
                await self.handle(raw)
            except WebSocketDisconnect:
                break
            except Exception as e:
                logger.error(f"Error handling message from {self.principal.device_id}: {e}")
                await self.send(SyncEventName.SYNC_ERROR, {"message": "Internal error"})

    async def handle_ping(self) -> None:
        """Send periodic pings to keep connection alive."""
        while True:
            await asyncio.sleep(PING_INTERVAL_SECONDS)
            if not await self.send(SyncEventName.PING, {}):
                break


@router.websocket("/sync")
async def websocket_sync(
    websocket: WebSocket,
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    directory: Annotated[SessionDirectory, Depends(get_session_directory)],
    cache: Annotated[SyncCache, Depends(get_sync_cache)],
    token: str | None = Query(None),
    device_id: str | None = Query(None),
    refresh_token: str | None = Query(None),
) -> None:
    """Real-time sync channel for one device.

    Authentication via query parameters (WebSocket doesn't support headers):
    ``token`` and ``device_id`` are both required, ``refresh_token`` enables
    transparent refresh of an expired access token.
    """
    if not token or not device_id:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Authentication required")
        return

    ip_address = websocket.client.host if websocket.client else None
    try:
        decision = await authorize_connection(
            session_factory, token, refresh_token, device_id, ip_address
        )
    except ServiceError as e:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=e.message)
        return

    await websocket.accept()
    principal = decision.principal
    session = await directory.on_connect(
        principal.user_id, principal.device_id, principal.device_name, websocket
    )
    connection = SyncConnection(
        websocket,
        session,
        principal,
        ConnectionCredentials(access_token=token, refresh_token=refresh_token),
        session_factory,
        directory,
        cache,
    )

    try:
        await connection.announce_refresh(decision)
        await connection.send_init_data()

        # Run until the client side ends; keepalive stops with it
        tasks = [
            asyncio.create_task(connection.handle_client()),
            asyncio.create_task(connection.handle_ping()),
        ]
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: device={principal.device_id}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        await directory.on_disconnect(session.connection_id)
