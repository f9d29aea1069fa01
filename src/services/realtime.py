"""Session directory: which devices of a user are connected right now."""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from sqlalchemy.orm import Session

from src.services.devices import DeviceRegistry

logger = logging.getLogger(__name__)


class SyncEventName(StrEnum):
    """Event names on the real-time channel."""

    # Server to client
    INIT_DATA = "init:data"
    SYNC_DATA = "sync:data"
    SYNC_BATCH = "sync:batch"
    SYNC_DELETED = "sync:deleted"
    SYNC_ERROR = "sync:error"
    DEVICE_ONLINE = "device:online"
    DEVICE_STATUS = "device:status"
    AUTH_REFRESHED = "auth:refreshed"
    PING = "ping"

    # Client to server
    SYNC_CREATE = "sync:create"
    SYNC_REQUEST = "sync:request"
    SYNC_TOGGLE_FAVORITE = "sync:toggle-favorite"
    SYNC_DELETE = "sync:delete"
    PONG = "pong"

    # Both directions
    SYNC_ACK = "sync:ack"


def envelope(event: SyncEventName, data: dict | None = None) -> dict:
    """Wrap a payload in the channel's message format."""
    return {"type": str(event), "data": data or {}}


class Connection(Protocol):
    """The part of a WebSocket the directory needs."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


StatusUpdater = Callable[[str, bool], Awaitable[None]]


@dataclass
class DeviceSession:
    """One live connection of one device."""

    user_id: str
    device_id: str
    device_name: str
    connection: Connection
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class SendResult:
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class DeviceStatusUpdater:
    """Writes device presence through the device registry off the event loop."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _update(self, device_id: str, is_connected: bool) -> None:
        db = self.session_factory()
        try:
            DeviceRegistry(db).update_status(device_id, is_connected)
        finally:
            db.close()

    async def __call__(self, device_id: str, is_connected: bool) -> None:
        await asyncio.to_thread(self._update, device_id, is_connected)


class SessionDirectory:
    """Process-local registry of live device connections.

    All mutation goes through ``on_connect``, ``on_disconnect`` and
    ``disconnect_device`` under one lock. The last connection registered for
    a device wins; pushes that fail prune the dead session.
    """

    def __init__(self, status_updater: StatusUpdater | None = None) -> None:
        self.status_updater = status_updater
        self._lock = asyncio.Lock()
        self._sessions: dict[str, DeviceSession] = {}
        self._connections: dict[str, str] = {}
        self._user_devices: dict[str, set[str]] = {}

    def configure(self, status_updater: StatusUpdater | None) -> None:
        """Reset the directory for a fresh application lifespan."""
        self.status_updater = status_updater
        self._lock = asyncio.Lock()
        self._sessions.clear()
        self._connections.clear()
        self._user_devices.clear()

    async def on_connect(
        self, user_id: str, device_id: str, device_name: str, connection: Connection
    ) -> DeviceSession:
        """Register an authorized connection and announce the device online."""
        session = DeviceSession(
            user_id=user_id, device_id=device_id, device_name=device_name, connection=connection
        )
        async with self._lock:
            replaced = self._sessions.get(device_id)
            if replaced is not None:
                self._connections.pop(replaced.connection_id, None)
            self._sessions[device_id] = session
            self._connections[session.connection_id] = device_id
            self._user_devices.setdefault(user_id, set()).add(device_id)

        if replaced is not None:
            logger.info(f"Device {device_id} reconnected, closing previous connection")
            await self._close(replaced, 4000, "Replaced by a newer connection")

        await self._update_status(device_id, True)
        await self.broadcast_to_user(
            user_id,
            SyncEventName.DEVICE_ONLINE,
            {"deviceId": device_id, "deviceName": device_name},
            exclude={device_id},
        )
        logger.info(f"Device connected: user={user_id}, device={device_id}")
        return session

    async def on_disconnect(self, connection_id: str) -> DeviceSession | None:
        """Remove a connection and announce the device offline.

        A connection that was already replaced by a newer one is ignored.
        Never raises.
        """
        try:
            async with self._lock:
                session = self._remove(connection_id)
            if session is None:
                return None

            await self._announce_offline(session)
            logger.info(f"Device disconnected: user={session.user_id}, device={session.device_id}")
            return session
        except Exception as e:
            logger.error(f"Error during disconnect cleanup for {connection_id}: {e}")
            return None

    async def disconnect_device(
        self, device_id: str, code: int = 4001, reason: str = "Device signed out"
    ) -> bool:
        """Close a device's live connection, if any."""
        async with self._lock:
            session = self._sessions.get(device_id)
            if session is None:
                return False
            self._remove(session.connection_id)

        await self._close(session, code, reason)
        await self._announce_offline(session)
        return True

    def _remove(self, connection_id: str) -> DeviceSession | None:
        # Caller holds the lock
        device_id = self._connections.pop(connection_id, None)
        if device_id is None:
            return None
        session = self._sessions.get(device_id)
        if session is None or session.connection_id != connection_id:
            return None
        del self._sessions[device_id]
        devices = self._user_devices.get(session.user_id)
        if devices is not None:
            devices.discard(device_id)
            if not devices:
                del self._user_devices[session.user_id]
        return session

    async def connected_device_ids(self, user_id: str) -> set[str]:
        async with self._lock:
            return set(self._user_devices.get(user_id, ()))

    def is_connected(self, device_id: str) -> bool:
        return device_id in self._sessions

    async def broadcast_to_user(
        self,
        user_id: str,
        event: SyncEventName,
        data: dict,
        exclude: set[str] | None = None,
    ) -> SendResult:
        """Send an event to every connected device of a user, minus ``exclude``."""
        async with self._lock:
            targets = [
                self._sessions[device_id]
                for device_id in self._user_devices.get(user_id, ())
                if not exclude or device_id not in exclude
            ]
        return await self._send_all(targets, envelope(event, data))

    async def send_to_devices(
        self, user_id: str, device_ids: list[str], event: SyncEventName, data: dict
    ) -> SendResult:
        """Send an event to the listed devices of a user that are connected."""
        async with self._lock:
            targets = [
                self._sessions[device_id]
                for device_id in dict.fromkeys(device_ids)
                if device_id in self._sessions and self._sessions[device_id].user_id == user_id
            ]
        return await self._send_all(targets, envelope(event, data))

    async def send(self, session: DeviceSession, event: SyncEventName, data: dict) -> bool:
        """Reply on one session, keeping its sends ordered."""
        error = await self._push(session, envelope(event, data))
        return error is None

    async def _send_all(self, targets: list[DeviceSession], message: dict) -> SendResult:
        result = SendResult()
        errors = await asyncio.gather(*(self._push(session, message) for session in targets))
        for session, error in zip(targets, errors, strict=True):
            if error is None:
                result.delivered.append(session.device_id)
            else:
                result.failed[session.device_id] = error
        return result

    async def _push(self, session: DeviceSession, message: dict) -> str | None:
        try:
            async with session.send_lock:
                await session.connection.send_json(message)
            return None
        except Exception as e:
            logger.warning(f"Push to device {session.device_id} failed, pruning session: {e}")
            await self._prune(session)
            return str(e) or e.__class__.__name__

    async def _prune(self, session: DeviceSession) -> None:
        async with self._lock:
            removed = self._remove(session.connection_id)
        if removed is not None:
            await self._announce_offline(removed)

    async def _announce_offline(self, session: DeviceSession) -> None:
        # The removed session is no longer in the directory, so it is not a target
        await self._update_status(session.device_id, False)
        try:
            await self.broadcast_to_user(
                session.user_id,
                SyncEventName.DEVICE_STATUS,
                {
                    "deviceId": session.device_id,
                    "status": "offline",
                    "lastActive": datetime.now(UTC).isoformat(),
                },
            )
        except Exception as e:
            logger.warning(f"Failed to announce device {session.device_id} offline: {e}")

    async def _close(self, session: DeviceSession, code: int, reason: str) -> None:
        try:
            await session.connection.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Closing connection {session.connection_id} failed: {e}")

    async def _update_status(self, device_id: str, is_connected: bool) -> None:
        if self.status_updater is None:
            return
        try:
            await self.status_updater(device_id, is_connected)
        except Exception as e:
            logger.warning(f"Failed to update presence for device {device_id}: {e}")


session_directory = SessionDirectory()


def get_session_directory() -> SessionDirectory:
    """Get the process-wide session directory."""
    return session_directory
