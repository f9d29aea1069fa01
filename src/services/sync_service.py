"""Sync ingest, reads and fan-out."""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.enums import ContentType, SyncState
from src.models.mixins import as_utc, utcnow
from src.models.sync_delivery_status import SyncDeliveryStatus
from src.models.sync_record import SyncRecord
from src.schemas.sync import SyncEvent
from src.services.devices import DeviceRegistry
from src.services.errors import (
    DeviceNotFoundError,
    SyncNotFoundError,
    TransientInfrastructureError,
    ValidationError,
)
from src.services.realtime import SendResult, SessionDirectory, SyncEventName
from src.services.sync_cache import SyncCache

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 50
FAVORITES_LIMIT = 5


def compute_checksum(value: str) -> str:
    """SHA-256 hex digest of the UTF-8 content."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def serialize_sync(record: SyncRecord) -> dict:
    """JSON-ready form of a record, shared by the API, the channel and the cache."""
    return {
        "id": record.id,
        "user_id": record.user_id,
        "source_device_id": record.source_device_id,
        "content_type": record.content_type.value,
        "content": record.content,
        "metadata": record.metadata_ or {},
        "parent_sync_id": record.parent_sync_id,
        "version": record.version,
        "size_bytes": record.size_bytes,
        "checksum": record.checksum,
        "is_favorite": record.is_favorite,
        "is_deleted": record.is_deleted,
        "created_at": as_utc(record.created_at).isoformat(),
    }


def sync_data_payload(record: dict) -> dict:
    """Payload pushed to sibling devices for a new record."""
    return {
        "sync_id": record["id"],
        "content": record["content"],
        "content_type": record["content_type"],
        "source_device_id": record["source_device_id"],
        "metadata": record["metadata"],
        "created_at": record["created_at"],
    }


def _matches(item: dict, content_type: ContentType | None, since: datetime | None) -> bool:
    if content_type is not None and item["content_type"] != content_type.value:
        return False
    if since is not None and datetime.fromisoformat(item["created_at"]) <= as_utc(since):
        return False
    return True


class SyncService:
    """Persists sync records and their per-device delivery status."""

    def __init__(
        self, db: Session, cache: SyncCache | None = None, registry: DeviceRegistry | None = None
    ):
        self.db = db
        self.settings = get_settings()
        self.cache = cache or SyncCache(None)
        self.registry = registry or DeviceRegistry(db)

    def create_sync(self, user_id: str, device_id: str, event: SyncEvent) -> SyncRecord:
        """Persist one submission with a ``completed`` delivery row for its source.

        Raises:
            DeviceNotFoundError: the device does not belong to the user
            ValidationError: the content exceeds the size limit
            SyncNotFoundError: the parent record is missing or not the user's
            TransientInfrastructureError: the write failed
        """
        device = self.registry.get_user_device(user_id, device_id, active_only=True)
        if not device:
            raise DeviceNotFoundError()

        raw = event.content.encode("utf-8")
        if len(raw) > self.settings.max_sync_content_bytes:
            raise ValidationError(
                f"Content exceeds {self.settings.max_sync_content_bytes} bytes"
            )

        if event.parent_sync_id and not self._get_owned(event.parent_sync_id, user_id):
            raise SyncNotFoundError("Parent sync not found")

        now = utcnow()
        record = SyncRecord(
            user_id=user_id,
            source_device_id=device.id,
            content_type=ContentType(event.content_type),
            content={"value": event.content, "timestamp": now.isoformat()},
            metadata_=event.metadata,
            parent_sync_id=event.parent_sync_id,
            version=1,
            size_bytes=len(raw),
            checksum=compute_checksum(event.content),
            created_at=now,
        )
        try:
            self.db.add(record)
            self.db.flush()
            self.db.add(
                SyncDeliveryStatus(
                    sync_id=record.id,
                    device_id=device.id,
                    sync_state=SyncState.COMPLETED,
                    last_sync_attempt=now,
                    last_successful_sync=now,
                    version=record.version,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to persist sync for user {user_id}: {e}")
            raise TransientInfrastructureError("Failed to save sync") from e

        self.db.refresh(record)
        self.cache.invalidate_lists(user_id)
        logger.info(
            f"Created {record.content_type.value} sync {record.id} from device {device.id}"
        )
        return record

    def _get_owned(self, sync_id: str, user_id: str) -> SyncRecord | None:
        return (
            self.db.query(SyncRecord)
            .filter(
                SyncRecord.id == sync_id,
                SyncRecord.user_id == user_id,
                SyncRecord.is_deleted.is_(False),
            )
            .first()
        )

    def _get_status(self, sync_id: str, device_id: str) -> SyncDeliveryStatus | None:
        return (
            self.db.query(SyncDeliveryStatus)
            .filter(
                SyncDeliveryStatus.sync_id == sync_id,
                SyncDeliveryStatus.device_id == device_id,
            )
            .first()
        )

    def _apply_state(
        self,
        sync_id: str,
        device_id: str,
        state: SyncState,
        version: int | None,
        error_message: str | None = None,
    ) -> SyncDeliveryStatus:
        status = self._get_status(sync_id, device_id)
        if status is None:
            status = SyncDeliveryStatus(
                sync_id=sync_id, device_id=device_id, sync_state=state, retry_count=0
            )
            self.db.add(status)

        now = utcnow()
        status.sync_state = state
        status.last_sync_attempt = now
        status.version = version
        if state == SyncState.COMPLETED:
            status.last_successful_sync = now
            status.error_message = None
        elif state == SyncState.FAILED:
            status.retry_count = (status.retry_count or 0) + 1
            status.error_message = error_message
        elif error_message:
            status.error_message = error_message
        return status

    def acknowledge_sync(
        self,
        sync_id: str,
        user_id: str,
        device_id: str,
        state: SyncState = SyncState.COMPLETED,
        error_message: str | None = None,
    ) -> SyncDeliveryStatus:
        """Record a device's delivery state for a record. Idempotent."""
        record = (
            self.db.query(SyncRecord)
            .filter(SyncRecord.id == sync_id, SyncRecord.user_id == user_id)
            .first()
        )
        if not record:
            raise SyncNotFoundError()
        if not self.registry.get_user_device(user_id, device_id):
            raise DeviceNotFoundError()

        try:
            status = self._apply_state(sync_id, device_id, state, record.version, error_message)
            self.db.commit()
        except IntegrityError:
            # A concurrent acknowledgment inserted the row first
            self.db.rollback()
            status = self._apply_state(sync_id, device_id, state, record.version, error_message)
            self.db.commit()

        self.db.refresh(status)
        return status

    def record_delivery_attempts(self, sync_id: str, result: SendResult) -> None:
        """Track pushes: ``in_progress`` until acknowledged, ``failed`` for dead sessions.

        Best-effort; never raises.
        """
        if not result.delivered and not result.failed:
            return
        try:
            version = self.db.query(SyncRecord.version).filter(SyncRecord.id == sync_id).scalar()
            for device_id in result.delivered:
                status = self._get_status(sync_id, device_id)
                # A fast acknowledgment may already have landed
                if status is not None and status.sync_state == SyncState.COMPLETED:
                    continue
                self._apply_state(sync_id, device_id, SyncState.IN_PROGRESS, version)
            for device_id, error in result.failed.items():
                self._apply_state(sync_id, device_id, SyncState.FAILED, version, error)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to record delivery attempts for sync {sync_id}: {e}")

    def _recent_query(self, user_id: str):
        return (
            self.db.query(SyncRecord)
            .filter(SyncRecord.user_id == user_id, SyncRecord.is_deleted.is_(False))
            .order_by(SyncRecord.created_at.desc(), SyncRecord.id.desc())
        )

    def list_recent(
        self,
        user_id: str,
        content_type: ContentType | None = None,
        since: datetime | None = None,
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[dict]:
        """Non-deleted records, newest first.

        The cached snapshot holds the newest records of the user. It answers
        the query only when it holds all of them or already yields ``limit``
        matches; anything else goes to the database.
        """
        if self.cache.enabled:
            snapshot = self.cache.get_recent(user_id)
            if snapshot is None:
                size = self.settings.cache_recent_limit
                rows = self._recent_query(user_id).limit(size + 1).all()
                snapshot = {
                    "items": [serialize_sync(r) for r in rows[:size]],
                    "complete": len(rows) <= size,
                }
                self.cache.set_recent(user_id, snapshot["items"], snapshot["complete"])

            items = [i for i in snapshot["items"] if _matches(i, content_type, since)]
            if snapshot["complete"] or len(items) >= limit:
                return items[:limit]

        query = self._recent_query(user_id)
        if content_type is not None:
            query = query.filter(SyncRecord.content_type == content_type)
        if since is not None:
            query = query.filter(SyncRecord.created_at > since)
        return [serialize_sync(r) for r in query.limit(limit).all()]

    def list_favorites(self, user_id: str, limit: int = FAVORITES_LIMIT) -> list[dict]:
        cached = self.cache.get_favorites(user_id) if limit == FAVORITES_LIMIT else None
        if cached is not None:
            return cached

        rows = (
            self._recent_query(user_id).filter(SyncRecord.is_favorite.is_(True)).limit(limit).all()
        )
        items = [serialize_sync(r) for r in rows]
        if limit == FAVORITES_LIMIT:
            self.cache.set_favorites(user_id, items)
        return items

    def get_sync(self, sync_id: str, user_id: str) -> dict:
        cached = self.cache.get_record(user_id, sync_id)
        if cached is not None and not cached.get("is_deleted"):
            return cached

        record = self._get_owned(sync_id, user_id)
        if not record:
            raise SyncNotFoundError()
        item = serialize_sync(record)
        self.cache.set_record(user_id, item)
        return item

    def get_stats(self, user_id: str) -> dict:
        """Counts of a user's live records, overall, per content type and favorites."""
        rows = (
            self.db.query(SyncRecord.content_type, func.count(SyncRecord.id))
            .filter(SyncRecord.user_id == user_id, SyncRecord.is_deleted.is_(False))
            .group_by(SyncRecord.content_type)
            .all()
        )
        by_type = {content_type.value: 0 for content_type in ContentType}
        for content_type, count in rows:
            by_type[content_type.value] = count

        favorites = (
            self.db.query(func.count(SyncRecord.id))
            .filter(
                SyncRecord.user_id == user_id,
                SyncRecord.is_deleted.is_(False),
                SyncRecord.is_favorite.is_(True),
            )
            .scalar()
        )
        return {"total": sum(by_type.values()), "favorites": favorites or 0, "by_type": by_type}

    def toggle_favorite(self, sync_id: str, user_id: str) -> bool:
        """Flip the favorite flag and return the new state."""
        record = self._get_owned(sync_id, user_id)
        if not record:
            raise SyncNotFoundError()

        record.is_favorite = not record.is_favorite
        self.db.commit()
        self.cache.invalidate_record(user_id, sync_id)
        return record.is_favorite

    def soft_delete(self, sync_id: str, user_id: str) -> None:
        """Hide a record. Deleting it again raises ``SyncNotFoundError``."""
        record = self._get_owned(sync_id, user_id)
        if not record:
            raise SyncNotFoundError()

        record.is_deleted = True
        self.db.commit()
        self.cache.invalidate_record(user_id, sync_id)
        logger.info(f"Soft-deleted sync {sync_id} for user {user_id}")

    def get_batch(self, user_id: str, **filters) -> dict:
        """Recent items plus favorites, as sent in ``sync:batch``."""
        return {
            "recent": self.list_recent(user_id, **filters),
            "favorites": self.list_favorites(user_id),
        }


@dataclass
class IngestResult:
    record: dict
    fanout: SendResult = field(default_factory=SendResult)


class SyncFanout:
    """Pushes new records to the sibling sessions of the sender."""

    def __init__(self, directory: SessionDirectory):
        self.directory = directory

    async def resolve_targets(
        self, user_id: str, source_device_id: str, target_devices: list[str] | None = None
    ) -> list[str]:
        """Explicit targets that are connected, or every connected sibling."""
        connected = await self.directory.connected_device_ids(user_id)
        connected.discard(source_device_id)
        if target_devices:
            return [d for d in dict.fromkeys(target_devices) if d in connected]
        return sorted(connected)

    async def fan_out(
        self,
        record: dict,
        user_id: str,
        source_device_id: str,
        target_devices: list[str] | None = None,
    ) -> SendResult:
        targets = await self.resolve_targets(user_id, source_device_id, target_devices)
        if not targets:
            return SendResult()
        result = await self.directory.send_to_devices(
            user_id, targets, SyncEventName.SYNC_DATA, sync_data_payload(record)
        )
        if result.failed:
            logger.warning(f"Sync {record['id']} not delivered to {sorted(result.failed)}")
        return result

    async def broadcast_lists(self, service: SyncService, user_id: str) -> None:
        """Send fresh recent and favorite lists to every session of the user."""
        await self.directory.broadcast_to_user(
            user_id, SyncEventName.SYNC_BATCH, service.get_batch(user_id)
        )

    async def broadcast_deleted(self, service: SyncService, user_id: str, sync_id: str) -> None:
        await self.directory.broadcast_to_user(
            user_id, SyncEventName.SYNC_DELETED, {"sync_id": sync_id}
        )
        await self.broadcast_lists(service, user_id)


async def ingest_sync(
    service: SyncService,
    fanout: SyncFanout,
    user_id: str,
    device_id: str,
    event: SyncEvent,
) -> IngestResult:
    """Persist a submission, push it to the targets and track the pushes.

    The record is durable before any push; push failures never fail the
    submission.
    """
    record = serialize_sync(service.create_sync(user_id, device_id, event))
    result = await fanout.fan_out(record, user_id, device_id, event.target_devices)
    service.record_delivery_attempts(record["id"], result)
    return IngestResult(record=record, fanout=result)
