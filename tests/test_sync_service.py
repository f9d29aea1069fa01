"""Tests for sync persistence, reads and fan-out."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import DESKTOP_UA, LAPTOP_UA, PHONE_UA
from sqlalchemy.exc import OperationalError

from src.models.enums import ContentType, SyncState
from src.models.mixins import utcnow
from src.models.sync_delivery_status import SyncDeliveryStatus
from src.models.sync_record import SyncRecord
from src.models.user import User
from src.schemas.sync import SyncEventAdapter
from src.services.devices import DeviceRegistry
from src.services.errors import (
    DeviceNotFoundError,
    SyncNotFoundError,
    TransientInfrastructureError,
    ValidationError,
)
from src.services.realtime import SendResult, SyncEventName
from src.services.sync_service import (
    SyncFanout,
    SyncService,
    compute_checksum,
    ingest_sync,
    serialize_sync,
)

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


def make_event(content: str = "hello", content_type: str = "clipboard", **extra):
    return SyncEventAdapter.validate_python(
        {"content": content, "content_type": content_type, **extra}
    )


@pytest.fixture
def user(db):
    user = User(
        email="sync@example.com",
        username="syncer",
        password_hash="not-a-real-hash",  # noqa: S106
        email_verified=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def registry(db):
    return DeviceRegistry(db, notifier=MagicMock())


@pytest.fixture
def desktop(registry, user):
    return registry.resolve_or_create_device(user, DESKTOP_UA, "10.0.0.1")


@pytest.fixture
def phone(registry, user):
    return registry.resolve_or_create_device(user, PHONE_UA, "10.0.0.2")


@pytest.fixture
def service(db, registry):
    return SyncService(db, registry=registry)


def test_checksum_is_sha256():
    assert compute_checksum("hello") == HELLO_SHA256


class TestCreateSync:
    """Tests for persisting submissions."""

    def test_persists_record_and_source_delivery(self, db, service, user, desktop):
        record = service.create_sync(user.id, desktop.id, make_event("hello"))

        assert record.size_bytes == 5
        assert record.checksum == HELLO_SHA256
        assert record.version == 1
        assert record.value == "hello"
        assert record.source_device_id == desktop.id
        assert record.is_favorite is False

        statuses = db.query(SyncDeliveryStatus).filter_by(sync_id=record.id).all()
        assert len(statuses) == 1
        assert statuses[0].device_id == desktop.id
        assert statuses[0].sync_state == SyncState.COMPLETED

    def test_size_counts_utf8_bytes(self, service, user, desktop):
        record = service.create_sync(user.id, desktop.id, make_event("héllo"))
        assert record.size_bytes == 6

    def test_rejects_foreign_device(self, db, service, user):
        other = User(email="o@example.com", username="other", password_hash="x")
        db.add(other)
        db.commit()
        device = DeviceRegistry(db, notifier=MagicMock()).resolve_or_create_device(
            other, DESKTOP_UA, None
        )
        with pytest.raises(DeviceNotFoundError):
            service.create_sync(user.id, device.id, make_event())

    def test_rejects_inactive_device(self, db, service, user, desktop):
        desktop.is_active = False
        db.commit()
        with pytest.raises(DeviceNotFoundError):
            service.create_sync(user.id, desktop.id, make_event())

    def test_rejects_oversized_content(self, db, service, user, desktop):
        service.settings = service.settings.model_copy(update={"max_sync_content_bytes": 4})
        with pytest.raises(ValidationError):
            service.create_sync(user.id, desktop.id, make_event("hello"))
        assert db.query(SyncRecord).count() == 0

    def test_rejects_unknown_parent(self, service, user, desktop):
        with pytest.raises(SyncNotFoundError):
            service.create_sync(user.id, desktop.id, make_event(parent_sync_id="missing"))

    def test_links_parent(self, service, user, desktop):
        parent = service.create_sync(user.id, desktop.id, make_event("v1"))
        child = service.create_sync(user.id, desktop.id, make_event("v2", parent_sync_id=parent.id))
        assert child.parent_sync_id == parent.id

    def test_write_failure_is_transient(self, db, service, user, desktop, monkeypatch):
        def fail():
            raise OperationalError("INSERT", {}, Exception("db down"))

        monkeypatch.setattr(db, "commit", fail)
        with pytest.raises(TransientInfrastructureError):
            service.create_sync(user.id, desktop.id, make_event())

    def test_invalidates_cached_lists(self, db, registry, user, desktop):
        cache = MagicMock()
        cache.enabled = False
        SyncService(db, cache, registry).create_sync(user.id, desktop.id, make_event())
        cache.invalidate_lists.assert_called_once_with(user.id)


class TestDeliveryStatus:
    """Tests for acknowledgments and recorded pushes."""

    def test_acknowledge_is_idempotent(self, db, service, user, desktop, phone):
        record = service.create_sync(user.id, desktop.id, make_event())

        service.acknowledge_sync(record.id, user.id, phone.id)
        status = service.acknowledge_sync(record.id, user.id, phone.id)

        assert status.sync_state == SyncState.COMPLETED
        assert status.last_successful_sync is not None
        rows = db.query(SyncDeliveryStatus).filter_by(sync_id=record.id, device_id=phone.id)
        assert rows.count() == 1

    def test_acknowledge_unknown_sync(self, service, user, phone):
        with pytest.raises(SyncNotFoundError):
            service.acknowledge_sync("missing", user.id, phone.id)

    def test_failed_acknowledgment_counts_retries(self, service, user, desktop, phone):
        record = service.create_sync(user.id, desktop.id, make_event())
        service.acknowledge_sync(record.id, user.id, phone.id, SyncState.FAILED, "disk full")
        status = service.acknowledge_sync(
            record.id, user.id, phone.id, SyncState.FAILED, "disk full"
        )
        assert status.retry_count == 2
        assert status.error_message == "disk full"

    def test_record_delivery_attempts(self, db, registry, service, user, desktop, phone):
        laptop = registry.resolve_or_create_device(user, LAPTOP_UA, None)
        record = service.create_sync(user.id, desktop.id, make_event())

        service.record_delivery_attempts(
            record.id, SendResult(delivered=[phone.id], failed={laptop.id: "closed"})
        )

        states = {
            s.device_id: s
            for s in db.query(SyncDeliveryStatus).filter_by(sync_id=record.id).all()
        }
        assert states[desktop.id].sync_state == SyncState.COMPLETED
        assert states[phone.id].sync_state == SyncState.IN_PROGRESS
        assert states[laptop.id].sync_state == SyncState.FAILED
        assert states[laptop.id].retry_count == 1
        assert states[laptop.id].error_message == "closed"

    def test_delivery_attempt_never_downgrades_completed(self, db, service, user, desktop, phone):
        record = service.create_sync(user.id, desktop.id, make_event())
        service.acknowledge_sync(record.id, user.id, phone.id)

        service.record_delivery_attempts(record.id, SendResult(delivered=[phone.id]))

        status = db.query(SyncDeliveryStatus).filter_by(sync_id=record.id, device_id=phone.id)
        assert status.one().sync_state == SyncState.COMPLETED


class TestReads:
    """Tests for listing, favorites, stats and deletion."""

    def test_recent_is_newest_first(self, service, user, desktop):
        first = service.create_sync(user.id, desktop.id, make_event("one"))
        second = service.create_sync(user.id, desktop.id, make_event("two"))

        items = service.list_recent(user.id)
        assert [i["id"] for i in items] == [second.id, first.id]

    def test_recent_filters_by_type_and_since(self, db, service, user, desktop):
        old = service.create_sync(user.id, desktop.id, make_event("old note", "note"))
        old.created_at = utcnow() - timedelta(hours=2)
        db.commit()
        service.create_sync(user.id, desktop.id, make_event("https://example.com", "link"))
        new_note = service.create_sync(user.id, desktop.id, make_event("new note", "note"))

        notes = service.list_recent(user.id, content_type=ContentType.NOTE)
        assert {i["content"]["value"] for i in notes} == {"old note", "new note"}

        since = utcnow() - timedelta(hours=1)
        recent_notes = service.list_recent(user.id, content_type=ContentType.NOTE, since=since)
        assert [i["id"] for i in recent_notes] == [new_note.id]

    def test_recent_respects_limit(self, service, user, desktop):
        for n in range(4):
            service.create_sync(user.id, desktop.id, make_event(f"item {n}"))
        assert len(service.list_recent(user.id, limit=2)) == 2

    def test_favorite_round_trip(self, service, user, desktop):
        record = service.create_sync(user.id, desktop.id, make_event())

        assert service.toggle_favorite(record.id, user.id) is True
        assert [f["id"] for f in service.list_favorites(user.id)] == [record.id]

        assert service.toggle_favorite(record.id, user.id) is False
        assert service.list_favorites(user.id) == []

    def test_favorites_are_capped(self, service, user, desktop):
        for n in range(7):
            record = service.create_sync(user.id, desktop.id, make_event(f"fav {n}"))
            service.toggle_favorite(record.id, user.id)
        assert len(service.list_favorites(user.id)) == 5

    def test_soft_delete_hides_record(self, service, user, desktop):
        record = service.create_sync(user.id, desktop.id, make_event())
        service.soft_delete(record.id, user.id)

        assert service.list_recent(user.id) == []
        with pytest.raises(SyncNotFoundError):
            service.get_sync(record.id, user.id)
        with pytest.raises(SyncNotFoundError):
            service.soft_delete(record.id, user.id)

    def test_get_sync_scoped_to_owner(self, db, service, user, desktop):
        record = service.create_sync(user.id, desktop.id, make_event())
        other = User(email="o@example.com", username="other", password_hash="x")
        db.add(other)
        db.commit()
        with pytest.raises(SyncNotFoundError):
            service.get_sync(record.id, other.id)

    def test_stats(self, service, user, desktop):
        service.create_sync(user.id, desktop.id, make_event("a"))
        service.create_sync(user.id, desktop.id, make_event("b"))
        note = service.create_sync(user.id, desktop.id, make_event("c", "note"))
        deleted = service.create_sync(user.id, desktop.id, make_event("d", "note"))
        service.toggle_favorite(note.id, user.id)
        service.soft_delete(deleted.id, user.id)

        stats = service.get_stats(user.id)
        assert stats["total"] == 3
        assert stats["favorites"] == 1
        assert stats["by_type"] == {"clipboard": 2, "link": 0, "file": 0, "note": 1}

    def test_serialized_record_is_json_ready(self, service, user, desktop):
        record = service.create_sync(
            user.id, desktop.id, make_event("/files/a.pdf", "file", metadata={"filename": "a.pdf"})
        )
        item = serialize_sync(record)
        assert item["content_type"] == "file"
        assert item["metadata"] == {"filename": "a.pdf"}
        assert isinstance(item["created_at"], str)


class TestFanout:
    """Tests for pushing new records to sibling sessions."""

    @pytest.fixture
    def directory(self):
        directory = MagicMock()
        directory.connected_device_ids = AsyncMock(return_value={"src", "b", "c"})
        directory.send_to_devices = AsyncMock(return_value=SendResult(delivered=["b", "c"]))
        directory.broadcast_to_user = AsyncMock(return_value=SendResult())
        return directory

    @pytest.mark.asyncio
    async def test_targets_exclude_source(self, directory):
        fanout = SyncFanout(directory)
        assert await fanout.resolve_targets("u1", "src") == ["b", "c"]

    @pytest.mark.asyncio
    async def test_explicit_targets_must_be_connected(self, directory):
        fanout = SyncFanout(directory)
        targets = await fanout.resolve_targets("u1", "src", ["c", "offline", "src", "c"])
        assert targets == ["c"]

    @pytest.mark.asyncio
    async def test_no_targets_sends_nothing(self, directory):
        directory.connected_device_ids.return_value = {"src"}
        result = await SyncFanout(directory).fan_out({"id": "s1"}, "u1", "src")
        assert result == SendResult()
        directory.send_to_devices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ingest_persists_then_pushes(
        self, db, service, user, desktop, phone, directory
    ):
        directory.connected_device_ids.return_value = {desktop.id, phone.id}
        directory.send_to_devices.return_value = SendResult(delivered=[phone.id])

        result = await ingest_sync(
            service, SyncFanout(directory), user.id, desktop.id, make_event("hello")
        )

        _, targets, event, payload = directory.send_to_devices.await_args.args
        assert targets == [phone.id]
        assert event == SyncEventName.SYNC_DATA
        assert payload["sync_id"] == result.record["id"]
        assert payload["content"]["value"] == "hello"
        assert payload["source_device_id"] == desktop.id
        assert result.fanout.delivered == [phone.id]

        states = {
            s.device_id: s.sync_state
            for s in db.query(SyncDeliveryStatus).filter_by(sync_id=result.record["id"])
        }
        assert states == {desktop.id: SyncState.COMPLETED, phone.id: SyncState.IN_PROGRESS}

    @pytest.mark.asyncio
    async def test_broadcast_deleted_then_lists(self, service, user, directory):
        await SyncFanout(directory).broadcast_deleted(service, user.id, "s1")

        events = [call.args[1] for call in directory.broadcast_to_user.await_args_list]
        assert events == [SyncEventName.SYNC_DELETED, SyncEventName.SYNC_BATCH]
        assert directory.broadcast_to_user.await_args_list[0].args[2] == {"sync_id": "s1"}
