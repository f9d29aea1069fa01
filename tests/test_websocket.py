"""WebSocket sync channel tests: handshake, fan-out, acknowledgments and re-authorization."""

from contextlib import ExitStack

import pytest
from conftest import (
    DESKTOP_UA,
    LAPTOP_UA,
    PHONE_UA,
    TABLET_UA,
    login_device,
    make_expired_access_token,
)
from fastapi import WebSocketDisconnect

from src.models.device import Device
from src.models.device_auth import DeviceAuthentication
from src.models.enums import SyncState
from src.models.sync_delivery_status import SyncDeliveryStatus

WS_PATH = "/api/v1/ws/sync"


def ws_url(headers, token=None, refresh_token=None) -> str:
    url = f"{WS_PATH}?token={token or headers.access_token}&device_id={headers.device_id}"
    if refresh_token:
        url += f"&refresh_token={refresh_token}"
    return url


def receive(ws, expected_type: str) -> dict:
    """Receive the next message and check its type."""
    message = ws.receive_json()
    assert message["type"] == expected_type, message
    return message["data"]


def connect_all(stack: ExitStack, client, *devices) -> list:
    """Connect devices one at a time, each fully registered before the next."""
    sockets = []
    for headers in devices:
        ws = stack.enter_context(client.websocket_connect(ws_url(headers)))
        receive(ws, "init:data")
        sockets.append(ws)
    return sockets


def create_note(ws, content: str) -> str:
    ws.send_json({"type": "sync:create", "data": {"content": content, "content_type": "note"}})
    return receive(ws, "sync:ack")["sync_id"]


@pytest.fixture
def devices(client, verified_user):
    """Four signed-in devices of one user: desktop, phone, tablet and laptop."""
    return {
        "desktop": login_device(client, DESKTOP_UA),
        "phone": login_device(client, PHONE_UA),
        "tablet": login_device(client, TABLET_UA),
        "laptop": login_device(client, LAPTOP_UA),
    }


class TestHandshake:
    """Tests for authentication during the handshake."""

    def test_missing_token_is_rejected(self, client, auth_headers):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"{WS_PATH}?device_id={auth_headers.device_id}"):
                pass
        assert exc_info.value.code == 4001

    def test_missing_device_id_is_rejected(self, client, auth_headers):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"{WS_PATH}?token={auth_headers.access_token}"):
                pass
        assert exc_info.value.code == 4001

    def test_invalid_token_is_rejected(self, client, auth_headers):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(ws_url(auth_headers, token="not-a-jwt")):
                pass
        assert exc_info.value.code == 4001

    def test_device_mismatch_is_rejected(self, client, devices):
        desktop, phone = devices["desktop"], devices["phone"]
        url = f"{WS_PATH}?token={desktop.access_token}&device_id={phone.device_id}"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(url):
                pass
        assert exc_info.value.code == 4001

    def test_expired_token_without_refresh_is_rejected(self, client, auth_headers):
        expired = make_expired_access_token(auth_headers.user_id, auth_headers.device_id)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(ws_url(auth_headers, token=expired)):
                pass
        assert exc_info.value.code == 4001

    def test_init_data(self, client, devices):
        desktop = devices["desktop"]
        with client.websocket_connect(ws_url(desktop)) as ws:
            data = receive(ws, "init:data")

        assert data["currentDevice"]["id"] == desktop.device_id
        assert data["currentDevice"]["is_current"] is True
        assert len(data["devices"]) == 4
        assert data["stats"]["total"] == 0

    def test_presence_follows_connection(self, client, db, auth_headers):
        with client.websocket_connect(ws_url(auth_headers)) as ws:
            receive(ws, "init:data")
            db.expire_all()
            assert db.get(Device, auth_headers.device_id).is_online is True

        db.expire_all()
        device = db.get(Device, auth_headers.device_id)
        assert device.is_online is False
        assert device.is_active is True

    def test_expired_token_is_refreshed(self, client, db, auth_headers):
        expired = make_expired_access_token(auth_headers.user_id, auth_headers.device_id)
        url = ws_url(auth_headers, token=expired, refresh_token=auth_headers.refresh_token)

        with client.websocket_connect(url) as ws:
            tokens = receive(ws, "auth:refreshed")
            receive(ws, "init:data")

        assert tokens["access_token"] != expired
        assert tokens["refresh_token"] != auth_headers.refresh_token
        valid = db.query(DeviceAuthentication).filter_by(
            device_id=auth_headers.device_id, is_valid=True
        )
        assert valid.count() == 1

        # The replaced refresh token cannot be used again
        response = client.post(
            "/api/v1/auth/refresh-token",
            headers={
                "refresh-token": auth_headers.refresh_token,
                "device-id": auth_headers.device_id,
            },
        )
        assert response.status_code == 401


class TestFanout:
    """Tests for pushing submissions to sibling devices."""

    def test_create_reaches_connected_siblings_only(self, client, db, devices):
        desktop, phone, tablet, laptop = (
            devices["desktop"],
            devices["phone"],
            devices["tablet"],
            devices["laptop"],
        )
        with ExitStack() as stack:
            ws_a, ws_b, ws_c = connect_all(stack, client, desktop, phone, tablet)
            # Desktop hears about the phone and the tablet, the phone about the tablet
            assert receive(ws_a, "device:online")["deviceId"] == phone.device_id
            assert receive(ws_a, "device:online")["deviceId"] == tablet.device_id
            assert receive(ws_b, "device:online")["deviceId"] == tablet.device_id

            ws_a.send_json(
                {"type": "sync:create", "data": {"content": "hello", "content_type": "clipboard"}}
            )
            ack = receive(ws_a, "sync:ack")
            phone_data = receive(ws_b, "sync:data")
            tablet_data = receive(ws_c, "sync:data")

        assert ack["status"] == "success"
        assert sorted(ack["delivered_to"]) == sorted([phone.device_id, tablet.device_id])
        for data in (phone_data, tablet_data):
            assert data["sync_id"] == ack["sync_id"]
            assert data["content"]["value"] == "hello"
            assert data["source_device_id"] == desktop.device_id

        db.expire_all()
        states = {
            s.device_id: s.sync_state
            for s in db.query(SyncDeliveryStatus).filter_by(sync_id=ack["sync_id"]).all()
        }
        assert states == {
            desktop.device_id: SyncState.COMPLETED,
            phone.device_id: SyncState.IN_PROGRESS,
            tablet.device_id: SyncState.IN_PROGRESS,
        }
        assert laptop.device_id not in states

    def test_explicit_targets(self, client, devices):
        desktop, phone, tablet = devices["desktop"], devices["phone"], devices["tablet"]
        with ExitStack() as stack:
            ws_a, ws_b, ws_c = connect_all(stack, client, desktop, phone, tablet)
            receive(ws_a, "device:online")
            receive(ws_a, "device:online")
            receive(ws_b, "device:online")

            ws_a.send_json(
                {
                    "type": "sync:create",
                    "data": {
                        "content": "only for the tablet",
                        "content_type": "note",
                        "target_devices": [tablet.device_id],
                    },
                }
            )
            ack = receive(ws_a, "sync:ack")
            receive(ws_c, "sync:data")

            # The phone gets nothing; its next message is the reply to its own request
            ws_b.send_json({"type": "sync:request", "data": {}})
            batch = receive(ws_b, "sync:batch")

        assert ack["delivered_to"] == [tablet.device_id]
        assert [item["id"] for item in batch["recent"]] == [ack["sync_id"]]

    def test_acknowledgment_completes_delivery(self, client, db, devices):
        phone = devices["phone"]
        with ExitStack() as stack:
            ws_a, ws_b = connect_all(stack, client, devices["desktop"], phone)
            receive(ws_a, "device:online")
            sync_id = create_note(ws_a, "hi")
            receive(ws_b, "sync:data")

            ws_b.send_json({"type": "sync:ack", "data": {"syncId": sync_id}})
            # Messages are handled in order, so the acknowledgment is stored by now
            ws_b.send_json({"type": "sync:request", "data": {"limit": 1}})
            receive(ws_b, "sync:batch")

        db.expire_all()
        status = (
            db.query(SyncDeliveryStatus)
            .filter_by(sync_id=sync_id, device_id=phone.device_id)
            .one()
        )
        assert status.sync_state == SyncState.COMPLETED
        assert status.last_successful_sync is not None

    def test_delete_is_broadcast(self, client, devices):
        with ExitStack() as stack:
            ws_a, ws_b = connect_all(stack, client, devices["desktop"], devices["phone"])
            receive(ws_a, "device:online")
            sync_id = create_note(ws_a, "x")
            receive(ws_b, "sync:data")

            ws_b.send_json({"type": "sync:delete", "data": {"sync_id": sync_id}})
            for ws in (ws_a, ws_b):
                assert receive(ws, "sync:deleted") == {"sync_id": sync_id}
                assert receive(ws, "sync:batch")["recent"] == []

    def test_toggle_favorite_broadcasts_lists(self, client, devices):
        with ExitStack() as stack:
            ws_a, ws_b = connect_all(stack, client, devices["desktop"], devices["phone"])
            receive(ws_a, "device:online")
            sync_id = create_note(ws_a, "x")
            receive(ws_b, "sync:data")

            ws_a.send_json({"type": "sync:toggle-favorite", "data": {"syncId": sync_id}})
            batch = receive(ws_b, "sync:batch")

        assert [item["id"] for item in batch["favorites"]] == [sync_id]

    def test_rest_submission_reaches_connected_devices(self, client, devices):
        desktop, phone = devices["desktop"], devices["phone"]
        with client.websocket_connect(ws_url(phone)) as ws_b:
            receive(ws_b, "init:data")
            response = client.post(
                "/api/v1/sync",
                json={"content": "https://example.com", "content_type": "link"},
                headers=desktop,
            )
            assert response.status_code == 201, response.text
            data = receive(ws_b, "sync:data")

        body = response.json()
        assert body["delivered_to"] == [phone.device_id]
        assert data["sync_id"] == body["sync"]["id"]


class TestClientMessages:
    """Tests for validation and per-message re-authorization."""

    def test_unknown_message_type(self, client, auth_headers):
        with client.websocket_connect(ws_url(auth_headers)) as ws:
            receive(ws, "init:data")
            ws.send_json({"type": "sync:explode", "data": {}})
            error = receive(ws, "sync:error")
        assert error["message"] == "Unknown message type: sync:explode"

    def test_invalid_payload(self, client, auth_headers):
        with client.websocket_connect(ws_url(auth_headers)) as ws:
            receive(ws, "init:data")
            ws.send_json(
                {"type": "sync:create", "data": {"content": "ftp://x", "content_type": "link"}}
            )
            error = receive(ws, "sync:error")
        assert error["message"].startswith("Invalid sync:create message")

    def test_missing_record_reports_error(self, client, auth_headers):
        with client.websocket_connect(ws_url(auth_headers)) as ws:
            receive(ws, "init:data")
            ws.send_json({"type": "sync:delete", "data": {"sync_id": "missing"}})
            error = receive(ws, "sync:error")
        assert error["message"] == "Sync not found"

    def test_deactivated_device_is_disconnected_on_next_message(self, client, db, auth_headers):
        with client.websocket_connect(ws_url(auth_headers)) as ws:
            receive(ws, "init:data")

            device = db.get(Device, auth_headers.device_id)
            device.is_active = False
            db.commit()

            ws.send_json({"type": "sync:request", "data": {}})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_logout_closes_connection(self, client, devices):
        desktop = devices["desktop"]
        with client.websocket_connect(ws_url(desktop)) as ws:
            receive(ws, "init:data")
            response = client.post("/api/v1/auth/logout", headers=desktop)
            assert response.status_code == 200
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_removed_device_is_disconnected(self, client, devices):
        desktop, phone = devices["desktop"], devices["phone"]
        with client.websocket_connect(ws_url(phone)) as ws_b:
            receive(ws_b, "init:data")
            response = client.delete(f"/api/v1/devices/{phone.device_id}", headers=desktop)
            assert response.status_code == 200
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws_b.receive_json()
        assert exc_info.value.code == 4001

    def test_reconnect_replaces_previous_connection(self, client, auth_headers):
        with client.websocket_connect(ws_url(auth_headers)) as first:
            receive(first, "init:data")
            with client.websocket_connect(ws_url(auth_headers)) as second:
                receive(second, "init:data")
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    first.receive_json()
                assert exc_info.value.code == 4000
