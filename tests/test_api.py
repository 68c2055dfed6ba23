"""Tests for the chappy HTTP API."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from chappy.api import app
from chappy.errors import StoreUnavailable, WriteConflict
from chappy.store import InMemoryStore, SqliteStore, get_store, set_store
from chappy.testing import legacy_rows


@pytest.fixture
def client():
    """Create test client."""
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def seeded():
    """Global store preloaded with rows of both key conventions."""
    store = InMemoryStore(legacy_rows())
    set_store(store)
    return store


def auth(name):
    return {"Authorization": f"Bearer {name}-token"}


class TestHealth:
    def test_health_check(self, client):
        for path in ("/health", "/api/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json() == {"status": "ok"}

    def test_response_time_header(self, client):
        response = client.get("/health")
        assert "X-Response-Time-Ms" in response.headers

    def test_unknown_route(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestLifespan:
    def test_restart_after_shutdown(self, tmp_path):
        first = SqliteStore(tmp_path / "chappy.db")
        set_store(first)
        with TestClient(app):
            pass
        assert get_store() is not first

        with TestClient(app) as c:
            response = c.get("/api/channels")
            assert response.status_code == 200
            assert response.json() == {"success": True, "channels": []}


class TestChannels:
    def test_public_list_hides_locked(self, client, seeded):
        response = client.get("/api/channels")
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "channels": [
                {"name": "archive", "isLocked": False},
                {"name": "general", "isLocked": False},
            ],
        }

    def test_all_requires_login(self, client, seeded):
        assert client.get("/api/channels/all").status_code == 401
        assert client.get("/api/channels/all", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_all_includes_locked(self, client, seeded):
        response = client.get("/api/channels/all", headers=auth("alice"))
        names = [(c["name"], c["isLocked"]) for c in response.json()["channels"]]
        assert ("random", True) in names

    def test_store_failure_is_503(self, client):
        with patch("chappy.api.roster.list_channels", side_effect=StoreUnavailable("table offline")):
            response = client.get("/api/channels")
        assert response.status_code == 503
        assert response.json() == {"success": False, "message": "table offline"}


class TestChannelMessages:
    def test_empty_channel(self, client):
        response = client.get("/api/messages", params={"kind": "channel", "channel": "general"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "messages": []}

    def test_send_and_list(self, client):
        response = client.post(
            "/api/messages",
            json={"kind": "channel", "channel": "general", "text": "hello"},
            headers=auth("alice"),
        )
        assert response.status_code == 201
        sent = response.json()["message"]
        assert sent["author"] == "alice"
        assert sent["sender"] == "alice"
        assert sent["id"].startswith("MSG#")

        response = client.get("/api/messages", params={"kind": "channel", "channel": "general"})
        messages = response.json()["messages"]
        assert messages[-1]["id"] == sent["id"]
        assert messages[-1]["text"] == "hello"

    def test_kind_is_inferred(self, client):
        client.post("/api/messages", json={"channel": "general", "text": "hi"}, headers=auth("alice"))
        response = client.get("/api/messages", params={"channel": "general"})
        assert len(response.json()["messages"]) == 1

    def test_legacy_messages(self, client, seeded):
        response = client.get("/api/messages", params={"channel": "archive", "limit": "abc"})
        messages = response.json()["messages"]
        assert [m["text"] for m in messages] == ["first", "second"]
        assert messages[0]["author"] == "bob"
        assert messages[0]["time"] == "09:00"

    def test_limit(self, client, seeded):
        response = client.get("/api/messages", params={"channel": "archive", "limit": 1})
        assert len(response.json()["messages"]) == 1

    def test_locked_channel_requires_login(self, client, seeded):
        params = {"kind": "channel", "channel": "random"}
        assert client.get("/api/messages", params=params).status_code == 401
        assert client.get("/api/messages", params=params, headers=auth("bob")).status_code == 200

    def test_send_requires_login(self, client):
        response = client.post("/api/messages", json={"kind": "channel", "channel": "general", "text": "hi"})
        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.parametrize(
        "body",
        [
            {"kind": "channel", "channel": "general", "text": "   "},
            {"kind": "channel", "channel": "general"},
            {"kind": "channel", "text": "hi"},
            {"kind": "group", "channel": "general", "text": "hi"},
            {"kind": "dm", "dmId": "alice#bob", "text": "hi"},
        ],
    )
    def test_malformed_send(self, client, body):
        response = client.post("/api/messages", json=body, headers=auth("alice"))
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_missing_thread_address(self, client):
        assert client.get("/api/messages").status_code == 400

    def test_write_conflict_is_409(self, client):
        with patch("chappy.api.MessageStore.send", side_effect=WriteConflict("busy")):
            response = client.post(
                "/api/messages",
                json={"kind": "channel", "channel": "general", "text": "hi"},
                headers=auth("alice"),
            )
        assert response.status_code == 409
        assert response.json() == {"success": False, "message": "busy", "retryable": True}


class TestGuestMessages:
    def test_guest_post(self, client):
        response = client.post("/api/messages/public", json={"kind": "channel", "channel": "general", "text": "hi"})
        assert response.status_code == 201
        assert response.json()["message"]["author"] == "Guest"

    @pytest.mark.parametrize(
        "body",
        [
            {"kind": "channel", "channel": "ops", "text": "hi"},
            {"kind": "dm", "dmId": "DM#alice#bob", "text": "hi"},
            {"kind": "channel", "channel": "general", "text": ""},
        ],
    )
    def test_rejected(self, client, body):
        assert client.post("/api/messages/public", json=body).status_code == 400


class TestDirectMessages:
    def test_member_can_send_and_read(self, client):
        dm = {"kind": "dm", "dmId": "DM#alice#bob"}
        response = client.post("/api/messages", json={**dm, "text": "psst"}, headers=auth("alice"))
        assert response.status_code == 201
        assert response.json()["message"]["dmId"] == "DM#alice#bob"

        response = client.get("/api/messages", params=dm, headers=auth("bob"))
        assert [m["text"] for m in response.json()["messages"]] == ["psst"]

    def test_non_member_forbidden(self, client, seeded):
        dm = {"kind": "dm", "dmId": "DM#alice#bob"}
        assert client.post("/api/messages", json={**dm, "text": "hi"}, headers=auth("carol")).status_code == 403
        assert client.get("/api/messages", params=dm, headers=auth("carol")).status_code == 403

    def test_reading_requires_login(self, client, seeded):
        response = client.get("/api/messages", params={"kind": "dm", "dmId": "DM#alice#bob"})
        assert response.status_code == 401

    def test_admin_can_read(self, client, seeded):
        response = client.get("/api/messages", params={"kind": "dm", "dmId": "DM#alice#bob"}, headers=auth("admin"))
        assert response.status_code == 200
        assert len(response.json()["messages"]) == 1

    def test_my_dms(self, client, seeded):
        response = client.get("/api/dms", headers=auth("bob"))
        assert response.status_code == 200
        assert response.json()["dms"] == [
            {"dmId": "DM#alice#bob", "username": "alice", "lastMessageAt": "2024-02-01T12:00:00.000Z"}
        ]

    def test_my_dms_empty(self, client):
        response = client.get("/api/dms", headers=auth("alice"))
        assert response.json() == {"success": True, "dms": []}

    def test_all_dms_admin_only(self, client, seeded):
        assert client.get("/api/dms/all", headers=auth("alice")).status_code == 403

        response = client.get("/api/dms/all", headers=auth("admin"))
        assert response.status_code == 200
        assert [d["id"] for d in response.json()["dms"]] == ["DM#alice#bob", "DM#carol#dave"]


class TestUsers:
    def test_list_users(self, client, seeded):
        assert client.get("/api/users").status_code == 401

        response = client.get("/api/users", headers=auth("alice"))
        assert response.json()["users"] == [
            {"userId": "root", "username": "admin", "accessLevel": "admin"},
            {"userId": "u-alice", "username": "alice", "accessLevel": "user"},
            {"userId": "bob", "username": "bob", "accessLevel": "user"},
        ]

    def test_me(self, client, seeded):
        response = client.get("/api/me", headers=auth("alice"))
        assert response.json() == {"success": True, "username": "alice", "accessLevel": "user", "userId": "u-alice"}

    def test_me_without_user_row(self, client, seeded):
        response = client.get("/api/me", headers=auth("carol"))
        assert response.status_code == 200
        assert response.json()["userId"] is None

    def test_delete_self(self, client, seeded):
        response = client.delete("/api/users/bob", headers=auth("bob"))
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get("/api/me", headers=auth("bob")).json()["userId"] is None

    def test_delete_other_forbidden(self, client, seeded):
        assert client.delete("/api/users/u-alice", headers=auth("bob")).status_code == 403

    def test_unverifiable_caller_forbidden(self, client, seeded):
        assert client.delete("/api/users/carol", headers=auth("carol")).status_code == 403

    def test_admin_delete(self, client, seeded):
        assert client.delete("/api/users/u-alice", headers=auth("admin")).status_code == 200
        assert client.delete("/api/users/nobody", headers=auth("admin")).status_code == 404


class TestMetrics:
    def test_admin_only(self, client):
        assert client.get("/metrics").status_code == 401
        assert client.get("/metrics", headers=auth("alice")).status_code == 403

    def test_records_requests(self, client):
        client.get("/api/channels")
        response = client.get("/metrics", headers=auth("admin"))
        assert response.status_code == 200
        data = response.json()
        assert "GET channels" in data["requests"]
        assert "scan" in data["store_operations"]
