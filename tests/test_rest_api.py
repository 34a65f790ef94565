"""Tests for chathub.server -- REST API endpoints.

These tests use httpx.AsyncClient with ASGITransport to call the FastAPI app
directly (no real server needed).  The `app` fixture in conftest swaps in a
fresh service container and a temporary uploads directory.
"""

from unittest.mock import patch

import pytest

import chathub.server

from conftest import FakeConnection, sent_of_type


def _as(user_id: str) -> dict:
    return {"x-user-id": user_id}


@pytest.fixture
async def signup(client):
    """Factory: create a user over the API and return its JSON."""

    async def _signup(username: str) -> dict:
        resp = await client.post("/api/users", json={"username": username})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _signup


@pytest.fixture
async def general_id(client):
    resp = await client.get("/api/channels")
    return next(c["id"] for c in resp.json() if c["name"] == "general")


# ---------------------------------------------------------------------------
# Health check endpoint
# ---------------------------------------------------------------------------

class TestHealthCheckEndpoint:

    async def test_health_check_returns_ok(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class TestUsersEndpoint:

    async def test_create_user(self, client):
        resp = await client.post("/api/users", json={"username": "alice", "avatarColor": "#FF0000"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "alice"
        assert data["avatarColor"] == "#FF0000"
        assert data["status"] == "offline"
        assert data["avatarUrl"] is None

    async def test_username_too_short_is_422(self, client):
        resp = await client.post("/api/users", json={"username": "a"})
        assert resp.status_code == 422

    async def test_duplicate_username_is_400(self, client, signup):
        await signup("alice")
        resp = await client.post("/api/users", json={"username": "ALICE"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Username already taken"

    async def test_list_and_get(self, client, signup):
        alice = await signup("alice")
        await signup("bob")
        resp = await client.get("/api/users")
        assert [u["username"] for u in resp.json()] == ["alice", "bob"]

        resp = await client.get(f"/api/users/{alice['id']}")
        assert resp.json() == alice

    async def test_unknown_user_is_404(self, client):
        resp = await client.get("/api/users/nope")
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class TestChannelsEndpoint:

    async def test_seeded_channels(self, client):
        resp = await client.get("/api/channels")
        assert resp.status_code == 200
        assert [c["name"] for c in resp.json()] == ["general", "random", "introductions"]
        assert all(c["type"] == "text" for c in resp.json())

    async def test_create_channel_broadcasts(self, client, services):
        watcher = FakeConnection("watcher")
        services.registry.register("watcher", watcher)

        resp = await client.post("/api/channels", json={"name": "ideas", "category": "Text"})
        assert resp.status_code == 200
        channel = resp.json()
        assert channel["name"] == "ideas"
        assert sent_of_type(watcher, "channel_created") == [
            {"type": "channel_created", "channel": channel}
        ]

    async def test_empty_name_is_422(self, client):
        resp = await client.post("/api/channels", json={"name": ""})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Channel messages
# ---------------------------------------------------------------------------

class TestChannelMessagesEndpoint:

    async def test_post_requires_user_header(self, client, general_id):
        resp = await client.post(f"/api/channels/{general_id}/messages", json={"content": "hi"})
        assert resp.status_code == 401

    async def test_post_and_list(self, client, services, signup, general_id):
        alice = await signup("alice")
        watcher = FakeConnection("watcher")
        services.registry.register("watcher", watcher)

        resp = await client.post(
            f"/api/channels/{general_id}/messages",
            json={"content": "hello from rest"},
            headers=_as(alice["id"]),
        )
        assert resp.status_code == 200
        msg = resp.json()
        assert msg["username"] == "alice"
        assert msg["channelId"] == general_id
        assert sent_of_type(watcher, "message") == [{"type": "message", "message": msg}]

        resp = await client.get(f"/api/channels/{general_id}/messages")
        assert resp.json() == [msg]

    async def test_list_with_limit(self, client, signup, general_id):
        alice = await signup("alice")
        for text in ("first one", "second one", "third one"):
            await client.post(
                f"/api/channels/{general_id}/messages",
                json={"content": text},
                headers=_as(alice["id"]),
            )
        resp = await client.get(f"/api/channels/{general_id}/messages", params={"limit": 2})
        assert [m["content"] for m in resp.json()] == ["second one", "third one"]

    async def test_unknown_channel_is_404(self, client, signup):
        alice = await signup("alice")
        resp = await client.get("/api/channels/nope/messages")
        assert resp.status_code == 404
        resp = await client.post(
            "/api/channels/nope/messages", json={"content": "hi"}, headers=_as(alice["id"])
        )
        assert resp.status_code == 404

    async def test_blocked_message_rejected(self, client, signup, general_id):
        alice = await signup("alice")
        resp = await client.post(
            f"/api/channels/{general_id}/messages",
            json={"content": "kill yourself"},
            headers=_as(alice["id"]),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Message rejected"
        resp = await client.get(f"/api/channels/{general_id}/messages")
        assert resp.json() == []

    async def test_empty_message_rejected(self, client, signup, general_id):
        alice = await signup("alice")
        resp = await client.post(
            f"/api/channels/{general_id}/messages", json={"content": ""}, headers=_as(alice["id"])
        )
        assert resp.status_code == 400

    async def test_rate_limit_is_429(self, client, signup, general_id):
        alice = await signup("alice")
        url = f"/api/channels/{general_id}/messages"
        for i in range(5):
            resp = await client.post(url, json={"content": f"note {i}"}, headers=_as(alice["id"]))
            assert resp.status_code == 200
        resp = await client.post(url, json={"content": "one more"}, headers=_as(alice["id"]))
        assert resp.status_code == 429

    async def test_content_too_long_is_422(self, client, signup, general_id):
        alice = await signup("alice")
        resp = await client.post(
            f"/api/channels/{general_id}/messages",
            json={"content": "x " * 1001},
            headers=_as(alice["id"]),
        )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Direct messages
# ---------------------------------------------------------------------------

class TestDmHistoryEndpoint:

    async def test_history_for_pair(self, client, services, signup):
        alice = await signup("alice")
        bob = await signup("bob")
        await services.router.submit_direct_message(alice["id"], bob["id"], "hi bob")

        resp = await client.get(f"/api/dm/{alice['id']}/messages", headers=_as(bob["id"]))
        assert resp.status_code == 200
        assert [m["content"] for m in resp.json()] == ["hi bob"]

    async def test_requires_user_header(self, client):
        resp = await client.get("/api/dm/someone/messages")
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Friends
# ---------------------------------------------------------------------------

class TestFriendsEndpoints:

    async def test_request_and_accept(self, client, services, signup):
        alice = await signup("alice")
        bob = await signup("bob")
        alice_conn = FakeConnection(alice["id"])
        bob_conn = FakeConnection(bob["id"])
        services.registry.register(alice["id"], alice_conn)
        services.registry.register(bob["id"], bob_conn)

        resp = await client.post(
            "/api/friends/request", json={"toUsername": "bob"}, headers=_as(alice["id"])
        )
        assert resp.status_code == 200
        request = resp.json()
        assert sent_of_type(bob_conn, "friend_request") == [
            {"type": "friend_request", "request": request}
        ]

        resp = await client.get("/api/friends/requests", headers=_as(bob["id"]))
        assert [r["id"] for r in resp.json()] == [request["id"]]

        resp = await client.post(f"/api/friends/accept/{request['id']}", headers=_as(bob["id"]))
        assert resp.status_code == 200
        # The accepter gets the requester back
        assert resp.json()["odId"] == alice["id"]
        accepted = sent_of_type(alice_conn, "friend_accepted")
        assert len(accepted) == 1
        assert accepted[0]["friend"]["odId"] == bob["id"]

        resp = await client.get("/api/friends", headers=_as(alice["id"]))
        assert [f["username"] for f in resp.json()] == ["bob"]

    async def test_only_recipient_may_accept(self, client, signup):
        alice = await signup("alice")
        await signup("bob")
        resp = await client.post(
            "/api/friends/request", json={"toUsername": "bob"}, headers=_as(alice["id"])
        )
        request_id = resp.json()["id"]
        resp = await client.post(f"/api/friends/accept/{request_id}", headers=_as(alice["id"]))
        assert resp.status_code == 403

    async def test_decline(self, client, signup):
        alice = await signup("alice")
        bob = await signup("bob")
        resp = await client.post(
            "/api/friends/request", json={"toUsername": "bob"}, headers=_as(alice["id"])
        )
        request_id = resp.json()["id"]
        resp = await client.post(f"/api/friends/decline/{request_id}", headers=_as(bob["id"]))
        assert resp.json() == {"success": True}
        resp = await client.post(f"/api/friends/decline/{request_id}", headers=_as(bob["id"]))
        assert resp.status_code == 404

    async def test_request_to_self_is_400(self, client, signup):
        alice = await signup("alice")
        resp = await client.post(
            "/api/friends/request", json={"toUsername": "alice"}, headers=_as(alice["id"])
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot add yourself"

    async def test_unknown_request_is_404(self, client, signup):
        alice = await signup("alice")
        resp = await client.post("/api/friends/accept/nope", headers=_as(alice["id"]))
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Uploads and avatars
# ---------------------------------------------------------------------------

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class TestUploadEndpoint:

    async def test_upload_image(self, client):
        resp = await client.post(
            "/api/upload/image", files={"file": ("cat.png", PNG_BYTES, "image/png")}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "cat.png"
        assert data["url"].startswith("/uploads/")
        assert data["url"].endswith(".png")

        stored = chathub.server.UPLOADS_DIR / data["url"].rsplit("/", 1)[1]
        assert stored.read_bytes() == PNG_BYTES

    async def test_wrong_content_type_rejected(self, client):
        resp = await client.post(
            "/api/upload/video", files={"file": ("cat.png", PNG_BYTES, "image/png")}
        )
        assert resp.status_code == 400

    async def test_empty_file_rejected(self, client):
        resp = await client.post(
            "/api/upload/audio", files={"file": ("a.ogg", b"", "audio/ogg")}
        )
        assert resp.status_code == 400

    async def test_unknown_kind_is_404(self, client):
        resp = await client.post(
            "/api/upload/document", files={"file": ("a.pdf", b"%PDF", "application/pdf")}
        )
        assert resp.status_code == 404

    async def test_oversize_is_413(self, client):
        with patch("chathub.server.MAX_UPLOAD_BYTES", 8):
            resp = await client.post(
                "/api/upload/image", files={"file": ("cat.png", PNG_BYTES, "image/png")}
            )
        assert resp.status_code == 413


class TestAvatarEndpoint:

    async def test_avatar_update_broadcast_and_history_unchanged(
        self, client, services, signup, general_id
    ):
        alice = await signup("alice")
        watcher = FakeConnection("watcher")
        services.registry.register("watcher", watcher)
        await client.post(
            f"/api/channels/{general_id}/messages",
            json={"content": "before the change"},
            headers=_as(alice["id"]),
        )

        resp = await client.post(
            f"/api/users/{alice['id']}/avatar",
            files={"file": ("me.png", PNG_BYTES, "image/png")},
            headers=_as(alice["id"]),
        )
        assert resp.status_code == 200
        avatar_url = resp.json()["avatarUrl"]
        assert avatar_url.startswith("/uploads/")
        assert sent_of_type(watcher, "avatar_updated") == [{
            "type": "avatar_updated",
            "userId": alice["id"],
            "avatarUrl": avatar_url,
            "username": "alice",
        }]

        history = (await client.get(f"/api/channels/{general_id}/messages")).json()
        assert history[0]["avatarUrl"] is None

    async def test_cannot_change_another_users_avatar(self, client, signup):
        alice = await signup("alice")
        bob = await signup("bob")
        resp = await client.post(
            f"/api/users/{alice['id']}/avatar",
            files={"file": ("me.png", PNG_BYTES, "image/png")},
            headers=_as(bob["id"]),
        )
        assert resp.status_code == 403
