from __future__ import annotations

import time

import jwt
import pytest

from safechat.infra.jwt import TOKEN_AUDIENCE, TOKEN_ISSUER
from safechat.settings import settings


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


async def _open_room(api_client, initiator: str = "alice", recipient: str = "bob", **extra) -> dict:
    payload = {"recipient_id": recipient, "context_type": "general", **extra}
    resp = await api_client.post("/chat/rooms", json=payload, headers=_as(initiator))
    assert resp.status_code in (200, 201), resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_requires_authentication(api_client) -> None:
    resp = await api_client.get("/chat/rooms")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "invalid_token"


def _bearer(subject: str, *, ttl_seconds: int = 300, **claims) -> dict[str, str]:
    now = int(time.time())
    body = {"iss": TOKEN_ISSUER, "aud": TOKEN_AUDIENCE, "sub": subject, "iat": now, "exp": now + ttl_seconds, **claims}
    return {"Authorization": f"Bearer {jwt.encode(body, settings.secret_key, algorithm='HS256')}"}


@pytest.mark.asyncio
async def test_bearer_token_identifies_caller(api_client) -> None:
    resp = await api_client.post(
        "/chat/rooms", json={"recipient_id": "bob", "context_type": "general"}, headers=_bearer("alice")
    )
    assert resp.status_code == 201
    assert resp.json()["counterpart_id"] == "bob"

    moderator = await api_client.get("/admin/chat/reports", headers=_bearer("mod-1", roles="moderator"))
    assert moderator.status_code == 200


@pytest.mark.asyncio
async def test_expired_or_foreign_tokens_rejected(api_client) -> None:
    expired = await api_client.get("/chat/rooms", headers=_bearer("alice", ttl_seconds=-60))
    assert expired.status_code == 401
    assert expired.json()["detail"] == "invalid_token"

    foreign = await api_client.get("/chat/rooms", headers=_bearer("alice", aud="someone-else"))
    assert foreign.status_code == 401


@pytest.mark.asyncio
async def test_initiate_is_idempotent(api_client) -> None:
    first = await api_client.post(
        "/chat/rooms", json={"recipient_id": "bob", "context_type": "job", "context_id": "job-1"}, headers=_as("alice")
    )
    assert first.status_code == 201
    body = first.json()
    assert body["participants"] == ["alice", "bob"]
    assert body["counterpart_id"] == "bob"

    second = await api_client.post(
        "/chat/rooms", json={"recipient_id": "alice", "context_type": "job", "context_id": "job-1"}, headers=_as("bob")
    )
    assert second.status_code == 200
    assert second.json()["room_id"] == body["room_id"]

    context = await api_client.get(f"/chat/rooms/{body['room_id']}/context", headers=_as("bob"))
    assert context.status_code == 200
    assert context.json()["context_id"] == "job-1"


@pytest.mark.asyncio
async def test_send_list_and_read(api_client) -> None:
    room = await _open_room(api_client)
    sent = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages", json={"content": "hello bob"}, headers=_as("alice")
    )
    assert sent.status_code == 201
    assert sent.json()["message_type"] == "text"

    inbox = await api_client.get("/chat/rooms", headers=_as("bob"))
    [entry] = inbox.json()["rooms"]
    assert entry["unread_count"] == 1
    assert entry["message_count"] == 1

    listing = await api_client.get(f"/chat/rooms/{room['room_id']}/messages", headers=_as("bob"))
    assert [m["content"] for m in listing.json()["messages"]] == ["hello bob"]

    read = await api_client.post(f"/chat/rooms/{room['room_id']}/read", headers=_as("bob"))
    assert read.json()["unread_count"] == 0


@pytest.mark.asyncio
async def test_outsider_gets_forbidden_with_error_shape(api_client) -> None:
    room = await _open_room(api_client)
    resp = await api_client.get(f"/chat/rooms/{room['room_id']}", headers=_as("mallory"))
    assert resp.status_code == 403
    body = resp.json()
    assert body["detail"] == "not_participant"
    assert body["kind"] == "forbidden"
    assert body["request_id"] == resp.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_unknown_room_is_not_found(api_client) -> None:
    resp = await api_client.get("/chat/rooms/does-not-exist", headers=_as("alice"))
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_invalid_payload_is_validation_error(api_client) -> None:
    resp = await api_client.post(
        "/chat/rooms", json={"recipient_id": "bob", "context_type": "dating"}, headers=_as("alice")
    )
    assert resp.status_code == 422
    assert resp.json()["detail"] == "validation_error"

    room = await _open_room(api_client)
    empty = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages", json={"content": "  "}, headers=_as("alice")
    )
    assert empty.status_code == 422
    assert empty.json()["detail"] == "empty_content"


@pytest.mark.asyncio
async def test_block_flow_over_http(api_client) -> None:
    room = await _open_room(api_client)
    blocked = await api_client.post(
        f"/chat/rooms/{room['room_id']}/block", json={"reason": "spam"}, headers=_as("alice")
    )
    assert blocked.status_code == 201
    assert blocked.json()["room"]["status"] == "blocked"

    rejected = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages", json={"content": "hey"}, headers=_as("bob")
    )
    assert rejected.status_code == 403
    assert rejected.json()["detail"] == "blocked"

    again = await api_client.post(f"/chat/rooms/{room['room_id']}/block", headers=_as("alice"))
    assert again.status_code == 409

    listed = await api_client.get("/chat/blocks", headers=_as("alice"))
    assert [b["blocked_id"] for b in listed.json()["blocks"]] == ["bob"]

    unblocked = await api_client.post(f"/chat/rooms/{room['room_id']}/unblock", headers=_as("alice"))
    assert unblocked.status_code == 200
    assert unblocked.json()["room"]["status"] == "active"
    ok = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages", json={"content": "hey"}, headers=_as("bob")
    )
    assert ok.status_code == 201


@pytest.mark.asyncio
async def test_mute_and_unmute(api_client) -> None:
    room = await _open_room(api_client)
    muted = await api_client.post(f"/chat/rooms/{room['room_id']}/mute", headers=_as("alice"))
    assert muted.json()["status"] == "muted"
    denied = await api_client.post(f"/chat/rooms/{room['room_id']}/unmute", headers=_as("bob"))
    assert denied.status_code == 403
    unmuted = await api_client.post(f"/chat/rooms/{room['room_id']}/unmute", headers=_as("alice"))
    assert unmuted.json()["status"] == "active"


@pytest.mark.asyncio
async def test_message_actions(api_client) -> None:
    room = await _open_room(api_client)
    sent = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages", json={"content": "first draft"}, headers=_as("alice")
    )
    message_id = sent.json()["message_id"]

    edited = await api_client.patch(f"/chat/messages/{message_id}", json={"content": "final"}, headers=_as("alice"))
    assert edited.json()["content"] == "final"
    assert edited.json()["edited_at"] is not None

    retracted = await api_client.post(f"/chat/messages/{message_id}/retract", headers=_as("alice"))
    assert retracted.json()["retracted"] is True
    assert retracted.json()["content"] is None

    other = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages", json={"content": "bye"}, headers=_as("bob")
    )
    forbidden = await api_client.delete(f"/chat/messages/{other.json()['message_id']}", headers=_as("alice"))
    assert forbidden.status_code == 403
    hidden = await api_client.delete(f"/chat/messages/{other.json()['message_id']}", headers=_as("bob"))
    assert hidden.status_code == 200
    listing = await api_client.get(f"/chat/rooms/{room['room_id']}/messages", headers=_as("bob"))
    assert [m["message_id"] for m in listing.json()["messages"]] == [message_id]


@pytest.mark.asyncio
async def test_attachment_lifecycle(api_client) -> None:
    room = await _open_room(api_client)
    sent = await api_client.post(
        f"/chat/rooms/{room['room_id']}/messages",
        json={"content": "my cv", "message_type": "file"},
        headers=_as("alice"),
    )
    created = await api_client.post(
        f"/chat/messages/{sent.json()['message_id']}/attachments",
        json={"file_name": "cv.pdf", "file_type": "document", "file_size": 1024, "file_path": "uploads/cv.pdf"},
        headers=_as("alice"),
    )
    assert created.status_code == 201
    attachment_id = created.json()["attachment_id"]

    not_clean = await api_client.post(f"/chat/attachments/{attachment_id}/allow-download", headers=_as("bob"))
    assert not_clean.status_code == 409

    fetched = await api_client.get(f"/chat/attachments/{attachment_id}", headers=_as("bob"))
    assert fetched.json()["scan_status"] == "unscanned"


@pytest.mark.asyncio
async def test_report_and_appeal(api_client) -> None:
    room = await _open_room(api_client)
    report = await api_client.post(
        f"/chat/rooms/{room['room_id']}/reports",
        json={"reported_user_id": "bob", "report_type": "harassment", "description": "rude"},
        headers=_as("alice"),
    )
    assert report.status_code == 201
    assert report.json()["status"] == "pending"

    cooldown = await api_client.post(
        f"/chat/rooms/{room['room_id']}/reports",
        json={"reported_user_id": "bob", "report_type": "spam"},
        headers=_as("alice"),
    )
    assert cooldown.status_code == 409

    resolved = await api_client.post(
        f"/admin/chat/reports/{report.json()['report_id']}/resolve",
        json={"action": "warning", "notes": "be kind"},
        headers={"X-User-Id": "mod-1", "X-User-Roles": "moderator"},
    )
    log_id = resolved.json()["log"]["log_id"]

    strikes = await api_client.get("/chat/moderation/strikes", headers=_as("bob"))
    assert strikes.json()["strike_count"] == 1

    appeal = await api_client.post(
        f"/chat/moderation/logs/{log_id}/appeal", json={"reason": "context missing"}, headers=_as("bob")
    )
    assert appeal.status_code == 200
    assert appeal.json()["appeal_reason"] == "context missing"
    stranger = await api_client.post(f"/chat/moderation/logs/{log_id}/appeal", json={}, headers=_as("alice"))
    assert stranger.status_code == 403
