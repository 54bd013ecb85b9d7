from __future__ import annotations

import pytest

MODERATOR = {"X-User-Id": "mod-1", "X-User-Roles": "moderator"}


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


async def _room(api_client, initiator: str = "alice", recipient: str = "bob", **extra) -> str:
    payload = {"recipient_id": recipient, "context_type": "general", **extra}
    resp = await api_client.post("/chat/rooms", json=payload, headers=_as(initiator))
    return resp.json()["room_id"]


@pytest.mark.asyncio
async def test_admin_routes_require_moderator(api_client) -> None:
    resp = await api_client.get("/admin/chat/reports", headers=_as("alice"))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "insufficient_role"

    admin = await api_client.get("/admin/chat/reports", headers={"X-User-Id": "root", "X-User-Roles": "admin"})
    assert admin.status_code == 200
    assert admin.json() == {"reports": []}


@pytest.mark.asyncio
async def test_report_review_flow(api_client) -> None:
    room_id = await _room(api_client)
    sent = await api_client.post(
        f"/chat/rooms/{room_id}/messages", json={"content": "send the fee first"}, headers=_as("bob")
    )
    message_id = sent.json()["message_id"]
    filed = await api_client.post(
        f"/chat/rooms/{room_id}/reports",
        json={"reported_user_id": "bob", "report_type": "scam", "message_id": message_id},
        headers=_as("alice"),
    )
    report_id = filed.json()["report_id"]

    reported_rooms = await api_client.get("/admin/chat/rooms", headers=MODERATOR)
    assert [r["room_id"] for r in reported_rooms.json()["rooms"]] == [room_id]
    assert reported_rooms.json()["rooms"][0]["reported_by"] == "alice"

    queue = await api_client.get("/admin/chat/reports", headers=MODERATOR)
    assert [r["report_id"] for r in queue.json()["reports"]] == [report_id]

    detail = await api_client.get(f"/admin/chat/reports/{report_id}", headers=MODERATOR)
    body = detail.json()
    assert body["message"]["content"] == "send the fee first"
    assert body["room"]["status"] == "reported"
    assert [m["message_id"] for m in body["context"]] == [message_id]
    assert body["related_logs"] == []

    investigating = await api_client.post(f"/admin/chat/reports/{report_id}/investigate", headers=MODERATOR)
    assert investigating.json()["status"] == "investigating"

    resolved = await api_client.post(
        f"/admin/chat/reports/{report_id}/resolve",
        json={"decision": "resolved", "action": "message_delete", "notes": "fee scam"},
        headers=MODERATOR,
    )
    assert resolved.status_code == 200
    payload = resolved.json()
    assert payload["report"]["status"] == "resolved"
    assert payload["log"]["target_type"] == "message"
    assert payload["log"]["strike_user_id"] == "bob"

    logs = await api_client.get(
        "/admin/chat/logs", params={"target_type": "message", "target_id": message_id}, headers=MODERATOR
    )
    assert [log["action"] for log in logs.json()["logs"]] == ["message_delete"]

    strikes = await api_client.get("/admin/chat/users/bob/strikes", headers=MODERATOR)
    assert strikes.json()["strike_count"] == 1

    room = await api_client.get(f"/admin/chat/rooms/{room_id}", headers=MODERATOR)
    assert room.json()["status"] == "active"

    again = await api_client.post(f"/admin/chat/reports/{report_id}/dismiss", json={}, headers=MODERATOR)
    assert again.status_code == 409
    assert again.json()["detail"] == "already_final"


@pytest.mark.asyncio
async def test_unknown_action_is_rejected(api_client) -> None:
    room_id = await _room(api_client)
    filed = await api_client.post(
        f"/chat/rooms/{room_id}/reports",
        json={"reported_user_id": "bob", "report_type": "spam"},
        headers=_as("alice"),
    )
    resp = await api_client.post(
        f"/admin/chat/reports/{filed.json()['report_id']}/resolve",
        json={"action": "shadow_ban"},
        headers=MODERATOR,
    )
    assert resp.status_code == 422
    assert resp.json()["kind"] == "validation"


@pytest.mark.asyncio
async def test_flagged_message_moderation(api_client) -> None:
    room_id = await _room(api_client)
    await api_client.post(
        f"/chat/rooms/{room_id}/messages", json={"content": "text me on 9876543210"}, headers=_as("bob")
    )
    flagged = await api_client.get("/admin/chat/messages/flagged", headers=MODERATOR)
    [message] = flagged.json()["messages"]
    assert message["flags"]["contains_phone"] is True
    assert message["flagged_by"] == "system"

    removed = await api_client.post(
        f"/admin/chat/messages/{message['message_id']}/moderate",
        json={"action": "delete", "reason": "off-platform contact"},
        headers=MODERATOR,
    )
    assert removed.json()["is_deleted"] is True
    assert (await api_client.get("/admin/chat/messages/flagged", headers=MODERATOR)).json()["messages"] == []

    participant_view = await api_client.get(f"/chat/rooms/{room_id}/messages", headers=_as("alice"))
    [view] = participant_view.json()["messages"]
    assert view["removed"] is True
    assert view["content"] is None

    restored = await api_client.post(f"/admin/chat/messages/{message['message_id']}/restore", headers=MODERATOR)
    assert restored.json()["is_deleted"] is False


@pytest.mark.asyncio
async def test_direct_action_and_appeal_decision(api_client) -> None:
    recorded = await api_client.post(
        "/admin/chat/actions",
        json={"target_type": "user", "target_id": "bob", "action": "user_mute", "duration_minutes": 60},
        headers=MODERATOR,
    )
    assert recorded.status_code == 201
    log = recorded.json()
    assert log["action"] == "user_mute"
    assert log["accrued_strike"] is True

    await api_client.post(f"/chat/moderation/logs/{log['log_id']}/appeal", json={"reason": "wrong user"}, headers=_as("bob"))
    decided = await api_client.post(
        f"/admin/chat/logs/{log['log_id']}/appeal-decision", json={"decision": "overturned"}, headers=MODERATOR
    )
    assert decided.json()["appeal_decision"] == "overturned"
    assert decided.json()["appeal_reviewed_by"] == "mod-1"

    strikes = await api_client.get("/chat/moderation/strikes", headers=_as("bob"))
    assert strikes.json()["strike_count"] == 0


@pytest.mark.asyncio
async def test_revoke_context_closes_rooms(api_client) -> None:
    first = await _room(api_client, "alice", "bob", context_type="job", context_id="job-9")
    second = await _room(api_client, "carol", "bob", context_type="job", context_id="job-9")
    await _room(api_client, "dave", "bob", context_type="job", context_id="job-10")

    resp = await api_client.post(
        "/admin/chat/contexts/revoke", json={"context_type": "job", "context_id": "job-9"}, headers=MODERATOR
    )
    assert sorted(resp.json()["closed_rooms"]) == sorted([first, second])

    closed = await api_client.get(f"/admin/chat/rooms/{first}", headers=MODERATOR)
    assert closed.json()["status"] == "closed"
    blocked_send = await api_client.post(
        f"/chat/rooms/{first}/messages", json={"content": "still there?"}, headers=_as("alice")
    )
    assert blocked_send.status_code == 403
    assert blocked_send.json()["detail"] == "room_closed"


@pytest.mark.asyncio
async def test_dashboard_counts(api_client) -> None:
    room_id = await _room(api_client)
    await _room(api_client, "carol", "dave")
    await api_client.post(f"/chat/rooms/{room_id}/messages", json={"content": "hello"}, headers=_as("alice"))
    await api_client.post(
        f"/chat/rooms/{room_id}/messages", json={"content": "mail me at bob@example.com"}, headers=_as("bob")
    )
    await api_client.post(
        f"/chat/rooms/{room_id}/reports",
        json={"reported_user_id": "bob", "report_type": "spam"},
        headers=_as("alice"),
    )

    resp = await api_client.get("/admin/chat/dashboard", headers=MODERATOR)
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["total_rooms"] == 2
    assert stats["active_rooms"] == 1
    assert stats["reported_rooms"] == 1
    assert stats["total_messages"] == 2
    assert stats["flagged_messages"] == 1
    assert stats["pending_reports"] == 1
    assert stats["reports_by_type"] == {"spam": 1}
    assert stats["top_offenders"] == []


@pytest.mark.asyncio
async def test_manual_sweep_run(api_client) -> None:
    resp = await api_client.post("/admin/chat/sweeps/run", headers=MODERATOR)
    assert resp.json() == {"context_links": 0, "blocks": 0, "attachments": 0}
