from __future__ import annotations

import asyncio

import pytest

from safechat.domain.chat.exceptions import (
    AppealAlreadyDecided,
    AppealAlreadyFiled,
    AppealWindowClosed,
    Conflict,
    Forbidden,
    ValidationError,
)
from safechat.domain.chat.models import RoomStatus
from safechat.moderation.domain.models import AppealDecision, ModerationAction, TargetType
from safechat.settings import settings


@pytest.mark.asyncio
async def test_user_warning_accrues_strike(ledger) -> None:
    entry = await ledger.record_action("mod-1", "user", "bob", "user_warn", reason="spam")
    assert entry.strike_user_id == "bob"
    assert entry.accrued_strike
    assert entry.user_strike_count == 1
    assert entry.appeal_allowed
    assert entry.appeal_deadline is not None
    assert await ledger.strike_count("bob") == 1


@pytest.mark.asyncio
async def test_action_target_must_match(ledger) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await ledger.record_action("mod-1", "user", "bob", "chat_close")
    assert excinfo.value.reason == "action_target_mismatch"
    with pytest.raises(ValidationError):
        await ledger.record_action("mod-1", "user", "bob", "not_an_action")


@pytest.mark.asyncio
async def test_message_action_strikes_sender(ledger, pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "bob", "text", "nasty")
    entry = await ledger.record_action("mod-1", "message", message.message_id, "message_delete")
    assert entry.strike_user_id == "bob"
    assert entry.related_message_id == message.message_id
    assert (await pipeline.get_message(message.message_id)).is_deleted


@pytest.mark.asyncio
async def test_room_action_strikes_named_subject(ledger, room) -> None:
    entry = await ledger.record_action(
        "mod-1", "chat_room", room.room_id, "chat_warning", subject_user_id="bob"
    )
    assert entry.strike_user_id == "bob"
    assert entry.user_strike_count == 1
    with pytest.raises(ValidationError):
        await ledger.record_action("mod-1", "room", room.room_id, "chat_warning", subject_user_id="mallory")


@pytest.mark.asyncio
async def test_room_mute_without_subject_accrues_nothing(ledger, rooms, room) -> None:
    entry = await ledger.record_action("mod-1", "chat", room.room_id, "chat_mute", reason="cool off")
    assert entry.strike_user_id is None
    assert not entry.accrued_strike
    assert (await rooms.get_room(room.room_id)).status == RoomStatus.MUTED


@pytest.mark.asyncio
async def test_escalation_at_thresholds(ledger, blocks) -> None:
    for _ in range(2):
        await ledger.record_action("mod-1", "user", "bob", "user_warn")
    assert not await blocks.is_suspended("bob")

    await ledger.record_action("mod-1", "user", "bob", "user_warn")
    history = await ledger.strike_history("bob")
    mute = history[-1]
    assert mute.action == ModerationAction.USER_MUTE
    assert mute.is_system
    assert not mute.accrued_strike
    assert mute.admin_id == "system"
    assert await blocks.is_suspended("bob")
    assert await ledger.strike_count("bob") == 3

    await ledger.record_action("mod-1", "user", "bob", "user_warn")
    fifth = await ledger.record_action("mod-1", "user", "bob", "user_warn")
    assert fifth.user_strike_count == 5
    history = await ledger.strike_history("bob")
    assert [log.action for log in history if log.is_system] == [
        ModerationAction.USER_MUTE,
        ModerationAction.USER_BAN,
    ]
    suspension = await blocks.active_block("platform", "bob")
    assert suspension.is_permanent


@pytest.mark.asyncio
async def test_appeal_overturn_lifts_mute(ledger, blocks) -> None:
    entry = await ledger.record_action("mod-1", "user", "bob", "user_mute", duration_minutes=30)
    assert await blocks.is_suspended("bob")

    with pytest.raises(Forbidden):
        await ledger.file_appeal(entry.log_id, "alice", "not me")
    appealed = await ledger.file_appeal(entry.log_id, "bob", "misunderstanding")
    assert appealed.appeal_reason == "misunderstanding"
    with pytest.raises(AppealAlreadyFiled):
        await ledger.file_appeal(entry.log_id, "bob")

    decided = await ledger.decide_appeal(entry.log_id, "mod-2", "overturned")
    assert decided.appeal_decision == AppealDecision.OVERTURNED
    assert not await blocks.is_suspended("bob")
    assert await ledger.strike_count("bob") == 0
    with pytest.raises(AppealAlreadyDecided):
        await ledger.decide_appeal(entry.log_id, "mod-2", "upheld")


@pytest.mark.asyncio
async def test_upheld_appeal_keeps_effect(ledger, rooms, room) -> None:
    entry = await ledger.record_action("mod-1", "chat_room", room.room_id, "chat_mute", subject_user_id="bob")
    await ledger.file_appeal(entry.log_id, "bob")
    await ledger.decide_appeal(entry.log_id, "mod-2", AppealDecision.UPHELD)
    assert (await rooms.get_room(room.room_id)).status == RoomStatus.MUTED


@pytest.mark.asyncio
async def test_overturned_room_mute_reactivates_room(ledger, rooms, room) -> None:
    entry = await ledger.record_action("mod-1", "chat_room", room.room_id, "chat_mute", subject_user_id="bob")
    await ledger.file_appeal(entry.log_id, "bob")
    await ledger.decide_appeal(entry.log_id, "mod-2", "overturned")
    assert (await rooms.get_room(room.room_id)).status == RoomStatus.ACTIVE


@pytest.mark.asyncio
async def test_decide_requires_filed_appeal(ledger) -> None:
    entry = await ledger.record_action("mod-1", "user", "bob", "user_warn")
    with pytest.raises(Conflict) as excinfo:
        await ledger.decide_appeal(entry.log_id, "mod-2", "upheld")
    assert excinfo.value.reason == "appeal_not_filed"


@pytest.mark.asyncio
async def test_appeal_window_closed(ledger, monkeypatch) -> None:
    monkeypatch.setattr(settings, "appeal_window_days", -1)
    entry = await ledger.record_action("mod-1", "user", "bob", "user_warn")
    with pytest.raises(AppealWindowClosed):
        await ledger.file_appeal(entry.log_id, "bob")


@pytest.mark.asyncio
async def test_logs_for_target_newest_first(ledger) -> None:
    first = await ledger.record_action("mod-1", "user", "carol", "user_warn", reason="one")
    second = await ledger.record_action("mod-1", "user", "carol", "user_warn", reason="two")
    logs = await ledger.logs_for_target(TargetType.USER, "carol")
    assert [log.log_id for log in logs] == [second.log_id, first.log_id]
    assert await ledger.top_offenders() == [("carol", 2)]


@pytest.mark.asyncio
async def test_concurrent_warnings_count_each_strike_once(ledger) -> None:
    entries = await asyncio.gather(
        *(ledger.record_action("mod-1", "user", "bob", "user_warn", reason=f"spam {n}") for n in range(4))
    )
    assert sorted(entry.user_strike_count for entry in entries) == [1, 2, 3, 4]
    assert await ledger.strike_count("bob") == 4
    escalations = [log for log in await ledger.strike_history("bob") if log.is_system]
    assert [log.action for log in escalations] == [ModerationAction.USER_MUTE]
