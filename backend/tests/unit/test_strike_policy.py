from __future__ import annotations

from safechat.moderation.domain.models import AppealDecision, ModerationAction, ModerationLog, TargetType
from safechat.moderation.domain.strikes import StrikePolicy


def _history(count: int, *, overturned: tuple[int, ...] = ()) -> list[ModerationLog]:
    logs = []
    for index in range(count):
        logs.append(
            ModerationLog(
                log_id=f"log-{index}",
                admin_id="mod-1",
                target_type=TargetType.USER,
                target_id="bob",
                action=ModerationAction.USER_WARN,
                strike_user_id="bob",
                accrued_strike=True,
                user_strike_count=index + 1,
                appeal_decision=AppealDecision.OVERTURNED if index in overturned else None,
            )
        )
    return logs


def test_no_decision_below_threshold() -> None:
    policy = StrikePolicy(mute_threshold=3, ban_threshold=5)
    assert policy.evaluate([]) is None
    assert policy.evaluate(_history(2)) is None


def test_mute_on_crossing_mute_threshold() -> None:
    decision = StrikePolicy(mute_threshold=3, mute_minutes=60, ban_threshold=5).evaluate(_history(3))
    assert decision is not None
    assert decision.action == ModerationAction.USER_MUTE
    assert decision.duration_minutes == 60
    assert decision.strike_count == 3


def test_no_repeat_between_thresholds() -> None:
    assert StrikePolicy(mute_threshold=3, ban_threshold=5).evaluate(_history(4)) is None


def test_ban_on_crossing_ban_threshold() -> None:
    decision = StrikePolicy(mute_threshold=3, ban_threshold=5).evaluate(_history(5))
    assert decision is not None
    assert decision.action == ModerationAction.USER_BAN
    assert decision.duration_minutes is None


def test_overturned_strikes_do_not_count() -> None:
    policy = StrikePolicy(mute_threshold=3, ban_threshold=5)
    history = _history(3, overturned=(0,))
    assert StrikePolicy.effective_strikes(history) == 2
    assert policy.evaluate(history) is None


def test_non_strike_entry_never_escalates() -> None:
    history = _history(2)
    history.append(
        ModerationLog(
            log_id="system-1",
            admin_id="system",
            target_type=TargetType.USER,
            target_id="bob",
            action=ModerationAction.USER_MUTE,
            strike_user_id="bob",
            is_system=True,
        )
    )
    assert StrikePolicy(mute_threshold=2).evaluate(history) is None


def test_zero_threshold_disables_sanction() -> None:
    assert StrikePolicy(mute_threshold=0, ban_threshold=0).evaluate(_history(10)) is None
