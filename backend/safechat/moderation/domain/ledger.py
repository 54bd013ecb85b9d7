"""Moderation ledger: admin actions, strike accumulation and appeals."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Mapping, Optional, Sequence
from uuid import uuid4

from safechat.domain.chat.exceptions import (
    AppealAlreadyDecided,
    AppealAlreadyFiled,
    AppealWindowClosed,
    Conflict,
    Forbidden,
    LogNotFound,
    ValidationError,
)
from safechat.domain.chat.models import SYSTEM_ACTOR, RoomStatus, utcnow
from safechat.moderation.domain.enforcement import ModerationEnforcer
from safechat.moderation.domain.models import (
    STRIKE_ACTIONS,
    AppealDecision,
    ModerationAction,
    ModerationLog,
    TargetType,
)
from safechat.moderation.domain.repository import LedgerRepository
from safechat.moderation.domain.strikes import EscalationDecision, StrikePolicy
from safechat.obs import metrics as obs_metrics
from safechat.settings import settings

logger = logging.getLogger(__name__)

_ROOM_ACTIONS = frozenset(
    {
        ModerationAction.CHAT_WARNING,
        ModerationAction.CHAT_MUTE,
        ModerationAction.CHAT_CLOSE,
        ModerationAction.REPORT_RESOLVE,
        ModerationAction.REPORT_DISMISS,
        ModerationAction.REPORT_ESCALATE,
    }
)
_MESSAGE_ACTIONS = frozenset({ModerationAction.MESSAGE_DELETE, ModerationAction.MESSAGE_HIDE})
_USER_ACTIONS = frozenset(
    {
        ModerationAction.USER_WARN,
        ModerationAction.USER_MUTE,
        ModerationAction.USER_BAN,
        ModerationAction.USER_UNBAN,
    }
)

ACTION_TARGETS: Mapping[ModerationAction, frozenset[TargetType]] = {
    **{action: frozenset({TargetType.ROOM}) for action in _ROOM_ACTIONS},
    **{action: frozenset({TargetType.MESSAGE}) for action in _MESSAGE_ACTIONS},
    **{action: frozenset({TargetType.USER}) for action in _USER_ACTIONS},
    ModerationAction.CONTENT_REMOVE: frozenset({TargetType.MESSAGE, TargetType.ROOM}),
}

# Report bookkeeping entries cannot be appealed
_NON_APPEALABLE = frozenset(
    {ModerationAction.REPORT_RESOLVE, ModerationAction.REPORT_DISMISS, ModerationAction.REPORT_ESCALATE}
)

_TARGET_ALIASES = {"room": TargetType.ROOM, "chat": TargetType.ROOM}


def parse_action(value: str | ModerationAction) -> ModerationAction:
    try:
        return ModerationAction(value)
    except ValueError:
        raise ValidationError("invalid_action") from None


def parse_target_type(value: str | TargetType) -> TargetType:
    if isinstance(value, str) and value in _TARGET_ALIASES:
        return _TARGET_ALIASES[value]
    try:
        return TargetType(value)
    except ValueError:
        raise ValidationError("invalid_target_type") from None


class ModerationLedger:
    """Append-only record of moderation actions.

    Strikes accrue only for ``STRIKE_ACTIONS`` and are attributed to the affected
    user: the target of user actions, the sender of message actions, and the
    explicitly supplied subject of room actions. After every strike-accruing write
    the strike policy is evaluated against the user's history; a crossed threshold
    is recorded as a separate system entry that does not accrue a strike itself.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        enforcer: ModerationEnforcer,
        policy: Optional[StrikePolicy] = None,
    ) -> None:
        self._repo = repository
        self._enforcer = enforcer
        self._policy = policy or StrikePolicy.from_settings()

    async def record_action(
        self,
        admin_id: str,
        target_type: str | TargetType,
        target_id: str,
        action: str | ModerationAction,
        reason: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        related_report_id: Optional[str] = None,
        *,
        notes: Optional[str] = None,
        related_room_id: Optional[str] = None,
        related_message_id: Optional[str] = None,
        subject_user_id: Optional[str] = None,
        is_system: bool = False,
        enforce: bool = True,
    ) -> ModerationLog:
        kind, target, affected = await self.check_action(
            target_type,
            target_id,
            action,
            duration_minutes,
            subject_user_id=subject_user_id,
            enforce=enforce,
        )
        if target == TargetType.MESSAGE and related_message_id is None:
            related_message_id = target_id
        if target == TargetType.ROOM and related_room_id is None:
            related_room_id = target_id

        if enforce:
            await self._enforcer.apply(
                admin_id, target, target_id, kind, reason, duration_minutes, automatic=is_system
            )

        now = utcnow()
        appealable = kind not in _NON_APPEALABLE
        entry = ModerationLog(
            log_id=str(uuid4()),
            admin_id=admin_id,
            target_type=target,
            target_id=target_id,
            action=kind,
            reason=reason,
            duration_minutes=duration_minutes,
            notes=notes,
            related_report_id=related_report_id,
            related_room_id=related_room_id,
            related_message_id=related_message_id,
            strike_user_id=affected,
            accrued_strike=affected is not None and kind in STRIKE_ACTIONS and not is_system,
            is_system=is_system,
            appeal_allowed=appealable,
            appeal_deadline=now + timedelta(days=settings.appeal_window_days) if appealable else None,
            created_at=now,
        )
        stored = await self._repo.append(entry)
        obs_metrics.inc_moderation_action(kind.value)
        logger.info(
            "moderation_action_recorded",
            extra={
                "log_id": stored.log_id,
                "admin_id": admin_id,
                "action": kind.value,
                "target_type": target.value,
                "target_id": target_id,
                "strike_user_id": affected,
                "user_strike_count": stored.user_strike_count,
            },
        )
        if stored.accrued_strike:
            await self._escalate(stored)
        return stored

    async def check_action(
        self,
        target_type: str | TargetType,
        target_id: str,
        action: str | ModerationAction,
        duration_minutes: Optional[int] = None,
        *,
        subject_user_id: Optional[str] = None,
        room_status: Optional[RoomStatus] = None,
        enforce: bool = True,
    ) -> tuple[ModerationAction, TargetType, Optional[str]]:
        """Raise what ``record_action`` would raise for these arguments, without writing.

        ``room_status`` stands in for the target room's status when the caller is
        about to change it before recording.
        """
        kind = parse_action(action)
        target = parse_target_type(target_type)
        if target not in ACTION_TARGETS[kind]:
            raise ValidationError("action_target_mismatch")
        if duration_minutes is not None and duration_minutes <= 0:
            raise ValidationError("invalid_duration")
        affected = await self._affected_user(target, target_id, subject_user_id)
        if enforce:
            await self._enforcer.check(target, target_id, kind, room_status=room_status)
        return kind, target, affected

    async def _affected_user(
        self, target: TargetType, target_id: str, subject_user_id: Optional[str]
    ) -> Optional[str]:
        if target == TargetType.USER:
            return target_id
        if target == TargetType.MESSAGE:
            return await self._enforcer.message_author(target_id)
        if subject_user_id is not None:
            await self._enforcer.ensure_room(target_id, subject_user_id)
        return subject_user_id

    async def _escalate(self, entry: ModerationLog) -> Optional[ModerationLog]:
        history = list(await self._repo.strike_history(entry.strike_user_id))
        # Evaluate the history as of this entry; later concurrent writes evaluate their own
        for index, log in enumerate(history):
            if log.log_id == entry.log_id:
                history = history[: index + 1]
                break
        decision = self._policy.evaluate(history)
        if decision is None:
            return None
        return await self._apply_escalation(entry, decision)

    async def _apply_escalation(self, trigger: ModerationLog, decision: EscalationDecision) -> ModerationLog:
        escalation = await self.record_action(
            SYSTEM_ACTOR,
            TargetType.USER,
            trigger.strike_user_id,
            decision.action,
            reason=f"{decision.reason}:{decision.strike_count}",
            duration_minutes=decision.duration_minutes,
            related_report_id=trigger.related_report_id,
            notes=f"triggered by {trigger.log_id}",
            is_system=True,
        )
        obs_metrics.inc_strike_escalation(decision.action.value)
        logger.warning(
            "strike_escalation_applied",
            extra={
                "user_id": trigger.strike_user_id,
                "action": decision.action.value,
                "strike_count": decision.strike_count,
                "trigger_log_id": trigger.log_id,
            },
        )
        return escalation

    async def get_log(self, log_id: str) -> ModerationLog:
        log = await self._repo.get(log_id)
        if log is None:
            raise LogNotFound()
        return log

    async def file_appeal(self, log_id: str, user_id: str, reason: Optional[str] = None) -> ModerationLog:
        log = await self.get_log(log_id)
        if log.strike_user_id != user_id:
            raise Forbidden("not_affected_user")
        now = utcnow()

        def _mutate(draft: ModerationLog) -> None:
            if draft.appealed_at is not None:
                raise AppealAlreadyFiled()
            if not draft.appeal_allowed or draft.appeal_deadline is None or now > draft.appeal_deadline:
                raise AppealWindowClosed()
            draft.appealed_at = now
            draft.appeal_reason = reason

        appealed = await self._repo.update(log_id, _mutate)
        obs_metrics.inc_appeal("filed")
        logger.info("moderation_appeal_filed", extra={"log_id": log_id, "user_id": user_id})
        return appealed

    async def decide_appeal(
        self, log_id: str, reviewer_id: str, decision: str | AppealDecision
    ) -> ModerationLog:
        """Record the appeal outcome; an overturned entry has its effect reversed."""
        try:
            outcome = AppealDecision(decision)
        except ValueError:
            raise ValidationError("invalid_appeal_decision") from None
        now = utcnow()

        def _mutate(draft: ModerationLog) -> None:
            if draft.appealed_at is None:
                raise Conflict("appeal_not_filed")
            if draft.appeal_decision is not None:
                raise AppealAlreadyDecided()
            draft.appeal_decision = outcome
            draft.appeal_reviewed_by = reviewer_id
            draft.appeal_reviewed_at = now

        decided = await self._repo.update(log_id, _mutate)
        reversed_effect = False
        if outcome == AppealDecision.OVERTURNED:
            reversed_effect = await self._enforcer.reverse(decided, reviewer_id)
        obs_metrics.inc_appeal(outcome.value)
        logger.info(
            "moderation_appeal_decided",
            extra={
                "log_id": log_id,
                "reviewer_id": reviewer_id,
                "decision": outcome.value,
                "reversed": reversed_effect,
            },
        )
        return decided

    async def strike_history(self, user_id: str) -> Sequence[ModerationLog]:
        return await self._repo.strike_history(user_id)

    async def strike_count(self, user_id: str) -> int:
        return StrikePolicy.effective_strikes(await self._repo.strike_history(user_id))

    async def logs_for_target(self, target_type: str | TargetType, target_id: str) -> Sequence[ModerationLog]:
        return await self._repo.list_for_target(parse_target_type(target_type), target_id)

    async def top_offenders(self, limit: int = 10) -> Sequence[tuple[str, int]]:
        return await self._repo.top_offenders(limit)


__all__ = ["ACTION_TARGETS", "ModerationLedger", "parse_action", "parse_target_type"]
