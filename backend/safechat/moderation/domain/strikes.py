"""Strike thresholds that turn accumulated moderation actions into sanctions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from safechat.moderation.domain.models import ModerationAction, ModerationLog
from safechat.settings import settings


@dataclass(frozen=True)
class EscalationDecision:
    action: ModerationAction
    strike_count: int
    duration_minutes: Optional[int] = None
    reason: str = "strike_threshold"


@dataclass(frozen=True)
class StrikePolicy:
    """Pure function of a user's strike history.

    Only strike-bearing entries that were not overturned on appeal count. A
    decision is emitted only by the write that crosses a threshold, so replaying
    the same history never sanctions twice.
    """

    mute_threshold: int = 3
    mute_minutes: int = 1440
    ban_threshold: int = 5

    @classmethod
    def from_settings(cls, cfg=settings) -> "StrikePolicy":
        return cls(
            mute_threshold=cfg.strike_mute_threshold,
            mute_minutes=cfg.strike_mute_minutes,
            ban_threshold=cfg.strike_ban_threshold,
        )

    @staticmethod
    def effective_strikes(history: Sequence[ModerationLog]) -> int:
        return sum(1 for log in history if log.accrued_strike and not log.overturned)

    def evaluate(self, history: Sequence[ModerationLog]) -> Optional[EscalationDecision]:
        """Return the sanction triggered by the newest entry of ``history``, if any."""
        if not history or not history[-1].accrued_strike or history[-1].overturned:
            return None
        current = self.effective_strikes(history)
        previous = current - 1
        if self.ban_threshold > 0 and previous < self.ban_threshold <= current:
            return EscalationDecision(ModerationAction.USER_BAN, current)
        if self.mute_threshold > 0 and previous < self.mute_threshold <= current:
            return EscalationDecision(ModerationAction.USER_MUTE, current, duration_minutes=self.mute_minutes)
        return None


__all__ = ["EscalationDecision", "StrikePolicy"]
