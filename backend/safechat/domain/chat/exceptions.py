"""Domain-level exceptions for chat rooms, safety and moderation.

Every error carries a ``kind`` (the category the HTTP layer maps to a status
code) and a ``reason`` (a stable machine-readable slug).
"""

from __future__ import annotations


class ChatError(Exception):
	"""Base class for chat and moderation errors."""

	kind: str = "error"
	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class NotFound(ChatError):
	kind = "not_found"
	reason = "not_found"


class RoomNotFound(NotFound):
	reason = "room_not_found"


class MessageNotFound(NotFound):
	reason = "message_not_found"


class ReportNotFound(NotFound):
	reason = "report_not_found"


class BlockNotFound(NotFound):
	reason = "block_not_found"


class LinkNotFound(NotFound):
	reason = "link_not_found"


class AttachmentNotFound(NotFound):
	reason = "attachment_not_found"


class LogNotFound(NotFound):
	reason = "log_not_found"


class Forbidden(ChatError):
	kind = "forbidden"
	reason = "forbidden"


class Conflict(ChatError):
	kind = "conflict"
	reason = "conflict"


class DuplicateRoom(Conflict):
	reason = "duplicate_room"


class InvalidTransition(Conflict):
	reason = "invalid_transition"


class AlreadyBlocked(Conflict):
	reason = "already_blocked"


class AlreadyInactive(Conflict):
	reason = "already_inactive"


class AlreadyApproved(Conflict):
	reason = "already_approved"


class AlreadyFinal(Conflict):
	reason = "already_final"


class AppealWindowClosed(Conflict):
	reason = "appeal_window_closed"


class AppealAlreadyFiled(Conflict):
	reason = "appeal_already_filed"


class AppealAlreadyDecided(Conflict):
	reason = "appeal_already_decided"


class LinkAlreadyActive(Conflict):
	reason = "link_already_active"


class AttachmentNotClean(Conflict):
	reason = "attachment_not_clean"


class ReportCooldown(Conflict):
	reason = "report_cooldown"


class ValidationError(ChatError):
	kind = "validation"
	reason = "invalid"


class SelfBlock(ValidationError):
	reason = "self_block"


class SelfReport(ValidationError):
	reason = "self_report"


class SelfChat(ValidationError):
	reason = "self_chat"


class NotRequired(ValidationError):
	reason = "approval_not_required"


class InvalidContent(ValidationError):
	reason = "invalid_content"


class DependencyUnavailable(ChatError):
	kind = "unavailable"
	reason = "dependency_unavailable"


class RateLimited(ChatError):
	kind = "rate_limited"
	reason = "rate_limited"
