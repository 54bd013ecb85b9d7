"""Domain models for context-bound chat rooms."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

# Actor recorded for transitions performed by the platform itself (sweeps, escalations)
SYSTEM_ACTOR = "system"
# Reserved blocker id for platform-wide sanctions (mute/ban)
PLATFORM_ACTOR = "platform"


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class ContextType(str, Enum):
	MARRIAGE = "marriage"
	JOB = "job"
	BUSINESS = "business"
	HELP = "help"
	GENERAL = "general"


class RoomStatus(str, Enum):
	ACTIVE = "active"
	MUTED = "muted"
	BLOCKED = "blocked"
	REPORTED = "reported"
	CLOSED = "closed"


class MessageType(str, Enum):
	TEXT = "text"
	IMAGE = "image"
	FILE = "file"
	VOICE = "voice"


class ScanStatus(str, Enum):
	UNSCANNED = "unscanned"
	CLEAN = "clean"
	INFECTED = "infected"
	SUSPICIOUS = "suspicious"


class BlockType(str, Enum):
	MANUAL = "manual"
	ADMIN = "admin"
	AUTOMATIC = "automatic"


class FlaggedBy(str, Enum):
	SYSTEM = "system"
	ADMIN = "admin"


@dataclass(slots=True, frozen=True)
class CanonicalPair:
	"""Two participants ordered lexicographically, independent of who initiated."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "CanonicalPair":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	def contains(self, user_id: str) -> bool:
		return user_id in (self.user_a, self.user_b)

	def other(self, user_id: str) -> str:
		if user_id == self.user_a:
			return self.user_b
		if user_id == self.user_b:
			return self.user_a
		raise ValueError(f"{user_id} is not part of the pair")


@dataclass(slots=True)
class SafetyFlags:
	contains_phone: bool = False
	contains_email: bool = False
	contains_upi: bool = False
	contains_external_link: bool = False
	contains_suspicious_keywords: bool = False

	@property
	def any(self) -> bool:
		return bool(self.hits())

	def hits(self) -> list[str]:
		return [name for name, value in self.to_dict().items() if value]

	def to_dict(self) -> dict[str, bool]:
		return {
			"contains_phone": self.contains_phone,
			"contains_email": self.contains_email,
			"contains_upi": self.contains_upi,
			"contains_external_link": self.contains_external_link,
			"contains_suspicious_keywords": self.contains_suspicious_keywords,
		}

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "SafetyFlags":
		return cls(
			contains_phone=bool(record.get("contains_phone")),
			contains_email=bool(record.get("contains_email")),
			contains_upi=bool(record.get("contains_upi")),
			contains_external_link=bool(record.get("contains_external_link")),
			contains_suspicious_keywords=bool(record.get("contains_suspicious_keywords")),
		)


@dataclass(slots=True)
class ChatRoom:
	room_id: str
	user_id_a: str
	user_id_b: str
	context_type: ContextType
	context_id: Optional[str] = None
	status: RoomStatus = RoomStatus.ACTIVE
	muted_by: Optional[str] = None
	muted_at: Optional[datetime] = None
	mute_reason: Optional[str] = None
	blocked_by: Optional[str] = None
	blocked_at: Optional[datetime] = None
	block_reason: Optional[str] = None
	reported_by: Optional[str] = None
	reported_at: Optional[datetime] = None
	report_reason: Optional[str] = None
	status_before_report: Optional[RoomStatus] = None
	closed_by: Optional[str] = None
	closed_at: Optional[datetime] = None
	close_reason: Optional[str] = None
	last_message_id: Optional[str] = None
	last_message_at: Optional[datetime] = None
	message_count: int = 0
	unread_count_a: int = 0
	unread_count_b: int = 0
	is_deleted: bool = False
	deleted_by: Optional[str] = None
	deleted_at: Optional[datetime] = None
	created_at: datetime = field(default_factory=utcnow)
	updated_at: datetime = field(default_factory=utcnow)

	@property
	def pair(self) -> CanonicalPair:
		return CanonicalPair(self.user_id_a, self.user_id_b)

	def is_participant(self, user_id: str) -> bool:
		return user_id in (self.user_id_a, self.user_id_b)

	def counterpart(self, user_id: str) -> str:
		return self.pair.other(user_id)

	def unread_for(self, user_id: str) -> int:
		if user_id == self.user_id_a:
			return self.unread_count_a
		if user_id == self.user_id_b:
			return self.unread_count_b
		return 0

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "ChatRoom":
		before = record.get("status_before_report")
		return cls(
			room_id=str(record["id"]),
			user_id_a=str(record["user_id_a"]),
			user_id_b=str(record["user_id_b"]),
			context_type=ContextType(record["context_type"]),
			context_id=record.get("context_id"),
			status=RoomStatus(record["status"]),
			muted_by=record.get("muted_by"),
			muted_at=record.get("muted_at"),
			mute_reason=record.get("mute_reason"),
			blocked_by=record.get("blocked_by"),
			blocked_at=record.get("blocked_at"),
			block_reason=record.get("block_reason"),
			reported_by=record.get("reported_by"),
			reported_at=record.get("reported_at"),
			report_reason=record.get("report_reason"),
			status_before_report=RoomStatus(before) if before else None,
			closed_by=record.get("closed_by"),
			closed_at=record.get("closed_at"),
			close_reason=record.get("close_reason"),
			last_message_id=record.get("last_message_id"),
			last_message_at=record.get("last_message_at"),
			message_count=int(record.get("message_count") or 0),
			unread_count_a=int(record.get("unread_count_a") or 0),
			unread_count_b=int(record.get("unread_count_b") or 0),
			is_deleted=bool(record.get("is_deleted")),
			deleted_by=record.get("deleted_by"),
			deleted_at=record.get("deleted_at"),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
		)


@dataclass(slots=True)
class ChatMessage:
	message_id: str
	room_id: str
	sender_id: str
	message_type: MessageType
	content: str
	sent_at: datetime = field(default_factory=utcnow)
	reply_to_id: Optional[str] = None
	flags: SafetyFlags = field(default_factory=SafetyFlags)
	is_flagged: bool = False
	flagged_by: Optional[FlaggedBy] = None
	flagged_reason: Optional[str] = None
	report_count: int = 0
	is_deleted: bool = False
	deleted_by: Optional[str] = None
	deleted_at: Optional[datetime] = None
	deleted_reason: Optional[str] = None
	is_hidden: bool = False
	is_retracted: bool = False
	retracted_at: Optional[datetime] = None
	read_at: Optional[datetime] = None
	edited_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "ChatMessage":
		flagged_by = record.get("flagged_by")
		return cls(
			message_id=str(record["id"]),
			room_id=str(record["chat_id"]),
			sender_id=str(record["sender_id"]),
			message_type=MessageType(record["message_type"]),
			content=record["content"],
			sent_at=record["sent_at"],
			reply_to_id=record.get("reply_to_id"),
			flags=SafetyFlags.from_record(record),
			is_flagged=bool(record.get("is_flagged")),
			flagged_by=FlaggedBy(flagged_by) if flagged_by else None,
			flagged_reason=record.get("flagged_reason"),
			report_count=int(record.get("report_count") or 0),
			is_deleted=bool(record.get("is_deleted")),
			deleted_by=record.get("deleted_by"),
			deleted_at=record.get("deleted_at"),
			deleted_reason=record.get("deleted_reason"),
			is_hidden=bool(record.get("is_hidden")),
			is_retracted=bool(record.get("is_retracted")),
			retracted_at=record.get("retracted_at"),
			read_at=record.get("read_at"),
			edited_at=record.get("edited_at"),
		)


@dataclass(slots=True)
class MessageView:
	"""A message as rendered for one viewer."""

	message_id: str
	room_id: str
	sender_id: str
	message_type: MessageType
	content: Optional[str]
	sent_at: datetime
	reply_to_id: Optional[str]
	is_flagged: bool
	removed: bool
	retracted: bool
	read_at: Optional[datetime]
	edited_at: Optional[datetime]

	@classmethod
	def render(cls, message: ChatMessage) -> "MessageView":
		redacted = message.is_deleted or message.is_retracted
		return cls(
			message_id=message.message_id,
			room_id=message.room_id,
			sender_id=message.sender_id,
			message_type=message.message_type,
			content=None if redacted else message.content,
			sent_at=message.sent_at,
			reply_to_id=message.reply_to_id,
			is_flagged=message.is_flagged,
			removed=message.is_deleted,
			retracted=message.is_retracted,
			read_at=message.read_at,
			edited_at=message.edited_at,
		)


@dataclass(slots=True)
class ChatContextLink:
	link_id: str
	room_id: str
	context_type: ContextType
	context_id: str
	initiated_from: Optional[str] = None
	requires_approval: bool = False
	approved_at: Optional[datetime] = None
	approved_by: Optional[str] = None
	expires_at: Optional[datetime] = None
	is_active: bool = True
	deactivated_at: Optional[datetime] = None
	deactivation_reason: Optional[str] = None
	created_at: datetime = field(default_factory=utcnow)
	updated_at: datetime = field(default_factory=utcnow)

	@property
	def awaiting_approval(self) -> bool:
		return self.is_active and self.requires_approval and self.approved_at is None

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "ChatContextLink":
		return cls(
			link_id=str(record["id"]),
			room_id=str(record["chat_id"]),
			context_type=ContextType(record["context_type"]),
			context_id=str(record["context_id"]),
			initiated_from=record.get("initiated_from"),
			requires_approval=bool(record.get("requires_approval")),
			approved_at=record.get("approved_at"),
			approved_by=record.get("approved_by"),
			expires_at=record.get("expires_at"),
			is_active=bool(record.get("is_active")),
			deactivated_at=record.get("deactivated_at"),
			deactivation_reason=record.get("deactivation_reason"),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
		)


@dataclass(slots=True)
class ChatAttachment:
	attachment_id: str
	message_id: str
	room_id: str
	uploaded_by: str
	file_name: str
	file_type: str
	file_size: int
	mime_type: Optional[str] = None
	file_path: Optional[str] = None
	encrypted_file_path: Optional[str] = None
	file_hash: Optional[str] = None
	is_encrypted: bool = True
	download_allowed: bool = False
	download_count: int = 0
	expiry_at: Optional[datetime] = None
	scan_status: ScanStatus = ScanStatus.UNSCANNED
	scanned_at: Optional[datetime] = None
	is_deleted: bool = False
	deleted_at: Optional[datetime] = None
	created_at: datetime = field(default_factory=utcnow)
	updated_at: datetime = field(default_factory=utcnow)

	@property
	def storage_path(self) -> Optional[str]:
		return self.encrypted_file_path or self.file_path

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "ChatAttachment":
		return cls(
			attachment_id=str(record["id"]),
			message_id=str(record["message_id"]),
			room_id=str(record["chat_id"]),
			uploaded_by=str(record["uploaded_by"]),
			file_name=record["file_name"],
			file_type=record["file_type"],
			file_size=int(record["file_size"]),
			mime_type=record.get("mime_type"),
			file_path=record.get("file_path"),
			encrypted_file_path=record.get("encrypted_file_path"),
			file_hash=record.get("file_hash"),
			is_encrypted=bool(record.get("is_encrypted")),
			download_allowed=bool(record.get("download_allowed")),
			download_count=int(record.get("download_count") or 0),
			expiry_at=record.get("expiry_at"),
			scan_status=ScanStatus(record["scan_status"]),
			scanned_at=record.get("scanned_at"),
			is_deleted=bool(record.get("is_deleted")),
			deleted_at=record.get("deleted_at"),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
		)


@dataclass(slots=True)
class UserBlock:
	block_id: str
	blocker_id: str
	blocked_id: str
	block_type: BlockType = BlockType.MANUAL
	block_reason: Optional[str] = None
	is_permanent: bool = True
	expires_at: Optional[datetime] = None
	blocked_by_admin: Optional[str] = None
	admin_reason: Optional[str] = None
	is_active: bool = True
	unblocked_at: Optional[datetime] = None
	unblocked_by: Optional[str] = None
	created_at: datetime = field(default_factory=utcnow)
	updated_at: datetime = field(default_factory=utcnow)

	@property
	def is_platform(self) -> bool:
		return self.blocker_id == PLATFORM_ACTOR

	def is_expired(self, now: datetime) -> bool:
		return not self.is_permanent and self.expires_at is not None and self.expires_at <= now

	def is_effective(self, now: datetime) -> bool:
		return self.is_active and not self.is_expired(now)

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "UserBlock":
		return cls(
			block_id=str(record["id"]),
			blocker_id=str(record["blocker_id"]),
			blocked_id=str(record["blocked_id"]),
			block_type=BlockType(record["block_type"]),
			block_reason=record.get("block_reason"),
			is_permanent=bool(record.get("is_permanent")),
			expires_at=record.get("expires_at"),
			blocked_by_admin=record.get("blocked_by_admin"),
			admin_reason=record.get("admin_reason"),
			is_active=bool(record.get("is_active")),
			unblocked_at=record.get("unblocked_at"),
			unblocked_by=record.get("unblocked_by"),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
		)


def decode_json(value: Any) -> Any:
	"""asyncpg returns JSONB as text unless a codec is registered."""
	if value is None or isinstance(value, (dict, list)):
		return value
	return json.loads(value)
