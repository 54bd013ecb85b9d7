"""FastAPI endpoints for participants of context-bound chat rooms."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from safechat import container
from safechat.api.schemas import (
	AttachmentOut,
	BlockOut,
	ContextLinkOut,
	MessageOut,
	ModerationLogOut,
	ReportOut,
	RoomOut,
)
from safechat.domain.chat.attachments import AttachmentService
from safechat.domain.chat.blocks import BlockRegistry
from safechat.domain.chat.context_links import ContextLinkResolver
from safechat.domain.chat.models import ContextType, MessageType
from safechat.domain.chat.pipeline import MessagePipeline
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.domain.chat.service import ChatService
from safechat.infra.auth import AuthenticatedUser, get_current_user
from safechat.moderation.domain.ledger import ModerationLedger
from safechat.moderation.domain.models import ReportType
from safechat.moderation.domain.reports import ReportWorkflow

router = APIRouter(prefix="/chat", tags=["chat"])


class InitiateChatIn(BaseModel):
	recipient_id: str = Field(..., min_length=1)
	context_type: ContextType
	context_id: str | None = None
	requires_approval: bool = False
	expires_at: datetime | None = None


class SendMessageIn(BaseModel):
	message_type: MessageType = MessageType.TEXT
	content: str
	reply_to: str | None = None


class EditMessageIn(BaseModel):
	content: str


class ReasonIn(BaseModel):
	reason: str | None = Field(default=None, max_length=500)


class ReportIn(BaseModel):
	reported_user_id: str
	report_type: ReportType
	description: str = Field(default="", max_length=2000)
	message_id: str | None = None
	evidence: dict[str, Any] | None = None


class AttachmentIn(BaseModel):
	file_name: str = Field(..., min_length=1, max_length=255)
	file_type: str = Field(..., min_length=1, max_length=64)
	file_size: int = Field(..., gt=0)
	mime_type: str | None = None
	file_path: str | None = None
	encrypted_file_path: str | None = None
	file_hash: str | None = None
	expires_at: datetime | None = None


class AppealIn(BaseModel):
	reason: str | None = Field(default=None, max_length=2000)


class InboxOut(BaseModel):
	rooms: list[RoomOut]


class MessageListOut(BaseModel):
	messages: list[MessageOut]


class BlockListOut(BaseModel):
	blocks: list[BlockOut]


class BlockResultOut(BaseModel):
	block: BlockOut
	room: RoomOut


class StrikeSummaryOut(BaseModel):
	user_id: str
	strike_count: int
	history: list[ModerationLogOut]


def get_chat_service_dep() -> ChatService:
	return container.get_chat_service()


def get_room_store_dep() -> ChatRoomStore:
	return container.get_room_store()


def get_pipeline_dep() -> MessagePipeline:
	return container.get_message_pipeline()


def get_block_registry_dep() -> BlockRegistry:
	return container.get_block_registry()


def get_context_links_dep() -> ContextLinkResolver:
	return container.get_context_links()


def get_attachments_dep() -> AttachmentService:
	return container.get_attachment_service()


def get_reports_dep() -> ReportWorkflow:
	return container.get_report_workflow()


def get_ledger_dep() -> ModerationLedger:
	return container.get_moderation_ledger()


@router.post("/rooms", response_model=RoomOut, status_code=status.HTTP_201_CREATED)
async def initiate_chat(
	body: InitiateChatIn,
	response: Response,
	service: ChatService = Depends(get_chat_service_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> RoomOut:
	room, created = await service.initiate_chat(
		user.id,
		body.recipient_id,
		body.context_type,
		body.context_id,
		requires_approval=body.requires_approval,
		expires_at=body.expires_at,
	)
	if not created:
		response.status_code = status.HTTP_200_OK
	return RoomOut.from_room(room, user.id)


@router.get("/rooms", response_model=InboxOut)
async def list_rooms(
	limit: int = Query(default=50, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	rooms: ChatRoomStore = Depends(get_room_store_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> InboxOut:
	items = await rooms.list_rooms_for_user(user.id, limit=limit, offset=offset)
	return InboxOut(rooms=[RoomOut.from_room(room, user.id) for room in items])


@router.get("/rooms/{room_id}", response_model=RoomOut)
async def get_room(
	room_id: str,
	rooms: ChatRoomStore = Depends(get_room_store_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> RoomOut:
	room = await rooms.get_room_for(room_id, user.id)
	return RoomOut.from_room(room, user.id)


@router.delete("/rooms/{room_id}", response_model=RoomOut)
async def delete_room(
	room_id: str,
	rooms: ChatRoomStore = Depends(get_room_store_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> RoomOut:
	room = await rooms.delete_room(room_id, user.id)
	return RoomOut.from_room(room, user.id)


@router.get("/rooms/{room_id}/messages", response_model=MessageListOut)
async def list_messages(
	room_id: str,
	limit: int = Query(default=50, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> MessageListOut:
	views = await pipeline.list_messages(room_id, user.id, limit=limit, offset=offset)
	return MessageListOut(messages=[MessageOut.from_view(view) for view in views])


@router.post("/rooms/{room_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
	room_id: str,
	body: SendMessageIn,
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	message = await pipeline.send_message(room_id, user.id, body.message_type, body.content, body.reply_to)
	return MessageOut.from_message(message)


@router.post("/rooms/{room_id}/read", response_model=RoomOut)
async def mark_read(
	room_id: str,
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> RoomOut:
	room = await pipeline.mark_read(room_id, user.id)
	return RoomOut.from_room(room, user.id)


@router.post("/rooms/{room_id}/mute", response_model=RoomOut)
async def mute_room(
	room_id: str,
	body: ReasonIn | None = None,
	service: ChatService = Depends(get_chat_service_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> RoomOut:
	room = await service.mute_room(room_id, user.id, body.reason if body else None)
	return RoomOut.from_room(room, user.id)


@router.post("/rooms/{room_id}/unmute", response_model=RoomOut)
async def unmute_room(
	room_id: str,
	service: ChatService = Depends(get_chat_service_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> RoomOut:
	room = await service.unmute_room(room_id, user.id)
	return RoomOut.from_room(room, user.id)


@router.post("/rooms/{room_id}/block", response_model=BlockResultOut, status_code=status.HTTP_201_CREATED)
async def block_in_room(
	room_id: str,
	body: ReasonIn | None = None,
	service: ChatService = Depends(get_chat_service_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> BlockResultOut:
	block, room = await service.block_in_room(room_id, user.id, body.reason if body else None)
	return BlockResultOut(block=BlockOut.from_block(block), room=RoomOut.from_room(room, user.id))


@router.post("/rooms/{room_id}/unblock", response_model=BlockResultOut)
async def unblock_in_room(
	room_id: str,
	service: ChatService = Depends(get_chat_service_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> BlockResultOut:
	block, room = await service.unblock_in_room(room_id, user.id)
	return BlockResultOut(block=BlockOut.from_block(block), room=RoomOut.from_room(room, user.id))


@router.get("/rooms/{room_id}/context", response_model=ContextLinkOut | None)
async def get_room_context(
	room_id: str,
	rooms: ChatRoomStore = Depends(get_room_store_dep),
	links: ContextLinkResolver = Depends(get_context_links_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> ContextLinkOut | None:
	await rooms.get_room_for(room_id, user.id)
	link = await links.get_active_link(room_id)
	return ContextLinkOut.from_link(link) if link else None


@router.post("/context-links/{link_id}/approve", response_model=ContextLinkOut)
async def approve_context(
	link_id: str,
	links: ContextLinkResolver = Depends(get_context_links_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> ContextLinkOut:
	link = await links.approve(link_id, user.id, moderator=user.is_moderator)
	return ContextLinkOut.from_link(link)


@router.post("/rooms/{room_id}/reports", response_model=ReportOut, status_code=status.HTTP_201_CREATED)
async def file_report(
	room_id: str,
	body: ReportIn,
	reports: ReportWorkflow = Depends(get_reports_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> ReportOut:
	report = await reports.file_report(
		room_id,
		user.id,
		body.reported_user_id,
		body.report_type,
		description=body.description,
		message_id=body.message_id,
		evidence=body.evidence,
	)
	return ReportOut.from_report(report)


@router.patch("/messages/{message_id}", response_model=MessageOut)
async def edit_message(
	message_id: str,
	body: EditMessageIn,
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	message = await pipeline.edit_message(message_id, user.id, body.content)
	return MessageOut.from_message(message)


@router.post("/messages/{message_id}/retract", response_model=MessageOut)
async def retract_message(
	message_id: str,
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	message = await pipeline.retract_message(message_id, user.id)
	return MessageOut.from_message(message)


@router.post("/messages/{message_id}/hide", response_model=MessageOut)
async def hide_message(
	message_id: str,
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	message = await pipeline.hide_message(message_id, user.id)
	return MessageOut.from_message(message)


@router.delete("/messages/{message_id}", response_model=MessageOut)
async def delete_message(
	message_id: str,
	pipeline: MessagePipeline = Depends(get_pipeline_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	message = await pipeline.delete_message(message_id, user.id, by_moderator=False)
	return MessageOut.from_message(message)


@router.post(
	"/messages/{message_id}/attachments",
	response_model=AttachmentOut,
	status_code=status.HTTP_201_CREATED,
)
async def register_attachment(
	message_id: str,
	body: AttachmentIn,
	attachments: AttachmentService = Depends(get_attachments_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> AttachmentOut:
	attachment = await attachments.register(
		message_id,
		user.id,
		file_name=body.file_name,
		file_type=body.file_type,
		file_size=body.file_size,
		mime_type=body.mime_type,
		file_path=body.file_path,
		encrypted_file_path=body.encrypted_file_path,
		file_hash=body.file_hash,
		expires_at=body.expires_at,
	)
	return AttachmentOut.from_attachment(attachment)


@router.get("/attachments/{attachment_id}", response_model=AttachmentOut)
async def get_attachment(
	attachment_id: str,
	attachments: AttachmentService = Depends(get_attachments_dep),
	rooms: ChatRoomStore = Depends(get_room_store_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> AttachmentOut:
	attachment = await attachments.get(attachment_id)
	await rooms.get_room_for(attachment.room_id, user.id)
	return AttachmentOut.from_attachment(attachment)


@router.post("/attachments/{attachment_id}/allow-download", response_model=AttachmentOut)
async def allow_download(
	attachment_id: str,
	attachments: AttachmentService = Depends(get_attachments_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> AttachmentOut:
	attachment = await attachments.allow_download(attachment_id, user.id)
	return AttachmentOut.from_attachment(attachment)


@router.post("/attachments/{attachment_id}/download", response_model=AttachmentOut)
async def record_download(
	attachment_id: str,
	attachments: AttachmentService = Depends(get_attachments_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> AttachmentOut:
	attachment = await attachments.record_download(attachment_id, user.id)
	return AttachmentOut.from_attachment(attachment)


@router.get("/blocks", response_model=BlockListOut)
async def list_blocks(
	registry: BlockRegistry = Depends(get_block_registry_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> BlockListOut:
	blocks = await registry.list_blocks(user.id)
	return BlockListOut(blocks=[BlockOut.from_block(block) for block in blocks])


@router.delete("/blocks/{block_id}", response_model=BlockOut)
async def remove_block(
	block_id: str,
	registry: BlockRegistry = Depends(get_block_registry_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> BlockOut:
	block = await registry.unblock(block_id, user.id)
	return BlockOut.from_block(block)


@router.get("/moderation/strikes", response_model=StrikeSummaryOut)
async def my_strikes(
	ledger: ModerationLedger = Depends(get_ledger_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> StrikeSummaryOut:
	history = await ledger.strike_history(user.id)
	return StrikeSummaryOut(
		user_id=user.id,
		strike_count=await ledger.strike_count(user.id),
		history=[ModerationLogOut.from_log(log) for log in history],
	)


@router.post("/moderation/logs/{log_id}/appeal", response_model=ModerationLogOut)
async def file_appeal(
	log_id: str,
	body: AppealIn,
	ledger: ModerationLedger = Depends(get_ledger_dep),
	user: AuthenticatedUser = Depends(get_current_user),
) -> ModerationLogOut:
	log = await ledger.file_appeal(log_id, user.id, body.reason)
	return ModerationLogOut.from_log(log)


__all__ = ["router"]
