"""PostgreSQL persistence for chat rooms, messages, context links, attachments and blocks."""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import asyncpg

from safechat.domain.chat.exceptions import (
    AlreadyBlocked,
    AttachmentNotFound,
    DuplicateRoom,
    Forbidden,
    LinkAlreadyActive,
    LinkNotFound,
    MessageNotFound,
    NotFound,
    RoomNotFound,
)
from safechat.domain.chat.models import (
    CanonicalPair,
    ChatAttachment,
    ChatContextLink,
    ChatMessage,
    ChatRoom,
    ContextType,
    RoomStatus,
    UserBlock,
)
from safechat.domain.chat.repository import (
    AttachmentMutation,
    BlockRepository,
    ChatRepository,
    LinkMutation,
    MessageMutation,
    RoomMutation,
)
from safechat.infra.postgres import run_with_retry

T = TypeVar("T")

ROOM_COLUMNS = """
    id, user_id_a, user_id_b, context_type, context_id, status,
    muted_by, muted_at, mute_reason, blocked_by, blocked_at, block_reason,
    reported_by, reported_at, report_reason, status_before_report,
    closed_by, closed_at, close_reason, last_message_id, last_message_at,
    message_count, unread_count_a, unread_count_b,
    is_deleted, deleted_by, deleted_at, created_at, updated_at
"""

MESSAGE_COLUMNS = """
    id, chat_id, sender_id, message_type, content, reply_to_id,
    contains_phone, contains_email, contains_upi, contains_external_link, contains_suspicious_keywords,
    is_flagged, flagged_by, flagged_reason, report_count,
    is_deleted, deleted_by, deleted_at, deleted_reason, is_hidden, is_retracted, retracted_at,
    sent_at, read_at, edited_at
"""

LINK_COLUMNS = """
    id, chat_id, context_type, context_id, initiated_from, requires_approval,
    approved_at, approved_by, expires_at, is_active, deactivated_at, deactivation_reason,
    created_at, updated_at
"""

ATTACHMENT_COLUMNS = """
    id, message_id, chat_id, uploaded_by, file_name, file_type, file_size, mime_type,
    file_path, encrypted_file_path, file_hash, is_encrypted, download_allowed, download_count,
    expiry_at, scan_status, scanned_at, is_deleted, deleted_at, created_at, updated_at
"""

BLOCK_COLUMNS = """
    id, blocker_id, blocked_id, block_type, block_reason, is_permanent, expires_at,
    blocked_by_admin, admin_reason, is_active, unblocked_at, unblocked_by, created_at, updated_at
"""


def _enum_value(value) -> Optional[str]:
    return value.value if value is not None else None


class PostgresChatRepository(ChatRepository):
    """Rooms own their subtree; aggregate writes lock the room row with FOR UPDATE."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def _locked_update(
        self,
        table: str,
        columns: str,
        entity_id: str,
        missing: type[NotFound],
        load: Callable[[asyncpg.Record], T],
        mutate: Callable[[T], None],
        write: Callable[[asyncpg.Connection, T], Awaitable[T]],
    ) -> T:
        async def _op() -> T:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"SELECT {columns} FROM {table} WHERE id = $1 FOR UPDATE",
                        entity_id,
                    )
                    if row is None:
                        raise missing()
                    entity = load(row)
                    mutate(entity)
                    return await write(conn, entity)

        return await run_with_retry(_op, label=f"{table}_update")

    # Rooms

    async def insert_room(self, room: ChatRoom) -> ChatRoom:
        try:
            row = await self._pool.fetchrow(
                f"""
                INSERT INTO chat_rooms (id, user_id_a, user_id_b, context_type, context_id, status, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING {ROOM_COLUMNS}
                """,
                room.room_id,
                room.user_id_a,
                room.user_id_b,
                room.context_type.value,
                room.context_id,
                room.status.value,
                room.created_at,
                room.updated_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateRoom() from exc
        return ChatRoom.from_record(row)

    async def get_room(self, room_id: str) -> Optional[ChatRoom]:
        row = await self._pool.fetchrow(f"SELECT {ROOM_COLUMNS} FROM chat_rooms WHERE id = $1", room_id)
        return ChatRoom.from_record(row) if row else None

    async def find_room(
        self, pair: CanonicalPair, context_type: ContextType, context_id: Optional[str]
    ) -> Optional[ChatRoom]:
        row = await self._pool.fetchrow(
            f"""
            SELECT {ROOM_COLUMNS} FROM chat_rooms
            WHERE user_id_a = $1 AND user_id_b = $2 AND context_type = $3
              AND COALESCE(context_id, '') = COALESCE($4, '') AND is_deleted = FALSE
            """,
            pair.user_a,
            pair.user_b,
            context_type.value,
            context_id,
        )
        return ChatRoom.from_record(row) if row else None

    async def _write_room(self, conn: asyncpg.Connection, room: ChatRoom) -> ChatRoom:
        row = await conn.fetchrow(
            f"""
            UPDATE chat_rooms SET
                status = $2, muted_by = $3, muted_at = $4, mute_reason = $5,
                blocked_by = $6, blocked_at = $7, block_reason = $8,
                reported_by = $9, reported_at = $10, report_reason = $11, status_before_report = $12,
                closed_by = $13, closed_at = $14, close_reason = $15, updated_at = $16
            WHERE id = $1
            RETURNING {ROOM_COLUMNS}
            """,
            room.room_id,
            room.status.value,
            room.muted_by,
            room.muted_at,
            room.mute_reason,
            room.blocked_by,
            room.blocked_at,
            room.block_reason,
            room.reported_by,
            room.reported_at,
            room.report_reason,
            _enum_value(room.status_before_report),
            room.closed_by,
            room.closed_at,
            room.close_reason,
            room.updated_at,
        )
        return ChatRoom.from_record(row)

    async def update_room(self, room_id: str, mutate: RoomMutation) -> ChatRoom:
        return await self._locked_update(
            "chat_rooms", ROOM_COLUMNS, room_id, RoomNotFound, ChatRoom.from_record, mutate, self._write_room
        )

    async def list_rooms_for_user(self, user_id: str, *, limit: int, offset: int) -> Sequence[ChatRoom]:
        rows = await self._pool.fetch(
            f"""
            SELECT {ROOM_COLUMNS} FROM chat_rooms
            WHERE is_deleted = FALSE AND (user_id_a = $1 OR user_id_b = $1)
            ORDER BY last_message_at DESC NULLS LAST, created_at DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
        return [ChatRoom.from_record(row) for row in rows]

    async def list_rooms(self, *, status: Optional[RoomStatus], limit: int, offset: int) -> Sequence[ChatRoom]:
        rows = await self._pool.fetch(
            f"""
            SELECT {ROOM_COLUMNS} FROM chat_rooms
            WHERE is_deleted = FALSE AND ($1::text IS NULL OR status = $1)
            ORDER BY updated_at DESC
            LIMIT $2 OFFSET $3
            """,
            _enum_value(status),
            limit,
            offset,
        )
        return [ChatRoom.from_record(row) for row in rows]

    async def count_rooms(self, *, status: Optional[RoomStatus] = None) -> int:
        value = await self._pool.fetchval(
            "SELECT COUNT(*) FROM chat_rooms WHERE is_deleted = FALSE AND ($1::text IS NULL OR status = $1)",
            _enum_value(status),
        )
        return int(value or 0)

    async def soft_delete_room(self, room_id: str, actor_id: str, at: datetime) -> ChatRoom:
        async def _op() -> ChatRoom:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"""
                        UPDATE chat_rooms SET is_deleted = TRUE, deleted_by = $2, deleted_at = $3, updated_at = $3
                        WHERE id = $1 AND is_deleted = FALSE
                        RETURNING {ROOM_COLUMNS}
                        """,
                        room_id,
                        actor_id,
                        at,
                    )
                    if row is None:
                        raise RoomNotFound()
                    await conn.execute(
                        """
                        UPDATE chat_messages
                        SET is_deleted = TRUE, deleted_by = $2, deleted_at = $3, deleted_reason = 'room_deleted'
                        WHERE chat_id = $1 AND is_deleted = FALSE
                        """,
                        room_id,
                        actor_id,
                        at,
                    )
                    await conn.execute(
                        """
                        UPDATE chat_attachments SET is_deleted = TRUE, download_allowed = FALSE,
                            deleted_at = $2, updated_at = $2
                        WHERE chat_id = $1 AND is_deleted = FALSE
                        """,
                        room_id,
                        at,
                    )
                    return ChatRoom.from_record(row)

        return await run_with_retry(_op, label="chat_room_delete")

    # Messages

    async def append_message(self, message: ChatMessage) -> tuple[ChatMessage, ChatRoom]:
        async def _op() -> tuple[ChatMessage, ChatRoom]:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    locked = await conn.fetchrow(
                        "SELECT status, is_deleted FROM chat_rooms WHERE id = $1 FOR UPDATE",
                        message.room_id,
                    )
                    if locked is None or locked["is_deleted"]:
                        raise RoomNotFound()
                    if locked["status"] == RoomStatus.CLOSED.value:
                        raise Forbidden("room_closed")
                    flags = message.flags
                    message_row = await conn.fetchrow(
                        f"""
                        INSERT INTO chat_messages (
                            id, chat_id, sender_id, message_type, content, reply_to_id,
                            contains_phone, contains_email, contains_upi, contains_external_link,
                            contains_suspicious_keywords, is_flagged, flagged_by, flagged_reason, sent_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                        RETURNING {MESSAGE_COLUMNS}
                        """,
                        message.message_id,
                        message.room_id,
                        message.sender_id,
                        message.message_type.value,
                        message.content,
                        message.reply_to_id,
                        flags.contains_phone,
                        flags.contains_email,
                        flags.contains_upi,
                        flags.contains_external_link,
                        flags.contains_suspicious_keywords,
                        message.is_flagged,
                        _enum_value(message.flagged_by),
                        message.flagged_reason,
                        message.sent_at,
                    )
                    room_row = await conn.fetchrow(
                        f"""
                        UPDATE chat_rooms SET
                            message_count = message_count + 1,
                            unread_count_a = unread_count_a + CASE WHEN user_id_b = $2 THEN 1 ELSE 0 END,
                            unread_count_b = unread_count_b + CASE WHEN user_id_a = $2 THEN 1 ELSE 0 END,
                            last_message_id = $3,
                            last_message_at = $4,
                            updated_at = $4
                        WHERE id = $1
                        RETURNING {ROOM_COLUMNS}
                        """,
                        message.room_id,
                        message.sender_id,
                        message.message_id,
                        message.sent_at,
                    )
                    return ChatMessage.from_record(message_row), ChatRoom.from_record(room_row)

        return await run_with_retry(_op, label="chat_message_append")

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        row = await self._pool.fetchrow(f"SELECT {MESSAGE_COLUMNS} FROM chat_messages WHERE id = $1", message_id)
        return ChatMessage.from_record(row) if row else None

    async def _write_message(self, conn: asyncpg.Connection, message: ChatMessage) -> ChatMessage:
        flags = message.flags
        row = await conn.fetchrow(
            f"""
            UPDATE chat_messages SET
                content = $2, contains_phone = $3, contains_email = $4, contains_upi = $5,
                contains_external_link = $6, contains_suspicious_keywords = $7,
                is_flagged = $8, flagged_by = $9, flagged_reason = $10, report_count = $11,
                is_deleted = $12, deleted_by = $13, deleted_at = $14, deleted_reason = $15,
                is_hidden = $16, is_retracted = $17, retracted_at = $18, read_at = $19, edited_at = $20
            WHERE id = $1
            RETURNING {MESSAGE_COLUMNS}
            """,
            message.message_id,
            message.content,
            flags.contains_phone,
            flags.contains_email,
            flags.contains_upi,
            flags.contains_external_link,
            flags.contains_suspicious_keywords,
            message.is_flagged,
            _enum_value(message.flagged_by),
            message.flagged_reason,
            message.report_count,
            message.is_deleted,
            message.deleted_by,
            message.deleted_at,
            message.deleted_reason,
            message.is_hidden,
            message.is_retracted,
            message.retracted_at,
            message.read_at,
            message.edited_at,
        )
        return ChatMessage.from_record(row)

    async def update_message(self, message_id: str, mutate: MessageMutation) -> ChatMessage:
        return await self._locked_update(
            "chat_messages",
            MESSAGE_COLUMNS,
            message_id,
            MessageNotFound,
            ChatMessage.from_record,
            mutate,
            self._write_message,
        )

    async def list_messages(self, room_id: str, *, limit: int, offset: int) -> Sequence[ChatMessage]:
        rows = await self._pool.fetch(
            f"""
            SELECT {MESSAGE_COLUMNS} FROM chat_messages
            WHERE chat_id = $1
            ORDER BY sent_at DESC, id DESC
            LIMIT $2 OFFSET $3
            """,
            room_id,
            limit,
            offset,
        )
        return [ChatMessage.from_record(row) for row in rows]

    async def mark_read(self, room_id: str, reader_id: str, at: datetime) -> ChatRoom:
        async def _op() -> ChatRoom:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    locked = await conn.fetchrow(
                        "SELECT is_deleted FROM chat_rooms WHERE id = $1 FOR UPDATE",
                        room_id,
                    )
                    if locked is None or locked["is_deleted"]:
                        raise RoomNotFound()
                    await conn.execute(
                        """
                        UPDATE chat_messages SET read_at = $3
                        WHERE chat_id = $1 AND sender_id <> $2 AND read_at IS NULL
                        """,
                        room_id,
                        reader_id,
                        at,
                    )
                    row = await conn.fetchrow(
                        f"""
                        UPDATE chat_rooms SET
                            unread_count_a = CASE WHEN user_id_a = $2 THEN 0 ELSE unread_count_a END,
                            unread_count_b = CASE WHEN user_id_b = $2 THEN 0 ELSE unread_count_b END,
                            updated_at = $3
                        WHERE id = $1
                        RETURNING {ROOM_COLUMNS}
                        """,
                        room_id,
                        reader_id,
                        at,
                    )
                    return ChatRoom.from_record(row)

        return await run_with_retry(_op, label="chat_mark_read")

    async def list_flagged(self, *, limit: int, offset: int) -> Sequence[ChatMessage]:
        columns = ", ".join(f"m.{col.strip()}" for col in MESSAGE_COLUMNS.split(","))
        rows = await self._pool.fetch(
            f"""
            SELECT {columns}
            FROM chat_messages m
            JOIN chat_rooms r ON r.id = m.chat_id
            WHERE m.is_flagged = TRUE AND m.is_deleted = FALSE AND r.is_deleted = FALSE
            ORDER BY m.sent_at DESC, m.id DESC
            LIMIT $1 OFFSET $2
            """,
            limit,
            offset,
        )
        return [ChatMessage.from_record(row) for row in rows]

    async def count_messages(self, *, flagged_only: bool = False) -> int:
        value = await self._pool.fetchval(
            """
            SELECT COUNT(*)
            FROM chat_messages m
            JOIN chat_rooms r ON r.id = m.chat_id
            WHERE r.is_deleted = FALSE
              AND ($1 = FALSE OR (m.is_flagged = TRUE AND m.is_deleted = FALSE))
            """,
            flagged_only,
        )
        return int(value or 0)

    # Context links

    async def insert_link(self, link: ChatContextLink) -> ChatContextLink:
        try:
            row = await self._pool.fetchrow(
                f"""
                INSERT INTO chat_context_links (
                    id, chat_id, context_type, context_id, initiated_from, requires_approval,
                    expires_at, is_active, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, TRUE, $8, $9)
                RETURNING {LINK_COLUMNS}
                """,
                link.link_id,
                link.room_id,
                link.context_type.value,
                link.context_id,
                link.initiated_from,
                link.requires_approval,
                link.expires_at,
                link.created_at,
                link.updated_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise LinkAlreadyActive() from exc
        return ChatContextLink.from_record(row)

    async def get_link(self, link_id: str) -> Optional[ChatContextLink]:
        row = await self._pool.fetchrow(f"SELECT {LINK_COLUMNS} FROM chat_context_links WHERE id = $1", link_id)
        return ChatContextLink.from_record(row) if row else None

    async def get_active_link(self, room_id: str) -> Optional[ChatContextLink]:
        row = await self._pool.fetchrow(
            f"SELECT {LINK_COLUMNS} FROM chat_context_links WHERE chat_id = $1 AND is_active = TRUE",
            room_id,
        )
        return ChatContextLink.from_record(row) if row else None

    async def _write_link(self, conn: asyncpg.Connection, link: ChatContextLink) -> ChatContextLink:
        row = await conn.fetchrow(
            f"""
            UPDATE chat_context_links SET
                approved_at = $2, approved_by = $3, expires_at = $4, is_active = $5,
                deactivated_at = $6, deactivation_reason = $7, updated_at = $8
            WHERE id = $1
            RETURNING {LINK_COLUMNS}
            """,
            link.link_id,
            link.approved_at,
            link.approved_by,
            link.expires_at,
            link.is_active,
            link.deactivated_at,
            link.deactivation_reason,
            link.updated_at,
        )
        return ChatContextLink.from_record(row)

    async def update_link(self, link_id: str, mutate: LinkMutation) -> ChatContextLink:
        return await self._locked_update(
            "chat_context_links",
            LINK_COLUMNS,
            link_id,
            LinkNotFound,
            ChatContextLink.from_record,
            mutate,
            self._write_link,
        )

    async def deactivate_link(self, link_id: str, at: datetime, reason: str) -> bool:
        row = await self._pool.fetchrow(
            """
            UPDATE chat_context_links
            SET is_active = FALSE, deactivated_at = $2, deactivation_reason = $3, updated_at = $2
            WHERE id = $1 AND is_active = TRUE
            RETURNING id
            """,
            link_id,
            at,
            reason,
        )
        return row is not None

    async def list_expired_links(self, now: datetime, limit: int) -> Sequence[ChatContextLink]:
        rows = await self._pool.fetch(
            f"""
            SELECT {LINK_COLUMNS} FROM chat_context_links
            WHERE is_active = TRUE AND expires_at IS NOT NULL AND expires_at <= $1
            ORDER BY expires_at
            LIMIT $2
            """,
            now,
            limit,
        )
        return [ChatContextLink.from_record(row) for row in rows]

    async def list_active_links_for_context(
        self, context_type: ContextType, context_id: str
    ) -> Sequence[ChatContextLink]:
        rows = await self._pool.fetch(
            f"""
            SELECT {LINK_COLUMNS} FROM chat_context_links
            WHERE context_type = $1 AND context_id = $2 AND is_active = TRUE
            """,
            context_type.value,
            context_id,
        )
        return [ChatContextLink.from_record(row) for row in rows]

    # Attachments

    async def insert_attachment(self, attachment: ChatAttachment) -> ChatAttachment:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO chat_attachments (
                id, message_id, chat_id, uploaded_by, file_name, file_type, file_size, mime_type,
                file_path, encrypted_file_path, file_hash, is_encrypted, expiry_at, scan_status,
                created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
            RETURNING {ATTACHMENT_COLUMNS}
            """,
            attachment.attachment_id,
            attachment.message_id,
            attachment.room_id,
            attachment.uploaded_by,
            attachment.file_name,
            attachment.file_type,
            attachment.file_size,
            attachment.mime_type,
            attachment.file_path,
            attachment.encrypted_file_path,
            attachment.file_hash,
            attachment.is_encrypted,
            attachment.expiry_at,
            attachment.scan_status.value,
            attachment.created_at,
            attachment.updated_at,
        )
        return ChatAttachment.from_record(row)

    async def get_attachment(self, attachment_id: str) -> Optional[ChatAttachment]:
        row = await self._pool.fetchrow(
            f"SELECT {ATTACHMENT_COLUMNS} FROM chat_attachments WHERE id = $1", attachment_id
        )
        return ChatAttachment.from_record(row) if row else None

    async def _write_attachment(self, conn: asyncpg.Connection, attachment: ChatAttachment) -> ChatAttachment:
        row = await conn.fetchrow(
            f"""
            UPDATE chat_attachments SET
                download_allowed = $2, download_count = $3, expiry_at = $4, scan_status = $5,
                scanned_at = $6, is_deleted = $7, deleted_at = $8, updated_at = $9
            WHERE id = $1
            RETURNING {ATTACHMENT_COLUMNS}
            """,
            attachment.attachment_id,
            attachment.download_allowed,
            attachment.download_count,
            attachment.expiry_at,
            attachment.scan_status.value,
            attachment.scanned_at,
            attachment.is_deleted,
            attachment.deleted_at,
            attachment.updated_at,
        )
        return ChatAttachment.from_record(row)

    async def update_attachment(self, attachment_id: str, mutate: AttachmentMutation) -> ChatAttachment:
        return await self._locked_update(
            "chat_attachments",
            ATTACHMENT_COLUMNS,
            attachment_id,
            AttachmentNotFound,
            ChatAttachment.from_record,
            mutate,
            self._write_attachment,
        )

    async def list_expired_attachments(self, now: datetime, limit: int) -> Sequence[ChatAttachment]:
        rows = await self._pool.fetch(
            f"""
            SELECT {ATTACHMENT_COLUMNS} FROM chat_attachments
            WHERE is_deleted = FALSE AND expiry_at IS NOT NULL AND expiry_at <= $1
            ORDER BY expiry_at
            LIMIT $2
            """,
            now,
            limit,
        )
        return [ChatAttachment.from_record(row) for row in rows]

    async def expire_attachment(self, attachment_id: str, at: datetime) -> bool:
        row = await self._pool.fetchrow(
            """
            UPDATE chat_attachments
            SET is_deleted = TRUE, download_allowed = FALSE, deleted_at = $2, updated_at = $2
            WHERE id = $1 AND is_deleted = FALSE
            RETURNING id
            """,
            attachment_id,
            at,
        )
        return row is not None


class PostgresBlockRepository(BlockRepository):
    """One active block per ordered pair is enforced by a partial unique index."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def insert_block(self, block: UserBlock) -> UserBlock:
        try:
            row = await self._pool.fetchrow(
                f"""
                INSERT INTO user_blocks (
                    id, blocker_id, blocked_id, block_type, block_reason, is_permanent, expires_at,
                    blocked_by_admin, admin_reason, is_active, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, TRUE, $10, $11)
                RETURNING {BLOCK_COLUMNS}
                """,
                block.block_id,
                block.blocker_id,
                block.blocked_id,
                block.block_type.value,
                block.block_reason,
                block.is_permanent,
                block.expires_at,
                block.blocked_by_admin,
                block.admin_reason,
                block.created_at,
                block.updated_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise AlreadyBlocked() from exc
        return UserBlock.from_record(row)

    async def get_block(self, block_id: str) -> Optional[UserBlock]:
        row = await self._pool.fetchrow(f"SELECT {BLOCK_COLUMNS} FROM user_blocks WHERE id = $1", block_id)
        return UserBlock.from_record(row) if row else None

    async def find_active(self, blocker_id: str, blocked_id: str) -> Optional[UserBlock]:
        row = await self._pool.fetchrow(
            f"""
            SELECT {BLOCK_COLUMNS} FROM user_blocks
            WHERE blocker_id = $1 AND blocked_id = $2 AND is_active = TRUE
            """,
            blocker_id,
            blocked_id,
        )
        return UserBlock.from_record(row) if row else None

    async def deactivate(self, block_id: str, actor_id: str, at: datetime) -> Optional[UserBlock]:
        row = await self._pool.fetchrow(
            f"""
            UPDATE user_blocks SET is_active = FALSE, unblocked_at = $3, unblocked_by = $2, updated_at = $3
            WHERE id = $1 AND is_active = TRUE
            RETURNING {BLOCK_COLUMNS}
            """,
            block_id,
            actor_id,
            at,
        )
        return UserBlock.from_record(row) if row else None

    async def list_active(self, blocker_id: str) -> Sequence[UserBlock]:
        rows = await self._pool.fetch(
            f"""
            SELECT {BLOCK_COLUMNS} FROM user_blocks
            WHERE blocker_id = $1 AND is_active = TRUE
            ORDER BY created_at DESC
            """,
            blocker_id,
        )
        return [UserBlock.from_record(row) for row in rows]

    async def list_expired(self, now: datetime, limit: int) -> Sequence[UserBlock]:
        rows = await self._pool.fetch(
            f"""
            SELECT {BLOCK_COLUMNS} FROM user_blocks
            WHERE is_active = TRUE AND is_permanent = FALSE AND expires_at <= $1
            ORDER BY expires_at
            LIMIT $2
            """,
            now,
            limit,
        )
        return [UserBlock.from_record(row) for row in rows]


__all__ = ["PostgresBlockRepository", "PostgresChatRepository"]
