"""
Message store.

Every write that can change which message is newest also maintains the
last_messages projection in the same transaction. Sending additionally bumps
the unread counters of the other participants and touches the
conversation's updated_at.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Union
from uuid import UUID

from sqlalchemy import select, update, delete, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.config import get_settings
from chatcore.core.exceptions import ForbiddenException, NotFoundException, ValidationException
from chatcore.core.transactions import transactional
from chatcore.core.validation import parse_input
from chatcore.models.conversation import Conversation
from chatcore.models.message import Message, MessageType, LastMessage
from chatcore.schemas.message import (
    MessageCreate,
    MessageCursor,
    MessageEdit,
    MessagePage,
    MessageResponse,
)
from chatcore.services.conversation_service import ConversationService
from chatcore.utils.dialect import upsert

logger = logging.getLogger(__name__)


class MessageService:
    """Service for the message log and the last-message projection."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationService(db)

    async def _get_live(self, message_id: UUID, for_update: bool = False) -> Message:
        query = select(Message).where(Message.id == message_id, Message.deleted_at.is_(None))
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        message = result.scalar_one_or_none()
        if message is None:
            raise NotFoundException("Message not found")
        return message

    async def get_message(self, message_id: UUID) -> Message:
        return await self._get_live(message_id)

    # ============== Last-message projection ==============

    def _last_message_upsert(self, message: Message):
        stmt = upsert(self.db, LastMessage).values(
            id=uuid.uuid4(),
            conversation_id=message.conversation_id,
            message_id=message.id,
            sender_id=message.sender_id,
            type=message.type,
            content=message.content,
            created_at=message.created_at,
        )
        return stmt, {
            "message_id": stmt.excluded.message_id,
            "sender_id": stmt.excluded.sender_id,
            "type": stmt.excluded.type,
            "content": stmt.excluded.content,
            "created_at": stmt.excluded.created_at,
        }

    async def _advance_last_message(self, message: Message) -> None:
        """Last-writer-wins on (created_at, message id): an older message never replaces a newer one."""
        stmt, columns = self._last_message_upsert(message)
        stmt = stmt.on_conflict_do_update(
            index_elements=["conversation_id"],
            set_=columns,
            where=or_(
                LastMessage.created_at < stmt.excluded.created_at,
                and_(
                    LastMessage.created_at == stmt.excluded.created_at,
                    LastMessage.message_id < stmt.excluded.message_id,
                ),
            ),
        )
        await self.db.execute(stmt)

    async def _recompute_last_message(
        self,
        conversation_id: UUID,
        replacing: Optional[UUID] = None,
    ) -> Optional[Message]:
        """
        Point the projection at the newest surviving message, or drop it.

        With ``replacing`` the row is only rewritten while it still mirrors
        that message, so a newer message sent concurrently is kept.
        """
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.deleted_at.is_(None))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        newest = result.scalar_one_or_none()

        if newest is None:
            stmt = delete(LastMessage).where(LastMessage.conversation_id == conversation_id)
            if replacing is not None:
                stmt = stmt.where(LastMessage.message_id == replacing)
            await self.db.execute(stmt.execution_options(synchronize_session=False))
            return None

        stmt, columns = self._last_message_upsert(newest)
        stmt = stmt.on_conflict_do_update(
            index_elements=["conversation_id"],
            set_=columns,
            where=(LastMessage.message_id == replacing) if replacing is not None else None,
        )
        await self.db.execute(stmt)
        return newest

    @transactional
    async def refresh_last_message(self, conversation_id: UUID) -> Optional[Message]:
        """Rebuild a conversation's last_messages row from the message log."""
        await self.conversations.get_conversation_entity(conversation_id)
        newest = await self._recompute_last_message(conversation_id)
        logger.debug(
            f"[MessageService] Refreshed last message of {conversation_id}: "
            f"{newest.id if newest else None}"
        )
        return newest

    # ============== Writes ==============

    @transactional
    async def send_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        type: MessageType = MessageType.TEXT,
        content: Optional[str] = None,
        file_url: Optional[str] = None,
        reply_to_id: Optional[UUID] = None,
    ) -> Message:
        """
        Append a message to a conversation.

        Insert, last-message upsert, unread increments, the sender's read
        marker and the conversation touch commit together or not at all.
        """
        data = parse_input(
            MessageCreate,
            type=type,
            content=content,
            file_url=file_url,
            reply_to_id=reply_to_id,
        )

        await self.conversations.get_conversation_entity(conversation_id)
        if not await self.conversations.is_participant(conversation_id, sender_id):
            raise ValidationException("Sender is not a participant of this conversation")

        if data.reply_to_id is not None:
            result = await self.db.execute(
                select(Message.conversation_id).where(
                    Message.id == data.reply_to_id,
                    Message.deleted_at.is_(None),
                )
            )
            reply_conversation_id = result.scalar_one_or_none()
            if reply_conversation_id is None:
                raise ValidationException("Reply target not found")
            if reply_conversation_id != conversation_id:
                raise ValidationException("Reply target belongs to another conversation")

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            type=data.type,
            content=data.content,
            file_url=data.file_url,
            reply_to_id=data.reply_to_id,
        )
        self.db.add(message)
        await self.db.flush()

        await self._advance_last_message(message)
        notified = await self.conversations.increment_unread(conversation_id, sender_id)
        # Sending implies the sender has read up to their own message
        await self.conversations.set_last_seen(conversation_id, sender_id, message.id)
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

        logger.info(
            f"[MessageService] Message {message.id} ({message.type.value}) in {conversation_id}, "
            f"{notified} participants notified"
        )
        return message

    @transactional
    async def edit_message(self, message_id: UUID, acting_user_id: UUID, new_content: str) -> Message:
        data = parse_input(MessageEdit, content=new_content)

        message = await self._get_live(message_id, for_update=True)
        if message.sender_id != acting_user_id:
            raise ForbiddenException("Only the sender can edit this message")

        message.content = data.content
        message.is_edited = True
        await self.db.flush()

        # Keep the preview in sync when this is the mirrored message
        await self.db.execute(
            update(LastMessage)
            .where(LastMessage.message_id == message.id)
            .values(content=message.content)
            .execution_options(synchronize_session=False)
        )

        logger.info(f"[MessageService] Message {message_id} edited")
        return message

    @transactional
    async def delete_message(self, message_id: UUID, acting_user_id: UUID) -> None:
        """
        Soft-delete a message.

        Replies keep pointing at it. If it was the conversation's last
        message, the projection moves to the newest surviving message.
        """
        message = await self._get_live(message_id, for_update=True)
        if message.sender_id != acting_user_id:
            raise ForbiddenException("Only the sender can delete this message")

        message.deleted_at = datetime.now(timezone.utc)
        await self.db.flush()

        result = await self.db.execute(
            select(LastMessage.message_id).where(LastMessage.conversation_id == message.conversation_id)
        )
        if result.scalar_one_or_none() == message.id:
            await self._recompute_last_message(message.conversation_id, replacing=message.id)

        logger.info(f"[MessageService] Message {message_id} deleted")

    # ============== History ==============

    async def list_messages(
        self,
        conversation_id: UUID,
        before: Optional[Union[MessageCursor, str]] = None,
        limit: Optional[int] = None,
    ) -> MessagePage:
        """
        One page of history, newest first.

        Keyset pagination on (created_at, id): ``before`` is the cursor of the
        last message of the previous page.
        """
        settings = get_settings()
        if limit is None:
            limit = settings.message_page_size
        if limit < 1:
            raise ValidationException("limit must be at least 1")
        limit = min(limit, settings.message_page_size_max)

        if isinstance(before, str):
            before = MessageCursor.decode(before)

        await self.conversations.get_conversation_entity(conversation_id)

        query = select(Message).where(
            Message.conversation_id == conversation_id,
            Message.deleted_at.is_(None),
        )
        if before is not None:
            query = query.where(
                or_(
                    Message.created_at < before.created_at,
                    and_(Message.created_at == before.created_at, Message.id < before.id),
                )
            )

        result = await self.db.execute(
            query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit + 1)
        )
        rows = list(result.scalars().all())

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = None
        if has_more:
            last = rows[-1]
            next_cursor = MessageCursor(created_at=last.created_at, id=last.id).encode()

        return MessagePage(
            messages=[MessageResponse.model_validate(m) for m in rows],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def iter_messages(
        self,
        conversation_id: UUID,
        before: Optional[Union[MessageCursor, str]] = None,
        page_size: Optional[int] = None,
    ) -> AsyncIterator[MessageResponse]:
        """Walk the whole history page by page. Calling again starts over."""
        cursor = before
        while True:
            page = await self.list_messages(conversation_id, before=cursor, limit=page_size)
            for message in page.messages:
                yield message
            if not page.has_more:
                return
            cursor = page.next_cursor
