"""
Conversation and participant service.

Conversations are direct (exactly two participants, no extension row) or
group (GroupConversation row). Participants carry per-user read state:
unread_count and last_seen_message_id.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update, and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from chatcore.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from chatcore.core.transactions import transactional
from chatcore.core.validation import parse_input
from chatcore.models.conversation import (
    Conversation,
    ConversationType,
    GroupConversation,
    Participant,
)
from chatcore.models.message import Message, LastMessage
from chatcore.models.user import User
from chatcore.schemas.conversation import (
    ConversationResponse,
    GroupCreate,
    GroupInfo,
    LastMessageResponse,
    ParticipantResponse,
)

logger = logging.getLogger(__name__)


class ConversationService:
    """Service for conversations, membership and read state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============== Lookups ==============

    async def _require_live_users(self, user_ids: list[UUID], for_update: bool = False) -> list[User]:
        """Load live users, raising NotFoundException if any id is unknown or deleted."""
        query = (
            select(User)
            .where(User.id.in_(user_ids), User.deleted_at.is_(None))
            .order_by(User.id)  # consistent lock order
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        users = list(result.scalars().all())
        if len(users) != len(set(user_ids)):
            raise NotFoundException("User not found")
        return users

    async def get_conversation_entity(self, conversation_id: UUID) -> Conversation:
        result = await self.db.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            raise NotFoundException("Conversation not found")
        return conversation

    async def get_participant(
        self,
        conversation_id: UUID,
        user_id: UUID,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[Participant]:
        query = select(Participant).where(
            Participant.conversation_id == conversation_id,
            Participant.user_id == user_id,
        )
        if not include_deleted:
            query = query.where(Participant.deleted_at.is_(None))
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def is_participant(self, conversation_id: UUID, user_id: UUID) -> bool:
        return await self.get_participant(conversation_id, user_id) is not None

    async def find_direct_between_users(self, user1_id: UUID, user2_id: UUID) -> Optional[Conversation]:
        """Direct conversation in which both users are live participants."""
        p1 = aliased(Participant)
        p2 = aliased(Participant)
        result = await self.db.execute(
            select(Conversation)
            .join(p1, and_(
                p1.conversation_id == Conversation.id,
                p1.user_id == user1_id,
                p1.deleted_at.is_(None),
            ))
            .join(p2, and_(
                p2.conversation_id == Conversation.id,
                p2.user_id == user2_id,
                p2.deleted_at.is_(None),
            ))
            .where(Conversation.type == ConversationType.DIRECT)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ============== Creation ==============

    async def _create_direct(self, user1_id: UUID, user2_id: UUID, reuse: bool = False) -> Conversation:
        if user1_id == user2_id:
            raise ValidationException("Cannot start a conversation with yourself")

        # Row locks on both users serialize concurrent creates for the same pair
        await self._require_live_users([user1_id, user2_id], for_update=True)

        # Checked again under the locks; an unlocked pre-check may be stale
        existing = await self.find_direct_between_users(user1_id, user2_id)
        if existing is not None:
            if reuse:
                return existing
            raise ConflictException("Direct conversation already exists")

        conversation = Conversation(type=ConversationType.DIRECT)
        self.db.add(conversation)
        await self.db.flush()

        self.db.add_all([
            Participant(conversation_id=conversation.id, user_id=user_id, unread_count=0)
            for user_id in (user1_id, user2_id)
        ])
        await self.db.flush()

        logger.info(f"[ConversationService] Direct conversation {conversation.id}: {user1_id} <-> {user2_id}")
        return conversation

    @transactional
    async def create_direct_conversation(self, user1_id: UUID, user2_id: UUID) -> Conversation:
        """Create a direct conversation; at most one live one per pair."""
        return await self._create_direct(user1_id, user2_id)

    @transactional
    async def get_or_create_direct_conversation(self, user1_id: UUID, user2_id: UUID) -> Conversation:
        """Return the live direct conversation between two users, creating it if needed."""
        if user1_id != user2_id:
            existing = await self.find_direct_between_users(user1_id, user2_id)
            if existing is not None:
                return existing
        return await self._create_direct(user1_id, user2_id, reuse=True)

    @transactional
    async def create_group_conversation(
        self,
        creator_id: UUID,
        name: str,
        member_ids: list[UUID],
    ) -> Conversation:
        """
        Create a group with the creator and members as participants.

        Any unknown or deleted member aborts the whole transaction.
        """
        data = parse_input(GroupCreate, name=name, member_ids=member_ids)

        user_ids = list(dict.fromkeys([creator_id, *data.member_ids]))
        if len(user_ids) < 2:
            raise ValidationException("At least one member is required to create a group")

        await self._require_live_users(user_ids)

        conversation = Conversation(type=ConversationType.GROUP)
        conversation.group = GroupConversation(name=data.name, created_by=creator_id)
        self.db.add(conversation)
        await self.db.flush()

        self.db.add_all([
            Participant(conversation_id=conversation.id, user_id=user_id, unread_count=0)
            for user_id in user_ids
        ])
        await self.db.flush()

        logger.info(
            f"[ConversationService] Group {conversation.id} '{data.name}' "
            f"created by {creator_id} with {len(user_ids)} participants"
        )
        return conversation

    # ============== Membership ==============

    @transactional
    async def add_participant(self, conversation_id: UUID, user_id: UUID) -> Participant:
        """
        Add a user to a group.

        A previously removed participant is revived in place; the composite
        key covers soft-deleted rows, so inserting again would collide.
        """
        conversation = await self.get_conversation_entity(conversation_id)
        if conversation.type == ConversationType.DIRECT:
            raise ValidationException("Cannot add participants to a direct conversation")

        await self._require_live_users([user_id])

        participant = await self.get_participant(
            conversation_id, user_id, include_deleted=True, for_update=True
        )
        if participant is None:
            participant = Participant(conversation_id=conversation_id, user_id=user_id, unread_count=0)
            self.db.add(participant)
        elif participant.deleted_at is None:
            raise ConflictException("User is already a participant")
        else:
            participant.deleted_at = None
            participant.unread_count = 0
            participant.joined_at = datetime.now(timezone.utc)
        await self.db.flush()

        logger.info(f"[ConversationService] {user_id} joined {conversation_id}")
        return participant

    @transactional
    async def remove_participant(self, conversation_id: UUID, user_id: UUID) -> None:
        """Soft-delete membership; message history keeps its attribution."""
        participant = await self.get_participant(conversation_id, user_id, for_update=True)
        if participant is None:
            raise NotFoundException("Participant not found")

        participant.deleted_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info(f"[ConversationService] {user_id} left {conversation_id}")

    # ============== Read state ==============

    async def increment_unread(self, conversation_id: UUID, excluding_user_id: UUID) -> int:
        """
        Bump unread_count for every live participant except the sender.

        Runs inside the caller's transaction (send message); does not commit.
        """
        result = await self.db.execute(
            update(Participant)
            .where(
                Participant.conversation_id == conversation_id,
                Participant.user_id != excluding_user_id,
                Participant.deleted_at.is_(None),
            )
            .values(unread_count=Participant.unread_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def set_last_seen(self, conversation_id: UUID, user_id: UUID, message_id: UUID) -> Participant:
        """
        Absolute write of the read marker: last seen message and unread = 0.

        Runs inside the caller's transaction; does not commit.
        """
        await self.db.execute(
            update(Participant)
            .where(
                Participant.conversation_id == conversation_id,
                Participant.user_id == user_id,
            )
            .values(last_seen_message_id=message_id, unread_count=0)
            .execution_options(synchronize_session=False)
        )
        return await self.get_participant(conversation_id, user_id)

    @transactional
    async def mark_read(self, conversation_id: UUID, user_id: UUID, message_id: UUID) -> Participant:
        """Record ``message_id`` as the user's last seen message and clear unread."""
        result = await self.db.execute(select(Message).where(Message.id == message_id))
        message = result.scalar_one_or_none()
        if message is None:
            raise NotFoundException("Message not found")
        if message.conversation_id != conversation_id:
            raise ValidationException("Message does not belong to this conversation")

        participant = await self.get_participant(conversation_id, user_id, for_update=True)
        if participant is None:
            raise ForbiddenException("User is not a participant of this conversation")

        return await self.set_last_seen(conversation_id, user_id, message_id)

    @transactional
    async def mark_conversation_read(self, conversation_id: UUID, user_id: UUID) -> Participant:
        """Mark read up to the newest live message of the conversation."""
        participant = await self.get_participant(conversation_id, user_id, for_update=True)
        if participant is None:
            raise ForbiddenException("User is not a participant of this conversation")

        result = await self.db.execute(
            select(Message.id)
            .where(Message.conversation_id == conversation_id, Message.deleted_at.is_(None))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        newest_id = result.scalar_one_or_none()
        if newest_id is None:
            return participant

        return await self.set_last_seen(conversation_id, user_id, newest_id)

    # ============== Read paths ==============

    async def _participants_by_conversation(
        self, conversation_ids: list[UUID]
    ) -> dict[UUID, list[ParticipantResponse]]:
        """Batch load live participants with their profiles."""
        if not conversation_ids:
            return {}

        result = await self.db.execute(
            select(Participant, User)
            .join(User, User.id == Participant.user_id)
            .where(
                Participant.conversation_id.in_(conversation_ids),
                Participant.deleted_at.is_(None),
            )
            .order_by(Participant.joined_at, User.username)
            .execution_options(populate_existing=True)
        )

        participants: dict[UUID, list[ParticipantResponse]] = {}
        for participant, user in result.all():
            participants.setdefault(participant.conversation_id, []).append(
                ParticipantResponse(
                    user_id=user.id,
                    username=user.username,
                    display_name=user.display_name,
                    avatar_url=user.avatar_url,
                    unread_count=participant.unread_count,
                    last_seen_message_id=participant.last_seen_message_id,
                    joined_at=participant.joined_at,
                )
            )
        return participants

    @staticmethod
    def _build_response(
        conversation: Conversation,
        participants: list[ParticipantResponse],
        unread_count: int = 0,
    ) -> ConversationResponse:
        return ConversationResponse(
            id=conversation.id,
            type=conversation.type,
            group=GroupInfo.model_validate(conversation.group) if conversation.group else None,
            last_message=(
                LastMessageResponse.model_validate(conversation.last_message)
                if conversation.last_message
                else None
            ),
            participants=participants,
            unread_count=unread_count,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )

    async def list_participants(self, conversation_id: UUID) -> list[ParticipantResponse]:
        await self.get_conversation_entity(conversation_id)
        participants = await self._participants_by_conversation([conversation_id])
        return participants.get(conversation_id, [])

    async def get_conversation(
        self,
        conversation_id: UUID,
        viewer_id: Optional[UUID] = None,
    ) -> ConversationResponse:
        """Conversation detail; unread_count is the viewer's when given."""
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .options(selectinload(Conversation.group), selectinload(Conversation.last_message))
            .execution_options(populate_existing=True)
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            raise NotFoundException("Conversation not found")

        participants = (await self._participants_by_conversation([conversation_id])).get(conversation_id, [])
        unread_count = next(
            (p.unread_count for p in participants if p.user_id == viewer_id),
            0,
        )
        return self._build_response(conversation, participants, unread_count)

    async def list_user_conversations(self, user_id: UUID) -> list[ConversationResponse]:
        """
        Conversations the user is a live participant of, most recent first.

        Served from the projections: last_messages for the preview and the
        participant row for the unread counter.
        """
        result = await self.db.execute(
            select(Conversation, Participant.unread_count)
            .join(Participant, and_(
                Participant.conversation_id == Conversation.id,
                Participant.user_id == user_id,
                Participant.deleted_at.is_(None),
            ))
            .outerjoin(LastMessage, LastMessage.conversation_id == Conversation.id)
            .options(selectinload(Conversation.group), selectinload(Conversation.last_message))
            .order_by(
                func.coalesce(LastMessage.created_at, Conversation.updated_at).desc(),
                Conversation.id.desc(),
            )
            .execution_options(populate_existing=True)
        )
        rows = result.all()

        participants = await self._participants_by_conversation([conv.id for conv, _ in rows])
        return [
            self._build_response(conv, participants.get(conv.id, []), unread_count)
            for conv, unread_count in rows
        ]
