"""Conversations (direct/group), group metadata and participant read state."""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    CheckConstraint,
    PrimaryKeyConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatcore.database import Base, utcnow

if TYPE_CHECKING:
    from chatcore.models.user import User
    from chatcore.models.message import LastMessage


class ConversationType(str, enum.Enum):
    DIRECT = "direct"
    GROUP = "group"


class Conversation(Base):
    """Conversation header. ``type`` tags which extension row, if any, exists."""

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    type: Mapped[ConversationType] = mapped_column(
        Enum(
            ConversationType,
            name="conversation_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ConversationType.DIRECT,
        server_default=ConversationType.DIRECT.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow
    )

    # Relationships
    group: Mapped[Optional["GroupConversation"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
    participants: Mapped[list["Participant"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    last_message: Mapped[Optional["LastMessage"]] = relationship(
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Conversation {self.id} ({self.type.value})>"


class GroupConversation(Base):
    """Group payload of a conversation; absent for direct conversations."""

    __tablename__ = "group_conversations"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True
    )
    name: Mapped[str] = mapped_column(String(255))
    created_by: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE")
    )
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    avatar_id: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    conversation: Mapped["Conversation"] = relationship(back_populates="group")

    def __repr__(self) -> str:
        return f"<GroupConversation {self.name}>"


class Participant(Base):
    """
    Membership of one user in one conversation.

    The composite key is not filtered by deleted_at: leaving soft-deletes
    the row and re-joining revives it.
    """

    __tablename__ = "participants"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE")
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE")
    )
    unread_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_seen_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("messages.id"),
        nullable=True
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    __table_args__ = (
        PrimaryKeyConstraint(
            "conversation_id", "user_id", name="participants_conversation_id_user_id_pk"
        ),
        CheckConstraint("unread_count >= 0", name="unread_count_non_negative"),
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="participants")
    user: Mapped["User"] = relationship()

    def __repr__(self) -> str:
        return f"<Participant {self.user_id} in {self.conversation_id}>"


_live_participant = Participant.deleted_at.is_(None)

Index(
    "idx_participants_user_conv_active",
    Participant.user_id,
    Participant.conversation_id,
    postgresql_where=_live_participant,
    sqlite_where=_live_participant,
)
Index(
    "idx_participants_conversation",
    Participant.conversation_id,
    postgresql_where=_live_participant,
    sqlite_where=_live_participant,
)
