"""Message log and the per-conversation last-message projection."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Text,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.database import Base, utcnow


class MessageType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    SYSTEM = "system"

    @property
    def requires_file(self) -> bool:
        return self in (MessageType.IMAGE, MessageType.VIDEO, MessageType.FILE)


message_type_enum = Enum(
    MessageType,
    name="message_type",
    values_callable=lambda e: [m.value for m in e],
)


class Message(Base):
    """Message in a conversation. Soft-deletable, optionally a reply."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE")
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    # Hard delete of the original nulls the reference; soft delete keeps it
    reply_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL", name="fk_message_reply"),
        nullable=True
    )

    type: Mapped[MessageType] = mapped_column(
        message_type_enum,
        default=MessageType.TEXT,
        server_default=MessageType.TEXT.value,
    )
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())

    # Timestamps
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
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

    def __repr__(self) -> str:
        return f"<Message {self.id} in conversation {self.conversation_id}>"


Index(
    "idx_message_conversation",
    Message.conversation_id,
    Message.created_at.desc(),
    Message.id.desc(),
    postgresql_where=Message.deleted_at.is_(None),
    sqlite_where=Message.deleted_at.is_(None),
)


class LastMessage(Base):
    """
    Denormalized copy of the newest live message of a conversation.

    Maintained in the same transaction as every write to ``messages`` that
    can change which message is newest.
    """

    __tablename__ = "last_messages"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE")
    )
    message_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE")
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE")
    )
    type: Mapped[MessageType] = mapped_column(
        message_type_enum,
        default=MessageType.TEXT,
        server_default=MessageType.TEXT.value,
    )
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # created_at of the mirrored message, not of this row
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("conversation_id", name="last_messages_conversation_id_unique"),
    )

    def __repr__(self) -> str:
        return f"<LastMessage {self.message_id} for {self.conversation_id}>"


Index(
    "idx_last_message_conversation",
    LastMessage.conversation_id,
    LastMessage.created_at.desc(),
)
