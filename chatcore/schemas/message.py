"""Message schemas and the keyset cursor used for history paging."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from chatcore.core.exceptions import ValidationException
from chatcore.models.message import MessageType


class MessageCreate(BaseModel):
    """Schema for sending a message. Payload depends on the message type."""
    type: MessageType = MessageType.TEXT
    content: Optional[str] = Field(None, max_length=5000)
    file_url: Optional[str] = Field(None, max_length=2000)
    reply_to_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_payload(self) -> "MessageCreate":
        if self.type.requires_file:
            if not self.file_url:
                raise ValueError(f"{self.type.value} messages require a file_url")
        elif not (self.content or "").strip():
            raise ValueError(f"{self.type.value} messages require content")
        return self


class MessageEdit(BaseModel):
    """Schema for editing a message's content."""
    content: str = Field(..., min_length=1, max_length=5000)

    @model_validator(mode="after")
    def check_not_blank(self) -> "MessageEdit":
        if not self.content.strip():
            raise ValueError("content cannot be blank")
        return self


class MessageResponse(BaseModel):
    """Schema for a single message."""
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    reply_to_id: Optional[UUID] = None
    type: MessageType
    content: Optional[str] = None
    file_url: Optional[str] = None
    is_edited: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageCursor(BaseModel):
    """Position in a conversation's history: (created_at, id) of the last row seen."""
    created_at: datetime
    id: UUID

    def encode(self) -> str:
        return f"{self.created_at.isoformat()}|{self.id.hex}"

    @classmethod
    def decode(cls, token: str) -> "MessageCursor":
        try:
            created_at, message_id = token.split("|", 1)
            return cls(created_at=datetime.fromisoformat(created_at), id=UUID(message_id))
        except ValueError:
            raise ValidationException("Invalid cursor format") from None


class MessagePage(BaseModel):
    """One page of history, newest first."""
    messages: list[MessageResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False
