"""Conversation schemas for read paths."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from chatcore.models.conversation import ConversationType
from chatcore.models.message import MessageType


class GroupCreate(BaseModel):
    """Schema for creating a group conversation."""
    name: str = Field(..., min_length=1, max_length=255)
    member_ids: list[UUID] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name cannot be blank")
        return value


class GroupInfo(BaseModel):
    """Group payload of a conversation."""
    name: str
    created_by: UUID
    avatar_url: Optional[str] = None

    model_config = {"from_attributes": True}


class LastMessageResponse(BaseModel):
    """Projection of the newest live message."""
    message_id: UUID
    sender_id: UUID
    type: MessageType
    content: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ParticipantResponse(BaseModel):
    """Live participant with read state."""
    user_id: UUID
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    unread_count: int
    last_seen_message_id: Optional[UUID] = None
    joined_at: datetime


class ConversationResponse(BaseModel):
    """Conversation with its projections, as seen by one participant."""
    id: UUID
    type: ConversationType
    group: Optional[GroupInfo] = None
    last_message: Optional[LastMessageResponse] = None
    participants: list[ParticipantResponse] = Field(default_factory=list)
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime
