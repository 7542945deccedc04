"""Friend graph schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from chatcore.schemas.user import UserBrief


class FriendRequestCreate(BaseModel):
    """Schema for sending a friend request."""
    from_user_id: UUID
    to_user_id: UUID
    message: Optional[str] = Field(None, max_length=300)


class FriendRequestResponse(BaseModel):
    """Pending request with the counterpart's profile."""
    id: UUID
    from_user_id: UUID
    to_user_id: UUID
    other_user: UserBrief
    message: Optional[str] = None
    created_at: datetime


class FriendResponse(UserBrief):
    """A friend, with the date the friendship started."""
    friends_since: datetime
