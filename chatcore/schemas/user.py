from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from chatcore.models.user import UserRole


class UserCreate(BaseModel):
    """Schema for creating a user (credentials handled by the auth layer)."""
    username: str = Field(..., min_length=3, max_length=255)
    email: EmailStr
    display_name: str = Field(..., min_length=1, max_length=255)
    password_hash: Optional[str] = None
    role: UserRole = UserRole.USER
    phone: Optional[str] = Field(None, min_length=10, max_length=20)
    bio: Optional[str] = Field(None, max_length=300)
    avatar_url: Optional[str] = None
    avatar_id: Optional[str] = None


class UserUpdate(BaseModel):
    """Schema for updating user profile. Only fields that are set are applied."""
    username: Optional[str] = Field(None, min_length=3, max_length=255)
    email: Optional[EmailStr] = None
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, min_length=10, max_length=20)
    bio: Optional[str] = Field(None, max_length=300)
    avatar_url: Optional[str] = None
    avatar_id: Optional[str] = None


class UserBrief(BaseModel):
    """Brief user info for friend lists and participants."""
    id: UUID
    username: str
    display_name: str
    avatar_url: Optional[str] = None

    model_config = {"from_attributes": True}

