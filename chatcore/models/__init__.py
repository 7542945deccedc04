# Import all models so Alembic can detect them
from chatcore.models.user import User, UserRole
from chatcore.models.friend import FriendRequest, Friendship
from chatcore.models.conversation import (
    Conversation,
    ConversationType,
    GroupConversation,
    Participant,
)
from chatcore.models.message import Message, MessageType, LastMessage
from chatcore.models.file import File

__all__ = [
    "User",
    "UserRole",
    "FriendRequest",
    "Friendship",
    "Conversation",
    "ConversationType",
    "GroupConversation",
    "Participant",
    "Message",
    "MessageType",
    "LastMessage",
    "File",
]
