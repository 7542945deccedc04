"""Social graph: pending friend requests and canonical friendship edges."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
    PrimaryKeyConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.database import Base, utcnow


class FriendRequest(Base):
    """Directed, pending request. Hard-deleted once resolved."""

    __tablename__ = "friend_requests"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    from_user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    to_user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    message: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now()
    )

    # One outstanding request per direction; A->B and B->A may coexist
    __table_args__ = (
        UniqueConstraint(
            "from_user_id", "to_user_id", name="idx_friend_requests_from_user_to_user"
        ),
        CheckConstraint("from_user_id <> to_user_id", name="friend_request_not_self"),
    )

    def __repr__(self) -> str:
        return f"<FriendRequest {self.from_user_id} -> {self.to_user_id}>"


class Friendship(Base):
    """
    Undirected friendship stored once as (user_a, user_b) with user_a < user_b.

    The composite primary key plus the ordering check make one row the only
    possible representation of a pair. Unfriending soft-deletes the row.
    """

    __tablename__ = "friends"

    user_a: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    user_b: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        PrimaryKeyConstraint("user_a", "user_b", name="friends_user_a_user_b_pk"),
        CheckConstraint("user_a < user_b", name="friends_user_order"),
        CheckConstraint("user_a <> user_b", name="friends_not_self"),
    )

    def __repr__(self) -> str:
        return f"<Friendship {self.user_a} <-> {self.user_b}>"


_live_friendship = Friendship.deleted_at.is_(None)

Index(
    "idx_friends_user_a_active",
    Friendship.user_a,
    postgresql_where=_live_friendship,
    sqlite_where=_live_friendship,
)
Index(
    "idx_friends_user_b_active",
    Friendship.user_b,
    postgresql_where=_live_friendship,
    sqlite_where=_live_friendship,
)
