import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, Enum, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.database import Base, utcnow


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(Base):
    """User identity and profile. Soft-deletable."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    # Opaque hash handed over by the auth layer; never produced or checked here
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [m.value for m in e]),
        default=UserRole.USER,
        server_default=UserRole.USER.value,
    )

    # Profile
    display_name: Mapped[str] = mapped_column(String(255))
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

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

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    def __repr__(self) -> str:
        return f"<User {self.username}>"


# Uniqueness only among live rows, so soft-deleted users free their handles
_live_user = User.deleted_at.is_(None)

Index(
    "idx_user_username",
    func.lower(User.username),
    unique=True,
    postgresql_where=_live_user,
    sqlite_where=_live_user,
)
Index(
    "idx_user_email",
    func.lower(User.email),
    unique=True,
    postgresql_where=_live_user,
    sqlite_where=_live_user,
)
Index(
    "idx_user_phone",
    User.phone,
    unique=True,
    postgresql_where=User.phone.is_not(None) & _live_user,
    sqlite_where=User.phone.is_not(None) & _live_user,
)
Index("idx_user_created_desc", User.created_at.desc())
