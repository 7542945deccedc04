import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.exceptions import ConflictException, NotFoundException, ValidationException
from chatcore.core.transactions import transactional
from chatcore.core.validation import parse_input
from chatcore.models.user import User, UserRole
from chatcore.schemas.user import UserCreate, UserUpdate

logger = logging.getLogger(__name__)


class UserService:
    """Identity store: live users are unique by username, email and phone."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find_live(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.id == user_id, User.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def _ensure_unique(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        exclude_id: Optional[UUID] = None,
    ):
        checks = [
            (username, func.lower(User.username) == func.lower(username or ""), "Username is already taken"),
            (email, func.lower(User.email) == func.lower(email or ""), "Email is already registered"),
            (phone, User.phone == phone, "Phone number is already registered"),
        ]
        for value, clause, message in checks:
            if value is None:
                continue
            query = select(User.id).where(clause, User.deleted_at.is_(None))
            if exclude_id is not None:
                query = query.where(User.id != exclude_id)
            result = await self.db.execute(query.limit(1))
            if result.scalar_one_or_none() is not None:
                raise ConflictException(message)

    async def get_user(self, user_id: UUID) -> User:
        """Get a live user or raise NotFoundException."""
        user = await self._find_live(user_id)
        if user is None:
            raise NotFoundException("User not found")
        return user

    async def get_by_username(self, username: str) -> User:
        """Case-insensitive lookup among live users."""
        result = await self.db.execute(
            select(User).where(
                func.lower(User.username) == func.lower(username),
                User.deleted_at.is_(None),
            )
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundException("User not found")
        return user

    async def get_by_email(self, email: str) -> User:
        """Case-insensitive lookup among live users."""
        result = await self.db.execute(
            select(User).where(
                func.lower(User.email) == func.lower(email),
                User.deleted_at.is_(None),
            )
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundException("User not found")
        return user

    @transactional
    async def create_user(
        self,
        username: str,
        email: str,
        display_name: str,
        password_hash: Optional[str] = None,
        phone: Optional[str] = None,
        role: UserRole = UserRole.USER,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> User:
        """
        Create a user.

        The pre-check gives a friendly error for the common case; the partial
        unique indexes still catch a concurrent insert of the same handle.
        """
        data = parse_input(
            UserCreate,
            username=username,
            email=email,
            display_name=display_name,
            password_hash=password_hash,
            phone=phone,
            role=role,
            bio=bio,
            avatar_url=avatar_url,
        )
        await self._ensure_unique(data.username, data.email, data.phone)

        user = User(**data.model_dump())
        self.db.add(user)
        await self.db.flush()

        logger.info(f"[UserService] Created user {user.id} ({user.username})")
        return user

    @transactional
    async def update_user(self, user_id: UUID, **fields) -> User:
        """Apply a partial profile update."""
        data = parse_input(UserUpdate, **fields)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationException("No fields to update")

        user = await self.get_user(user_id)
        await self._ensure_unique(
            changes.get("username"),
            changes.get("email"),
            changes.get("phone"),
            exclude_id=user.id,
        )

        for field, value in changes.items():
            setattr(user, field, value)
        await self.db.flush()

        logger.info(f"[UserService] Updated user {user.id}: {', '.join(sorted(changes))}")
        return user

    @transactional
    async def delete_user(self, user_id: UUID) -> None:
        """Soft delete. Username, email and phone become reusable."""
        user = await self.get_user(user_id)
        user.deleted_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info(f"[UserService] Soft-deleted user {user_id}")
