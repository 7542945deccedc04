"""
Social graph service.

Friend requests are directed and hard-deleted once resolved. Friendships are
undirected edges stored once in canonical (min, max) order and soft-deleted
on unfriend.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, delete, or_, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.exceptions import ConflictException, NotFoundException, ValidationException
from chatcore.core.transactions import transactional
from chatcore.core.validation import parse_input
from chatcore.models.friend import FriendRequest, Friendship
from chatcore.models.user import User
from chatcore.schemas.friend import FriendRequestCreate, FriendRequestResponse, FriendResponse
from chatcore.schemas.user import UserBrief
from chatcore.utils.dialect import upsert
from chatcore.utils.ordering import canonical_pair

logger = logging.getLogger(__name__)


def _between(user1_id: UUID, user2_id: UUID):
    """Match requests between two users in either direction."""
    return or_(
        and_(FriendRequest.from_user_id == user1_id, FriendRequest.to_user_id == user2_id),
        and_(FriendRequest.from_user_id == user2_id, FriendRequest.to_user_id == user1_id),
    )


class FriendService:
    """Service for friend requests and the friendship graph."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find_friendship(
        self,
        user1_id: UUID,
        user2_id: UUID,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[Friendship]:
        user_a, user_b = canonical_pair(user1_id, user2_id)
        query = select(Friendship).where(
            Friendship.user_a == user_a,
            Friendship.user_b == user_b,
        )
        if not include_deleted:
            query = query.where(Friendship.deleted_at.is_(None))
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def _get_request(self, request_id: UUID) -> Optional[FriendRequest]:
        result = await self.db.execute(
            select(FriendRequest)
            .where(FriendRequest.id == request_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def are_friends(self, user1_id: UUID, user2_id: UUID) -> bool:
        return await self._find_friendship(user1_id, user2_id) is not None

    @transactional
    async def send_friend_request(
        self,
        from_user_id: UUID,
        to_user_id: UUID,
        message: Optional[str] = None,
    ) -> FriendRequest:
        """
        Send a friend request.

        A reverse request (to -> from) may already be pending; both are
        cleared when either one is accepted.
        """
        data = parse_input(
            FriendRequestCreate,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            message=message,
        )
        if data.from_user_id == data.to_user_id:
            raise ValidationException("Cannot send friend request to yourself")

        result = await self.db.execute(
            select(User.id).where(
                User.id.in_([data.from_user_id, data.to_user_id]),
                User.deleted_at.is_(None),
            )
        )
        live_ids = set(result.scalars().all())
        if data.from_user_id not in live_ids:
            raise NotFoundException("Sender user not found")
        if data.to_user_id not in live_ids:
            raise NotFoundException("Receiver user not found")

        if await self._find_friendship(data.from_user_id, data.to_user_id) is not None:
            raise ConflictException("Users are already friends")

        existing = await self.db.execute(
            select(FriendRequest.id).where(
                FriendRequest.from_user_id == data.from_user_id,
                FriendRequest.to_user_id == data.to_user_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictException("Friend request already exists")

        request = FriendRequest(
            from_user_id=data.from_user_id,
            to_user_id=data.to_user_id,
            message=data.message,
        )
        self.db.add(request)
        await self.db.flush()

        logger.info(f"[FriendService] Friend request {request.id}: {from_user_id} -> {to_user_id}")
        return request

    @transactional
    async def accept_friend_request(self, request_id: UUID, acting_user_id: UUID) -> Friendship:
        """
        Accept a request addressed to ``acting_user_id``.

        The edge is written with ON CONFLICT on the canonical key: a
        soft-deleted edge is revived, and an edge that a concurrent accept
        already created is left as is ("already friends"). Every pending
        request between the pair, in both directions, is removed.
        """
        request = await self._get_request(request_id)
        if request is None or request.to_user_id != acting_user_id:
            raise NotFoundException("Friend request not found")

        user_a, user_b = canonical_pair(request.from_user_id, request.to_user_id)

        stmt = upsert(self.db, Friendship).values(
            user_a=user_a,
            user_b=user_b,
            created_at=datetime.now(timezone.utc),
            deleted_at=None,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_a", "user_b"],
            set_={"deleted_at": None, "created_at": stmt.excluded.created_at},
            where=Friendship.deleted_at.is_not(None),
        )
        await self.db.execute(stmt)

        await self.db.execute(
            delete(FriendRequest)
            .where(_between(user_a, user_b))
            .execution_options(synchronize_session=False)
        )
        self.db.expunge(request)

        friendship = await self._find_friendship(user_a, user_b)
        logger.info(f"[FriendService] {user_a} and {user_b} are now friends")
        return friendship

    @transactional
    async def reject_friend_request(self, request_id: UUID, acting_user_id: UUID) -> None:
        """Decline a request addressed to ``acting_user_id``."""
        request = await self._get_request(request_id)
        if request is None or request.to_user_id != acting_user_id:
            raise NotFoundException("Friend request not found")

        await self.db.delete(request)
        await self.db.flush()
        logger.info(f"[FriendService] Friend request {request_id} rejected")

    @transactional
    async def cancel_friend_request(self, request_id: UUID, acting_user_id: UUID) -> None:
        """Withdraw a request sent by ``acting_user_id``."""
        request = await self._get_request(request_id)
        if request is None or request.from_user_id != acting_user_id:
            raise NotFoundException("Friend request not found")

        await self.db.delete(request)
        await self.db.flush()
        logger.info(f"[FriendService] Friend request {request_id} cancelled")

    @transactional
    async def unfriend(self, user1_id: UUID, user2_id: UUID) -> None:
        """Soft-delete the live edge between two users."""
        friendship = await self._find_friendship(user1_id, user2_id, for_update=True)
        if friendship is None:
            raise NotFoundException("Friendship not found")

        friendship.deleted_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info(f"[FriendService] {friendship.user_a} and {friendship.user_b} unfriended")

    async def list_friends(self, user_id: UUID) -> list[FriendResponse]:
        """Live friends of a user, by username."""
        other_id = case(
            (Friendship.user_a == user_id, Friendship.user_b),
            else_=Friendship.user_a,
        )
        result = await self.db.execute(
            select(User, Friendship.created_at)
            .join(Friendship, User.id == other_id)
            .where(
                or_(Friendship.user_a == user_id, Friendship.user_b == user_id),
                Friendship.deleted_at.is_(None),
                User.deleted_at.is_(None),
            )
            .order_by(User.username)
        )
        return [
            FriendResponse(
                **UserBrief.model_validate(user).model_dump(),
                friends_since=friends_since,
            )
            for user, friends_since in result.all()
        ]

    async def _list_requests(self, user_id: UUID, incoming: bool) -> list[FriendRequestResponse]:
        own_column, other_column = (
            (FriendRequest.to_user_id, FriendRequest.from_user_id)
            if incoming
            else (FriendRequest.from_user_id, FriendRequest.to_user_id)
        )
        result = await self.db.execute(
            select(FriendRequest, User)
            .join(User, User.id == other_column)
            .where(own_column == user_id, User.deleted_at.is_(None))
            .order_by(FriendRequest.created_at.desc())
        )
        return [
            FriendRequestResponse(
                id=request.id,
                from_user_id=request.from_user_id,
                to_user_id=request.to_user_id,
                other_user=UserBrief.model_validate(user),
                message=request.message,
                created_at=request.created_at,
            )
            for request, user in result.all()
        ]

    async def list_incoming_requests(self, user_id: UUID) -> list[FriendRequestResponse]:
        return await self._list_requests(user_id, incoming=True)

    async def list_outgoing_requests(self, user_id: UUID) -> list[FriendRequestResponse]:
        return await self._list_requests(user_id, incoming=False)
