"""
Unit-of-work helpers shared by the services.

Every mutating service method runs as one transaction: commit on success,
rollback on any failure, whole-transaction retry on serialization failures.
Constraint violations raised by the database are translated into the domain
exceptions so callers never see driver error text.
"""
import functools
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError

from chatcore.config import get_settings
from chatcore.core.exceptions import (
    ChatCoreException,
    ConflictException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

# Keyed by constraint/index name (PostgreSQL reports it) and by table.column
# (SQLite reports that for primary keys and plain unique constraints).
CONSTRAINT_ERRORS: list[tuple[tuple[str, ...], type[ChatCoreException], str]] = [
    (("idx_user_username",), ConflictException, "Username is already taken"),
    (("idx_user_email",), ConflictException, "Email is already registered"),
    (("idx_user_phone",), ConflictException, "Phone number is already registered"),
    (
        ("idx_friend_requests_from_user_to_user", "friend_requests.from_user_id"),
        ConflictException,
        "Friend request already exists",
    ),
    (("friend_request_not_self",), ValidationException, "Cannot send friend request to yourself"),
    (("friends_user_a_user_b_pk", "friends.user_a"), ConflictException, "Users are already friends"),
    (("friends_user_order", "friends_not_self"), ValidationException, "Invalid friendship pair"),
    (
        ("participants_conversation_id_user_id_pk", "participants.conversation_id"),
        ConflictException,
        "User is already a participant",
    ),
    (("unread_count_non_negative",), ValidationException, "Unread count cannot be negative"),
    (
        ("last_messages_conversation_id_unique", "last_messages.conversation_id"),
        ConflictException,
        "Conversation already has a last message",
    ),
]


def _sqlstate(error: DBAPIError) -> str | None:
    orig = error.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return code
    return None


def translate_integrity_error(error: IntegrityError) -> ChatCoreException:
    """Map a constraint violation onto the matching domain exception."""
    detail = str(error.orig)
    logger.debug(f"[Transactions] Integrity error: {detail}")

    for keys, exc_class, message in CONSTRAINT_ERRORS:
        if any(key in detail for key in keys):
            return exc_class(message)

    lowered = detail.lower()
    if "foreign key" in lowered:
        return NotFoundException("Referenced resource not found")
    if "unique" in lowered or "duplicate" in lowered:
        return ConflictException()
    return ValidationException("Constraint violated")


def transactional(func):
    """
    Run a service method as one unit transaction on ``self.db``.

    The wrapped method must not commit; nested calls between services go
    through undecorated helpers so the outer call owns the commit.
    """

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        db = self.db
        max_retries = get_settings().transaction_max_retries
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await func(self, *args, **kwargs)
                await db.commit()
                return result
            except IntegrityError as e:
                await db.rollback()
                raise translate_integrity_error(e) from e
            except DBAPIError as e:
                await db.rollback()
                if _sqlstate(e) in RETRYABLE_SQLSTATES and attempt <= max_retries:
                    logger.warning(
                        f"[Transactions] {func.__qualname__} hit a serialization conflict, "
                        f"retrying ({attempt}/{max_retries})"
                    )
                    continue
                raise
            except Exception:
                await db.rollback()
                raise

    return wrapper
