"""Canonical ordering for symmetric (undirected) edges."""
from uuid import UUID


def canonical_pair(user1_id: UUID, user2_id: UUID) -> tuple[UUID, UUID]:
    """
    Return user IDs in ascending order for consistent edge lookup.

    uuid.UUID compares by its 128-bit integer value, which is the same order
    as the byte representation PostgreSQL compares and as the lowercase hex
    string SQLite stores, so this agrees with the ``user_a < user_b`` check.
    """
    return (min(user1_id, user2_id), max(user1_id, user2_id))
