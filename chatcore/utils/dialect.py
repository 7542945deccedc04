"""Dialect-specific statement helpers."""
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def upsert(db: AsyncSession, model):
    """
    Build an INSERT that supports ``on_conflict_do_update`` / ``do_nothing``
    for the database the session is bound to.

    Both PostgreSQL and SQLite spell ON CONFLICT the same way, so callers
    can use one code path.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
