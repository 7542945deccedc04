import itertools
from uuid import UUID

import pytest

import chatcore.models  # noqa: F401
from chatcore.database import Base, build_engine, build_sessionmaker
from chatcore.services.user_service import UserService


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test, schema created from the models."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'chatcore.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    """
    Create a live user and return its id.

    Ids rather than instances: a failed service call rolls the session back
    and expires every loaded object.
    """
    counter = itertools.count(1)

    async def _make_user(username: str | None = None, **kwargs) -> UUID:
        username = username or f"user{next(counter)}"
        kwargs.setdefault("email", f"{username}@mail.com")
        kwargs.setdefault("display_name", username.title())
        user = await UserService(db).create_user(username=username, **kwargs)
        return user.id

    return _make_user
