"""Shared fixtures for tribeshare tests."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from tribeshare import SharingConfig, TransactionOptions, TribeShare
from tribeshare.db.transaction import IsolationLevel
from tribeshare.models import Group, User, active_clause
from tribeshare.utils import utcnow

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

USERS = {"u1": "Alice", "u2": "Bob"}
GROUPS = {"g1": "Climbers", "g2": "Runners"}


def fast_config() -> SharingConfig:
    """Default option sets with near-zero backoff so retry tests stay quick."""
    return SharingConfig(
        write=TransactionOptions(
            isolation_level=IsolationLevel.SERIALIZABLE, base_delay=0.001, max_delay=0.01
        ),
        read=TransactionOptions(isolation_level=IsolationLevel.READ_COMMITTED, max_retries=2),
        sweep=TransactionOptions(
            isolation_level=IsolationLevel.SERIALIZABLE, base_delay=0.001, max_delay=0.01
        ),
    )


async def seed_principals(factory: Callable[..., AsyncSession]) -> None:
    async with factory() as session:
        session.add_all([User(id=uid, name=name) for uid, name in USERS.items()])
        session.add_all([Group(id=gid, name=name) for gid, name in GROUPS.items()])
        await session.commit()


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def file_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine; each session gets its own connection."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tribeshare.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def file_factory(file_engine: AsyncEngine) -> Callable[..., AsyncSession]:
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def file_ts(
    file_engine: AsyncEngine,
    file_factory: Callable[..., AsyncSession],
) -> TribeShare:
    """TribeShare over the file-backed engine, with principals seeded."""
    await seed_principals(file_factory)
    return TribeShare(file_engine, config=fast_config(), session_factory=file_factory)


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> Callable[..., AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def principals(session_factory: Callable[..., AsyncSession]) -> None:
    """Users u1, u2 and groups g1, g2."""
    await seed_principals(session_factory)


@pytest.fixture
async def ts(
    async_engine: AsyncEngine,
    session_factory: Callable[..., AsyncSession],
    principals: None,
) -> TribeShare:
    return TribeShare(async_engine, config=fast_config(), session_factory=session_factory)


@pytest.fixture
async def list_id(ts: TribeShare) -> str:
    """A list owned directly by u1."""
    info = await ts.lists.create_resource("Weekend crag", "u1")
    return info.id


@pytest.fixture
def expire(
    session_factory: Callable[..., AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """Move a share's expiry into the past without going through ``share``."""

    async def _expire(model: type, share_id: str, ago: timedelta = timedelta(hours=1)) -> None:
        async with session_factory() as session:
            await session.execute(
                update(model).where(model.id == share_id).values(expires_at=utcnow() - ago)
            )
            await session.commit()

    return _expire


@pytest.fixture
def count_active(
    session_factory: Callable[..., AsyncSession],
) -> Callable[..., Awaitable[int]]:
    """Count active share rows for a (resource, group) pair."""

    async def _count(model: type, resource_id: str, group_id: str) -> int:
        async with session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(model)
                .where(
                    model.resource_id == resource_id,
                    model.group_id == group_id,
                    active_clause(model),
                )
            )
            return result.scalar_one()

    return _count
