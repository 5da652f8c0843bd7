"""TribeShare — async facade wiring the executor, stores, and sharing services."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tribeshare.config import SharingConfig
from tribeshare.db.dialect import get_dialect
from tribeshare.db.transaction import TransactionExecutor
from tribeshare.models.owners import ActivityOwner, ListOwner
from tribeshare.models.principals import Group, User
from tribeshare.models.resources import Activity, SharedList
from tribeshare.models.shares import ActivityShare, ListShare
from tribeshare.sharing import SharingService
from tribeshare.store import ShareStore
from tribeshare.sweeper import ExpirySweeper

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_TABLES = (User, Group, SharedList, Activity, ListOwner, ActivityOwner, ListShare, ActivityShare)


class TribeShare:
    """Sharing and ownership for lists and activities over one database.

    ::

        engine = create_async_engine("postgresql+asyncpg://...")
        ts = TribeShare(engine)
        await ts.create_tables()
        await ts.lists.share(list_id, group_id, user_id)
        shared = await ts.activities.list_shared_with(group_id)

    ``lists`` and ``activities`` are independent ``SharingService``
    instances sharing one ``TransactionExecutor``.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        config: SharingConfig | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
    ) -> None:
        self._engine = engine
        self.config = config or SharingConfig()
        self.dialect = get_dialect(engine)
        self._session_factory = session_factory or async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        self.executor = TransactionExecutor(
            self._session_factory, self.dialect, default_options=self.config.write
        )
        self.lists = SharingService(
            self.executor,
            ShareStore(SharedList, ListOwner, ListShare, dialect=self.dialect),
            self.config,
            label="list",
        )
        self.activities = SharingService(
            self.executor,
            ShareStore(Activity, ActivityOwner, ActivityShare, dialect=self.dialect),
            self.config,
            label="activity",
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def services(self) -> tuple[SharingService, SharingService]:
        return (self.lists, self.activities)

    async def create_tables(self) -> None:
        """Create any missing tables for the default models."""
        async with self._engine.begin() as conn:
            for model in _TABLES:
                table = model.__table__  # type: ignore[attr-defined]
                await conn.run_sync(lambda c, t=table: t.create(c, checkfirst=True))
        logger.debug("Ensured %d sharing tables on %s", len(_TABLES), self.dialect)

    async def sweep_expired(self) -> int:
        """Sweep expired list and activity shares. Returns the total removed."""
        total = 0
        for service in self.services:
            total += await service.sweep_expired()
        return total

    def sweeper(self, interval: float | None = None) -> ExpirySweeper:
        """Build a background sweeper over both services."""
        return ExpirySweeper(self.services, interval or self.config.sweep_interval)
