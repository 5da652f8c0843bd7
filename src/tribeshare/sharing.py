"""SharingService — share, unshare, and list operations over one resource kind.

Each public operation is one unit of work run through the
``TransactionExecutor``. Units of work may run more than once (the
executor re-runs them after serialization failures), so every body
re-reads the state it depends on and writes through the version-guarded
primitives in ``ShareStore``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING

from .config import SharingConfig
from .exceptions import ConcurrentModificationError, InvalidInputError, NotFoundError
from .models.enums import OwnerSource, PrincipalKind, Visibility
from .utils import ensure_utc, require_id, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .db.transaction import TransactionExecutor, TransactionOptions
    from .models.resources import ResourceBase
    from .store import ShareStore
    from .types import GroupInfo, OwnerInfo, ResourceInfo, ShareInfo

logger = logging.getLogger(__name__)


class SharingService:
    """Sharing state machine for one resource kind (lists or activities).

    Writes run with ``config.write``, list operations with ``config.read``,
    and the expiry sweep with ``config.sweep``. Any operation accepts
    ``options=`` to override its option set for a single call.
    """

    def __init__(
        self,
        executor: TransactionExecutor,
        store: ShareStore,
        config: SharingConfig | None = None,
        *,
        label: str = "list",
    ) -> None:
        self._executor = executor
        self._store = store
        self.config = config or SharingConfig()
        self.label = label

    @property
    def store(self) -> ShareStore:
        return self._store

    # ------------------------------------------------------------------
    # Share / Unshare
    # ------------------------------------------------------------------

    async def share(
        self,
        resource_id: str,
        group_id: str,
        granted_by: str,
        expires_at: datetime | None = None,
        *,
        options: TransactionOptions | None = None,
    ) -> ShareInfo:
        """Share a resource with a group, or update the existing grant in place.

        Creates the share at version 1 when the pair has no active share;
        otherwise updates ``granted_by`` and ``expires_at`` and bumps the
        version. Either way the group ends up an active owner of the
        resource. A naive *expires_at* is read as UTC and must lie in the
        future.
        """
        resource_id = require_id("resource_id", resource_id)
        group_id = require_id("group_id", group_id)
        granted_by = require_id("granted_by", granted_by)
        if expires_at is not None:
            if not isinstance(expires_at, datetime):
                raise InvalidInputError(f"expires_at must be a datetime: {expires_at!r}")
            expires_at = ensure_utc(expires_at)
            if expires_at <= utcnow():
                raise InvalidInputError(f"expires_at must be in the future: {expires_at.isoformat()}")

        store = self._store

        async def work(session: AsyncSession) -> ShareInfo:
            now = utcnow()
            resource = await store.require_resource(session, resource_id)
            group = await store.require_group(session, group_id)
            await store.require_user(session, granted_by)

            existing = await store.get_active_share(session, resource_id, group_id, lock=True)
            if existing is None:
                share = await store.insert_share(
                    session, resource_id, group_id, granted_by, expires_at, now
                )
            else:
                share = await store.update_share(
                    session, existing, granted_by=granted_by, expires_at=expires_at, now=now
                )

            await store.upsert_owner(
                session, resource_id, group_id, PrincipalKind.GROUP, OwnerSource.SHARE, now
            )
            return store.share_to_info(share, resource.name, group.name)

        info = await self._executor.run_in_transaction(
            work, options or self.config.write, operation=f"share {self.label}"
        )
        logger.info(
            "Shared %s %s with group %s (version %d)",
            self.label,
            resource_id,
            group_id,
            info.version,
        )
        return info

    async def unshare(
        self,
        resource_id: str,
        group_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> None:
        """Remove the active share for the pair and demote the group's owner row.

        Succeeds without changes when the pair has no active share.
        """
        resource_id = require_id("resource_id", resource_id)
        group_id = require_id("group_id", group_id)
        store = self._store

        async def work(session: AsyncSession) -> bool:
            now = utcnow()
            existing = await store.get_active_share(session, resource_id, group_id, lock=True)
            if existing is None:
                return False
            if not await store.soft_delete_share(session, existing, now):
                raise ConcurrentModificationError(
                    f"share {existing.id} changed since version {existing.version}"
                )
            await self._demote_group(session, resource_id, group_id, now)
            return True

        removed = await self._executor.run_in_transaction(
            work, options or self.config.write, operation=f"unshare {self.label}"
        )
        if removed:
            logger.info("Unshared %s %s from group %s", self.label, resource_id, group_id)
        else:
            logger.debug("No active share of %s %s for group %s", self.label, resource_id, group_id)

    async def _demote_group(
        self,
        session: AsyncSession,
        resource_id: str,
        group_id: str,
        now: datetime,
    ) -> bool:
        """Remove the group's share-sourced owner row once no active share justifies it."""
        if await self._store.has_active_share(session, resource_id, group_id):
            return False
        removed = await self._store.soft_delete_owner(
            session,
            resource_id,
            group_id,
            now,
            source=OwnerSource.SHARE,
            missing_ok=True,
        )
        if removed:
            logger.debug("Demoted group %s on %s %s", group_id, self.label, resource_id)
        return removed

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_shares(
        self,
        resource_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> list[ShareInfo]:
        """List visible shares of a resource, newest first."""
        resource_id = require_id("resource_id", resource_id)
        store = self._store

        async def work(session: AsyncSession) -> list[ShareInfo]:
            rows = await store.list_shares(session, utcnow(), resource_ids=[resource_id])
            return [store.share_to_info(share, rname, gname) for share, rname, gname in rows]

        return await self._executor.run_in_transaction(
            work, options or self.config.read, operation=f"list {self.label} shares"
        )

    async def list_shared_with(
        self,
        group_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> list[ResourceInfo]:
        """List resources visibly shared with a group, newest first.

        Each result carries the resource's active owners and all of its
        visible shares.
        """
        group_id = require_id("group_id", group_id)
        store = self._store

        async def work(session: AsyncSession) -> list[ResourceInfo]:
            now = utcnow()
            resources = await store.list_resources_shared_with(session, group_id, now)
            return await self._describe(session, resources, now)

        return await self._executor.run_in_transaction(
            work, options or self.config.read, operation=f"list {self.label}s shared with group"
        )

    async def get_share(
        self,
        resource_id: str,
        group_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> ShareInfo | None:
        """Get the visible share for the pair, or None."""
        resource_id = require_id("resource_id", resource_id)
        group_id = require_id("group_id", group_id)
        store = self._store

        async def work(session: AsyncSession) -> ShareInfo | None:
            rows = await store.list_shares(
                session, utcnow(), resource_ids=[resource_id], group_id=group_id
            )
            if not rows:
                return None
            share, rname, gname = rows[0]
            return store.share_to_info(share, rname, gname)

        return await self._executor.run_in_transaction(
            work, options or self.config.read, operation=f"get {self.label} share"
        )

    async def list_shared_groups(
        self,
        resource_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> list[GroupInfo]:
        """List the groups a resource is visibly shared with, newest first."""
        resource_id = require_id("resource_id", resource_id)
        store = self._store

        async def work(session: AsyncSession) -> list[GroupInfo]:
            groups = await store.list_groups_shared_with(session, resource_id, utcnow())
            return [store.group_to_info(g) for g in groups]

        return await self._executor.run_in_transaction(
            work, options or self.config.read, operation=f"list {self.label} groups"
        )

    async def _describe(
        self,
        session: AsyncSession,
        resources: list[ResourceBase],
        now: datetime,
    ) -> list[ResourceInfo]:
        store = self._store
        ids = [r.id for r in resources]

        owners: dict[str, list[OwnerInfo]] = defaultdict(list)
        for owner in await store.list_owners(session, ids):
            owners[owner.resource_id].append(store.owner_to_info(owner))

        shares: dict[str, list[ShareInfo]] = defaultdict(list)
        for share, rname, gname in await store.list_shares(session, now, resource_ids=ids):
            shares[share.resource_id].append(store.share_to_info(share, rname, gname))

        return [store.resource_to_info(r, owners[r.id], shares[r.id]) for r in resources]

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def sweep_expired(self, *, options: TransactionOptions | None = None) -> int:
        """Soft-delete every active share whose expiry has passed.

        Demotes each affected group's share-sourced owner row. Direct owner
        rows are never touched. Returns the number of shares removed.
        """
        store = self._store

        async def work(session: AsyncSession) -> int:
            now = utcnow()
            count = 0
            for share in await store.select_expired_shares(session, now):
                if not await store.soft_delete_share(session, share, now, expired_by=now):
                    logger.debug("Share %s changed during sweep; skipping", share.id)
                    continue
                await self._demote_group(session, share.resource_id, share.group_id, now)
                count += 1
            return count

        count = await self._executor.run_in_transaction(
            work, options or self.config.sweep, operation=f"sweep expired {self.label} shares"
        )
        if count:
            logger.info("Swept %d expired %s share(s)", count, self.label)
        return count

    # ------------------------------------------------------------------
    # Resources and direct ownership
    # ------------------------------------------------------------------

    async def create_resource(
        self,
        name: str,
        owner_id: str,
        owner_kind: PrincipalKind | str = PrincipalKind.USER,
        *,
        description: str = "",
        visibility: Visibility | str = Visibility.PRIVATE,
        options: TransactionOptions | None = None,
    ) -> ResourceInfo:
        """Create a resource together with its direct primary owner."""
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError("name is required")
        owner_id = require_id("owner_id", owner_id)
        kind = _coerce(PrincipalKind, owner_kind, "owner_kind")
        vis = _coerce(Visibility, visibility, "visibility")
        store = self._store

        async def work(session: AsyncSession) -> ResourceInfo:
            now = utcnow()
            await store.require_principal(session, owner_id, kind)
            resource = await store.insert_resource(
                session, name=name, description=description, visibility=vis.value, now=now
            )
            await store.upsert_owner(session, resource.id, owner_id, kind, OwnerSource.DIRECT, now)
            owners = await store.list_owners(session, [resource.id])
            return store.resource_to_info(resource, [store.owner_to_info(o) for o in owners])

        info = await self._executor.run_in_transaction(
            work, options or self.config.write, operation=f"create {self.label}"
        )
        logger.info("Created %s %s owned by %s %s", self.label, info.id, kind.value, owner_id)
        return info

    async def delete_resource(
        self,
        resource_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> None:
        """Soft-delete a resource with all of its active owners and shares."""
        resource_id = require_id("resource_id", resource_id)
        store = self._store

        async def work(session: AsyncSession) -> tuple[int, int]:
            return await store.soft_delete_resource(session, resource_id, utcnow())

        owners, shares = await self._executor.run_in_transaction(
            work, options or self.config.write, operation=f"delete {self.label}"
        )
        logger.info(
            "Deleted %s %s (%d owner(s), %d share(s))",
            self.label,
            resource_id,
            owners,
            shares,
        )

    async def add_owner(
        self,
        resource_id: str,
        principal_id: str,
        kind: PrincipalKind | str = PrincipalKind.USER,
        *,
        options: TransactionOptions | None = None,
    ) -> OwnerInfo:
        """Make a principal a direct owner, reactivating a removed owner row."""
        resource_id = require_id("resource_id", resource_id)
        principal_id = require_id("principal_id", principal_id)
        kind = _coerce(PrincipalKind, kind, "kind")
        store = self._store

        async def work(session: AsyncSession) -> OwnerInfo:
            now = utcnow()
            await store.require_resource(session, resource_id)
            await store.require_principal(session, principal_id, kind)
            await store.upsert_owner(session, resource_id, principal_id, kind, OwnerSource.DIRECT, now)
            owner = await store.get_owner(session, resource_id, principal_id)
            if owner is None:
                raise ConcurrentModificationError(f"owner {principal_id} on {resource_id} vanished")
            return store.owner_to_info(owner)

        return await self._executor.run_in_transaction(
            work, options or self.config.write, operation=f"add {self.label} owner"
        )

    async def remove_owner(
        self,
        resource_id: str,
        principal_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> None:
        """Remove a principal's active owner row.

        A group that still holds an active share keeps a ``share``-sourced
        row; unshare the group to remove it entirely.
        """
        resource_id = require_id("resource_id", resource_id)
        principal_id = require_id("principal_id", principal_id)
        store = self._store

        async def work(session: AsyncSession) -> None:
            now = utcnow()
            await store.require_resource(session, resource_id)
            owner = await store.get_owner(session, resource_id, principal_id)
            if owner is None:
                raise NotFoundError(f"owner not found: {principal_id} on {resource_id}")
            if owner.principal_kind == PrincipalKind.GROUP.value and await store.has_active_share(
                session, resource_id, principal_id
            ):
                await store.set_owner_source(session, resource_id, principal_id, OwnerSource.SHARE, now)
                logger.debug(
                    "Group %s still shares %s %s; owner row kept as share-sourced",
                    principal_id,
                    self.label,
                    resource_id,
                )
                return
            await store.soft_delete_owner(session, resource_id, principal_id, now)

        await self._executor.run_in_transaction(
            work, options or self.config.write, operation=f"remove {self.label} owner"
        )

    async def list_owners(
        self,
        resource_id: str,
        *,
        options: TransactionOptions | None = None,
    ) -> list[OwnerInfo]:
        """List a resource's active owners, oldest first."""
        resource_id = require_id("resource_id", resource_id)
        store = self._store

        async def work(session: AsyncSession) -> list[OwnerInfo]:
            await store.require_resource(session, resource_id)
            return [store.owner_to_info(o) for o in await store.list_owners(session, [resource_id])]

        return await self._executor.run_in_transaction(
            work, options or self.config.read, operation=f"list {self.label} owners"
        )

    async def list_owned_by(
        self,
        principal_id: str,
        kind: PrincipalKind | str = PrincipalKind.USER,
        *,
        options: TransactionOptions | None = None,
    ) -> list[ResourceInfo]:
        """List active resources a principal actively owns, newest first."""
        principal_id = require_id("principal_id", principal_id)
        kind = _coerce(PrincipalKind, kind, "kind")
        store = self._store

        async def work(session: AsyncSession) -> list[ResourceInfo]:
            resources = await store.list_owned_by(session, principal_id, kind)
            return await self._describe(session, resources, utcnow())

        return await self._executor.run_in_transaction(
            work, options or self.config.read, operation=f"list owned {self.label}s"
        )


def _coerce(enum_type, value, name: str):
    try:
        return enum_type(value)
    except ValueError:
        raise InvalidInputError(f"invalid {name}: {value!r}") from None
