"""ShareStore — owner and share persistence primitives.

Stateless: receives the concrete models at construction and a session at
call time. Never begins, commits, or retries a transaction; it only
flushes. Callers run it inside ``TransactionExecutor.run_in_transaction``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import and_, case, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from tribeshare.db.dialect import check_dialect, is_unique_violation, upsert
from tribeshare.exceptions import ConcurrentModificationError, NotFoundError
from tribeshare.models.base import active_clause
from tribeshare.models.enums import OwnerSource, PrincipalKind
from tribeshare.models.shares import visible_clause
from tribeshare.types import GroupInfo, OwnerInfo, ResourceInfo, ShareInfo
from tribeshare.utils import ensure_utc, new_id

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from tribeshare.models.owners import OwnerBase
    from tribeshare.models.principals import PrincipalBase
    from tribeshare.models.resources import ResourceBase
    from tribeshare.models.shares import ShareBase

logger = logging.getLogger(__name__)


class ShareStore:
    """Transactional CRUD over one resource kind's resource, owner, and share tables.

    Missing rows raise ``NotFoundError``. Guarded writes that match no row
    because of a concurrent change raise ``ConcurrentModificationError``
    so the executor re-runs the unit of work.
    """

    def __init__(
        self,
        resource_model: type[ResourceBase],
        owner_model: type[OwnerBase],
        share_model: type[ShareBase],
        *,
        dialect: str = "sqlite",
        user_model: type[PrincipalBase] | None = None,
        group_model: type[PrincipalBase] | None = None,
    ) -> None:
        from tribeshare.models.principals import Group, User

        self.dialect = check_dialect(dialect)
        self._resource_model = resource_model
        self._owner_model = owner_model
        self._share_model = share_model
        self._user_model: type[PrincipalBase] = user_model or User
        self._group_model: type[PrincipalBase] = group_model or Group

    @property
    def resource_model(self) -> type[ResourceBase]:
        return self._resource_model

    @property
    def owner_model(self) -> type[OwnerBase]:
        return self._owner_model

    @property
    def share_model(self) -> type[ShareBase]:
        return self._share_model

    # ------------------------------------------------------------------
    # Existence checks
    # ------------------------------------------------------------------

    async def get_resource(
        self,
        session: AsyncSession,
        resource_id: str,
        include_deleted: bool = False,
    ) -> ResourceBase | None:
        model = self._resource_model
        query = select(model).where(model.id == resource_id)
        if not include_deleted:
            query = query.where(active_clause(model))
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def require_resource(self, session: AsyncSession, resource_id: str) -> ResourceBase:
        resource = await self.get_resource(session, resource_id)
        if resource is None:
            raise NotFoundError(f"{self._resource_model.__tablename__} not found: {resource_id}")
        return resource

    async def require_group(self, session: AsyncSession, group_id: str) -> PrincipalBase:
        return await self._require_active(session, self._group_model, group_id, "group")

    async def require_user(self, session: AsyncSession, user_id: str) -> PrincipalBase:
        return await self._require_active(session, self._user_model, user_id, "user")

    async def require_principal(
        self,
        session: AsyncSession,
        principal_id: str,
        kind: PrincipalKind,
    ) -> PrincipalBase:
        if kind == PrincipalKind.GROUP:
            return await self.require_group(session, principal_id)
        return await self.require_user(session, principal_id)

    async def _require_active(
        self,
        session: AsyncSession,
        model: type[PrincipalBase],
        row_id: str,
        label: str,
    ) -> PrincipalBase:
        result = await session.execute(
            select(model).where(model.id == row_id, active_clause(model))
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"{label} not found: {row_id}")
        return row

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def insert_resource(
        self,
        session: AsyncSession,
        *,
        name: str,
        description: str,
        visibility: str,
        now: datetime,
    ) -> ResourceBase:
        resource = self._resource_model(
            id=new_id(),
            name=name,
            description=description,
            visibility=visibility,
            created_at=now,
            updated_at=now,
        )
        session.add(resource)
        await session.flush()
        return resource

    async def soft_delete_resource(
        self,
        session: AsyncSession,
        resource_id: str,
        now: datetime,
    ) -> tuple[int, int]:
        """Soft-delete a resource and cascade to its active owners and shares.

        Returns ``(owners_removed, shares_removed)``. Share versions are bumped.
        """
        model = self._resource_model
        result = await session.execute(
            update(model)
            .where(model.id == resource_id, active_clause(model))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"{model.__tablename__} not found: {resource_id}")

        owner = self._owner_model
        owners = await session.execute(
            update(owner)
            .where(owner.resource_id == resource_id, active_clause(owner))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        share = self._share_model
        shares = await session.execute(
            update(share)
            .where(share.resource_id == resource_id, active_clause(share))
            .values(deleted_at=now, updated_at=now, version=share.version + 1)
            .execution_options(synchronize_session=False)
        )
        return owners.rowcount, shares.rowcount

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    async def upsert_owner(
        self,
        session: AsyncSession,
        resource_id: str,
        principal_id: str,
        kind: PrincipalKind,
        source: OwnerSource,
        now: datetime,
    ) -> int:
        """Insert or reactivate the owner row for the pair in one statement.

        An active ``direct`` row stays ``direct``; otherwise the row takes
        the proposed *source*.
        """
        model = self._owner_model
        values = {
            "id": new_id(),
            "resource_id": resource_id,
            "principal_id": principal_id,
            "principal_kind": kind.value,
            "source": source.value,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }

        def keep_direct(excluded):
            still_direct = and_(
                model.deleted_at.is_(None),  # type: ignore[union-attr]
                model.source == OwnerSource.DIRECT.value,
            )
            return {"source": case((still_direct, OwnerSource.DIRECT.value), else_=excluded.source)}

        return await upsert(
            session,
            self.dialect,
            model,
            values,
            conflict_keys=["resource_id", "principal_id"],
            update_keys=["principal_kind", "updated_at", "deleted_at"],
            update_exprs=keep_direct,
        )

    async def get_owner(
        self,
        session: AsyncSession,
        resource_id: str,
        principal_id: str,
    ) -> OwnerBase | None:
        """Get the active owner row for the pair."""
        model = self._owner_model
        result = await session.execute(
            select(model)
            .where(
                model.resource_id == resource_id,
                model.principal_id == principal_id,
                active_clause(model),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_owner_source(
        self,
        session: AsyncSession,
        resource_id: str,
        principal_id: str,
        source: OwnerSource,
        now: datetime,
    ) -> bool:
        model = self._owner_model
        result = await session.execute(
            update(model)
            .where(
                model.resource_id == resource_id,
                model.principal_id == principal_id,
                active_clause(model),
            )
            .values(source=source.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def soft_delete_owner(
        self,
        session: AsyncSession,
        resource_id: str,
        principal_id: str,
        now: datetime,
        *,
        source: OwnerSource | None = None,
        missing_ok: bool = False,
    ) -> bool:
        """Soft-delete the active owner row for the pair.

        With *source*, only a row of that source is removed. Returns True if
        a row was removed; raises ``NotFoundError`` when none was and
        *missing_ok* is False.
        """
        model = self._owner_model
        conditions = [
            model.resource_id == resource_id,
            model.principal_id == principal_id,
            active_clause(model),
        ]
        if source is not None:
            conditions.append(model.source == source.value)
        result = await session.execute(
            update(model)
            .where(*conditions)
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if missing_ok:
                return False
            raise NotFoundError(f"owner not found: {principal_id} on {resource_id}")
        return True

    async def list_owners(
        self,
        session: AsyncSession,
        resource_ids: list[str],
    ) -> list[OwnerBase]:
        """List active owners of the given resources, oldest first."""
        if not resource_ids:
            return []
        model = self._owner_model
        result = await session.execute(
            select(model)
            .where(
                model.resource_id.in_(resource_ids),  # type: ignore[union-attr]
                active_clause(model),
            )
            .order_by(model.created_at.asc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def list_owned_by(
        self,
        session: AsyncSession,
        principal_id: str,
        kind: PrincipalKind,
    ) -> list[ResourceBase]:
        """List active resources *principal_id* actively owns, newest first."""
        resource = self._resource_model
        owner = self._owner_model
        result = await session.execute(
            select(resource)
            .join(owner, owner.resource_id == resource.id)
            .where(
                owner.principal_id == principal_id,
                owner.principal_kind == kind.value,
                active_clause(owner),
                active_clause(resource),
            )
            .order_by(resource.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def get_active_share(
        self,
        session: AsyncSession,
        resource_id: str,
        group_id: str,
        *,
        lock: bool = False,
    ) -> ShareBase | None:
        """Get the active (not soft-deleted) share for the pair, expired or not.

        With *lock*, the row is selected ``FOR UPDATE`` where the dialect
        supports it.
        """
        model = self._share_model
        query = (
            select(model)
            .where(
                model.resource_id == resource_id,
                model.group_id == group_id,
                active_clause(model),
            )
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def has_active_share(
        self,
        session: AsyncSession,
        resource_id: str,
        group_id: str,
    ) -> bool:
        model = self._share_model
        result = await session.execute(
            select(model.id).where(
                model.resource_id == resource_id,
                model.group_id == group_id,
                active_clause(model),
            )
        )
        return result.first() is not None

    async def insert_share(
        self,
        session: AsyncSession,
        resource_id: str,
        group_id: str,
        granted_by: str,
        expires_at: datetime | None,
        now: datetime,
    ) -> ShareBase:
        """Insert a new active share at version 1. Flushes but does not commit."""
        share = self._share_model(
            id=new_id(),
            resource_id=resource_id,
            group_id=group_id,
            granted_by=granted_by,
            expires_at=expires_at,
            version=1,
            created_at=now,
            updated_at=now,
        )
        session.add(share)
        try:
            await session.flush()
        except IntegrityError as e:
            if is_unique_violation(e):
                raise ConcurrentModificationError(
                    f"active share for {resource_id} and group {group_id} was created concurrently"
                ) from e
            raise
        return share

    async def update_share(
        self,
        session: AsyncSession,
        share: ShareBase,
        *,
        granted_by: str,
        expires_at: datetime | None,
        now: datetime,
    ) -> ShareBase:
        """Update an active share in place and bump its version by one.

        The write is guarded on the version read earlier in the transaction.
        """
        model = self._share_model
        result = await session.execute(
            update(model)
            .where(
                model.id == share.id,
                model.version == share.version,
                active_clause(model),
            )
            .values(
                granted_by=granted_by,
                expires_at=expires_at,
                updated_at=now,
                version=model.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                f"share {share.id} changed since version {share.version}"
            )
        await session.refresh(share)
        return share

    async def soft_delete_share(
        self,
        session: AsyncSession,
        share: ShareBase,
        now: datetime,
        *,
        expired_by: datetime | None = None,
    ) -> bool:
        """Soft-delete an active share and bump its version by one.

        Guarded on the version read earlier in the transaction; with
        *expired_by*, also on the share having expired by then. Returns
        False when the guard matched nothing.
        """
        model = self._share_model
        conditions = [
            model.id == share.id,
            model.version == share.version,
            active_clause(model),
        ]
        if expired_by is not None:
            conditions.append(model.expires_at.is_not(None))  # type: ignore[union-attr]
            conditions.append(model.expires_at <= expired_by)  # type: ignore[operator]
        result = await session.execute(
            update(model)
            .where(*conditions)
            .values(deleted_at=now, updated_at=now, version=model.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_shares(
        self,
        session: AsyncSession,
        now: datetime,
        *,
        resource_ids: list[str] | None = None,
        group_id: str | None = None,
    ) -> list[tuple[ShareBase, str, str]]:
        """List visible shares with resource and group names, newest first.

        Filters by *resource_ids* and/or *group_id*. Shares of deleted
        resources or deleted groups are excluded.
        """
        share = self._share_model
        resource = self._resource_model
        group = self._group_model
        query = (
            select(share, resource.name, group.name)
            .join(resource, resource.id == share.resource_id)
            .join(group, group.id == share.group_id)
            .where(
                visible_clause(share, now),
                active_clause(resource),
                active_clause(group),
            )
            .order_by(share.created_at.desc())  # type: ignore[union-attr]
        )
        if resource_ids is not None:
            if not resource_ids:
                return []
            query = query.where(share.resource_id.in_(resource_ids))  # type: ignore[union-attr]
        if group_id is not None:
            query = query.where(share.group_id == group_id)
        result = await session.execute(query)
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def list_resources_shared_with(
        self,
        session: AsyncSession,
        group_id: str,
        now: datetime,
    ) -> list[ResourceBase]:
        """List active resources with a visible share to *group_id*, newest first."""
        resource = self._resource_model
        share = self._share_model
        result = await session.execute(
            select(resource)
            .join(share, share.resource_id == resource.id)
            .where(
                share.group_id == group_id,
                visible_clause(share, now),
                active_clause(resource),
            )
            .distinct()
            .order_by(resource.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def list_groups_shared_with(
        self,
        session: AsyncSession,
        resource_id: str,
        now: datetime,
    ) -> list[PrincipalBase]:
        """List active groups a resource is visibly shared with, newest first."""
        group = self._group_model
        share = self._share_model
        result = await session.execute(
            select(group)
            .join(share, share.group_id == group.id)
            .where(
                share.resource_id == resource_id,
                visible_clause(share, now),
                active_clause(group),
            )
            .distinct()
            .order_by(group.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def select_expired_shares(
        self,
        session: AsyncSession,
        now: datetime,
    ) -> list[ShareBase]:
        """Select active shares whose expiry is at or before *now*, locking them.

        On PostgreSQL rows locked by a concurrent transaction are skipped;
        the next sweep picks them up.
        """
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(
                active_clause(model),
                model.expires_at.is_not(None),  # type: ignore[union-attr]
                model.expires_at <= now,  # type: ignore[operator]
            )
            .order_by(model.expires_at.asc())  # type: ignore[union-attr]
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def share_to_info(share: ShareBase, resource_name: str = "", group_name: str = "") -> ShareInfo:
        return ShareInfo(
            id=share.id,
            resource_id=share.resource_id,
            group_id=share.group_id,
            granted_by=share.granted_by,
            version=share.version,
            resource_name=resource_name,
            group_name=group_name,
            created_at=_utc_or_none(share.created_at),
            updated_at=_utc_or_none(share.updated_at),
            expires_at=_utc_or_none(share.expires_at),
            deleted_at=_utc_or_none(share.deleted_at),
        )

    @staticmethod
    def owner_to_info(owner: OwnerBase) -> OwnerInfo:
        return OwnerInfo(
            resource_id=owner.resource_id,
            principal_id=owner.principal_id,
            principal_kind=owner.principal_kind,
            source=owner.source,
            created_at=_utc_or_none(owner.created_at),
            updated_at=_utc_or_none(owner.updated_at),
        )

    @staticmethod
    def group_to_info(group: PrincipalBase) -> GroupInfo:
        return GroupInfo(id=group.id, name=group.name, created_at=_utc_or_none(group.created_at))

    @staticmethod
    def resource_to_info(
        resource: ResourceBase,
        owners: list[OwnerInfo] | None = None,
        shares: list[ShareInfo] | None = None,
    ) -> ResourceInfo:
        return ResourceInfo(
            id=resource.id,
            name=resource.name,
            description=resource.description,
            visibility=resource.visibility,
            created_at=_utc_or_none(resource.created_at),
            updated_at=_utc_or_none(resource.updated_at),
            owners=owners or [],
            shares=shares or [],
        )


def _utc_or_none(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None
