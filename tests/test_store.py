"""Tests for ShareStore — guarded writes, owner upsert, and conversions."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlmodel import select

from tribeshare import ConcurrentModificationError, NotFoundError, OwnerSource, PrincipalKind
from tribeshare.models import ListOwner, ListShare, SharedList
from tribeshare.store import ShareStore
from tribeshare.utils import utcnow


@pytest.fixture
def store() -> ShareStore:
    return ShareStore(SharedList, ListOwner, ListShare)


@pytest.fixture
async def resource_id(store: ShareStore, session_factory, principals) -> str:
    async with session_factory() as session:
        resource = await store.insert_resource(
            session, name="Packing", description="", visibility="private", now=utcnow()
        )
        await session.commit()
        return resource.id


# ---------------------------------------------------------------------------
# Existence checks
# ---------------------------------------------------------------------------


class TestRequire:
    async def test_require_resource(self, store, session_factory, resource_id):
        async with session_factory() as session:
            resource = await store.require_resource(session, resource_id)
            assert resource.name == "Packing"
            with pytest.raises(NotFoundError):
                await store.require_resource(session, "missing")

    async def test_require_principals(self, store, session_factory, principals):
        async with session_factory() as session:
            assert (await store.require_user(session, "u1")).name == "Alice"
            assert (await store.require_group(session, "g2")).name == "Runners"
            with pytest.raises(NotFoundError, match="group"):
                await store.require_principal(session, "u1", PrincipalKind.GROUP)

    async def test_soft_deleted_resource_is_absent(self, store, session_factory, resource_id):
        async with session_factory() as session:
            await store.soft_delete_resource(session, resource_id, utcnow())
            await session.commit()
        async with session_factory() as session:
            assert await store.get_resource(session, resource_id) is None
            deleted = await store.get_resource(session, resource_id, include_deleted=True)
            assert deleted is not None
            assert deleted.state.value == "deleted"

    async def test_unsupported_dialect(self):
        with pytest.raises(ValueError):
            ShareStore(SharedList, ListOwner, ListShare, dialect="oracle")


# ---------------------------------------------------------------------------
# Owner upsert
# ---------------------------------------------------------------------------


class TestUpsertOwner:
    async def owner_rows(self, session_factory, resource_id: str) -> list[ListOwner]:
        async with session_factory() as session:
            result = await session.execute(
                select(ListOwner).where(ListOwner.resource_id == resource_id)
            )
            return list(result.scalars().all())

    async def test_direct_wins_over_share(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            await store.upsert_owner(
                session, resource_id, "g1", PrincipalKind.GROUP, OwnerSource.DIRECT, now
            )
            await store.upsert_owner(
                session, resource_id, "g1", PrincipalKind.GROUP, OwnerSource.SHARE, now
            )
            await session.commit()
        [row] = await self.owner_rows(session_factory, resource_id)
        assert row.source == "direct"

    async def test_reactivates_single_row(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            await store.upsert_owner(
                session, resource_id, "g1", PrincipalKind.GROUP, OwnerSource.DIRECT, now
            )
            await store.soft_delete_owner(session, resource_id, "g1", now)
            await store.upsert_owner(
                session, resource_id, "g1", PrincipalKind.GROUP, OwnerSource.SHARE, now
            )
            await session.commit()
        [row] = await self.owner_rows(session_factory, resource_id)
        assert row.deleted_at is None
        assert row.source == "share"

    async def test_soft_delete_by_source(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            await store.upsert_owner(
                session, resource_id, "g1", PrincipalKind.GROUP, OwnerSource.DIRECT, now
            )
            removed = await store.soft_delete_owner(
                session, resource_id, "g1", now, source=OwnerSource.SHARE, missing_ok=True
            )
            assert removed is False
            assert await store.get_owner(session, resource_id, "g1") is not None
            with pytest.raises(NotFoundError):
                await store.soft_delete_owner(session, resource_id, "g2", now)


# ---------------------------------------------------------------------------
# Guarded share writes
# ---------------------------------------------------------------------------


class TestShareWrites:
    async def test_insert_duplicate_active_share(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            await store.insert_share(session, resource_id, "g1", "u1", None, now)
            with pytest.raises(ConcurrentModificationError):
                await store.insert_share(session, resource_id, "g1", "u2", None, now)

    async def test_update_bumps_version(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            share = await store.insert_share(session, resource_id, "g1", "u1", None, now)
            updated = await store.update_share(
                session, share, granted_by="u2", expires_at=None, now=now
            )
            assert updated.version == 2
            assert updated.granted_by == "u2"

    async def test_update_with_stale_version(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            share = await store.insert_share(session, resource_id, "g1", "u1", None, now)
            stale = ListShare(id=share.id, resource_id=resource_id, group_id="g1", version=5)
            with pytest.raises(ConcurrentModificationError, match="version 5"):
                await store.update_share(session, stale, granted_by="u1", expires_at=None, now=now)

    async def test_soft_delete_guards_on_expiry(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            share = await store.insert_share(
                session, resource_id, "g1", "u1", now + timedelta(hours=1), now
            )
            assert await store.soft_delete_share(session, share, now, expired_by=now) is False
            assert await store.has_active_share(session, resource_id, "g1") is True
            assert await store.soft_delete_share(session, share, now) is True
            assert await store.has_active_share(session, resource_id, "g1") is False

    async def test_select_expired(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            await store.insert_share(session, resource_id, "g1", "u1", now - timedelta(seconds=1), now)
            await store.insert_share(session, resource_id, "g2", "u1", now + timedelta(hours=1), now)
            expired = await store.select_expired_shares(session, now)
            assert [s.group_id for s in expired] == ["g1"]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


class TestConversion:
    async def test_share_to_info_is_utc(self, store, session_factory, resource_id):
        async with session_factory() as session:
            now = utcnow()
            await store.insert_share(session, resource_id, "g1", "u1", now + timedelta(hours=1), now)
            await session.commit()
        async with session_factory() as session:
            [(share, rname, gname)] = await store.list_shares(session, utcnow())
            info = store.share_to_info(share, rname, gname)
        assert info.resource_name == "Packing"
        assert info.group_name == "Climbers"
        assert info.created_at.tzinfo is not None
        assert info.expires_at.utcoffset() == timedelta(0)
        assert info.visible is True
