"""Tests for dialect helpers — isolation mapping, timeouts, error classification, upsert."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, ProgrammingError
from sqlmodel import select

from tribeshare.db.dialect import (
    check_dialect,
    error_sqlstate,
    get_dialect,
    is_transient_error,
    is_unique_violation,
    isolation_level_for,
    session_settings,
    upsert,
)
from tribeshare.models import Group


class _DriverError(Exception):
    def __init__(self, message: str, *, sqlstate: str | None = None, pgcode: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.pgcode = pgcode


def wrap(cls, message: str, **codes):
    return cls("SELECT 1", {}, _DriverError(message, **codes))


# ---------------------------------------------------------------------------
# Dialect detection
# ---------------------------------------------------------------------------


class TestDialect:
    async def test_get_dialect_async_engine(self, async_engine):
        assert get_dialect(async_engine) == "sqlite"

    def test_check_dialect(self):
        assert check_dialect("postgresql") == "postgresql"
        with pytest.raises(ValueError, match="Unsupported dialect"):
            check_dialect("mssql")

    def test_isolation_level(self):
        assert isolation_level_for("sqlite", "SERIALIZABLE") is None
        assert isolation_level_for("postgresql", "REPEATABLE READ") == "REPEATABLE READ"

    def test_session_settings_postgres(self):
        assert session_settings("postgresql", 30.0, 5.0) == [
            "SET LOCAL statement_timeout = 30000",
            "SET LOCAL lock_timeout = 5000",
        ]
        assert session_settings("postgresql", None, 0.25) == ["SET LOCAL lock_timeout = 250"]

    def test_session_settings_sqlite(self):
        assert session_settings("sqlite", 30.0, 5.0) == []


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class TestErrorClassification:
    @pytest.mark.parametrize("code", ["40001", "40P01"])
    def test_transient_sqlstates(self, code):
        assert is_transient_error(wrap(DBAPIError, "conflict", sqlstate=code))

    @pytest.mark.parametrize("code", ["55P03", "57014"])
    def test_timeouts_are_not_transient(self, code):
        assert not is_transient_error(wrap(OperationalError, "canceling statement", sqlstate=code))

    def test_psycopg2_pgcode(self):
        exc = wrap(OperationalError, "could not serialize access", pgcode="40001")
        assert error_sqlstate(exc) == "40001"
        assert is_transient_error(exc)

    def test_asyncpg_chained_sqlstate(self):
        inner = _DriverError("deadlock detected", sqlstate="40P01")
        outer = Exception("adapted")
        outer.__cause__ = inner
        exc = DBAPIError("UPDATE", {}, outer)
        assert error_sqlstate(exc) == "40P01"
        assert is_transient_error(exc)

    def test_sqlite_busy(self):
        assert is_transient_error(wrap(OperationalError, "database is locked"))
        assert is_transient_error(wrap(OperationalError, "database table is locked"))

    def test_not_transient(self):
        assert not is_transient_error(wrap(OperationalError, "no such table: lists"))
        assert not is_transient_error(wrap(ProgrammingError, "syntax error", sqlstate="42601"))
        assert not is_transient_error(RuntimeError("database is locked"))

    def test_unique_violation(self):
        assert is_unique_violation(wrap(IntegrityError, "dup", sqlstate="23505"))
        assert is_unique_violation(
            wrap(IntegrityError, "UNIQUE constraint failed: list_shares.resource_id")
        )
        assert not is_unique_violation(wrap(IntegrityError, "FOREIGN KEY constraint failed"))


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


class TestUpsert:
    async def test_insert_then_update(self, session_factory):
        async with session_factory() as session:
            await upsert(session, "sqlite", Group, {"id": "g1", "name": "first"}, ["id"])
            await upsert(session, "sqlite", Group, {"id": "g1", "name": "second"}, ["id"])
            await session.commit()
        async with session_factory() as session:
            names = (await session.execute(select(Group.name))).scalars().all()
        assert names == ["second"]

    async def test_update_exprs_see_existing_row(self, session_factory):
        async with session_factory() as session:
            await upsert(session, "sqlite", Group, {"id": "g1", "name": "a"}, ["id"])
            await upsert(
                session,
                "sqlite",
                Group,
                {"id": "g1", "name": "b"},
                ["id"],
                update_keys=[],
                update_exprs=lambda excluded: {"name": Group.name + excluded.name},
            )
            await session.commit()
        async with session_factory() as session:
            names = (await session.execute(select(Group.name))).scalars().all()
        assert names == ["ab"]

    async def test_do_nothing_without_update_columns(self, session_factory):
        async with session_factory() as session:
            await upsert(session, "sqlite", Group, {"id": "g1", "name": "kept"}, ["id"])
            await upsert(
                session, "sqlite", Group, {"id": "g1", "name": "ignored"}, ["id"], update_keys=[]
            )
            await session.commit()
        async with session_factory() as session:
            names = (await session.execute(select(Group.name))).scalars().all()
        assert names == ["kept"]
