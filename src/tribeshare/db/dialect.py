"""Dialect-aware SQL helpers — upsert, isolation levels, error classification."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

SUPPORTED_DIALECTS = ("sqlite", "postgresql")

# https://www.postgresql.org/docs/current/errcodes-appendix.html
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
UNIQUE_VIOLATION = "23505"

TRANSIENT_SQLSTATES = frozenset({SERIALIZATION_FAILURE, DEADLOCK_DETECTED})

_SQLITE_BUSY_MESSAGES = ("database is locked", "database table is locked")


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', or the raw dialect name."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name == "sqlite":
        return "sqlite"
    if name in ("postgresql", "postgres"):
        return "postgresql"
    return name


def check_dialect(dialect: str) -> str:
    if dialect not in SUPPORTED_DIALECTS:
        raise ValueError(
            f"Unsupported dialect: {dialect!r}. Must be one of {', '.join(SUPPORTED_DIALECTS)}."
        )
    return dialect


# ---------------------------------------------------------------------------
# Transaction settings
# ---------------------------------------------------------------------------


def isolation_level_for(dialect: str, level: str) -> str | None:
    """Map a requested isolation level to what the driver accepts.

    SQLite transactions are always serializable and its drivers reject
    ``READ COMMITTED`` / ``REPEATABLE READ``, so no level is set there.
    """
    if dialect == "sqlite":
        return None
    return level


def session_settings(
    dialect: str,
    statement_timeout: float | None,
    lock_timeout: float | None,
) -> list[str]:
    """Return transaction-local ``SET`` statements for the timeouts.

    Only PostgreSQL supports per-transaction timeouts; other dialects
    get an empty list.
    """
    if dialect != "postgresql":
        return []
    statements = []
    if statement_timeout is not None:
        statements.append(f"SET LOCAL statement_timeout = {int(statement_timeout * 1000)}")
    if lock_timeout is not None:
        statements.append(f"SET LOCAL lock_timeout = {int(lock_timeout * 1000)}")
    return statements


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def error_sqlstate(exc: BaseException) -> str | None:
    """Extract the SQLSTATE code from a wrapped DBAPI error, if any.

    psycopg exposes ``sqlstate``, psycopg2 ``pgcode``; the asyncpg adapter
    copies ``sqlstate`` onto its own exception and chains the original.
    """
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def is_transient_error(exc: BaseException) -> bool:
    """True for serialization failures, deadlocks, and SQLite busy errors.

    Lock timeouts (``55P03``) and statement timeouts (``57014``) are not
    transient and surface as ``StorageError``.
    """
    if not isinstance(exc, DBAPIError):
        return False
    if error_sqlstate(exc) in TRANSIENT_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig).lower()
        return any(m in message for m in _SQLITE_BUSY_MESSAGES)
    return False


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when *exc* comes from a unique constraint or unique index."""
    if error_sqlstate(exc) == UNIQUE_VIOLATION:
        return True
    return "unique constraint failed" in str(exc.orig).lower()


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


async def upsert(
    session: AsyncSession,
    dialect: str,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    update_keys: list[str] | None = None,
    update_exprs: Callable[[Any], dict[str, Any]] | None = None,
) -> int:
    """Dialect-aware single-statement upsert. Returns rowcount.

    Uses ``INSERT ... ON CONFLICT DO UPDATE`` on both SQLite and
    PostgreSQL. Columns in *update_keys* (default: every non-conflict
    column in *values*) are overwritten from the proposed row;
    *update_exprs* receives the ``excluded`` namespace and returns extra
    SET expressions that may reference both the existing and proposed row.
    """
    check_dialect(dialect)
    from sqlalchemy.dialects import sqlite as sqlite_dialect

    dialect_module: Any = sqlite_dialect
    if dialect == "postgresql":
        from sqlalchemy.dialects import postgresql as pg_dialect

        dialect_module = pg_dialect

    stmt = dialect_module.insert(model).values(**values)

    if update_keys is not None:
        update_cols = {k: v for k, v in values.items() if k in update_keys}
    else:
        update_cols = {k: v for k, v in values.items() if k not in conflict_keys}
    if update_exprs is not None:
        update_cols.update(update_exprs(stmt.excluded))

    if update_cols:
        stmt = stmt.on_conflict_do_update(index_elements=conflict_keys, set_=update_cols)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_keys)

    result = await session.execute(stmt)
    return result.rowcount  # type: ignore[return-value]
