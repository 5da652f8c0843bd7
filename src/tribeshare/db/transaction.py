"""TransactionExecutor — run a unit of work in one store transaction with retries.

The executor is the only place that begins, commits, rolls back, and
retries transactions. Units of work receive a live ``AsyncSession``,
must not commit it themselves, and must be safe to run more than once:
on a serialization failure or deadlock the whole unit is re-run from a
fresh transaction.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tribeshare.exceptions import (
    DuplicateError,
    InvalidInputError,
    SharingError,
    StorageError,
    TransientError,
)

from .dialect import check_dialect, is_transient_error, isolation_level_for, session_settings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STATEMENT_TIMEOUT = 30.0
"""Seconds a single statement may run before the store cancels it."""

DEFAULT_LOCK_TIMEOUT = 5.0
"""Seconds a statement may wait for a row or table lock."""

DEFAULT_MAX_RETRIES = 5


class IsolationLevel(str, Enum):
    """Transaction isolation levels, valued as the SQL keywords."""

    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(frozen=True)
class TransactionOptions:
    """How one unit of work is run. Passed explicitly to every call."""

    isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    """Isolation level the transaction begins at."""

    statement_timeout: float | None = DEFAULT_STATEMENT_TIMEOUT
    """Per-statement timeout in seconds; bounds worst-case lock hold time."""

    lock_timeout: float | None = DEFAULT_LOCK_TIMEOUT
    """Per-statement lock wait in seconds."""

    deadline: float | None = None
    """Overall budget in seconds across all attempts and backoff sleeps."""

    max_retries: int = DEFAULT_MAX_RETRIES
    """Re-runs allowed after the first attempt fails transiently."""

    base_delay: float = 0.05
    """First backoff ceiling in seconds; doubles per retry."""

    max_delay: float = 2.0
    """Upper bound for any single backoff ceiling."""

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise InvalidInputError("max_retries must not be negative")
        if self.base_delay < 0 or self.max_delay < 0:
            raise InvalidInputError("backoff delays must not be negative")
        for name in ("statement_timeout", "lock_timeout", "deadline"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise InvalidInputError(f"{name} must be positive")
        if not isinstance(self.isolation_level, IsolationLevel):
            object.__setattr__(self, "isolation_level", IsolationLevel(self.isolation_level))

    def with_changes(self, **changes: Any) -> TransactionOptions:
        return replace(self, **changes)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Full-jitter exponential backoff for the given zero-based *attempt*."""
    ceiling = min(max_delay, base_delay * (2**attempt))
    return random.uniform(0, ceiling)


class TransactionExecutor:
    """Runs units of work in transactions with retry on transient failures.

    Holds only the session factory and dialect; safe to share across
    concurrent callers. Each attempt gets its own session.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        dialect: str = "sqlite",
        *,
        default_options: TransactionOptions | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.dialect = check_dialect(dialect)
        self.default_options = default_options or TransactionOptions()

    async def run_in_transaction(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        options: TransactionOptions | None = None,
        *,
        operation: str = "transaction",
    ) -> T:
        """Run *work* in a transaction and return its result.

        - Commits when *work* returns; a failed commit counts as a failed attempt.
        - Serialization failures, deadlocks, and ``TransientError`` re-run
          *work* from scratch with jittered backoff, up to ``max_retries``
          times, then raise ``TransientError``.
        - ``SharingError`` subclasses propagate unchanged; other store errors
          are wrapped in ``StorageError`` (``DuplicateError`` for unresolved
          constraint violations).
        - Every failure path rolls back, including cancellation.
        - An expired ``deadline`` raises ``TimeoutError``.
        """
        opts = options or self.default_options
        async with asyncio.timeout(opts.deadline):
            return await self._run_with_retries(work, opts, operation)

    async def _run_with_retries(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        opts: TransactionOptions,
        operation: str,
    ) -> T:
        attempts = opts.max_retries + 1
        failure: BaseException | None = None

        for attempt in range(attempts):
            try:
                return await self._attempt(work, opts)
            except TransientError as e:
                failure = e
            except SharingError:
                raise
            except SQLAlchemyError as e:
                if not is_transient_error(e):
                    if isinstance(e, IntegrityError):
                        raise DuplicateError(f"{operation}: constraint violation: {e.orig}") from e
                    raise StorageError(f"{operation} failed: {e}") from e
                failure = e

            if attempt + 1 < attempts:
                delay = backoff_delay(attempt, opts.base_delay, opts.max_delay)
                logger.warning(
                    "%s: transient failure on attempt %d/%d, retrying in %.3fs: %s",
                    operation,
                    attempt + 1,
                    attempts,
                    delay,
                    failure,
                )
                await asyncio.sleep(delay)

        logger.error("%s: giving up after %d attempts: %s", operation, attempts, failure)
        raise TransientError(f"{operation}: retries exhausted after {attempts} attempts") from failure

    async def _attempt(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        opts: TransactionOptions,
    ) -> T:
        session = self._session_factory()
        try:
            await self._begin(session, opts)
            result = await work(session)
            await session.commit()
            return result
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def _begin(self, session: AsyncSession, opts: TransactionOptions) -> None:
        level = isolation_level_for(self.dialect, opts.isolation_level.value)
        execution_options = {"isolation_level": level} if level else {}
        await session.connection(execution_options=execution_options)
        for statement in session_settings(self.dialect, opts.statement_timeout, opts.lock_timeout):
            await session.execute(text(statement))
