"""ExpirySweeper — periodic background sweep of expired shares."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .config import DEFAULT_SWEEP_INTERVAL
from .exceptions import InvalidInputError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from .sharing import SharingService

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Runs ``sweep_expired`` on each service every *interval* seconds.

    Usable directly (``start``/``stop``) or as an async context manager.
    A failed pass is logged and the loop carries on with the next one;
    cancelling the task ends the loop.
    """

    def __init__(
        self,
        services: Sequence[SharingService],
        interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise InvalidInputError("interval must be positive")
        self._services = list(services)
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.last_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Sweep every service once. Returns the total number of shares removed."""
        total = 0
        for service in self._services:
            total += await service.sweep_expired()
        self.runs += 1
        self.last_count = total
        return total

    def start(self) -> None:
        """Start the loop as a task on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.debug("Expiry sweeper started (interval %.1fs)", self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish.

        Cancelling the caller while it waits still raises ``CancelledError``.
        """
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        logger.debug("Expiry sweeper stopped after %d run(s)", self.runs)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed")
            await asyncio.sleep(self.interval)

    async def __aenter__(self) -> ExpirySweeper:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
