"""
Retry scheduling with exponential backoff.

The controller only decides and waits; it never calls the provider itself.
A scheduled retry is an asyncio task that sleeps for delay_for(attempt) and
then runs the callback it was given. At most one retry is pending at a time;
scheduling a new one or calling cancel() drops the previous timer.

    delay_for(n) = min(base_delay * 2**n, max_delay)    # 1s, 2s, 4s ... 30s
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RetryController:

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._pending: asyncio.Task | None = None

    @staticmethod
    def should_retry(attempt_count: int, max_retries: int) -> bool:
        return attempt_count < max_retries

    def delay_for(self, attempt_count: int) -> float:
        """Backoff in seconds before retry number attempt_count + 1."""
        delay = self.base_delay * (2 ** attempt_count)
        return min(delay, self.max_delay)

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def schedule(self, attempt_count: int, callback: Callable[[], Awaitable[None]]) -> float:
        """Run callback after the backoff for attempt_count. Returns the delay."""
        self.cancel()
        delay = self.delay_for(attempt_count)
        self._pending = asyncio.get_running_loop().create_task(self._fire(delay, callback))
        logger.debug("Retry scheduled in %.1fs (attempt %d)", delay, attempt_count + 1)
        return delay

    async def _fire(self, delay: float, callback: Callable[[], Awaitable[None]]):
        await self._sleep(delay)
        # Detach first: the callback may schedule the next retry
        self._pending = None
        await callback()

    def cancel(self) -> bool:
        """Drop a pending retry. Returns True if one was waiting."""
        task, self._pending = self._pending, None
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("Pending retry cancelled")
        return True

    async def wait(self):
        """Wait until no retry is pending (including chained ones)."""
        while self._pending is not None:
            task = self._pending
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            if self._pending is task:
                self._pending = None
