"""
RequestGate — at most one in-flight generation call per session.

try_acquire() never blocks or queues: a second caller is told no. Use
hold() for scoped acquisition so every exit path releases.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from parley.errors import ErrorKind, SessionError

logger = logging.getLogger(__name__)


class RequestGate:

    def __init__(self):
        self._held = False
        self._released = asyncio.Event()
        self._released.set()

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        self._released.clear()
        return True

    def release(self):
        if not self._held:
            logger.debug("release() on a gate that is not held")
        self._held = False
        self._released.set()

    async def wait_released(self):
        await self._released.wait()

    @contextlib.contextmanager
    def hold(self):
        """Acquire for the duration of a block; raise SESSION_BUSY if taken."""
        if not self.try_acquire():
            raise SessionError(
                ErrorKind.SESSION_BUSY,
                "A request is already in progress. Please wait for it to complete before sending another.",
            )
        try:
            yield self
        finally:
            self.release()
