"""
Shared fixtures: an in-process scripted backend and a fake sleep.
No network access in any test.
"""

import asyncio

import pytest

from parley.backends.base import BaseBackend

# Script item: stop here until backend.unblock is set
PAUSE = object()


class ScriptedBackend(BaseBackend):
    """
    Plays back scripted replies. Each script is a list of fragments;
    an exception instance in a script is raised at that point, PAUSE blocks.
    Scripts are consumed in order; the last one repeats.
    """

    def __init__(self, *scripts, api_key: str = "test-key"):
        super().__init__(name="scripted", url="http://fake", model="fake-model", api_key=api_key)
        self.scripts = [list(s) for s in scripts] or [[]]
        self.requests = []
        self.reached = asyncio.Event()
        self.unblock = asyncio.Event()

    async def stream(self, request):
        self.requests.append(request)
        script = self.scripts.pop(0) if len(self.scripts) > 1 else self.scripts[0]
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if item is PAUSE:
                self.reached.set()
                await self.unblock.wait()
                continue
            yield item

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def fake_sleep():
    """Records requested delays and yields to the loop instead of waiting."""
    real_sleep = asyncio.sleep
    delays = []

    async def sleep(delay):
        delays.append(delay)
        await real_sleep(0)

    sleep.delays = delays
    return sleep


@pytest.fixture
def never_sleep():
    """A sleep that only ends when cancelled."""
    async def sleep(delay):
        await asyncio.Event().wait()
    return sleep
