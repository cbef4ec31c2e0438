"""
Tests for RetryController backoff/scheduling and RequestGate.
"""

import asyncio

import pytest

from parley.errors import ErrorKind, SessionError
from parley.gate import RequestGate
from parley.retry import RetryController


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("attempt, expected", [
    (0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0), (5, 30.0), (10, 30.0),
])
def test_delay_for(attempt, expected):
    assert RetryController().delay_for(attempt) == expected


def test_delay_respects_custom_bounds():
    rc = RetryController(base_delay=0.5, max_delay=3.0)
    assert [rc.delay_for(n) for n in range(4)] == [0.5, 1.0, 2.0, 3.0]


def test_should_retry():
    assert RetryController.should_retry(0, 3)
    assert RetryController.should_retry(2, 3)
    assert not RetryController.should_retry(3, 3)
    assert not RetryController.should_retry(0, 0)


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_schedule_runs_callback_after_delay(fake_sleep):
    rc = RetryController(sleep=fake_sleep)
    fired = []

    async def callback():
        fired.append(True)

    assert rc.schedule(2, callback) == 4.0
    assert rc.pending
    await rc.wait()

    assert fired == [True]
    assert fake_sleep.delays == [4.0]
    assert not rc.pending


@pytest.mark.asyncio
async def test_cancel_prevents_callback(never_sleep):
    rc = RetryController(sleep=never_sleep)
    fired = []

    async def callback():
        fired.append(True)

    rc.schedule(0, callback)
    await asyncio.sleep(0)
    assert rc.cancel() is True
    assert rc.cancel() is False
    await rc.wait()
    assert fired == []


@pytest.mark.asyncio
async def test_schedule_replaces_pending(fake_sleep):
    rc = RetryController(sleep=fake_sleep)
    fired = []

    async def first():
        fired.append("first")

    async def second():
        fired.append("second")

    rc.schedule(0, first)
    rc.schedule(1, second)
    await rc.wait()
    assert fired == ["second"]


@pytest.mark.asyncio
async def test_wait_follows_chained_retries(fake_sleep):
    rc = RetryController(sleep=fake_sleep)
    fired = []

    async def callback():
        fired.append(len(fired))
        if len(fired) < 3:
            rc.schedule(len(fired), callback)

    rc.schedule(0, callback)
    await rc.wait()
    assert fired == [0, 1, 2]
    assert fake_sleep.delays == [1.0, 2.0, 4.0]


# ---------------------------------------------------------------------------
# RequestGate
# ---------------------------------------------------------------------------

def test_gate_single_holder():
    gate = RequestGate()
    assert gate.try_acquire()
    assert gate.held
    assert not gate.try_acquire()
    gate.release()
    assert not gate.held
    assert gate.try_acquire()


def test_gate_hold_releases_on_error():
    gate = RequestGate()
    with pytest.raises(RuntimeError):
        with gate.hold():
            assert gate.held
            raise RuntimeError("boom")
    assert not gate.held


def test_gate_hold_when_busy():
    gate = RequestGate()
    gate.try_acquire()
    with pytest.raises(SessionError) as exc:
        with gate.hold():
            pass
    assert exc.value.kind is ErrorKind.SESSION_BUSY
    # The original holder still has it
    assert gate.held


@pytest.mark.asyncio
async def test_gate_wait_released():
    gate = RequestGate()
    gate.try_acquire()
    waiter = asyncio.create_task(gate.wait_released())
    await asyncio.sleep(0)
    assert not waiter.done()
    gate.release()
    await asyncio.wait_for(waiter, timeout=1)
