"""Tests for the background TurnQueue."""

from __future__ import annotations

import asyncio

import pytest

from chatloop.conversation.queue import TurnQueue


async def test_jobs_run_in_order():
    queue = TurnQueue()
    order = []

    def job(n):
        async def _run():
            await asyncio.sleep(0)
            order.append(n)
            return n
        return _run

    futures = [queue.submit(job(i)) for i in range(3)]
    assert await asyncio.gather(*futures) == [0, 1, 2]
    assert order == [0, 1, 2]
    await queue.stop()
    assert not queue.running


async def test_failure_propagates_to_future_and_worker_survives():
    queue = TurnQueue()

    async def bad():
        raise RuntimeError("nope")

    async def good():
        return "fine"

    failed = queue.submit(bad)
    ok = queue.submit(good)
    with pytest.raises(RuntimeError):
        await failed
    assert await ok == "fine"
    await queue.stop()


async def test_concurrency_runs_jobs_in_parallel():
    queue = TurnQueue(concurrency=2)
    gate = asyncio.Event()
    started = []

    async def waiter():
        started.append(1)
        await gate.wait()

    futures = [queue.submit(waiter), queue.submit(waiter)]
    for _ in range(10):
        if len(started) == 2:
            break
        await asyncio.sleep(0)
    assert len(started) == 2
    gate.set()
    await asyncio.gather(*futures)
    await queue.stop()
