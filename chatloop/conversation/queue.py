"""Background execution of turns on an asyncio worker pool."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class TurnQueue:
    """
    FIFO of turn jobs drained by *concurrency* worker tasks.

    ``submit`` returns immediately with a future; callers that do not care
    about the outcome observe it through persisted conversation state.
    """

    def __init__(self, concurrency: int = 1) -> None:
        self.concurrency = concurrency
        self._queue: asyncio.Queue[tuple[Job, asyncio.Future]] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"turn-worker-{i}")
            for i in range(self.concurrency)
        ]

    def submit(self, job: Job) -> asyncio.Future:
        if not self._workers:
            self.start()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((job, future))
        return future

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        """Wait for queued jobs, then cancel the workers."""
        await self._queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def _worker(self, index: int) -> None:
        while True:
            job, future = await self._queue.get()
            try:
                result = await job()
            except Exception as exc:
                logger.exception("Background turn failed in worker %d", index)
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()
