"""
Bounded pool of concurrently running asyncio tasks.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 10


class BoundedTaskPool:
    """
    Runs coroutines with at most `max_parallel` in flight.

    `submit` waits for a free permit before spawning the task, so the caller
    is held back instead of queueing an unbounded number of tasks. The permit
    is released when the task ends, whatever the outcome. A failing task is
    logged and counted; it never cancels its siblings.

    Usage:
        async with BoundedTaskPool(10) as pool:
            for item in items:
                await pool.submit(work, item)
        # every task has finished here
    """

    def __init__(self, max_parallel: int = DEFAULT_MAX_PARALLEL, name: str = "pool"):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")
        self.max_parallel = max_parallel
        self.name = name
        self._semaphore = asyncio.Semaphore(max_parallel)
        self._tasks: Set[asyncio.Task] = set()
        self.in_flight = 0
        self.peak_in_flight = 0
        self.submitted = 0
        self.crashed = 0

    async def submit(self, func: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        await self._semaphore.acquire()
        try:
            task = asyncio.create_task(self._run(func, *args))
        except BaseException:
            self._semaphore.release()
            raise
        self.submitted += 1
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            return await func(*args)
        except Exception:
            self.crashed += 1
            logger.exception(f"Unhandled error in {self.name} task")
            return None
        finally:
            self.in_flight -= 1
            self._semaphore.release()

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def __aenter__(self) -> "BoundedTaskPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            return
        await self.join()
