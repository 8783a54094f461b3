"""
Delayed one-shot jobs (label backfill, prediction accuracy checks).

Jobs are independent of session lifetime: closing or untracking a symbol
does not cancel them. Only process shutdown does.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Set

from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[object]]


class DeferredTaskScheduler:
    """Runs a coroutine factory after a delay and tracks the pending tasks."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, delay_sec: float, factory: JobFactory, name: str = "deferred") -> asyncio.Task:
        task = asyncio.create_task(self._run(max(0.0, delay_sec), factory, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, delay_sec: float, factory: JobFactory, name: str) -> None:
        await asyncio.sleep(delay_sec)
        try:
            await factory()
            self.completed += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed += 1
            logger.error(f"Deferred job {name} failed: {e}", exc_info=True)

    async def wait_all(self) -> None:
        """Wait for every currently pending job."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(f"Cancelled {len(tasks)} pending deferred job(s)")
