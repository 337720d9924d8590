"""Detached background tasks for fire-and-forget side effects."""

import asyncio
import logging
from typing import Any, Awaitable, Coroutine, Optional, Set, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackgroundTaskTracker:
    """
    Spawns coroutines without awaiting them and keeps track of them.

    Failures are logged, never raised to the spawner. ``drain`` waits for
    outstanding work on shutdown and cancels whatever is still running once
    the timeout elapses.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} failed: {exc}", exc_info=exc)

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for pending tasks.

        Args:
            timeout: Seconds to wait before cancelling stragglers (None = wait forever)

        Returns:
            Number of tasks that had to be cancelled
        """
        if not self._tasks:
            return 0

        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"Cancelled {len(still_running)} background tasks on drain")
        return len(still_running)


async def run_with_deadline(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """Await with an optional deadline; ``None`` means no deadline."""
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


# Global tracker instance
background_tasks = BackgroundTaskTracker()
