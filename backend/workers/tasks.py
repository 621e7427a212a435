"""
In-process background task tracking.

Generation jobs run as asyncio tasks on the API's event loop. The tracker
holds a strong reference to each task until it finishes and logs crashes
that the job itself did not handle.
"""

import asyncio
from typing import Any, Coroutine, Set

import structlog

logger = structlog.get_logger()


class TaskTracker:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str, **context) -> asyncio.Task:
        """Schedule `coro` on the running loop and return its task."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                logger.warning("background_task_cancelled", task=name, **context)
                return
            error = finished.exception()
            if error is not None:
                logger.error(
                    "background_task_failed",
                    task=name,
                    error=str(error),
                    error_type=type(error).__name__,
                    **context
                )

        task.add_done_callback(_done)
        logger.info("background_task_started", task=name, **context)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every tracked task, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
