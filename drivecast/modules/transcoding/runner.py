"""Bounded background job runner.

Jobs run as detached asyncio tasks. At most ``max_concurrent`` run at
once; the rest wait their turn on a semaphore.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional

from drivecast.core.config import settings
from drivecast.core.metrics import TRANSCODE_JOBS_ACTIVE

logger = logging.getLogger(__name__)


class JobRunner:
    """Run submitted coroutines in the background with a concurrency cap."""

    def __init__(self, max_concurrent: int = 2):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        # The event loop keeps only weak references to tasks
        self._tasks: set[asyncio.Task] = set()
        self._running = 0

    @property
    def active(self) -> int:
        """Number of jobs currently holding a slot."""
        return self._running

    @property
    def pending(self) -> int:
        """Number of submitted jobs that have not finished."""
        return len(self._tasks)

    def submit(
        self,
        coro: Coroutine[Any, Any, Any],
        name: Optional[str] = None,
        on_cancel: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> asyncio.Task:
        """Schedule a job and return immediately.

        ``on_cancel`` is awaited if the job is cancelled before it gets a
        slot, since ``coro`` itself never starts in that case.
        """
        task = asyncio.create_task(self._run(coro, on_cancel), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(
        self,
        coro: Coroutine[Any, Any, Any],
        on_cancel: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> Any:
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            coro.close()
            if on_cancel is not None:
                await on_cancel()
            raise

        self._running += 1
        TRANSCODE_JOBS_ACTIVE.inc()
        try:
            return await coro
        finally:
            self._running -= 1
            TRANSCODE_JOBS_ACTIVE.dec()
            self._semaphore.release()

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background job raised",
                extra={"task": task.get_name(), "error": str(exc)},
                exc_info=exc,
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for submitted jobs, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            logger.warning("Cancelling unfinished jobs", extra={"count": len(still_running)})
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)


_runner: Optional[JobRunner] = None


def get_job_runner() -> JobRunner:
    global _runner
    if _runner is None:
        _runner = JobRunner(settings.MAX_CONCURRENT_JOBS)
    return _runner
