import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class SerialRequestQueue:
    """Process-wide FIFO chain: one job runs at a time, in arrival order.

    Each submitted job becomes a task that first waits for the previous
    task to finish. A job that raises still lets the chain move on; the
    exception goes back to that job's caller only. Callers that give up
    waiting do not cancel their job: it runs to completion in its turn.

    Created once per process and lives for the process lifetime. With
    several processes, ordering and concurrency limits apply per process.
    """

    def __init__(self):
        self._tail: Optional[asyncio.Task] = None
        self._pending = 0

    @property
    def pending(self) -> int:
        """Jobs submitted but not yet finished, including the running one."""
        return self._pending

    def _job_done(self, task: asyncio.Task) -> None:
        self._pending -= 1
        if self._tail is task:
            self._tail = None
        if not task.cancelled() and task.exception() is not None:
            logging.debug(f"Serial queue job failed: {task.exception()!r}")

    async def submit(self, job: Callable[[], Awaitable[T]]) -> T:
        """Append a job to the chain and wait for its result."""
        previous = self._tail

        async def run_in_turn() -> T:
            if previous is not None:
                await asyncio.wait([previous])
            return await job()

        task = asyncio.get_running_loop().create_task(run_in_turn())
        self._tail = task
        self._pending += 1
        task.add_done_callback(self._job_done)
        return await asyncio.shield(task)
