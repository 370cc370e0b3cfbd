"""In-process job queue using asyncio for local development.

Runs up to ``concurrency`` jobs at once on the event loop. No external
dependencies (Redis) needed.
"""

import asyncio
import logging
from typing import Dict, List

from logworker.errors import JobError
from logworker.jobs.dispatcher import JobDispatcher, JobHandler
from logworker.jobs.models import JobDescriptor

logger = logging.getLogger(__name__)


class InProcessQueue(JobDispatcher):
    """Local async job queue with a fixed pool of consumer tasks."""

    def __init__(self, handler: JobHandler, concurrency: int = 4):
        """
        handler: async callable(descriptor) -> Statistics
            Raises JobError (or anything else) when the job fails.
        """
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handler = handler
        self._concurrency = concurrency
        self._tasks: List[asyncio.Task] = []
        self._active = 0
        self._completed = 0
        self._failed = 0
        self._running = False

    async def submit(self, descriptor: JobDescriptor) -> str:
        await self._queue.put(descriptor)
        return descriptor.job_id

    async def queue_status(self) -> Dict[str, int]:
        return {
            "waiting": self._queue.qsize(),
            "active": self._active,
            "completed": self._completed,
            "failed": self._failed,
            "concurrency": self._concurrency,
        }

    async def start(self) -> None:
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i)) for i in range(self._concurrency)
        ]
        logger.info("Worker pool started with concurrency %d", self._concurrency)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def join(self) -> None:
        """Wait until every submitted job has been handled."""
        await self._queue.join()

    async def _worker_loop(self, slot: int) -> None:
        """Take jobs from the queue one at a time."""
        while self._running:
            try:
                descriptor = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            self._active += 1
            try:
                await self._handler(descriptor)
                self._completed += 1
            except JobError as e:
                self._failed += 1
                logger.warning("Job %s failed: %s", descriptor.job_id, e)
            except Exception:
                self._failed += 1
                logger.exception("Unexpected error in job %s (slot %d)", descriptor.job_id, slot)
            finally:
                self._active -= 1
                self._queue.task_done()
