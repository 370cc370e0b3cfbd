"""Shared job queue on Redis lists.

Any number of worker processes may consume the same queue. A job is claimed
by atomically moving it from the waiting list into this worker's processing
list (BLMOVE), and acknowledged by removing it from there once the handler
returns. Jobs left in a worker's processing list when it dies are put back
on the waiting list the next time a worker with the same id starts.
"""

import asyncio
import logging
import socket
from typing import Dict, List, Optional

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from logworker.errors import JobError
from logworker.jobs.dispatcher import JobDispatcher, JobHandler
from logworker.jobs.models import JobDescriptor

logger = logging.getLogger(__name__)


class RedisQueue(JobDispatcher):
    """Redis-backed queue consumed by a fixed pool of tasks."""

    def __init__(
        self,
        redis: Redis,
        handler: JobHandler,
        queue_name: str = "log-processing-queue",
        concurrency: int = 4,
        worker_id: Optional[str] = None,
        poll_timeout: float = 1.0,
        error_backoff: float = 1.0,
    ):
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        self._redis = redis
        self._handler = handler
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._error_backoff = error_backoff
        self.worker_id = worker_id or socket.gethostname()
        self.waiting_key = f"{queue_name}:waiting"
        self.processing_key = f"{queue_name}:processing:{self.worker_id}"
        self._tasks: List[asyncio.Task] = []
        self._active = 0
        self._running = False

    async def submit(self, descriptor: JobDescriptor) -> str:
        await self._redis.lpush(
            self.waiting_key, descriptor.model_dump_json(by_alias=True)
        )
        return descriptor.job_id

    async def queue_status(self) -> Dict[str, int]:
        return {
            "waiting": await self._redis.llen(self.waiting_key),
            "active": self._active,
            "concurrency": self._concurrency,
        }

    async def start(self) -> None:
        requeued = await self._requeue_orphans()
        if requeued:
            logger.warning("Requeued %d unacknowledged job(s) from %s", requeued, self.processing_key)
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i)) for i in range(self._concurrency)
        ]
        logger.info(
            "Redis worker %s consuming %s with concurrency %d",
            self.worker_id, self.waiting_key, self._concurrency,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _requeue_orphans(self) -> int:
        count = 0
        while await self._redis.lmove(self.processing_key, self.waiting_key, "RIGHT", "RIGHT"):
            count += 1
        return count

    async def _worker_loop(self, slot: int) -> None:
        while self._running:
            try:
                raw = await self._redis.blmove(
                    self.waiting_key, self.processing_key, self._poll_timeout, "RIGHT", "LEFT"
                )
            except (RedisError, OSError) as e:
                logger.error(
                    "Could not claim from %s (slot %d): %s; retrying in %.1fs",
                    self.waiting_key, slot, e, self._error_backoff,
                )
                await asyncio.sleep(self._error_backoff)
                continue
            if raw is None:
                continue

            try:
                descriptor = JobDescriptor.model_validate_json(raw)
            except ValidationError as e:
                logger.error("Dropping malformed job payload: %s", e)
                await self._ack(raw)
                continue

            self._active += 1
            try:
                await self._handler(descriptor)
            except JobError as e:
                logger.warning("Job %s failed: %s", descriptor.job_id, e)
            except Exception:
                logger.exception("Unexpected error in job %s (slot %d)", descriptor.job_id, slot)
            finally:
                self._active -= 1

            await self._ack(raw)

    async def _ack(self, raw: str) -> None:
        try:
            await self._redis.lrem(self.processing_key, 1, raw)
        except (RedisError, OSError) as e:
            # left in the processing list; redelivered on the next start
            logger.error("Could not acknowledge job in %s: %s", self.processing_key, e)
            await asyncio.sleep(self._error_backoff)
