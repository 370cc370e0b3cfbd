"""Job dispatcher interface shared by the in-process and Redis queues."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

from logworker.jobs.models import JobDescriptor

JobHandler = Callable[[JobDescriptor], Awaitable[Any]]


class JobDispatcher(ABC):
    """Abstract interface for queueing jobs and running them in a bounded pool."""

    @abstractmethod
    async def submit(self, descriptor: JobDescriptor) -> str:
        """Enqueue a job for processing. Returns job_id."""
        ...

    @abstractmethod
    async def queue_status(self) -> Dict[str, int]:
        """Counts of waiting and active jobs."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the consumer tasks."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the consumers gracefully."""
        ...
