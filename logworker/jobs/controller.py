"""Job lifecycle: claim, retrieve, scan, resolve.

One ``JobExecution`` drives one descriptor through
waiting -> processing -> completed | failed, reporting each step to the
durable store and the notifier. A safety timeout fails the job and signals
the scan to stop if it has not finished on its own.
"""

import asyncio
import logging
from typing import List, Optional

import aiofiles
import aiofiles.os
import psutil

from logworker.db.job_store import JobStore
from logworker.errors import EmptyFileError, JobError, PersistenceError, TimeoutAbort
from logworker.jobs.cancellation import CancellationToken
from logworker.jobs.models import JobDescriptor, JobState, JobUpdate
from logworker.notify.notifier import Notifier
from logworker.processing.scanner import FileScanner
from logworker.processing.statistics import Statistics
from logworker.storage.retrieval import FileRetriever
from logworker.storage.scratch import ScratchArea

logger = logging.getLogger(__name__)

PROGRESS_CLAIMED = 1
PROGRESS_RETRIEVED = 10
SAMPLE_LINES = 3


def _format_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"


def _rss_mb() -> float:
    return psutil.Process().memory_info().rss / 1024 / 1024


class JobController:
    """Runs jobs against a fixed set of collaborators.

    Holds no per-job state; every ``run`` call gets its own JobExecution, so
    one controller serves all concurrent handlers in a worker process.
    """

    def __init__(
        self,
        store: JobStore,
        notifier: Notifier,
        retriever: FileRetriever,
        scanner: FileScanner,
        scratch: ScratchArea,
        keywords: List[str],
        job_timeout: float = 180.0,
        terminal_write_timeout: float = 10.0,
    ):
        self.store = store
        self.notifier = notifier
        self.retriever = retriever
        self.scanner = scanner
        self.scratch = scratch
        self.keywords = list(keywords)
        self.job_timeout = job_timeout
        self.terminal_write_timeout = terminal_write_timeout

    async def run(self, descriptor: JobDescriptor) -> Statistics:
        """Process one job. Returns final Statistics or raises a JobError."""
        return await JobExecution(self, descriptor).run()


class JobExecution:
    """State for a single run of a single job."""

    def __init__(self, controller: JobController, descriptor: JobDescriptor):
        self.controller = controller
        self.descriptor = descriptor
        self.state = JobState(job_id=descriptor.job_id)
        self.token = CancellationToken()
        self._lock = asyncio.Lock()
        self._local_path: Optional[str] = None
        self._failed_without_lock = False

    @property
    def job_id(self) -> str:
        return self.descriptor.job_id

    async def run(self) -> Statistics:
        logger.info("Processing job %s: %s", self.job_id, self.descriptor.display_name)
        timeout = self.controller.job_timeout
        body = asyncio.ensure_future(self._process())
        try:
            return await asyncio.wait_for(asyncio.shield(body), timeout=timeout)
        except asyncio.TimeoutError:
            # in-flight I/O is left to finish on its own; its result is discarded
            body.add_done_callback(_discard_result)
            message = f"Processing timeout after {_format_duration(timeout)}"
            logger.error("Safety timeout triggered for job %s", self.job_id)
            self.token.cancel(message)
            await self._fail(message)
            raise TimeoutAbort(message) from None
        except asyncio.CancelledError:
            self.token.cancel("worker shutting down")
            body.cancel()
            raise

    async def _process(self) -> Statistics:
        started = asyncio.get_running_loop().time()
        try:
            await self._advance(PROGRESS_CLAIMED)

            self._local_path = await self.controller.retriever.retrieve(
                self.descriptor.source_locator, self.job_id
            )
            if self.token.cancelled:
                raise TimeoutAbort(self.token.reason or "Job aborted")

            size = (await aiofiles.os.stat(self._local_path)).st_size
            logger.debug("Job %s downloaded %d bytes to %s", self.job_id, size, self._local_path)
            if size == 0:
                raise EmptyFileError("Downloaded file is empty")

            await self._advance(PROGRESS_RETRIEVED)
            await self._log_sample(self._local_path)

            stats = await self.controller.scanner.scan(
                self._local_path,
                self.controller.keywords,
                on_progress=self._on_progress,
                token=self.token,
            )
            await self._complete(stats)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            if await self._fail(message):
                logger.error("Error processing job %s: %s", self.job_id, message)
            if isinstance(exc, JobError):
                raise
            raise JobError(message) from exc
        finally:
            self.controller.scratch.remove(self._local_path)

        elapsed_ms = int((asyncio.get_running_loop().time() - started) * 1000)
        logger.info(
            "Job %s completed in %dms: %d entries, %d errors",
            self.job_id, elapsed_ms, stats.total_entries, stats.error_count,
        )
        return stats

    async def _on_progress(self, percent: int, lines_processed: int) -> None:
        logger.debug(
            "Job %s at %d%% after %d lines (rss %.2f MB)",
            self.job_id, percent, lines_processed, _rss_mb(),
        )
        await self._advance(percent, lines_processed)

    async def _advance(self, percent: int, lines_processed: Optional[int] = None) -> None:
        async with self._lock:
            if not self.state.advance(percent):
                return
            try:
                await self.controller.store.update_status(
                    self.job_id, self.state.status, self.state.progress
                )
            except PersistenceError as exc:
                logger.warning("Could not persist progress for job %s: %s", self.job_id, exc)
            if self.state.is_terminal:
                # failed while the write was in flight
                if self._failed_without_lock:
                    await self._persist_failure()
                return
            await self._notify(lines_processed=lines_processed)

    async def _complete(self, stats: Statistics) -> None:
        async with self._lock:
            if self.token.cancelled or not self.state.complete():
                raise TimeoutAbort(self.state.last_error or self.token.reason or "Job aborted")
            try:
                await self.controller.store.update_final_stats(
                    self.job_id, stats, self.state.status, self.state.progress
                )
            except PersistenceError as exc:
                logger.error(
                    "Final statistics for job %s were not persisted: %s", self.job_id, exc
                )
            await self._notify(stats=stats)

    async def _fail(self, message: str) -> bool:
        """Move to failed. Returns False if the job was already terminal.

        The state flips before any await, so a progress report still holding
        the lock sees the terminal state and drops its event. Waiting for that
        report is bounded by ``terminal_write_timeout`` so a hung store write
        cannot keep the worker slot. If the wait runs out, the failure is
        reported without the lock and the late progress write is overwritten
        once it returns.
        """
        if not self.state.fail(message):
            return False
        try:
            await asyncio.wait_for(
                self._lock.acquire(), timeout=self.controller.terminal_write_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Progress report for job %s still in flight, reporting failure without it",
                self.job_id,
            )
            self._failed_without_lock = True
            await self._report_failure()
            return True
        try:
            await self._report_failure()
        finally:
            self._lock.release()
        return True

    async def _report_failure(self) -> None:
        await self._persist_failure()
        try:
            await asyncio.wait_for(self._notify(), timeout=self.controller.terminal_write_timeout)
        except asyncio.TimeoutError:
            logger.error("Failed event for job %s was not published in time", self.job_id)

    async def _persist_failure(self) -> None:
        try:
            await asyncio.wait_for(
                self.controller.store.update_status(
                    self.job_id, self.state.status, self.state.progress, self.state.last_error
                ),
                timeout=self.controller.terminal_write_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Failed status for job %s was not persisted in time", self.job_id)
        except PersistenceError as exc:
            logger.error("Failed status for job %s was not persisted: %s", self.job_id, exc)

    async def _notify(
        self,
        stats: Optional[Statistics] = None,
        lines_processed: Optional[int] = None,
    ) -> None:
        update = JobUpdate(
            job_id=self.job_id,
            status=self.state.status,
            progress=self.state.progress,
            error=self.state.last_error,
            stats=stats.to_columns() if stats is not None else None,
            lines_processed=lines_processed,
            user_id=self.descriptor.owner_id,
        )
        await self.controller.notifier.notify(update)

    async def _log_sample(self, path: str) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        sample = []
        async with aiofiles.open(path, mode="r", encoding="utf-8", errors="replace") as fh:
            for _ in range(SAMPLE_LINES):
                line = await fh.readline()
                if not line:
                    break
                sample.append(line.rstrip("\r\n"))
        logger.debug("Sample lines from job %s:\n%s", self.job_id, "\n".join(sample))


def _discard_result(task: "asyncio.Future") -> None:
    if not task.cancelled():
        exc = task.exception()
        if exc is not None:
            logger.debug("Discarded late result of timed-out job: %s", exc)
