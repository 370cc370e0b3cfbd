"""Streaming log file scanner with progress checkpoints and backpressure.

Handles multi-hundred-megabyte uploads by reading bounded chunks through
aiofiles, off the event loop, instead of loading the whole file into memory.

Progress is reported in the 20-99 window: 0-20 belongs to retrieval and
setup, 100 to the completed transition. The total line count is estimated
from the file size, so the raw percentage can overshoot and is clamped.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional

import aiofiles
import aiofiles.os
import psutil

from logworker.jobs.cancellation import CancellationToken
from logworker.processing.line_parser import parse_line
from logworker.processing.statistics import Statistics, StatisticsAccumulator

logger = logging.getLogger(__name__)

PROGRESS_FLOOR = 20
PROGRESS_CEILING = 99
READ_BUFFER_BYTES = 64 * 1024
MIN_ESTIMATED_LINES = 100

ProgressCallback = Callable[[int, int], Awaitable[None]]


def system_memory_percent() -> float:
    return psutil.virtual_memory().percent


async def read_lines(fh, chunk_size: int = READ_BUFFER_BYTES) -> AsyncIterator[str]:
    """Yield lines of an aiofiles text handle, one chunk read per thread hop.

    Lines are yielded without their terminator. A trailing newline does not
    produce an extra empty line.
    """
    pending = ""
    while True:
        chunk = await fh.read(chunk_size)
        if not chunk:
            break
        lines = (pending + chunk).split("\n")
        pending = lines.pop()
        for line in lines:
            yield line
    if pending:
        yield pending


class FileScanner:
    """Scans one file into Statistics.

    Usage:
        scanner = FileScanner(batch_size=1000)
        stats = await scanner.scan(path, ["error", "timeout"], on_progress, token)

    ``on_progress(percent, lines_processed)`` is awaited at each checkpoint.
    """

    def __init__(
        self,
        batch_size: int = 1000,
        progress_interval: float = 5.0,
        min_step: int = 5,
        average_line_bytes: int = 200,
        memory_check_interval: float = 5.0,
        memory_threshold_percent: float = 80.0,
        backpressure_pause: float = 0.5,
        memory_sampler: Callable[[], float] = system_memory_percent,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.batch_size = batch_size
        self.progress_interval = progress_interval
        self.min_step = min_step
        self.average_line_bytes = average_line_bytes
        self.memory_check_interval = memory_check_interval
        self.memory_threshold_percent = memory_threshold_percent
        self.backpressure_pause = backpressure_pause
        self._memory_sampler = memory_sampler
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> "FileScanner":
        return cls(
            batch_size=settings.progress_batch_size,
            progress_interval=settings.progress_interval_seconds,
            min_step=settings.progress_min_step,
            average_line_bytes=settings.average_line_bytes,
            memory_check_interval=settings.memory_check_interval_seconds,
            memory_threshold_percent=settings.memory_threshold_percent,
            backpressure_pause=settings.backpressure_pause_seconds,
        )

    def estimate_lines(self, size_bytes: int) -> int:
        return max(MIN_ESTIMATED_LINES, size_bytes // max(1, self.average_line_bytes))

    async def scan(
        self,
        path: str,
        keywords: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> Statistics:
        """Parse every line of ``path`` and fold it into fresh Statistics.

        Stops early, returning the partial result, once ``token`` is
        cancelled. The token is checked before each line.
        """
        accumulator = StatisticsAccumulator(keywords)
        stats = accumulator.new_statistics()
        start = self._clock()

        if not await aiofiles.os.path.exists(path):
            raise FileNotFoundError(f"File not found: {path}")

        estimated_lines = self.estimate_lines((await aiofiles.os.stat(path)).st_size)
        logger.debug("Scanning %s, estimated %d lines", path, estimated_lines)

        line_count = 0
        batch = 0
        reported = PROGRESS_FLOOR
        last_checkpoint = start
        last_memory_check = start

        try:
            async with aiofiles.open(
                path, mode="r", encoding="utf-8", errors="replace", newline=None,
            ) as fh:
                async for line in read_lines(fh):
                    if token is not None and token.cancelled:
                        logger.info(
                            "Scan of %s aborted after %d lines (%s)",
                            path, line_count, token.reason,
                        )
                        break

                    line_count += 1
                    batch += 1
                    now = self._clock()

                    if now - last_memory_check > self.memory_check_interval:
                        last_memory_check = now
                        await self._apply_backpressure(line_count)

                    record = parse_line(line)
                    if record is not None:
                        accumulator.fold(record, stats)

                    timed_out = now - last_checkpoint > self.progress_interval
                    if batch >= self.batch_size or timed_out:
                        batch = 0
                        raw = line_count * 80 // estimated_lines + PROGRESS_FLOOR
                        if raw >= reported + self.min_step or timed_out:
                            reported = raw
                            last_checkpoint = now
                            percent = min(PROGRESS_CEILING, max(PROGRESS_FLOOR, raw))
                            if on_progress is not None:
                                await on_progress(percent, line_count)
                        # let sibling jobs run between batches
                        await asyncio.sleep(0)
        finally:
            stats.processing_time_ms = int((self._clock() - start) * 1000)

        logger.debug(
            "Processed %d lines of %s in %dms", line_count, path, stats.processing_time_ms
        )
        return stats

    async def _apply_backpressure(self, line_count: int) -> None:
        used = self._memory_sampler()
        logger.debug("Memory usage %.2f%% after %d lines", used, line_count)
        if used > self.memory_threshold_percent:
            logger.warning(
                "High memory usage (%.2f%%), pausing scan for %.1fs",
                used, self.backpressure_pause,
            )
            await asyncio.sleep(self.backpressure_pause)
