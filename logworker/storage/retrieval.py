"""Fetch a job's source file into the scratch area with retry and backoff."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from logworker.errors import EmptyFileError, RetrievalError
from logworker.storage.blob import BlobStorage
from logworker.storage.scratch import ScratchArea

logger = logging.getLogger(__name__)


class _EmptyDownload(Exception):
    pass


def _to_bytes(data: Any) -> bytes:
    """Normalize the payload shapes storage clients hand back."""
    if data is None:
        raise ValueError("No data received from storage")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    read = getattr(data, "read", None)
    if callable(read):
        chunk = read()
        if isinstance(chunk, (bytes, bytearray, memoryview)):
            return bytes(chunk)
    raise TypeError(f"Unsupported data type: {type(data).__name__}")


class FileRetriever:
    """Downloads a locator to a local scratch file.

    Each attempt that raises, returns nothing, returns an unsupported shape
    or returns zero bytes counts toward ``max_attempts``. After failed attempt
    ``n`` the retriever waits ``backoff_base * 2 ** n`` seconds (2s, 4s, ...).
    """

    def __init__(
        self,
        blob_storage: BlobStorage,
        scratch: ScratchArea,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._blob_storage = blob_storage
        self._scratch = scratch
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

    async def retrieve(self, locator: str, job_id: str) -> str:
        """Return the local path of the downloaded file.

        Raises:
            RetrievalError: invalid locator, or every attempt failed.
            EmptyFileError: every attempt failed and the last one was empty.
        """
        if not isinstance(locator, str) or not locator.strip():
            raise RetrievalError(f"Invalid file path: {locator!r}")

        last_error: Exception = RetrievalError("no attempts made")
        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.debug("Download attempt %d for %s (job %s)", attempt, locator, job_id)
                return await self._attempt(locator, job_id)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Download error for job %s (attempt %d/%d): %s",
                    job_id, attempt, self.max_attempts, exc,
                )

            if attempt < self.max_attempts:
                delay = self.backoff_base * 2 ** attempt
                logger.debug("Retrying download in %.1fs", delay)
                await self._sleep(delay)

        message = f"Failed to download file after {self.max_attempts} attempts: {last_error}"
        if isinstance(last_error, _EmptyDownload):
            raise EmptyFileError(message) from last_error
        raise RetrievalError(message) from last_error

    async def _attempt(self, locator: str, job_id: str) -> str:
        data = _to_bytes(await self._blob_storage.download(locator))
        if len(data) == 0:
            raise _EmptyDownload("Downloaded file is empty (0 bytes)")

        path = self._scratch.path_for(job_id, locator)
        try:
            await asyncio.to_thread(_write_bytes, path, data)
        except OSError as exc:
            self._scratch.remove(path)
            raise OSError(f"Failed to write file to disk: {exc}") from exc

        logger.debug("Saved %d bytes to %s", len(data), path)
        return path


def _write_bytes(path: str, data: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(data)
