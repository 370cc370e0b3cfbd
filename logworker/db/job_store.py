"""Durable job state collaborators (the ``log_stats`` table)."""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from supabase import Client

from logworker.errors import PersistenceError
from logworker.jobs.models import JobStatus, utcnow
from logworker.processing.statistics import Statistics

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Abstract system of record for job status and final statistics."""

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        error: Optional[str] = None,
    ) -> None:
        """Persist a status/progress change. Raises PersistenceError."""
        ...

    @abstractmethod
    async def update_final_stats(
        self,
        job_id: str,
        stats: Statistics,
        status: JobStatus,
        progress: int,
    ) -> None:
        """Persist statistics together with the terminal status in one write."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored row for a job, or None."""
        ...

    @abstractmethod
    async def create_job(self, row: Dict[str, Any]) -> None:
        """Insert the initial row for a newly enqueued job."""
        ...


def _status_row(status: JobStatus, progress: int, error: Optional[str]) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "status": status.value,
        "progress": progress,
        "updatedAt": utcnow().isoformat(),
    }
    if error:
        row["error"] = error
    return row


def _final_row(stats: Statistics, status: JobStatus, progress: int) -> Dict[str, Any]:
    columns = stats.to_columns()
    return {
        "status": status.value,
        "progress": progress,
        "totalEntries": columns["totalEntries"],
        "errorCount": columns["errorCount"],
        "keywordMatches": columns["keywordMatches"],
        "ipAddresses": columns["ipAddresses"],
        "processingTime": columns["processingTime"],
        "completedAt": utcnow().isoformat(),
    }


class SupabaseJobStore(JobStore):
    """Writes job rows to a Supabase table keyed by ``jobId``."""

    def __init__(self, client: Client, table: str = "log_stats"):
        self._client = client
        self._table = table

    async def _update(self, job_id: str, row: Dict[str, Any]) -> None:
        def _execute():
            return (
                self._client.table(self._table)
                .update(row)
                .eq("jobId", job_id)
                .execute()
            )

        try:
            response = await asyncio.to_thread(_execute)
        except Exception as exc:
            raise PersistenceError(f"Updating job {job_id} failed: {exc}") from exc
        if not response.data:
            raise PersistenceError(f"No row found for job {job_id}")

    async def update_status(self, job_id, status, progress, error=None) -> None:
        await self._update(job_id, _status_row(status, progress, error))

    async def update_final_stats(self, job_id, stats, status, progress) -> None:
        await self._update(job_id, _final_row(stats, status, progress))

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        def _execute():
            return (
                self._client.table(self._table)
                .select("*")
                .eq("jobId", job_id)
                .limit(1)
                .execute()
            )

        try:
            response = await asyncio.to_thread(_execute)
        except Exception as exc:
            raise PersistenceError(f"Reading job {job_id} failed: {exc}") from exc
        return response.data[0] if response.data else None

    async def create_job(self, row: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(
                lambda: self._client.table(self._table).insert(row).execute()
            )
        except Exception as exc:
            raise PersistenceError(f"Creating job {row.get('jobId')} failed: {exc}") from exc


class InMemoryJobStore(JobStore):
    """Dict-backed store for local development and tests.

    Unknown job ids are created on first write.
    """

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}

    async def update_status(self, job_id, status, progress, error=None) -> None:
        self._rows.setdefault(job_id, {"jobId": job_id}).update(
            _status_row(status, progress, error)
        )

    async def update_final_stats(self, job_id, stats, status, progress) -> None:
        self._rows.setdefault(job_id, {"jobId": job_id}).update(
            _final_row(stats, status, progress)
        )

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        row = self._rows.get(job_id)
        return copy.deepcopy(row) if row is not None else None

    async def create_job(self, row: Dict[str, Any]) -> None:
        self._rows[row["jobId"]] = dict(row)
