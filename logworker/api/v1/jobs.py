"""Job management API: enqueue log files and read their persisted state."""

import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from logworker.errors import PersistenceError
from logworker.jobs.models import JobDescriptor, JobStatus, utcnow

router = APIRouter()

# These will be set by main.py during lifespan
_dispatcher = None
_store = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_store(store):
    global _store
    _store = store


class JobSubmitRequest(BaseModel):
    file_path: str = Field(min_length=1)
    file_name: str = ""
    file_size: int = Field(default=0, ge=0)
    user_id: Optional[str] = None
    job_id: Optional[str] = None


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


@router.post("/jobs", response_model=JobSubmitResponse)
async def submit_job(request: JobSubmitRequest):
    """Queue an uploaded log file for processing."""
    if _dispatcher is None or _store is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")

    descriptor = JobDescriptor(
        job_id=request.job_id or str(uuid.uuid4()),
        source_locator=request.file_path,
        display_name=request.file_name or request.file_path,
        size_hint=request.file_size,
        owner_id=request.user_id,
        submitted_at=utcnow(),
    )

    try:
        await _store.create_job({
            "jobId": descriptor.job_id,
            "fileName": descriptor.display_name,
            "filePath": descriptor.source_locator,
            "fileSize": descriptor.size_hint,
            "userId": descriptor.owner_id,
            "status": JobStatus.WAITING.value,
            "progress": 0,
            "createdAt": descriptor.submitted_at.isoformat(),
        })
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    job_id = await _dispatcher.submit(descriptor)
    return JobSubmitResponse(
        job_id=job_id,
        status=JobStatus.WAITING.value,
        message="Job queued. Poll GET /api/v1/jobs/{id} or /api/v1/live-stats for progress.",
    )


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Current persisted status, progress and (when completed) statistics."""
    if _store is None:
        raise HTTPException(status_code=503, detail="Job store not initialized")

    try:
        row = await _store.get_job(job_id)
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if row is None:
        raise HTTPException(status_code=404, detail="Job not found")

    response = {
        "job_id": job_id,
        "status": row.get("status"),
        "progress": row.get("progress", 0),
    }

    if row.get("status") == JobStatus.COMPLETED.value:
        response["stats"] = {
            "totalEntries": row.get("totalEntries", 0),
            "errorCount": row.get("errorCount", 0),
            "keywordMatches": row.get("keywordMatches") or {},
            "ipAddresses": row.get("ipAddresses") or {},
            "processingTime": row.get("processingTime", 0),
        }
        response["completed_at"] = row.get("completedAt")

    if row.get("status") == JobStatus.FAILED.value:
        response["error"] = row.get("error") or "Processing failed"

    return response
