"""Polling fallback for job updates.

Push delivery over pub/sub is best-effort, so clients poll
``GET /live-stats?since=<epoch ms>`` to pick up anything they missed.
Sending ``Accept: text/event-stream`` returns the same updates as SSE events.
"""

import json
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from logworker.jobs.models import epoch_ms

router = APIRouter()

# Wired in during lifespan (same pattern as jobs.py)
_notifier = None
_dispatcher = None

_NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def set_notifier(notifier):
    global _notifier
    _notifier = notifier


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


@router.get("/live-stats")
async def live_stats(
    request: Request,
    since: int = 0,
    job_id: Optional[str] = None,
    user_id: Optional[str] = None,
):
    """Updates newer than ``since``, optionally filtered by job or user."""
    if _notifier is None:
        raise HTTPException(status_code=503, detail="Notifier not initialized")

    updates = await _notifier.recent_updates(since, user_id=user_id, job_id=job_id)

    if request.headers.get("accept") == "text/event-stream":
        if updates:
            body = "".join(
                f"event: job-update\ndata: {json.dumps(u)}\n\n" for u in updates
            )
        else:
            body = ": no updates\n\n"
        return Response(
            content=body,
            media_type="text/event-stream",
            headers={**_NO_CACHE, "X-Accel-Buffering": "no"},
        )

    return JSONResponse(
        {"updates": updates, "timestamp": epoch_ms()},
        headers=_NO_CACHE,
    )


@router.get("/live-stats/{job_id}/latest")
async def latest_update(job_id: str):
    """Most recent stored update for one job."""
    if _notifier is None:
        raise HTTPException(status_code=503, detail="Notifier not initialized")

    update = await _notifier.latest_update(job_id)
    if update is None:
        raise HTTPException(status_code=404, detail="No updates for job")
    return update


@router.get("/queue-status")
async def queue_status():
    """Waiting and active job counts for this worker's queue."""
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return await _dispatcher.queue_status()
