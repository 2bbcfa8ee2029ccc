"""Job management endpoints."""

import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from notewise.api.deps import get_job_queue, get_owner_id
from notewise.jobs.queue import JobNotFoundError, JobQueue
from notewise.jobs.schemas import (
    CleanupPayload,
    JobKind,
    JobRecord,
    JobStatus,
    RebuildSearchIndexPayload,
)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

# Seconds between progress polls of a streamed job
STREAM_POLL_INTERVAL = 0.5


class JobQueued(BaseModel):
    """Identifier of a queued background job."""

    job_id: str


class RebuildRequest(BaseModel):
    """Options for a search index rebuild."""

    reindex: bool = False


@router.get("", response_model=list[JobRecord])
async def list_jobs(
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    kind: Optional[JobKind] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    queue: JobQueue = Depends(get_job_queue),
) -> list[JobRecord]:
    """List recent jobs."""
    return queue.list_jobs(status=job_status, kind=kind, limit=limit)


@router.post("/cleanup", response_model=JobQueued, status_code=status.HTTP_202_ACCEPTED)
async def queue_cleanup(
    payload: CleanupPayload,
    queue: JobQueue = Depends(get_job_queue),
) -> JobQueued:
    """Queue deletion of stale rankings and old dismissed reports."""
    return JobQueued(job_id=queue.enqueue(payload))


@router.post("/rebuild-index", response_model=JobQueued, status_code=status.HTTP_202_ACCEPTED)
async def queue_rebuild(
    request: RebuildRequest,
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
) -> JobQueued:
    """Queue removal of index data left by deleted notes, optionally reindexing the owner."""
    payload = RebuildSearchIndexPayload(owner_id=owner_id, reindex=request.reindex)
    return JobQueued(job_id=queue.enqueue(payload))


@router.get("/{job_id}", response_model=JobRecord)
async def get_job(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
) -> JobRecord:
    """Get status of a specific job."""
    try:
        return queue.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("/{job_id}/stream")
async def stream_job_progress(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
):
    """Stream job progress via SSE."""
    try:
        queue.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    async def event_generator():
        """Generate SSE events for job progress."""
        while True:
            try:
                job = queue.get(job_id)
            except JobNotFoundError:
                break

            event_data = {
                "job_id": job.id,
                "kind": job.kind.value,
                "status": job.status.value,
                "progress": job.progress,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
            }

            if job.status == JobStatus.COMPLETED:
                event_data["result"] = job.result
                yield f"event: complete\ndata: {json.dumps(event_data)}\n\n"
                break
            elif job.status == JobStatus.FAILED:
                event_data["error"] = job.error_message
                yield f"event: error\ndata: {json.dumps(event_data)}\n\n"
                break
            else:
                yield f"event: progress\ndata: {json.dumps(event_data)}\n\n"

            await asyncio.sleep(STREAM_POLL_INTERVAL)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
