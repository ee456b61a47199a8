"""Try-on API: create, inspect, validate and delete try-on jobs.

Implements:
  POST   /api/tryon/jobs                     create and submit a job
  GET    /api/tryon/jobs                     list an owner's jobs
  GET    /api/tryon/jobs/{job_id}            status of one job
  POST   /api/tryon/jobs/{job_id}/poll       on-demand status refresh
  POST   /api/tryon/jobs/{job_id}/validate   (re)score the result
  GET    /api/tryon/jobs/{job_id}/result-url signed URL of the result image
  GET    /api/tryon/jobs/{job_id}/events     SSE stream of status snapshots
  DELETE /api/tryon/jobs/{job_id}            remove the job and its result
"""

import json
import logging
import math
from datetime import datetime
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from app.config import settings
from app.deps import get_job_service, get_orchestrator, get_publisher, get_session_factory
from app.models.job import JOB_STATUS_COMPLETED, VALID_JOB_STATUSES, TryOnJob
from app.services.job_service import JobService
from app.services.orchestrator import JobNotFoundError, JobOrchestrator
from app.services.reference_resolver import ReferenceNotFoundError
from app.services.status_publisher import StatusPublisher
from app.services.storage import RESULTS_BUCKET
from tryon_engine.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tryon", tags=["tryon"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CreateJobRequest(BaseModel):
    garment_id: str
    photo_id: str


class JobResponse(BaseModel):
    """Public representation of a TryOnJob record."""

    job_id: str
    owner_id: str
    garment_id: str
    photo_id: str
    status: str
    provider: str
    provider_job_id: str | None
    result_artifact_key: str | None
    error_message: str | None
    quality_report: dict | None
    created_at: datetime
    updated_at: datetime
    submitted_at: datetime | None
    completed_at: datetime | None
    validated_at: datetime | None

    model_config = {"from_attributes": True}


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ResultUrlResponse(BaseModel):
    job_id: str
    url: str
    expires_in: int


def _sse_event(event: str, data: dict) -> str:
    """Format a Server-Sent Event string."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _load(job_service: JobService, session_factory, job_id: str) -> TryOnJob:
    db = session_factory()
    try:
        job = job_service.get_by_job_id(db, job_id)
    finally:
        db.close()
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    body: CreateJobRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """Create a try-on job and submit it to the prediction provider.

    Returns once the provider accepted (``processing``) or rejected
    (``failed``) the submission.  Completion is reported through polling
    or the events stream.
    """
    try:
        job = await orchestrator.create(body.garment_id, body.photo_id)
    except ReferenceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return JobResponse.model_validate(job)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    owner_id: str = Query(..., min_length=1),
    status_filter: str | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1, description="Page number (1-based)"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    job_service: JobService = Depends(get_job_service),
    session_factory=Depends(get_session_factory),
) -> JobListResponse:
    """List an owner's jobs, newest first."""
    if status_filter is not None and status_filter not in VALID_JOB_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status '{status_filter}'")

    db = session_factory()
    try:
        jobs, total = job_service.list_for_owner(
            db, owner_id, status=status_filter, page=page, page_size=page_size
        )
    finally:
        db.close()

    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    job_service: JobService = Depends(get_job_service),
    session_factory=Depends(get_session_factory),
) -> JobResponse:
    return JobResponse.model_validate(_load(job_service, session_factory, job_id))


@router.post("/jobs/{job_id}/poll", response_model=JobResponse)
async def poll_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """Ask the provider for the job's status now instead of waiting for the next tick."""
    try:
        job = await orchestrator.poll(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/validate")
async def validate_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Score the result of a completed job and return the quality report."""
    try:
        report = await orchestrator.validate(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return report.to_dict()


@router.get("/jobs/{job_id}/result-url", response_model=ResultUrlResponse)
def get_result_url(
    job_id: str,
    request_ttl: int | None = Query(default=None, alias="ttl", ge=60, le=86400),
    job_service: JobService = Depends(get_job_service),
    session_factory=Depends(get_session_factory),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> ResultUrlResponse:
    job = _load(job_service, session_factory, job_id)
    if job.status != JOB_STATUS_COMPLETED or not job.result_artifact_key:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job has no result yet (status={job.status})",
        )

    ttl = request_ttl or settings.signed_url_ttl_seconds
    try:
        url = orchestrator.result_url(job.result_artifact_key, ttl)
    except StorageError:
        logger.exception("Could not sign %s/%s", RESULTS_BUCKET, job.result_artifact_key)
        raise HTTPException(status_code=500, detail="Could not sign result URL")
    return ResultUrlResponse(job_id=job.job_id, url=url, expires_in=ttl)


@router.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: str,
    publisher: StatusPublisher = Depends(get_publisher),
) -> StreamingResponse:
    """Server-Sent Events: one ``status`` event per committed transition.

    The stream ends after the job reaches a terminal state.
    """
    if publisher.get(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    async def event_stream() -> AsyncGenerator[str, None]:
        async for snapshot in publisher.subscribe(job_id):
            yield _sse_event("status", snapshot)
        yield _sse_event("end", {"job_id": job_id})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.delete(
    "/jobs/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a try-on job",
    description=(
        "Deletes the job record and its result image. A job that is still "
        "being polled has its polling cancelled first."
    ),
)
async def delete_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> Response:
    try:
        await orchestrator.delete(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except StorageError:
        logger.exception("Failed to delete result for job %s", job_id)
        raise HTTPException(status_code=500, detail="Could not delete job result")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
