"""Generation job API endpoints.

This module implements REST endpoints for generation jobs:
- POST /api/jobs - Submit a generation request (debits credits)
- GET /api/jobs - List the caller's recent jobs
- GET /api/jobs/{job_id} - Read job status with projected progress
- POST /api/jobs/{job_id}/cancel - Cancel a job before provider hand-off (refunds)

All endpoints require `Authorization: Bearer <token>`.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from visionlight.api.dependencies import get_current_identity, get_orchestrator
from visionlight.models.job import JobStatus, MediaKind
from visionlight.services.exceptions import (
    InsufficientFundsError,
    InvalidStateError,
    JobNotFoundError,
)
from visionlight.services.identity import Identity
from visionlight.services.orchestrator import JobOrchestrator, JobStatusView

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# Request/Response Models


class CreateJobRequest(BaseModel):
    """Request model for submitting a generation job."""

    media_kind: MediaKind = Field(..., description="image, video or carousel")
    prompt: str = Field(..., min_length=1, max_length=4000)
    model: str | None = Field(default=None, description="Model name, default per media kind")
    aspect_ratio: str | None = Field(default=None, description="16:9, 9:16, 1:1 ...")
    duration: int | None = Field(default=None, ge=1, le=60, description="Video seconds")
    resolution: str | None = Field(default=None, description="720p or 1080p")
    image_reference: str | None = Field(default=None, description="Reference image URL")
    image_references: list[str] | None = Field(default=None)
    ephemeral: bool = Field(
        default=False, description="Utility job: saved to the asset library, then removed"
    )


class JobStatusResponse(BaseModel):
    """Response model for job status queries."""

    job_id: UUID
    media_kind: MediaKind
    status: JobStatus
    progress: int = Field(..., ge=0, le=100)
    phase: str
    result_url: str | None = None
    result_urls: list[str] | None = None
    error: str | None = None

    @classmethod
    def from_view(cls, view: JobStatusView) -> "JobStatusResponse":
        return cls(
            job_id=view.job_id,
            media_kind=view.media_kind,
            status=view.status,
            progress=view.progress,
            phase=view.phase_label,
            result_url=view.result_url,
            result_urls=view.result_urls,
            error=view.error,
        )


# Endpoints


@router.post("", response_model=JobStatusResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: CreateJobRequest,
    identity: Identity = Depends(get_current_identity),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobStatusResponse:
    """Submit a generation job.

    Returns:
        201 with the job status (may already be failed if the provider rejected it)

    Raises:
        HTTPException: 402 if the credit pool cannot cover the cost
    """
    params = request.model_dump(exclude={"media_kind", "prompt"}, exclude_none=True)
    try:
        job_id = await orchestrator.submit_job(
            identity.user_id, request.media_kind, request.prompt, params
        )
    except InsufficientFundsError as e:
        logger.info("api.jobs.insufficient_funds", user_id=str(identity.user_id), pool=e.pool)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Insufficient credits",
                "pool": e.pool,
                "required": e.required,
                "available": e.available or 0,
            },
        )

    view = await orchestrator.get_job_status(job_id)
    return JobStatusResponse.from_view(view)


@router.get("", response_model=list[JobStatusResponse])
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    identity: Identity = Depends(get_current_identity),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> list[JobStatusResponse]:
    """List the caller's most recent jobs, newest first."""
    views = await orchestrator.list_jobs(identity.user_id, limit=limit)
    return [JobStatusResponse.from_view(view) for view in views]


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job(
    job_id: UUID,
    identity: Identity = Depends(get_current_identity),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobStatusResponse:
    """Read a job's status. Jobs of other users are reported as not found."""
    try:
        view = await orchestrator.get_job_status(job_id, identity.user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobStatusResponse.from_view(view)


@router.post("/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(
    job_id: UUID,
    identity: Identity = Depends(get_current_identity),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobStatusResponse:
    """Cancel a job that has not been handed to a provider yet.

    Raises:
        HTTPException: 404 if unknown, 409 if the job can no longer be cancelled
    """
    try:
        await orchestrator.cancel_job(job_id, identity.user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    view = await orchestrator.get_job_status(job_id)
    return JobStatusResponse.from_view(view)
