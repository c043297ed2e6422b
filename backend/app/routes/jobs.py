"""Jobs routes for agentmarket.

Endpoints for posting jobs, receiving signed worker deliveries and settling.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from agentmarket.commerce.jobs.models import Job
from agentmarket.webhooks.crypto import SIGNATURE_HEADER, TIMESTAMP_HEADER

from ..auth import CurrentAgent
from ..database import Jobs
from ..logging_config import get_logger, log_webhook_event
from ..rate_limit import limiter
from .errors import to_http_error

logger = get_logger("agentmarket.api.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


# =============================================================================
# Request/Response Models
# =============================================================================

JobStatus = Literal["posted", "in_progress", "delivered", "approved", "rejected", "cancelled"]


class JobCreate(BaseModel):
    """Request to create a job."""

    type: Literal["skill", "worker"]
    task: str = Field(..., min_length=1, max_length=10_000)
    budget: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    skill_id: str | None = None
    worker_id: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class JobResponse(BaseModel):
    """Job details response."""

    id: str
    requester_id: str
    type: str
    task: str
    budget: Decimal
    skill_id: str | None = None
    worker_id: str | None = None
    status: JobStatus
    deliverable_text: str | None = None
    deliverable_url: str | None = None
    deliverable_files: dict[str, str] | None = None
    rating: int | None = None
    feedback: str | None = None
    created_at: datetime
    accepted_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    timeout_at: datetime | None = None


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    limit: int
    offset: int


class ApproveJobRequest(BaseModel):
    """Request to approve a delivered job."""

    rating: int = Field(..., ge=1, le=5)
    feedback: str | None = Field(None, max_length=2000)


class RejectJobRequest(BaseModel):
    """Request to reject a delivered job."""

    reason: str = Field(..., min_length=1, max_length=2000)


class CancelJobRequest(BaseModel):
    """Request to cancel a job before delivery."""

    reason: str = Field("cancelled by requester", min_length=1, max_length=2000)


class DeliveryAck(BaseModel):
    """Acknowledgement returned to the worker (identical on redelivery)."""

    success: bool = True
    job_id: str
    status: JobStatus


def to_job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        requester_id=job.requester_id,
        type=job.type,
        task=job.task,
        budget=job.budget,
        skill_id=job.skill_id,
        worker_id=job.worker_id,
        status=job.status,
        deliverable_text=job.deliverable_text,
        deliverable_url=job.deliverable_url,
        deliverable_files=job.deliverable_files,
        rating=job.rating,
        feedback=job.feedback,
        created_at=job.created_at,
        accepted_at=job.accepted_at,
        delivered_at=job.delivered_at,
        completed_at=job.completed_at,
        timeout_at=job.timeout_at,
    )


# =============================================================================
# Routes
# =============================================================================


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_job(
    request: Request,
    job: JobCreate,
    auth: CurrentAgent,
    jobs: Jobs,
):
    """
    Create a job and lock its budget in escrow.

    Worker jobs are dispatched immediately. If dispatch fails the job is
    cancelled, the budget refunded, and the error returned.
    """
    logger.info(f"POST /jobs | requester={auth.agent_id} | type={job.type} | budget={job.budget}")

    try:
        created = jobs.create_job(
            requester_id=auth.agent_id,
            type=job.type,
            task=job.task,
            budget=job.budget,
            skill_id=job.skill_id,
            worker_id=job.worker_id,
            inputs=job.inputs,
            context=job.context,
        )
    except Exception as e:
        logger.warning(f"Job creation failed | requester={auth.agent_id} | error={e}")
        raise to_http_error(e) from e

    logger.info(f"Job created | id={created.id} | status={created.status}")
    return to_job_response(created)


@router.get("", response_model=JobListResponse)
@limiter.limit("60/minute")
def list_my_jobs(
    request: Request,
    auth: CurrentAgent,
    jobs: Jobs,
    status_filter: JobStatus | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List jobs posted by the authenticated agent, newest first."""
    logger.info(f"GET /jobs | agent={auth.agent_id} | status={status_filter}")

    found = jobs.get_jobs_for_requester(
        auth.agent_id, status=status_filter, limit=limit, offset=offset
    )
    return JobListResponse(jobs=[to_job_response(j) for j in found], limit=limit, offset=offset)


@router.get("/{job_id}", response_model=JobResponse)
@limiter.limit("60/minute")
def get_job(
    request: Request,
    job_id: str,
    auth: CurrentAgent,
    jobs: Jobs,
):
    """Get details of one of your jobs."""
    logger.info(f"GET /jobs/{job_id} | agent={auth.agent_id}")

    try:
        job = jobs.get_job(job_id)
    except Exception as e:
        raise to_http_error(e) from e

    if job.requester_id != auth.agent_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this job",
        )
    return to_job_response(job)


@router.post("/{job_id}/deliver", response_model=DeliveryAck)
@limiter.limit("60/minute")
async def deliver_job(request: Request, job_id: str, jobs: Jobs):
    """
    Worker delivery callback.

    Authenticated by the ``X-Webhook-Timestamp`` / ``X-Webhook-Signature``
    headers, not by a bearer token. Any verification failure is a plain 401.
    Repeated deliveries return the same acknowledgement.
    """
    logger.info(f"POST /jobs/{job_id}/deliver")

    raw_body = await request.body()
    try:
        job = await run_in_threadpool(
            jobs.receive_delivery,
            job_id,
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
        )
    except Exception as e:
        log_webhook_event("inbound", job_id, "rejected", type(e).__name__)
        raise to_http_error(e) from e

    log_webhook_event("inbound", job_id, "ok", f"status={job.status}")
    return DeliveryAck(job_id=job.id, status=job.status)


@router.post("/{job_id}/approve", response_model=JobResponse)
@limiter.limit("30/minute")
def approve_job(
    request: Request,
    job_id: str,
    body: ApproveJobRequest,
    auth: CurrentAgent,
    jobs: Jobs,
):
    """Approve a delivered job: the worker is paid and the job completes."""
    logger.info(f"POST /jobs/{job_id}/approve | agent={auth.agent_id} | rating={body.rating}")

    try:
        job = jobs.approve_job(job_id, auth.agent_id, body.rating, body.feedback)
    except Exception as e:
        raise to_http_error(e) from e

    logger.info(f"Job approved | id={job_id}")
    return to_job_response(job)


@router.post("/{job_id}/reject", response_model=JobResponse)
@limiter.limit("30/minute")
def reject_job(
    request: Request,
    job_id: str,
    body: RejectJobRequest,
    auth: CurrentAgent,
    jobs: Jobs,
):
    """Reject a delivered job: the full budget returns to your wallet."""
    logger.info(f"POST /jobs/{job_id}/reject | agent={auth.agent_id}")

    try:
        job = jobs.reject_job(job_id, auth.agent_id, body.reason)
    except Exception as e:
        raise to_http_error(e) from e

    logger.info(f"Job rejected | id={job_id}")
    return to_job_response(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
@limiter.limit("30/minute")
def cancel_job(
    request: Request,
    job_id: str,
    body: CancelJobRequest,
    auth: CurrentAgent,
    jobs: Jobs,
):
    """Cancel a job that has not been delivered yet and refund it."""
    logger.info(f"POST /jobs/{job_id}/cancel | agent={auth.agent_id}")

    try:
        job = jobs.cancel_job(job_id, body.reason, actor_id=auth.agent_id)
    except Exception as e:
        raise to_http_error(e) from e

    logger.info(f"Job cancelled | id={job_id}")
    return to_job_response(job)
