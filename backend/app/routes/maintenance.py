"""Maintenance routes for agentmarket.

Timeout enforcement. Should be called periodically (e.g., via cron) so
jobs past their deadline are cancelled and their escrow refunded.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..auth import AdminAgent
from ..database import Jobs
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("agentmarket.api.maintenance")
router = APIRouter(prefix="/maintenance", tags=["maintenance"])


# =============================================================================
# Request/Response Models
# =============================================================================


class TimeoutCheckRequest(BaseModel):
    """Request to check and process timeouts."""

    dry_run: bool = Field(
        default=False, description="If true, report what would be done without making changes"
    )


class TimeoutFailure(BaseModel):
    job_id: str
    error: str


class TimeoutCheckResponse(BaseModel):
    """Response from timeout check operation."""

    dry_run: bool
    checked: int
    cancelled: list[str]
    skipped: list[str]
    failures: list[TimeoutFailure]
    checked_at: datetime


# =============================================================================
# Routes
# =============================================================================


@router.post("/check-timeouts", response_model=TimeoutCheckResponse)
@limiter.limit("10/minute")
async def check_timeouts(
    request: Request,
    timeout_request: TimeoutCheckRequest,
    admin: AdminAgent,
    jobs: Jobs,
):
    """
    Cancel and refund active jobs past their deadline.

    Jobs that fail to refund stay active and are listed under ``failures``;
    the next call retries them. Set dry_run=true to see what would be
    cancelled without making changes.
    """
    logger.info(
        f"POST /maintenance/check-timeouts | agent={admin.agent_id} | "
        f"dry_run={timeout_request.dry_run}"
    )

    report = await run_in_threadpool(jobs.process_timeouts, dry_run=timeout_request.dry_run)

    if report.failures:
        logger.warning(
            f"Timeout check had failures | failed={[f['job_id'] for f in report.failures]}"
        )

    return TimeoutCheckResponse(
        dry_run=report.dry_run,
        checked=report.checked,
        cancelled=report.cancelled,
        skipped=report.skipped,
        failures=[TimeoutFailure(**f) for f in report.failures],
        checked_at=datetime.now(timezone.utc),
    )
