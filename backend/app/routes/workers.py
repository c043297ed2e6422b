"""Worker routes for agentmarket.

Registration and lookup are admin only. Any agent can list available
workers and test a webhook endpoint.
"""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field, HttpUrl
from starlette.concurrency import run_in_threadpool

from agentmarket.commerce.workers import Worker, check_worker_endpoint

from ..auth import AdminAgent, CurrentAgent
from ..config import get_settings
from ..database import Dispatcher, Workers
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("agentmarket.api.workers")
router = APIRouter(prefix="/workers", tags=["workers"])


class WorkerRegister(BaseModel):
    """Register or replace an external worker."""

    id: str = Field(..., min_length=1, max_length=200)
    endpoint: HttpUrl
    secret: str | None = Field(None, min_length=16, max_length=500)
    p90_completion_minutes: int = Field(60, ge=1, le=60 * 24 * 30)
    payout_destination: str | None = Field(None, max_length=200)
    accepting_jobs: bool = True


class WorkerResponse(BaseModel):
    """Public worker details. The shared secret is never returned."""

    id: str
    endpoint: str | None = None
    signed: bool
    p90_completion_minutes: int
    payout_destination: str | None = None
    reputation_score: Decimal
    completion_count: int
    accepting_jobs: bool


def to_worker_response(worker: Worker) -> WorkerResponse:
    return WorkerResponse(
        id=worker.id,
        endpoint=worker.endpoint,
        signed=worker.secret is not None,
        p90_completion_minutes=worker.p90_completion_minutes,
        payout_destination=worker.payout_destination,
        reputation_score=worker.reputation_score,
        completion_count=worker.completion_count,
        accepting_jobs=worker.accepting_jobs,
    )


class WorkerListResponse(BaseModel):
    workers: list[WorkerResponse]


class WebhookTestRequest(BaseModel):
    """Endpoint and secret to test before (or after) registering a worker."""

    endpoint: HttpUrl
    secret: str = Field(..., min_length=16, max_length=500)


class WebhookTestResponse(BaseModel):
    success: bool
    latency_ms: int | None = None
    response: Any = None
    error: str | None = None
    message: str


@router.get("", response_model=WorkerListResponse)
@limiter.limit("60/minute")
def list_workers(
    request: Request,
    auth: CurrentAgent,
    workers: Workers,
):
    """List workers currently accepting jobs, best reputation first."""
    logger.info(f"GET /workers | agent={auth.agent_id}")
    return WorkerListResponse(
        workers=[to_worker_response(w) for w in workers.list_workers(accepting_only=True)]
    )


@router.post("/test-webhook", response_model=WebhookTestResponse)
@limiter.limit("10/minute")
async def test_webhook(
    request: Request,
    body: WebhookTestRequest,
    auth: CurrentAgent,
    dispatcher: Dispatcher,
):
    """
    Send a signed test job to a worker endpoint.

    Reports whether the endpoint answered 2xx within the dispatch timeout,
    how long it took, and what it answered. Failures are reported in the
    body, not as HTTP errors.
    """
    logger.info(f"POST /workers/test-webhook | agent={auth.agent_id} | endpoint={body.endpoint}")

    settings = get_settings()
    check = await run_in_threadpool(
        check_worker_endpoint,
        dispatcher,
        str(body.endpoint),
        body.secret,
        settings.commerce_config(),
    )
    return WebhookTestResponse(
        success=check.success,
        latency_ms=check.latency_ms,
        response=check.response,
        error=check.error,
        message=(
            "Webhook endpoint is working correctly"
            if check.success
            else "Webhook endpoint test failed"
        ),
    )


@router.post("", response_model=WorkerResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def register_worker(
    request: Request,
    body: WorkerRegister,
    admin: AdminAgent,
    workers: Workers,
):
    """Register a worker's webhook endpoint, secret and payout destination."""
    logger.info(f"POST /workers | admin={admin.agent_id} | worker={body.id}")

    worker = workers.register(
        Worker(
            id=body.id,
            endpoint=str(body.endpoint),
            secret=body.secret,
            p90_completion_minutes=body.p90_completion_minutes,
            payout_destination=body.payout_destination,
            accepting_jobs=body.accepting_jobs,
        )
    )
    return to_worker_response(worker)


@router.get("/{worker_id}", response_model=WorkerResponse)
@limiter.limit("60/minute")
def get_worker(
    request: Request,
    worker_id: str,
    admin: AdminAgent,
    workers: Workers,
):
    """Get a worker's registration and reputation."""
    worker = workers.lookup(worker_id)
    if worker is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")
    return to_worker_response(worker)
