"""
Worker directory.

External workers are reached only through their webhook endpoint. The
directory supplies what dispatch and settlement need (endpoint, shared
secret, typical completion time, payout destination) and keeps the running
reputation score updated on approval.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from agentmarket.config import CommerceConfig
from agentmarket.webhooks.dispatcher import WebhookDeliveryError, WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Worker:
    """An external worker.

    Attributes:
        id: Unique identifier
        endpoint: Webhook URL jobs are dispatched to
        secret: Shared webhook secret (None = unsigned, development only)
        p90_completion_minutes: 90th percentile completion time; drives the job deadline
        payout_destination: Payment backend account for payouts
        reputation_score: Running average of ratings (0 until first rating)
        completion_count: Number of approved jobs
        accepting_jobs: Whether the worker currently takes work
    """

    id: str
    endpoint: Optional[str] = None
    secret: Optional[str] = None
    p90_completion_minutes: int = 60
    payout_destination: Optional[str] = None
    reputation_score: Decimal = Decimal("0")
    completion_count: int = 0
    accepting_jobs: bool = True

    def __post_init__(self):
        if self.p90_completion_minutes <= 0:
            raise ValueError("p90 completion time must be positive")
        if self.completion_count < 0:
            raise ValueError("Completion count cannot be negative")
        self.reputation_score = Decimal(str(self.reputation_score))


def updated_reputation(score: Decimal, count: int, rating: int) -> Decimal:
    """Fold ``rating`` into a running average over ``count`` previous ratings."""
    total = Decimal(str(score)) * count + rating
    return (total / (count + 1)).quantize(Decimal("0.01"))


class WorkerDirectory(Protocol):
    """Lookup and reputation bookkeeping for workers."""

    def lookup(self, worker_id: str) -> Optional[Worker]:
        ...

    def record_rating(self, worker_id: str, rating: int) -> None:
        ...


class InMemoryWorkerDirectory:
    """Thread-safe in-memory worker directory."""

    def __init__(self):
        self._workers: Dict[str, Worker] = {}
        self._lock = threading.Lock()

    def register(self, worker: Worker) -> Worker:
        with self._lock:
            self._workers[worker.id] = worker
        logger.debug(f"Registered worker {worker.id}")
        return worker

    def lookup(self, worker_id: str) -> Optional[Worker]:
        with self._lock:
            worker = self._workers.get(worker_id)
            return replace(worker) if worker else None

    def list_workers(self, accepting_only: bool = True) -> List[Worker]:
        """Registered workers, ordered by reputation (best first)."""
        with self._lock:
            workers = [replace(w) for w in self._workers.values()]
        if accepting_only:
            workers = [w for w in workers if w.accepting_jobs]
        return sorted(workers, key=lambda w: (-w.reputation_score, w.id))

    def record_rating(self, worker_id: str, rating: int) -> None:
        """Update the worker's reputation with a new rating.

        Raises:
            KeyError: If the worker is unknown
            ValueError: If the rating is outside 1-5
        """
        if not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        with self._lock:
            worker = self._workers.get(worker_id)
            if worker is None:
                raise KeyError(f"Worker not found: {worker_id}")
            worker.reputation_score = updated_reputation(
                worker.reputation_score, worker.completion_count, rating
            )
            worker.completion_count += 1
        logger.info(
            f"Worker {worker_id} rated {rating}, reputation now {worker.reputation_score}"
        )


@dataclass
class EndpointCheck:
    """Result of sending a test job to a worker endpoint."""

    success: bool
    latency_ms: Optional[int] = None
    response: Any = None
    error: Optional[str] = None


def check_worker_endpoint(
    dispatcher: WebhookDispatcher,
    endpoint: str,
    secret: Optional[str],
    config: CommerceConfig,
    now: Optional[datetime] = None,
) -> EndpointCheck:
    """Send a signed, zero-budget test job to ``endpoint``.

    The payload has the same shape as a real dispatch, so a worker that
    verifies signatures and parses jobs correctly answers 2xx here too.
    Failures are reported in the result, never raised.
    """
    now = now or datetime.now(timezone.utc)
    job_id = f"test-{int(now.timestamp() * 1000)}"
    payload = {
        "jobId": job_id,
        "task": "Test webhook connection",
        "inputs": {},
        "context": {},
        "callbackUrl": config.callback_url(job_id),
        "budget": "0.00",
        "deadline": (now + timedelta(minutes=1)).isoformat(),
    }

    started = time.monotonic()
    try:
        sent = dispatcher.send(endpoint, payload, secret)
    except WebhookDeliveryError as e:
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Endpoint check failed for {endpoint}: {e}")
        return EndpointCheck(success=False, latency_ms=latency_ms, error=str(e))
    latency_ms = int((time.monotonic() - started) * 1000)

    try:
        response = json.loads(sent.body) if sent.body else None
    except ValueError:
        response = sent.body
    logger.info(f"Endpoint check passed for {endpoint} in {latency_ms}ms")
    return EndpointCheck(success=True, latency_ms=latency_ms, response=response)
