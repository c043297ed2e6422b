"""
Job service for agentmarket.

Drives the job lifecycle and keeps it in lockstep with the escrow:

    posted -> in_progress -> delivered -> approved | rejected
    posted | in_progress -> cancelled

Every transition that moves money runs in the same atomic unit as the money
movement. When that is impossible (the worker POST happens after the job and
escrow are committed) failure is compensated by cancelling and refunding.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from agentmarket.commerce.escrow.service import EscrowService, EscrowServiceError
from agentmarket.commerce.jobs.models import (
    DELIVERY_SETTLED_STATUSES,
    Job,
    JobStateTransition,
    JobStatus,
    JobType,
)
from agentmarket.commerce.money import to_money
from agentmarket.commerce.payments import PaymentBackend, PaymentError
from agentmarket.commerce.workers import Worker, WorkerDirectory
from agentmarket.config import CommerceConfig
from agentmarket.logging_config import log_job_transition, log_webhook_rejection
from agentmarket.sanitize import sanitize_string, sanitize_text
from agentmarket.security.secrets_scanner import ContextScanner, SecretsScanner
from agentmarket.webhooks.crypto import WebhookVerificationError, verify_webhook
from agentmarket.webhooks.dispatcher import WebhookDeliveryError, WebhookDispatcher

if TYPE_CHECKING:
    from agentmarket.commerce.storage.base import CommerceStore

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "deadline exceeded"
MAX_TASK_LENGTH = 10_000
MAX_REASON_LENGTH = 2_000
MAX_DELIVERABLE_TEXT_LENGTH = 100_000
MAX_DELIVERABLE_FILES = 100


class JobServiceError(Exception):
    """Base exception for job service errors."""

    pass


class JobNotFoundError(JobServiceError):
    """Job not found."""

    pass


class WorkerNotFoundError(JobServiceError):
    """Worker job references an unknown worker."""

    pass


class InvalidTransitionError(JobServiceError):
    """Invalid state transition."""

    pass


class UnauthorizedError(JobServiceError):
    """Actor not authorized for this operation."""

    pass


class DispatchError(JobServiceError):
    """Job could not be dispatched; it has been cancelled and refunded."""

    pass


class WorkerUnreachableError(DispatchError):
    """Worker endpoint failed or timed out; the job has been cancelled and refunded."""

    pass


class SecurityBlockedError(DispatchError):
    """Job context contained secrets; the job has been cancelled and refunded."""

    def __init__(self, blocked_files: List[str], blocked_patterns: List[str]):
        self.blocked_files = list(blocked_files)
        self.blocked_patterns = list(blocked_patterns)
        message = f"Job blocked: sensitive data detected in {', '.join(self.blocked_files)}"
        if self.blocked_patterns:
            message += f" (patterns: {', '.join(self.blocked_patterns)})"
        super().__init__(message)


class SettlementError(JobServiceError):
    """Escrow release failed; the approval was rolled back."""

    pass


@dataclass
class TimeoutSweepReport:
    """Outcome of one timeout sweep."""

    checked: int = 0
    cancelled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "failures": self.failures,
            "dry_run": self.dry_run,
        }


class JobService:
    """Job lifecycle operations.

    Args:
        store: Commerce store shared with the escrow and wallet services
        workers: Worker directory (endpoints, secrets, reputation)
        payments: Payment backend used for payouts
        config: Commerce configuration
        dispatcher: Outbound webhook sender (defaults to one using the configured timeout)
        scanner: Context scanner run before dispatch
        now_fn: Clock (UTC)
    """

    def __init__(
        self,
        store: "CommerceStore",
        workers: WorkerDirectory,
        payments: PaymentBackend,
        config: Optional[CommerceConfig] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        scanner: Optional[ContextScanner] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.workers = workers
        self.config = config or CommerceConfig()
        self.dispatcher = dispatcher or WebhookDispatcher(
            timeout=self.config.dispatch_timeout_seconds
        )
        self.scanner = scanner or SecretsScanner()
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self.escrow = EscrowService(store, payments, self.config, now_fn=self._now)

    def _utc_now(self) -> datetime:
        return self._now()

    # === Internals ===

    def _get(self, job_id: str) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def _transition(
        self,
        job: Job,
        new_status: JobStatus,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Apply a validated status change and record it. Must run inside a unit."""
        if not job.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Cannot transition job {job.id} from {job.status} to {new_status.value}"
            )
        from_status = job.status
        job.status = new_status.value
        self.store.update_job(job)
        self.store.save_transition(
            JobStateTransition(
                id=str(uuid.uuid4()),
                job_id=job.id,
                from_status=from_status,
                to_status=new_status.value,
                actor_id=actor_id,
                reason=reason,
                created_at=self._utc_now(),
            )
        )
        return from_status, new_status.value

    def _check_owner(self, job: Job, requester_id: str, action: str) -> None:
        if job.requester_id != requester_id:
            raise UnauthorizedError(f"Only the requester can {action} this job")

    # === Creation & dispatch ===

    def create_job(
        self,
        requester_id: str,
        type: Union[str, JobType],
        task: str,
        budget: Any,
        skill_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """Create a job and lock its budget in escrow.

        Worker jobs are dispatched immediately; if dispatch fails the job is
        cancelled and refunded before the error propagates.

        Raises:
            ValueError: If inputs are invalid (nothing is written)
            WorkerNotFoundError: If ``worker_id`` is unknown (nothing is written)
            InsufficientFundsError: If the wallet cannot cover the budget
            DispatchError: If a worker job could not be dispatched
        """
        requester_id = sanitize_string(requester_id, "requester_id", max_length=255)
        task = sanitize_string(task, "task", max_length=MAX_TASK_LENGTH)
        job_type = JobType(getattr(type, "value", type)).value
        budget = to_money(budget)
        now = self._utc_now()

        if job_type == JobType.WORKER.value and skill_id:
            raise ValueError("Worker jobs cannot reference a skill_id")
        if job_type == JobType.SKILL.value and worker_id:
            raise ValueError("Skill jobs cannot reference a worker_id")

        worker: Optional[Worker] = None
        timeout_at = None
        if job_type == JobType.WORKER.value:
            if not worker_id:
                raise ValueError("Worker jobs require a worker_id")
            worker = self.workers.lookup(worker_id)
            if worker is None:
                raise WorkerNotFoundError(f"Worker not found: {worker_id}")
            timeout_at = now + timedelta(
                minutes=self.config.timeout_multiplier * worker.p90_completion_minutes
            )

        # Id allocated up front so the escrow can reference it in the same unit
        job = Job(
            id=Job.new_id(),
            requester_id=requester_id,
            type=job_type,
            task=task,
            budget=budget,
            skill_id=skill_id,
            worker_id=worker_id,
            inputs=dict(inputs or {}),
            context=dict(context or {}),
            status=(
                JobStatus.IN_PROGRESS.value
                if job_type == JobType.SKILL.value
                else JobStatus.POSTED.value
            ),
            created_at=now,
            accepted_at=now if job_type == JobType.SKILL.value else None,
            timeout_at=timeout_at,
        )

        with self.store.atomic():
            self.escrow.lock(requester_id, job.id, budget)
            self.store.save_job(job)
            self.store.save_transition(
                JobStateTransition(
                    id=str(uuid.uuid4()),
                    job_id=job.id,
                    to_status=job.status,
                    actor_id=requester_id,
                    created_at=now,
                )
            )

        logger.info(f"Created {job_type} job {job.id} for {requester_id} (budget {budget})")
        log_job_transition(job.id, None, job.status, requester_id)

        if worker is not None:
            job = self.dispatch_job(job, worker)
        return job

    def dispatch_job(self, job: Job, worker: Optional[Worker] = None) -> Job:
        """Send the job to its worker and mark it in progress.

        Raises:
            DispatchError: No endpoint, or a required secret is missing
            SecurityBlockedError: The context contains secrets
            WorkerUnreachableError: The POST failed or timed out
        """
        if worker is None:
            worker = self.workers.lookup(job.worker_id) if job.worker_id else None
        if worker is None or not worker.endpoint:
            self._cancel_for_dispatch(job, "worker has no endpoint")
            raise DispatchError(f"Worker {job.worker_id} has no webhook endpoint")

        scan = self.scanner.scan(job.context)
        if not scan.safe:
            logger.warning(
                f"Blocked dispatch of job {job.id}: sensitive files {scan.blocked_files}"
            )
            self._cancel_for_dispatch(job, "sensitive data in context")
            raise SecurityBlockedError(scan.blocked_files, scan.blocked_patterns)

        if not worker.secret and self.config.require_webhook_secret:
            self._cancel_for_dispatch(job, "worker has no webhook secret")
            raise DispatchError(f"Worker {worker.id} has no webhook secret configured")

        payload = {
            "jobId": job.id,
            "task": job.task,
            "inputs": job.inputs,
            "context": job.context,
            "callbackUrl": self.config.callback_url(job.id),
            "budget": str(job.budget),
            "deadline": job.timeout_at.isoformat() if job.timeout_at else None,
        }

        try:
            self.dispatcher.send(worker.endpoint, payload, secret=worker.secret)
        except WebhookDeliveryError as e:
            self._cancel_for_dispatch(job, "worker unreachable")
            raise WorkerUnreachableError(f"Worker {worker.id} unreachable: {e}") from e

        with self.store.atomic():
            current = self._get(job.id)
            # The worker may already have delivered, or the sweep cancelled it
            if current.status != JobStatus.POSTED.value:
                logger.info(f"Job {job.id} moved to {current.status} during dispatch")
                return current
            current.accepted_at = self._utc_now()
            transition = self._transition(current, JobStatus.IN_PROGRESS)

        logger.info(f"Dispatched job {job.id} to worker {worker.id}")
        log_job_transition(job.id, *transition)
        return current

    def _cancel_for_dispatch(self, job: Job, reason: str) -> None:
        logger.warning(f"Dispatch of job {job.id} failed ({reason}); cancelling and refunding")
        self._cancel(job.id, f"dispatch failed: {reason}", actor_id=None)

    # === Delivery ===

    def deliver_job(
        self,
        job_id: str,
        deliverable_text: Optional[str] = None,
        deliverable_url: Optional[str] = None,
        deliverable_files: Optional[Dict[str, str]] = None,
    ) -> Job:
        """Record a deliverable.

        Idempotent: once a job is delivered (or already approved/rejected) the
        stored job is returned unchanged, whatever the new payload says. The
        payload is only validated for a first delivery.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job was cancelled
            ValueError: If a first delivery's payload is invalid
        """
        with self.store.atomic():
            job = self._get(job_id)
            if job.status in DELIVERY_SETTLED_STATUSES:
                logger.info(f"Duplicate delivery for job {job_id} ignored ({job.status})")
                return job

            job.deliverable_text = self._clean_deliverable_text(deliverable_text)
            job.deliverable_url = self._clean_deliverable_url(deliverable_url)
            job.deliverable_files = self._clean_deliverable_files(deliverable_files)
            job.delivered_at = self._utc_now()
            transition = self._transition(job, JobStatus.DELIVERED, actor_id=job.worker_id)

        logger.info(f"Job {job_id} delivered")
        log_job_transition(job_id, *transition, actor_id=job.worker_id)
        return job

    @staticmethod
    def _clean_deliverable_text(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        cleaned = sanitize_text(
            sanitize_string(
                text, "deliverable_text", max_length=MAX_DELIVERABLE_TEXT_LENGTH, required=False
            )
        )
        return cleaned or None

    @staticmethod
    def _clean_deliverable_url(url: Optional[str]) -> Optional[str]:
        if url is None:
            return None
        url = sanitize_string(url, "deliverable_url", max_length=2048, required=False).strip()
        if url and not url.startswith(("https://", "http://")):
            raise ValueError("deliverable_url must be an http(s) URL")
        return url or None

    @staticmethod
    def _clean_deliverable_files(files: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """Validate the ``{file name: content}`` map.

        Contents are files, not markup, so only control characters are
        stripped.
        """
        if files is None:
            return None
        if not isinstance(files, dict):
            raise ValueError("deliverable_files must be an object mapping file names to contents")
        if len(files) > MAX_DELIVERABLE_FILES:
            raise ValueError(f"deliverable_files has too many files (max {MAX_DELIVERABLE_FILES})")
        cleaned = {}
        for name, content in files.items():
            name = sanitize_string(name, "deliverable file name", max_length=500)
            cleaned[name] = sanitize_string(
                content,
                f"deliverable file {name}",
                max_length=MAX_DELIVERABLE_TEXT_LENGTH,
                required=False,
            )
        return cleaned

    def receive_delivery(
        self,
        job_id: str,
        raw_body: Union[str, bytes],
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> Job:
        """Authenticate a worker's delivery callback and record it.

        Raises:
            WebhookVerificationError: Signature missing, stale, future-dated or wrong
            JobNotFoundError: If the job does not exist
            ValueError: If the body is not a JSON object
        """
        job = self._get(job_id)
        worker = self.workers.lookup(job.worker_id) if job.worker_id else None
        if worker is None:
            log_webhook_rejection("delivery", "no worker for job", job_id)
            raise WebhookVerificationError()

        if worker.secret:
            result = verify_webhook(
                raw_body,
                signature,
                timestamp,
                worker.secret,
                self.config.webhook_max_age_seconds,
                future_skew_seconds=self.config.webhook_future_skew_seconds,
                now_ms=int(self._utc_now().timestamp() * 1000),
            )
            if not result.valid:
                logger.warning(f"Rejected delivery for job {job_id}: {result.reason.value}")
                log_webhook_rejection("delivery", result.reason.value, job_id)
                raise WebhookVerificationError(result.reason)
        elif self.config.require_webhook_secret:
            log_webhook_rejection("delivery", "worker has no secret", job_id)
            raise WebhookVerificationError()
        else:
            logger.warning(f"Accepting unsigned delivery for job {job_id} (no worker secret)")

        try:
            body = json.loads(raw_body or b"{}")
        except ValueError as e:
            raise ValueError(f"Invalid delivery payload: {e}") from e
        if not isinstance(body, dict):
            raise ValueError("Delivery payload must be a JSON object")

        return self.deliver_job(
            job_id,
            deliverable_text=body.get("deliverableText"),
            deliverable_url=body.get("deliverableUrl"),
            deliverable_files=body.get("deliverableFiles"),
        )

    # === Settlement ===

    def approve_job(
        self,
        job_id: str,
        requester_id: str,
        rating: int,
        feedback: Optional[str] = None,
    ) -> Job:
        """Accept the deliverable and release the escrow.

        The status change and the release (including the worker transfer)
        share one unit. The reputation update runs after commit.

        Raises:
            ValueError: If the rating is outside 1-5
            JobNotFoundError: If the job does not exist
            UnauthorizedError: If the caller is not the requester
            InvalidTransitionError: If the job is not delivered
            SettlementError: If the release failed (nothing was changed)
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValueError("Rating must be an integer between 1 and 5")
        if feedback is not None:
            feedback = sanitize_text(
                sanitize_string(feedback, "feedback", max_length=MAX_REASON_LENGTH, required=False)
            )

        with self.store.atomic():
            job = self._get(job_id)
            self._check_owner(job, requester_id, "approve")
            if job.status != JobStatus.DELIVERED.value:
                raise InvalidTransitionError(f"Job must be delivered to approve (is {job.status})")

            job.rating = rating
            job.feedback = feedback or None
            job.completed_at = self._utc_now()
            transition = self._transition(job, JobStatus.APPROVED, actor_id=requester_id)

            try:
                if job.is_skill_job:
                    self.escrow.settle_to_platform(job.id)
                else:
                    worker = self.workers.lookup(job.worker_id)
                    if worker is None:
                        raise SettlementError(f"Worker not found: {job.worker_id}")
                    self.escrow.release(job.id, worker)
            except (EscrowServiceError, PaymentError) as e:
                logger.error(f"Settlement of job {job_id} failed, approval rolled back: {e}")
                raise SettlementError(f"Escrow release failed for job {job_id}: {e}") from e

        logger.info(f"Job {job_id} approved with rating {rating}")
        log_job_transition(job_id, *transition, actor_id=requester_id)

        if not job.is_skill_job:
            try:
                self.workers.record_rating(job.worker_id, rating)
            except Exception as e:
                # Money already moved; reputation can be reconciled later
                logger.warning(f"Reputation update failed for worker {job.worker_id}: {e}")
        return job

    def reject_job(self, job_id: str, requester_id: str, reason: str) -> Job:
        """Refuse the deliverable and refund the full escrow amount.

        Raises:
            ValueError: If the reason is empty
            UnauthorizedError: If the caller is not the requester
            InvalidTransitionError: If the job is not delivered
            InvalidEscrowStateError: If the escrow is no longer locked
        """
        reason = sanitize_text(sanitize_string(reason, "reason", max_length=MAX_REASON_LENGTH))

        with self.store.atomic():
            job = self._get(job_id)
            self._check_owner(job, requester_id, "reject")
            if job.status != JobStatus.DELIVERED.value:
                raise InvalidTransitionError(f"Job must be delivered to reject (is {job.status})")

            job.feedback = reason
            job.completed_at = self._utc_now()
            transition = self._transition(
                job, JobStatus.REJECTED, actor_id=requester_id, reason=reason
            )
            self.escrow.refund(job.id)

        logger.info(f"Job {job_id} rejected by {requester_id}")
        log_job_transition(job_id, *transition, actor_id=requester_id)
        return job

    def cancel_job(self, job_id: str, reason: str, actor_id: Optional[str] = None) -> Job:
        """Cancel a posted or in-progress job and refund it.

        Raises:
            UnauthorizedError: If ``actor_id`` is given and is not the requester
            InvalidTransitionError: If the job is already delivered or terminal
        """
        reason = sanitize_string(reason, "reason", max_length=MAX_REASON_LENGTH)
        return self._cancel(job_id, reason, actor_id)

    def _cancel(self, job_id: str, reason: str, actor_id: Optional[str]) -> Job:
        with self.store.atomic():
            job = self._get(job_id)
            if actor_id is not None:
                self._check_owner(job, actor_id, "cancel")
            if not job.is_active:
                raise InvalidTransitionError(f"Cannot cancel job {job_id} in status {job.status}")

            job.feedback = reason
            job.completed_at = self._utc_now()
            transition = self._transition(
                job, JobStatus.CANCELLED, actor_id=actor_id, reason=reason
            )
            self.escrow.refund(job.id)

        logger.info(f"Job {job_id} cancelled: {reason}")
        log_job_transition(job_id, *transition, actor_id=actor_id)
        return job

    # === Timeouts ===

    def process_timeouts(
        self, now: Optional[datetime] = None, dry_run: bool = False
    ) -> TimeoutSweepReport:
        """Cancel and refund active jobs past their deadline.

        Each job is handled in its own unit and its status is re-read inside
        it, so a job settled concurrently is skipped rather than refunded
        twice. A job whose refund fails stays active and is retried by the
        next sweep; the failure is reported.
        """
        now = now or self._utc_now()
        candidates = self.store.list_timed_out_jobs(now)
        report = TimeoutSweepReport(checked=len(candidates), dry_run=dry_run)

        for candidate in candidates:
            if dry_run:
                report.cancelled.append(candidate.id)
                continue

            try:
                with self.store.atomic():
                    job = self._get(candidate.id)
                    if not job.is_active or job.timeout_at is None or job.timeout_at > now:
                        report.skipped.append(job.id)
                        continue
                    job.feedback = TIMEOUT_REASON
                    job.completed_at = now
                    transition = self._transition(
                        job, JobStatus.CANCELLED, reason=TIMEOUT_REASON
                    )
                    self.escrow.refund(job.id)
            except Exception as e:
                logger.error(f"Timeout cancel failed for job {candidate.id}: {e}")
                report.failures.append({"job_id": candidate.id, "error": str(e)})
                continue

            report.cancelled.append(job.id)
            log_job_transition(job.id, *transition)

        if report.cancelled or report.failures:
            logger.info(
                f"Timeout sweep: {len(report.cancelled)} cancelled, "
                f"{len(report.skipped)} skipped, {len(report.failures)} failed"
                f"{' (dry run)' if dry_run else ''}"
            )
        return report

    # === Queries ===

    def get_job(self, job_id: str) -> Job:
        return self._get(job_id)

    def get_jobs_for_requester(
        self,
        requester_id: str,
        status: Optional[Union[str, JobStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        return self.store.list_jobs(
            requester_id=requester_id, status=status, limit=limit, offset=offset
        )

    def get_jobs_for_worker(
        self,
        worker_id: str,
        status: Optional[Union[str, JobStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        return self.store.list_jobs(worker_id=worker_id, status=status, limit=limit, offset=offset)

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        """Audit trail for a job, oldest first."""
        self._get(job_id)
        return self.store.get_transitions(job_id)
