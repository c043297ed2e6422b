"""
Job data models for agentmarket.

A job is a unit of paid work posted by a requester. It is executed either by
a local skill or by an external worker reached through a webhook. The budget
is locked in escrow when the job is created.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from dateutil import parser as date_parser


class JobStatus(str, Enum):
    """Job lifecycle status."""

    POSTED = "posted"  # Created, escrow locked, not yet acknowledged by the worker
    IN_PROGRESS = "in_progress"  # Worker accepted the dispatch (or skill running)
    DELIVERED = "delivered"  # Worker sent a deliverable
    APPROVED = "approved"  # Requester accepted, escrow released
    REJECTED = "rejected"  # Requester refused, escrow refunded
    CANCELLED = "cancelled"  # Cancelled before delivery, escrow refunded


class JobType(str, Enum):
    """Who executes the job."""

    SKILL = "skill"
    WORKER = "worker"


# Valid state transitions
VALID_JOB_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.POSTED: {JobStatus.IN_PROGRESS, JobStatus.DELIVERED, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.DELIVERED, JobStatus.CANCELLED},
    JobStatus.DELIVERED: {JobStatus.APPROVED, JobStatus.REJECTED},
    JobStatus.APPROVED: set(),  # Terminal
    JobStatus.REJECTED: set(),  # Terminal
    JobStatus.CANCELLED: set(),  # Terminal
}

TERMINAL_STATUSES = frozenset(
    {JobStatus.APPROVED.value, JobStatus.REJECTED.value, JobStatus.CANCELLED.value}
)
ACTIVE_STATUSES = frozenset({JobStatus.POSTED.value, JobStatus.IN_PROGRESS.value})
# Delivery is a no-op once the job reached any of these
DELIVERY_SETTLED_STATUSES = frozenset(
    {JobStatus.DELIVERED.value, JobStatus.APPROVED.value, JobStatus.REJECTED.value}
)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return date_parser.isoparse(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def is_file_map(value: Any) -> bool:
    """True for a ``{name: content}`` mapping of strings."""
    return isinstance(value, dict) and all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    )


@dataclass
class Job:
    """A unit of paid work.

    Attributes:
        id: Unique identifier, allocated before any write
        requester_id: User who posted the job and funds the escrow
        type: "skill" or "worker"
        task: Free-text description of the work
        budget: Amount locked in escrow (never changes after creation)
        skill_id: Skill to run (skill jobs only)
        worker_id: External worker to dispatch to (worker jobs only)
        inputs: Structured inputs for the skill or worker
        context: Additional context, e.g. ``{"files": {path: content}}``
        status: Current lifecycle status
        deliverable_text: Sanitized text returned by the worker
        deliverable_url: Link to the deliverable
        deliverable_files: File map returned by the worker (path -> content)
        rating: Requester rating on approval (1-5)
        feedback: Requester feedback on approval, or the reason on rejection/cancel
        created_at: When the job was created
        accepted_at: When the worker acknowledged the dispatch
        delivered_at: When the deliverable arrived
        completed_at: When the job reached a terminal status
        timeout_at: Deadline after which the timeout sweep cancels the job
    """

    id: str
    requester_id: str
    type: str
    task: str
    budget: Decimal
    skill_id: Optional[str] = None
    worker_id: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    status: str = JobStatus.POSTED.value
    deliverable_text: Optional[str] = None
    deliverable_url: Optional[str] = None
    deliverable_files: Optional[Dict[str, str]] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate job data."""
        if isinstance(self.budget, (int, float, str)):
            self.budget = Decimal(str(self.budget))
        if self.budget <= 0:
            raise ValueError("Budget must be positive")

        valid_types = [t.value for t in JobType]
        if self.type not in valid_types:
            raise ValueError(f"Invalid type: {self.type}. Must be one of {valid_types}")

        if self.type == JobType.SKILL.value and not self.skill_id:
            raise ValueError("Skill jobs require a skill_id")
        if self.type == JobType.WORKER.value and not self.worker_id:
            raise ValueError("Worker jobs require a worker_id")

        valid_statuses = [s.value for s in JobStatus]
        if self.status not in valid_statuses:
            raise ValueError(f"Invalid status: {self.status}. Must be one of {valid_statuses}")

        if self.rating is not None and not 1 <= self.rating <= 5:
            raise ValueError("Rating must be between 1 and 5")

        if self.deliverable_files is not None and not is_file_map(self.deliverable_files):
            raise ValueError("deliverable_files must map file names to string contents")

        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Check if job is waiting on execution (posted or in progress)."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_skill_job(self) -> bool:
        return self.type == JobType.SKILL.value

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new status is valid."""
        try:
            current = JobStatus(self.status)
        except ValueError:
            return False
        return JobStatus(new_status) in VALID_JOB_TRANSITIONS.get(current, set())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "type": self.type,
            "task": self.task,
            "budget": str(self.budget),
            "skill_id": self.skill_id,
            "worker_id": self.worker_id,
            "inputs": self.inputs,
            "context": self.context,
            "status": self.status,
            "deliverable_text": self.deliverable_text,
            "deliverable_url": self.deliverable_url,
            "deliverable_files": self.deliverable_files,
            "rating": self.rating,
            "feedback": self.feedback,
            "created_at": _iso(self.created_at),
            "accepted_at": _iso(self.accepted_at),
            "delivered_at": _iso(self.delivered_at),
            "completed_at": _iso(self.completed_at),
            "timeout_at": _iso(self.timeout_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            requester_id=data["requester_id"],
            type=data["type"],
            task=data["task"],
            budget=Decimal(str(data["budget"])),
            skill_id=data.get("skill_id"),
            worker_id=data.get("worker_id"),
            inputs=data.get("inputs") or {},
            context=data.get("context") or {},
            status=data.get("status", JobStatus.POSTED.value),
            deliverable_text=data.get("deliverable_text"),
            deliverable_url=data.get("deliverable_url"),
            deliverable_files=data.get("deliverable_files"),
            rating=data.get("rating"),
            feedback=data.get("feedback"),
            created_at=_parse_dt(data.get("created_at")),
            accepted_at=_parse_dt(data.get("accepted_at")),
            delivered_at=_parse_dt(data.get("delivered_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            timeout_at=_parse_dt(data.get("timeout_at")),
        )


@dataclass
class JobStateTransition:
    """Audit log entry for job state changes.

    Attributes:
        id: Unique identifier
        job_id: Job that changed state
        from_status: Previous status (None for creation)
        to_status: New status
        actor_id: User who triggered the change (None for system actions)
        reason: Free-text reason (cancellation, rejection, timeout)
        created_at: When the transition occurred
    """

    id: str
    job_id: str
    to_status: str
    from_status: Optional[str] = None
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStateTransition":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor_id=data.get("actor_id"),
            reason=data.get("reason"),
            created_at=_parse_dt(data.get("created_at")),
        )
