"""Jobs subsystem for agentmarket.

Models:
- Job: A unit of paid work, executed by a skill or an external worker
- JobStatus: Job lifecycle status
- JobType: skill or worker
- JobStateTransition: Audit log entry for state changes

Service:
- JobService: Job operations (create, dispatch, deliver, approve, reject,
  cancel, timeout sweep)
"""

from agentmarket.commerce.jobs.models import (
    VALID_JOB_TRANSITIONS,
    Job,
    JobStateTransition,
    JobStatus,
    JobType,
)
from agentmarket.commerce.jobs.service import (
    DispatchError,
    InvalidTransitionError,
    JobNotFoundError,
    JobService,
    JobServiceError,
    SecurityBlockedError,
    SettlementError,
    TimeoutSweepReport,
    UnauthorizedError,
    WorkerNotFoundError,
    WorkerUnreachableError,
)

__all__ = [
    # Models
    "Job",
    "JobStatus",
    "JobType",
    "JobStateTransition",
    "VALID_JOB_TRANSITIONS",
    # Service
    "JobService",
    "JobServiceError",
    "JobNotFoundError",
    "WorkerNotFoundError",
    "InvalidTransitionError",
    "UnauthorizedError",
    "DispatchError",
    "WorkerUnreachableError",
    "SecurityBlockedError",
    "SettlementError",
    "TimeoutSweepReport",
]
