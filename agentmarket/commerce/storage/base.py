"""
Commerce storage protocol.

A single store holds wallets, escrows, the transaction ledger, jobs and the
job transition log, so a job write and the money movement that goes with it
can share one atomic unit.
"""

from datetime import datetime
from typing import ContextManager, List, Optional, Protocol

from agentmarket.commerce.escrow.models import Escrow
from agentmarket.commerce.jobs.models import Job, JobStateTransition
from agentmarket.commerce.wallet.models import Transaction, Wallet


class StorageError(Exception):
    """Base exception for storage failures."""

    pass


class DuplicateRecordError(StorageError):
    """Insert of a record whose key already exists."""

    pass


class CommerceStore(Protocol):
    """Protocol for commerce persistence backends.

    ``atomic()`` opens a unit of work: every write made inside it commits
    together, or none do if the block raises. Units hold exclusive access, so
    a read-check-write inside one unit cannot interleave with another.
    """

    def atomic(self) -> ContextManager[None]:
        """Open an atomic unit of work (re-entrant)."""
        ...

    # Wallets
    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        ...

    def put_wallet(self, wallet: Wallet) -> None:
        ...

    # Escrows
    def insert_escrow(self, escrow: Escrow) -> None:
        """Insert a new escrow. Raises DuplicateRecordError if the job has one."""
        ...

    def get_escrow(self, job_id: str) -> Optional[Escrow]:
        ...

    def update_escrow(self, escrow: Escrow) -> bool:
        ...

    # Ledger
    def append_transaction(self, transaction: Transaction) -> str:
        ...

    def list_transactions(self, user_id: str, limit: int = 20) -> List[Transaction]:
        """Most recent first."""
        ...

    # Jobs
    def save_job(self, job: Job) -> str:
        """Insert a new job. Raises DuplicateRecordError if the id exists."""
        ...

    def get_job(self, job_id: str) -> Optional[Job]:
        ...

    def update_job(self, job: Job) -> bool:
        ...

    def list_jobs(
        self,
        requester_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """Newest first."""
        ...

    def list_timed_out_jobs(self, now: datetime) -> List[Job]:
        """Posted or in-progress jobs whose ``timeout_at`` is at or before ``now``."""
        ...

    # Transitions (audit log)
    def save_transition(self, transition: JobStateTransition) -> str:
        ...

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        """Oldest first."""
        ...
