"""
In-memory commerce store for testing and local development.

All access is serialized by one re-entrant lock. ``atomic()`` snapshots the
whole state on entry to the outermost unit and restores it if the unit
raises. Records are copied on the way in and out so callers never hold a
live reference into the store.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from agentmarket.commerce.escrow.models import Escrow
from agentmarket.commerce.jobs.models import ACTIVE_STATUSES, Job, JobStateTransition
from agentmarket.commerce.storage.base import DuplicateRecordError
from agentmarket.commerce.wallet.models import Transaction, Wallet

logger = logging.getLogger(__name__)


class InMemoryCommerceStore:
    """In-memory store implementing ``CommerceStore``."""

    def __init__(self):
        """Initialize empty storage."""
        self._lock = threading.RLock()
        self._depth = 0
        self._wallets: Dict[str, Wallet] = {}
        self._escrows: Dict[str, Escrow] = {}
        self._transactions: List[Transaction] = []
        self._jobs: Dict[str, Job] = {}
        self._transitions: Dict[str, List[JobStateTransition]] = {}  # job_id -> list

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _snapshot(self) -> tuple:
        return copy.deepcopy(
            (self._wallets, self._escrows, self._transactions, self._jobs, self._transitions)
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._wallets,
            self._escrows,
            self._transactions,
            self._jobs,
            self._transitions,
        ) = snapshot

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    logger.debug("Atomic unit failed, restoring snapshot")
                    self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    # === Wallets ===

    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        with self._lock:
            wallet = self._wallets.get(user_id)
            return copy.deepcopy(wallet) if wallet else None

    def put_wallet(self, wallet: Wallet) -> None:
        with self._lock:
            self._wallets[wallet.user_id] = copy.deepcopy(wallet)

    # === Escrows ===

    def insert_escrow(self, escrow: Escrow) -> None:
        with self._lock:
            if escrow.job_id in self._escrows:
                raise DuplicateRecordError(f"Escrow already exists for job {escrow.job_id}")
            self._escrows[escrow.job_id] = copy.deepcopy(escrow)

    def get_escrow(self, job_id: str) -> Optional[Escrow]:
        with self._lock:
            escrow = self._escrows.get(job_id)
            return copy.deepcopy(escrow) if escrow else None

    def update_escrow(self, escrow: Escrow) -> bool:
        with self._lock:
            if escrow.job_id not in self._escrows:
                return False
            self._escrows[escrow.job_id] = copy.deepcopy(escrow)
            return True

    # === Ledger ===

    def append_transaction(self, transaction: Transaction) -> str:
        with self._lock:
            self._transactions.append(transaction)
            return transaction.id

    def list_transactions(self, user_id: str, limit: int = 20) -> List[Transaction]:
        with self._lock:
            txs = [t for t in self._transactions if t.user_id == user_id]
        # Insertion order breaks created_at ties
        return list(reversed(txs))[:limit]

    # === Jobs ===

    def save_job(self, job: Job) -> str:
        with self._lock:
            if job.id in self._jobs:
                raise DuplicateRecordError(f"Job already exists: {job.id}")
            self._jobs[job.id] = copy.deepcopy(job)
            self._transitions.setdefault(job.id, [])
            return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def update_job(self, job: Job) -> bool:
        with self._lock:
            if job.id not in self._jobs:
                return False
            self._jobs[job.id] = copy.deepcopy(job)
            return True

    def list_jobs(
        self,
        requester_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values()]

        if requester_id is not None:
            jobs = [j for j in jobs if j.requester_id == requester_id]
        if worker_id is not None:
            jobs = [j for j in jobs if j.worker_id == worker_id]
        if status is not None:
            status_val = getattr(status, "value", status)
            jobs = [j for j in jobs if j.status == status_val]

        # Sort by created_at desc
        jobs.sort(key=lambda j: j.created_at or self._utc_now(), reverse=True)
        return jobs[offset : offset + limit]

    def list_timed_out_jobs(self, now: datetime) -> List[Job]:
        with self._lock:
            return [
                copy.deepcopy(j)
                for j in self._jobs.values()
                if j.status in ACTIVE_STATUSES and j.timeout_at is not None and j.timeout_at <= now
            ]

    # === Transitions ===

    def save_transition(self, transition: JobStateTransition) -> str:
        with self._lock:
            self._transitions.setdefault(transition.job_id, []).append(transition)
            return transition.id

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        with self._lock:
            return list(self._transitions.get(job_id, []))
