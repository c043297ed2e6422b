"""
Escrow service.

Moves money between a requester's wallet, the escrow record and the worker.
Every operation runs in one atomic unit of the store and re-reads the escrow
status inside it, so of two concurrent release/refund calls exactly one sees
``locked`` and the other fails naming the status it found.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Optional

from agentmarket.commerce.escrow.models import Escrow, EscrowStatus
from agentmarket.commerce.money import split_amount, to_money
from agentmarket.commerce.payments import PaymentBackend
from agentmarket.commerce.wallet.models import Transaction, TransactionType
from agentmarket.commerce.wallet.service import WalletService
from agentmarket.commerce.workers import Worker
from agentmarket.config import CommerceConfig
from agentmarket.logging_config import log_escrow_event

if TYPE_CHECKING:
    from agentmarket.commerce.storage.base import CommerceStore

logger = logging.getLogger(__name__)


class EscrowServiceError(Exception):
    """Base exception for escrow service errors."""

    pass


class EscrowNotFoundError(EscrowServiceError):
    """No escrow exists for the job."""

    pass


class InvalidEscrowStateError(EscrowServiceError):
    """Operation requires a locked escrow."""

    def __init__(self, job_id: str, status: str, action: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Cannot {action} escrow for job {job_id}: escrow is {status}")


class PayoutDestinationMissingError(EscrowServiceError):
    """Worker has no payout destination configured."""

    pass


class EscrowService:
    """Escrow lock, release and refund.

    Args:
        store: Commerce store; wallet, escrow and ledger writes share its units
        payments: Backend used for worker payouts
        config: Supplies the platform fee percentage applied at lock time
        now_fn: Clock (UTC)
    """

    def __init__(
        self,
        store: "CommerceStore",
        payments: PaymentBackend,
        config: Optional[CommerceConfig] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.payments = payments
        self.config = config or CommerceConfig()
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self.wallets = WalletService(store, self.config, now_fn=self._now)

    def _utc_now(self) -> datetime:
        return self._now()

    def get_escrow(self, job_id: str) -> Escrow:
        escrow = self.store.get_escrow(job_id)
        if escrow is None:
            raise EscrowNotFoundError(f"Escrow not found for job: {job_id}")
        return escrow

    def _get_locked(self, job_id: str, action: str) -> Escrow:
        escrow = self.get_escrow(job_id)
        if not escrow.is_locked:
            logger.warning(f"Refusing to {action} escrow for job {job_id}: {escrow.status}")
            raise InvalidEscrowStateError(job_id, escrow.status, action)
        return escrow

    def lock(self, requester_id: str, job_id: str, amount: Any) -> Escrow:
        """Debit the requester and hold ``amount`` against ``job_id``.

        The fee split is computed here and frozen on the escrow.

        Raises:
            InsufficientFundsError: If the wallet cannot cover ``amount``
            DuplicateRecordError: If the job already has an escrow
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("Escrow amount must be positive")

        platform_fee, worker_payout = split_amount(amount, self.config.platform_fee_percent)

        with self.store.atomic():
            self.wallets.debit(
                requester_id, amount, reference=job_id, metadata={"reason": "escrow_lock"}
            )
            escrow = Escrow(
                job_id=job_id,
                requester_id=requester_id,
                amount=amount,
                platform_fee=platform_fee,
                worker_payout=worker_payout,
                locked_at=self._utc_now(),
            )
            self.store.insert_escrow(escrow)

        logger.info(
            f"Locked {amount} for job {job_id} (fee {platform_fee}, payout {worker_payout})"
        )
        log_escrow_event(job_id, "lock", amount)
        return escrow

    def release(self, job_id: str, worker: Worker) -> Escrow:
        """Pay the worker their share and mark the escrow released.

        The transfer happens inside the unit: if it raises (including a
        ``PaymentTimeoutError`` after ``payment_timeout_seconds``), nothing is
        written.

        Raises:
            EscrowNotFoundError: If the job has no escrow
            InvalidEscrowStateError: If the escrow is not locked
            PayoutDestinationMissingError: If the worker cannot be paid
            PaymentError: If the payment backend refuses the transfer
        """
        with self.store.atomic():
            escrow = self._get_locked(job_id, "release")
            if not worker.payout_destination:
                raise PayoutDestinationMissingError(
                    f"Worker {worker.id} has no payout destination"
                )

            reference = self.payments.transfer(
                worker.payout_destination,
                escrow.worker_payout,
                {"job_id": job_id, "worker_id": worker.id},
                timeout=self.config.payment_timeout_seconds,
            )

            escrow.status = EscrowStatus.RELEASED.value
            escrow.released_at = self._utc_now()
            escrow.transfer_reference = reference
            self.store.update_escrow(escrow)
            self.store.append_transaction(
                Transaction(
                    user_id=worker.id,
                    type=TransactionType.PAYOUT.value,
                    amount=escrow.worker_payout,
                    reference=job_id,
                    metadata={
                        "transfer_reference": reference,
                        "platform_fee": str(escrow.platform_fee),
                    },
                    created_at=self._utc_now(),
                )
            )

        logger.info(f"Released {escrow.worker_payout} for job {job_id} to worker {worker.id}")
        log_escrow_event(job_id, "release", escrow.worker_payout, reference)
        return escrow

    def settle_to_platform(self, job_id: str) -> Escrow:
        """Close a skill job's escrow: the platform executed the work, no transfer."""
        with self.store.atomic():
            escrow = self._get_locked(job_id, "settle")
            escrow.status = EscrowStatus.RELEASED.value
            escrow.released_at = self._utc_now()
            self.store.update_escrow(escrow)

        logger.info(f"Settled escrow for skill job {job_id} to platform")
        log_escrow_event(job_id, "settle", escrow.amount)
        return escrow

    def refund(self, job_id: str) -> Escrow:
        """Return the full amount (fee included) to the requester.

        Raises:
            EscrowNotFoundError: If the job has no escrow
            InvalidEscrowStateError: If the escrow is not locked
        """
        with self.store.atomic():
            escrow = self._get_locked(job_id, "refund")
            self.wallets.credit(
                escrow.requester_id,
                escrow.amount,
                TransactionType.REFUND,
                reference=job_id,
            )
            escrow.status = EscrowStatus.REFUNDED.value
            escrow.released_at = self._utc_now()
            self.store.update_escrow(escrow)

        logger.info(f"Refunded {escrow.amount} for job {job_id} to {escrow.requester_id}")
        log_escrow_event(job_id, "refund", escrow.amount)
        return escrow

    def total_locked(self, requester_id: str) -> Decimal:
        """Sum of currently locked escrows funded by ``requester_id``."""
        jobs = self.store.list_jobs(requester_id=requester_id, limit=10_000)
        total = Decimal("0.00")
        for job in jobs:
            escrow = self.store.get_escrow(job.id)
            if escrow and escrow.is_locked:
                total += escrow.amount
        return total
