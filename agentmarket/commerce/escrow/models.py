"""
Escrow data models.

One escrow per job. The fee split is computed once, when the escrow is
locked, and never recomputed: later fee changes do not touch locked funds.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

from agentmarket.commerce.money import to_money


class EscrowStatus(str, Enum):
    """Escrow lifecycle. One-way: locked -> released | refunded."""

    LOCKED = "locked"
    RELEASED = "released"
    REFUNDED = "refunded"


@dataclass
class Escrow:
    """Funds held against a job.

    Attributes:
        job_id: Job this escrow belongs to (unique)
        requester_id: Wallet the funds came from and return to on refund
        amount: Total locked (equals the job budget)
        platform_fee: Platform's share, frozen at lock time
        worker_payout: Worker's share, frozen at lock time
        status: locked, released or refunded
        locked_at: When funds were locked
        released_at: When funds left escrow (release or refund)
        transfer_reference: Payment backend reference for the payout
    """

    job_id: str
    requester_id: str
    amount: Decimal
    platform_fee: Decimal
    worker_payout: Decimal
    status: str = EscrowStatus.LOCKED.value
    locked_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    transfer_reference: Optional[str] = None

    def __post_init__(self):
        self.amount = to_money(self.amount)
        self.platform_fee = to_money(self.platform_fee)
        self.worker_payout = to_money(self.worker_payout)

        if self.amount <= 0:
            raise ValueError("Escrow amount must be positive")
        if self.platform_fee < 0 or self.worker_payout < 0:
            raise ValueError("Escrow shares cannot be negative")
        if self.platform_fee + self.worker_payout != self.amount:
            raise ValueError("Escrow amount must equal platform fee plus worker payout")

        valid_statuses = [s.value for s in EscrowStatus]
        if self.status not in valid_statuses:
            raise ValueError(f"Invalid status: {self.status}. Must be one of {valid_statuses}")

        if self.locked_at is None:
            self.locked_at = datetime.now(timezone.utc)

    @property
    def is_locked(self) -> bool:
        return self.status == EscrowStatus.LOCKED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "requester_id": self.requester_id,
            "amount": str(self.amount),
            "platform_fee": str(self.platform_fee),
            "worker_payout": str(self.worker_payout),
            "status": self.status,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "released_at": self.released_at.isoformat() if self.released_at else None,
            "transfer_reference": self.transfer_reference,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Escrow":
        return cls(
            job_id=data["job_id"],
            requester_id=data["requester_id"],
            amount=Decimal(str(data["amount"])),
            platform_fee=Decimal(str(data["platform_fee"])),
            worker_payout=Decimal(str(data["worker_payout"])),
            status=data.get("status", EscrowStatus.LOCKED.value),
            locked_at=date_parser.isoparse(data["locked_at"]) if data.get("locked_at") else None,
            released_at=(
                date_parser.isoparse(data["released_at"]) if data.get("released_at") else None
            ),
            transfer_reference=data.get("transfer_reference"),
        )
