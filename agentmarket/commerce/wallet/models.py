"""
Wallet data models.

Balances are Decimal amounts in a single currency. Every balance change is
mirrored by an immutable Transaction row carrying the balance after the
change, so the ledger can be replayed.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

from agentmarket.commerce.money import to_money


class TransactionType(str, Enum):
    """Kind of balance movement."""

    DEPOSIT = "deposit"  # Funds added by the user
    DEDUCTION = "deduction"  # Funds moved into escrow
    REFUND = "refund"  # Escrow returned to the requester
    PAYOUT = "payout"  # Escrow paid out to a worker


@dataclass
class Wallet:
    """A user's balance.

    Attributes:
        user_id: Owner of the wallet
        balance: Current balance, never negative
        updated_at: Last balance change
    """

    user_id: str
    balance: Decimal = Decimal("0.00")
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.balance = to_money(self.balance)
        if self.balance < 0:
            raise ValueError("Wallet balance cannot be negative")
        if self.updated_at is None:
            self.updated_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": str(self.balance),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Transaction:
    """Append-only ledger entry.

    ``amount`` is always positive; ``type`` carries the direction.
    ``user_id`` is the wallet owner, or the worker for payouts.
    """

    user_id: str
    type: str
    amount: Decimal
    balance_after: Optional[Decimal] = None
    reference: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        valid_types = [t.value for t in TransactionType]
        if self.type not in valid_types:
            raise ValueError(f"Invalid type: {self.type}. Must be one of {valid_types}")
        if Decimal(str(self.amount)) <= 0:
            raise ValueError("Transaction amount must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after) if self.balance_after is not None else None,
            "reference": self.reference,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        balance_after = data.get("balance_after")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            type=data["type"],
            amount=Decimal(str(data["amount"])),
            balance_after=Decimal(str(balance_after)) if balance_after is not None else None,
            reference=data.get("reference"),
            metadata=data.get("metadata") or {},
            created_at=date_parser.isoparse(data["created_at"]),
        )
