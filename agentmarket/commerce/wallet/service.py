"""
Wallet service.

Balance reads, deposits and the low-balance alert. Debits and credits made
on behalf of escrow go through ``debit``/``credit`` and are expected to run
inside the caller's atomic unit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from agentmarket.commerce.money import to_money
from agentmarket.commerce.wallet.models import Transaction, TransactionType, Wallet
from agentmarket.config import CommerceConfig

if TYPE_CHECKING:
    from agentmarket.commerce.storage.base import CommerceStore

logger = logging.getLogger(__name__)


class WalletServiceError(Exception):
    """Base exception for wallet service errors."""

    pass


class WalletNotFoundError(WalletServiceError):
    """Wallet does not exist."""

    pass


class InsufficientFundsError(WalletServiceError):
    """Balance does not cover the requested amount."""

    def __init__(self, balance: Decimal, required: Decimal):
        self.balance = balance
        self.required = required
        self.shortfall = required - balance
        super().__init__(
            f"Insufficient balance: have {balance}, need {required} (short {self.shortfall})"
        )


@dataclass
class WalletInfo:
    """Balance plus recent activity."""

    user_id: str
    balance: Decimal
    low_balance: bool
    transactions: List[Transaction]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": str(self.balance),
            "low_balance": self.low_balance,
            "transactions": [t.to_dict() for t in self.transactions],
        }


class WalletService:
    """Wallet operations over a ``CommerceStore``."""

    def __init__(
        self,
        store: "CommerceStore",
        config: Optional[CommerceConfig] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config or CommerceConfig()
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    def get_wallet(self, user_id: str) -> Wallet:
        """Get a wallet.

        Raises:
            WalletNotFoundError: If the user never had a balance
        """
        wallet = self.store.get_wallet(user_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet not found for user: {user_id}")
        return wallet

    def get_balance(self, user_id: str) -> Decimal:
        """Current balance; users without a wallet have zero."""
        wallet = self.store.get_wallet(user_id)
        return wallet.balance if wallet else Decimal("0.00")

    def deposit(self, user_id: str, amount: Any, reference: Optional[str] = None) -> Wallet:
        """Credit a wallet with external funds, creating it if needed."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        with self.store.atomic():
            wallet = self.credit(user_id, amount, TransactionType.DEPOSIT, reference)
        logger.info(f"Deposited {amount} to {user_id} (balance {wallet.balance})")
        return wallet

    def debit(
        self,
        user_id: str,
        amount: Decimal,
        reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Wallet:
        """Remove ``amount`` from the wallet and append a deduction.

        Raises:
            InsufficientFundsError: If the balance does not cover ``amount``
        """
        wallet = self.store.get_wallet(user_id)
        balance = wallet.balance if wallet else Decimal("0.00")
        if balance < amount:
            raise InsufficientFundsError(balance, amount)

        wallet = wallet or Wallet(user_id=user_id)
        wallet.balance = balance - amount
        wallet.updated_at = self._now()
        self.store.put_wallet(wallet)
        self.store.append_transaction(
            Transaction(
                user_id=user_id,
                type=TransactionType.DEDUCTION.value,
                amount=amount,
                balance_after=wallet.balance,
                reference=reference,
                metadata=metadata or {},
                created_at=self._now(),
            )
        )
        return wallet

    def credit(
        self,
        user_id: str,
        amount: Decimal,
        tx_type: TransactionType,
        reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Wallet:
        """Add ``amount`` to the wallet (created on first credit)."""
        wallet = self.store.get_wallet(user_id) or Wallet(user_id=user_id)
        wallet.balance = wallet.balance + amount
        wallet.updated_at = self._now()
        self.store.put_wallet(wallet)
        self.store.append_transaction(
            Transaction(
                user_id=user_id,
                type=TransactionType(tx_type).value,
                amount=amount,
                balance_after=wallet.balance,
                reference=reference,
                metadata=metadata or {},
                created_at=self._now(),
            )
        )
        return wallet

    def get_wallet_info(self, user_id: str, limit: int = 20) -> WalletInfo:
        """Balance, low-balance flag and the most recent transactions."""
        balance = self.get_balance(user_id)
        return WalletInfo(
            user_id=user_id,
            balance=balance,
            low_balance=balance < self.config.low_balance_threshold,
            transactions=self.store.list_transactions(user_id, limit=limit),
        )

    def check_low_balance(self, user_id: str) -> bool:
        """True (and a warning is logged) when the balance is under the alert threshold."""
        balance = self.get_balance(user_id)
        if balance < self.config.low_balance_threshold:
            logger.warning(
                f"Low balance for {user_id}: {balance} < {self.config.low_balance_threshold}"
            )
            return True
        return False
