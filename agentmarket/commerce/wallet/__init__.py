"""Wallet subsystem for agentmarket.

Models:
- Wallet: A user's balance
- Transaction: Append-only ledger entry
- TransactionType: deposit, deduction, refund, payout

Service:
- WalletService: Deposits, balance queries and low-balance alerts
"""

from agentmarket.commerce.wallet.models import Transaction, TransactionType, Wallet
from agentmarket.commerce.wallet.service import (
    InsufficientFundsError,
    WalletInfo,
    WalletNotFoundError,
    WalletService,
    WalletServiceError,
)

__all__ = [
    # Models
    "Wallet",
    "Transaction",
    "TransactionType",
    # Service
    "WalletService",
    "WalletServiceError",
    "WalletNotFoundError",
    "InsufficientFundsError",
    "WalletInfo",
]
