"""Wallet routes for agentmarket."""

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from ..auth import AdminAgent, CurrentAgent
from ..database import Wallets
from ..logging_config import get_logger
from ..rate_limit import limiter
from .errors import to_http_error

logger = get_logger("agentmarket.api.wallets")
router = APIRouter(prefix="/wallet", tags=["wallet"])


class TransactionResponse(BaseModel):
    id: str
    type: str
    amount: Decimal
    balance_after: Decimal | None = None
    reference: str | None = None
    created_at: datetime


class WalletResponse(BaseModel):
    """Balance and recent ledger entries."""

    user_id: str
    balance: Decimal
    low_balance: bool
    transactions: list[TransactionResponse]


class DepositRequest(BaseModel):
    """Credit an agent's wallet with external funds."""

    user_id: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reference: str | None = Field(None, max_length=200)


class DepositResponse(BaseModel):
    user_id: str
    balance: Decimal


@router.get("", response_model=WalletResponse)
@limiter.limit("60/minute")
def get_my_wallet(
    request: Request,
    auth: CurrentAgent,
    wallets: Wallets,
    limit: int = Query(20, ge=1, le=100),
):
    """Get your balance and most recent transactions."""
    logger.info(f"GET /wallet | agent={auth.agent_id}")

    info = wallets.get_wallet_info(auth.agent_id, limit=limit)
    return WalletResponse(
        user_id=info.user_id,
        balance=info.balance,
        low_balance=info.low_balance,
        transactions=[
            TransactionResponse(
                id=t.id,
                type=t.type,
                amount=t.amount,
                balance_after=t.balance_after,
                reference=t.reference,
                created_at=t.created_at,
            )
            for t in info.transactions
        ],
    )


@router.post("/deposit", response_model=DepositResponse)
@limiter.limit("30/minute")
def deposit(
    request: Request,
    body: DepositRequest,
    admin: AdminAgent,
    wallets: Wallets,
):
    """Credit a wallet (admin only; stands in for a payment provider top-up)."""
    logger.info(
        f"POST /wallet/deposit | admin={admin.agent_id} | user={body.user_id} | amount={body.amount}"
    )

    try:
        wallet = wallets.deposit(body.user_id, body.amount, body.reference)
    except Exception as e:
        raise to_http_error(e) from e

    return DepositResponse(user_id=wallet.user_id, balance=wallet.balance)
