"""Translate service exceptions into HTTP errors."""

from fastapi import HTTPException, status

from agentmarket.commerce.escrow.service import (
    EscrowNotFoundError,
    InvalidEscrowStateError,
)
from agentmarket.commerce.jobs.service import (
    DispatchError,
    InvalidTransitionError,
    JobNotFoundError,
    SecurityBlockedError,
    SettlementError,
    UnauthorizedError,
    WorkerNotFoundError,
    WorkerUnreachableError,
)
from agentmarket.commerce.wallet.service import InsufficientFundsError, WalletNotFoundError
from agentmarket.webhooks.crypto import WebhookVerificationError


def to_http_error(e: Exception) -> HTTPException:
    """Map a service exception to an ``HTTPException``. Unknown errors become 500."""
    if isinstance(e, WebhookVerificationError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if isinstance(e, UnauthorizedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, (JobNotFoundError, EscrowNotFoundError, WorkerNotFoundError, WalletNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (InvalidTransitionError, InvalidEscrowStateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, InsufficientFundsError):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    if isinstance(e, SecurityBlockedError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": str(e),
                "blocked_files": e.blocked_files,
                "blocked_patterns": e.blocked_patterns,
            },
        )
    if isinstance(e, (WorkerUnreachableError, SettlementError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    if isinstance(e, DispatchError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )
