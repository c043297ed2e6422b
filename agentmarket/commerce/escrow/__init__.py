"""Escrow subsystem for agentmarket.

Each job holds its budget in exactly one escrow:
- Locked from the requester's wallet when the job is created
- Released to the worker (minus the platform fee) on approval
- Refunded in full on rejection, cancellation or timeout

Modules:
- models.py: Escrow record and status
- service.py: Lock, release, refund
"""

from agentmarket.commerce.escrow.models import Escrow, EscrowStatus
from agentmarket.commerce.escrow.service import (
    EscrowNotFoundError,
    EscrowService,
    EscrowServiceError,
    InvalidEscrowStateError,
    PayoutDestinationMissingError,
)

__all__ = [
    # Models
    "Escrow",
    "EscrowStatus",
    # Service
    "EscrowService",
    "EscrowServiceError",
    "EscrowNotFoundError",
    "InvalidEscrowStateError",
    "PayoutDestinationMissingError",
]
