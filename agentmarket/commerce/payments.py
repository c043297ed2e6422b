"""
Payment backend used to pay workers out of escrow.

Only the transfer capability is needed here. Every transfer carries an
explicit timeout: payouts run inside the escrow release unit, so a hung
processor must fail fast rather than hold the store's write lock. The
in-memory backend records transfers so tests can assert exactly what left
the platform.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Transfer failed."""

    pass


class InvalidDestinationError(PaymentError):
    """Transfer destination is unknown or not able to receive funds."""

    pass


class PaymentTimeoutError(PaymentError):
    """The processor did not answer within the transfer timeout."""

    pass


class PaymentBackend(Protocol):
    """External payment processor."""

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        timeout: float,
    ) -> str:
        """Send ``amount`` to ``destination``. Returns the transfer reference.

        Implementations must give up after ``timeout`` seconds and raise
        ``PaymentTimeoutError``; the transfer must then not have happened.
        """
        ...


@dataclass
class TransferRecord:
    reference: str
    destination: str
    amount: Decimal
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryPaymentBackend:
    """Records transfers instead of moving real money.

    Args:
        blocked_destinations: Destinations that raise ``InvalidDestinationError``.
        fail_all: Make every transfer raise ``PaymentError`` (processor outage).
        latency: Simulated processor response time in seconds.
    """

    def __init__(
        self,
        blocked_destinations: Optional[Set[str]] = None,
        fail_all: bool = False,
        latency: float = 0.0,
    ):
        self.transfers: List[TransferRecord] = []
        self.blocked_destinations = set(blocked_destinations or ())
        self.fail_all = fail_all
        self.latency = latency
        self._lock = threading.Lock()

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        timeout: float,
    ) -> str:
        if self.latency:
            time.sleep(min(self.latency, timeout))
            if self.latency > timeout:
                raise PaymentTimeoutError(f"Payment processor timed out after {timeout}s")
        if self.fail_all:
            raise PaymentError("Payment processor unavailable")
        if not destination or destination in self.blocked_destinations:
            raise InvalidDestinationError(f"Invalid transfer destination: {destination!r}")
        if amount <= 0:
            raise PaymentError("Transfer amount must be positive")

        reference = f"tr_{uuid.uuid4().hex[:16]}"
        with self._lock:
            self.transfers.append(
                TransferRecord(reference, destination, amount, dict(metadata or {}))
            )
        logger.info(f"Transferred {amount} to {destination} ({reference})")
        return reference

    def total_to(self, destination: str) -> Decimal:
        with self._lock:
            return sum((t.amount for t in self.transfers if t.destination == destination), Decimal("0"))
