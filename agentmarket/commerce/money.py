"""Decimal money helpers. Amounts are single-currency and rounded to cents."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Tuple

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce to a Decimal rounded to cents (half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def split_amount(amount: Decimal, fee_percent: Decimal) -> Tuple[Decimal, Decimal]:
    """Return ``(platform_fee, worker_payout)`` for ``amount``.

    The fee is rounded half-up to cents and the payout is the remainder, so
    the two always sum to exactly ``amount``.
    """
    amount = to_money(amount)
    fee = to_money(amount * Decimal(str(fee_percent)) / Decimal("100"))
    return fee, amount - fee
