"""
Webhook signing and verification.

Both directions (platform -> worker dispatch, worker -> platform delivery)
use the same scheme:

    X-Webhook-Timestamp: unix time in milliseconds
    X-Webhook-Signature: hex(HMAC-SHA256(secret, f"{timestamp}.{payload}"))

The timestamp is part of the signed content, so a captured request cannot
be replayed with a fresh timestamp: changing the timestamp invalidates the
signature.
"""

import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)

TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SIGNATURE_HEADER = "X-Webhook-Signature"

DEFAULT_MAX_AGE_SECONDS = 300
DEFAULT_FUTURE_SKEW_SECONDS = 30

# SHA-256 digest is 32 bytes -> 64 hex chars
SIGNATURE_HEX_LENGTH = hashlib.sha256().digest_size * 2
_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


class WebhookVerificationError(Exception):
    """Webhook failed authentication.

    The message is always the same; the specific reason is only attached for
    logging, so callers cannot branch trust on which check failed.
    """

    def __init__(self, reason: Optional["VerificationFailure"] = None):
        super().__init__("Unauthorized")
        self.reason = reason


class VerificationFailure(str, Enum):
    """Why a webhook was rejected (for logs only)."""

    BAD_FORMAT = "bad_format"
    BAD_TIMESTAMP = "bad_timestamp"
    STALE = "stale"
    FUTURE = "future"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of ``verify_webhook``."""

    valid: bool
    reason: Optional[VerificationFailure] = None

    def __bool__(self) -> bool:
        return self.valid


def _to_text(payload: Union[str, bytes]) -> bytes:
    if isinstance(payload, bytes):
        return payload
    return payload.encode("utf-8")


def current_timestamp_ms() -> str:
    """Current unix time in milliseconds, as the header string."""
    return str(int(time.time() * 1000))


def sign_webhook(payload: Union[str, bytes], timestamp: str, secret: str) -> str:
    """Sign ``payload`` bound to ``timestamp``.

    Args:
        payload: Exact request body (str or raw bytes).
        timestamp: Unix time in milliseconds, as sent in the header.
        secret: Shared secret.

    Returns:
        Lowercase hex HMAC-SHA256 of ``f"{timestamp}.{payload}"``.
    """
    signed_content = str(timestamp).encode("utf-8") + b"." + _to_text(payload)
    return hmac.new(secret.encode("utf-8"), signed_content, hashlib.sha256).hexdigest()


def verify_webhook(
    payload: Union[str, bytes],
    signature: Optional[str],
    timestamp: Optional[str],
    secret: str,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    *,
    future_skew_seconds: int = DEFAULT_FUTURE_SKEW_SECONDS,
    now_ms: Optional[int] = None,
) -> VerificationResult:
    """Verify a timestamp-bound webhook signature.

    Checks run cheapest first: signature format, timestamp parse, staleness,
    future skew, then a constant-time comparison of the digests.
    """
    if not signature or len(signature) != SIGNATURE_HEX_LENGTH or not _HEX_PATTERN.match(signature):
        return VerificationResult(False, VerificationFailure.BAD_FORMAT)

    try:
        request_ms = int(str(timestamp).strip())
    except (TypeError, ValueError):
        return VerificationResult(False, VerificationFailure.BAD_TIMESTAMP)

    if now_ms is None:
        now_ms = int(time.time() * 1000)

    age_seconds = (now_ms - request_ms) / 1000
    if age_seconds > max_age_seconds:
        return VerificationResult(False, VerificationFailure.STALE)
    if -age_seconds > future_skew_seconds:
        return VerificationResult(False, VerificationFailure.FUTURE)

    expected = sign_webhook(payload, str(timestamp).strip(), secret)
    try:
        matches = hmac.compare_digest(bytes.fromhex(signature), bytes.fromhex(expected))
    except ValueError:
        return VerificationResult(False, VerificationFailure.MISMATCH)

    if not matches:
        return VerificationResult(False, VerificationFailure.MISMATCH)
    return VerificationResult(True)


def require_valid_webhook(
    payload: Union[str, bytes],
    signature: Optional[str],
    timestamp: Optional[str],
    secret: str,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    *,
    future_skew_seconds: int = DEFAULT_FUTURE_SKEW_SECONDS,
    now_ms: Optional[int] = None,
) -> None:
    """Like ``verify_webhook`` but raises ``WebhookVerificationError`` on failure."""
    result = verify_webhook(
        payload,
        signature,
        timestamp,
        secret,
        max_age_seconds,
        future_skew_seconds=future_skew_seconds,
        now_ms=now_ms,
    )
    if not result.valid:
        logger.warning(f"Webhook verification failed: {result.reason.value}")
        raise WebhookVerificationError(result.reason)


def build_signed_headers(
    payload: Union[str, bytes], secret: Optional[str], now_ms: Optional[int] = None
) -> dict:
    """Headers for an outbound webhook.

    The signature header is only present when a secret is configured.
    """
    timestamp = str(now_ms) if now_ms is not None else current_timestamp_ms()
    headers = {
        "Content-Type": "application/json",
        TIMESTAMP_HEADER: timestamp,
    }
    if secret:
        headers[SIGNATURE_HEADER] = sign_webhook(payload, timestamp, secret)
    return headers
