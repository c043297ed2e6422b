"""Webhook authentication and outbound delivery.

Modules:
- crypto.py: timestamp-bound HMAC signing and verification
- dispatcher.py: signed outbound POSTs with explicit timeouts
"""

from agentmarket.webhooks.crypto import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    VerificationFailure,
    VerificationResult,
    WebhookVerificationError,
    build_signed_headers,
    require_valid_webhook,
    sign_webhook,
    verify_webhook,
)
from agentmarket.webhooks.dispatcher import WebhookDeliveryError, WebhookDispatcher

__all__ = [
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "VerificationFailure",
    "VerificationResult",
    "WebhookVerificationError",
    "build_signed_headers",
    "require_valid_webhook",
    "sign_webhook",
    "verify_webhook",
    "WebhookDispatcher",
    "WebhookDeliveryError",
]
