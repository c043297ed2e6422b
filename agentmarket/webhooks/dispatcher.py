"""Outbound webhook delivery.

Serializes the payload once, signs those exact bytes, and POSTs them with an
explicit timeout so an unresponsive worker endpoint cannot hang the caller.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from agentmarket.webhooks.crypto import build_signed_headers

logger = logging.getLogger(__name__)


class WebhookDeliveryError(Exception):
    """Outbound webhook failed (network error, timeout or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class DispatchResponse:
    """Successful outbound webhook response."""

    status_code: int
    body: str


class WebhookDispatcher:
    """Sends signed JSON webhooks.

    Args:
        timeout: Seconds before the request is abandoned.
        client: Optional pre-built ``httpx.Client`` (tests pass one with a
            ``MockTransport``). When omitted a client is created per call.
    """

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.timeout = timeout
        self._client = client

    @staticmethod
    def encode(payload: Any) -> str:
        """Canonical JSON encoding used for both signing and sending."""
        return json.dumps(payload, separators=(",", ":"), default=str)

    def send(self, url: str, payload: Any, secret: Optional[str] = None) -> DispatchResponse:
        """POST ``payload`` to ``url``.

        Raises:
            WebhookDeliveryError: On timeout, connection failure or non-2xx status.
        """
        body = self.encode(payload)
        headers = build_signed_headers(body, secret)

        try:
            if self._client is not None:
                response = self._client.post(
                    url, content=body.encode("utf-8"), headers=headers, timeout=self.timeout
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Webhook to {url} timed out after {self.timeout}s")
            raise WebhookDeliveryError(f"Webhook timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Webhook to {url} failed: {e}")
            raise WebhookDeliveryError(f"Webhook request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Webhook to {url} returned {response.status_code}")
            raise WebhookDeliveryError(
                f"Webhook failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        return DispatchResponse(status_code=response.status_code, body=response.text)
