"""
Pytest fixtures and test configuration for agentmarket tests.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from agentmarket.commerce.jobs.service import JobService
from agentmarket.commerce.payments import InMemoryPaymentBackend
from agentmarket.commerce.storage import InMemoryCommerceStore
from agentmarket.commerce.workers import InMemoryWorkerDirectory, Worker
from agentmarket.config import CommerceConfig
from agentmarket.webhooks.crypto import sign_webhook
from agentmarket.webhooks.dispatcher import WebhookDispatcher

WORKER_SECRET = "whsec_test_only_0123456789abcdef"


class FakeClock:
    """Controllable UTC clock passed as ``now_fn``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def ms(self) -> str:
        return str(int(self.now.timestamp() * 1000))


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep commerce event logs out of the real home directory."""
    data_dir = tmp_path / "agentmarket-data"
    monkeypatch.setenv("AGENTMARKET_DATA_DIR", str(data_dir))
    return data_dir


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return CommerceConfig(environment="test")


@pytest.fixture
def store():
    return InMemoryCommerceStore()


@pytest.fixture
def worker():
    return Worker(
        id="worker-1",
        endpoint="https://worker.example.com/jobs",
        secret=WORKER_SECRET,
        p90_completion_minutes=15,
        payout_destination="acct_worker_1",
    )


@pytest.fixture
def workers(worker):
    directory = InMemoryWorkerDirectory()
    directory.register(worker)
    return directory


@pytest.fixture
def payments():
    return InMemoryPaymentBackend()


@pytest.fixture
def webhook_requests():
    """Requests seen by the fake worker endpoint."""
    return []


@pytest.fixture
def worker_status():
    """Status code the fake worker endpoint answers with (mutable)."""
    return {"code": 200}


@pytest.fixture
def dispatcher(webhook_requests, worker_status):
    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(worker_status["code"], json={"received": True})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    yield WebhookDispatcher(timeout=5.0, client=client)
    client.close()


@pytest.fixture
def service(store, workers, payments, config, dispatcher, clock):
    return JobService(store, workers, payments, config, dispatcher=dispatcher, now_fn=clock)


@pytest.fixture
def requester(service):
    """A requester holding $50."""
    service.escrow.wallets.deposit("requester-1", Decimal("50.00"), reference="seed")
    return "requester-1"


@pytest.fixture
def sign_delivery(clock):
    """Build a signed delivery ``(raw_body, signature, timestamp)`` at the fake clock's time."""

    def _sign(body: dict, secret: str = WORKER_SECRET, timestamp: str = None):
        raw = json.dumps(body)
        ts = timestamp or clock.ms()
        return raw, sign_webhook(raw, ts, secret), ts

    return _sign
