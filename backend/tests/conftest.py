"""Pytest configuration and fixtures."""

import json
import os
import secrets

import httpx
import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

ADMIN_AGENT_ID = "agt_TEST_ADMIN"
REQUESTER_ID = "agt_TEST_REQUESTER"
WORKER_ID = "worker-1"
WORKER_SECRET = "whsec_test_only_0123456789abcdef"

os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("ADMIN_AGENT_IDS", json.dumps([ADMIN_AGENT_ID]))
os.environ.setdefault("ENVIRONMENT", "test")

from agentmarket.commerce.jobs.service import JobService  # noqa: E402
from agentmarket.commerce.payments import InMemoryPaymentBackend  # noqa: E402
from agentmarket.commerce.storage import InMemoryCommerceStore  # noqa: E402
from agentmarket.commerce.wallet.service import WalletService  # noqa: E402
from agentmarket.commerce.workers import InMemoryWorkerDirectory, Worker  # noqa: E402
from agentmarket.config import CommerceConfig  # noqa: E402
from agentmarket.webhooks.dispatcher import WebhookDispatcher  # noqa: E402
from app.database import (  # noqa: E402
    get_job_service,
    get_wallet_service,
    get_webhook_dispatcher,
    get_worker_directory,
)
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

# Every TestClient request shares one client address
limiter.enabled = False


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep commerce event logs out of the real home directory."""
    monkeypatch.setenv("AGENTMARKET_DATA_DIR", str(tmp_path / "agentmarket-data"))


@pytest.fixture
def store():
    return InMemoryCommerceStore()


@pytest.fixture
def payments():
    return InMemoryPaymentBackend()


@pytest.fixture
def workers():
    directory = InMemoryWorkerDirectory()
    directory.register(
        Worker(
            id=WORKER_ID,
            endpoint="https://worker.example.com/jobs",
            secret=WORKER_SECRET,
            p90_completion_minutes=15,
            payout_destination="acct_worker_1",
        )
    )
    return directory


@pytest.fixture
def webhook_requests():
    """Requests the fake worker endpoint received."""
    return []


@pytest.fixture
def worker_status():
    """Status code the fake worker endpoint answers with."""
    return {"code": 200}


@pytest.fixture
def dispatcher(webhook_requests, worker_status):
    def handler(request):
        webhook_requests.append(request)
        return httpx.Response(worker_status["code"], json={"accepted": True})

    return WebhookDispatcher(client=httpx.Client(transport=httpx.MockTransport(handler)))


@pytest.fixture
def commerce_config():
    return CommerceConfig(environment="test")


@pytest.fixture
def job_service(store, workers, payments, commerce_config, dispatcher):
    return JobService(store, workers, payments, commerce_config, dispatcher=dispatcher)


@pytest.fixture
def client(store, workers, commerce_config, job_service, dispatcher):
    """Test client wired to in-memory services."""
    app.dependency_overrides[get_job_service] = lambda: job_service
    app.dependency_overrides[get_wallet_service] = lambda: WalletService(store, commerce_config)
    app.dependency_overrides[get_worker_directory] = lambda: workers
    app.dependency_overrides[get_webhook_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_headers():
    """Build bearer headers for any agent id."""
    from app.auth import create_access_token
    from app.config import get_settings

    def _make(agent_id: str) -> dict:
        token = create_access_token(agent_id, get_settings())
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def auth_headers(make_headers):
    """Headers for the default requester."""
    return make_headers(REQUESTER_ID)


@pytest.fixture
def admin_headers(make_headers):
    return make_headers(ADMIN_AGENT_ID)


@pytest.fixture
def funded_requester(job_service):
    """Give the default requester $50."""
    job_service.escrow.wallets.deposit(REQUESTER_ID, "50")
    return REQUESTER_ID
