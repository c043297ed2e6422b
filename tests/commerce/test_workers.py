"""Tests for the worker directory."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from agentmarket.commerce.workers import (
    InMemoryWorkerDirectory,
    Worker,
    check_worker_endpoint,
    updated_reputation,
)
from agentmarket.webhooks.crypto import SIGNATURE_HEADER
from agentmarket.webhooks.dispatcher import WebhookDispatcher

WORKER_SECRET = "whsec_test_only_0123456789abcdef"


class TestWorker:
    def test_defaults(self):
        worker = Worker(id="w")

        assert worker.endpoint is None
        assert worker.p90_completion_minutes == 60
        assert worker.reputation_score == Decimal("0")
        assert worker.accepting_jobs

    @pytest.mark.parametrize("minutes", [0, -5])
    def test_p90_must_be_positive(self, minutes):
        with pytest.raises(ValueError, match="p90"):
            Worker(id="w", p90_completion_minutes=minutes)


class TestReputation:
    """Running-average reputation."""

    def test_first_rating_is_the_score(self):
        assert updated_reputation(Decimal("0"), 0, 4) == Decimal("4.00")

    def test_running_average(self):
        """Ratings 5, 4, 3 average to 4."""
        score, count = Decimal("0"), 0
        for rating in (5, 4, 3):
            score = updated_reputation(score, count, rating)
            count += 1

        assert score == Decimal("4.00")

    def test_record_rating_updates_directory(self):
        directory = InMemoryWorkerDirectory()
        directory.register(Worker(id="w"))

        directory.record_rating("w", 5)
        directory.record_rating("w", 2)

        worker = directory.lookup("w")
        assert worker.reputation_score == Decimal("3.50")
        assert worker.completion_count == 2

    def test_unknown_worker(self):
        with pytest.raises(KeyError):
            InMemoryWorkerDirectory().record_rating("ghost", 5)

    @pytest.mark.parametrize("rating", [0, 6])
    def test_out_of_range_rating(self, rating):
        directory = InMemoryWorkerDirectory()
        directory.register(Worker(id="w"))

        with pytest.raises(ValueError, match="between 1 and 5"):
            directory.record_rating("w", rating)


class TestLookup:
    def test_missing(self):
        assert InMemoryWorkerDirectory().lookup("nobody") is None

    def test_lookup_returns_copy(self):
        """Callers cannot mutate the directory through a lookup result."""
        directory = InMemoryWorkerDirectory()
        directory.register(Worker(id="w", endpoint="https://w.example.com"))

        directory.lookup("w").endpoint = "https://evil.example.com"

        assert directory.lookup("w").endpoint == "https://w.example.com"


class TestListWorkers:
    def test_accepting_only_and_ranked(self):
        directory = InMemoryWorkerDirectory()
        directory.register(Worker(id="b", reputation_score=Decimal("3")))
        directory.register(Worker(id="a", reputation_score=Decimal("4.5")))
        directory.register(Worker(id="paused", reputation_score=Decimal("5"), accepting_jobs=False))

        assert [w.id for w in directory.list_workers()] == ["a", "b"]
        assert [w.id for w in directory.list_workers(accepting_only=False)] == ["paused", "a", "b"]


class TestCheckWorkerEndpoint:
    """Signed test jobs sent to a worker endpoint."""

    NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def _dispatcher(self, handler):
        return WebhookDispatcher(client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_success(self, config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        check = check_worker_endpoint(
            self._dispatcher(handler),
            "https://w.example.com/hook",
            WORKER_SECRET,
            config,
            now=self.NOW,
        )

        assert check.success
        assert check.response == {"ok": True}
        assert check.error is None
        payload = json.loads(seen[0].content)
        assert payload["jobId"] == f"test-{int(self.NOW.timestamp() * 1000)}"
        assert payload["deadline"] == "2026-01-15T12:01:00+00:00"
        assert payload["callbackUrl"].endswith(f"/jobs/{payload['jobId']}/deliver")
        assert SIGNATURE_HEADER in seen[0].headers

    def test_plain_text_response(self, config):
        check = check_worker_endpoint(
            self._dispatcher(lambda r: httpx.Response(200, text="pong")),
            "https://w.example.com/hook",
            WORKER_SECRET,
            config,
        )

        assert check.success
        assert check.response == "pong"

    def test_failure_reported_not_raised(self, config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        check = check_worker_endpoint(
            self._dispatcher(handler), "https://w.example.com/hook", WORKER_SECRET, config
        )

        assert not check.success
        assert "request failed" in check.error
        assert check.latency_ms is not None
