"""Tests for the signed worker delivery callback."""

import json

import pytest

from agentmarket.webhooks.crypto import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    current_timestamp_ms,
    sign_webhook,
)

WORKER_ID = "worker-1"
WORKER_SECRET = "whsec_test_only_0123456789abcdef"


@pytest.fixture
def job_id(client, auth_headers, funded_requester):
    response = client.post(
        "/api/v1/jobs",
        json={"type": "worker", "task": "Translate", "budget": "12.00", "worker_id": WORKER_ID},
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


def post_delivery(client, job_id, body, secret=WORKER_SECRET, timestamp=None, signature=None):
    raw = body if isinstance(body, str) else json.dumps(body)
    ts = timestamp or current_timestamp_ms()
    headers = {"Content-Type": "application/json", TIMESTAMP_HEADER: ts}
    headers[SIGNATURE_HEADER] = signature or sign_webhook(raw, ts, secret)
    return client.post(f"/api/v1/jobs/{job_id}/deliver", content=raw, headers=headers)


class TestDelivery:
    """POST /api/v1/jobs/{id}/deliver"""

    def test_valid_delivery(self, client, job_id, job_service):
        response = post_delivery(
            client, job_id, {"deliverableText": "Bonjour", "deliverableUrl": "https://files.example.com/r"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "job_id": job_id, "status": "delivered"}
        job = job_service.get_job(job_id)
        assert job.deliverable_text == "Bonjour"
        assert job.deliverable_url == "https://files.example.com/r"

    def test_redelivery_is_idempotent(self, client, job_id, job_service):
        """A second delivery gets the same acknowledgement and changes nothing."""
        first = post_delivery(client, job_id, {"deliverableText": "v1"})
        second = post_delivery(client, job_id, {"deliverableText": "v2"})

        assert first.json() == second.json()
        assert job_service.get_job(job_id).deliverable_text == "v1"
        statuses = [t.to_status for t in job_service.get_transitions(job_id)]
        assert statuses.count("delivered") == 1

    def test_no_bearer_token_needed(self, client, job_id):
        """Workers authenticate with the signature only."""
        assert post_delivery(client, job_id, {"deliverableText": "ok"}).status_code == 200

    def test_markup_sanitized(self, client, job_id, job_service):
        post_delivery(client, job_id, {"deliverableText": "<script>x()</script><b>done</b>"})

        assert job_service.get_job(job_id).deliverable_text == "<b>done</b>"


class TestDeliveryAuthentication:
    """Every verification failure is the same plain 401."""

    def test_tampered_body(self, client, job_id, job_service):
        ts = current_timestamp_ms()
        signature = sign_webhook(json.dumps({"deliverableText": "real"}), ts, WORKER_SECRET)

        response = post_delivery(
            client, job_id, {"deliverableText": "fake"}, timestamp=ts, signature=signature
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}
        assert job_service.get_job(job_id).status == "in_progress"

    def test_wrong_secret(self, client, job_id):
        response = post_delivery(
            client, job_id, {"deliverableText": "x"}, secret="whsec_someone_else_entirely"
        )

        assert response.status_code == 401

    def test_stale_timestamp(self, client, job_id):
        old = str(int(current_timestamp_ms()) - 10 * 60 * 1000)

        response = post_delivery(client, job_id, {"deliverableText": "x"}, timestamp=old)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_missing_headers(self, client, job_id):
        response = client.post(
            f"/api/v1/jobs/{job_id}/deliver", content=json.dumps({"deliverableText": "x"})
        )

        assert response.status_code == 401

    def test_unknown_job(self, client):
        response = post_delivery(client, "job-does-not-exist", {"deliverableText": "x"})

        assert response.status_code == 404


class TestDeliveryPayload:
    def test_non_object_body(self, client, job_id):
        response = post_delivery(client, job_id, "[1, 2, 3]")

        assert response.status_code == 400
        assert "JSON object" in response.json()["detail"]

    def test_bad_url(self, client, job_id):
        response = post_delivery(client, job_id, {"deliverableUrl": "javascript:alert(1)"})

        assert response.status_code == 400

    def test_after_cancel(self, client, auth_headers, job_id):
        client.post(f"/api/v1/jobs/{job_id}/cancel", json={}, headers=auth_headers)

        response = post_delivery(client, job_id, {"deliverableText": "late"})

        assert response.status_code == 409

    def test_file_map_round_trip(self, client, auth_headers, job_id):
        """Delivered files come back on the job as a name -> content map."""
        files = {"out.txt": "hello", "notes/summary.md": "# Summary\n"}

        response = post_delivery(client, job_id, {"deliverableFiles": files})
        assert response.status_code == 200

        job = client.get(f"/api/v1/jobs/{job_id}", headers=auth_headers)
        assert job.status_code == 200
        assert job.json()["deliverable_files"] == files

    @pytest.mark.parametrize("files", [["out.txt"], {"out.txt": 1}])
    def test_bad_file_map(self, client, auth_headers, job_id, files):
        response = post_delivery(client, job_id, {"deliverableFiles": files})

        assert response.status_code == 400
        job = client.get(f"/api/v1/jobs/{job_id}", headers=auth_headers)
        assert job.status_code == 200
        assert job.json()["status"] == "in_progress"

    def test_retry_with_bad_payload_acknowledged(self, client, job_id, job_service):
        """Once delivered, a retry gets the success ack whatever its body."""
        first = post_delivery(client, job_id, {"deliverableText": "done"})
        second = post_delivery(client, job_id, {"deliverableUrl": "ftp://x/y"})

        assert second.status_code == 200
        assert second.json() == first.json()
        assert job_service.get_job(job_id).deliverable_url is None
