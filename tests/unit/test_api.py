"""
Unit tests for the HTTP layer, run against the in-memory store.
"""

import time
import uuid

import pytest
from fastapi.testclient import TestClient

from pg_jobqueue import InMemoryJobStore, Settings
from pg_jobqueue.api import create_app


class ClosingStore(InMemoryJobStore):
    def __init__(self):
        super().__init__()
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.fixture
def client():
    settings = Settings(queue_size=100, num_workers=2, work_seconds=0, job_timeout=5)
    app = create_app(settings, store=InMemoryJobStore())
    with TestClient(app) as test_client:
        yield test_client


def wait_for_job(client, job_id, predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/jobs", params={"id": job_id}).json()
        if predicate(body):
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"Job {job_id} did not reach expected state, last seen: {body}")
        time.sleep(0.02)


@pytest.mark.unit
class TestJobsApi:
    """Tests for the /jobs and /health endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_create_job(self, client):
        response = client.post("/jobs", json={"type": "email", "payload": {"fail": False}})

        assert response.status_code == 201
        body = response.json()
        assert uuid.UUID(body["id"])
        assert body["type"] == "email"
        assert body["payload"] == {"fail": False}
        assert body["status"] == "pending"
        assert body["retryCount"] == 0
        assert "createdAt" in body and "updatedAt" in body

    @pytest.mark.parametrize("body", [
        {"type": "email"},
        {"payload": {"a": 1}},
        {"type": "", "payload": {"a": 1}},
        {"type": "email", "payload": {}},
        {"type": "email", "payload": "not-a-map"},
    ])
    def test_create_job_validation(self, client, body):
        response = client.post("/jobs", json=body)

        assert response.status_code == 400

    def test_create_job_malformed_body(self, client):
        response = client.post("/jobs", content="{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid request body"}

    def test_successful_job_completes(self, client):
        job_id = client.post("/jobs", json={"type": "email", "payload": {"fail": False}}).json()["id"]

        body = wait_for_job(client, job_id, lambda b: b["status"] == "completed")

        assert body["retryCount"] == 0

    def test_failing_job_exhausts_retries(self, client):
        job_id = client.post("/jobs", json={"type": "email", "payload": {"fail": True}}).json()["id"]

        body = wait_for_job(client, job_id, lambda b: b["retryCount"] == 3)

        assert body["status"] == "failed"

    def test_get_unknown_job(self, client):
        response = client.get("/jobs", params={"id": str(uuid.uuid4())})

        assert response.status_code == 404
        assert response.json() == {"detail": "Job not found"}

    def test_get_invalid_id(self, client):
        response = client.get("/jobs", params={"id": "not-a-uuid"})

        assert response.status_code == 400

    def test_list_jobs_limited_to_fifty(self, client):
        created = [
            client.post("/jobs", json={"type": "bulk", "payload": {"i": i}}).json()["id"]
            for i in range(60)
        ]

        response = client.get("/jobs")

        assert response.status_code == 200
        jobs = response.json()
        assert len(jobs) == 50
        assert [job["id"] for job in jobs] == list(reversed(created))[:50]

    def test_cors_headers(self, client):
        response = client.get("/health", headers={"Origin": "http://example.com"})

        assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.unit
class TestAppLifespan:
    """Tests for startup and shutdown of the application."""

    def test_shutdown_leaves_caller_store_open(self):
        """A store handed to create_app belongs to the caller and is not closed."""
        store = ClosingStore()
        app = create_app(Settings(work_seconds=0, job_timeout=5), store=store)

        with TestClient(app) as test_client:
            assert test_client.get("/health").status_code == 200

        assert not store.closed
        assert app.state.worker.job_queue.stopped
