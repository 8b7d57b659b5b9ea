"""Tests for the automation HTTP endpoints."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from blog_automation.api.dependencies import get_services
from blog_automation.config import config
from blog_automation.main import create_app
from blog_automation.services.infrastructure.job_management.health import (
    HealthReporter,
)
from blog_automation.services.infrastructure.job_management.models import (
    GeneratePostPayload,
    JobStatus,
)
from blog_automation.services.infrastructure.startup_service import StartupService

ADMIN = {"Authorization": "Bearer test-admin-token"}


@pytest.fixture
def services(registry, register):
    register("generate-post", lambda payload, ctx: None, payload_model=GeneratePostPayload)
    return StartupService(registry=registry)


@pytest.fixture
def store(services):
    return services.job_manager.store


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr(config.api, "rate_limit_enabled", False)
    app = create_app(run_background=False)
    app.dependency_overrides[get_services] = lambda: services
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = "test-admin-token"
        mock_config.api.automation_api_key = ""
        yield TestClient(app)


def failed(store, make_job, **fields):
    fields.setdefault("attempts", 1)
    job = make_job(status=JobStatus.FAILED, age=timedelta(minutes=5), **fields)
    job.failed_at = job.created_at
    job.last_error = "Error: boom"
    return store.put(job)


class TestHealthEndpoints:
    def test_root(self, client):
        assert client.get("/").json() == {"status": "healthy"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert client.get("/").headers["X-Request-ID"]

    def test_health_report_shape(self, client):
        response = client.get("/automation/health?includeJobs=true&includeMetrics=true")

        assert response.status_code in (200, 503)
        data = response.json()["data"]
        assert set(data["components"]) == {
            "jobQueue",
            "automation",
            "system",
            "dependencies",
        }
        assert "recentJobs" in data
        assert "metrics" in data

    def test_unhealthy_report_is_503(self, client):
        report = {"status": "unhealthy", "components": {}}
        with patch.object(HealthReporter, "report", AsyncMock(return_value=report)):
            response = client.get("/automation/health")

        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("System is unhealthy")

    def test_degraded_report_is_200(self, client):
        report = {"status": "degraded", "components": {}}
        with patch.object(HealthReporter, "report", AsyncMock(return_value=report)):
            response = client.get("/automation/health")

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_health_error_is_500(self, client):
        with patch.object(
            HealthReporter, "report", AsyncMock(side_effect=RuntimeError("probe crashed"))
        ):
            response = client.get("/automation/health")

        assert response.status_code == 500
        assert response.json()["data"] == {"status": "unhealthy", "error": "probe crashed"}

    def test_head_healthy(self, client):
        response = client.head("/automation/health")

        assert response.status_code == 200
        assert response.headers["X-Health-Status"] == "healthy"
        assert response.headers["X-Health-Issues"] == "0"
        assert response.content == b""

    def test_head_unhealthy(self, client, store, job_factory):
        stuck = job_factory(status=JobStatus.ACTIVE, age=timedelta(hours=2))
        stuck.started_at = stuck.created_at
        store.put(stuck)

        response = client.head("/automation/health")

        assert response.status_code == 503
        assert response.headers["X-Health-Status"] == "unhealthy"
        assert response.headers["X-Health-Issues"] == "1"


class TestMetricsEndpoint:
    def test_metrics(self, client, store, job_factory):
        failed(store, job_factory, job_type="seo-analysis")

        response = client.get(
            "/automation/jobs/metrics?timeRange=1h&jobTypes=seo-analysis&includeHistogram=true"
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["period"]["timeRange"] == "1h"
        assert data["errors"]["errorsByType"] == {"Error": 1}
        assert len(data["histogram"]) == 24

    def test_invalid_time_range(self, client):
        response = client.get("/automation/jobs/metrics?timeRange=5m")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["data"] == {"fields": ["timeRange"]}


class TestRetryEndpoints:
    def test_requires_admin_token(self, client, store, job_factory):
        job = failed(store, job_factory)

        response = client.post(
            "/automation/jobs/retry", json={"type": "single", "payload": {"jobId": job.id}}
        )

        assert response.status_code == 401
        assert store.get(job.id).status == JobStatus.FAILED

    def test_single_retry(self, client, store, job_factory):
        job = failed(store, job_factory)

        response = client.post(
            "/automation/jobs/retry",
            json={"type": "single", "payload": {"jobId": job.id, "newPriority": "high"}},
            headers=ADMIN,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == f"Job {job.id} queued for retry"
        assert body["data"]["newStatus"] == "waiting"
        assert store.get(job.id).priority.value == "high"

    def test_single_retry_missing_job(self, client):
        response = client.post(
            "/automation/jobs/retry",
            json={"type": "single", "payload": {"jobId": "nope"}},
            headers=ADMIN,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "Job nope not found"

    def test_single_retry_completed_job(self, client, store, job_factory):
        job = store.put(job_factory(status=JobStatus.COMPLETED))

        response = client.post(
            "/automation/jobs/retry",
            json={"type": "single", "payload": {"jobId": job.id}},
            headers=ADMIN,
        )

        assert response.status_code == 400
        assert response.json()["error"] == (
            f"Job {job.id} cannot be retried. Current status: completed"
        )
        assert store.get(job.id).status == JobStatus.COMPLETED

    def test_single_retry_without_job_id(self, client):
        response = client.post(
            "/automation/jobs/retry", json={"type": "single", "payload": {}}, headers=ADMIN
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["payload.jobId"]

    def test_bulk_retry(self, client, store, job_factory):
        for _ in range(3):
            failed(store, job_factory, tags={"seo"})
        failed(store, job_factory, tags={"email"})

        response = client.post(
            "/automation/jobs/retry",
            json={
                "type": "bulk",
                "payload": {"filter": {"tags": ["seo"]}, "options": {"maxJobs": 2}},
            },
            headers=ADMIN,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"].startswith("Bulk retry completed: 2 jobs")
        assert body["data"]["totalEligible"] == 3
        assert len(body["data"]["retriedJobs"]) == 2

    def test_bulk_retry_with_reset_attempts(self, client, store, job_factory):
        jobs = [failed(store, job_factory, attempts=3) for _ in range(3)]

        response = client.post(
            "/automation/jobs/retry",
            json={
                "type": "bulk",
                "payload": {
                    "filter": {"status": "failed"},
                    "options": {"maxJobs": 2, "resetAttempts": True},
                },
            },
            headers=ADMIN,
        )

        assert response.status_code == 200
        retried = [entry["jobId"] for entry in response.json()["data"]["retriedJobs"]]
        assert len(retried) == 2
        for job_id in retried:
            assert store.get(job_id).status == JobStatus.WAITING
            assert store.get(job_id).attempts == 0
        untouched = [job.id for job in jobs if job.id not in retried]
        assert len(untouched) == 1
        assert store.get(untouched[0]).status == JobStatus.FAILED

    def test_bulk_retry_rejects_options_at_payload_root(self, client):
        response = client.post(
            "/automation/jobs/retry",
            json={"type": "bulk", "payload": {"maxJobs": 2}},
            headers=ADMIN,
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["payload.maxJobs"]

    def test_bulk_retry_rejects_max_jobs_over_limit(self, client, store, job_factory):
        job = failed(store, job_factory)

        response = client.post(
            "/automation/jobs/retry",
            json={"type": "bulk", "payload": {"options": {"maxJobs": 5000}}},
            headers=ADMIN,
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["payload.options.maxJobs"]
        assert store.get(job.id).status == JobStatus.FAILED

    def test_unknown_retry_type(self, client):
        response = client.post(
            "/automation/jobs/retry", json={"type": "partial"}, headers=ADMIN
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["type"]

    def test_retry_eligibility(self, client, store, job_factory):
        job = failed(store, job_factory)

        response = client.get(f"/automation/jobs/retry?jobId={job.id}")

        assert response.status_code == 200
        assert response.json()["data"]["canRetry"] is True

    def test_retry_stats(self, client, store, job_factory):
        failed(store, job_factory)

        response = client.get("/automation/jobs/retry")

        assert response.json()["data"]["failed"] == 1


class TestJobEndpoints:
    def test_enqueue_and_get(self, client):
        response = client.post(
            "/automation/jobs",
            json={"type": "generate-post", "payload": {"topic": "FastAPI"}, "priority": "high"},
            headers=ADMIN,
        )

        assert response.status_code == 201
        job = response.json()["data"]
        assert job["status"] == "waiting"
        assert job["priority"] == "high"

        fetched = client.get(f"/automation/jobs/{job['id']}").json()["data"]
        assert fetched["payload"]["topic"] == "FastAPI"

    def test_enqueue_invalid_payload(self, client):
        response = client.post(
            "/automation/jobs",
            json={"type": "generate-post", "payload": {}},
            headers=ADMIN,
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["payload.topic"]

    def test_enqueue_invalid_priority(self, client):
        response = client.post(
            "/automation/jobs",
            json={"type": "generate-post", "priority": "urgent"},
            headers=ADMIN,
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["priority"]

    def test_get_missing_job(self, client):
        response = client.get("/automation/jobs/missing")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Job missing not found",
            "data": None,
        }

    def test_cancel_pause_resume(self, client, store, job_factory):
        paused = store.put(job_factory())
        cancelled = store.put(job_factory())

        assert client.post(f"/automation/jobs/{paused.id}/pause", headers=ADMIN).json()[
            "data"
        ]["status"] == "paused"
        assert client.post(f"/automation/jobs/{paused.id}/resume", headers=ADMIN).json()[
            "data"
        ]["status"] == "waiting"

        response = client.post(f"/automation/jobs/{cancelled.id}/cancel", headers=ADMIN)
        assert response.json()["message"] == f"Job {cancelled.id} cancelled"

        again = client.post(f"/automation/jobs/{cancelled.id}/cancel", headers=ADMIN)
        assert again.status_code == 400
