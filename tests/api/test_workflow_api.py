"""Tests for the trigger, webhook and error-log endpoints."""

import json
import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from blog_automation.api.dependencies import get_services
from blog_automation.config import APIConfig, BlogConfig, Config, config
from blog_automation.main import create_app
from blog_automation.services.infrastructure.job_management import tasks  # noqa: F401
from blog_automation.services.infrastructure.job_management.decorators import (
    default_registry,
)
from blog_automation.services.infrastructure.job_management.models import JobStatus
from blog_automation.services.infrastructure.job_management.tasks.webhook_delivery import (
    sign_body,
)
from blog_automation.services.infrastructure.startup_service import StartupService

ADMIN = {"Authorization": "Bearer test-admin-token"}
AUTOMATION = {"Authorization": "Bearer test-automation-key"}
SECRET = "whsec-test"


@pytest.fixture
def auth_config():
    return Config(
        api=APIConfig(
            admin_token="test-admin-token",
            automation_api_key="test-automation-key",
            webhook_secret=SECRET,
            webhook_tolerance_seconds=300,
        )
    )


@pytest.fixture
def services():
    return StartupService(
        cfg=Config(
            blog=BlogConfig(
                site_url="https://blog.example.com",
                slack_webhook_url="",
                discord_webhook_url="",
                seo_monitoring_webhook_url="",
            )
        ),
        registry=default_registry,
    )


def build_client(services):
    app = create_app(run_background=False)
    app.dependency_overrides[get_services] = lambda: services
    return TestClient(app)


@pytest.fixture
def client(services, auth_config, monkeypatch):
    monkeypatch.setattr(config.api, "rate_limit_enabled", False)
    with patch("blog_automation.api.dependencies.config", auth_config):
        yield build_client(services)


def signed(body, secret=SECRET, timestamp=None):
    raw = json.dumps(body).encode()
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": sign_body(raw, secret),
        "X-Webhook-Timestamp": str(timestamp or int(time.time() * 1000)),
    }
    return raw, headers


POST = {
    "id": "post-42",
    "title": "Structured Concurrency in Python",
    "slug": "structured-concurrency",
    "content": "Task groups make cancellation predictable.",
    "excerpt": "How task groups work",
    "keywords": ["asyncio"],
}

SEO_COMPLETE = {
    "analysis": {
        "postId": "post-42",
        "jobId": "job-seo-1",
        "seoScore": {
            "overall": 55,
            "title": 60,
            "description": 50,
            "keywords": 40,
            "content": 65,
        },
        "recommendations": [
            {"type": "title", "message": "Title is too long", "priority": "high"}
        ],
        "optimization": {
            "optimizedTitle": "Structured Concurrency",
            "optimizedDescription": "Task groups in practice",
            "extractedKeywords": ["asyncio"],
        },
        "completedAt": "2026-01-05T12:00:00Z",
    },
    "trigger": {"event": "seo.analysis.complete", "timestamp": "1767614400000"},
}


class TestTrigger:
    def test_requires_token(self, client):
        response = client.post("/automation/trigger", json={"type": "send-digest"})

        assert response.status_code == 401

    def test_admin_token_accepted(self, client):
        response = client.post(
            "/automation/trigger",
            json={"type": "generate-draft", "data": {"topic": "Async Python"}},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert response.json()["message"] == 'Draft requested for "Async Python"'

    def test_blog_published(self, client, services):
        response = client.post(
            "/automation/trigger",
            json={"type": "blog-published", "data": POST},
            headers=AUTOMATION,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == (
            'Blog published workflow triggered for "Structured Concurrency in Python"'
        )
        assert body["data"]["postId"] == "post-42"
        assert [j["type"] for j in body["data"]["triggeredJobs"]] == [
            "seo-analysis",
            "sitemap-generation",
        ]

    def test_seo_analysis(self, client, services):
        data = {
            "id": "post-42",
            "title": "Structured Concurrency",
            "content": "Task groups",
            "url": "/blog/structured-concurrency",
        }

        response = client.post(
            "/automation/trigger",
            json={"type": "seo-analysis", "data": data},
            headers=AUTOMATION,
        )

        body = response.json()["data"]
        job = services.job_manager.get_job(body["jobId"])
        assert job.payload.target_url == "/blog/structured-concurrency"
        assert body["postId"] == "post-42"
        assert body["estimatedCompletion"]

    def test_scheduled_publishing(self, client, services):
        data = {
            "id": "post-42",
            "slug": "structured-concurrency",
            "title": "Structured Concurrency",
            "publishAt": "2099-01-01T10:00:00Z",
        }

        response = client.post(
            "/automation/trigger",
            json={"type": "scheduled-publishing", "data": data},
            headers=AUTOMATION,
        )

        job = services.job_manager.get_job(response.json()["data"]["jobId"])
        assert job.type == "publish-post"
        assert job.status == JobStatus.DELAYED

    def test_batch_optimization(self, client):
        data = {
            "postIds": ["p1", "p2", "p3"],
            "operations": ["seo-analysis"],
            "batchSize": 2,
            "delayBetweenBatches": 1000,
        }

        response = client.post(
            "/automation/trigger",
            json={"type": "batch-optimization", "data": data},
            headers=AUTOMATION,
        )

        body = response.json()
        assert body["data"]["totalBatches"] == 2
        assert body["message"] == "Batch optimization triggered for 3 posts in 2 batches"

    def test_batch_rejects_unknown_operation(self, client):
        data = {"postIds": ["p1"], "operations": ["social-media"], "batchSize": 60}

        response = client.post(
            "/automation/trigger",
            json={"type": "batch-optimization", "data": data},
            headers=AUTOMATION,
        )

        assert response.status_code == 400
        assert set(response.json()["data"]["fields"]) == {
            "data.operations",
            "data.batchSize",
        }

    def test_unknown_type(self, client):
        response = client.post(
            "/automation/trigger", json={"type": "analytics"}, headers=AUTOMATION
        )

        assert response.status_code == 400
        assert response.json()["data"] == {"fields": ["type"]}

    def test_catalogue(self, client):
        plain = client.get("/automation/trigger").json()["data"]
        with_examples = client.get("/automation/trigger?examples=true").json()["data"]

        assert "examples" not in plain
        assert {entry["type"] for entry in plain["available"]} == set(
            with_examples["examples"]
        )

    def test_post_status(self, client):
        client.post(
            "/automation/trigger",
            json={"type": "blog-published", "data": POST},
            headers=AUTOMATION,
        )

        response = client.get("/automation/posts/post-42/status")

        assert response.json()["data"]["summary"]["total"] == 1


class TestWebhooks:
    def test_blog_published(self, client):
        raw, headers = signed(
            {
                "post": {**POST, "status": "PUBLISHED"},
                "trigger": {"event": "blog.published", "source": "cms"},
            }
        )

        response = client.post(
            "/automation/webhooks/blog-published", content=raw, headers=headers
        )

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == (
            "Blog automation triggered for post: Structured Concurrency in Python"
        )
        assert body["data"]["post"]["url"] == (
            "https://blog.example.com/blog/structured-concurrency"
        )
        assert len(body["data"]["jobs"]) == 2

    def test_unpublished_post_rejected(self, client):
        raw, headers = signed(
            {
                "post": {**POST, "status": "DRAFT"},
                "trigger": {"event": "blog.published"},
            }
        )

        response = client.post(
            "/automation/webhooks/blog-published", content=raw, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["post.status"]

    def test_missing_signature(self, client):
        response = client.post("/automation/webhooks/blog-published", json={})

        assert response.status_code == 401

    def test_wrong_secret(self, client):
        raw, headers = signed({"post": POST}, secret="other")

        response = client.post(
            "/automation/webhooks/blog-published", content=raw, headers=headers
        )

        assert response.status_code == 401

    def test_stale_timestamp(self, client):
        stale = int((time.time() - 3600) * 1000)
        raw, headers = signed({"post": POST}, timestamp=stale)

        response = client.post(
            "/automation/webhooks/blog-published", content=raw, headers=headers
        )

        assert response.status_code == 401

    def test_seo_analysis_complete(self, client, services):
        raw, headers = signed(SEO_COMPLETE)

        response = client.post(
            "/automation/webhooks/seo-analysis-complete", content=raw, headers=headers
        )

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "SEO analysis webhook processed for post post-42"
        assert body["data"]["needsOptimization"] is True
        assert len(services.job_manager.list_jobs(job_type="sitemap-generation")) == 1

    def test_health(self, client):
        for name in ("blog-published", "seo-analysis-complete"):
            data = client.get(f"/automation/webhooks/{name}").json()["data"]
            assert data["status"] == "healthy"
            assert data["webhook"] == name


class TestErrorLog:
    def test_requires_admin(self, client):
        assert client.get("/automation/errors").status_code == 401

    def test_report_and_list(self, client, services):
        response = client.post(
            "/automation/errors",
            json={"message": "CMS rejected update", "category": "api", "level": "warn"},
            headers=ADMIN,
        )
        assert response.json()["message"] == "Error logged successfully"
        assert response.json()["data"]["logged"] is True

        data = client.get("/automation/errors?category=api", headers=ADMIN).json()[
            "data"
        ]
        assert data["errors"]["total"] == 1
        assert data["errors"]["events"][0]["message"] == "CMS rejected update"
        assert data["metrics"]["totalErrors"] == 1
        assert data["health"]["status"] == "healthy"
        assert data["query"]["category"] == "api"

    def test_invalid_report(self, client):
        response = client.post(
            "/automation/errors", json={"message": "x", "level": "fatal"}, headers=ADMIN
        )

        assert response.status_code == 400
        assert response.json()["data"]["fields"] == ["level"]

    def test_csv_export(self, client, services):
        services.error_monitor.log_error("timeout, retrying", source="job:seo-analysis")

        response = client.get("/automation/errors?format=csv", headers=ADMIN)

        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0] == "id,timestamp,level,category,source,message,jobId"
        assert '"timeout, retrying"' in lines[1]

    def test_clear_requires_confirmation(self, client, services):
        services.error_monitor.log_error("boom")

        refused = client.delete("/automation/errors", headers=ADMIN)
        assert refused.status_code == 400
        assert refused.json()["data"]["confirmationRequired"] is True
        assert len(services.error_monitor) == 1

        cleared = client.delete("/automation/errors?confirm=true", headers=ADMIN)
        assert cleared.json()["data"]["cleared"] == 1
        assert len(services.error_monitor) == 0


class TestRateLimit:
    @pytest.fixture
    def limited_client(self, services, auth_config, monkeypatch):
        monkeypatch.setattr(config.api, "rate_limit_enabled", True)
        with patch("blog_automation.api.dependencies.config", auth_config):
            yield build_client(services)

    def test_api_burst(self, limited_client):
        for _ in range(10):
            response = limited_client.get("/automation/jobs/metrics")
            assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "90"

        blocked = limited_client.get("/automation/jobs/metrics")

        assert blocked.status_code == 429
        assert blocked.json()["success"] is False
        assert blocked.json()["error"].startswith("Rate limit exceeded")
        assert int(blocked.headers["Retry-After"]) > 0

    def test_root_is_not_limited(self, limited_client):
        for _ in range(15):
            assert limited_client.get("/").status_code == 200
