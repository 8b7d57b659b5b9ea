"""Tests for the metrics aggregator."""

from datetime import timedelta

import pytest

from blog_automation.services.infrastructure.job_management.errors import (
    ValidationError,
)
from blog_automation.services.infrastructure.job_management.models import (
    JobPriority,
    JobStatus,
    utcnow,
)
from blog_automation.services.infrastructure.job_management.monitoring import (
    MetricsAggregator,
    QueueThresholds,
    compute_queue_metrics,
    parse_job_types,
)


@pytest.fixture
def aggregator(store):
    return MetricsAggregator(store)


def completed_job(job_factory, age, processing_ms=1000, wait_ms=500, **fields):
    job = job_factory(status=JobStatus.COMPLETED, age=age, attempts=1, **fields)
    job.started_at = job.created_at + timedelta(milliseconds=wait_ms)
    job.completed_at = job.started_at + timedelta(milliseconds=processing_ms)
    job.progress = 100
    return job


def failed_job(job_factory, age, error="TimeoutError: too slow", **fields):
    fields.setdefault("attempts", 4)
    job = job_factory(status=JobStatus.FAILED, age=age, **fields)
    job.started_at = job.created_at
    job.failed_at = job.created_at + timedelta(seconds=1)
    job.last_error = error
    return job


class TestParseJobTypes:
    def test_splits_and_trims(self):
        assert parse_job_types("seo-analysis, send-digest ,") == [
            "seo-analysis",
            "send-digest",
        ]

    def test_empty_means_no_filter(self):
        assert parse_job_types(None) is None
        assert parse_job_types("") is None
        assert parse_job_types(" , ") is None


class TestMetricsAggregator:
    def test_invalid_time_range(self, aggregator):
        with pytest.raises(ValidationError) as exc_info:
            aggregator.collect(time_range="2h")
        assert exc_info.value.fields == ["timeRange"]

    def test_window_excludes_older_jobs(self, store, aggregator, job_factory):
        store.put(completed_job(job_factory, age=timedelta(minutes=30)))
        store.put(completed_job(job_factory, age=timedelta(hours=2)))

        report = aggregator.collect(time_range="1h")

        assert report["period"]["totalJobs"] == 1
        assert report["period"]["timeRange"] == "1h"
        # current counters cover the whole store
        assert report["current"]["totalJobs"] == 2

    def test_job_type_filter(self, store, aggregator, job_factory):
        store.put(completed_job(job_factory, age=timedelta(minutes=5), job_type="seo-analysis"))
        store.put(completed_job(job_factory, age=timedelta(minutes=5), job_type="send-digest"))
        store.put(completed_job(job_factory, age=timedelta(minutes=5)))

        report = aggregator.collect(job_types=["seo-analysis", "send-digest"])

        assert report["breakdown"]["byType"] == {"seo-analysis": 1, "send-digest": 1}

    def test_breakdown_lists_every_status_and_priority(self, store, aggregator, job_factory):
        store.put(job_factory(priority=JobPriority.CRITICAL))

        breakdown = aggregator.collect()["breakdown"]

        assert set(breakdown["byStatus"]) == {status.value for status in JobStatus}
        assert breakdown["byStatus"]["waiting"] == 1
        assert breakdown["byPriority"] == {
            "critical": 1,
            "high": 0,
            "normal": 0,
            "low": 0,
        }

    def test_performance(self, store, aggregator, job_factory):
        store.put(completed_job(job_factory, age=timedelta(minutes=10), processing_ms=1000))
        store.put(completed_job(job_factory, age=timedelta(minutes=10), processing_ms=3000))
        store.put(failed_job(job_factory, age=timedelta(minutes=10)))
        store.put(job_factory())

        performance = aggregator.collect(time_range="1h")["performance"]

        assert performance["avgProcessingTime"] == 2000
        assert performance["avgWaitTime"] == 500
        assert performance["successRate"] == 66.7
        assert performance["throughput"] == 2.0
        # (0 + 0 + 3 + 0) / 4; the never-run job counts as zero, not -1
        assert performance["avgRetries"] == 0.75

    def test_errors_grouped_by_prefix(self, store, aggregator, job_factory):
        store.put(failed_job(job_factory, age=timedelta(minutes=1)))
        store.put(failed_job(job_factory, age=timedelta(minutes=1), error="TimeoutError: again"))
        store.put(failed_job(job_factory, age=timedelta(minutes=1), error="Connection refused"))
        store.put(failed_job(job_factory, age=timedelta(minutes=1), error=None))

        errors = aggregator.collect()["errors"]

        assert errors["errorsByType"] == {
            "TimeoutError": 2,
            "Connection refused": 1,
            "Unknown": 1,
        }
        assert errors["totalFailed"] == 4
        assert errors["failureRate"] == 100.0
        assert errors["jobsWithRetries"] == 4

    def test_health_indicators(self, store, job_factory):
        aggregator = MetricsAggregator(store, QueueThresholds(backlog_warning=1))
        store.put(job_factory())
        store.put(job_factory())
        stuck = job_factory(status=JobStatus.ACTIVE, age=timedelta(hours=3))
        stuck.started_at = stuck.created_at
        store.put(stuck)

        health = aggregator.collect()["health"]

        assert health["status"] == "warning"
        assert health["indicators"]["queueBacklog"] == 2
        assert health["indicators"]["stuckJobs"] == 1
        assert "Consider increasing concurrency" in health["recommendations"]
        assert "1 jobs appear stuck" in health["recommendations"]

    def test_healthy_when_no_indicator_fires(self, store, aggregator, job_factory):
        store.put(completed_job(job_factory, age=timedelta(minutes=1)))

        health = aggregator.collect()["health"]

        assert health["status"] == "healthy"
        assert health["recommendations"] == []

    def test_histogram(self, store, aggregator, job_factory):
        now = utcnow()
        store.put(completed_job(job_factory, age=timedelta(minutes=30)))

        report = aggregator.collect(time_range="24h", include_histogram=True, now=now)

        histogram = report["histogram"]
        assert len(histogram) == 24
        assert sum(bucket["total"] for bucket in histogram) == 1
        assert histogram[-1]["completed"] == 1
        assert histogram[-1]["avgProcessingTime"] == 1000

    def test_histogram_omitted_by_default(self, aggregator):
        assert "histogram" not in aggregator.collect()


class TestComputeQueueMetrics:
    def test_empty_store(self):
        metrics = compute_queue_metrics([], utcnow())

        assert metrics["totalJobs"] == 0
        assert metrics["errorRate"] == 0.0
        assert metrics["queueLatency"] == 0

    def test_error_rate_and_throughput(self, job_factory):
        now = utcnow()
        jobs = [
            completed_job(job_factory, age=timedelta(seconds=10), processing_ms=100, wait_ms=0),
            failed_job(job_factory, age=timedelta(minutes=5)),
        ]

        metrics = compute_queue_metrics(jobs, now)

        assert metrics["errorRate"] == 0.5
        assert metrics["throughputPerMinute"] == 1
        assert metrics["avgProcessingTime"] == 100
