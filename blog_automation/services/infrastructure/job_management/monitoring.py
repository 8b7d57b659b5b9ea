"""Job metrics aggregation.

Everything here is a pure function of a job-store snapshot and the query
parameters; nothing in this module mutates a job.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from blog_automation.lib.logger import configure_logger

from .errors import ValidationError
from .models import JobPriority, JobRecord, JobStatus, utcnow
from .store import JobStore

logger = configure_logger(__name__)

TIME_RANGES: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIME_RANGE = "24h"


@dataclass
class QueueThresholds:
    """Thresholds behind the health indicators."""

    stale_job_seconds: int = 3600
    high_latency_ms: int = 300000
    high_error_rate: float = 0.1
    backlog_warning: int = 100
    queue_latency_ms: int = 30000
    histogram_buckets: int = 24

    @classmethod
    def from_config(cls, monitoring) -> "QueueThresholds":
        return cls(
            stale_job_seconds=monitoring.stale_job_seconds,
            high_latency_ms=monitoring.high_latency_ms,
            high_error_rate=monitoring.high_error_rate,
            backlog_warning=monitoring.backlog_warning,
            queue_latency_ms=monitoring.queue_latency_ms,
            histogram_buckets=monitoring.histogram_buckets,
        )


def _ms(delta: timedelta) -> float:
    return delta.total_seconds() * 1000


def _processing_ms(job: JobRecord) -> Optional[float]:
    if job.started_at and job.completed_at:
        return _ms(job.completed_at - job.started_at)
    return None


def find_stuck_jobs(
    jobs: Iterable[JobRecord], now: datetime, stale_seconds: int
) -> List[JobRecord]:
    """Active jobs that started longer ago than the staleness threshold."""
    cutoff = now - timedelta(seconds=stale_seconds)
    return [
        job
        for job in jobs
        if job.status == JobStatus.ACTIVE and job.started_at and job.started_at < cutoff
    ]


def compute_queue_metrics(jobs: Sequence[JobRecord], now: datetime) -> Dict[str, Any]:
    """Live queue counters over every job currently held by the store."""
    completed = [job for job in jobs if job.status == JobStatus.COMPLETED]
    failed = [job for job in jobs if job.status == JobStatus.FAILED]
    waiting = [job for job in jobs if job.status == JobStatus.WAITING]

    processing_times = [_processing_ms(job) or 0.0 for job in completed]
    avg_processing = sum(processing_times) / len(completed) if completed else 0.0

    one_minute_ago = now - timedelta(minutes=1)
    throughput = len(
        [job for job in completed if job.completed_at and job.completed_at > one_minute_ago]
    )

    processed = len(completed) + len(failed)
    error_rate = len(failed) / processed if processed else 0.0

    queue_latency = (
        sum(_ms(now - job.created_at) for job in waiting) / len(waiting)
        if waiting
        else 0.0
    )

    return {
        "totalJobs": len(jobs),
        "completedJobs": len(completed),
        "failedJobs": len(failed),
        "activeJobs": len([job for job in jobs if job.status == JobStatus.ACTIVE]),
        "waitingJobs": len(waiting),
        "delayedJobs": len([job for job in jobs if job.status == JobStatus.DELAYED]),
        "avgProcessingTime": round(avg_processing),
        "throughputPerMinute": throughput,
        "errorRate": error_rate,
        "queueLatency": round(queue_latency),
    }


def parse_job_types(raw: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated job type list; empty input means no filter."""
    if not raw:
        return None
    types = [item.strip() for item in raw.split(",") if item.strip()]
    return types or None


class MetricsAggregator:
    """Windowed statistics over the job store."""

    def __init__(self, store: JobStore, thresholds: Optional[QueueThresholds] = None):
        self.store = store
        self.thresholds = thresholds or QueueThresholds()

    def collect(
        self,
        time_range: str = DEFAULT_TIME_RANGE,
        job_types: Optional[Sequence[str]] = None,
        include_histogram: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Compute the full metrics report for a time window."""
        if time_range not in TIME_RANGES:
            raise ValidationError(
                f"Invalid time range '{time_range}'. Expected one of: "
                f"{', '.join(TIME_RANGES)}",
                fields=["timeRange"],
            )

        now = now or utcnow()
        window = TIME_RANGES[time_range]
        start = now - window

        all_jobs = self.store.snapshot()
        jobs = [job for job in all_jobs if job.created_at >= start]
        if job_types:
            wanted = set(job_types)
            jobs = [job for job in jobs if job.type in wanted]

        breakdown = self.breakdown(jobs)
        performance = self.performance(jobs, window)
        errors = self.errors(jobs)
        health = self.health(jobs, breakdown, performance, now)

        report: Dict[str, Any] = {
            "current": compute_queue_metrics(all_jobs, now),
            "period": {
                "timeRange": time_range,
                "startTime": start.isoformat(),
                "endTime": now.isoformat(),
                "totalJobs": len(jobs),
            },
            "breakdown": breakdown,
            "performance": performance,
            "errors": errors,
            "health": health,
        }
        if include_histogram:
            report["histogram"] = self.histogram(jobs, start, window)

        logger.debug(
            "Metrics computed",
            extra={
                "time_range": time_range,
                "total_jobs": len(jobs),
                "event_type": "metrics_computed",
            },
        )
        return report

    @staticmethod
    def breakdown(jobs: Sequence[JobRecord]) -> Dict[str, Dict[str, int]]:
        by_status = {status.value: 0 for status in JobStatus}
        by_priority = {priority.value: 0 for priority in JobPriority}
        by_type: Counter = Counter()
        for job in jobs:
            by_status[job.status.value] += 1
            by_priority[job.priority.value] += 1
            by_type[job.type] += 1
        return {
            "byStatus": by_status,
            "byType": dict(by_type),
            "byPriority": by_priority,
        }

    @staticmethod
    def performance(jobs: Sequence[JobRecord], window: timedelta) -> Dict[str, Any]:
        completed = [job for job in jobs if job.status == JobStatus.COMPLETED]
        failed = [job for job in jobs if job.status == JobStatus.FAILED]

        if completed:
            avg_processing = sum(_processing_ms(job) or 0.0 for job in completed) / len(
                completed
            )
            avg_wait = sum(
                _ms(job.started_at - job.created_at) if job.started_at else 0.0
                for job in completed
            ) / len(completed)
        else:
            avg_processing = avg_wait = 0.0

        finished = len(completed) + len(failed)
        success_rate = len(completed) / finished if finished else 0.0

        # never-run jobs count as zero retries, not minus one
        avg_retries = (
            sum(max(job.attempts - 1, 0) for job in jobs) / len(jobs) if jobs else 0.0
        )

        return {
            "avgProcessingTime": round(avg_processing),
            "avgWaitTime": round(avg_wait),
            "successRate": round(success_rate * 1000) / 10,
            "throughput": len(completed) / (window.total_seconds() / 3600),
            "avgRetries": round(avg_retries * 100) / 100,
        }

    @staticmethod
    def errors(jobs: Sequence[JobRecord]) -> Dict[str, Any]:
        failed = [job for job in jobs if job.status == JobStatus.FAILED]
        errors_by_type: Counter = Counter()
        for job in failed:
            key = job.last_error.split(":")[0].strip() if job.last_error else ""
            errors_by_type[key or "Unknown"] += 1

        return {
            "totalFailed": len(failed),
            "failureRate": round(len(failed) / max(1, len(jobs)) * 1000) / 10,
            "errorsByType": dict(errors_by_type),
            "jobsWithRetries": len([job for job in jobs if job.attempts > 1]),
        }

    def health(
        self,
        jobs: Sequence[JobRecord],
        breakdown: Dict[str, Dict[str, int]],
        performance: Dict[str, Any],
        now: datetime,
    ) -> Dict[str, Any]:
        by_status = breakdown["byStatus"]
        failed = by_status[JobStatus.FAILED.value]
        indicators = {
            "queueBacklog": by_status[JobStatus.WAITING.value]
            + by_status[JobStatus.DELAYED.value],
            "stuckJobs": len(
                find_stuck_jobs(jobs, now, self.thresholds.stale_job_seconds)
            ),
            "highErrorRate": failed / max(1, len(jobs))
            > self.thresholds.high_error_rate,
            "highLatency": performance["avgWaitTime"] > self.thresholds.high_latency_ms,
        }

        recommendations = []
        if indicators["queueBacklog"] > self.thresholds.backlog_warning:
            recommendations.append("Consider increasing concurrency")
        if indicators["stuckJobs"] > 0:
            recommendations.append(f"{indicators['stuckJobs']} jobs appear stuck")
        if indicators["highErrorRate"]:
            recommendations.append(
                "High error rate detected - investigate failing jobs"
            )
        if indicators["highLatency"]:
            recommendations.append(
                "High queue latency - consider optimizing job handlers"
            )

        return {
            "status": "warning" if any(indicators.values()) else "healthy",
            "indicators": indicators,
            "recommendations": recommendations,
        }

    def histogram(
        self, jobs: Sequence[JobRecord], start: datetime, window: timedelta
    ) -> List[Dict[str, Any]]:
        buckets = max(1, self.thresholds.histogram_buckets)
        bucket_size = window / buckets
        histogram = []
        for index in range(buckets):
            bucket_start = start + bucket_size * index
            bucket_end = bucket_start + bucket_size
            bucket_jobs = [
                job for job in jobs if bucket_start <= job.created_at < bucket_end
            ]
            timed = [t for t in (_processing_ms(job) for job in bucket_jobs) if t is not None]
            histogram.append(
                {
                    "timestamp": bucket_start.isoformat(),
                    "total": len(bucket_jobs),
                    "completed": len(
                        [j for j in bucket_jobs if j.status == JobStatus.COMPLETED]
                    ),
                    "failed": len(
                        [j for j in bucket_jobs if j.status == JobStatus.FAILED]
                    ),
                    "avgProcessingTime": round(sum(timed) / len(timed)) if timed else 0,
                }
            )
        return histogram
