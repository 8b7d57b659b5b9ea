"""Operator-driven retries: single, bulk and eligibility queries."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from blog_automation.lib.logger import configure_logger

from .errors import InvalidStateError, ValidationError
from .models import RETRYABLE_STATUSES, JobPriority, JobRecord, JobStatus, utcnow
from .store import JobStore

logger = configure_logger(__name__)

DEFAULT_MAX_JOBS = 100
MAX_JOBS_LIMIT = 1000
STAGGER_MS = 1000


@dataclass
class RetryOptions:
    reset_attempts: bool = False
    # milliseconds; None schedules for now (plus stagger in bulk)
    new_delay: Optional[int] = None
    new_priority: Optional[JobPriority] = None
    max_jobs: int = DEFAULT_MAX_JOBS

    def __post_init__(self):
        bad = []
        if self.new_delay is not None and self.new_delay < 0:
            bad.append("newDelay")
        if not 1 <= self.max_jobs <= MAX_JOBS_LIMIT:
            bad.append("maxJobs")
        if bad:
            raise ValidationError(
                f"Invalid retry options: {', '.join(bad)}", fields=bad
            )
        if self.new_priority is not None and not isinstance(
            self.new_priority, JobPriority
        ):
            try:
                self.new_priority = JobPriority(self.new_priority)
            except ValueError:
                raise ValidationError(
                    f"Unknown priority: {self.new_priority}", fields=["newPriority"]
                )


@dataclass
class RetryFilter:
    """Conjunctive filter over failed and cancelled jobs."""

    status: Optional[JobStatus] = None
    job_type: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    failed_before: Optional[datetime] = None
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.status is not None:
            try:
                self.status = JobStatus(self.status)
            except ValueError:
                raise ValidationError(
                    f"Unknown status: {self.status}", fields=["filter.status"]
                )
            if self.status not in RETRYABLE_STATUSES:
                raise ValidationError(
                    "Filter status must be 'failed' or 'cancelled'",
                    fields=["filter.status"],
                )
        if self.max_attempts is not None and self.max_attempts < 0:
            raise ValidationError(
                "maxAttempts must be >= 0", fields=["filter.maxAttempts"]
            )
        self.tags = set(self.tags or ())

    def predicates(self) -> List[Callable[[JobRecord], bool]]:
        checks: List[Callable[[JobRecord], bool]] = []
        if self.status is not None:
            checks.append(lambda job: job.status == self.status)
        if self.job_type:
            checks.append(lambda job: job.type == self.job_type)
        if self.tags:
            checks.append(lambda job: bool(job.tags & self.tags))
        if self.failed_before is not None:
            checks.append(
                lambda job: job.failed_at is not None
                and job.failed_at < self.failed_before
            )
        if self.max_attempts is not None:
            checks.append(lambda job: job.attempts <= self.max_attempts)
        return checks

    def matches(self, job: JobRecord) -> bool:
        return all(check(job) for check in self.predicates())


class RetryController:
    """Services operator retries against the job store."""

    def __init__(
        self, store: JobStore, on_requeue: Optional[Callable[[], None]] = None
    ):
        self.store = store
        # called after jobs return to the queue, e.g. to wake the dispatcher
        self._on_requeue = on_requeue

    def retry_job(
        self,
        job_id: str,
        options: Optional[RetryOptions] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Retry one failed or cancelled job.

        Raises:
            NotFoundError: the job does not exist
            InvalidStateError: the job is not failed or cancelled
        """
        options = options or RetryOptions()
        now = now or utcnow()
        job = self.store.mutate(
            job_id, lambda j: self._reset(j, options, now, stagger_ms=0)
        )

        logger.info(
            f"Job queued for retry: {job.type}",
            extra={
                "job_id": job.id,
                "attempts": job.attempts,
                "priority": str(job.priority),
                "event_type": "job_manual_retry",
            },
        )
        self._notify()
        return {
            "jobId": job.id,
            "newStatus": job.status.value,
            "scheduledFor": job.scheduled_for.isoformat(),
            "attempts": job.attempts,
        }

    def bulk_retry(
        self,
        retry_filter: Optional[RetryFilter] = None,
        options: Optional[RetryOptions] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Retry every matching failed or cancelled job, up to `max_jobs`.

        Jobs without an explicit new delay are staggered one second apart.
        A failure to reset one job is recorded and the batch continues.
        """
        retry_filter = retry_filter or RetryFilter()
        options = options or RetryOptions()
        now = now or utcnow()

        eligible = self.select_eligible(retry_filter)
        to_retry = eligible[: options.max_jobs]

        retried: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []
        for index, job in enumerate(to_retry):
            stagger_ms = index * STAGGER_MS
            try:
                updated = self.store.mutate(
                    job.id,
                    lambda j, s=stagger_ms: self._reset(j, options, now, stagger_ms=s),
                )
            except Exception as e:
                failed.append({"jobId": job.id, "error": str(e)})
                continue
            retried.append(
                {
                    "jobId": updated.id,
                    "type": updated.type,
                    "scheduledFor": updated.scheduled_for.isoformat(),
                    "attempts": updated.attempts,
                }
            )

        logger.info(
            "Bulk retry completed",
            extra={
                "total_eligible": len(eligible),
                "retried": len(retried),
                "failed": len(failed),
                "event_type": "bulk_retry",
            },
        )
        if retried:
            self._notify()

        if not to_retry:
            message = "No jobs matched the retry criteria"
        else:
            message = (
                f"Bulk retry completed: {len(retried)} jobs queued for retry, "
                f"{len(failed)} failed"
            )
        return {
            "message": message,
            "retriedJobs": retried,
            "failedRetries": failed,
            "totalEligible": len(eligible),
            "summary": {
                "successful": len(retried),
                "failed": len(failed),
                "totalProcessed": len(to_retry),
            },
        }

    def select_eligible(self, retry_filter: RetryFilter) -> List[JobRecord]:
        """Failed/cancelled jobs matching the filter, oldest first."""
        jobs = [job for job in self.store.snapshot() if job.status in RETRYABLE_STATUSES]
        checks = retry_filter.predicates()
        matched = [job for job in jobs if all(check(job) for check in checks)]
        matched.sort(key=lambda job: job.created_at)
        return matched

    def check_eligibility(self, job_id: str) -> Dict[str, Any]:
        """Read-only view of whether a job can be retried."""
        job = self.store.require(job_id)
        within_limit = job.attempts < job.max_retries
        return {
            "jobId": job.id,
            "canRetry": job.status in RETRYABLE_STATUSES and within_limit,
            "status": job.status.value,
            "attempts": job.attempts,
            "maxRetries": job.max_retries,
            "withinRetryLimit": within_limit,
            "lastError": job.last_error,
        }

    def retry_stats(self) -> Dict[str, Any]:
        """Aggregate retry statistics across the store."""
        jobs = self.store.snapshot()
        failed = [job for job in jobs if job.status == JobStatus.FAILED]
        cancelled = [job for job in jobs if job.status == JobStatus.CANCELLED]
        retryable = [job for job in failed + cancelled if job.attempts < job.max_retries]

        return {
            "total": len(jobs),
            "failed": len(failed),
            "cancelled": len(cancelled),
            "retryable": len(retryable),
            "byType": dict(Counter(job.type for job in retryable)),
            "avgAttempts": (
                sum(job.attempts for job in retryable) / len(retryable)
                if retryable
                else 0
            ),
        }

    @staticmethod
    def _reset(
        job: JobRecord, options: RetryOptions, now: datetime, stagger_ms: int
    ) -> JobRecord:
        if job.status not in RETRYABLE_STATUSES:
            raise InvalidStateError(job.id, job.status.value)
        job.reset_for_retry(
            now,
            reset_attempts=options.reset_attempts,
            new_delay=options.new_delay,
            new_priority=options.new_priority,
            stagger_ms=stagger_ms,
        )
        return job

    def _notify(self) -> None:
        if self._on_requeue:
            self._on_requeue()

