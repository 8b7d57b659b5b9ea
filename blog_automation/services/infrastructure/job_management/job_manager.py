"""Job queue facade: enqueue, cancel, pause and housekeeping on top of the store."""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

import pydantic
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from blog_automation.lib.logger import configure_logger

from .decorators import JobRegistry
from .error_monitor import ErrorMonitor
from .errors import InvalidStateError, ValidationError
from .executor import JobExecutor, RetryManager
from .models import (
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    JobPriority,
    JobRecord,
    JobSnapshot,
    JobStatus,
    utcnow,
)
from .monitoring import MetricsAggregator, QueueThresholds
from .retry import RetryController
from .store import JobStore

logger = configure_logger(__name__)

CLEANUP_JOB_ID = "job_queue_cleanup"


class JobManager:
    """Owns the store and wires dispatcher, retry controller and metrics to it."""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        registry: Optional[JobRegistry] = None,
        queue_config=None,
        thresholds: Optional[QueueThresholds] = None,
        error_monitor: Optional[ErrorMonitor] = None,
    ):
        if queue_config is None:
            from blog_automation.config import config

            queue_config = config.queue

        self.queue_config = queue_config
        self.store = store if store is not None else JobStore()
        self.registry = registry or JobRegistry()
        self.thresholds = thresholds or QueueThresholds()
        self.error_monitor = (
            error_monitor if error_monitor is not None else ErrorMonitor()
        )
        self.executor = JobExecutor(
            self.store,
            self.registry,
            retry_manager=RetryManager(
                max_backoff_ms=queue_config.max_backoff_ms,
                jitter=queue_config.backoff_jitter,
            ),
            concurrency=queue_config.concurrency,
            poll_interval=queue_config.poll_interval_seconds,
            default_timeout_ms=queue_config.default_timeout_ms,
            on_failure=self.error_monitor.log_job_error,
        )
        self.retry_controller = RetryController(
            self.store, on_requeue=self.executor.wake
        )
        self.metrics = MetricsAggregator(self.store, self.thresholds)
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self.executor.is_running

    def enqueue(
        self,
        job_type: str,
        payload: Any = None,
        priority: Union[JobPriority, str, None] = None,
        delay: Optional[int] = None,
        max_retries: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        timeout: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        scheduled_for: Optional[datetime] = None,
    ) -> str:
        """Validate and add a job. Returns the job id.

        Enqueueing with an idempotency key that is already known returns the
        existing job's id and leaves it untouched.
        """
        if idempotency_key:
            existing = self.store.find_by_idempotency_key(idempotency_key)
            if existing:
                logger.debug(
                    f"Job deduplicated - not enqueuing: {job_type}",
                    extra={"job_id": existing.id, "event_type": "job_deduplicated"},
                )
                return existing.id

        job = self.build_job(
            job_type,
            payload,
            priority=priority,
            delay=delay,
            max_retries=max_retries,
            tags=tags,
            timeout=timeout,
            idempotency_key=idempotency_key,
            scheduled_for=scheduled_for,
        )
        stored, created = self.store.add_unique(job)
        if not created:
            logger.debug(
                f"Job deduplicated - not enqueuing: {job_type}",
                extra={"job_id": stored.id, "event_type": "job_deduplicated"},
            )
            return stored.id

        logger.info(
            f"Job enqueued: {job.type}",
            extra={
                "job_id": job.id,
                "priority": str(job.priority),
                "status": str(job.status),
                "event_type": "job_enqueued",
            },
        )
        self.executor.wake()
        return job.id

    def build_job(
        self,
        job_type: str,
        payload: Any = None,
        priority: Union[JobPriority, str, None] = None,
        delay: Optional[int] = None,
        max_retries: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        timeout: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        scheduled_for: Optional[datetime] = None,
    ) -> JobRecord:
        """Create a validated, not yet stored, JobRecord."""
        if not job_type or not isinstance(job_type, str):
            raise ValidationError("Job type is required", fields=["type"])

        metadata = self.registry.get_metadata(job_type)
        if metadata is None:
            logger.warning(
                f"Enqueueing job without a registered handler: {job_type}",
                extra={"event_type": "job_type_unregistered"},
            )

        bad = []
        if priority is None:
            priority = metadata.priority if metadata else JobPriority.NORMAL
        try:
            priority = JobPriority(priority)
        except ValueError:
            bad.append("priority")

        if delay is None:
            delay = self.queue_config.default_delay_ms
        if delay < 0:
            bad.append("delay")

        if max_retries is None:
            max_retries = (
                metadata.max_retries
                if metadata and metadata.max_retries is not None
                else self.queue_config.default_max_retries
            )
        if max_retries < 0:
            bad.append("maxRetries")

        if timeout is None and metadata:
            timeout = metadata.timeout_ms
        if timeout is not None and timeout <= 0:
            bad.append("timeout")

        if bad:
            raise ValidationError(f"Invalid job fields: {', '.join(bad)}", fields=bad)

        if metadata and metadata.payload_model is not None:
            try:
                payload = metadata.payload_model.model_validate(payload or {})
            except pydantic.ValidationError as e:
                fields = [
                    "payload." + ".".join(str(part) for part in err["loc"])
                    for err in e.errors()
                ]
                raise ValidationError(
                    f"Invalid payload for job type {job_type}", fields=fields
                ) from e

        now = utcnow()
        job_tags = set(metadata.tags if metadata else ()) | set(tags or ())
        return JobRecord(
            type=job_type,
            payload=payload,
            priority=priority,
            delay=delay,
            max_retries=max_retries,
            created_at=now,
            scheduled_for=scheduled_for or now + timedelta(milliseconds=delay),
            tags=job_tags,
            timeout=timeout,
            idempotency_key=idempotency_key,
        )

    def get_job(self, job_id: str) -> JobRecord:
        return self.store.require(job_id)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[str] = None,
    ) -> List[JobRecord]:
        jobs = self.store.snapshot()
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        if job_type is not None:
            jobs = [job for job in jobs if job.type == job_type]
        return sorted(jobs, key=lambda job: job.created_at)

    def recent_jobs(self, limit: int = 10) -> List[JobSnapshot]:
        jobs = sorted(
            self.store.snapshot(), key=lambda job: job.created_at, reverse=True
        )
        return [job.to_snapshot() for job in jobs[:limit]]

    def cancel(self, job_id: str) -> JobRecord:
        """Cancel a pending, paused or active job.

        Pending jobs are cancelled at once. An active job only gets a
        cancellation request; it becomes `cancelled` when its handler returns.
        """

        def apply(job: JobRecord) -> JobRecord:
            if job.status in TERMINAL_STATUSES:
                raise InvalidStateError(job.id, job.status.value, action="cancelled")
            if job.status == JobStatus.ACTIVE:
                job.cancel_requested = True
            else:
                job.status = JobStatus.CANCELLED
            return job

        job = self.store.mutate(job_id, apply)
        logger.info(
            f"Job cancellation: {job.type}",
            extra={
                "job_id": job.id,
                "status": str(job.status),
                "cooperative": job.status == JobStatus.ACTIVE,
                "event_type": "job_cancel_requested",
            },
        )
        return job

    def pause_job(self, job_id: str) -> JobRecord:
        """Put a pending job on administrative hold."""

        def apply(job: JobRecord) -> JobRecord:
            if job.status not in PENDING_STATUSES:
                raise InvalidStateError(job.id, job.status.value, action="paused")
            job.status = JobStatus.PAUSED
            return job

        job = self.store.mutate(job_id, apply)
        logger.info(
            f"Job paused: {job.type}",
            extra={"job_id": job.id, "event_type": "job_paused"},
        )
        return job

    def resume_job(self, job_id: str) -> JobRecord:
        """Return a paused job to `waiting`, or `delayed` if it is not yet due."""
        now = utcnow()

        def apply(job: JobRecord) -> JobRecord:
            if job.status != JobStatus.PAUSED:
                raise InvalidStateError(job.id, job.status.value, action="resumed")
            job.status = (
                JobStatus.DELAYED if job.scheduled_for > now else JobStatus.WAITING
            )
            return job

        job = self.store.mutate(job_id, apply)
        logger.info(
            f"Job resumed: {job.type}",
            extra={"job_id": job.id, "event_type": "job_resumed"},
        )
        self.executor.wake()
        return job

    def pause(self) -> None:
        self.executor.pause()

    def resume(self) -> None:
        self.executor.resume()

    def health_check(self) -> Dict[str, Any]:
        return self.store.health_check(self.thresholds)

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Drop terminal jobs older than the retention period."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.queue_config.retention_seconds)
        removed = 0
        for job in self.store.snapshot():
            if job.status not in TERMINAL_STATUSES:
                continue
            reference = job.completed_at or job.failed_at or job.created_at
            if reference < cutoff and self.store.remove(job.id):
                removed += 1

        if removed:
            logger.info(
                f"{removed} expired jobs removed",
                extra={"event_type": "job_cleanup"},
            )
        return removed

    def schedule_cleanup(self, scheduler: AsyncIOScheduler) -> bool:
        """Register the retention cleanup with the scheduler."""
        if not self.queue_config.cleanup_enabled:
            logger.info(
                "Job retention cleanup disabled",
                extra={"event_type": "cleanup_disabled"},
            )
            return False

        scheduler.add_job(
            self.cleanup_expired,
            "interval",
            seconds=self.queue_config.cleanup_interval_seconds,
            id=CLEANUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        return True

    async def start(self, scheduler: Optional[AsyncIOScheduler] = None) -> None:
        """Start the dispatcher and the housekeeping scheduler."""
        self._scheduler = scheduler or AsyncIOScheduler()
        if self.schedule_cleanup(self._scheduler) and not self._scheduler.running:
            self._scheduler.start()
        await self.executor.start()

    async def stop(self) -> None:
        await self.executor.stop()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "executor": self.executor.get_stats(),
            "jobs": self.store.count_by_status(),
        }
