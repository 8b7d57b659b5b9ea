"""Job dispatcher: a pool of asyncio workers pulling from the job store."""

import asyncio
import random
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from blog_automation.lib.logger import configure_logger

from .base import BaseTask, JobCancelled, JobContext
from .decorators import JobRegistry
from .errors import HandlerError
from .models import JobRecord, JobStatus, utcnow
from .store import JobStore

logger = configure_logger(__name__)


class RetryManager:
    """Automatic retry decisions and backoff for failed executions."""

    def __init__(self, max_backoff_ms: int = 300000, jitter: bool = True):
        self.max_backoff_ms = max_backoff_ms
        self.jitter = jitter

    @staticmethod
    def should_retry(job: JobRecord) -> bool:
        """A job may run again while it has not used more than max_retries attempts."""
        return job.attempts <= job.max_retries

    def calculate_retry_delay(self, attempt: int, base_delay_ms: int) -> int:
        """Exponential backoff from the job's base delay, in milliseconds."""
        if base_delay_ms <= 0:
            return 0
        delay = base_delay_ms * (2 ** max(attempt - 1, 0))
        if self.jitter:
            delay += random.random() * 0.1 * delay
        return int(min(delay, self.max_backoff_ms))

    def handle_failure(
        self,
        store: JobStore,
        job_id: str,
        error: HandlerError,
        now: Optional[datetime] = None,
    ) -> JobRecord:
        """Record a failed execution and decide whether the job runs again."""
        now = now or utcnow()

        def apply(job: JobRecord) -> JobRecord:
            job.last_error = error.message
            if job.cancel_requested:
                job.status = JobStatus.CANCELLED
            elif self.should_retry(job):
                backoff = self.calculate_retry_delay(job.attempts, job.delay)
                job.scheduled_for = now + timedelta(milliseconds=backoff)
                job.status = JobStatus.DELAYED if backoff > 0 else JobStatus.WAITING
                job.failed_at = None
            else:
                job.status = JobStatus.FAILED
                job.failed_at = now
            return job

        job = store.mutate(job_id, apply)

        if job.status == JobStatus.FAILED:
            logger.error(
                f"Job failed permanently: {job.type}",
                extra={
                    "job_id": job.id,
                    "attempts": job.attempts,
                    "error": job.last_error,
                    "event_type": "job_failed_permanently",
                },
            )
        elif job.status == JobStatus.CANCELLED:
            logger.info(
                f"Job cancelled after failed execution: {job.type}",
                extra={"job_id": job.id, "event_type": "job_cancelled"},
            )
        else:
            logger.info(
                f"Job scheduled for retry: {job.type}",
                extra={
                    "job_id": job.id,
                    "attempt": job.attempts,
                    "max_retries": job.max_retries,
                    "scheduled_for": job.scheduled_for.isoformat(),
                    "event_type": "job_retry_scheduled",
                },
            )
        return job


class JobExecutor:
    """Dispatches eligible jobs to their handlers with bounded concurrency."""

    def __init__(
        self,
        store: JobStore,
        registry: JobRegistry,
        retry_manager: Optional[RetryManager] = None,
        concurrency: int = 5,
        poll_interval: float = 0.5,
        default_timeout_ms: Optional[int] = None,
        on_failure: Optional[Callable[[JobRecord, Exception], Any]] = None,
    ):
        self.store = store
        self.registry = registry
        self.retry_manager = retry_manager or RetryManager()
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.default_timeout_ms = default_timeout_ms
        self.on_failure = on_failure

        self._running = False
        self._paused = False
        self._worker_tasks: List[asyncio.Task] = []
        self._wakeup: Optional[asyncio.Event] = None
        self._active: Dict[str, str] = {}
        self._hook_tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def start(self) -> None:
        """Start `concurrency` worker tasks."""
        if self._running:
            logger.warning(
                "JobExecutor is already running",
                extra={"event_type": "executor_already_running"},
            )
            return

        self._running = True
        self._wakeup = asyncio.Event()
        for i in range(self.concurrency):
            task = asyncio.create_task(self._worker(f"worker-{i}"))
            self._worker_tasks.append(task)

        logger.info(
            "JobExecutor started",
            extra={"worker_count": self.concurrency, "event_type": "executor_started"},
        )

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        for task in self._worker_tasks:
            task.cancel()
        if self._worker_tasks:
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks.clear()
        logger.info("JobExecutor stopped", extra={"event_type": "executor_stopped"})

    def wake(self) -> None:
        """Nudge idle workers after an enqueue, retry or resume."""
        if self._wakeup is not None:
            self._wakeup.set()

    def pause(self) -> None:
        self._paused = True
        logger.info("Dispatch paused", extra={"event_type": "queue_paused"})

    def resume(self) -> None:
        self._paused = False
        logger.info("Dispatch resumed", extra={"event_type": "queue_resumed"})
        self.wake()

    async def drain(self, poll: float = 0.1) -> None:
        """Stop taking new jobs and wait for in-flight handlers to finish."""
        self._paused = True
        while self._active:
            await asyncio.sleep(poll)

    async def process_next(self, worker_name: str = "inline") -> Optional[JobRecord]:
        """Claim and run one eligible job. Returns the job's final state, if any."""
        job = self.store.claim_next()
        if job is None:
            return None
        return await self._execute_job(job, worker_name)

    async def run_pending(self) -> int:
        """Run eligible jobs inline until none is due. Returns how many ran."""
        processed = 0
        while await self.process_next() is not None:
            processed += 1
        return processed

    async def _worker(self, worker_name: str) -> None:
        logger.debug(
            f"Worker starting: {worker_name}", extra={"event_type": "worker_start"}
        )

        while self._running:
            try:
                if self._paused:
                    await self._idle()
                    continue

                if await self.process_next(worker_name) is None:
                    await self._idle()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    f"Worker encountered error: {worker_name}",
                    extra={"error": str(e), "event_type": "worker_error"},
                    exc_info=True,
                )
                await asyncio.sleep(1)

    async def _idle(self) -> None:
        if self._wakeup is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
        finally:
            self._wakeup.clear()

    async def _execute_job(self, job: JobRecord, worker_name: str) -> JobRecord:
        """Run the handler for a claimed job and record the outcome."""
        start_time = time.time()
        self._active[job.id] = worker_name

        logger.debug(
            f"Job execution started: {worker_name}",
            extra={
                "job_id": job.id,
                "job_type": job.type,
                "attempt": job.attempts,
                "event_type": "job_execution_start",
            },
        )

        handler = self.registry.get_handler(job.type)
        try:
            if handler is None:
                raise HandlerError(f"No handler registered for job type: {job.type}")

            context = self._build_context(job, handler, worker_name)
            payload = handler.parse_payload(job.payload)
            timeout_ms = job.timeout or self.default_timeout_ms

            try:
                if timeout_ms:
                    result = await asyncio.wait_for(
                        handler.process(payload, context), timeout=timeout_ms / 1000
                    )
                else:
                    result = await handler.process(payload, context)
            except asyncio.TimeoutError:
                raise HandlerError(
                    f"TimeoutError: Job exceeded execution budget of {timeout_ms}ms"
                )

            final = self.store.mutate(job.id, lambda j: self._complete(j, result))
            if final.status == JobStatus.COMPLETED:
                logger.info(
                    f"Job completed successfully: {worker_name}, {job.type}",
                    extra={
                        "job_id": job.id,
                        "duration_seconds": round(time.time() - start_time, 2),
                        "event_type": "job_completed",
                    },
                )
                await self._run_hook(handler.on_completed(final, result), job)
            else:
                logger.info(
                    f"Job cancelled while running: {job.type}",
                    extra={"job_id": job.id, "event_type": "job_cancelled"},
                )
            return final

        except JobCancelled:
            final = self.store.mutate(job.id, self._cancel)
            logger.info(
                f"Job stopped after cancellation request: {job.type}",
                extra={"job_id": job.id, "event_type": "job_cancelled"},
            )
            return final

        except asyncio.CancelledError:
            # dispatcher shutting down; hand the job back to the queue
            self.store.mutate(job.id, self._requeue_interrupted)
            raise

        except Exception as e:
            error = HandlerError.from_exception(e)
            logger.error(
                f"Job execution failed: {worker_name}, {job.type}",
                extra={
                    "job_id": job.id,
                    "duration_seconds": round(time.time() - start_time, 2),
                    "error": error.message,
                    "event_type": "job_failed",
                },
            )
            final = self.retry_manager.handle_failure(self.store, job.id, error)
            self._report_failure(final, e)
            if handler is not None:
                await self._run_hook(handler.on_failed(final, e), job)
            return final

        finally:
            self._active.pop(job.id, None)

    def _build_context(
        self, job: JobRecord, handler: BaseTask, worker_name: str
    ) -> JobContext:
        loop = asyncio.get_running_loop()

        def on_progress(progress: int) -> None:
            self.store.mutate(job.id, lambda j: setattr(j, "progress", progress))
            task = loop.create_task(
                self._run_hook(handler.on_progress(job.id, progress), job)
            )
            self._hook_tasks.add(task)
            task.add_done_callback(self._hook_tasks.discard)

        return JobContext(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts,
            max_retries=job.max_retries,
            timeout_ms=job.timeout or self.default_timeout_ms,
            worker_name=worker_name,
            tags=frozenset(job.tags),
            _progress=on_progress,
            _cancel_check=lambda: self.store.is_cancel_requested(job.id),
        )

    @staticmethod
    def _complete(job: JobRecord, result: Any) -> JobRecord:
        if job.cancel_requested:
            return JobExecutor._cancel(job)
        job.status = JobStatus.COMPLETED
        job.completed_at = utcnow()
        job.progress = 100
        job.result = result
        return job

    @staticmethod
    def _cancel(job: JobRecord) -> JobRecord:
        job.status = JobStatus.CANCELLED
        return job

    @staticmethod
    def _requeue_interrupted(job: JobRecord) -> JobRecord:
        if job.status == JobStatus.ACTIVE:
            job.status = JobStatus.WAITING
            job.scheduled_for = utcnow()
            job.started_at = None
            job.attempts = max(0, job.attempts - 1)
            job.progress = 0
        return job

    def _report_failure(self, job: JobRecord, error: Exception) -> None:
        if self.on_failure is None:
            return
        try:
            self.on_failure(job, error)
        except Exception as e:
            logger.warning(
                f"Failure reporter raised: {job.type}",
                extra={"job_id": job.id, "error": str(e), "event_type": "hook_error"},
            )

    @staticmethod
    async def _run_hook(coro, job: JobRecord) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning(
                f"Handler hook failed: {job.type}",
                extra={"job_id": job.id, "error": str(e), "event_type": "hook_error"},
            )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "paused": self._paused,
            "worker_count": len(self._worker_tasks),
            "concurrency": self.concurrency,
            "active_jobs": dict(self._active),
        }
