"""In-memory job store.

The store owns every JobRecord for the life of the process. Callers get
copies; all writes go through `mutate`/`claim_next`, which run under a single
lock so a job's fields are never written concurrently. The lock is never held
across an await.
"""

import copy
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from blog_automation.lib.logger import configure_logger

from .errors import NotFoundError
from .models import JobRecord, JobStatus, utcnow

logger = configure_logger(__name__)

R = TypeVar("R")


class JobStore:
    """Registry of all jobs keyed by id."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def put(self, job: JobRecord) -> JobRecord:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def require(self, job_id: str) -> JobRecord:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def list(self) -> List[JobRecord]:
        """All jobs, unordered. Returns copies taken in one consistent snapshot."""
        with self._lock:
            return copy.deepcopy(list(self._jobs.values()))

    def snapshot(self) -> List[JobRecord]:
        return self.list()

    def mutate(self, job_id: str, fn: Callable[[JobRecord], R]) -> R:
        """Apply `fn` to the stored job under the lock and return its result.

        `fn` may raise to abort; partial writes are discarded because `fn`
        works on a scratch copy that only replaces the stored record on success.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(job_id)
            scratch = copy.deepcopy(job)
            outcome = fn(scratch)
            self._jobs[job_id] = scratch
            return outcome

    def add_unique(self, job: JobRecord) -> Tuple[JobRecord, bool]:
        """Insert `job` unless its idempotency key is already taken.

        Returns the stored record and whether it was inserted. The lookup and
        the insert happen under one lock acquisition.
        """
        with self._lock:
            if job.idempotency_key:
                existing = self.find_by_idempotency_key(job.idempotency_key)
                if existing is not None:
                    return existing, False
            return self.put(job), True

    def remove(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            return bool(job and job.cancel_requested)

    def find_by_idempotency_key(self, key: str) -> Optional[JobRecord]:
        with self._lock:
            for job in self._jobs.values():
                if job.idempotency_key == key:
                    return copy.deepcopy(job)
        return None

    def promote_due(self, now: Optional[datetime] = None) -> int:
        """Move `delayed` jobs whose time has come to `waiting`."""
        now = now or utcnow()
        promoted = 0
        with self._lock:
            for job in self._jobs.values():
                if job.status == JobStatus.DELAYED and job.is_due(now):
                    job.status = JobStatus.WAITING
                    promoted += 1
        return promoted

    def claim_next(self, now: Optional[datetime] = None) -> Optional[JobRecord]:
        """Select the best eligible job and mark it active, as one atomic step.

        Eligible means `waiting` (or `delayed` and due) with `scheduled_for`
        not in the future. Order: priority, then scheduled_for, then created_at.
        """
        now = now or utcnow()
        with self._lock:
            self.promote_due(now)
            candidates = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.WAITING and job.is_due(now)
            ]
            if not candidates:
                return None

            job = min(candidates, key=JobRecord.dispatch_key)
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            job.started_at = now
            job.progress = 0
            return copy.deepcopy(job)

    def next_due_at(self) -> Optional[datetime]:
        """Earliest scheduled_for among pending jobs, used to size worker sleeps."""
        with self._lock:
            pending = [
                job.scheduled_for
                for job in self._jobs.values()
                if job.status in (JobStatus.WAITING, JobStatus.DELAYED)
            ]
        return min(pending) if pending else None

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with self._lock:
            for job in self._jobs.values():
                counts[job.status.value] += 1
        return counts

    def health_check(self, thresholds=None, now: Optional[datetime] = None) -> dict:
        """Store-level health: error rate, queue latency and stuck jobs."""
        from .monitoring import QueueThresholds, compute_queue_metrics, find_stuck_jobs

        thresholds = thresholds or QueueThresholds()
        now = now or utcnow()
        jobs = self.snapshot()
        metrics = compute_queue_metrics(jobs, now)

        issues = []
        if metrics["errorRate"] > thresholds.high_error_rate:
            issues.append(f"High error rate: {metrics['errorRate'] * 100:.1f}%")
        if metrics["queueLatency"] > thresholds.queue_latency_ms:
            issues.append(f"High queue latency: {metrics['queueLatency']}ms")
        stuck = find_stuck_jobs(jobs, now, thresholds.stale_job_seconds)
        if stuck:
            issues.append(f"{len(stuck)} jobs appear to be stuck")

        return {
            "status": "unhealthy" if issues else "healthy",
            "issues": issues,
            "metrics": metrics,
        }
