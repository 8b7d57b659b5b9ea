"""Shared fixtures for the job queue tests."""

import asyncio
from datetime import timedelta
from typing import Any, Callable, Optional

import pytest

from blog_automation.config import QueueConfig
from blog_automation.services.infrastructure.job_management.base import (
    BaseTask,
    JobContext,
)
from blog_automation.services.infrastructure.job_management.decorators import (
    JobRegistry,
)
from blog_automation.services.infrastructure.job_management.job_manager import (
    JobManager,
)
from blog_automation.services.infrastructure.job_management.models import (
    JobRecord,
    JobStatus,
    utcnow,
)
from blog_automation.services.infrastructure.job_management.store import JobStore


class CallbackTask(BaseTask[Any, Any]):
    """Handler whose behaviour is supplied by the test."""

    def __init__(self, fn: Callable[[Any, JobContext], Any]):
        self.fn = fn
        self.calls = 0

    async def process(self, payload: Any, context: JobContext) -> Any:
        self.calls += 1
        result = self.fn(payload, context)
        if asyncio.iscoroutine(result):
            result = await result
        return result


def make_job(
    job_type: str = "generate-post",
    status: JobStatus = JobStatus.WAITING,
    age: Optional[timedelta] = None,
    **fields,
) -> JobRecord:
    """Build a JobRecord in an arbitrary state, created `age` ago."""
    created_at = utcnow() - (age or timedelta(0))
    fields.setdefault("scheduled_for", created_at)
    job = JobRecord(type=job_type, created_at=created_at, **fields)
    job.status = status
    return job


@pytest.fixture
def queue_config():
    return QueueConfig(
        concurrency=2,
        default_max_retries=3,
        default_delay_ms=0,
        default_timeout_ms=5000,
        max_backoff_ms=300000,
        backoff_jitter=False,
        poll_interval_seconds=0.01,
        cleanup_enabled=True,
        cleanup_interval_seconds=300,
        retention_seconds=3600,
    )


@pytest.fixture
def store():
    return JobStore()


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def manager(store, registry, queue_config):
    return JobManager(store=store, registry=registry, queue_config=queue_config)


@pytest.fixture
def register(registry):
    """Register a callback handler for a job type and return it."""

    def _register(job_type: str, fn: Callable[[Any, JobContext], Any], **kwargs):
        return registry.register_instance(job_type, CallbackTask(fn), **kwargs)

    return _register


@pytest.fixture
def job_factory():
    return make_job
