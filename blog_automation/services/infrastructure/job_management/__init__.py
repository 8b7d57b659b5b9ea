"""Job management for blog automation.

This package provides:
- An in-memory job store with atomic claim of the next eligible job
- Priority-based dispatch over a pool of asyncio workers
- Automatic retries with exponential backoff, plus operator single/bulk retry
- Metrics aggregation and a combined health verdict
"""

from .base import BaseTask, JobCancelled, JobContext
from .decorators import JobMetadata, JobRegistry, default_registry, job
from .errors import (
    HandlerError,
    InvalidStateError,
    JobQueueError,
    NotFoundError,
    ResourceError,
    ValidationError,
)
from .executor import JobExecutor, RetryManager
from .health import HealthReporter, determine_overall_status, reporter_from_config
from .job_manager import JobManager
from .models import JobPriority, JobRecord, JobSnapshot, JobStatus
from .monitoring import MetricsAggregator, QueueThresholds
from .retry import RetryController, RetryFilter, RetryOptions
from .store import JobStore

__all__ = [
    # Core classes
    "BaseTask",
    "JobCancelled",
    "JobContext",
    "JobRecord",
    "JobSnapshot",
    "JobStatus",
    "JobPriority",
    "JobStore",
    # Registration
    "JobMetadata",
    "JobRegistry",
    "default_registry",
    "job",
    # Execution and retries
    "JobExecutor",
    "JobManager",
    "RetryManager",
    "RetryController",
    "RetryFilter",
    "RetryOptions",
    # Monitoring
    "MetricsAggregator",
    "QueueThresholds",
    "HealthReporter",
    "determine_overall_status",
    "reporter_from_config",
    # Errors
    "JobQueueError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "HandlerError",
    "ResourceError",
]
