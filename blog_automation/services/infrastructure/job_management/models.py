"""Job record, lifecycle enums and the payload models of blog automation jobs."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job lifecycle status."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    PAUSED = "paused"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
RETRYABLE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.CANCELLED})
PENDING_STATUSES = frozenset({JobStatus.WAITING, JobStatus.DELAYED})


class JobPriority(str, Enum):
    """Dispatch priority tiers, highest first."""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    def __str__(self):
        return self.value

    @property
    def rank(self) -> int:
        """Higher rank is dispatched first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.CRITICAL: 4,
    JobPriority.HIGH: 3,
    JobPriority.NORMAL: 2,
    JobPriority.LOW: 1,
}


@dataclass
class JobRecord:
    """One unit of schedulable, retryable background work."""

    type: str
    payload: Any = None
    id: str = field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.WAITING
    priority: JobPriority = JobPriority.NORMAL
    attempts: int = 0
    max_retries: int = 3
    # milliseconds, relative to the time the job was (re)queued
    delay: int = 0
    created_at: datetime = field(default_factory=utcnow)
    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    progress: int = 0
    result: Any = None
    last_error: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    # milliseconds; None means the queue default applies
    timeout: Optional[int] = None
    idempotency_key: Optional[str] = None
    cancel_requested: bool = False

    def __post_init__(self):
        if self.scheduled_for is None:
            self.scheduled_for = self.created_at + timedelta(milliseconds=self.delay)
        if self.status == JobStatus.WAITING and self.scheduled_for > self.created_at:
            self.status = JobStatus.DELAYED

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_for is not None and self.scheduled_for <= now

    def dispatch_key(self):
        """Sort key for dispatch: priority, then scheduled_for, then created_at."""
        return (-self.priority.rank, self.scheduled_for, self.created_at)

    def reset_for_retry(
        self,
        now: datetime,
        reset_attempts: bool = False,
        new_delay: Optional[int] = None,
        new_priority: Optional[JobPriority] = None,
        stagger_ms: int = 0,
    ) -> None:
        """Return a failed or cancelled job to `waiting` for an operator retry."""
        if reset_attempts:
            self.attempts = 0
        if new_delay is not None:
            self.delay = new_delay
            self.scheduled_for = now + timedelta(milliseconds=new_delay)
        else:
            self.scheduled_for = now + timedelta(milliseconds=stagger_ms)
        if new_priority is not None:
            self.priority = new_priority

        self.status = JobStatus.WAITING
        self.started_at = None
        self.completed_at = None
        self.failed_at = None
        self.progress = 0
        self.result = None
        self.cancel_requested = False

    def to_snapshot(self) -> "JobSnapshot":
        return JobSnapshot(
            id=self.id,
            type=self.type,
            status=self.status,
            priority=self.priority,
            progress=self.progress,
            attempts=self.attempts,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            duration_ms=self.duration_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Full representation for operator APIs."""
        payload = self.payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        result = self.result
        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "priority": self.priority.value,
            "payload": payload,
            "attempts": self.attempts,
            "maxRetries": self.max_retries,
            "delay": self.delay,
            "createdAt": _iso(self.created_at),
            "scheduledFor": _iso(self.scheduled_for),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "failedAt": _iso(self.failed_at),
            "progress": self.progress,
            "result": result,
            "lastError": self.last_error,
            "tags": sorted(self.tags),
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only projection of a job used for diagnostics."""

    id: str
    type: str
    status: JobStatus
    priority: JobPriority
    progress: int
    attempts: int
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "progress": self.progress,
            "createdAt": _iso(self.created_at),
            "duration": self.duration_ms,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Job payloads, one model per blog automation job type.


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GeneratePostPayload(JobPayload):
    topic: str = Field(min_length=1)
    keywords: List[str] = Field(default_factory=list)
    target_word_count: int = Field(default=1200, ge=100, le=10000)
    author_id: Optional[str] = None


class PublishPostPayload(JobPayload):
    post_id: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    title: str = Field(min_length=1)
    publish_at: Optional[datetime] = None
    notify_subscribers: bool = True


class SendDigestPayload(JobPayload):
    recipients: List[str] = Field(min_length=1)
    post_ids: List[str] = Field(default_factory=list)
    subject: str = "Latest posts"
    period: str = Field(default="weekly", pattern="^(daily|weekly|monthly)$")


class SEOAnalysisPayload(JobPayload):
    post_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str
    description: Optional[str] = None
    target_keywords: List[str] = Field(default_factory=list)
    target_url: str = Field(min_length=1)


class SitemapGenerationPayload(JobPayload):
    base_url: HttpUrl
    paths: List[str] = Field(default_factory=list)
    include_drafts: bool = False
    last_modified: Optional[datetime] = None


class WebhookDeliveryPayload(JobPayload):
    url: HttpUrl
    method: str = Field(default="POST", pattern="^(GET|POST|PUT|PATCH|DELETE)$")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)
    signature_secret: Optional[str] = None


class GeneratePostResult(BaseModel):
    title: str
    slug: str
    content: str
    word_count: int


class PublishPostResult(BaseModel):
    post_id: str
    url: str
    published_at: datetime


class SendDigestResult(BaseModel):
    sent: int
    failed: List[str] = Field(default_factory=list)


class SEOAnalysisResult(BaseModel):
    score: int
    keyword_density: Dict[str, float]
    suggestions: List[str]


class SitemapGenerationResult(BaseModel):
    url_count: int
    sitemap: str


class WebhookDeliveryResult(BaseModel):
    status_code: int
    response_time_ms: int
