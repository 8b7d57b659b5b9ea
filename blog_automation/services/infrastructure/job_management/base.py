from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from blog_automation.lib.logger import configure_logger

from .models import JobRecord

logger = configure_logger(__name__)

P = TypeVar("P")
R = TypeVar("R")

ProgressCallback = Callable[[int], None]
CancelCheck = Callable[[], bool]


class JobCancelled(Exception):
    """Raised by a handler that observed a cancellation request and stopped."""


@dataclass
class JobContext:
    """Context information for one handler invocation."""

    job_id: str
    job_type: str
    attempt: int
    max_retries: int
    timeout_ms: Optional[int] = None
    worker_name: Optional[str] = None
    tags: frozenset = frozenset()
    metadata: Dict[str, Any] = field(default_factory=dict)
    _progress: Optional[ProgressCallback] = None
    _cancel_check: Optional[CancelCheck] = None

    def report_progress(self, progress: int) -> None:
        """Record handler progress, clamped to 0-100."""
        if self._progress:
            self._progress(max(0, min(100, int(progress))))

    @property
    def cancel_requested(self) -> bool:
        return bool(self._cancel_check and self._cancel_check())

    def raise_if_cancelled(self) -> None:
        """Cooperative cancellation point for long-running handlers."""
        if self.cancel_requested:
            raise JobCancelled(f"Job {self.job_id} cancelled")


class BaseTask(ABC, Generic[P, R]):
    """Base class for job handlers.

    Subclasses set `payload_model` to the pydantic model of their job type and
    implement `process`. The hooks are optional and must not raise; if they do,
    the dispatcher logs and ignores the error.
    """

    payload_model: Optional[Type[BaseModel]] = None

    @property
    def task_name(self) -> str:
        return self.__class__.__name__

    def parse_payload(self, payload: Any) -> Any:
        """Coerce a raw payload into this task's payload model."""
        if self.payload_model is None or isinstance(payload, self.payload_model):
            return payload
        return self.payload_model.model_validate(payload or {})

    @abstractmethod
    async def process(self, payload: P, context: JobContext) -> R:
        """Do the work. Raise to signal failure."""

    async def on_completed(self, job: JobRecord, result: R) -> None:
        pass

    async def on_failed(self, job: JobRecord, error: Exception) -> None:
        pass

    async def on_progress(self, job_id: str, progress: int) -> None:
        pass
