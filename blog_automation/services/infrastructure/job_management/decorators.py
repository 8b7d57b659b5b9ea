"""Handler registration decorators and metadata."""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from blog_automation.lib.logger import configure_logger

from .base import BaseTask
from .models import JobPriority

logger = configure_logger(__name__)

T = TypeVar("T", bound=BaseTask)


@dataclass
class JobMetadata:
    """Defaults and description for one job type."""

    job_type: str
    name: str
    description: str = ""
    payload_model: Optional[Type[BaseModel]] = None

    # enqueue defaults, each overridable per job
    priority: JobPriority = JobPriority.NORMAL
    max_retries: Optional[int] = None
    timeout_ms: Optional[int] = None
    tags: List[str] = field(default_factory=list)

    enabled: bool = True


class JobRegistry:
    """Maps job types to their handler and metadata."""

    def __init__(self):
        self._tasks: Dict[str, Type[BaseTask]] = {}
        self._metadata: Dict[str, JobMetadata] = {}
        self._instances: Dict[str, BaseTask] = {}

    def register(
        self,
        job_type: str,
        metadata: Optional[JobMetadata] = None,
        **kwargs,
    ) -> Callable[[Type[T]], Type[T]]:
        """Decorator to register a handler class for a job type.

        Example:
            @registry.register("generate-post", priority=JobPriority.HIGH)
            class GeneratePostTask(BaseTask[GeneratePostPayload, GeneratePostResult]):
                payload_model = GeneratePostPayload
        """

        def decorator(task_class: Type[T]) -> Type[T]:
            if metadata is None:
                options = dict(kwargs)
                meta = JobMetadata(
                    job_type=job_type,
                    name=options.pop("name", None) or task_class.__name__,
                    description=options.pop("description", None)
                    or (task_class.__doc__ or "").strip(),
                    payload_model=options.pop("payload_model", None)
                    or task_class.payload_model,
                    **options,
                )
            else:
                meta = metadata

            self._tasks[job_type] = task_class
            self._metadata[job_type] = meta
            self._instances.pop(job_type, None)

            logger.debug(
                f"Registered job: {job_type} -> {task_class.__name__}",
                extra={"priority": str(meta.priority), "event_type": "job_registered"},
            )
            return task_class

        return decorator

    def register_instance(
        self, job_type: str, handler: BaseTask, **kwargs
    ) -> BaseTask:
        """Register an already constructed handler (tests, closures)."""
        self.register(job_type, **kwargs)(type(handler))
        self._instances[job_type] = handler
        return handler

    def get_metadata(self, job_type: str) -> Optional[JobMetadata]:
        return self._metadata.get(job_type)

    def get_handler(self, job_type: str) -> Optional[BaseTask]:
        """Get or create the handler instance for a job type."""
        if job_type not in self._instances:
            task_class = self._tasks.get(job_type)
            if task_class is None:
                return None
            self._instances[job_type] = task_class()
        return self._instances[job_type]

    def list_jobs(self) -> Dict[str, JobMetadata]:
        return self._metadata.copy()

    def list_enabled_jobs(self) -> Dict[str, JobMetadata]:
        return {
            job_type: metadata
            for job_type, metadata in self._metadata.items()
            if metadata.enabled
        }

    def clear(self) -> None:
        """Clear all registered jobs (useful for testing)."""
        self._tasks.clear()
        self._metadata.clear()
        self._instances.clear()

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._tasks


# Registry the built-in blog automation tasks register into.
default_registry = JobRegistry()


def job(
    job_type: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    registry: Optional[JobRegistry] = None,
    **kwargs,
) -> Callable[[Type[T]], Type[T]]:
    """Convenience decorator for job registration.

    Example:
        @job("send-digest", name="Send Digest", max_retries=5)
        class SendDigestTask(BaseTask[SendDigestPayload, SendDigestResult]):
            pass
    """
    return (registry or default_registry).register(
        job_type=job_type,
        name=name,
        description=description,
        **kwargs,
    )
