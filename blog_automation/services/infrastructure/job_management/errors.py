"""Error taxonomy of the job queue.

Operator-facing errors (validation, not found, invalid state) are raised by the
retry controller and the queue facade and translated into structured responses
by the API layer. Handler errors never leave the dispatcher; resource errors
only surface through the health reporter.
"""

from typing import Any, Dict, List, Optional


class JobQueueError(Exception):
    """Base class for all job queue errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "type": self.__class__.__name__}


class ValidationError(JobQueueError):
    """Malformed operator input. No state was mutated."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class NotFoundError(JobQueueError):
    """A referenced job id does not exist."""

    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidStateError(JobQueueError):
    """The requested transition is not allowed from the job's current status."""

    status_code = 400

    def __init__(self, job_id: str, status: str, action: str = "retried"):
        super().__init__(
            f"Job {job_id} cannot be {action}. Current status: {status}"
        )
        self.job_id = job_id
        self.status = status


class HandlerError(JobQueueError):
    """A job handler failed. Captured into `last_error`, never raised to callers."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    @classmethod
    def from_exception(cls, error: BaseException) -> "HandlerError":
        if isinstance(error, HandlerError):
            return error
        return cls(str(error) or type(error).__name__, cause=error)


class ResourceError(JobQueueError):
    """A system or dependency check failed."""

    status_code = 503
