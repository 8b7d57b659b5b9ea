from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

import pydantic
from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from blog_automation.api.dependencies import get_services, verify_admin_token
from blog_automation.lib.logger import configure_logger
from blog_automation.services.infrastructure.job_management.errors import (
    ValidationError,
)
from blog_automation.services.infrastructure.job_management.models import JobPriority
from blog_automation.services.infrastructure.job_management.monitoring import (
    DEFAULT_TIME_RANGE,
    parse_job_types,
)
from blog_automation.services.infrastructure.job_management.retry import (
    DEFAULT_MAX_JOBS,
    MAX_JOBS_LIMIT,
    RetryFilter,
    RetryOptions,
)
from blog_automation.services.infrastructure.startup_service import StartupService

logger = configure_logger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"])

M = TypeVar("M", bound=BaseModel)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class RetryOptionsBody(CamelModel):
    reset_attempts: bool = False
    new_delay: Optional[int] = Field(default=None, ge=0)
    new_priority: Optional[JobPriority] = None


class SingleRetryBody(RetryOptionsBody):
    job_id: str = Field(min_length=1)


class RetryFilterBody(CamelModel):
    status: Optional[Literal["failed", "cancelled"]] = None
    job_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    failed_before: Optional[datetime] = None
    max_attempts: Optional[int] = Field(default=None, ge=0)


class BulkRetryOptionsBody(RetryOptionsBody):
    max_jobs: int = Field(default=DEFAULT_MAX_JOBS, ge=1, le=MAX_JOBS_LIMIT)


class BulkRetryBody(CamelModel):
    filter: RetryFilterBody = Field(default_factory=RetryFilterBody)
    options: BulkRetryOptionsBody = Field(default_factory=BulkRetryOptionsBody)


class EnqueueBody(CamelModel):
    type: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: Optional[JobPriority] = None
    delay: Optional[int] = Field(default=None, ge=0)
    max_retries: Optional[int] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)
    timeout: Optional[int] = Field(default=None, gt=0)
    idempotency_key: Optional[str] = None
    scheduled_for: Optional[datetime] = None


def validation_fields(error: pydantic.ValidationError, prefix: str = "") -> List[str]:
    """Dotted field paths of every failing field."""
    fields = []
    for err in error.errors():
        path = ".".join(str(part) for part in err["loc"])
        fields.append(f"{prefix}.{path}" if prefix and path else prefix or path)
    return fields


def parse_body(model: Type[M], data: Any, prefix: str) -> M:
    try:
        return model.model_validate(data if data is not None else {})
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid request data", fields=validation_fields(e, prefix)
        ) from e


def ok(data: Any, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


@router.get("/health")
async def automation_health(
    include_jobs: bool = Query(False, alias="includeJobs"),
    include_metrics: bool = Query(False, alias="includeMetrics"),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    """Combined health of the job queue, automation, system and dependencies.

    Responds 200 for healthy and degraded, 503 for unhealthy.
    """
    try:
        report = await services.health_reporter.report(
            include_jobs=include_jobs, include_metrics=include_metrics
        )
    except Exception as e:
        logger.error(
            "Health check error",
            extra={"error": str(e), "event_type": "health_check_error"},
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Health check failed",
                "data": {"status": "unhealthy", "error": str(e)},
            },
        )

    unhealthy = report["status"] == "unhealthy"
    body: Dict[str, Any] = {"success": not unhealthy, "data": report}
    if unhealthy:
        body["error"] = "System is unhealthy - check component status for details"
    return JSONResponse(status_code=503 if unhealthy else 200, content=body)


@router.head("/health")
async def automation_health_head(
    services: StartupService = Depends(get_services),
) -> Response:
    """Store-only check; answers with headers and no body."""
    try:
        health = services.health_reporter.head_check()
    except Exception as e:
        logger.error(
            "HEAD health check error",
            extra={"error": str(e), "event_type": "health_check_error"},
        )
        return Response(status_code=503)

    return Response(
        status_code=200 if health["status"] == "healthy" else 503,
        headers={
            "X-Health-Status": health["status"],
            "X-Health-Issues": str(health["issues"]),
        },
    )


@router.get("/jobs/metrics")
async def job_metrics(
    time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange"),
    job_types: Optional[str] = Query(None, alias="jobTypes"),
    include_histogram: bool = Query(False, alias="includeHistogram"),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    """Windowed job metrics with optional job-type filter and histogram."""
    metrics = services.job_manager.metrics.collect(
        time_range=time_range,
        job_types=parse_job_types(job_types),
        include_histogram=include_histogram,
    )
    return ok(metrics)


@router.post("/jobs/retry")
async def retry_jobs(
    body: Dict[str, Any] = Body(...),
    _: None = Depends(verify_admin_token),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    """Retry one job (`type: single`) or every job matching a filter (`type: bulk`)."""
    retry_type = body.get("type")
    controller = services.job_manager.retry_controller

    if retry_type == "single":
        request = parse_body(SingleRetryBody, body.get("payload"), "payload")
        result = controller.retry_job(
            request.job_id,
            RetryOptions(
                reset_attempts=request.reset_attempts,
                new_delay=request.new_delay,
                new_priority=request.new_priority,
            ),
        )
        return ok(result, message=f"Job {request.job_id} queued for retry")

    if retry_type == "bulk":
        request = parse_body(BulkRetryBody, body.get("payload"), "payload")
        result = controller.bulk_retry(
            RetryFilter(
                status=request.filter.status,
                job_type=request.filter.job_type,
                tags=set(request.filter.tags),
                failed_before=request.filter.failed_before,
                max_attempts=request.filter.max_attempts,
            ),
            RetryOptions(
                reset_attempts=request.options.reset_attempts,
                new_delay=request.options.new_delay,
                new_priority=request.options.new_priority,
                max_jobs=request.options.max_jobs,
            ),
        )
        message = result.pop("message")
        return ok(result, message=message)

    raise ValidationError("Retry type must be 'single' or 'bulk'", fields=["type"])


@router.get("/jobs/retry")
async def retry_status(
    job_id: Optional[str] = Query(None, alias="jobId"),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    """Retry eligibility of one job, or aggregate retry statistics."""
    controller = services.job_manager.retry_controller
    if job_id:
        return ok(controller.check_eligibility(job_id))
    return ok(controller.retry_stats())


@router.post("/jobs")
async def enqueue_job(
    body: Dict[str, Any] = Body(...),
    _: None = Depends(verify_admin_token),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    request = parse_body(EnqueueBody, body, "")
    job_id = services.job_manager.enqueue(
        request.type,
        request.payload,
        priority=request.priority,
        delay=request.delay,
        max_retries=request.max_retries,
        tags=request.tags,
        timeout=request.timeout,
        idempotency_key=request.idempotency_key,
        scheduled_for=request.scheduled_for,
    )
    job = services.job_manager.get_job(job_id)
    return ok(job.to_dict(), message="Job enqueued", status_code=201)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str, services: StartupService = Depends(get_services)
) -> JSONResponse:
    return ok(services.job_manager.get_job(job_id).to_dict())


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    _: None = Depends(verify_admin_token),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    job = services.job_manager.cancel(job_id)
    message = (
        f"Cancellation requested for running job {job_id}"
        if job.cancel_requested and not job.is_terminal
        else f"Job {job_id} cancelled"
    )
    return ok(job.to_dict(), message=message)


@router.post("/jobs/{job_id}/pause")
async def pause_job(
    job_id: str,
    _: None = Depends(verify_admin_token),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    job = services.job_manager.pause_job(job_id)
    return ok(job.to_dict(), message=f"Job {job_id} paused")


@router.post("/jobs/{job_id}/resume")
async def resume_job(
    job_id: str,
    _: None = Depends(verify_admin_token),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    job = services.job_manager.resume_job(job_id)
    return ok(job.to_dict(), message=f"Job {job_id} resumed")
