import csv
import io
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import Field

from blog_automation.api.automation import CamelModel, ok, parse_body
from blog_automation.api.dependencies import get_services, verify_admin_token
from blog_automation.services.infrastructure.job_management.error_monitor import (
    DAY_MS,
)
from blog_automation.services.infrastructure.job_management.models import utcnow
from blog_automation.services.infrastructure.startup_service import StartupService

router = APIRouter(
    prefix="/automation/errors",
    tags=["errors"],
    dependencies=[Depends(verify_admin_token)],
)

CSV_COLUMNS = ["id", "timestamp", "level", "category", "source", "message", "jobId"]


class ErrorReportBody(CamelModel):
    message: str = Field(min_length=1)
    level: Literal["info", "warn", "error", "critical"] = "error"
    category: Literal["job", "api", "webhook", "system"] = "system"
    source: str = "manual"
    details: Optional[Dict[str, Any]] = None
    stack: Optional[str] = None
    job_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None


def _to_csv(events) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(events)
    return buffer.getvalue()


@router.get("")
async def list_errors(
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    level: Optional[Literal["info", "warn", "error", "critical"]] = None,
    category: Optional[Literal["job", "api", "webhook", "system"]] = None,
    source: Optional[str] = None,
    time_window: int = Query(DAY_MS, alias="timeWindow", ge=60000, le=7 * DAY_MS),
    search: Optional[str] = None,
    format: Literal["json", "csv"] = "json",
    services: StartupService = Depends(get_services),
):
    """Recorded errors with metrics and monitor health, or a CSV export."""
    monitor = services.error_monitor
    errors = monitor.get_errors(
        limit=limit,
        offset=offset,
        level=level,
        category=category,
        source=source,
        time_window_ms=time_window,
        search=search,
    )

    if format == "csv":
        stamp = utcnow().strftime("%Y%m%dT%H%M%S")
        return Response(
            content=_to_csv(errors["events"]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="errors-{stamp}.csv"'
            },
        )

    return ok(
        {
            "errors": errors,
            "metrics": monitor.get_metrics(time_window),
            "health": monitor.get_health_status(),
            "query": {
                "limit": limit,
                "offset": offset,
                "level": level,
                "category": category,
                "source": source,
                "timeWindow": time_window,
                "search": search,
            },
        }
    )


@router.post("")
async def report_error(
    body: Dict[str, Any] = Body(...),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    request = parse_body(ErrorReportBody, body, "")
    event = services.error_monitor.log_error(**request.model_dump())
    return ok(
        {"id": event.id, "timestamp": event.timestamp.isoformat(), "logged": True},
        message="Error logged successfully",
    )


@router.delete("")
async def clear_errors(
    confirm: bool = Query(False),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    if not confirm:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Confirmation required to clear all errors",
                "data": {
                    "message": "Add ?confirm=true to clear all recorded errors",
                    "confirmationRequired": True,
                },
            },
        )

    cleared = services.error_monitor.clear_errors()
    return ok(
        {"cleared": cleared, "timestamp": utcnow().isoformat()},
        message="All errors cleared successfully",
    )
