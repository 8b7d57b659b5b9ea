import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from blog_automation.lib.logger import configure_logger

logger = configure_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log for the automation API.

    Each response carries an `X-Request-ID` (the caller's, or a fresh one) so
    operator actions can be matched to their log line. Health probes log at
    debug level, server errors at warning.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = request_id

        path = request.url.path
        if path.endswith("/health"):
            log = logger.debug
        elif response.status_code >= 500:
            log = logger.warning
        else:
            log = logger.info

        request_info = {"method": request.method, "path": path}
        if request.query_params:
            request_info["query_params"] = dict(request.query_params)

        log(
            f"{request.method} {path} -> {response.status_code}",
            extra={
                "request_id": request_id,
                "request": request_info,
                "response": {
                    "status_code": response.status_code,
                    "process_time_ms": elapsed_ms,
                },
                "event_type": "http_request",
            },
        )
        return response
