from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blog_automation.api import automation, errors, triggers, webhooks
from blog_automation.config import config
from blog_automation.lib.logger import configure_logger, setup_uvicorn_logging
from blog_automation.middleware.logging import LoggingMiddleware
from blog_automation.middleware.rate_limit import RateLimitMiddleware
from blog_automation.services.infrastructure import startup_service
from blog_automation.services.infrastructure.job_management.errors import (
    JobQueueError,
    ValidationError,
)

logger = configure_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the job dispatcher alongside the web server."""
    setup_uvicorn_logging()
    try:
        await startup_service.run()
        logger.info("Background job system initialized")
        yield
    finally:
        await startup_service.shutdown()


async def job_queue_error_handler(request: Request, exc: JobQueueError) -> JSONResponse:
    data = {"fields": exc.fields} if isinstance(exc, ValidationError) else None
    if exc.status_code >= 500:
        logger.error(
            f"Job queue error: {exc.message}",
            extra={"path": request.url.path, "event_type": "api_error"},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "data": data},
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [
        ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0])
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request data",
            "data": {"fields": fields},
        },
    )


def create_app(run_background: bool = True) -> FastAPI:
    """Build the FastAPI application.

    With `run_background=False` the dispatcher is not started, which lets
    tests drive jobs explicitly.
    """
    app = FastAPI(
        title="Blog Automation Jobs",
        description="Job queue, retry and health API for the blog automation system",
        version=config.api.version,
        lifespan=lifespan if run_background else None,
    )

    app.add_middleware(
        RateLimitMiddleware,
        enabled=config.api.rate_limit_enabled,
        internal_origin=config.blog.site_url,
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(JobQueueError, job_queue_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.get("/")
    async def health_check():
        """Simple health check endpoint."""
        return {"status": "healthy"}

    app.include_router(automation.router)
    app.include_router(triggers.router)
    app.include_router(webhooks.router)
    app.include_router(errors.router)
    return app


app = create_app()


def serve():
    """Console script entrypoint: serve the API and dispatcher with uvicorn."""
    uvicorn.run(
        "blog_automation.main:app", host=config.api.host, port=config.api.port
    )


if __name__ == "__main__":
    serve()
