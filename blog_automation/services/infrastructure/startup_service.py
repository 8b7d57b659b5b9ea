"""Startup service wiring the job queue, automation service and health reporter."""

import asyncio
import signal
import sys
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from blog_automation.config import Config, config
from blog_automation.lib.logger import configure_logger
from blog_automation.services.automation_service import BlogAutomationService
from blog_automation.services.infrastructure.job_management import tasks  # noqa: F401
from blog_automation.services.infrastructure.job_management.decorators import (
    JobRegistry,
    default_registry,
)
from blog_automation.services.infrastructure.job_management.error_monitor import (
    ErrorMonitor,
    monitor_from_config,
)
from blog_automation.services.infrastructure.job_management.health import (
    HealthReporter,
    reporter_from_config,
)
from blog_automation.services.infrastructure.job_management.job_manager import (
    JobManager,
)
from blog_automation.services.infrastructure.job_management.monitoring import (
    QueueThresholds,
)

logger = configure_logger(__name__)

shutdown_event = asyncio.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info(
        "Shutdown signal received - initiating graceful shutdown",
        extra={"signal": signum, "event_type": "shutdown_signal"},
    )
    shutdown_event.set()


class StartupService:
    """Builds the automation components and manages their lifecycle."""

    def __init__(
        self,
        cfg: Optional[Config] = None,
        registry: Optional[JobRegistry] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.config = cfg or config
        self.scheduler = scheduler or AsyncIOScheduler()
        self.error_monitor: ErrorMonitor = monitor_from_config(self.config)
        self.job_manager = JobManager(
            registry=registry or default_registry,
            queue_config=self.config.queue,
            thresholds=QueueThresholds.from_config(self.config.monitoring),
            error_monitor=self.error_monitor,
        )
        self.automation_service = BlogAutomationService(
            self.job_manager,
            blog_config=self.config.blog,
            error_rate_threshold=self.config.monitoring.automation_error_rate,
            latency_threshold_ms=self.config.monitoring.automation_latency_ms,
        )
        self.health_reporter: HealthReporter = reporter_from_config(
            self.job_manager.store,
            automation_signal=self.automation_service.get_automation_health,
            cfg=self.config,
        )

    async def start(self) -> None:
        """Start the dispatcher and the housekeeping jobs."""
        registered = self.job_manager.registry.list_enabled_jobs()
        logger.info(
            "Starting blog automation job system",
            extra={
                "registered_jobs": len(registered),
                "concurrency": self.config.queue.concurrency,
                "event_type": "service_startup",
            },
        )
        try:
            self.error_monitor.schedule_cleanup(self.scheduler)
            await self.job_manager.start(self.scheduler)
            if not self.scheduler.running:
                self.scheduler.start()
        except Exception as e:
            logger.error(
                "Failed to start job system",
                extra={"error": str(e), "event_type": "service_startup_error"},
                exc_info=True,
            )
            raise

        for job in self.scheduler.get_jobs():
            logger.debug(
                "Scheduled housekeeping job",
                extra={
                    "job_id": job.id,
                    "next_run": str(job.next_run_time) if job.next_run_time else None,
                    "event_type": "job_schedule_detail",
                },
            )
        logger.info(
            "Blog automation services started",
            extra={"event_type": "service_startup_complete"},
        )

    async def shutdown(self) -> None:
        logger.info("Initiating shutdown sequence", extra={"event_type": "shutdown_start"})
        try:
            await self.job_manager.stop()
        except Exception as e:
            logger.error(
                "Error during shutdown",
                extra={"error": str(e), "event_type": "shutdown_error"},
                exc_info=True,
            )
        logger.info("Shutdown complete", extra={"event_type": "shutdown_complete"})

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.job_manager.is_running,
            "registeredJobs": sorted(self.job_manager.registry.list_jobs()),
            **self.job_manager.get_stats(),
        }


_startup_service: Optional[StartupService] = None


def get_startup_service() -> StartupService:
    """Process-wide StartupService, created on first use."""
    global _startup_service
    if _startup_service is None:
        _startup_service = StartupService()
    return _startup_service


async def run() -> StartupService:
    service = get_startup_service()
    await service.start()
    return service


async def shutdown() -> None:
    if _startup_service is not None:
        await _startup_service.shutdown()


async def run_standalone():
    """Run the job system without the web server until a shutdown signal."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await run()
        logger.info(
            "Blog automation worker running - Press Ctrl+C to stop",
            extra={"event_type": "services_running"},
        )
        await shutdown_event.wait()
    except Exception as e:
        logger.error(
            "Critical error in standalone mode",
            extra={"error": str(e), "event_type": "critical_error"},
            exc_info=True,
        )
        sys.exit(1)
    finally:
        await shutdown()
