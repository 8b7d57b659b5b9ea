"""Health reporting for the automation system.

Combines the job store's own health check with the automation service
signal, a system resource check and a dependency check into one verdict.
Resource check failures become issues on their component; nothing here
raises to the caller.
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import httpx
import psutil

from blog_automation.lib.logger import configure_logger

from .errors import ResourceError
from .models import utcnow
from .monitoring import QueueThresholds
from .store import JobStore

logger = configure_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

RECENT_JOBS_LIMIT = 10
CRITICAL_MARKERS = ("critical", "down", "failed")

DEFAULT_PORTS = {"postgres": 5432, "postgresql": 5432, "redis": 6379, "rediss": 6379}

AutomationSignal = Callable[[], Awaitable[Dict[str, Any]]]


@dataclass
class SystemThresholds:
    memory_critical_percent: float = 90.0
    memory_warning_percent: float = 75.0
    cpu_load: float = 0.8
    event_loop_lag_ms: float = 100.0

    @classmethod
    def from_config(cls, monitoring) -> "SystemThresholds":
        return cls(
            memory_critical_percent=monitoring.memory_critical_percent,
            memory_warning_percent=monitoring.memory_warning_percent,
            cpu_load=monitoring.cpu_load_threshold,
            event_loop_lag_ms=monitoring.event_loop_lag_ms,
        )


@dataclass
class ComponentHealth:
    status: str = HEALTHY
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"status": self.status, "issues": list(self.issues)}
        data.update(self.details)
        return data


def status_from_issues(issue_count: int) -> str:
    """0 issues → healthy, 1 → degraded, more → unhealthy."""
    if issue_count == 0:
        return HEALTHY
    return DEGRADED if issue_count <= 1 else UNHEALTHY


def determine_overall_status(
    issue_count: int, component_statuses: Mapping[str, str]
) -> str:
    """Collapse component statuses and the total issue count into one verdict."""
    unhealthy = len([s for s in component_statuses.values() if s == UNHEALTHY])
    if unhealthy > 1:
        return UNHEALTHY
    if unhealthy == 1 or issue_count > 3:
        return DEGRADED
    return HEALTHY if issue_count == 0 else DEGRADED


async def measure_event_loop_lag() -> float:
    """Milliseconds taken by one zero-sleep round-trip through the loop."""
    start = time.perf_counter()
    await asyncio.sleep(0)
    return (time.perf_counter() - start) * 1000


async def _default_automation_signal() -> Dict[str, Any]:
    return {"status": HEALTHY, "issues": [], "recommendations": [], "metrics": {}}


class HealthReporter:
    """Builds the health report consumed by the monitoring endpoints."""

    def __init__(
        self,
        store: JobStore,
        automation_signal: Optional[AutomationSignal] = None,
        queue_thresholds: Optional[QueueThresholds] = None,
        system_thresholds: Optional[SystemThresholds] = None,
        services: Optional[Mapping[str, str]] = None,
        required_env_vars: Optional[List[str]] = None,
        probe_timeout: float = 5.0,
        version: str = "1.0.0",
    ):
        self.store = store
        self.automation_signal = automation_signal or _default_automation_signal
        self.queue_thresholds = queue_thresholds or QueueThresholds()
        self.system_thresholds = system_thresholds or SystemThresholds()
        self.services = dict(services or {})
        self.required_env_vars = list(required_env_vars or [])
        self.probe_timeout = probe_timeout
        self.version = version
        self._started = time.monotonic()

    @property
    def uptime(self) -> float:
        return round(time.monotonic() - self._started, 3)

    async def report(
        self, include_jobs: bool = False, include_metrics: bool = False
    ) -> Dict[str, Any]:
        queue_health = self.store.health_check(self.queue_thresholds)
        job_queue = ComponentHealth(
            status=queue_health["status"], issues=queue_health["issues"]
        )
        automation, automation_metrics = await self.check_automation()
        system = await self.check_system()
        dependencies = await self.check_dependencies()

        components = {
            "jobQueue": job_queue,
            "automation": automation,
            "system": system,
            "dependencies": dependencies,
        }
        all_issues = [issue for c in components.values() for issue in c.issues]
        status = determine_overall_status(
            len(all_issues), {name: c.status for name, c in components.items()}
        )

        automation_dict = automation.to_dict()
        automation_dict["recommendations"] = list(automation.recommendations)

        report: Dict[str, Any] = {
            "status": status,
            "timestamp": utcnow().isoformat(),
            "version": self.version,
            "uptime": self.uptime,
            "components": {
                "jobQueue": job_queue.to_dict(),
                "automation": automation_dict,
                "system": system.to_dict(),
                "dependencies": dependencies.to_dict(),
            },
            "summary": {
                "totalIssues": len(all_issues),
                "criticalIssues": len(
                    [
                        issue
                        for issue in all_issues
                        if any(marker in issue for marker in CRITICAL_MARKERS)
                    ]
                ),
                "recommendations": automation.recommendations
                + system.recommendations
                + dependencies.recommendations,
            },
        }

        if include_metrics:
            report["metrics"] = {
                "jobQueue": queue_health["metrics"],
                "automation": automation_metrics,
            }
        if include_jobs:
            report["recentJobs"] = self.recent_jobs()

        if status != HEALTHY:
            logger.warning(
                f"Health check reported {status}",
                extra={
                    "issues": len(all_issues),
                    "event_type": "health_check_degraded",
                },
            )
        return report

    def head_check(self) -> Dict[str, Any]:
        """Store-only check for the lightweight HEAD endpoint."""
        health = self.store.health_check(self.queue_thresholds)
        return {"status": health["status"], "issues": len(health["issues"])}

    def recent_jobs(self, limit: int = RECENT_JOBS_LIMIT) -> List[Dict[str, Any]]:
        jobs = sorted(
            self.store.snapshot(), key=lambda job: job.created_at, reverse=True
        )
        return [job.to_snapshot().to_dict() for job in jobs[:limit]]

    async def check_automation(self):
        try:
            signal = await self.automation_signal()
        except Exception as e:
            logger.error(
                "Automation health signal failed",
                extra={"error": str(e), "event_type": "health_check_error"},
            )
            return (
                ComponentHealth(
                    status=UNHEALTHY,
                    issues=[f"Automation health check failed: {e}"],
                ),
                {},
            )

        component = ComponentHealth(
            status=signal.get("status", HEALTHY),
            issues=list(signal.get("issues", [])),
            recommendations=list(signal.get("recommendations", [])),
        )
        return component, signal.get("metrics", {})

    async def check_system(self) -> ComponentHealth:
        """Memory, CPU load and event-loop lag against the system thresholds."""
        thresholds = self.system_thresholds
        component = ComponentHealth()

        try:
            memory = psutil.virtual_memory()
            component.details["memory"] = {
                "used": memory.used,
                "free": memory.available,
                "total": memory.total,
                "percentage": memory.percent,
            }
            if memory.percent > thresholds.memory_critical_percent:
                component.issues.append(f"High memory usage: {memory.percent:.1f}%")
                component.recommendations.append(
                    "Consider optimizing memory usage or increasing available memory"
                )
            elif memory.percent > thresholds.memory_warning_percent:
                component.recommendations.append(
                    "Monitor memory usage - approaching high utilization"
                )
        except Exception as e:
            component.issues.append(str(ResourceError(f"Memory check failed: {e}")))

        try:
            load_average = list(os.getloadavg())
            normalized = load_average[0] / (psutil.cpu_count() or 1)
            component.details["cpu"] = {
                "loadAverage": load_average,
                "usage": round(normalized * 100, 1),
            }
            if normalized > thresholds.cpu_load:
                component.issues.append(f"High CPU load: {normalized * 100:.1f}%")
                component.recommendations.append(
                    "High CPU usage detected - consider optimizing job processing"
                )
        except (OSError, AttributeError) as e:
            # getloadavg is unavailable on some platforms
            component.details["cpu"] = {"loadAverage": [], "usage": None}
            logger.debug(
                "CPU load average unavailable",
                extra={"error": str(e), "event_type": "health_check_cpu"},
            )

        lag_ms = await measure_event_loop_lag()
        component.details["eventLoopLag"] = round(lag_ms, 2)
        if lag_ms > thresholds.event_loop_lag_ms:
            component.issues.append(f"High event loop lag: {lag_ms:.0f}ms")
            component.recommendations.append(
                "Event loop is blocked - review synchronous operations"
            )

        component.status = status_from_issues(len(component.issues))
        return component

    async def check_dependencies(self) -> ComponentHealth:
        """Probe configured services and look for required environment variables."""
        component = ComponentHealth()
        services: Dict[str, Dict[str, Any]] = {}

        if self.services:
            results = await asyncio.gather(
                *(self.probe_service(url) for url in self.services.values())
            )
            for name, result in zip(self.services, results):
                services[name] = result
                if result["status"] == "down":
                    component.issues.append(f"{name} is unreachable")
                    component.recommendations.append(
                        f"Check {name} connectivity and configuration"
                    )

        missing = [name for name in self.required_env_vars if not os.getenv(name)]
        if missing:
            component.issues.append(
                f"Missing environment variables: {', '.join(missing)}"
            )
            component.recommendations.append("Set all required environment variables")

        component.details["services"] = services
        component.status = status_from_issues(len(component.issues))
        return component

    async def probe_service(self, url: str) -> Dict[str, Any]:
        """HTTP(S) URLs get a GET; anything else a TCP connect to host:port."""
        start = time.perf_counter()
        checked = utcnow().isoformat()
        parsed = urlparse(url)
        try:
            if parsed.scheme in ("http", "https"):
                async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                    response = await client.get(url)
                if response.status_code >= 500:
                    raise ResourceError(f"HTTP {response.status_code}")
            else:
                port = parsed.port or DEFAULT_PORTS.get(parsed.scheme)
                if not parsed.hostname or not port:
                    return {"status": "unknown", "lastChecked": checked}
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(parsed.hostname, port),
                    timeout=self.probe_timeout,
                )
                writer.close()
                await writer.wait_closed()
        except (httpx.HTTPError, OSError, asyncio.TimeoutError, ResourceError) as e:
            logger.warning(
                f"Dependency probe failed: {parsed.scheme}://{parsed.hostname}",
                extra={"error": str(e) or type(e).__name__, "event_type": "dependency_down"},
            )
            return {"status": "down", "lastChecked": checked}

        return {
            "status": "up",
            "responseTime": round((time.perf_counter() - start) * 1000),
            "lastChecked": checked,
        }


def reporter_from_config(
    store: JobStore, automation_signal: Optional[AutomationSignal] = None, cfg=None
) -> HealthReporter:
    """Build a HealthReporter from the application configuration."""
    if cfg is None:
        from blog_automation.config import config as cfg

    return HealthReporter(
        store,
        automation_signal=automation_signal,
        queue_thresholds=QueueThresholds.from_config(cfg.monitoring),
        system_thresholds=SystemThresholds.from_config(cfg.monitoring),
        services=cfg.dependencies.services(),
        required_env_vars=cfg.dependencies.required_env_vars,
        probe_timeout=cfg.dependencies.probe_timeout_seconds,
        version=cfg.api.version,
    )
