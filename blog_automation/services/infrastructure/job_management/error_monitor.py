"""Error tracking and alerting for the automation system.

Every handler failure is recorded here by the dispatcher; operators can add
events by hand through the API. Events are matched against named patterns,
and a pattern that fires `threshold` times inside its window sends an alert
to every enabled channel, at most once per cooldown.
"""

import asyncio
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Pattern, Set

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from blog_automation.lib.logger import configure_logger

from .models import JobRecord, JobStatus, utcnow

logger = configure_logger(__name__)

LEVELS = ("info", "warn", "error", "critical")
CATEGORIES = ("job", "api", "webhook", "system")
ERROR_CLEANUP_JOB_ID = "error_monitor_cleanup"

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


@dataclass
class ErrorEvent:
    level: str
    category: str
    source: str
    message: str
    id: str = field(default_factory=lambda: f"err_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=utcnow)
    details: Optional[Dict[str, Any]] = None
    stack: Optional[str] = None
    job_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def text(self) -> str:
        return f"{self.message} {self.stack or ''}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "category": self.category,
            "source": self.source,
            "message": self.message,
            "details": self.details,
            "stack": self.stack,
            "jobId": self.job_id,
            "requestId": self.request_id,
            "userId": self.user_id,
        }


@dataclass
class ErrorPattern:
    name: str
    pattern: Pattern[str]
    category: str
    severity: str
    threshold: int
    window_ms: int
    total_occurrences: int = 0
    last_triggered: Optional[datetime] = None

    def matches(self, event: ErrorEvent) -> bool:
        return bool(self.pattern.search(event.text))


@dataclass
class AlertChannel:
    """Destination for pattern alerts. `kind` is `slack` or `webhook`."""

    name: str
    kind: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    levels: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    enabled: bool = True

    def accepts(self, event: ErrorEvent) -> bool:
        if not self.enabled:
            return False
        if self.levels is not None and event.level not in self.levels:
            return False
        if self.categories is not None and event.category not in self.categories:
            return False
        return True


def default_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern(
            name="Job Timeout",
            pattern=re.compile(r"timeout|timed out", re.I),
            category="job",
            severity="high",
            threshold=3,
            window_ms=30 * 60 * 1000,
        ),
        ErrorPattern(
            name="Database Connection Error",
            pattern=re.compile(r"database|connection|ECONNREFUSED", re.I),
            category="system",
            severity="critical",
            threshold=2,
            window_ms=15 * 60 * 1000,
        ),
        ErrorPattern(
            name="API Rate Limit",
            pattern=re.compile(r"rate limit|429|too many requests", re.I),
            category="api",
            severity="medium",
            threshold=10,
            window_ms=HOUR_MS,
        ),
        ErrorPattern(
            name="Memory Error",
            pattern=re.compile(r"out of memory|heap|memory", re.I),
            category="system",
            severity="critical",
            threshold=1,
            window_ms=HOUR_MS,
        ),
        ErrorPattern(
            name="Webhook Delivery Failure",
            pattern=re.compile(r"webhook.*failed|delivery.*failed", re.I),
            category="webhook",
            severity="medium",
            threshold=5,
            window_ms=30 * 60 * 1000,
        ),
    ]


class ErrorMonitor:
    def __init__(
        self,
        max_events: int = 10000,
        retention_seconds: int = 7 * 24 * 3600,
        alert_cooldown_seconds: int = 15 * 60,
        alert_timeout_seconds: float = 10.0,
        patterns: Optional[List[ErrorPattern]] = None,
    ):
        self.max_events = max_events
        self.retention_seconds = retention_seconds
        self.alert_cooldown = timedelta(seconds=alert_cooldown_seconds)
        self.alert_timeout_seconds = alert_timeout_seconds
        self.patterns: Dict[str, ErrorPattern] = {}
        self.channels: Dict[str, AlertChannel] = {}
        self._events: List[ErrorEvent] = []
        self._lock = threading.RLock()
        self._alert_tasks: Set[asyncio.Task] = set()

        for pattern in default_patterns() if patterns is None else patterns:
            self.register_pattern(pattern)

    def register_pattern(self, pattern: ErrorPattern) -> None:
        self.patterns[pattern.name] = pattern

    def register_alert_channel(self, channel: AlertChannel) -> None:
        self.channels[channel.name] = channel

    def log_error(
        self,
        message: str,
        level: str = "error",
        category: str = "system",
        source: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
        stack: Optional[str] = None,
        job_id: Optional[str] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ErrorEvent:
        """Record an error event and fire any pattern alerts it completes."""
        event = ErrorEvent(
            level=level,
            category=category,
            source=source,
            message=message or "Unknown error",
            timestamp=now or utcnow(),
            details=details,
            stack=stack,
            job_id=job_id,
            request_id=request_id,
            user_id=user_id,
        )
        with self._lock:
            self._events.append(event)
            if len(self._events) > self.max_events:
                self._events = self._events[-self.max_events :]
            fired = self._check_patterns(event)

        logger.debug(
            f"Error recorded: {event.source}",
            extra={
                "error_id": event.id,
                "level": event.level,
                "category": event.category,
                "event_type": "error_recorded",
            },
        )
        for pattern, occurrences in fired:
            self._trigger_alert(pattern, event, occurrences)
        return event

    def log_job_error(self, job: JobRecord, error: Exception) -> ErrorEvent:
        """Record a failed job execution. Permanent failures log at `error`."""
        return self.log_error(
            message=job.last_error or str(error) or type(error).__name__,
            level="error" if job.status == JobStatus.FAILED else "warn",
            category="job",
            source=f"job:{job.type}",
            job_id=job.id,
            details={
                "jobType": job.type,
                "attempts": job.attempts,
                "maxRetries": job.max_retries,
                "status": job.status.value,
            },
        )

    def _check_patterns(self, event: ErrorEvent):
        fired = []
        for pattern in self.patterns.values():
            if not pattern.matches(event):
                continue
            pattern.total_occurrences += 1
            cutoff = event.timestamp - timedelta(milliseconds=pattern.window_ms)
            recent = sum(
                1 for e in self._events if e.timestamp > cutoff and pattern.matches(e)
            )
            if recent < pattern.threshold:
                continue
            if (
                pattern.last_triggered is not None
                and event.timestamp - pattern.last_triggered <= self.alert_cooldown
            ):
                continue
            pattern.last_triggered = event.timestamp
            fired.append((pattern, recent))
        return fired

    def _trigger_alert(
        self, pattern: ErrorPattern, event: ErrorEvent, occurrences: int
    ) -> None:
        logger.warning(
            f"Error pattern alert: {pattern.name}",
            extra={
                "pattern": pattern.name,
                "severity": pattern.severity,
                "occurrences": occurrences,
                "error_id": event.id,
                "event_type": "error_pattern_alert",
            },
        )
        if not any(channel.accepts(event) for channel in self.channels.values()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, alert not delivered",
                extra={"pattern": pattern.name, "event_type": "error_alert_skipped"},
            )
            return
        task = loop.create_task(self.send_alerts(pattern, event, occurrences))
        self._alert_tasks.add(task)
        task.add_done_callback(self._alert_tasks.discard)

    async def send_alerts(
        self, pattern: ErrorPattern, event: ErrorEvent, occurrences: int
    ) -> List[str]:
        """Deliver an alert to every channel that accepts the event.

        Returns the names of the channels that took the alert. A failing
        channel is logged and skipped.
        """
        message = format_alert(pattern, event, occurrences)
        delivered = []
        async with httpx.AsyncClient(timeout=self.alert_timeout_seconds) as client:
            for channel in self.channels.values():
                if not channel.accepts(event):
                    continue
                if channel.kind == "slack":
                    body = {
                        "text": message,
                        "username": "Blog Automation Monitor",
                        "icon_emoji": ":warning:",
                    }
                else:
                    body = {
                        "alert": message,
                        "event": event.to_dict(),
                        "timestamp": utcnow().isoformat(),
                    }
                try:
                    response = await client.post(
                        channel.url, json=body, headers=channel.headers
                    )
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    logger.error(
                        f"Failed to send alert via {channel.name}",
                        extra={"error": str(e), "event_type": "error_alert_failed"},
                    )
                    continue
                delivered.append(channel.name)
        return delivered

    def _window(self, time_window_ms: Optional[int], now: datetime) -> List[ErrorEvent]:
        with self._lock:
            events = list(self._events)
        if time_window_ms is None:
            return events
        cutoff = now - timedelta(milliseconds=time_window_ms)
        return [event for event in events if event.timestamp > cutoff]

    def get_metrics(
        self, time_window_ms: int = DAY_MS, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        events = self._window(time_window_ms, now)

        by_level: Dict[str, int] = {}
        by_category: Dict[str, int] = {}
        by_source: Dict[str, int] = {}
        pattern_counts: Dict[str, Dict[str, Any]] = {}
        for event in events:
            by_level[event.level] = by_level.get(event.level, 0) + 1
            by_category[event.category] = by_category.get(event.category, 0) + 1
            by_source[event.source] = by_source.get(event.source, 0) + 1
            for pattern in self.patterns.values():
                if pattern.matches(event):
                    entry = pattern_counts.setdefault(
                        pattern.name, {"count": 0, "lastOccurrence": event.timestamp}
                    )
                    entry["count"] += 1
                    entry["lastOccurrence"] = max(
                        entry["lastOccurrence"], event.timestamp
                    )

        top_patterns = sorted(
            (
                {
                    "pattern": name,
                    "count": data["count"],
                    "lastOccurrence": data["lastOccurrence"].isoformat(),
                }
                for name, data in pattern_counts.items()
            ),
            key=lambda entry: entry["count"],
            reverse=True,
        )[:10]

        error_rate = len(events) / (time_window_ms / HOUR_MS)
        return {
            "totalErrors": len(events),
            "errorsByLevel": by_level,
            "errorsByCategory": by_category,
            "errorsBySource": by_source,
            "errorRate": round(error_rate, 2),
            "avgErrorsPerHour": round(error_rate, 2),
            "topErrorPatterns": top_patterns,
            "recentErrors": [event.to_dict() for event in events[-50:]],
        }

    def get_errors(
        self,
        limit: int = 50,
        offset: int = 0,
        level: Optional[str] = None,
        category: Optional[str] = None,
        source: Optional[str] = None,
        time_window_ms: Optional[int] = None,
        search: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Filtered events, newest first, with offset pagination."""
        events = self._window(time_window_ms, now or utcnow())
        if level:
            events = [e for e in events if e.level == level]
        if category:
            events = [e for e in events if e.category == category]
        if source:
            events = [e for e in events if e.source == source]
        if search:
            needle = search.lower()
            events = [
                e
                for e in events
                if needle in e.message.lower()
                or needle in e.source.lower()
                or (e.stack and needle in e.stack.lower())
            ]

        events.sort(key=lambda e: e.timestamp, reverse=True)
        page = events[offset : offset + limit]
        return {
            "events": [event.to_dict() for event in page],
            "total": len(events),
            "hasMore": offset + limit < len(events),
        }

    def get_health_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        metrics = self.get_metrics(HOUR_MS, now)
        issues: List[str] = []
        recommendations: List[str] = []

        if metrics["errorRate"] > 50:
            issues.append(f"High error rate: {metrics['errorRate']:.1f} errors/hour")
            recommendations.append("Investigate and fix recurring errors")

        critical = metrics["errorsByLevel"].get("critical", 0)
        if critical:
            issues.append(f"{critical} critical errors in the last hour")
            recommendations.append("Address critical errors immediately")

        recent = self._window(HOUR_MS, now)
        for pattern in self.patterns.values():
            if pattern.severity != "critical":
                continue
            occurrences = sum(1 for event in recent if pattern.matches(event))
            if occurrences >= pattern.threshold:
                issues.append(
                    f'Critical pattern "{pattern.name}" triggered {occurrences} times'
                )
                recommendations.append(f"Address root cause of {pattern.name}")

        if not issues:
            status = "healthy"
        elif len(issues) <= 2:
            status = "degraded"
        else:
            status = "unhealthy"
        return {"status": status, "issues": issues, "recommendations": recommendations}

    def clear_errors(self) -> int:
        with self._lock:
            cleared = len(self._events)
            self._events.clear()
            for pattern in self.patterns.values():
                pattern.total_occurrences = 0
                pattern.last_triggered = None
        logger.info(
            "Error log cleared",
            extra={"cleared": cleared, "event_type": "errors_cleared"},
        )
        return cleared

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop events older than the retention period."""
        cutoff = (now or utcnow()) - timedelta(seconds=self.retention_seconds)
        with self._lock:
            before = len(self._events)
            self._events = [e for e in self._events if e.timestamp > cutoff]
            removed = before - len(self._events)
        if removed:
            logger.info(
                "Expired error events removed",
                extra={"removed": removed, "event_type": "error_cleanup"},
            )
        return removed

    def schedule_cleanup(self, scheduler: AsyncIOScheduler) -> None:
        scheduler.add_job(
            self.cleanup,
            "interval",
            hours=1,
            id=ERROR_CLEANUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


def format_alert(pattern: ErrorPattern, event: ErrorEvent, occurrences: int) -> str:
    lines = [
        f"*Alert: {pattern.name}*",
        f"*Pattern:* {pattern.name} ({pattern.severity})",
        f"*Occurrences:* {occurrences} times in "
        f"{round(pattern.window_ms / 60000)} minutes",
        f"*Latest Error:* {event.message}",
        f"*Source:* {event.source}",
        f"*Time:* {event.timestamp.isoformat()}",
    ]
    if event.job_id:
        lines.append(f"*Job ID:* {event.job_id}")
    return "\n".join(lines)


def monitor_from_config(cfg=None) -> ErrorMonitor:
    """ErrorMonitor with the alert channels configured in the environment."""
    if cfg is None:
        from blog_automation.config import config as cfg

    monitoring = cfg.monitoring
    monitor = ErrorMonitor(
        max_events=monitoring.max_error_events,
        retention_seconds=monitoring.error_retention_seconds,
        alert_cooldown_seconds=monitoring.alert_cooldown_seconds,
    )
    if monitoring.alert_slack_webhook_url:
        monitor.register_alert_channel(
            AlertChannel(
                name="slack-alerts",
                kind="slack",
                url=monitoring.alert_slack_webhook_url,
                levels=["critical", "error"],
            )
        )
    if monitoring.alert_webhook_url:
        monitor.register_alert_channel(
            AlertChannel(
                name="alert-webhook",
                kind="webhook",
                url=monitoring.alert_webhook_url,
            )
        )
    return monitor
