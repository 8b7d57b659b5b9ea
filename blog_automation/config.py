import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

from blog_automation.lib.logger import configure_logger

logger = configure_logger(__name__)

load_dotenv()


def _env_list(name: str, default: str = "") -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class QueueConfig:
    """Dispatcher and retry behaviour of the job queue."""

    concurrency: int = int(os.getenv("AUTOMATION_QUEUE_CONCURRENCY", "5"))
    default_max_retries: int = int(os.getenv("AUTOMATION_QUEUE_MAX_RETRIES", "3"))
    # milliseconds
    default_delay_ms: int = int(os.getenv("AUTOMATION_QUEUE_DEFAULT_DELAY_MS", "0"))
    default_timeout_ms: int = int(
        os.getenv("AUTOMATION_QUEUE_DEFAULT_TIMEOUT_MS", "300000")
    )
    max_backoff_ms: int = int(os.getenv("AUTOMATION_QUEUE_MAX_BACKOFF_MS", "300000"))
    backoff_jitter: bool = (
        os.getenv("AUTOMATION_QUEUE_BACKOFF_JITTER", "true").lower() == "true"
    )
    poll_interval_seconds: float = float(
        os.getenv("AUTOMATION_QUEUE_POLL_INTERVAL_SECONDS", "0.5")
    )

    # housekeeping
    cleanup_enabled: bool = (
        os.getenv("AUTOMATION_QUEUE_CLEANUP_ENABLED", "true").lower() == "true"
    )
    cleanup_interval_seconds: int = int(
        os.getenv("AUTOMATION_QUEUE_CLEANUP_INTERVAL_SECONDS", "300")
    )
    retention_seconds: int = int(
        os.getenv("AUTOMATION_QUEUE_RETENTION_SECONDS", "86400")
    )


@dataclass
class MonitoringConfig:
    """Thresholds used by the metrics aggregator and the health reporter."""

    stale_job_seconds: int = int(os.getenv("AUTOMATION_STALE_JOB_SECONDS", "3600"))
    high_latency_ms: int = int(os.getenv("AUTOMATION_HIGH_LATENCY_MS", "300000"))
    high_error_rate: float = float(os.getenv("AUTOMATION_HIGH_ERROR_RATE", "0.1"))
    backlog_warning: int = int(os.getenv("AUTOMATION_BACKLOG_WARNING", "100"))
    queue_latency_ms: int = int(os.getenv("AUTOMATION_QUEUE_LATENCY_MS", "30000"))
    histogram_buckets: int = int(os.getenv("AUTOMATION_HISTOGRAM_BUCKETS", "24"))

    # automation service signal
    automation_error_rate: float = float(
        os.getenv("AUTOMATION_SERVICE_ERROR_RATE", "0.05")
    )
    automation_latency_ms: int = int(
        os.getenv("AUTOMATION_SERVICE_LATENCY_MS", "60000")
    )

    # system resources
    memory_critical_percent: float = float(
        os.getenv("AUTOMATION_MEMORY_CRITICAL_PERCENT", "90")
    )
    memory_warning_percent: float = float(
        os.getenv("AUTOMATION_MEMORY_WARNING_PERCENT", "75")
    )
    cpu_load_threshold: float = float(os.getenv("AUTOMATION_CPU_LOAD_THRESHOLD", "0.8"))
    event_loop_lag_ms: float = float(os.getenv("AUTOMATION_EVENT_LOOP_LAG_MS", "100"))

    # error monitor
    max_error_events: int = int(os.getenv("AUTOMATION_MAX_ERROR_EVENTS", "10000"))
    error_retention_seconds: int = int(
        os.getenv("AUTOMATION_ERROR_RETENTION_SECONDS", "604800")
    )
    alert_cooldown_seconds: int = int(
        os.getenv("AUTOMATION_ALERT_COOLDOWN_SECONDS", "900")
    )
    alert_slack_webhook_url: str = os.getenv("AUTOMATION_ALERT_SLACK_WEBHOOK_URL", "")
    alert_webhook_url: str = os.getenv("AUTOMATION_ALERT_WEBHOOK_URL", "")


@dataclass
class DependencyConfig:
    """External services and environment the automation depends on."""

    database_url: str = os.getenv("DATABASE_URL", "")
    redis_url: str = os.getenv("REDIS_URL", "")
    email_service_url: str = os.getenv("EMAIL_SERVICE_URL", "")
    probe_timeout_seconds: float = float(
        os.getenv("AUTOMATION_PROBE_TIMEOUT_SECONDS", "5")
    )
    required_env_vars: List[str] = field(
        default_factory=lambda: _env_list(
            "AUTOMATION_REQUIRED_ENV_VARS", "APP_ENV,SITE_URL"
        )
    )

    def services(self) -> dict:
        """Configured services keyed by name; unset URLs are skipped."""
        candidates = {
            "database": self.database_url,
            "redis": self.redis_url,
            "email_service": self.email_service_url,
        }
        return {name: url for name, url in candidates.items() if url}


@dataclass
class APIConfig:
    admin_token: str = os.getenv("AUTOMATION_ADMIN_TOKEN", "")
    # bearer key for /automation/trigger; the admin token is accepted too
    automation_api_key: str = os.getenv("AUTOMATION_API_KEY", "")
    # HMAC secret for inbound /automation/webhooks/*
    webhook_secret: str = os.getenv("AUTOMATION_WEBHOOK_SECRET", "")
    webhook_tolerance_seconds: int = int(
        os.getenv("AUTOMATION_WEBHOOK_TOLERANCE_SECONDS", "300")
    )
    rate_limit_enabled: bool = (
        os.getenv("AUTOMATION_RATE_LIMIT_ENABLED", "true").lower() == "true"
    )
    version: str = os.getenv("AUTOMATION_VERSION", "1.0.0")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: _env_list("AUTOMATION_CORS_ORIGINS", "*")
    )


@dataclass
class BlogConfig:
    """Blog automation workflow settings."""

    site_url: str = os.getenv("SITE_URL", "http://localhost:3000")
    # endpoint that rebuilds cached pages after a publish; skipped when empty
    revalidate_url: str = os.getenv("SITE_REVALIDATE_URL", "")
    email_api_key: str = os.getenv("EMAIL_API_KEY", "")
    digest_sender: str = os.getenv("DIGEST_SENDER", "blog@localhost")
    enable_auto_seo: bool = os.getenv("BLOG_ENABLE_AUTO_SEO", "true").lower() == "true"
    enable_sitemap_updates: bool = (
        os.getenv("BLOG_ENABLE_SITEMAP_UPDATES", "true").lower() == "true"
    )
    sitemap_delay_ms: int = int(os.getenv("BLOG_SITEMAP_DELAY_MS", "300000"))
    slack_webhook_url: str = os.getenv("BLOG_SLACK_WEBHOOK_URL", "")
    discord_webhook_url: str = os.getenv("BLOG_DISCORD_WEBHOOK_URL", "")
    seo_monitoring_webhook_url: str = os.getenv("BLOG_SEO_MONITORING_WEBHOOK_URL", "")
    # posts scoring below this are flagged for optimization
    seo_score_threshold: int = int(os.getenv("BLOG_SEO_SCORE_THRESHOLD", "70"))


@dataclass
class Config:
    queue: QueueConfig = field(default_factory=QueueConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    dependencies: DependencyConfig = field(default_factory=DependencyConfig)
    api: APIConfig = field(default_factory=APIConfig)
    blog: BlogConfig = field(default_factory=BlogConfig)

    @classmethod
    def load(cls) -> "Config":
        """Load and validate configuration"""
        config = cls()
        if config.queue.concurrency < 1:
            logger.warning(
                "Queue concurrency below 1, falling back to 1",
                extra={"configured": config.queue.concurrency},
            )
            config.queue.concurrency = 1
        logger.info("Configuration loaded successfully")
        return config


# Global configuration instance
config = Config.load()
