"""Blog automation workflows built on the job queue."""

import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from blog_automation.lib.logger import configure_logger
from blog_automation.services.infrastructure.job_management.job_manager import (
    JobManager,
)
from blog_automation.services.infrastructure.job_management.models import (
    JobPriority,
    JobStatus,
    utcnow,
)
from blog_automation.services.infrastructure.job_management.monitoring import (
    compute_queue_metrics,
)

logger = configure_logger(__name__)


class _AutomationModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BlogPost(_AutomationModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    content: str = ""
    excerpt: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None


class SEOScore(_AutomationModel):
    overall: int = Field(ge=0, le=100)
    title: int = Field(ge=0, le=100)
    description: int = Field(ge=0, le=100)
    keywords: int = Field(ge=0, le=100)
    content: int = Field(ge=0, le=100)


class SEORecommendation(_AutomationModel):
    type: str
    message: str
    priority: Literal["high", "medium", "low"]


class SEOOptimization(_AutomationModel):
    optimized_title: str
    optimized_description: str
    extracted_keywords: List[str] = Field(default_factory=list)


class SEOAnalysisReport(_AutomationModel):
    """Outcome of an SEO analysis, as reported back by the analysing side."""

    post_id: str = Field(min_length=1)
    job_id: str = Field(min_length=1)
    seo_score: SEOScore
    recommendations: List[SEORecommendation] = Field(default_factory=list)
    optimization: SEOOptimization
    completed_at: datetime


BATCH_OPERATIONS = ("seo-analysis", "sitemap-update")


class BlogAutomationService:
    """Enqueues the jobs behind each blog workflow and reports their health."""

    def __init__(
        self,
        job_manager: JobManager,
        blog_config=None,
        error_rate_threshold: float = 0.05,
        latency_threshold_ms: int = 60000,
    ):
        if blog_config is None:
            from blog_automation.config import config

            blog_config = config.blog

        self.job_manager = job_manager
        self.config = blog_config
        self.error_rate_threshold = error_rate_threshold
        self.latency_threshold_ms = latency_threshold_ms

    def trigger_blog_published_workflow(self, post: BlogPost) -> Dict[str, Any]:
        """Fan out the follow-up jobs for a freshly published post."""
        workflow_id = f"blog-workflow-{post.id}-{int(time.time() * 1000)}"
        jobs: List[Dict[str, str]] = []

        if self.config.enable_auto_seo:
            job_id = self.job_manager.enqueue(
                "seo-analysis",
                {
                    "post_id": post.id,
                    "title": post.title,
                    "content": post.content,
                    "description": post.excerpt,
                    "target_keywords": post.keywords,
                    "target_url": f"/blog/{post.slug}",
                },
                priority=JobPriority.HIGH,
                idempotency_key=f"seo-{post.id}",
                tags=["blog-published", "seo", post.id, workflow_id],
            )
            jobs.append({"type": "seo-analysis", "id": job_id, "priority": "high"})

        if self.config.enable_sitemap_updates:
            job_id = self.job_manager.enqueue(
                "sitemap-generation",
                {
                    "base_url": self.config.site_url,
                    "paths": [f"/blog/{post.slug}"],
                    "last_modified": post.published_at,
                },
                priority=JobPriority.LOW,
                delay=self.config.sitemap_delay_ms,
                idempotency_key=f"sitemap-{workflow_id}",
                tags=["blog-published", "sitemap", workflow_id],
            )
            jobs.append({"type": "sitemap-generation", "id": job_id, "priority": "low"})

        for job_id in self._notify(post, workflow_id):
            jobs.append({"type": "webhook-delivery", "id": job_id, "priority": "normal"})

        logger.info(
            f"Blog published workflow triggered: {post.slug}",
            extra={
                "workflow_id": workflow_id,
                "jobs": len(jobs),
                "event_type": "workflow_triggered",
            },
        )
        return {"jobs": jobs, "workflowId": workflow_id}

    def post_url(self, slug: str) -> str:
        return f"{self.config.site_url.rstrip('/')}/blog/{slug}"

    def trigger_seo_analysis(
        self, post: BlogPost, target_url: Optional[str] = None
    ) -> Dict[str, str]:
        job_id = self.job_manager.enqueue(
            "seo-analysis",
            {
                "post_id": post.id,
                "title": post.title,
                "content": post.content,
                "description": post.excerpt,
                "target_keywords": post.keywords,
                "target_url": target_url or f"/blog/{post.slug}",
            },
            priority=JobPriority.HIGH,
            idempotency_key=f"manual-seo-{post.id}-{int(time.time() * 1000)}",
            tags=["manual-trigger", "seo", post.id],
        )
        return {"jobId": job_id}

    def trigger_batch_optimization(
        self,
        post_ids: List[str],
        operations: List[str],
        batch_size: int = 10,
        delay_between_batches_ms: int = 5000,
    ) -> Dict[str, Any]:
        """Queue operations for many posts, one batch per delay step.

        `sitemap-update` yields a single sitemap job for the whole run.
        """
        now = utcnow()
        batches = []
        sitemap_queued = False
        for number, start in enumerate(range(0, len(post_ids), batch_size), start=1):
            batch = post_ids[start : start + batch_size]
            delay = (number - 1) * delay_between_batches_ms
            jobs = []
            for post_id in batch:
                for operation in operations:
                    if operation == "seo-analysis":
                        job_id = self.job_manager.enqueue(
                            "seo-analysis",
                            {
                                "post_id": post_id,
                                "title": f"Post {post_id}",
                                "content": "",
                                "target_url": f"/blog/{post_id}",
                            },
                            delay=delay,
                            tags=["batch-optimization", post_id, operation],
                        )
                    elif operation == "sitemap-update" and not sitemap_queued:
                        job_id = self.job_manager.enqueue(
                            "sitemap-generation",
                            {"base_url": self.config.site_url},
                            priority=JobPriority.LOW,
                            delay=delay,
                            tags=["batch-optimization", "sitemap-update"],
                        )
                        sitemap_queued = True
                    else:
                        continue
                    jobs.append({"postId": post_id, "operation": operation, "jobId": job_id})
            batches.append(
                {
                    "batchNumber": number,
                    "postIds": batch,
                    "jobs": jobs,
                    "scheduledFor": (now + timedelta(milliseconds=delay)).isoformat(),
                }
            )

        logger.info(
            "Batch optimization triggered",
            extra={
                "posts": len(post_ids),
                "batches": len(batches),
                "event_type": "batch_optimization_triggered",
            },
        )
        return {
            "totalPosts": len(post_ids),
            "totalBatches": len(batches),
            "totalJobs": sum(len(batch["jobs"]) for batch in batches),
            "batches": batches,
        }

    def process_seo_analysis_complete(
        self, report: SEOAnalysisReport, trigger_timestamp: str
    ) -> Dict[str, Any]:
        """Follow-up jobs for a finished SEO analysis.

        The sitemap is always refreshed. High-priority recommendations go to
        the notification channels, and the full report to the SEO monitoring
        webhook when one is configured.
        """
        key = f"seo-complete:{report.job_id}:{trigger_timestamp}"
        score = report.seo_score.overall
        triggered: List[Dict[str, str]] = []

        sitemap_id = self.job_manager.enqueue(
            "sitemap-generation",
            {"base_url": self.config.site_url, "last_modified": report.completed_at},
            priority=JobPriority.LOW,
            idempotency_key=f"sitemap-seo:{key}",
            tags=["seo-triggered", "sitemap-update"],
        )
        triggered.append({"type": "sitemap-generation", "id": sitemap_id})

        urgent = [r for r in report.recommendations if r.priority == "high"]
        if urgent:
            lines = [f"SEO analysis for post {report.post_id}: score {score}/100"]
            lines += [f"- {r.type}: {r.message}" for r in urgent]
            for job_id in self._send_text("\n".join(lines), ["seo-notification", report.post_id]):
                triggered.append({"type": "webhook-delivery", "id": job_id})

        if self.config.seo_monitoring_webhook_url:
            job_id = self.job_manager.enqueue(
                "webhook-delivery",
                {
                    "url": self.config.seo_monitoring_webhook_url,
                    "method": "POST",
                    "body": {
                        "postId": report.post_id,
                        "seoMetrics": report.seo_score.model_dump(),
                        "recommendations": [
                            r.model_dump() for r in report.recommendations
                        ],
                        "keywords": report.optimization.extracted_keywords,
                        "analysisDate": report.completed_at.isoformat(),
                    },
                },
                idempotency_key=f"seo-monitoring:{key}",
                tags=["seo-webhook", "monitoring", report.post_id],
            )
            triggered.append({"type": "webhook-delivery", "id": job_id})

        needs_optimization = score < self.config.seo_score_threshold
        logger.info(
            f"SEO analysis follow-ups queued: {report.post_id}",
            extra={
                "score": score,
                "jobs": len(triggered),
                "needs_optimization": needs_optimization,
                "event_type": "seo_analysis_processed",
            },
        )
        return {
            "triggeredJobs": triggered,
            "seoScore": report.seo_score.model_dump(),
            "recommendations": len(report.recommendations),
            "needsOptimization": needs_optimization,
        }

    def request_draft(
        self, topic: str, keywords: Optional[List[str]] = None, word_count: int = 1200
    ) -> Dict[str, str]:
        job_id = self.job_manager.enqueue(
            "generate-post",
            {"topic": topic, "keywords": keywords or [], "target_word_count": word_count},
            tags=["draft"],
        )
        return {"jobId": job_id}

    def schedule_publishing(self, post: BlogPost, publish_at: datetime) -> Dict[str, str]:
        """Publish `post` at `publish_at`; one scheduled publish per post."""
        job_id = self.job_manager.enqueue(
            "publish-post",
            {
                "post_id": post.id,
                "slug": post.slug,
                "title": post.title,
                "publish_at": publish_at,
            },
            priority=JobPriority.HIGH,
            scheduled_for=publish_at,
            idempotency_key=f"scheduled-{post.id}",
            tags=["scheduled", "publish", post.id],
        )
        return {"jobId": job_id}

    def send_digest(
        self,
        recipients: List[str],
        post_ids: List[str],
        period: str = "weekly",
        subject: Optional[str] = None,
    ) -> Dict[str, str]:
        payload: Dict[str, Any] = {
            "recipients": recipients,
            "post_ids": post_ids,
            "period": period,
        }
        if subject:
            payload["subject"] = subject
        job_id = self.job_manager.enqueue(
            "send-digest", payload, tags=["digest", period]
        )
        return {"jobId": job_id}

    def get_post_automation_status(self, post_id: str) -> Dict[str, Any]:
        """Every job tagged with the post id, with a status summary."""
        post_jobs = [
            job for job in self.job_manager.list_jobs() if post_id in job.tags
        ]
        return {
            "jobs": [
                {
                    "id": job.id,
                    "type": job.type,
                    "status": job.status.value,
                    "progress": job.progress,
                    "createdAt": job.created_at.isoformat(),
                    "completedAt": (
                        job.completed_at.isoformat() if job.completed_at else None
                    ),
                }
                for job in post_jobs
            ],
            "summary": {
                "total": len(post_jobs),
                "completed": len(
                    [j for j in post_jobs if j.status == JobStatus.COMPLETED]
                ),
                "failed": len([j for j in post_jobs if j.status == JobStatus.FAILED]),
                "active": len([j for j in post_jobs if j.status == JobStatus.ACTIVE]),
            },
        }

    async def get_automation_health(self) -> Dict[str, Any]:
        """Automation health signal: store issues plus service-level thresholds."""
        health = self.job_manager.health_check()
        metrics = compute_queue_metrics(self.job_manager.store.snapshot(), utcnow())

        issues = list(health["issues"])
        recommendations = []
        if metrics["errorRate"] > self.error_rate_threshold:
            issues.append("High error rate in automation jobs")
            recommendations.append("Review failed jobs and fix common issues")
        if metrics["queueLatency"] > self.latency_threshold_ms:
            issues.append("High queue latency detected")
            recommendations.append(
                "Consider increasing concurrency or optimizing job handlers"
            )

        if not issues:
            status = "healthy"
        elif len(issues) <= 2:
            status = "degraded"
        else:
            status = "unhealthy"

        return {
            "status": status,
            "metrics": metrics,
            "issues": issues,
            "recommendations": recommendations,
        }

    def _notify(self, post: BlogPost, workflow_id: str) -> List[str]:
        notifications = []
        if self.config.slack_webhook_url:
            notifications.append(
                (
                    self.config.slack_webhook_url,
                    {
                        "text": f"Blog automation triggered for: \"{post.title}\"",
                        "blocks": [
                            {
                                "type": "section",
                                "text": {
                                    "type": "mrkdwn",
                                    "text": (
                                        f"*Blog Post Published*\n*Title:* {post.title}\n"
                                        f"*Workflow ID:* {workflow_id}\n*Post ID:* {post.id}"
                                    ),
                                },
                            }
                        ],
                    },
                )
            )
        if self.config.discord_webhook_url:
            notifications.append(
                (
                    self.config.discord_webhook_url,
                    {
                        "content": (
                            f"**Blog automation triggered**\n**Title:** {post.title}\n"
                            f"**Workflow ID:** {workflow_id}"
                        )
                    },
                )
            )

        return [
            self.job_manager.enqueue(
                "webhook-delivery",
                {"url": url, "method": "POST", "body": body},
                tags=["notification", workflow_id],
            )
            for url, body in notifications
        ]

    def _send_text(self, text: str, tags: List[str]) -> List[str]:
        """Plain-text message to every configured chat webhook."""
        notifications = []
        if self.config.slack_webhook_url:
            notifications.append((self.config.slack_webhook_url, {"text": text}))
        if self.config.discord_webhook_url:
            notifications.append((self.config.discord_webhook_url, {"content": text}))
        return [
            self.job_manager.enqueue(
                "webhook-delivery",
                {"url": url, "method": "POST", "body": body},
                tags=tags,
            )
            for url, body in notifications
        ]
