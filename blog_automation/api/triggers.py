from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import Field, field_validator

from blog_automation.api.automation import CamelModel, ok, parse_body
from blog_automation.api.dependencies import get_services, verify_automation_token
from blog_automation.lib.logger import configure_logger
from blog_automation.services.automation_service import BATCH_OPERATIONS, BlogPost
from blog_automation.services.infrastructure.job_management.errors import (
    ValidationError,
)
from blog_automation.services.infrastructure.job_management.models import utcnow
from blog_automation.services.infrastructure.startup_service import StartupService

logger = configure_logger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"])

SEO_ESTIMATE_SECONDS = 120


class TriggerPostBody(CamelModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    content: str = ""
    excerpt: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None


class SEOTriggerBody(CamelModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    url: str = Field(min_length=1)


class ScheduleTriggerBody(CamelModel):
    id: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    title: str = Field(min_length=1)
    publish_at: datetime


class BatchTriggerBody(CamelModel):
    post_ids: List[str] = Field(min_length=1)
    operations: List[str] = Field(min_length=1)
    batch_size: int = Field(default=10, ge=1, le=50)
    delay_between_batches: int = Field(default=5000, ge=0)

    @field_validator("operations")
    @classmethod
    def known_operations(cls, value: List[str]) -> List[str]:
        unknown = [op for op in value if op not in BATCH_OPERATIONS]
        if unknown:
            raise ValueError(f"Unknown operations: {', '.join(unknown)}")
        return value


class DraftTriggerBody(CamelModel):
    topic: str = Field(min_length=1)
    keywords: List[str] = Field(default_factory=list)
    word_count: int = Field(default=1200, ge=100, le=10000)


class DigestTriggerBody(CamelModel):
    recipients: List[str] = Field(min_length=1)
    post_ids: List[str] = Field(default_factory=list)
    period: str = Field(default="weekly", pattern="^(daily|weekly|monthly)$")
    subject: Optional[str] = None


TRIGGER_TYPES = {
    "blog-published": "Trigger the full blog published workflow",
    "seo-analysis": "Trigger SEO analysis for a specific post",
    "scheduled-publishing": "Schedule a post for future publishing",
    "batch-optimization": "Run SEO analysis or sitemap updates across posts",
    "generate-draft": "Queue a draft post for a topic",
    "send-digest": "Send a digest of posts to subscribers",
}

TRIGGER_EXAMPLES: Dict[str, Dict[str, Any]] = {
    "blog-published": {
        "type": "blog-published",
        "data": {
            "id": "post-123",
            "title": "My Blog Post",
            "slug": "my-blog-post",
            "content": "Post content...",
            "excerpt": "Post excerpt",
            "keywords": ["python", "automation"],
        },
    },
    "seo-analysis": {
        "type": "seo-analysis",
        "data": {
            "id": "post-123",
            "title": "My Blog Post",
            "content": "Post content...",
            "description": "Meta description",
            "keywords": ["python"],
            "url": "/blog/my-blog-post",
        },
    },
    "scheduled-publishing": {
        "type": "scheduled-publishing",
        "data": {
            "id": "post-123",
            "slug": "my-blog-post",
            "title": "My Blog Post",
            "publishAt": "2030-01-01T10:00:00Z",
        },
    },
    "batch-optimization": {
        "type": "batch-optimization",
        "data": {
            "postIds": ["post-1", "post-2", "post-3"],
            "operations": ["seo-analysis", "sitemap-update"],
            "batchSize": 5,
            "delayBetweenBatches": 10000,
        },
    },
    "generate-draft": {
        "type": "generate-draft",
        "data": {"topic": "Async Python", "keywords": ["asyncio"], "wordCount": 1500},
    },
    "send-digest": {
        "type": "send-digest",
        "data": {"recipients": ["reader@example.com"], "postIds": ["post-1"]},
    },
}


@router.post("/trigger")
async def trigger_automation(
    body: Dict[str, Any] = Body(...),
    _: None = Depends(verify_automation_token),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    """Start one automation workflow, chosen by `type`, with `data` as its input."""
    trigger_type = body.get("type")
    data = body.get("data")
    automation = services.automation_service

    if trigger_type == "blog-published":
        request = parse_body(TriggerPostBody, data, "data")
        post = BlogPost(**request.model_dump())
        result = automation.trigger_blog_published_workflow(post)
        message = f'Blog published workflow triggered for "{post.title}"'
        data_out: Dict[str, Any] = {
            "workflowId": result["workflowId"],
            "triggeredJobs": result["jobs"],
            "postId": post.id,
        }

    elif trigger_type == "seo-analysis":
        request = parse_body(SEOTriggerBody, data, "data")
        post = BlogPost(
            id=request.id,
            title=request.title,
            slug=request.id,
            content=request.content,
            excerpt=request.description,
            keywords=request.keywords,
        )
        result = automation.trigger_seo_analysis(post, target_url=request.url)
        message = f'SEO analysis triggered for "{request.title}"'
        estimate = utcnow() + timedelta(seconds=SEO_ESTIMATE_SECONDS)
        data_out = {
            "jobId": result["jobId"],
            "postId": request.id,
            "estimatedCompletion": estimate.isoformat(),
        }

    elif trigger_type == "scheduled-publishing":
        request = parse_body(ScheduleTriggerBody, data, "data")
        post = BlogPost(id=request.id, slug=request.slug, title=request.title)
        result = automation.schedule_publishing(post, request.publish_at)
        message = f'Post "{request.title}" scheduled for publishing'
        data_out = {
            "jobId": result["jobId"],
            "postId": request.id,
            "scheduledFor": request.publish_at.isoformat(),
        }

    elif trigger_type == "batch-optimization":
        request = parse_body(BatchTriggerBody, data, "data")
        data_out = automation.trigger_batch_optimization(
            request.post_ids,
            request.operations,
            batch_size=request.batch_size,
            delay_between_batches_ms=request.delay_between_batches,
        )
        message = (
            f"Batch optimization triggered for {len(request.post_ids)} posts "
            f"in {data_out['totalBatches']} batches"
        )

    elif trigger_type == "generate-draft":
        request = parse_body(DraftTriggerBody, data, "data")
        data_out = automation.request_draft(
            request.topic, keywords=request.keywords, word_count=request.word_count
        )
        message = f'Draft requested for "{request.topic}"'

    elif trigger_type == "send-digest":
        request = parse_body(DigestTriggerBody, data, "data")
        data_out = automation.send_digest(
            request.recipients,
            request.post_ids,
            period=request.period,
            subject=request.subject,
        )
        message = f"Digest queued for {len(request.recipients)} recipients"

    else:
        raise ValidationError(
            f"Unknown trigger type. Use one of: {', '.join(TRIGGER_TYPES)}",
            fields=["type"],
        )

    logger.info(
        f"Automation triggered: {trigger_type}",
        extra={"trigger_type": trigger_type, "event_type": "automation_triggered"},
    )
    return ok(data_out, message=message)


@router.get("/trigger")
async def trigger_catalogue(
    examples: bool = Query(False),
) -> JSONResponse:
    """Available trigger types; `?examples=true` adds a sample request for each."""
    data: Dict[str, Any] = {
        "available": [
            {"type": name, "description": description}
            for name, description in TRIGGER_TYPES.items()
        ],
        "authentication": "Bearer token required (AUTOMATION_API_KEY or ADMIN_TOKEN)",
        "rateLimit": "20 requests per 5 minutes, 200 per hour",
    }
    if examples:
        data["examples"] = TRIGGER_EXAMPLES
    return ok(data)


@router.get("/posts/{post_id}/status")
async def post_status(
    post_id: str, services: StartupService = Depends(get_services)
) -> JSONResponse:
    return ok(services.automation_service.get_post_automation_status(post_id))
