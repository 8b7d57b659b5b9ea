"""Inbound webhooks from the CMS and the SEO analysis side.

Both routes require a signed request; see `verify_webhook_signature`.
"""

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from blog_automation.api.automation import ok, parse_body
from blog_automation.api.dependencies import get_services, verify_webhook_signature
from blog_automation.lib.logger import configure_logger
from blog_automation.services.automation_service import BlogPost, SEOAnalysisReport
from blog_automation.services.infrastructure.job_management.models import utcnow
from blog_automation.services.infrastructure.startup_service import StartupService

logger = configure_logger(__name__)

router = APIRouter(prefix="/automation/webhooks", tags=["webhooks"])


class WebhookModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class PublishedPost(BlogPost):
    status: Literal["PUBLISHED"]


class WebhookTrigger(WebhookModel):
    source: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: Optional[str] = None


class BlogPublishedTrigger(WebhookTrigger):
    event: Literal["blog.published"]


class SEOCompleteTrigger(WebhookTrigger):
    event: Literal["seo.analysis.complete"]
    timestamp: str = Field(min_length=1)


class BlogPublishedWebhook(WebhookModel):
    post: PublishedPost
    trigger: BlogPublishedTrigger
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SEOCompleteWebhook(WebhookModel):
    analysis: SEOAnalysisReport
    trigger: SEOCompleteTrigger


def _webhook_health(name: str) -> JSONResponse:
    return ok(
        {"status": "healthy", "timestamp": utcnow().isoformat(), "webhook": name}
    )


@router.post("/blog-published", dependencies=[Depends(verify_webhook_signature)])
async def blog_published(
    body: Dict[str, Any] = Body(...),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    request = parse_body(BlogPublishedWebhook, body, "")
    automation = services.automation_service
    post = BlogPost(**request.post.model_dump(exclude={"status"}))

    logger.info(
        f"Blog published webhook received: {post.id}",
        extra={
            "source": request.trigger.source,
            "event_type": "webhook_received",
        },
    )
    result = automation.trigger_blog_published_workflow(post)
    return ok(
        {
            "jobs": result["jobs"],
            "workflowId": result["workflowId"],
            "post": {
                "id": post.id,
                "title": post.title,
                "url": automation.post_url(post.slug),
            },
        },
        message=f"Blog automation triggered for post: {post.title}",
    )


@router.get("/blog-published")
async def blog_published_health() -> JSONResponse:
    return _webhook_health("blog-published")


@router.post(
    "/seo-analysis-complete", dependencies=[Depends(verify_webhook_signature)]
)
async def seo_analysis_complete(
    body: Dict[str, Any] = Body(...),
    services: StartupService = Depends(get_services),
) -> JSONResponse:
    request = parse_body(SEOCompleteWebhook, body, "")
    result = services.automation_service.process_seo_analysis_complete(
        request.analysis, request.trigger.timestamp
    )
    return ok(
        result,
        message=f"SEO analysis webhook processed for post {request.analysis.post_id}",
    )


@router.get("/seo-analysis-complete")
async def seo_analysis_complete_health() -> JSONResponse:
    return _webhook_health("seo-analysis-complete")

