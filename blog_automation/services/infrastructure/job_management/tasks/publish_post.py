"""Publishing of finished posts."""

from typing import Optional

import httpx

from blog_automation.config import config
from blog_automation.lib.logger import configure_logger

from ..base import BaseTask, JobContext
from ..decorators import job
from ..models import JobPriority, JobRecord, PublishPostPayload, PublishPostResult, utcnow

logger = configure_logger(__name__)


@job(
    "publish-post",
    name="Publish Post",
    description="Marks a post live and asks the site to rebuild its page",
    payload_model=PublishPostPayload,
    priority=JobPriority.HIGH,
    max_retries=3,
    timeout_ms=60000,
    tags=["publish"],
)
class PublishPostTask(BaseTask[PublishPostPayload, PublishPostResult]):
    payload_model = PublishPostPayload

    def __init__(self, revalidate_url: Optional[str] = None, site_url: Optional[str] = None):
        self.revalidate_url = (
            config.blog.revalidate_url if revalidate_url is None else revalidate_url
        )
        self.site_url = (site_url or config.blog.site_url).rstrip("/")

    async def process(
        self, payload: PublishPostPayload, context: JobContext
    ) -> PublishPostResult:
        path = f"/blog/{payload.slug}"
        context.report_progress(20)

        if self.revalidate_url:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    self.revalidate_url, json={"path": path, "postId": payload.post_id}
                )
                response.raise_for_status()
        context.report_progress(80)

        return PublishPostResult(
            post_id=payload.post_id,
            url=f"{self.site_url}{path}",
            published_at=payload.publish_at or utcnow(),
        )

    async def on_completed(self, job: JobRecord, result: PublishPostResult) -> None:
        logger.info(
            f"Post published: {result.url}",
            extra={"job_id": job.id, "event_type": "post_published"},
        )
