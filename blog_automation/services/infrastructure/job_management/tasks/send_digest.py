"""Email digests of recent posts."""

from typing import List, Optional

import httpx

from blog_automation.config import config
from blog_automation.lib.logger import configure_logger

from ..base import BaseTask, JobContext
from ..decorators import job
from ..models import JobPriority, SendDigestPayload, SendDigestResult

logger = configure_logger(__name__)


@job(
    "send-digest",
    name="Send Digest",
    description="Sends the post digest to each recipient through the email service",
    payload_model=SendDigestPayload,
    priority=JobPriority.LOW,
    max_retries=5,
    timeout_ms=300000,
    tags=["email"],
)
class SendDigestTask(BaseTask[SendDigestPayload, SendDigestResult]):
    payload_model = SendDigestPayload

    def __init__(self, email_service_url: Optional[str] = None):
        self.email_service_url = (
            config.dependencies.email_service_url
            if email_service_url is None
            else email_service_url
        )

    async def process(
        self, payload: SendDigestPayload, context: JobContext
    ) -> SendDigestResult:
        if not self.email_service_url:
            raise RuntimeError("EMAIL_SERVICE_URL is not configured")

        headers = {}
        if config.blog.email_api_key:
            headers["Authorization"] = f"Bearer {config.blog.email_api_key}"

        failed: List[str] = []
        total = len(payload.recipients)
        async with httpx.AsyncClient(timeout=15.0, headers=headers) as client:
            for index, recipient in enumerate(payload.recipients, start=1):
                context.raise_if_cancelled()
                try:
                    response = await client.post(
                        self.email_service_url,
                        json={
                            "from": config.blog.digest_sender,
                            "to": recipient,
                            "subject": payload.subject,
                            "period": payload.period,
                            "postIds": payload.post_ids,
                        },
                    )
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    logger.warning(
                        "Digest delivery failed for recipient",
                        extra={"job_id": context.job_id, "error": str(e)},
                    )
                    failed.append(recipient)
                context.report_progress(index * 100 // total)

        if len(failed) == total:
            raise RuntimeError(f"Digest delivery failed for all {total} recipients")

        return SendDigestResult(sent=total - len(failed), failed=failed)
