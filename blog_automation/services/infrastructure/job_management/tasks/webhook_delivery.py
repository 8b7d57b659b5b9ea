"""Outbound webhook delivery with optional HMAC signatures."""

import hashlib
import hmac
import json
import time

import httpx

from ..base import BaseTask, JobContext
from ..decorators import job
from ..models import JobPriority, WebhookDeliveryPayload, WebhookDeliveryResult

USER_AGENT = "BlogAutomation-Webhook/1.0"


def sign_body(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


@job(
    "webhook-delivery",
    name="Webhook Delivery",
    description="Delivers a JSON payload to an external endpoint",
    payload_model=WebhookDeliveryPayload,
    priority=JobPriority.NORMAL,
    max_retries=5,
    timeout_ms=30000,
    tags=["webhook"],
)
class WebhookDeliveryTask(BaseTask[WebhookDeliveryPayload, WebhookDeliveryResult]):
    payload_model = WebhookDeliveryPayload

    def __init__(self, transport: httpx.AsyncBaseTransport = None):
        self.transport = transport

    async def process(
        self, payload: WebhookDeliveryPayload, context: JobContext
    ) -> WebhookDeliveryResult:
        body = json.dumps(payload.body, separators=(",", ":")).encode()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            **payload.headers,
        }
        if payload.signature_secret:
            headers["X-Signature"] = sign_body(body, payload.signature_secret)
            headers["X-Timestamp"] = str(int(time.time() * 1000))
        context.report_progress(10)

        start = time.perf_counter()
        async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
            response = await client.request(
                payload.method,
                str(payload.url),
                content=body if payload.method != "GET" else None,
                headers=headers,
            )
        context.report_progress(80)

        if response.is_error:
            raise RuntimeError(
                f"Webhook delivery to {payload.url} failed: "
                f"{response.status_code} {response.reason_phrase}"
            )

        return WebhookDeliveryResult(
            status_code=response.status_code,
            response_time_ms=round((time.perf_counter() - start) * 1000),
        )
