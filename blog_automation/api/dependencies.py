import hmac
import time
from typing import Iterable, Optional

from fastapi import Header, HTTPException, Request

from blog_automation.config import config
from blog_automation.lib.logger import configure_logger
from blog_automation.services.infrastructure.job_management.tasks.webhook_delivery import (
    sign_body,
)
from blog_automation.services.infrastructure.startup_service import (
    StartupService,
    get_startup_service,
)

logger = configure_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"


def get_services() -> StartupService:
    """Automation components for request handlers; overridden in tests."""
    return get_startup_service()


def _strip_bearer(token: str) -> str:
    return token.split(" ", 1)[1] if token.startswith("Bearer ") else token


def _check_bearer(
    authorization: Optional[str], accepted: Iterable[str], scope: str
) -> None:
    if not authorization:
        logger.error(f"Missing Authorization header for {scope} endpoint")
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    if not authorization.startswith("Bearer "):
        logger.error(f"Invalid Authorization header format for {scope} endpoint")
        raise HTTPException(
            status_code=401, detail="Invalid Authorization format. Use 'Bearer <token>'"
        )

    expected = [_strip_bearer(token) for token in accepted if token]
    if not expected:
        logger.error(f"No {scope} token is configured")
        raise HTTPException(
            status_code=401, detail=f"{scope.capitalize()} access is not configured"
        )

    token = authorization.split(" ", 1)[1]
    if not any(hmac.compare_digest(token, candidate) for candidate in expected):
        logger.error(f"Invalid {scope} authentication token")
        raise HTTPException(status_code=401, detail="Invalid authentication token")


async def verify_admin_token(authorization: Optional[str] = Header(None)) -> None:
    """
    Verify operator access using a Bearer token.

    Args:
        authorization: The Authorization header value

    Raises:
        HTTPException: If authentication fails
    """
    _check_bearer(authorization, [config.api.admin_token], "admin")


async def verify_automation_token(authorization: Optional[str] = Header(None)) -> None:
    """Accept the automation API key or the admin token."""
    _check_bearer(
        authorization,
        [config.api.automation_api_key, config.api.admin_token],
        "automation",
    )


async def verify_webhook_signature(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    timestamp: Optional[str] = Header(None, alias=TIMESTAMP_HEADER),
) -> None:
    """
    Verify an inbound webhook signed the way outbound deliveries are.

    The signature is `sha256=<hex HMAC of the raw body>` keyed with
    AUTOMATION_WEBHOOK_SECRET; the timestamp is epoch milliseconds and must be
    within the configured tolerance.

    Raises:
        HTTPException: If a header is missing, stale or does not match
    """
    if not signature or not timestamp:
        logger.error("Missing webhook signature headers")
        raise HTTPException(status_code=401, detail="Missing required webhook headers")

    secret = config.api.webhook_secret
    if not secret:
        logger.error("AUTOMATION_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=401, detail="Webhook verification is not configured"
        )

    try:
        sent_at = int(timestamp) / 1000
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid webhook timestamp")
    if abs(time.time() - sent_at) > config.api.webhook_tolerance_seconds:
        logger.error("Stale webhook timestamp", extra={"webhook_timestamp": timestamp})
        raise HTTPException(status_code=401, detail="Webhook timestamp out of range")

    expected = sign_body(await request.body(), secret)
    if not hmac.compare_digest(signature, expected):
        logger.error("Invalid webhook signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
