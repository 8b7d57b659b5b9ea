from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from blog_automation.services.rate_limiter import TIERS, RateLimiter, RateLimitTier


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client limits on the `/automation` routes.

    Webhooks, triggers, health checks and everything else are limited in
    separate tiers. Trigger calls from the site's own origin are not limited.
    Every limited response carries the `X-RateLimit-*` headers; rejected
    requests get a 429 with `Retry-After`.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        tiers: Optional[Dict[str, RateLimitTier]] = None,
        enabled: bool = True,
        internal_origin: Optional[str] = None,
    ):
        super().__init__(app)
        self.limiter = limiter or RateLimiter()
        self.tiers = {**TIERS, **(tiers or {})}
        self.enabled = enabled
        self.internal_origin = internal_origin.rstrip("/") if internal_origin else None

    @staticmethod
    def tier_for(path: str) -> Optional[str]:
        if not path.startswith("/automation"):
            return None
        if path.startswith("/automation/webhooks"):
            return "webhook"
        if path.startswith("/automation/trigger"):
            return "automation"
        if path.endswith("/health"):
            return "health"
        return "api"

    def key_for(self, request: Request, tier: str) -> str:
        ip = client_ip(request)
        if tier == "webhook":
            return f"webhook:{ip}:{request.headers.get('user-agent', '')[:50]}"
        if tier == "automation":
            auth = request.headers.get("authorization", "")
            if auth.startswith("Bearer "):
                return f"automation:key:{auth[7:17]}"
        return f"{tier}:{ip}"

    async def dispatch(self, request: Request, call_next):
        tier = self.tier_for(request.url.path)
        if not self.enabled or tier is None:
            return await call_next(request)
        if (
            tier == "automation"
            and self.internal_origin
            and request.headers.get("origin") == self.internal_origin
        ):
            return await call_next(request)

        result = self.limiter.check(self.key_for(request, tier), self.tiers[tier])
        if not result.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": (
                        "Rate limit exceeded. "
                        f"Try again in {result.retry_after or 0} seconds."
                    ),
                    "data": None,
                },
                headers=result.headers(),
            )

        response = await call_next(request)
        response.headers.update(result.headers())
        return response
