import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from blog_automation.lib.logger import configure_logger

logger = configure_logger(__name__)

CLEANUP_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class RateLimitTier:
    """Requests allowed per sliding window, with an optional short burst cap."""

    window_seconds: float
    max_requests: int
    burst_limit: Optional[int] = None
    burst_window_seconds: Optional[float] = None


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at * 1000)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


TIERS: Dict[str, RateLimitTier] = {
    "api": RateLimitTier(3600, 100, burst_limit=10, burst_window_seconds=60),
    "webhook": RateLimitTier(3600, 1000, burst_limit=50, burst_window_seconds=60),
    "automation": RateLimitTier(3600, 200, burst_limit=20, burst_window_seconds=300),
    "health": RateLimitTier(60, 60),
}


class RateLimiter:
    def __init__(
        self, clock: Callable[[], float] = time.time, max_idle_seconds: int = 86400
    ):
        """Initialize an in-memory sliding-window limiter."""
        self._clock = clock
        self._max_idle_seconds = max_idle_seconds
        self._requests: Dict[str, List[float]] = {}
        self._bursts: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def check(self, key: str, tier: RateLimitTier) -> RateLimitResult:
        """
        Record a request for `key` if the tier allows it.

        Args:
            key: Caller identity, e.g. `api:<ip>`
            tier: Limits to apply

        Returns:
            RateLimitResult describing the decision and the header values
        """
        now = self._clock()
        with self._lock:
            if now - self._last_cleanup >= CLEANUP_INTERVAL_SECONDS:
                self._drop_idle(now)
            requests = [
                ts
                for ts in self._requests.get(key, [])
                if ts > now - tier.window_seconds
            ]
            bursts: List[float] = []
            burst_exceeded = False
            if tier.burst_limit and tier.burst_window_seconds:
                bursts = [
                    ts
                    for ts in self._bursts.get(key, [])
                    if ts > now - tier.burst_window_seconds
                ]
                burst_exceeded = len(bursts) >= tier.burst_limit

            limit_exceeded = len(requests) >= tier.max_requests
            allowed = not limit_exceeded and not burst_exceeded
            if allowed:
                requests.append(now)
                if tier.burst_limit and tier.burst_window_seconds:
                    bursts.append(now)

            self._requests[key] = requests
            if bursts:
                self._bursts[key] = bursts

        reset_at = (requests[0] if requests else now) + tier.window_seconds
        retry_after = None
        if limit_exceeded:
            retry_after = math.ceil(reset_at - now)
        elif burst_exceeded:
            retry_after = math.ceil(bursts[0] + tier.burst_window_seconds - now)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded: {key}",
                extra={
                    "limit": tier.max_requests,
                    "burst": burst_exceeded,
                    "retry_after": retry_after,
                    "event_type": "rate_limit_exceeded",
                },
            )

        return RateLimitResult(
            allowed=allowed,
            limit=tier.max_requests,
            remaining=max(0, tier.max_requests - len(requests)),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def reset(self, key: str) -> None:
        with self._lock:
            self._requests.pop(key, None)
            self._bursts.pop(key, None)

    def cleanup(self) -> int:
        """Forget keys with no request in the idle period."""
        with self._lock:
            return self._drop_idle(self._clock())

    def _drop_idle(self, now: float) -> int:
        cutoff = now - self._max_idle_seconds
        stale = [
            key
            for key, requests in self._requests.items()
            if not any(ts > cutoff for ts in requests)
        ]
        for key in stale:
            self._requests.pop(key, None)
            self._bursts.pop(key, None)
        self._last_cleanup = now
        return len(stale)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "totalKeys": len(self._requests),
                "totalRequests": sum(len(r) for r in self._requests.values()),
            }
