"""
In-memory rate limiting for order endpoints.

Uses a simple sliding-window counter per caller (bearer token subject when
present, client IP otherwise) and route.
For multi-worker deployments, replace with a shared (Redis-backed) limiter.
"""
import math
import time
import logging
from collections import defaultdict
from typing import Optional

from fastapi import Request

from domain.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Simple in-memory sliding-window rate limiter.

    Tracks request timestamps per (caller, route) key.
    """

    def __init__(self, clock=time.monotonic):
        # {key: [timestamp1, timestamp2, ...]}
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._clock = clock

    def _cleanup(self, key: str, window_seconds: int):
        """Remove expired timestamps from the window; drop the key once it is empty."""
        cutoff = self._clock() - window_seconds
        recent = [ts for ts in self._requests.get(key, ()) if ts > cutoff]
        if recent:
            self._requests[key] = recent
        else:
            self._requests.pop(key, None)

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """
        Check if a request is allowed under the rate limit.

        Args:
            key: Unique identifier (e.g., "user:route")
            max_requests: Maximum allowed requests in the window
            window_seconds: Time window in seconds

        Returns:
            True if allowed, False if rate-limited
        """
        self._cleanup(key, window_seconds)

        if len(self._requests.get(key, ())) >= max_requests:
            return False

        self._requests[key].append(self._clock())
        return True

    def remaining(self, key: str, max_requests: int, window_seconds: int) -> int:
        """Get the number of remaining requests in the current window."""
        self._cleanup(key, window_seconds)
        return max(0, max_requests - len(self._requests.get(key, ())))

    def retry_after(self, key: str, window_seconds: int) -> int:
        """Whole seconds until the oldest request in the window expires."""
        self._cleanup(key, window_seconds)
        timestamps = self._requests.get(key)
        if not timestamps:
            return 0
        return max(1, math.ceil(timestamps[0] + window_seconds - self._clock()))

    def reset(self):
        self._requests.clear()


# Global rate limiter instance
_limiter = RateLimiter()


def get_limiter() -> RateLimiter:
    return _limiter


def _caller_key(request: Request) -> str:
    authorization: Optional[str] = request.headers.get("Authorization")
    if authorization and authorization.lower().startswith("bearer "):
        # token string identifies the caller without decoding it twice
        return f"token:{authorization[7:].strip()[-32:]}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def rate_limit(max_requests: int = 10, window_seconds: int = 60):
    """
    FastAPI dependency factory for rate limiting.

    Usage:
        @router.post("/orders")
        async def create_order(_=Depends(rate_limit(20, 60))):
            ...
    """
    async def _check_rate_limit(request: Request):
        caller = _caller_key(request)
        route_path = request.url.path
        key = f"{caller}:{route_path}"

        if not _limiter.check(key, max_requests, window_seconds):
            remaining = _limiter.remaining(key, max_requests, window_seconds)
            logger.warning(
                f"Rate limit exceeded: {caller[:16]} on {route_path} "
                f"({max_requests}/{window_seconds}s)"
            )
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {max_requests} requests "
                f"per {window_seconds} seconds. Try again later.",
                details={"limit": max_requests, "window_seconds": window_seconds},
                headers={
                    "Retry-After": str(_limiter.retry_after(key, window_seconds)),
                    "X-RateLimit-Limit": str(max_requests),
                    "X-RateLimit-Remaining": str(remaining),
                },
            )

    return _check_rate_limit
