import time
from typing import Dict, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from voter_portal.config.settings import settings
from voter_portal.utils.errors import RateLimitExceededError
from voter_portal.utils.logging import get_logger

logger = get_logger()

# Expired windows are swept once the table grows past this size
SWEEP_THRESHOLD = 10_000


def client_identifier(request: Request) -> str:
    """Client ip (first X-Forwarded-For hop when proxied) plus user agent prefix"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("user-agent") or "unknown"
    return f"{ip}-{user_agent[:50]}"


class RateLimiter:
    """
    Fixed-window request limiter used as a route dependency.

    Counters live in process memory, so each worker enforces its own limit.
    """

    def __init__(self, name: str, max_requests: int, window_seconds: int):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        # client key -> (window reset epoch, requests in window)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def reset(self) -> None:
        self._windows.clear()

    def _sweep(self, now: float) -> None:
        expired = [key for key, (reset_at, _) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]

    def hit(self, key: str) -> Tuple[int, int]:
        """Count one request for ``key``; returns (remaining, reset epoch)"""
        now = time.time()
        if len(self._windows) > SWEEP_THRESHOLD:
            self._sweep(now)

        reset_at, count = self._windows.get(key, (0.0, 0))
        if reset_at <= now:
            reset_at, count = now + self.window_seconds, 0

        if count >= self.max_requests:
            raise RateLimitExceededError(
                limit=self.max_requests,
                retry_after=max(int(reset_at - now), 1),
                reset_at=int(reset_at),
            )

        self._windows[key] = (reset_at, count + 1)
        return self.max_requests - count - 1, int(reset_at)

    async def __call__(self, request: Request) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return

        key = client_identifier(request)
        try:
            remaining, reset_at = self.hit(key)
        except RateLimitExceededError:
            logger.warning(f"{self.name} rate limit exceeded for {key}")
            raise

        # Report the tightest limiter when several apply to one route
        current = getattr(request.state, "rate_limit", None)
        if current is None or remaining <= current[1]:
            request.state.rate_limit = (self.max_requests, remaining, reset_at)


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Copies the limiter state recorded during routing onto the response"""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        state = getattr(request.state, "rate_limit", None)
        if state is not None:
            limit, remaining, reset_at = state
            response.headers.setdefault("X-RateLimit-Limit", str(limit))
            response.headers.setdefault("X-RateLimit-Remaining", str(remaining))
            response.headers.setdefault("X-RateLimit-Reset", str(reset_at))
        return response

general_rate_limit = RateLimiter("general", max_requests=100, window_seconds=15 * 60)
form_rate_limit = RateLimiter("form_submission", max_requests=50, window_seconds=15 * 60)
auth_rate_limit = RateLimiter("auth", max_requests=5, window_seconds=15 * 60)
upload_rate_limit = RateLimiter("file_upload", max_requests=20, window_seconds=60 * 60)
