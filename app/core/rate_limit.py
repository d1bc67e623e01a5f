"""In-memory sliding-window rate limiting.

Per process only: counts reset on restart and are not shared between
workers. Nothing in the payment core depends on it; routes opt in through
the ``rate_limit`` dependency and skip the check when no limiter is
installed on the app.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import HTTPException, Request, status

from app.core.config import settings


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


@dataclass
class _Window:
    count: int
    reset_at: float


class SlidingWindowRateLimiter:

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic, cleanup_interval: float = 60.0):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def check(self, key: str) -> RateLimitResult:
        """Consume one request from ``key``'s budget."""
        with self._lock:
            now = self._clock()
            self._cleanup(now)

            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return RateLimitResult(allowed=True, remaining=self.limit - 1)

            if window.count >= self.limit:
                return RateLimitResult(allowed=False, remaining=0, retry_after=window.reset_at - now)

            window.count += 1
            return RateLimitResult(allowed=True, remaining=self.limit - window.count)

    def reset(self):
        with self._lock:
            self._windows.clear()

    def _cleanup(self, now: float):
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        for key in [k for k, w in self._windows.items() if now >= w.reset_at]:
            del self._windows[key]


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def rate_limit(scope: str):
    """Dependency factory: 429 with ``Retry-After`` once ``scope`` is exhausted for the caller's IP."""

    def dependency(request: Request):
        limiter: Optional[SlidingWindowRateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is None or not settings.RATE_LIMIT_ENABLED:
            return
        result = limiter.check(f"{scope}:{get_client_ip(request)}")
        if not result.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again shortly.",
                headers={"Retry-After": str(max(1, int(result.retry_after + 0.999)))},
            )

    return dependency
