"""Fixed-window request quota per client IP."""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

import config

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, limit: int = config.RATE_LIMIT_MAX, window: int = config.RATE_LIMIT_WINDOW_SECONDS):
        self.limit = limit
        self.window = window
        self._counters: Dict[str, Tuple[float, int]] = {}
        self._swept_at: Optional[float] = None
        self._lock = threading.Lock()

    def _evict_expired(self, now: float) -> None:
        # at most one sweep per window
        if self._swept_at is not None and now - self._swept_at < self.window:
            return
        self._swept_at = now
        expired = [k for k, (started, _) in self._counters.items() if now - started >= self.window]
        for key in expired:
            del self._counters[key]

    def hit(self, key: str, now: Optional[float] = None) -> Tuple[bool, int, float]:
        """Count one request; returns (allowed, remaining, seconds until reset)."""
        now = time.monotonic() if now is None else now
        with self._lock:
            self._evict_expired(now)
            started, count = self._counters.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            count += 1
            self._counters[key] = (started, count)
        reset_in = max(self.window - (now - started), 0)
        if count > self.limit:
            return False, 0, reset_in
        return True, self.limit - count, reset_in

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._swept_at = None


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: RateLimiter, prefix: str = "/api"):
        super().__init__(app)
        self.limiter = limiter
        self.prefix = prefix

    async def dispatch(self, request, call_next):
        if not request.url.path.startswith(self.prefix):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        allowed, remaining, reset_in = self.limiter.hit(client)
        if not allowed:
            logger.warning("Rate limit exceeded for %s", client)
            return JSONResponse(
                status_code=429,
                content={"status": "fail", "message": "Too many requests from this IP. Please try again in an hour."},
                headers={"Retry-After": str(int(reset_in) + 1)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limiter.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
