"""
Ediens Backend — Rate Limiting Middleware
===========================================

What:  Per-IP sliding window limiter for the HTTP API.
Why:   Keeps a single client from hammering claim creation or uploads.
How:   Each IP keeps a deque of request timestamps; entries older than the
       window are dropped, and a full window is answered with 429 and a
       Retry-After header.

Scope:
    In-memory, so limits are per process. WebSocket upgrades and the
    health/upload paths are not counted.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ediens.config import settings
from ediens.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding window rate limiter.

    Configuration (from settings):
        rate_limit_requests: max requests per window per IP
        rate_limit_window:   window length in seconds
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    EXCLUDED_PREFIXES = ("/uploads/",)

    def __init__(self, app, max_requests: int = None, window_seconds: int = None, **kwargs):
        super().__init__(app, **kwargs)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._seen = 0

    def _is_excluded(self, path: str) -> bool:
        return path in self.EXCLUDED_PATHS or path.startswith(self.EXCLUDED_PREFIXES)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self._is_excluded(request.url.path):
            return await call_next(request)

        client_ip = (
            getattr(request.client, "host", "unknown")
            if request.client
            else "unknown"
        )

        now = time.monotonic()
        window_start = now - self.window_seconds
        timestamps = self._requests[client_ip]

        # ── Sliding window: drop expired entries ──────────────────────────
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(timestamps),
                self.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)

        self._seen += 1
        if self._seen % CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        """Forget IPs whose newest request has left the window."""
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
