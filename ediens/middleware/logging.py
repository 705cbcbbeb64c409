"""
Ediens Backend — Request Logging Middleware
=============================================

What:  One access-log line per HTTP request: method, path, matched route,
       status, duration, request ID and client IP.
Why:   Claim transitions are short but can retry under contention; the
       duration column makes slow paths visible without a profiler, and the
       route template ("/api/claims/{claim_id}/pickup") lets log tooling
       group requests per endpoint instead of per claim id.
How:   Times the downstream call and picks the level from the outcome:
       5xx ERROR, 4xx or slower than SLOW_REQUEST_MS WARNING, otherwise
       INFO. The structured fields are also passed via `extra` for JSON log
       handlers.

Privacy:
    Logged: method, path, status, duration, IP, request ID
    Not logged: bodies (passwords, messages), Authorization headers, uploads
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ediens.middleware.request_id import request_id_var

logger = logging.getLogger("ediens.access")

# Polled by load balancers, or fetched by every list screen
QUIET_PATHS = {"/health"}
QUIET_PREFIXES = ("/uploads/",)

SLOW_REQUEST_MS = 1000.0


def _level_for(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400 or duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request/response pair with timing and correlation ID."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS or path.startswith(QUIET_PREFIXES):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        # The router stores the matched route in the shared scope
        route = getattr(request.scope.get("route"), "path", path)
        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        status = response.status_code

        logger.log(
            _level_for(status, duration_ms),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "route": route,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
