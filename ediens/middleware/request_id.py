"""
Ediens Backend — Request ID Middleware
========================================

What:  Tags every request with a short ID and echoes it as X-Request-ID.
Why:   Log lines from one request (route, claim coordinator, retries) share
       the ID, and error bodies carry it so a user report can be matched to
       the server log.
How:   Reuses a client-supplied X-Request-ID when present, otherwise
       generates one; stores it in a ContextVar and on request.state.
When:  Outermost application middleware, so every later layer sees the ID.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── Context Variable ──────────────────────────────────────────────────────
# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


def current_request_id() -> str:
    return request_id_var.get("")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to each HTTP request.

    Client-provided IDs are accepted (so the frontend can tie a UI action to
    a log entry) but truncated to MAX_CLIENT_ID_LENGTH characters to keep
    log lines bounded.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get("X-Request-ID", "").strip()
        rid = supplied[:MAX_CLIENT_ID_LENGTH] if supplied else str(uuid.uuid4())[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
