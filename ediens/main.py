"""
Ediens Backend — FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes app configuration, middleware registration, route mounting,
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn ediens.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌──────────┐ ┌────────────┐ ┌─────────┐                 │
    │  │  Req ID  │→│ Rate Limit │→│ Logging │→ GZip → CORS    │
    │  └──────────┘ └────────────┘ └─────────┘                 │
    │                                                          │
    │  Routes:                                                 │
    │  /api/auth  /api/posts  /api/claims  /api/messages       │
    │  /api/users  /uploads  /ws/notifications  /health        │
    │                                                          │
    │  Background:                                             │
    │  ExpirySweeper (overdue claims, expired posts)           │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (logged, not fatal)
    3. Create storage directory
    4. Start the expiry sweeper

    Shutdown:
    1. Stop the sweeper
    2. Dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from ediens import __version__
from ediens.config import settings
from ediens.database import async_session_factory, dispose_engine
from ediens.exceptions import (
    AlreadyRatedError,
    AuthenticationError,
    CapacityExceededError,
    ClaimConflictError,
    ConflictError,
    DatabaseError,
    DuplicateClaimError,
    EdiensError,
    FileStorageError,
    InvalidTransitionError,
    NotFoundError,
    PostUnavailableError,
    RateLimitExceededError,
    UnauthorizedError,
    ValidationError,
)
from ediens.middleware.logging import RequestLoggingMiddleware
from ediens.middleware.rate_limit import RateLimitMiddleware
from ediens.middleware.request_id import RequestIDMiddleware, request_id_var
from ediens.routes import auth, claims, files, health, messages, notifications, posts, users
from ediens.services.expiry import ExpirySweeper

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the whole application.

    Format: 2024-01-15T12:00:00 [INFO] ediens.services.claim_service: ...

    Third-party loggers that emit a line per query or connection are held
    at WARNING.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Ediens Backend %s starting up...", __version__)

    # Logged rather than fatal so /health can still report the problem
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    sweeper = None
    if settings.expiry_sweep_enabled:
        sweeper = ExpirySweeper(async_session_factory, settings.expiry_sweep_interval)
        sweeper.start()
    app.state.expiry_sweeper = sweeper

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Ediens Backend shutting down...")
    if sweeper is not None:
        await sweeper.stop()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

# Most specific class first; the first isinstance match wins
ERROR_RESPONSES: Tuple[Tuple[Type[EdiensError], int, str], ...] = (
    (ValidationError, 400, "validation_error"),
    (AuthenticationError, 401, "authentication_error"),
    (UnauthorizedError, 403, "unauthorized"),
    (NotFoundError, 404, "not_found"),
    (InvalidTransitionError, 409, "invalid_transition"),
    (CapacityExceededError, 409, "capacity_exceeded"),
    (DuplicateClaimError, 409, "duplicate_claim"),
    (AlreadyRatedError, 409, "already_rated"),
    (PostUnavailableError, 409, "post_unavailable"),
    (ConflictError, 409, "conflict"),
    (ClaimConflictError, 409, "conflict"),
    (RateLimitExceededError, 429, "rate_limit_exceeded"),
)

# Server-side failures: the client gets a generic message, the log gets context
SERVER_ERRORS: Dict[Type[EdiensError], str] = {
    DatabaseError: "Database error",
    FileStorageError: "File storage error",
}


def error_status(exc: EdiensError) -> Tuple[int, str]:
    """HTTP status and machine-readable error code for a domain exception."""
    for exc_type, status_code, code in ERROR_RESPONSES:
        if isinstance(exc, exc_type):
            return status_code, code
    return 500, "server_error"


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the EdiensError hierarchy to JSON error responses.

    Body shape for every handled error:
        {"error": <code>, "message": <text>, "details": {...}, "request_id": <id>}

    Security: 5xx bodies never carry paths, SQL or stack traces; those are
    logged server-side only.
    """

    @app.exception_handler(EdiensError)
    async def handle_ediens_error(request: Request, exc: EdiensError):
        rid = request_id_var.get("")
        status_code, code = error_status(exc)

        if status_code >= 500:
            label = SERVER_ERRORS.get(type(exc), "Application error")
            logger.error("[%s] %s: %s | Context: %s", rid, label, exc.message, exc.context)
            message = exc.message if isinstance(exc, FileStorageError) else (
                "An internal error occurred. Please try again later."
            )
            return JSONResponse(
                status_code=status_code,
                content={"error": "server_error", "message": message, "request_id": rid},
            )

        if status_code == 409:
            logger.info("[%s] Conflict (%s): %s", rid, code, exc.message)
        elif status_code != 404:
            logger.warning("[%s] %s: %s", rid, code, exc.message)

        headers = {}
        if isinstance(exc, RateLimitExceededError):
            headers["Retry-After"] = str(exc.retry_after)
        elif isinstance(exc, AuthenticationError):
            headers["WWW-Authenticate"] = "Bearer"

        return JSONResponse(
            status_code=status_code,
            content={
                "error": code,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
            headers=headers or None,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: generic 500 with a request ID, stack trace logged only."""
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Ediens API",
        description=(
            "Food-sharing marketplace: publish surplus food, claim it, "
            "arrange pickup, and rate the exchange."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Executes in reverse order of addition: RequestID runs first so even
    # rate-limited responses carry an ID.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(posts.router)
    app.include_router(claims.router)
    app.include_router(messages.router)
    app.include_router(users.router)
    app.include_router(files.router)
    app.include_router(notifications.router)

    return app


app = create_app()
