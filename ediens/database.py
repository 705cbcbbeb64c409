"""
Ediens Backend — Database Session Management
==============================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependencies.
Why:   Centralizes all database connection logic in one place.
How:   Creates an async engine with connection pooling and exposes two
       dependencies:
         - get_session_factory(): the factory itself, for services that open
           their own transaction per unit of work (claim transitions)
         - get_db_session(): a request-scoped session that auto-commits on
           success and rolls back on error (everything else)
Who:   Used by route handlers via FastAPI's dependency injection system.
When:  Engine is created at module import; sessions are created per-request.

Testing:
    Tests override get_session_factory with a factory bound to an in-memory
    SQLite engine. get_db_session depends on it, so one override rewires
    both paths.
"""

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ediens.config import settings


# ── Engine Configuration ──────────────────────────────────────────────────
_engine_options = {
    "pool_pre_ping": settings.db_pool_pre_ping,
    "echo": settings.log_level == "DEBUG",
}
if not settings.is_sqlite:
    _engine_options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=3600,
    )

engine = create_async_engine(settings.database_url, **_engine_options)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: response schemas are built from ORM objects after
# the transaction has committed.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares one metadata object so Alembic and test fixtures can create the
    full schema from it.
    """
    pass


# ── Dependencies ──────────────────────────────────────────────────────────
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the application's session factory."""
    return async_session_factory


async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back and re-raises for the global error handler
        5. Always: closes the session (returns connection to pool)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """Closes all pooled connections during application shutdown."""
    await engine.dispose()
