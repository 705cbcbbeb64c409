"""
Ediens Backend — Expiry Sweeper
=================================

What:  Periodic background task that
         - moves confirmed claims past their pickup date to `expired`
           (through ClaimService, as the system actor)
         - marks food posts past their expiry date as `expired`, one
           transaction per post
When:  Started in the FastAPI lifespan when settings.expiry_sweep_enabled;
       cancelled on shutdown. run_once() is callable directly.

A failed sweep is logged and retried on the next tick; it never stops the
loop.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ediens.exceptions import ConflictError
from ediens.models.common import utcnow
from ediens.services.claim_service import ClaimService
from ediens.services.notifications import NotificationBus, notification_bus
from ediens.services.post_service import post_service

logger = logging.getLogger(__name__)


class ExpirySweeper:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: int,
        bus: NotificationBus = notification_bus,
    ):
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._claims = ClaimService(session_factory, bus)
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> dict:
        """One sweep: claims first, so their posts are reconciled before expiring."""
        expired_claims = await self._claims.expire_overdue_claims()
        expired_posts = await self._expire_posts()
        return {"claims": expired_claims, "posts": expired_posts}

    async def _expire_posts(self) -> int:
        """Each post expires in its own transaction; a lost race skips only that post."""
        now = utcnow()
        async with self._session_factory() as session:
            post_ids = await post_service.overdue_post_ids(session, now)

        expired = 0
        for post_id in post_ids:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        if await post_service.expire_post(session, post_id, now):
                            expired += 1
            except ConflictError as e:
                logger.info("Skipping expiry of food post %s: %s", post_id, e.message)
        if expired:
            logger.info("Expired %d food posts", expired)
        return expired

    async def _loop(self) -> None:
        while True:
            try:
                result = await self.run_once()
                logger.debug("Expiry sweep finished: %s", result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Expiry sweep failed: %s", str(e), exc_info=True)
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="expiry-sweeper")
            logger.info("Expiry sweeper started (every %ds)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")
