"""
Ediens Backend — Notification WebSocket
=========================================

What:  WS /ws/notifications?token=<jwt> streams the authenticated user's
       events (claim_created, claim_status_changed, pickup_confirmed,
       message_received) as JSON objects: {"event": ..., "data": {...}}.
How:   Subscribes a queue on the NotificationBus, then runs two tasks until
       either ends: one forwards queued events to the socket, the other
       reads from the socket so a disconnect is noticed promptly.
Auth:  Browsers cannot set headers on WebSocket upgrades, so the access
       token travels in the query string. Invalid tokens are closed with
       1008 before the handshake is accepted.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ediens.database import get_session_factory
from ediens.dependencies import user_from_token
from ediens.exceptions import AuthenticationError
from ediens.services.notifications import notification_bus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"])


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    token: str = Query(default=""),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> None:
    try:
        async with session_factory() as session:
            user = await user_from_token(session, token)
    except AuthenticationError as e:
        logger.info("Notification socket rejected: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue = notification_bus.subscribe(user.id)
    logger.info("Notification socket opened for user %s", user.id)

    async def forward() -> None:
        while True:
            await websocket.send_json(await queue.get())

    async def watch() -> None:
        # Client messages carry no meaning; reading detects disconnects
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(forward()), asyncio.create_task(watch())]
    try:
        await websocket.send_json({"event": "connected", "data": {"userId": str(user.id)}})
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning("Notification socket for user %s failed: %s", user.id, str(error))
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        notification_bus.unsubscribe(user.id, queue)
        logger.info("Notification socket closed for user %s", user.id)
