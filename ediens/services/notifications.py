"""
Ediens Backend — Notification Relay
=====================================

What:  In-process pub/sub that fans claim and message events out to the
       WebSocket connections of the users involved.
Why:   Claimants and post owners see status changes without polling.
How:   One bounded asyncio.Queue per open connection, grouped by user id.
       publish() is best-effort: no subscriber means the event is dropped,
       a full queue drops the event for that connection only.
When:  ClaimService publishes only after its transaction has committed, so
       a rolled-back transition never produces an event.

Limits:
    Single-process only. Running several workers needs a shared broker.
"""

import asyncio
import enum
import logging
import uuid
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

QUEUE_SIZE = 100


class EventType(str, enum.Enum):
    CLAIM_CREATED = "claim_created"
    CLAIM_STATUS_CHANGED = "claim_status_changed"
    PICKUP_CONFIRMED = "pickup_confirmed"
    MESSAGE_RECEIVED = "message_received"


class ClaimEventPayload(BaseModel):
    """Wire payload: {claimId, postId, actorId, newStatus}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    claim_id: uuid.UUID
    post_id: uuid.UUID
    actor_id: Optional[uuid.UUID] = Field(default=None, description="None for the expiry sweep")
    new_status: str


class MessageEventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message_id: uuid.UUID
    sender_id: uuid.UUID
    food_post_id: Optional[uuid.UUID] = None
    content: str


class Notification(BaseModel):
    event: EventType
    data: dict

    def to_wire(self) -> dict:
        return {"event": self.event.value, "data": self.data}


def claim_notification(
    event: EventType,
    claim_id: uuid.UUID,
    post_id: uuid.UUID,
    actor_id: Optional[uuid.UUID],
    new_status: str,
) -> Notification:
    payload = ClaimEventPayload(
        claim_id=claim_id, post_id=post_id, actor_id=actor_id, new_status=new_status
    )
    return Notification(event=event, data=payload.model_dump(mode="json", by_alias=True))


class NotificationBus:
    """Per-user fan-out of notifications to live subscriber queues."""

    def __init__(self, queue_size: int = QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: Dict[uuid.UUID, List[asyncio.Queue]] = {}

    def subscribe(self, user_id: uuid.UUID) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(user_id, []).append(queue)
        logger.debug("Subscriber added for user %s", user_id)
        return queue

    def unsubscribe(self, user_id: uuid.UUID, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(user_id, None)

    def publish(self, user_id: uuid.UUID, notification: Notification) -> int:
        """Deliver to every open connection of one user; returns deliveries."""
        delivered = 0
        for queue in list(self._subscribers.get(user_id, [])):
            try:
                queue.put_nowait(notification.to_wire())
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Notification queue full for user %s; event dropped", user_id)
        return delivered

    def publish_many(self, user_ids: Iterable[uuid.UUID], notification: Notification) -> int:
        # A user appearing twice (claimant == actor) still gets one copy
        return sum(self.publish(uid, notification) for uid in dict.fromkeys(user_ids))

    @property
    def subscriber_count(self) -> int:
        return sum(len(queues) for queues in self._subscribers.values())


notification_bus = NotificationBus()
