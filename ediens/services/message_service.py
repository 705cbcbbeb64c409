"""
Ediens Backend — Message Service
==================================

What:  Direct messaging between users: send, read a conversation, list
       conversations, unread counts, mark read, edit, soft delete, and
       messages tied to a food post.
Who:   routes/messages.py. New messages are relayed to the receiver as
       `message_received` notifications by the route after commit.

Rules:
    - no messages to yourself; the receiver must exist
    - only the sender edits or deletes; deleted messages cannot be edited
    - the first edit keeps the original text in original_content
    - reading a conversation marks the partner's messages as read
"""

import logging
import uuid
from typing import Dict, List, Tuple

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.exceptions import NotFoundError, UnauthorizedError, ValidationError
from ediens.models.common import utcnow
from ediens.models.food_post import FoodPost
from ediens.models.message import Message
from ediens.models.user import User
from ediens.schemas.message import (
    ConversationListResponse,
    ConversationSummary,
    EditMessageRequest,
    MessageListResponse,
    MessageOut,
    SendMessageRequest,
)
from ediens.schemas.user import UserSummary

logger = logging.getLogger(__name__)


def _between(a: uuid.UUID, b: uuid.UUID):
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b),
        and_(Message.sender_id == b, Message.receiver_id == a),
    )


class MessageService:

    async def _get_own_message(self, db: AsyncSession, actor_id: uuid.UUID, message_id: uuid.UUID) -> Message:
        message = await db.get(Message, message_id)
        if message is None:
            raise NotFoundError(resource="message", resource_id=str(message_id))
        if message.sender_id != actor_id:
            raise UnauthorizedError(message="You can only change your own messages")
        return message

    async def send_message(
        self,
        db: AsyncSession,
        sender_id: uuid.UUID,
        data: SendMessageRequest,
    ) -> MessageOut:
        if data.receiver_id == sender_id:
            raise ValidationError(message="You cannot send a message to yourself", field="receiver_id")
        if await db.get(User, data.receiver_id) is None:
            raise NotFoundError(resource="user", resource_id=str(data.receiver_id))
        if data.food_post_id is not None and await db.get(FoodPost, data.food_post_id) is None:
            raise NotFoundError(resource="food post", resource_id=str(data.food_post_id))
        if data.reply_to_id is not None:
            original = await db.get(Message, data.reply_to_id)
            if original is None or sender_id not in (original.sender_id, original.receiver_id):
                raise NotFoundError(resource="message", resource_id=str(data.reply_to_id))

        message = Message(
            sender_id=sender_id,
            receiver_id=data.receiver_id,
            food_post_id=data.food_post_id,
            content=data.content.strip(),
            message_type=data.message_type.value,
            media_url=data.media_url,
            latitude=data.latitude,
            longitude=data.longitude,
            reply_to_id=data.reply_to_id,
        )
        db.add(message)
        await db.flush()
        logger.info("Message %s sent from %s to %s", message.id, sender_id, data.receiver_id)
        return MessageOut.from_message(message)

    async def get_conversation(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        partner_id: uuid.UUID,
        page: int = 1,
        limit: int = 50,
    ) -> MessageListResponse:
        """Oldest-first page of a conversation; marks incoming messages read."""
        if await db.get(User, partner_id) is None:
            raise NotFoundError(resource="user", resource_id=str(partner_id))

        total = (
            await db.execute(select(func.count(Message.id)).where(_between(actor_id, partner_id)))
        ).scalar_one()
        newest_first = (
            await db.execute(
                select(Message)
                .where(_between(actor_id, partner_id))
                .order_by(Message.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        ).scalars().all()

        await self.mark_conversation_read(db, actor_id, partner_id)
        return MessageListResponse(
            messages=[MessageOut.from_message(m) for m in reversed(newest_first)],
            total_count=total,
        )

    async def list_conversations(self, db: AsyncSession, actor_id: uuid.UUID) -> ConversationListResponse:
        """
        One entry per partner: latest message and unread count, newest first.

        Grouped in SQL by partner, so only one row per conversation is
        loaded. Deleted messages neither count as unread nor show as latest.
        """
        partner = case(
            (Message.sender_id == actor_id, Message.receiver_id), else_=Message.sender_id
        ).label("partner_id")
        incoming_unread = and_(Message.receiver_id == actor_id, Message.is_read.is_(False))
        per_partner = (
            select(
                partner,
                func.max(Message.created_at).label("last_at"),
                func.sum(case((incoming_unread, 1), else_=0)).label("unread"),
            )
            .where(
                or_(Message.sender_id == actor_id, Message.receiver_id == actor_id),
                Message.is_deleted.is_(False),
            )
            .group_by(partner)
            .subquery()
        )

        rows = (
            await db.execute(
                select(Message, per_partner.c.partner_id, per_partner.c.unread)
                .join(
                    per_partner,
                    and_(
                        Message.created_at == per_partner.c.last_at,
                        _between(actor_id, per_partner.c.partner_id),
                    ),
                )
                .where(Message.is_deleted.is_(False))
                .order_by(Message.created_at.desc())
            )
        ).all()

        latest: Dict[uuid.UUID, Tuple[Message, int]] = {}
        for message, partner_id, unread in rows:
            # Two messages with the same timestamp: keep one
            latest.setdefault(partner_id, (message, int(unread or 0)))

        if not latest:
            return ConversationListResponse(conversations=[])
        partners = (
            await db.execute(select(User).where(User.id.in_(list(latest))))
        ).scalars().all()
        by_id = {user.id: user for user in partners}

        return ConversationListResponse(
            conversations=[
                ConversationSummary(
                    partner=UserSummary.model_validate(by_id[partner_id]),
                    last_message=MessageOut.from_message(message),
                    unread_count=unread,
                )
                for partner_id, (message, unread) in latest.items()
                if partner_id in by_id
            ]
        )

    async def unread_count(self, db: AsyncSession, actor_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count(Message.id)).where(
                Message.receiver_id == actor_id,
                Message.is_read.is_(False),
                Message.is_deleted.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_conversation_read(
        self, db: AsyncSession, actor_id: uuid.UUID, partner_id: uuid.UUID
    ) -> int:
        result = await db.execute(
            update(Message)
            .where(
                Message.sender_id == partner_id,
                Message.receiver_id == actor_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def edit_message(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        message_id: uuid.UUID,
        data: EditMessageRequest,
    ) -> MessageOut:
        message = await self._get_own_message(db, actor_id, message_id)
        if message.is_deleted:
            raise ValidationError(message="Deleted messages cannot be edited")
        if not message.is_edited:
            message.original_content = message.content
        message.content = data.content.strip()
        message.is_edited = True
        message.edited_at = utcnow()
        await db.flush()
        return MessageOut.from_message(message)

    async def delete_message(self, db: AsyncSession, actor_id: uuid.UUID, message_id: uuid.UUID) -> None:
        message = await self._get_own_message(db, actor_id, message_id)
        message.is_deleted = True
        message.deleted_at = utcnow()
        await db.flush()

    async def messages_for_post(
        self, db: AsyncSession, actor_id: uuid.UUID, food_post_id: uuid.UUID
    ) -> List[MessageOut]:
        """Messages about a post that the actor sent or received."""
        if await db.get(FoodPost, food_post_id) is None:
            raise NotFoundError(resource="food post", resource_id=str(food_post_id))
        messages = (
            await db.execute(
                select(Message)
                .where(
                    Message.food_post_id == food_post_id,
                    or_(Message.sender_id == actor_id, Message.receiver_id == actor_id),
                )
                .order_by(Message.created_at.asc())
            )
        ).scalars().all()
        return [MessageOut.from_message(m) for m in messages]


message_service = MessageService()
