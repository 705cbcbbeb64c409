"""
Ediens Backend — Message Route Handlers
=========================================

Endpoints:
    POST   /api/messages                          send
    GET    /api/messages/conversations            conversation list
    GET    /api/messages/unread/count             unread badge count
    GET    /api/messages/conversation/{user_id}   read a conversation
    PUT    /api/messages/conversation/{user_id}/read  mark as read
    GET    /api/messages/food-post/{post_id}      messages about a post
    PUT    /api/messages/{id}                     edit (sender)
    DELETE /api/messages/{id}                     soft delete (sender)

New messages are relayed to the receiver's open notification sockets in a
background task, which runs after the session has committed.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.database import get_db_session
from ediens.dependencies import get_current_user
from ediens.models.user import User
from ediens.schemas.common import ErrorResponse, MessageResponse
from ediens.schemas.message import (
    ConversationListResponse,
    EditMessageRequest,
    MarkReadResponse,
    MessageListResponse,
    MessageOut,
    SendMessageRequest,
    UnreadCountResponse,
)
from ediens.services.message_service import message_service
from ediens.services.notifications import (
    EventType,
    MessageEventPayload,
    Notification,
    notification_bus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["Messages"])


def _relay(message: MessageOut) -> None:
    payload = MessageEventPayload(
        message_id=message.id,
        sender_id=message.sender_id,
        food_post_id=message.food_post_id,
        content=message.content,
    )
    notification_bus.publish(
        message.receiver_id,
        Notification(
            event=EventType.MESSAGE_RECEIVED,
            data=payload.model_dump(mode="json", by_alias=True),
        ),
    )


@router.post(
    "",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Send a message",
)
async def send_message(
    data: SendMessageRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageOut:
    message = await message_service.send_message(db, current_user.id, data)
    background_tasks.add_task(_relay, message)
    return message


@router.get("/conversations", response_model=ConversationListResponse, summary="List conversations")
async def list_conversations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ConversationListResponse:
    return await message_service.list_conversations(db, current_user.id)


@router.get("/unread/count", response_model=UnreadCountResponse, summary="Unread message count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await message_service.unread_count(db, current_user.id))


@router.get(
    "/conversation/{user_id}",
    response_model=MessageListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Messages exchanged with a user",
)
async def get_conversation(
    user_id: UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageListResponse:
    return await message_service.get_conversation(db, current_user.id, user_id, page, limit)


@router.put(
    "/conversation/{user_id}/read",
    response_model=MarkReadResponse,
    summary="Mark a conversation as read",
)
async def mark_conversation_read(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MarkReadResponse:
    updated = await message_service.mark_conversation_read(db, current_user.id, user_id)
    return MarkReadResponse(message="Messages marked as read", updated=updated)


@router.get(
    "/food-post/{post_id}",
    response_model=List[MessageOut],
    responses={404: {"model": ErrorResponse}},
    summary="Messages about a food post",
)
async def messages_for_post(
    post_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[MessageOut]:
    return await message_service.messages_for_post(db, current_user.id, post_id)


@router.put(
    "/{message_id}",
    response_model=MessageOut,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Edit a message",
)
async def edit_message(
    message_id: UUID,
    data: EditMessageRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageOut:
    return await message_service.edit_message(db, current_user.id, message_id, data)


@router.delete(
    "/{message_id}",
    response_model=MessageResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Delete a message",
)
async def delete_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await message_service.delete_message(db, current_user.id, message_id)
    return MessageResponse(message="Message deleted successfully")
