"""
Ediens Backend — Message Schemas
==================================

What:  Send/edit bodies and the message, conversation and unread-count shapes.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ediens.models.message import Message, MessageType
from ediens.models.common import as_utc
from ediens.schemas.user import UserSummary


class SendMessageRequest(BaseModel):
    receiver_id: uuid.UUID
    content: str = Field(min_length=1, max_length=1000)
    message_type: MessageType = MessageType.TEXT
    food_post_id: Optional[uuid.UUID] = None
    reply_to_id: Optional[uuid.UUID] = None
    media_url: Optional[str] = Field(default=None, max_length=255)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def location_needs_coordinates(self) -> "SendMessageRequest":
        if self.message_type is MessageType.LOCATION and (
            self.latitude is None or self.longitude is None
        ):
            raise ValueError("Location messages need latitude and longitude")
        if self.message_type is MessageType.SYSTEM:
            raise ValueError("System messages cannot be sent by users")
        return self


class EditMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class MessageOut(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    food_post_id: Optional[uuid.UUID] = None
    content: str = Field(description="Display content: deleted/edited markers applied")
    message_type: str
    media_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_read: bool
    read_at: Optional[datetime] = None
    is_edited: bool
    is_deleted: bool
    reply_to_id: Optional[uuid.UUID] = None
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "MessageOut":
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            food_post_id=message.food_post_id,
            content=message.display_content,
            message_type=message.message_type,
            media_url=None if message.is_deleted else message.media_url,
            latitude=message.latitude,
            longitude=message.longitude,
            is_read=message.is_read,
            read_at=as_utc(message.read_at),
            is_edited=message.is_edited,
            is_deleted=message.is_deleted,
            reply_to_id=message.reply_to_id,
            created_at=as_utc(message.created_at),
        )


class ConversationSummary(BaseModel):
    partner: UserSummary
    last_message: MessageOut
    unread_count: int


class ConversationListResponse(BaseModel):
    conversations: List[ConversationSummary]


class MessageListResponse(BaseModel):
    messages: List[MessageOut]
    total_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkReadResponse(BaseModel):
    message: str
    updated: int
