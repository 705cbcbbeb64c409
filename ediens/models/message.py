"""
Ediens Backend — Message SQLAlchemy Model
===========================================

What:  ORM model for the `messages` table: direct messages between users,
       optionally about a food post.
Notes:
    - Deletion is soft (is_deleted + deleted_at); content is kept for
      moderation but rendered as "[Message deleted]".
    - The first edit stores the pre-edit text in original_content.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ediens.database import Base
from ediens.models.common import TimestampMixin, UUIDPrimaryKeyMixin


class MessageType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    LOCATION = "location"
    SYSTEM = "system"


class Message(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "messages"

    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    food_post_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("food_posts.id", ondelete="SET NULL"), nullable=True
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default=MessageType.TEXT.value
    )
    media_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    original_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    reply_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    # "metadata" is reserved on declarative classes
    extra: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_messages_pair", "sender_id", "receiver_id", "created_at"),
        Index("idx_messages_receiver_unread", "receiver_id", "is_read"),
        Index("idx_messages_food_post", "food_post_id"),
    )

    @property
    def display_content(self) -> str:
        if self.is_deleted:
            return "[Message deleted]"
        if self.is_edited:
            return f"{self.content} (edited)"
        return self.content

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, sender={self.sender_id}, receiver={self.receiver_id})>"
