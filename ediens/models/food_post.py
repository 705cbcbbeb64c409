"""
Ediens Backend — FoodPost SQLAlchemy Model
============================================

What:  ORM model for the `food_posts` table: an item of surplus food on offer.
Who:   PostService for CRUD/search, ClaimService and the reservation
       coordinator for capacity bookkeeping.

Derived Columns (never written by clients):
    - current_reservations: COUNT of active (pending/confirmed) claims,
      recomputed inside every claim transition
    - urgency: bucketed hours-to-expiry, recomputed on write
    - is_free / discount_percentage: derived from price fields
    - status: available → reserved (confirmed claims fill max_reservations)
      → claimed (picked-up quantity covers the post); expired/cancelled are
      set by the expiry sweep and by the owner

Concurrency:
    version_id is an optimistic lock counter. Two claim transitions that
    both touch this row cannot both commit; the loser gets StaleDataError
    and is retried by ClaimService. View-count bumps use a Core UPDATE and
    do not touch the version.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from ediens.database import Base
from ediens.models.common import TimestampMixin, UUIDPrimaryKeyMixin, as_utc


class PostStatus(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FoodCategory(str, enum.Enum):
    FRESH = "fresh"
    COOKED = "cooked"
    BAKERY = "bakery"
    PACKAGED = "packaged"
    FROZEN = "frozen"
    DAIRY = "dairy"
    OTHER = "other"


class FoodUnit(str, enum.Enum):
    PIECE = "piece"
    KG = "kg"
    G = "g"
    LITER = "liter"
    ML = "ml"
    PORTION = "portion"
    BOX = "box"
    BAG = "bag"


ALLERGENS = frozenset(
    {"Gluten", "Dairy", "Eggs", "Soy", "Nuts", "Peanuts", "Fish", "Shellfish"}
)
DIETARY_INFO = frozenset(
    {"vegetarian", "vegan", "gluten-free", "dairy-free", "nut-free", "halal", "kosher"}
)


class FoodPost(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A single offer of surplus food by one user."""

    __tablename__ = "food_posts"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owner of the post",
    )

    # ── Description ───────────────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default=FoodUnit.PIECE.value)

    # ── Pricing ───────────────────────────────────────────────────────────
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    original_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    discount_percentage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relative storage paths: [{"url": ..., "thumbnail": ...}, ...]
    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # ── Pickup Location ───────────────────────────────────────────────────
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    pickup_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Freshness ─────────────────────────────────────────────────────────
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    urgency: Mapped[str] = mapped_column(String(10), nullable=False, default=Urgency.MEDIUM.value)

    allergens: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    dietary_info: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    storage_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Availability ──────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PostStatus.AVAILABLE.value
    )
    # NULL means "no cap on confirmed claims"
    max_reservations: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_reservations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_business_post: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("idx_food_posts_user", "user_id"),
        Index("idx_food_posts_status_expiry", "status", "expiry_date"),
        Index("idx_food_posts_location", "latitude", "longitude"),
        Index("idx_food_posts_city", "city"),
        Index("idx_food_posts_category", "category"),
    )

    def is_available(self, now: datetime) -> bool:
        """Open for new claims: status available and not past expiry."""
        return (
            self.status == PostStatus.AVAILABLE.value
            and not self.is_expired
            and as_utc(self.expiry_date) > now
        )

    def __repr__(self) -> str:
        return f"<FoodPost(id={self.id}, title='{self.title}', status='{self.status}')>"
