"""
Ediens Backend — Claim SQLAlchemy Model
=========================================

What:  ORM model for the `claims` table: one user's request to receive
       (part of) one food post.
Who:   Written only by ClaimService, through the state machine in
       ediens.services.claim_state.

Lifecycle:
    pending ──owner──▶ confirmed ──claimant──▶ picked_up ──claimant──▶ (rated once)
       │                   │  └──system──▶ expired
       └──owner/claimant──▶ cancelled ◀──owner/claimant──┘

    Terminal states: picked_up, cancelled, expired. Claims are never deleted.

Integrity:
    - uq_claims_active_per_user: partial unique index on
      (food_post_id, claimer_id) WHERE status IN ('pending', 'confirmed').
      A second active claim by the same user on the same post fails at the
      database even if two requests pass the guard at the same moment.
    - version_id: optimistic lock counter; a concurrent writer that read a
      stale version gets StaleDataError and is retried.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ediens.database import Base
from ediens.models.common import TimestampMixin, UUIDPrimaryKeyMixin, as_utc


class ClaimStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


ACTIVE_STATUSES = (ClaimStatus.PENDING.value, ClaimStatus.CONFIRMED.value)
TERMINAL_STATUSES = (
    ClaimStatus.PICKED_UP.value,
    ClaimStatus.CANCELLED.value,
    ClaimStatus.EXPIRED.value,
)

_ACTIVE_PREDICATE = text("status IN ('pending', 'confirmed')")


class Claim(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A single claim on a food post."""

    __tablename__ = "claims"

    food_post_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("food_posts.id", ondelete="CASCADE"),
        nullable=False,
    )
    claimer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClaimStatus.PENDING.value
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # ── Pickup Arrangement ────────────────────────────────────────────────
    pickup_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pickup_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)  # HH:MM
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ── Transition Stamps ─────────────────────────────────────────────────
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Review (write-once, picked_up only) ───────────────────────────────
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    eco_points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'picked_up', 'cancelled', 'expired')",
            name="ck_claims_status_valid",
        ),
        CheckConstraint("quantity >= 1", name="ck_claims_quantity_positive"),
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="ck_claims_rating_range",
        ),
        Index(
            "uq_claims_active_per_user",
            "food_post_id",
            "claimer_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        Index("idx_claims_claimer_status", "claimer_id", "status"),
        Index("idx_claims_post_status", "food_post_id", "status"),
        Index("idx_claims_status_pickup", "status", "pickup_date"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_overdue(self, now: datetime) -> bool:
        """Confirmed but the pickup date has passed (the sweep has not run yet)."""
        return (
            self.status == ClaimStatus.CONFIRMED.value
            and as_utc(self.pickup_date) < now
        )

    def __repr__(self) -> str:
        return f"<Claim(id={self.id}, status='{self.status}', quantity={self.quantity})>"
