"""
Ediens Backend — User SQLAlchemy Model
========================================

What:  ORM model for the `users` table: accounts, locations and reputation.
Who:   AuthService (register/login), UserService (profiles, leaderboard),
       and the claim side-effect coordinator, which writes two ledgers here:
         - eco_points:  incremented on every confirmed pickup
         - rating / total_ratings: running average of claim ratings the
           user received as a post owner

Column Notes:
    - password_hash holds a bcrypt hash; the plain password never reaches the DB
    - rating is kept to 2 decimals (0.00 - 5.00)
    - preferences is free-form JSON owned by the client apps
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from ediens.database import Base
from ediens.models.common import TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A registered person or business sharing or receiving food."""

    __tablename__ = "users"

    # ── Credentials ───────────────────────────────────────────────────────
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── Profile ───────────────────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # ── Location ──────────────────────────────────────────────────────────
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # ── Business Accounts ─────────────────────────────────────────────────
    is_business: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    business_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ── Reputation & Rewards ──────────────────────────────────────────────
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    eco_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_users_city", "city"),
        Index("idx_users_eco_points", "eco_points"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def display_name(self) -> str:
        if self.is_business and self.business_name:
            return self.business_name
        return self.full_name

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
