"""
Ediens Backend — Claim Schemas
================================

What:  One typed command per claim operation, plus the response shapes.
Why:   A claim transition is never "patch arbitrary fields". Each endpoint
       accepts exactly the inputs its transition needs; the status endpoint
       accepts only the two statuses an owner may set.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ediens.models.claim import Claim
from ediens.models.common import as_utc, utcnow
from ediens.models.food_post import FoodPost
from ediens.models.user import User
from ediens.schemas.common import PaginationMeta
from ediens.schemas.food_post import PostSummary
from ediens.schemas.user import UserSummary


# ══════════════════════════════════════════════════════════════════════════
# Commands
# ══════════════════════════════════════════════════════════════════════════


class CreateClaimCommand(BaseModel):
    food_post_id: uuid.UUID
    quantity: int = Field(default=1, ge=1)
    pickup_date: datetime
    pickup_time: Optional[str] = Field(
        default=None,
        pattern=r"^([01]\d|2[0-3]):[0-5]\d$",
        description="Preferred pickup time, HH:MM",
    )
    message: Optional[str] = Field(default=None, max_length=500)
    is_urgent: bool = False

    @field_validator("pickup_date")
    @classmethod
    def pickup_in_future(cls, v: datetime) -> datetime:
        v = as_utc(v)
        if v <= utcnow():
            raise ValueError("Pickup date must be in the future")
        return v


class UpdateClaimStatusCommand(BaseModel):
    """Owner decision on a claim: accept it or turn it down."""
    status: Literal["confirmed", "cancelled"]


class RateClaimCommand(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: Optional[str] = Field(default=None, max_length=500)


# ══════════════════════════════════════════════════════════════════════════
# Responses
# ══════════════════════════════════════════════════════════════════════════


def describe_time_until(pickup: datetime, now: datetime) -> str:
    """Human-readable countdown: 'Overdue', 'N days', 'Xh Ym' or 'Xm'."""
    seconds = (as_utc(pickup) - now).total_seconds()
    if seconds < 0:
        return "Overdue"
    minutes = int(seconds // 60)
    hours, minutes = divmod(minutes, 60)
    days = hours // 24
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''}"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class ClaimResponse(BaseModel):
    id: uuid.UUID
    food_post_id: uuid.UUID
    claimer_id: uuid.UUID
    status: str
    quantity: int
    pickup_date: datetime
    pickup_time: Optional[str] = None
    message: Optional[str] = None
    is_urgent: bool
    confirmed_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    rating: Optional[int] = None
    review: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    eco_points_earned: int
    created_at: datetime
    updated_at: datetime
    is_overdue: bool = Field(description="Confirmed and past pickup date, computed at read time")
    time_until_pickup: Optional[str] = None
    food_post: Optional[PostSummary] = None
    claimer: Optional[UserSummary] = None

    @classmethod
    def from_claim(
        cls,
        claim: Claim,
        post: Optional[FoodPost] = None,
        claimer: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> "ClaimResponse":
        now = now or utcnow()
        return cls(
            id=claim.id,
            food_post_id=claim.food_post_id,
            claimer_id=claim.claimer_id,
            status=claim.status,
            quantity=claim.quantity,
            pickup_date=as_utc(claim.pickup_date),
            pickup_time=claim.pickup_time,
            message=claim.message,
            is_urgent=claim.is_urgent,
            confirmed_at=as_utc(claim.confirmed_at),
            picked_up_at=as_utc(claim.picked_up_at),
            cancelled_at=as_utc(claim.cancelled_at),
            expired_at=as_utc(claim.expired_at),
            rating=claim.rating,
            review=claim.review,
            reviewed_at=as_utc(claim.reviewed_at),
            eco_points_earned=claim.eco_points_earned,
            created_at=as_utc(claim.created_at),
            updated_at=as_utc(claim.updated_at),
            is_overdue=claim.is_overdue(now),
            time_until_pickup=describe_time_until(claim.pickup_date, now) if claim.is_active else None,
            food_post=PostSummary.model_validate(post) if post is not None else None,
            claimer=UserSummary.model_validate(claimer) if claimer is not None else None,
        )


class ClaimListResponse(BaseModel):
    claims: List[ClaimResponse]
    pagination: PaginationMeta


class PickupResponse(BaseModel):
    message: str
    claim: ClaimResponse
    eco_points_earned: int


class ClaimStatsResponse(BaseModel):
    pending: int = 0
    confirmed: int = 0
    picked_up: int = 0
    cancelled: int = 0
    expired: int = 0
    total: int = 0
    total_eco_points: int = 0
