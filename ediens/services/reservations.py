"""
Ediens Backend — Reservation Coordinator
==========================================

What:  Applies the side effects of a claim transition to the food post and
       to user ledgers, inside the caller's transaction.
Why:   Counters that are incremented and decremented drift as soon as one
       write path forgets to do it. Here every derived field is recomputed
       from the claims table on each transition, so it is correct after
       any sequence of transitions.
How:   Stateless async functions taking the open AsyncSession and the
       already-locked FoodPost row. The caller owns commit/rollback.

Derived state maintained here:
    food_posts.current_reservations  = COUNT(active claims)
    food_posts.status                = available / reserved / claimed
    food_posts.urgency               = bucket(hours until expiry)
    users.eco_points                 += points_per_unit * quantity (pickup)
    users.rating / total_ratings     running average (review)
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.config import settings
from ediens.models.claim import ACTIVE_STATUSES, Claim, ClaimStatus
from ediens.models.common import as_utc
from ediens.models.food_post import FoodPost, PostStatus, Urgency
from ediens.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimTally:
    """Aggregate view of one post's claims, read in a single query."""

    active_count: int = 0
    active_quantity: int = 0
    confirmed_count: int = 0
    picked_up_quantity: int = 0


# ── Pure helpers ──────────────────────────────────────────────────────────


def compute_urgency(expiry_date: datetime, now: datetime) -> Urgency:
    """
    Bucket time-to-expiry into an urgency level.

    <= 2h (or already past) critical, <= 24h high, <= 72h medium, else low.
    """
    hours = (as_utc(expiry_date) - now).total_seconds() / 3600
    if hours <= 2:
        return Urgency.CRITICAL
    if hours <= 24:
        return Urgency.HIGH
    if hours <= 72:
        return Urgency.MEDIUM
    return Urgency.LOW


def eco_points_for(quantity: int) -> int:
    return math.floor(quantity * settings.eco_points_per_unit)


def next_rating_average(average: float, count: int, rating: int) -> float:
    """(avg * n + r) / (n + 1), rounded to 2 decimals."""
    return round((average * count + rating) / (count + 1), 2)


# ── Queries ───────────────────────────────────────────────────────────────


async def tally_claims(session: AsyncSession, food_post_id: uuid.UUID) -> ClaimTally:
    """Count and sum the post's claims by status (autoflushes pending writes)."""
    stmt = (
        select(Claim.status, func.count(Claim.id), func.coalesce(func.sum(Claim.quantity), 0))
        .where(Claim.food_post_id == food_post_id)
        .group_by(Claim.status)
    )
    rows = (await session.execute(stmt)).all()
    by_status = {status: (int(count), int(qty)) for status, count, qty in rows}

    active = [by_status.get(s, (0, 0)) for s in ACTIVE_STATUSES]
    return ClaimTally(
        active_count=sum(c for c, _ in active),
        active_quantity=sum(q for _, q in active),
        confirmed_count=by_status.get(ClaimStatus.CONFIRMED.value, (0, 0))[0],
        picked_up_quantity=by_status.get(ClaimStatus.PICKED_UP.value, (0, 0))[1],
    )


async def find_active_claim(
    session: AsyncSession,
    food_post_id: uuid.UUID,
    claimer_id: uuid.UUID,
) -> Optional[Claim]:
    stmt = select(Claim).where(
        Claim.food_post_id == food_post_id,
        Claim.claimer_id == claimer_id,
        Claim.status.in_(ACTIVE_STATUSES),
    )
    return (await session.execute(stmt)).scalars().first()


def remaining_quantity(post: FoodPost, tally: ClaimTally) -> int:
    return max(post.quantity - tally.active_quantity - tally.picked_up_quantity, 0)


def cap_reached(post: FoodPost, count: int) -> bool:
    return post.max_reservations is not None and count >= post.max_reservations


# ── Reconciliation ────────────────────────────────────────────────────────


async def reconcile_post(session: AsyncSession, post: FoodPost, now: datetime) -> ClaimTally:
    """
    Recompute every derived field on `post` from its claims.

    Status rules (only between the three claim-driven states; an expired or
    cancelled post is left alone):
        picked-up quantity covers the post   → claimed
        confirmed claims fill max_reservations → reserved
        otherwise                              → available
    """
    tally = await tally_claims(session, post.id)

    post.current_reservations = tally.active_count
    post.urgency = compute_urgency(post.expiry_date, now).value

    if post.status in (
        PostStatus.AVAILABLE.value,
        PostStatus.RESERVED.value,
        PostStatus.CLAIMED.value,
    ):
        if tally.picked_up_quantity >= post.quantity:
            new_status = PostStatus.CLAIMED
        elif cap_reached(post, tally.confirmed_count):
            new_status = PostStatus.RESERVED
        else:
            new_status = PostStatus.AVAILABLE
        if post.status != new_status.value:
            logger.info(
                "Food post %s status %s -> %s", post.id, post.status, new_status.value
            )
            post.status = new_status.value

    return tally


async def award_pickup_points(session: AsyncSession, claim: Claim) -> int:
    """Credit the claimant's eco-points ledger for a completed pickup."""
    points = eco_points_for(claim.quantity)
    claimer = await session.get(User, claim.claimer_id, with_for_update=True)
    if claimer is not None:
        claimer.eco_points = (claimer.eco_points or 0) + points
    claim.eco_points_earned = points
    return points


async def apply_owner_rating(session: AsyncSession, owner_id: uuid.UUID, rating: int) -> None:
    """Fold one new rating into the post owner's running average."""
    owner = await session.get(User, owner_id, with_for_update=True)
    if owner is None:
        return
    owner.rating = next_rating_average(owner.rating or 0.0, owner.total_ratings or 0, rating)
    owner.total_ratings = (owner.total_ratings or 0) + 1
