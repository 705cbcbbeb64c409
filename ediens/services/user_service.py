"""
Ediens Backend — User Service
===============================

What:  Profiles, locations, personal stats and the eco-points leaderboard.
Who:   routes/auth.py (own profile) and routes/users.py (public views).
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.exceptions import NotFoundError
from ediens.models.claim import Claim
from ediens.models.common import utcnow
from ediens.models.food_post import FoodPost
from ediens.models.user import User
from ediens.schemas.user import (
    LeaderboardEntry,
    LeaderboardResponse,
    LocationUpdateRequest,
    ProfileUpdateRequest,
    PublicProfile,
    UserProfile,
    UserStatsResponse,
    UserSummary,
)

logger = logging.getLogger(__name__)


class UserService:

    async def get_public_profile(self, db: AsyncSession, user_id: uuid.UUID) -> PublicProfile:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return PublicProfile.model_validate(user)

    async def update_profile(
        self, db: AsyncSession, user: User, data: ProfileUpdateRequest
    ) -> UserProfile:
        for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(user, field, value)
        user.last_active = utcnow()
        await db.flush()
        logger.info("Profile updated for user %s", user.id)
        return UserProfile.model_validate(user)

    async def update_location(
        self, db: AsyncSession, user: User, data: LocationUpdateRequest
    ) -> UserProfile:
        user.latitude = data.latitude
        user.longitude = data.longitude
        if data.address is not None:
            user.address = data.address
        if data.city is not None:
            user.city = data.city
        await db.flush()
        return UserProfile.model_validate(user)

    async def set_avatar(self, db: AsyncSession, user: User, avatar_path: str) -> UserProfile:
        user.avatar = avatar_path
        await db.flush()
        return UserProfile.model_validate(user)

    async def get_stats(self, db: AsyncSession, user: User) -> UserStatsResponse:
        post_rows = (
            await db.execute(
                select(FoodPost.status, func.count(FoodPost.id))
                .where(FoodPost.user_id == user.id)
                .group_by(FoodPost.status)
            )
        ).all()
        claim_rows = (
            await db.execute(
                select(Claim.status, func.count(Claim.id))
                .where(Claim.claimer_id == user.id)
                .group_by(Claim.status)
            )
        ).all()
        posts = {status: int(count) for status, count in post_rows}
        claims = {status: int(count) for status, count in claim_rows}
        return UserStatsResponse(
            posts_by_status=posts,
            total_posts=sum(posts.values()),
            claims_by_status=claims,
            total_claims=sum(claims.values()),
            eco_points=user.eco_points,
            rating=user.rating,
            total_ratings=user.total_ratings,
        )

    async def leaderboard(
        self, db: AsyncSession, limit: int = 10, city: Optional[str] = None
    ) -> LeaderboardResponse:
        query = select(User).where(User.eco_points > 0)
        if city:
            query = query.where(func.lower(User.city) == city.strip().lower())
        users = (
            await db.execute(
                query.order_by(User.eco_points.desc(), User.created_at.asc()).limit(limit)
            )
        ).scalars().all()
        return LeaderboardResponse(
            entries=[
                LeaderboardEntry(
                    rank=index,
                    user=UserSummary.model_validate(user),
                    eco_points=user.eco_points,
                )
                for index, user in enumerate(users, start=1)
            ]
        )


user_service = UserService()
