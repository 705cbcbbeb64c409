"""
Ediens Backend — Food Post Service
====================================

What:  Business logic for food posts: create, read, search, nearby,
       trending, update, withdraw, image attachment, and the expiry sweep
       for posts past their expiry date.
Who:   Called by routes/posts.py, routes/users.py and the expiry sweeper.
How:   Stateless singleton; every method takes the request's AsyncSession.
       The session dependency commits on success and rolls back on error.

Derived fields (is_free, discount_percentage, urgency) are recomputed on
every write. Fields driven by claims (status between available/reserved/
claimed, current_reservations) are only ever set by the reservation
coordinator.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ediens.exceptions import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    PostUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from ediens.models.common import utcnow
from ediens.models.food_post import FoodPost, PostStatus, Urgency
from ediens.models.user import User
from ediens.schemas.common import PaginationMeta
from ediens.schemas.food_post import (
    FoodPostCreate,
    FoodPostListResponse,
    FoodPostResponse,
    FoodPostUpdate,
    PostFilters,
)
from ediens.schemas.user import UserSummary
from ediens.services import geo, reservations

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_POST = 10

# Optional columns an update may explicitly set back to null
_CLEARABLE_FIELDS = frozenset(
    {"subcategory", "original_price", "pickup_instructions", "storage_instructions", "max_reservations"}
)

_SORTS = {
    "created_at_desc": (FoodPost.created_at.desc(),),
    "created_at_asc": (FoodPost.created_at.asc(),),
    "expiry_asc": (FoodPost.expiry_date.asc(),),
    "price_asc": (FoodPost.price.asc(), FoodPost.created_at.desc()),
    "price_desc": (FoodPost.price.desc(), FoodPost.created_at.desc()),
    "popular": (FoodPost.view_count.desc(), FoodPost.created_at.desc()),
}


def apply_pricing(post: FoodPost) -> None:
    """is_free follows price; discount is derived from original_price."""
    post.is_free = post.price == 0
    if post.original_price and post.original_price > post.price:
        post.discount_percentage = round(
            (post.original_price - post.price) / post.original_price * 100
        )
    else:
        post.discount_percentage = None


def to_response(
    post: FoodPost,
    owner: Optional[User] = None,
    distance_km: Optional[float] = None,
) -> FoodPostResponse:
    response = FoodPostResponse.model_validate(post)
    updates = {}
    if owner is not None:
        updates["owner"] = UserSummary.model_validate(owner)
    if distance_km is not None:
        updates["distance_km"] = round(distance_km, 2)
    return response.model_copy(update=updates) if updates else response


def _open_posts(now: datetime) -> list:
    return [
        FoodPost.status == PostStatus.AVAILABLE.value,
        FoodPost.is_expired.is_(False),
        FoodPost.expiry_date > now,
    ]


def _overdue_posts(now: datetime) -> list:
    return [
        FoodPost.expiry_date <= now,
        FoodPost.status.in_((PostStatus.AVAILABLE.value, PostStatus.RESERVED.value)),
    ]


class PostService:
    """Food post operations on a request-scoped session."""

    # ── Loading ───────────────────────────────────────────────────────────

    @staticmethod
    async def _get_owned_post(db: AsyncSession, actor_id: uuid.UUID, post_id: uuid.UUID) -> FoodPost:
        post = await db.get(FoodPost, post_id)
        if post is None:
            raise NotFoundError(resource="food post", resource_id=str(post_id))
        if post.user_id != actor_id:
            raise UnauthorizedError(message="Only the owner can modify this food post")
        return post

    # ══════════════════════════════════════════════════════════════════════
    # Writes
    # ══════════════════════════════════════════════════════════════════════

    async def create_post(self, db: AsyncSession, owner: User, data: FoodPostCreate) -> FoodPostResponse:
        now = utcnow()
        post = FoodPost(
            user_id=owner.id,
            **data.model_dump(exclude={"category", "unit"}),
            category=data.category.value,
            unit=data.unit.value,
            is_business_post=owner.is_business,
            status=PostStatus.AVAILABLE.value,
            current_reservations=0,
        )
        apply_pricing(post)
        post.urgency = reservations.compute_urgency(post.expiry_date, now).value
        try:
            db.add(post)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to create food post: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not create the food post. Please try again.")
        logger.info("Food post %s created by %s", post.id, owner.id)
        return to_response(post, owner)

    async def update_post(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        post_id: uuid.UUID,
        data: FoodPostUpdate,
    ) -> FoodPostResponse:
        """Owner edits a post; only allowed while the post is still available."""
        post = await self._get_owned_post(db, actor_id, post_id)
        if post.status != PostStatus.AVAILABLE.value:
            raise PostUnavailableError(status=post.status)

        changes = data.model_dump(exclude_unset=True)
        for field in ("category", "unit"):
            if changes.get(field) is not None:
                changes[field] = changes[field].value
        for field, value in changes.items():
            if value is None and field not in _CLEARABLE_FIELDS:
                continue
            setattr(post, field, value)

        apply_pricing(post)
        try:
            # Quantity or max_reservations may have changed the claim-driven state
            await reservations.reconcile_post(db, post, utcnow())
            await db.flush()
        except StaleDataError as e:
            raise ConflictError(context={"post_id": str(post_id)}) from e
        owner = await db.get(User, post.user_id)
        return to_response(post, owner)

    async def delete_post(self, db: AsyncSession, actor_id: uuid.UUID, post_id: uuid.UUID) -> None:
        """
        Soft delete: status → cancelled.

        Refused while the post has pending or confirmed claims; those are
        resolved through the claim lifecycle first.
        """
        post = await self._get_owned_post(db, actor_id, post_id)
        tally = await reservations.tally_claims(db, post.id)
        if tally.active_count:
            raise ValidationError(
                message="Resolve the active claims on this post before removing it",
                context={"active_claims": tally.active_count},
            )
        post.status = PostStatus.CANCELLED.value
        try:
            await db.flush()
        except StaleDataError as e:
            raise ConflictError(context={"post_id": str(post_id)}) from e
        logger.info("Food post %s withdrawn by owner", post.id)

    async def attach_images(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        post_id: uuid.UUID,
        images: List[dict],
    ) -> List[dict]:
        post = await self._get_owned_post(db, actor_id, post_id)
        if len(post.images) + len(images) > MAX_IMAGES_PER_POST:
            raise ValidationError(
                message=f"A food post can have at most {MAX_IMAGES_PER_POST} images",
                field="files",
            )
        # New list so the JSON column registers the change
        post.images = [*post.images, *images]
        try:
            await db.flush()
        except StaleDataError as e:
            raise ConflictError(context={"post_id": str(post_id)}) from e
        return post.images

    async def overdue_post_ids(self, db: AsyncSession, now: datetime) -> List[uuid.UUID]:
        """Open posts (available or reserved) whose expiry date has passed."""
        result = await db.execute(
            select(FoodPost.id).where(*_overdue_posts(now)).order_by(FoodPost.expiry_date.asc())
        )
        return list(result.scalars().all())

    async def expire_post(self, db: AsyncSession, post_id: uuid.UUID, now: datetime) -> bool:
        """
        Mark one overdue post as expired.

        Returns False when the post is no longer open or overdue (withdrawn,
        claimed or edited since it was selected). A concurrent write between
        the read and the flush raises ConflictError.
        """
        result = await db.execute(select(FoodPost).where(FoodPost.id == post_id, *_overdue_posts(now)))
        post = result.scalar_one_or_none()
        if post is None:
            return False
        post.status = PostStatus.EXPIRED.value
        post.is_expired = True
        post.urgency = Urgency.CRITICAL.value
        try:
            await db.flush()
        except StaleDataError as e:
            raise ConflictError(context={"post_id": str(post_id)}) from e
        return True

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def get_post(self, db: AsyncSession, post_id: uuid.UUID) -> FoodPostResponse:
        """Single post with owner; bumps view_count without touching the version."""
        await db.execute(
            update(FoodPost)
            .where(FoodPost.id == post_id)
            .values(view_count=FoodPost.view_count + 1, updated_at=FoodPost.updated_at)
            .execution_options(synchronize_session=False)
        )
        row = (
            await db.execute(
                select(FoodPost, User)
                .join(User, FoodPost.user_id == User.id)
                .where(FoodPost.id == post_id)
                .execution_options(populate_existing=True)
            )
        ).first()
        if row is None:
            raise NotFoundError(resource="food post", resource_id=str(post_id))
        post, owner = row
        return to_response(post, owner)

    async def _paginate(
        self, db: AsyncSession, query: Select, page: int, limit: int, order_by
    ) -> Tuple[List[Tuple[FoodPost, User]], int]:
        total = (
            await db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()
        rows = (
            await db.execute(
                query.order_by(*order_by).offset((page - 1) * limit).limit(limit)
            )
        ).all()
        return [tuple(row) for row in rows], total

    async def list_posts(
        self,
        db: AsyncSession,
        filters: PostFilters,
        page: int = 1,
        limit: int = 20,
    ) -> FoodPostListResponse:
        """Open posts matching the filters."""
        conditions = _open_posts(utcnow())
        if filters.category is not None:
            conditions.append(FoodPost.category == filters.category.value)
        if filters.city:
            conditions.append(func.lower(FoodPost.city) == filters.city.strip().lower())
        if filters.min_price is not None:
            conditions.append(FoodPost.price >= filters.min_price)
        if filters.max_price is not None:
            conditions.append(FoodPost.price <= filters.max_price)
        if filters.is_free is not None:
            conditions.append(FoodPost.is_free.is_(filters.is_free))
        if filters.urgency is not None:
            conditions.append(FoodPost.urgency == filters.urgency.value)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(FoodPost.title.ilike(pattern), FoodPost.description.ilike(pattern))
            )

        query = (
            select(FoodPost, User)
            .join(User, FoodPost.user_id == User.id)
            .where(and_(*conditions))
        )
        try:
            rows, total = await self._paginate(db, query, page, limit, _SORTS[filters.sort])
        except SQLAlchemyError as e:
            logger.error("Database error listing food posts: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not retrieve food posts. Please try again.")

        return FoodPostListResponse(
            posts=[to_response(post, owner) for post, owner in rows],
            pagination=PaginationMeta.build(page, limit, total),
        )

    async def list_user_posts(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        status: Optional[PostStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> FoodPostListResponse:
        query = (
            select(FoodPost, User)
            .join(User, FoodPost.user_id == User.id)
            .where(FoodPost.user_id == user_id)
        )
        if status is not None:
            query = query.where(FoodPost.status == status.value)
        rows, total = await self._paginate(db, query, page, limit, _SORTS["created_at_desc"])
        return FoodPostListResponse(
            posts=[to_response(post, owner) for post, owner in rows],
            pagination=PaginationMeta.build(page, limit, total),
        )

    async def nearby_posts(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        radius_km: float = 10.0,
        limit: int = 20,
    ) -> List[FoodPostResponse]:
        """Open posts within `radius_km`, nearest first."""
        min_lat, max_lat, min_lng, max_lng = geo.bounding_box(latitude, longitude, radius_km)
        query = (
            select(FoodPost, User)
            .join(User, FoodPost.user_id == User.id)
            .where(
                *_open_posts(utcnow()),
                FoodPost.latitude.between(min_lat, max_lat),
                FoodPost.longitude.between(min_lng, max_lng),
            )
        )
        rows = (await db.execute(query)).all()

        in_range = []
        for post, owner in rows:
            distance = geo.haversine_km(latitude, longitude, post.latitude, post.longitude)
            if distance <= radius_km:
                in_range.append((distance, post, owner))
        in_range.sort(key=lambda item: item[0])
        return [to_response(post, owner, distance) for distance, post, owner in in_range[:limit]]

    async def trending_posts(
        self,
        db: AsyncSession,
        days: int = 7,
        limit: int = 10,
    ) -> List[FoodPostResponse]:
        """Most viewed open posts created in the last `days` days."""
        now = utcnow()
        query = (
            select(FoodPost, User)
            .join(User, FoodPost.user_id == User.id)
            .where(*_open_posts(now), FoodPost.created_at >= now - timedelta(days=days))
            .order_by(FoodPost.view_count.desc(), FoodPost.created_at.desc())
            .limit(limit)
        )
        rows = (await db.execute(query)).all()
        return [to_response(post, owner) for post, owner in rows]


post_service = PostService()
