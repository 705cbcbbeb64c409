"""
Ediens Backend — Post Service Unit Tests
==========================================

What:  Tests for food post writes, searches and the post expiry sweep.
How:   Real SQLite database per test (see conftest.py).

Test Strategy:
    ✅ Derived fields on create: is_free, discount, urgency
    ✅ Only the owner edits; only available posts are editable
    ✅ Withdrawal refused while claims are active
    ✅ A concurrent edit surfaces as ConflictError, not a raw StaleDataError
    ✅ Search filters and nearby ordering
    ✅ Views counted without bumping the version counter
"""

import uuid
from datetime import timedelta

import pytest

from ediens.exceptions import (
    ConflictError,
    NotFoundError,
    PostUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from ediens.models.common import utcnow
from ediens.models.food_post import FoodCategory, FoodPost, PostStatus
from ediens.schemas.claim import CreateClaimCommand
from ediens.schemas.food_post import FoodPostCreate, FoodPostUpdate, PostFilters
from ediens.services import reservations
from ediens.services.post_service import apply_pricing, post_service


def new_post(**overrides) -> FoodPostCreate:
    data = {
        "title": "Vegetable soup",
        "description": "Three portions of home-made vegetable soup",
        "category": "cooked",
        "quantity": 3,
        "unit": "portion",
        "latitude": 56.95,
        "longitude": 24.10,
        "address": "Elizabetes iela 10",
        "city": "Riga",
        "expiry_date": utcnow() + timedelta(hours=20),
    }
    data.update(overrides)
    return FoodPostCreate(**data)


async def edit_elsewhere(session_factory, post_id) -> None:
    """Commit a versioned edit to the post from a separate session."""
    async with session_factory() as other:
        async with other.begin():
            stored = await other.get(FoodPost, post_id)
            stored.title = "Edited elsewhere"


class TestPricing:

    def test_free_post(self):
        post = FoodPost(price=0.0, original_price=None)
        apply_pricing(post)
        assert post.is_free is True
        assert post.discount_percentage is None

    def test_discount(self):
        post = FoodPost(price=2.5, original_price=10.0)
        apply_pricing(post)
        assert post.is_free is False
        assert post.discount_percentage == 75


class TestCreatePost:

    @pytest.mark.asyncio
    async def test_derived_fields(self, session_factory, owner):
        async with session_factory() as session:
            async with session.begin():
                created = await post_service.create_post(
                    session, owner, new_post(price=1.0, original_price=4.0)
                )

        assert created.status == "available"
        assert created.current_reservations == 0
        assert created.is_free is False
        assert created.discount_percentage == 75
        assert created.urgency == "high"
        assert created.owner.id == owner.id

    def test_expiry_in_past_rejected(self):
        with pytest.raises(ValueError):
            new_post(expiry_date=utcnow() - timedelta(minutes=1))

    def test_unknown_allergen_rejected(self):
        with pytest.raises(ValueError):
            new_post(allergens=["kryptonite"])


class TestUpdateAndDelete:

    @pytest.mark.asyncio
    async def test_owner_updates(self, session_factory, post):
        async with session_factory() as session:
            async with session.begin():
                updated = await post_service.update_post(
                    session, post.user_id, post.id, FoodPostUpdate(title="Rye bread", price=0.5)
                )
        assert updated.title == "Rye bread"
        assert updated.is_free is False

    @pytest.mark.asyncio
    async def test_non_owner_cannot_update(self, session_factory, post, stranger):
        with pytest.raises(UnauthorizedError):
            async with session_factory() as session:
                await post_service.update_post(session, stranger.id, post.id, FoodPostUpdate(title="Mine"))

    @pytest.mark.asyncio
    async def test_missing_post(self, session_factory, owner):
        with pytest.raises(NotFoundError):
            async with session_factory() as session:
                await post_service.update_post(session, owner.id, uuid.uuid4(), FoodPostUpdate(title="Gone"))

    @pytest.mark.asyncio
    async def test_only_available_posts_are_editable(self, session_factory, post_factory, owner):
        reserved = await post_factory(status=PostStatus.RESERVED.value)
        with pytest.raises(PostUnavailableError):
            async with session_factory() as session:
                await post_service.update_post(session, owner.id, reserved.id, FoodPostUpdate(title="Edited"))

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, session_factory, post):
        async with session_factory() as session:
            async with session.begin():
                await post_service.delete_post(session, post.user_id, post.id)
            stored = await session.get(FoodPost, post.id)
        assert stored.status == PostStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_delete_refused_with_active_claims(
        self, session_factory, post, claimant, claim_service, pickup_date
    ):
        await claim_service.create_claim(
            claimant.id, CreateClaimCommand(food_post_id=post.id, pickup_date=pickup_date)
        )
        with pytest.raises(ValidationError, match="active claims"):
            async with session_factory() as session:
                await post_service.delete_post(session, post.user_id, post.id)

    @pytest.mark.asyncio
    async def test_image_limit(self, session_factory, post):
        images = [{"url": f"images/{i}.jpg", "thumbnail": f"thumbnails/{i}.jpg"} for i in range(11)]
        with pytest.raises(ValidationError, match="at most"):
            async with session_factory() as session:
                await post_service.attach_images(session, post.user_id, post.id, images)


class TestConcurrentWrites:
    """A versioned write from another session between read and flush."""

    @pytest.mark.asyncio
    async def test_delete_after_concurrent_edit_conflicts(self, session_factory, post, monkeypatch):
        real_tally = reservations.tally_claims

        async def tally_then_edit(db, post_id):
            tally = await real_tally(db, post_id)
            await edit_elsewhere(session_factory, post_id)
            return tally

        monkeypatch.setattr(reservations, "tally_claims", tally_then_edit)
        with pytest.raises(ConflictError):
            async with session_factory() as session:
                async with session.begin():
                    await post_service.delete_post(session, post.user_id, post.id)

        async with session_factory() as session:
            stored = await session.get(FoodPost, post.id)
        assert stored.status == PostStatus.AVAILABLE.value
        assert stored.title == "Edited elsewhere"

    @pytest.mark.asyncio
    async def test_attach_images_after_concurrent_edit_conflicts(self, session_factory, post):
        images = [{"url": "images/a.jpg", "thumbnail": "thumbnails/a.jpg"}]
        with pytest.raises(ConflictError):
            async with session_factory() as session:
                async with session.begin():
                    await session.get(FoodPost, post.id)
                    await edit_elsewhere(session_factory, post.id)
                    await post_service.attach_images(session, post.user_id, post.id, images)

        async with session_factory() as session:
            stored = await session.get(FoodPost, post.id)
        assert stored.images == []

    @pytest.mark.asyncio
    async def test_expire_after_concurrent_edit_conflicts(self, session_factory, post_factory):
        stale = await post_factory(expiry_date=utcnow() - timedelta(minutes=5))
        with pytest.raises(ConflictError):
            async with session_factory() as session:
                async with session.begin():
                    await session.get(FoodPost, stale.id)
                    await edit_elsewhere(session_factory, stale.id)
                    await post_service.expire_post(session, stale.id, utcnow())



class TestSearch:

    @pytest.mark.asyncio
    async def test_only_open_posts_listed(self, session_factory, post_factory):
        await post_factory(title="Open loaf")
        await post_factory(title="Withdrawn loaf", status=PostStatus.CANCELLED.value)
        await post_factory(title="Stale loaf", expiry_date=utcnow() - timedelta(hours=1))

        async with session_factory() as session:
            result = await post_service.list_posts(session, PostFilters())

        assert [p.title for p in result.posts] == ["Open loaf"]
        assert result.pagination.total_items == 1

    @pytest.mark.asyncio
    async def test_filters(self, session_factory, post_factory):
        await post_factory(title="Free bread", price=0.0, is_free=True)
        await post_factory(title="Cheap cheese", category="dairy", price=2.0, is_free=False)
        await post_factory(title="Tallinn cake", city="Tallinn")

        async with session_factory() as session:
            dairy = await post_service.list_posts(session, PostFilters(category=FoodCategory.DAIRY))
            free = await post_service.list_posts(session, PostFilters(is_free=True, city="riga"))
            cheese = await post_service.list_posts(session, PostFilters(search="cheese"))

        assert [p.title for p in dairy.posts] == ["Cheap cheese"]
        assert [p.title for p in free.posts] == ["Free bread"]
        assert [p.title for p in cheese.posts] == ["Cheap cheese"]

    @pytest.mark.asyncio
    async def test_nearby_sorted_by_distance(self, session_factory, post_factory):
        await post_factory(title="Far", latitude=56.99, longitude=24.20)
        await post_factory(title="Near", latitude=56.9500, longitude=24.1060)
        await post_factory(title="Other city", latitude=54.6872, longitude=25.2797)

        async with session_factory() as session:
            nearby = await post_service.nearby_posts(session, 56.9496, 24.1052, radius_km=10)

        assert [p.title for p in nearby] == ["Near", "Far"]
        assert nearby[0].distance_km < nearby[1].distance_km

    @pytest.mark.asyncio
    async def test_get_post_counts_views(self, session_factory, post):
        async with session_factory() as session:
            async with session.begin():
                await post_service.get_post(session, post.id)
            async with session.begin():
                second = await post_service.get_post(session, post.id)
            stored = await session.get(FoodPost, post.id)

        assert second.view_count == 2
        assert stored.version_id == post.version_id

    @pytest.mark.asyncio
    async def test_get_missing_post(self, session_factory):
        with pytest.raises(NotFoundError):
            async with session_factory() as session:
                await post_service.get_post(session, uuid.uuid4())


class TestExpirePosts:

    @pytest.mark.asyncio
    async def test_marks_past_expiry(self, session_factory, post_factory):
        stale = await post_factory(expiry_date=utcnow() - timedelta(minutes=5))
        fresh = await post_factory()
        now = utcnow()

        async with session_factory() as session:
            overdue = await post_service.overdue_post_ids(session, now)
        async with session_factory() as session:
            async with session.begin():
                expired = await post_service.expire_post(session, stale.id, now)
            stale_row = await session.get(FoodPost, stale.id)
            fresh_row = await session.get(FoodPost, fresh.id)

        assert overdue == [stale.id]
        assert expired is True
        assert stale_row.status == PostStatus.EXPIRED.value
        assert stale_row.is_expired is True
        assert fresh_row.status == PostStatus.AVAILABLE.value

    @pytest.mark.asyncio
    async def test_withdrawn_since_selection_is_skipped(self, session_factory, post_factory):
        withdrawn = await post_factory(
            expiry_date=utcnow() - timedelta(minutes=5), status=PostStatus.CANCELLED.value
        )
        async with session_factory() as session:
            async with session.begin():
                assert await post_service.expire_post(session, withdrawn.id, utcnow()) is False

