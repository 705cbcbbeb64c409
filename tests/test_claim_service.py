"""
Ediens Backend — Claim Service Tests
======================================

What:  Tests for the claim lifecycle against a real SQLite database.
Why:   ClaimService is where guards, writes and side effects meet; the
       interesting bugs (counter drift, double awards, stale reads) only
       show up with real rows and real transactions.

What we test:
    ✅ Create → confirm → pickup → rate, with counters and ledgers
    ✅ Capacity: quantity remaining and max_reservations
    ✅ Duplicate active claims (guard and unique index)
    ✅ Cancel/reject by owner and claimant; strangers rejected
    ✅ Terminal states stay terminal; pickup is not repeatable
    ✅ Expiry by the system actor and the overdue sweep
    ✅ Notifications published only after a successful commit
    ✅ Lost-race retry plumbing (StaleDataError → ConflictError → retry)
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ediens.exceptions import (
    AlreadyRatedError,
    CapacityExceededError,
    ConflictError,
    DatabaseError,
    DuplicateClaimError,
    InvalidTransitionError,
    NotFoundError,
    PostUnavailableError,
    UnauthorizedError,
)
from ediens.models.claim import Claim, ClaimStatus
from ediens.models.common import utcnow
from ediens.models.food_post import FoodPost, PostStatus
from ediens.models.user import User
from ediens.schemas.claim import CreateClaimCommand, RateClaimCommand, UpdateClaimStatusCommand
from ediens.services.claim_service import ClaimService, duplicate_claim_error
from ediens.services.notifications import EventType
from ediens.services.post_service import post_service
from ediens.schemas.food_post import FoodPostUpdate


def command(post, pickup_date, quantity=1, **kwargs):
    return CreateClaimCommand(
        food_post_id=post.id, quantity=quantity, pickup_date=pickup_date, **kwargs
    )


async def load(session_factory, model, pk):
    async with session_factory() as session:
        return await session.get(model, pk)


async def active_claim_count(session_factory, post_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(Claim).where(
                Claim.food_post_id == post_id,
                Claim.status.in_(("pending", "confirmed")),
            )
        )
        return len(result.scalars().all())


# ══════════════════════════════════════════════════════════════════════════
# Create
# ══════════════════════════════════════════════════════════════════════════


class TestCreateClaim:

    @pytest.mark.asyncio
    async def test_creates_pending_claim_and_counts_reservation(
        self, claim_service, session_factory, post, claimant, pickup_date
    ):
        """Claimant claims 2 of 5 on an uncapped post; reservations 0 → 1."""
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date, quantity=2))

        assert claim.status == "pending"
        assert claim.quantity == 2
        assert claim.claimer.id == claimant.id
        assert claim.food_post.id == post.id
        assert claim.is_overdue is False

        stored_post = await load(session_factory, FoodPost, post.id)
        assert stored_post.current_reservations == 1
        assert stored_post.status == PostStatus.AVAILABLE.value

    @pytest.mark.asyncio
    async def test_missing_post(self, claim_service, claimant, pickup_date, post):
        cmd = command(post, pickup_date).model_copy(update={"food_post_id": claimant.id})
        with pytest.raises(NotFoundError):
            await claim_service.create_claim(claimant.id, cmd)

    @pytest.mark.asyncio
    async def test_owner_cannot_claim_own_post(self, claim_service, post, owner, pickup_date):
        with pytest.raises(UnauthorizedError):
            await claim_service.create_claim(owner.id, command(post, pickup_date))

    @pytest.mark.asyncio
    async def test_duplicate_active_claim_rejected(
        self, claim_service, session_factory, post, claimant, pickup_date
    ):
        await claim_service.create_claim(claimant.id, command(post, pickup_date))
        with pytest.raises(DuplicateClaimError):
            await claim_service.create_claim(claimant.id, command(post, pickup_date))
        assert await active_claim_count(session_factory, post.id) == 1

    @pytest.mark.asyncio
    async def test_can_claim_again_after_cancelling(
        self, claim_service, post, claimant, pickup_date
    ):
        first = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.cancel_claim(claimant.id, first.id)
        second = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        assert second.id != first.id
        assert second.status == "pending"

    @pytest.mark.asyncio
    async def test_quantity_above_remaining(
        self, claim_service, post_factory, claimant, other_claimant, pickup_date
    ):
        small_post = await post_factory(quantity=3)
        await claim_service.create_claim(claimant.id, command(small_post, pickup_date, quantity=2))
        with pytest.raises(CapacityExceededError) as exc_info:
            await claim_service.create_claim(
                other_claimant.id, command(small_post, pickup_date, quantity=2)
            )
        assert exc_info.value.context == {"requested": 2, "remaining": 1}

    @pytest.mark.asyncio
    async def test_reservation_cap_on_create(
        self, claim_service, post_factory, claimant, other_claimant, pickup_date
    ):
        capped = await post_factory(quantity=10, max_reservations=1)
        await claim_service.create_claim(claimant.id, command(capped, pickup_date))
        with pytest.raises(CapacityExceededError, match="Maximum reservations"):
            await claim_service.create_claim(other_claimant.id, command(capped, pickup_date))

    @pytest.mark.asyncio
    async def test_expired_post_unavailable(
        self, claim_service, session_factory, post, claimant, pickup_date
    ):
        async with session_factory() as session:
            async with session.begin():
                stored = await session.get(FoodPost, post.id)
                stored.status = PostStatus.EXPIRED.value
                stored.is_expired = True

        with pytest.raises(PostUnavailableError) as exc_info:
            await claim_service.create_claim(claimant.id, command(post, pickup_date))
        assert exc_info.value.status == "expired"

    @pytest.mark.asyncio
    async def test_post_past_expiry_date_unavailable(
        self, session_factory, bus, post, claimant, pickup_date
    ):
        """Even before the sweep marks it, a post past expiry cannot be claimed."""
        later = ClaimService(session_factory, bus, clock=lambda: utcnow() + timedelta(days=3))
        with pytest.raises(PostUnavailableError):
            await later.create_claim(claimant.id, command(post, pickup_date))

    @pytest.mark.asyncio
    async def test_failed_create_publishes_nothing(
        self, claim_service, bus, post, owner, pickup_date
    ):
        queue = bus.subscribe(owner.id)
        with pytest.raises(UnauthorizedError):
            await claim_service.create_claim(owner.id, command(post, pickup_date))
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_create_notifies_claimant_and_owner(
        self, claim_service, bus, post, owner, claimant, pickup_date
    ):
        owner_queue = bus.subscribe(owner.id)
        claimant_queue = bus.subscribe(claimant.id)

        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))

        for queue in (owner_queue, claimant_queue):
            event = queue.get_nowait()
            assert event == {
                "event": "claim_created",
                "data": {
                    "claimId": str(claim.id),
                    "postId": str(post.id),
                    "actorId": str(claimant.id),
                    "newStatus": "pending",
                },
            }


# ══════════════════════════════════════════════════════════════════════════
# Confirm / reject / cancel
# ══════════════════════════════════════════════════════════════════════════


class TestOwnerDecisions:

    @pytest.mark.asyncio
    async def test_confirm_then_cap_blocks_second_confirmation(
        self, claim_service, session_factory, post, owner, claimant, other_claimant, pickup_date
    ):
        """Two pending claims; owner caps the post at 1; second confirm is rejected."""
        first = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        second = await claim_service.create_claim(other_claimant.id, command(post, pickup_date))

        async with session_factory() as session:
            async with session.begin():
                await post_service.update_post(
                    session, owner.id, post.id, FoodPostUpdate(max_reservations=1)
                )

        confirmed = await claim_service.confirm_claim(owner.id, first.id)
        assert confirmed.status == "confirmed"
        assert confirmed.confirmed_at is not None

        with pytest.raises(CapacityExceededError):
            await claim_service.confirm_claim(owner.id, second.id)

        stored_second = await load(session_factory, Claim, second.id)
        assert stored_second.status == "pending"
        stored_post = await load(session_factory, FoodPost, post.id)
        assert stored_post.status == PostStatus.RESERVED.value
        assert stored_post.current_reservations == 2

    @pytest.mark.asyncio
    async def test_claimant_cannot_confirm(self, claim_service, post, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        with pytest.raises(UnauthorizedError):
            await claim_service.confirm_claim(claimant.id, claim.id)

    @pytest.mark.asyncio
    async def test_confirm_twice_is_invalid(self, claim_service, post, owner, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        with pytest.raises(InvalidTransitionError):
            await claim_service.confirm_claim(owner.id, claim.id)

    @pytest.mark.asyncio
    async def test_update_status_routes_to_reject(
        self, claim_service, session_factory, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        rejected = await claim_service.update_status(
            owner.id, claim.id, UpdateClaimStatusCommand(status="cancelled")
        )
        assert rejected.status == "cancelled"
        stored = await load(session_factory, Claim, claim.id)
        assert stored.cancelled_by_id == owner.id

    @pytest.mark.asyncio
    async def test_claimant_cannot_use_reject(self, claim_service, post, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        with pytest.raises(UnauthorizedError):
            await claim_service.reject_claim(claimant.id, claim.id)

    @pytest.mark.asyncio
    async def test_claimant_cancels_confirmed_claim(
        self, claim_service, session_factory, post, owner, claimant, pickup_date
    ):
        """Cancelling the only active claim brings reservations back to 0."""
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        assert (await load(session_factory, FoodPost, post.id)).current_reservations == 1

        cancelled = await claim_service.cancel_claim(claimant.id, claim.id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert cancelled.time_until_pickup is None
        stored_post = await load(session_factory, FoodPost, post.id)
        assert stored_post.current_reservations == 0
        assert stored_post.status == PostStatus.AVAILABLE.value

    @pytest.mark.asyncio
    async def test_cancel_frees_reserved_post(
        self, claim_service, session_factory, post_factory, owner, claimant, pickup_date
    ):
        capped = await post_factory(max_reservations=1)
        claim = await claim_service.create_claim(claimant.id, command(capped, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        assert (await load(session_factory, FoodPost, capped.id)).status == PostStatus.RESERVED.value

        await claim_service.cancel_claim(owner.id, claim.id)
        assert (await load(session_factory, FoodPost, capped.id)).status == PostStatus.AVAILABLE.value

    @pytest.mark.asyncio
    async def test_confirm_on_withdrawn_post(
        self, claim_service, session_factory, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        async with session_factory() as session:
            async with session.begin():
                stored = await session.get(FoodPost, post.id)
                stored.status = PostStatus.CANCELLED.value
        with pytest.raises(PostUnavailableError):
            await claim_service.confirm_claim(owner.id, claim.id)


# ══════════════════════════════════════════════════════════════════════════
# Pickup and rating
# ══════════════════════════════════════════════════════════════════════════


class TestPickupAndRating:

    @pytest.mark.asyncio
    async def test_pickup_awards_eco_points(
        self, claim_service, session_factory, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date, quantity=3))
        await claim_service.confirm_claim(owner.id, claim.id)

        result = await claim_service.confirm_pickup(claimant.id, claim.id)

        assert result.claim.status == "picked_up"
        assert result.claim.picked_up_at is not None
        assert result.eco_points_earned == 30
        assert result.claim.eco_points_earned == 30
        stored_user = await load(session_factory, User, claimant.id)
        assert stored_user.eco_points == 30
        assert (await load(session_factory, FoodPost, post.id)).current_reservations == 0

    @pytest.mark.asyncio
    async def test_second_pickup_does_not_award_twice(
        self, claim_service, session_factory, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date, quantity=2))
        await claim_service.confirm_claim(owner.id, claim.id)
        await claim_service.confirm_pickup(claimant.id, claim.id)

        with pytest.raises(InvalidTransitionError):
            await claim_service.confirm_pickup(claimant.id, claim.id)
        assert (await load(session_factory, User, claimant.id)).eco_points == 20

    @pytest.mark.asyncio
    async def test_owner_cannot_confirm_pickup(self, claim_service, post, owner, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        with pytest.raises(UnauthorizedError):
            await claim_service.confirm_pickup(owner.id, claim.id)

    @pytest.mark.asyncio
    async def test_pending_claim_cannot_be_picked_up(self, claim_service, post, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        with pytest.raises(InvalidTransitionError):
            await claim_service.confirm_pickup(claimant.id, claim.id)

    @pytest.mark.asyncio
    async def test_full_pickup_marks_post_claimed(
        self, claim_service, session_factory, post_factory, owner, claimant, pickup_date
    ):
        small = await post_factory(quantity=2)
        claim = await claim_service.create_claim(claimant.id, command(small, pickup_date, quantity=2))
        await claim_service.confirm_claim(owner.id, claim.id)
        await claim_service.confirm_pickup(claimant.id, claim.id)
        assert (await load(session_factory, FoodPost, small.id)).status == PostStatus.CLAIMED.value

    @pytest.mark.asyncio
    async def test_picked_up_quantity_is_not_claimable_again(
        self, claim_service, post_factory, owner, claimant, other_claimant, pickup_date
    ):
        small = await post_factory(quantity=3)
        claim = await claim_service.create_claim(claimant.id, command(small, pickup_date, quantity=2))
        await claim_service.confirm_claim(owner.id, claim.id)
        await claim_service.confirm_pickup(claimant.id, claim.id)

        with pytest.raises(CapacityExceededError):
            await claim_service.create_claim(other_claimant.id, command(small, pickup_date, quantity=2))

    @pytest.mark.asyncio
    async def test_rate_once(self, claim_service, session_factory, post, owner, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        await claim_service.confirm_pickup(claimant.id, claim.id)

        rated = await claim_service.rate_claim(claimant.id, claim.id, RateClaimCommand(rating=4, review="Tasty"))
        assert rated.rating == 4
        assert rated.review == "Tasty"
        assert rated.reviewed_at is not None

        with pytest.raises(AlreadyRatedError):
            await claim_service.rate_claim(claimant.id, claim.id, RateClaimCommand(rating=1))

        stored_owner = await load(session_factory, User, owner.id)
        assert stored_owner.rating == 4.0
        assert stored_owner.total_ratings == 1
        assert (await load(session_factory, Claim, claim.id)).rating == 4

    @pytest.mark.asyncio
    async def test_owner_rating_is_running_average(
        self, claim_service, session_factory, post, owner, claimant, other_claimant, pickup_date
    ):
        for user, rating in ((claimant, 5), (other_claimant, 2)):
            claim = await claim_service.create_claim(user.id, command(post, pickup_date))
            await claim_service.confirm_claim(owner.id, claim.id)
            await claim_service.confirm_pickup(user.id, claim.id)
            await claim_service.rate_claim(user.id, claim.id, RateClaimCommand(rating=rating))

        stored_owner = await load(session_factory, User, owner.id)
        assert stored_owner.rating == 3.5
        assert stored_owner.total_ratings == 2

    @pytest.mark.asyncio
    async def test_cannot_rate_before_pickup(self, claim_service, post, owner, claimant, pickup_date):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        with pytest.raises(InvalidTransitionError):
            await claim_service.rate_claim(claimant.id, claim.id, RateClaimCommand(rating=5))

    @pytest.mark.asyncio
    async def test_pickup_event_is_pickup_confirmed(
        self, claim_service, bus, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        queue = bus.subscribe(owner.id)

        await claim_service.confirm_pickup(claimant.id, claim.id)

        event = queue.get_nowait()
        assert event["event"] == EventType.PICKUP_CONFIRMED.value
        assert event["data"]["newStatus"] == "picked_up"
        assert queue.empty()


# ══════════════════════════════════════════════════════════════════════════
# Authorization and terminal states
# ══════════════════════════════════════════════════════════════════════════


class TestStrangersAndTerminalStates:

    @pytest.mark.asyncio
    async def test_stranger_rejected_on_every_transition(
        self, claim_service, session_factory, post, owner, claimant, stranger, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))

        attempts = [
            claim_service.confirm_claim(stranger.id, claim.id),
            claim_service.reject_claim(stranger.id, claim.id),
            claim_service.cancel_claim(stranger.id, claim.id),
            claim_service.confirm_pickup(stranger.id, claim.id),
            claim_service.rate_claim(stranger.id, claim.id, RateClaimCommand(rating=5)),
            claim_service.get_claim(stranger.id, claim.id),
        ]
        for attempt in attempts:
            with pytest.raises(UnauthorizedError):
                await attempt

        assert (await load(session_factory, Claim, claim.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_cancelled_claim_is_terminal(
        self, claim_service, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.cancel_claim(claimant.id, claim.id)

        with pytest.raises(InvalidTransitionError):
            await claim_service.confirm_claim(owner.id, claim.id)
        with pytest.raises(InvalidTransitionError):
            await claim_service.cancel_claim(owner.id, claim.id)

    @pytest.mark.asyncio
    async def test_picked_up_claim_cannot_be_cancelled(
        self, claim_service, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)
        await claim_service.confirm_pickup(claimant.id, claim.id)
        with pytest.raises(InvalidTransitionError):
            await claim_service.cancel_claim(claimant.id, claim.id)

    @pytest.mark.asyncio
    async def test_unknown_claim(self, claim_service, owner):
        with pytest.raises(NotFoundError):
            await claim_service.confirm_claim(owner.id, owner.id)

    @pytest.mark.asyncio
    async def test_reservation_count_matches_active_claims(
        self, claim_service, session_factory, post, owner, claimant, other_claimant, stranger, pickup_date
    ):
        """After a mixed sequence the counter equals the true active count."""
        a = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        b = await claim_service.create_claim(other_claimant.id, command(post, pickup_date))
        c = await claim_service.create_claim(stranger.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, a.id)
        await claim_service.reject_claim(owner.id, b.id)
        await claim_service.confirm_pickup(claimant.id, a.id)
        await claim_service.confirm_claim(owner.id, c.id)

        stored_post = await load(session_factory, FoodPost, post.id)
        assert stored_post.current_reservations == await active_claim_count(session_factory, post.id) == 1


# ══════════════════════════════════════════════════════════════════════════
# Expiry
# ══════════════════════════════════════════════════════════════════════════


class TestExpiry:

    @pytest.mark.asyncio
    async def test_overdue_confirmed_claim_expires(
        self, claim_service, session_factory, bus, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)

        later = ClaimService(session_factory, bus, clock=lambda: pickup_date + timedelta(hours=1))
        overdue = await later.get_claim(claimant.id, claim.id)
        assert overdue.is_overdue is True
        assert overdue.time_until_pickup == "Overdue"

        queue = bus.subscribe(claimant.id)
        assert await later.expire_overdue_claims() == 1

        stored = await load(session_factory, Claim, claim.id)
        assert stored.status == "expired"
        assert stored.expired_at is not None
        assert (await load(session_factory, FoodPost, post.id)).current_reservations == 0
        event = queue.get_nowait()
        assert event["data"]["actorId"] is None
        assert event["data"]["newStatus"] == "expired"

    @pytest.mark.asyncio
    async def test_claim_not_yet_due_is_not_expired(
        self, claim_service, session_factory, post, owner, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        await claim_service.confirm_claim(owner.id, claim.id)

        assert await claim_service.expire_overdue_claims() == 0
        with pytest.raises(InvalidTransitionError):
            await claim_service.expire_claim(claim.id)
        assert (await load(session_factory, Claim, claim.id)).status == "confirmed"

    @pytest.mark.asyncio
    async def test_pending_claims_are_left_alone(
        self, claim_service, session_factory, bus, post, claimant, pickup_date
    ):
        claim = await claim_service.create_claim(claimant.id, command(post, pickup_date))
        later = ClaimService(session_factory, bus, clock=lambda: pickup_date + timedelta(days=1))
        assert await later.expire_overdue_claims() == 0
        assert (await load(session_factory, Claim, claim.id)).status == "pending"


# ══════════════════════════════════════════════════════════════════════════
# Reads
# ══════════════════════════════════════════════════════════════════════════


class TestReads:

    @pytest.mark.asyncio
    async def test_list_user_claims_paginates(
        self, claim_service, post_factory, claimant, pickup_date
    ):
        for _ in range(3):
            await claim_service.create_claim(claimant.id, command(await post_factory(), pickup_date))

        page = await claim_service.list_user_claims(claimant.id, page=1, limit=2)
        assert len(page.claims) == 2
        assert page.pagination.total_items == 3
        assert page.pagination.has_next_page is True

        filtered = await claim_service.list_user_claims(claimant.id, status=ClaimStatus.CONFIRMED)
        assert filtered.claims == []

    @pytest.mark.asyncio
    async def test_list_post_claims_owner_only(
        self, claim_service, post, owner, claimant, pickup_date
    ):
        await claim_service.create_claim(claimant.id, command(post, pickup_date))

        claims = await claim_service.list_post_claims(owner.id, post.id)
        assert [c.claimer.id for c in claims] == [claimant.id]

        with pytest.raises(UnauthorizedError):
            await claim_service.list_post_claims(claimant.id, post.id)

    @pytest.mark.asyncio
    async def test_user_stats(self, claim_service, post_factory, owner, claimant, pickup_date):
        first = await claim_service.create_claim(claimant.id, command(await post_factory(), pickup_date, quantity=2))
        second = await claim_service.create_claim(claimant.id, command(await post_factory(), pickup_date))
        await claim_service.confirm_claim(owner.id, first.id)
        await claim_service.confirm_pickup(claimant.id, first.id)
        await claim_service.cancel_claim(claimant.id, second.id)

        stats = await claim_service.get_user_stats(claimant.id)
        assert stats.picked_up == 1
        assert stats.cancelled == 1
        assert stats.total == 2
        assert stats.total_eco_points == 20


# ══════════════════════════════════════════════════════════════════════════
# Transaction plumbing
# ══════════════════════════════════════════════════════════════════════════


class TestRetries:

    @pytest.mark.asyncio
    async def test_stale_write_is_retried(self, claim_service):
        calls = []

        async def work(session):
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("row version changed")
            return "done", []

        assert await claim_service._execute("test", work) == "done"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_conflict_escapes_after_retries(self, claim_service):
        async def work(session):
            raise StaleDataError("row version changed")

        with pytest.raises(ConflictError):
            await claim_service._execute("test", work)

    @pytest.mark.asyncio
    async def test_guard_failures_are_not_retried(self, claim_service):
        calls = []

        async def work(session):
            calls.append(1)
            raise InvalidTransitionError(current="cancelled", requested="confirmed")

        with pytest.raises(InvalidTransitionError):
            await claim_service._execute("test", work)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_active_index_violation_maps_to_duplicate(self, claim_service):
        async def work(session):
            raise IntegrityError(
                "INSERT", {}, Exception("UNIQUE constraint failed: claims.food_post_id, claims.claimer_id")
            )

        with pytest.raises(DuplicateClaimError):
            await claim_service._execute("create_claim", work, on_integrity_error=duplicate_claim_error)

    @pytest.mark.asyncio
    async def test_postgres_index_name_maps_to_duplicate(self, claim_service):
        async def work(session):
            raise IntegrityError(
                "INSERT",
                {},
                Exception('duplicate key value violates unique constraint "uq_claims_active_per_user"'),
            )

        with pytest.raises(DuplicateClaimError):
            await claim_service._execute("create_claim", work, on_integrity_error=duplicate_claim_error)

    @pytest.mark.asyncio
    async def test_other_integrity_errors_are_database_errors(self, claim_service):
        async def work(session):
            raise IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))

        with pytest.raises(DatabaseError):
            await claim_service._execute("create_claim", work, on_integrity_error=duplicate_claim_error)

    @pytest.mark.asyncio
    async def test_bad_status_row_is_not_reported_as_duplicate(
        self, claim_service, post, claimant, pickup_date
    ):
        async def work(session):
            session.add(
                Claim(food_post_id=post.id, claimer_id=claimant.id, pickup_date=pickup_date, status="bogus")
            )
            await session.flush()
            return None, []

        with pytest.raises(DatabaseError):
            await claim_service._execute("create_claim", work, on_integrity_error=duplicate_claim_error)

    @pytest.mark.asyncio
    async def test_status_check_rejects_unknown_status(
        self, session_factory, post, claimant, pickup_date
    ):
        with pytest.raises(IntegrityError):
            async with session_factory() as session:
                async with session.begin():
                    session.add(
                        Claim(
                            food_post_id=post.id,
                            claimer_id=claimant.id,
                            pickup_date=pickup_date,
                            status="bogus",
                        )
                    )


    @pytest.mark.asyncio
    async def test_unique_index_blocks_second_active_claim(
        self, session_factory, post, claimant, pickup_date
    ):
        """The database rejects a duplicate even if the guard were bypassed."""
        async with session_factory() as session:
            async with session.begin():
                session.add(Claim(food_post_id=post.id, claimer_id=claimant.id, pickup_date=pickup_date))

        with pytest.raises(IntegrityError):
            async with session_factory() as session:
                async with session.begin():
                    session.add(Claim(food_post_id=post.id, claimer_id=claimant.id, pickup_date=pickup_date))
