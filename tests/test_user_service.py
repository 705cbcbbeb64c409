"""
Ediens Backend — User Service Tests
=====================================

What:  Profile updates, personal stats and the leaderboard.
"""

import uuid

import pytest

from ediens.exceptions import NotFoundError
from ediens.models.claim import Claim
from ediens.models.user import User
from ediens.schemas.user import ProfileUpdateRequest
from ediens.services.user_service import user_service


class TestProfiles:

    @pytest.mark.asyncio
    async def test_public_profile(self, session_factory, owner):
        async with session_factory() as session:
            profile = await user_service.get_public_profile(session, owner.id)
        assert profile.first_name == "Olga"

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_factory):
        with pytest.raises(NotFoundError):
            async with session_factory() as session:
                await user_service.get_public_profile(session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_update_ignores_unset_fields(self, session_factory, owner):
        async with session_factory() as session:
            async with session.begin():
                user = await session.get(User, owner.id)
                profile = await user_service.update_profile(
                    session, user, ProfileUpdateRequest(city="Jelgava")
                )
        assert profile.city == "Jelgava"
        assert profile.first_name == "Olga"


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_by_status(self, session_factory, post_factory, claimant, pickup_date):
        first = await post_factory()
        second = await post_factory()
        async with session_factory() as session:
            async with session.begin():
                session.add_all(
                    [
                        Claim(food_post_id=first.id, claimer_id=claimant.id, pickup_date=pickup_date, status="picked_up"),
                        Claim(food_post_id=second.id, claimer_id=claimant.id, pickup_date=pickup_date, status="pending"),
                    ]
                )
            user = await session.get(User, claimant.id)
            stats = await user_service.get_stats(session, user)

        assert stats.total_claims == 2
        assert stats.claims_by_status == {"picked_up": 1, "pending": 1}
        assert stats.total_posts == 0

    @pytest.mark.asyncio
    async def test_leaderboard(self, session_factory, user_factory):
        await user_factory("zero@example.com", eco_points=0)
        await user_factory("low@example.com", eco_points=10, city="Liepaja")
        top = await user_factory("top@example.com", eco_points=90)

        async with session_factory() as session:
            board = await user_service.leaderboard(session)
            riga = await user_service.leaderboard(session, city="riga")

        assert [entry.eco_points for entry in board.entries] == [90, 10]
        assert board.entries[0].rank == 1
        assert [entry.user.id for entry in riga.entries] == [top.id]
