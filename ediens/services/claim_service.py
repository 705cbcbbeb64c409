"""
Ediens Backend — Claim Service (Lifecycle Orchestrator)
=========================================================

What:  Every operation on a claim: create, confirm, reject, cancel, pickup,
       rate, expire, plus the read views (single, by user, by post, stats).
Why:   This is the one place where claim status changes happen. Each write
       runs guard → write → side effects as a single transaction.
How:
    1. Open a fresh session and transaction for the unit of work
    2. Load the food post row FOR UPDATE (no-op on SQLite) and the claim
    3. Authorize through ediens.services.claim_state
    4. Write the claim, then let ediens.services.reservations recompute
       the post's derived fields and user ledgers
    5. Commit; only then publish notifications

Concurrency:
    Claim and FoodPost carry optimistic version counters. If another
    transaction committed a change to either row first, the flush raises
    StaleDataError, mapped to ConflictError, and tenacity re-runs the whole
    unit of work against fresh rows. Guards re-run too, so a retried
    pickup sees `picked_up` and fails with InvalidTransitionError instead
    of awarding eco-points twice.

    The partial unique index on active claims backs up the duplicate-claim
    guard: an IntegrityError on insert becomes DuplicateClaimError.

Usage:
    service = ClaimService(async_session_factory)
    claim = await service.create_claim(actor_id, CreateClaimCommand(...))
"""

import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ediens.config import settings
from ediens.exceptions import (
    AlreadyRatedError,
    CapacityExceededError,
    ConflictError,
    DatabaseError,
    DuplicateClaimError,
    EdiensError,
    InvalidTransitionError,
    NotFoundError,
    PostUnavailableError,
    UnauthorizedError,
)
from ediens.models.claim import Claim, ClaimStatus
from ediens.models.common import utcnow
from ediens.models.food_post import FoodPost, PostStatus
from ediens.models.user import User
from ediens.schemas.claim import (
    ClaimListResponse,
    ClaimResponse,
    ClaimStatsResponse,
    CreateClaimCommand,
    PickupResponse,
    RateClaimCommand,
    UpdateClaimStatusCommand,
)
from ediens.schemas.common import PaginationMeta
from ediens.services import claim_state, reservations
from ediens.services.claim_state import ActorRole
from ediens.services.notifications import (
    EventType,
    Notification,
    NotificationBus,
    claim_notification,
    notification_bus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A unit of work returns its result plus the notifications to publish once
# the transaction has committed: [(recipient ids, notification), ...]
Outbox = List[Tuple[Sequence[uuid.UUID], Notification]]
UnitOfWork = Callable[[AsyncSession], Awaitable[Tuple[T, Outbox]]]
# Maps a constraint violation to a domain error, or None for "unexpected"
IntegrityMapper = Callable[[IntegrityError], Optional[EdiensError]]

ACTIVE_CLAIM_INDEX = "uq_claims_active_per_user"


def violates_active_claim_index(error: IntegrityError) -> bool:
    """PostgreSQL names the index in the error; SQLite names its columns."""
    detail = str(error.orig)
    if ACTIVE_CLAIM_INDEX in detail:
        return True
    return "UNIQUE constraint failed" in detail and "claims.claimer_id" in detail


def duplicate_claim_error(error: IntegrityError) -> Optional[EdiensError]:
    return DuplicateClaimError() if violates_active_claim_index(error) else None


class ClaimService:
    """Runs claim transitions as retried, single-transaction units of work."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: NotificationBus = notification_bus,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._bus = bus
        self._clock = clock

    # ══════════════════════════════════════════════════════════════════════
    # Transaction plumbing
    # ══════════════════════════════════════════════════════════════════════

    async def _execute(
        self,
        operation: str,
        work: UnitOfWork,
        on_integrity_error: Optional[IntegrityMapper] = None,
    ):
        """
        Run `work` in its own transaction, retrying lost races.

        Only ConflictError is retried; guard failures (EdiensError
        subclasses) propagate on the first attempt.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.transition_retry_attempts),
            wait=wait_exponential_jitter(
                initial=settings.transition_retry_min_wait,
                max=settings.transition_retry_max_wait,
                jitter=settings.transition_retry_min_wait,
            ),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result, outbox = await self._transaction(operation, work, on_integrity_error)

        for recipients, notification in outbox:
            self._bus.publish_many(recipients, notification)
        return result

    async def _transaction(
        self, operation: str, work: UnitOfWork, on_integrity_error: Optional[IntegrityMapper]
    ):
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await work(session)
        except EdiensError:
            raise
        except StaleDataError as e:
            logger.info("Concurrent modification during %s: %s", operation, str(e))
            raise ConflictError(context={"operation": operation}) from e
        except IntegrityError as e:
            mapped = on_integrity_error(e) if on_integrity_error is not None else None
            if mapped is not None:
                raise mapped from e
            logger.error("Integrity error during %s: %s", operation, str(e), exc_info=True)
            raise DatabaseError(context={"operation": operation}) from e
        except SQLAlchemyError as e:
            logger.error("Database error during %s: %s", operation, str(e), exc_info=True)
            raise DatabaseError(context={"operation": operation}) from e

    # ── Loading ───────────────────────────────────────────────────────────

    @staticmethod
    async def _load_post(session: AsyncSession, post_id: uuid.UUID) -> FoodPost:
        post = await session.get(FoodPost, post_id, with_for_update=True)
        if post is None:
            raise NotFoundError(resource="food post", resource_id=str(post_id))
        return post

    @classmethod
    async def _load_claim_and_post(
        cls, session: AsyncSession, claim_id: uuid.UUID
    ) -> Tuple[Claim, FoodPost]:
        claim = await session.get(Claim, claim_id)
        if claim is None:
            raise NotFoundError(resource="claim", resource_id=str(claim_id))
        # Post first, then the claim: every writer locks in the same order
        post = await cls._load_post(session, claim.food_post_id)
        await session.refresh(claim, with_for_update=True)
        return claim, post

    @staticmethod
    def _status_event(claim: Claim, post: FoodPost, actor_id: Optional[uuid.UUID]) -> Outbox:
        event = EventType.CLAIM_STATUS_CHANGED
        if claim.status == ClaimStatus.PICKED_UP.value:
            event = EventType.PICKUP_CONFIRMED
        notification = claim_notification(event, claim.id, post.id, actor_id, claim.status)
        return [((claim.claimer_id, post.user_id), notification)]

    # ══════════════════════════════════════════════════════════════════════
    # Transitions
    # ══════════════════════════════════════════════════════════════════════

    async def create_claim(self, actor_id: uuid.UUID, command: CreateClaimCommand) -> ClaimResponse:
        """
        (none) → pending, by the claimant.

        Raises:
            NotFoundError: post does not exist
            PostUnavailableError: post not available or past expiry
            UnauthorizedError: claimant owns the post
            DuplicateClaimError: claimant already holds an active claim
            CapacityExceededError: quantity above remaining, or cap reached
        """

        async def work(session: AsyncSession):
            now = self._clock()
            post = await self._load_post(session, command.food_post_id)

            if not post.is_available(now):
                raise PostUnavailableError(status=post.status)
            if post.user_id == actor_id:
                raise UnauthorizedError(message="You cannot claim your own food post")
            if await reservations.find_active_claim(session, post.id, actor_id) is not None:
                raise DuplicateClaimError()

            tally = await reservations.tally_claims(session, post.id)
            remaining = reservations.remaining_quantity(post, tally)
            if command.quantity > remaining:
                raise CapacityExceededError(
                    message=f"Only {remaining} {post.unit} remaining on this post",
                    context={"requested": command.quantity, "remaining": remaining},
                )
            if reservations.cap_reached(post, tally.active_count):
                raise CapacityExceededError(
                    message="Maximum reservations reached for this food post",
                    context={"max_reservations": post.max_reservations},
                )

            claim = Claim(
                food_post_id=post.id,
                claimer_id=actor_id,
                status=ClaimStatus.PENDING.value,
                quantity=command.quantity,
                pickup_date=command.pickup_date,
                pickup_time=command.pickup_time,
                message=command.message,
                is_urgent=command.is_urgent,
            )
            session.add(claim)
            await session.flush()
            await reservations.reconcile_post(session, post, now)

            claimer = await session.get(User, actor_id)
            logger.info("Claim %s created on post %s by %s", claim.id, post.id, actor_id)
            notification = claim_notification(
                EventType.CLAIM_CREATED, claim.id, post.id, actor_id, claim.status
            )
            return (
                ClaimResponse.from_claim(claim, post, claimer, now),
                [((claim.claimer_id, post.user_id), notification)],
            )

        return await self._execute("create_claim", work, on_integrity_error=duplicate_claim_error)

    async def confirm_claim(self, actor_id: uuid.UUID, claim_id: uuid.UUID) -> ClaimResponse:
        """pending → confirmed, by the post owner; respects max_reservations."""

        async def work(session: AsyncSession):
            now = self._clock()
            claim, post = await self._load_claim_and_post(session, claim_id)
            role = claim_state.resolve_role(actor_id, claim.claimer_id, post.user_id)
            claim_state.authorize_transition(claim.status, ClaimStatus.CONFIRMED.value, role)

            if post.status in (PostStatus.EXPIRED.value, PostStatus.CANCELLED.value):
                raise PostUnavailableError(status=post.status)
            tally = await reservations.tally_claims(session, post.id)
            if reservations.cap_reached(post, tally.confirmed_count):
                raise CapacityExceededError(
                    message="All reservations for this food post are already confirmed",
                    context={"max_reservations": post.max_reservations},
                )

            claim.status = ClaimStatus.CONFIRMED.value
            claim.confirmed_at = now
            await session.flush()
            await reservations.reconcile_post(session, post, now)

            logger.info("Claim %s confirmed by owner %s", claim.id, actor_id)
            return ClaimResponse.from_claim(claim, post, now=now), self._status_event(claim, post, actor_id)

        return await self._execute("confirm_claim", work)

    async def cancel_claim(
        self,
        actor_id: uuid.UUID,
        claim_id: uuid.UUID,
        required_role: Optional[ActorRole] = None,
    ) -> ClaimResponse:
        """
        pending|confirmed → cancelled, by the owner or the claimant.

        `required_role` narrows who may call this path (the owner-only
        status endpoint passes ActorRole.OWNER).
        """

        async def work(session: AsyncSession):
            now = self._clock()
            claim, post = await self._load_claim_and_post(session, claim_id)
            role = claim_state.resolve_role(actor_id, claim.claimer_id, post.user_id)
            if required_role is not None and role is not required_role:
                raise UnauthorizedError(
                    message=f"Only the {required_role.value} can do this",
                    context={"role": role.value},
                )
            claim_state.authorize_transition(claim.status, ClaimStatus.CANCELLED.value, role)

            claim.status = ClaimStatus.CANCELLED.value
            claim.cancelled_at = now
            claim.cancelled_by_id = actor_id
            await session.flush()
            await reservations.reconcile_post(session, post, now)

            logger.info("Claim %s cancelled by %s (%s)", claim.id, actor_id, role.value)
            return ClaimResponse.from_claim(claim, post, now=now), self._status_event(claim, post, actor_id)

        return await self._execute("cancel_claim", work)

    async def reject_claim(self, actor_id: uuid.UUID, claim_id: uuid.UUID) -> ClaimResponse:
        """Owner turns a claim down: a cancel restricted to the owner."""
        return await self.cancel_claim(actor_id, claim_id, required_role=ActorRole.OWNER)

    async def update_status(
        self,
        actor_id: uuid.UUID,
        claim_id: uuid.UUID,
        command: UpdateClaimStatusCommand,
    ) -> ClaimResponse:
        """Owner decision endpoint: confirmed → confirm_claim, cancelled → reject_claim."""
        if command.status == ClaimStatus.CONFIRMED.value:
            return await self.confirm_claim(actor_id, claim_id)
        return await self.reject_claim(actor_id, claim_id)

    async def confirm_pickup(self, actor_id: uuid.UUID, claim_id: uuid.UUID) -> PickupResponse:
        """
        confirmed → picked_up, by the claimant.

        Stamps picked_up_at and credits quantity × eco_points_per_unit to the
        claimant in the same transaction. Not idempotent: a second call
        fails with InvalidTransitionError.
        """

        async def work(session: AsyncSession):
            now = self._clock()
            claim, post = await self._load_claim_and_post(session, claim_id)
            role = claim_state.resolve_role(actor_id, claim.claimer_id, post.user_id)
            claim_state.authorize_transition(claim.status, ClaimStatus.PICKED_UP.value, role)

            claim.status = ClaimStatus.PICKED_UP.value
            claim.picked_up_at = now
            points = await reservations.award_pickup_points(session, claim)
            await session.flush()
            await reservations.reconcile_post(session, post, now)

            logger.info("Claim %s picked up; %d eco points awarded", claim.id, points)
            response = PickupResponse(
                message=f"Pickup confirmed! You earned {points} eco points.",
                claim=ClaimResponse.from_claim(claim, post, now=now),
                eco_points_earned=points,
            )
            return response, self._status_event(claim, post, actor_id)

        return await self._execute("confirm_pickup", work)

    async def rate_claim(
        self,
        actor_id: uuid.UUID,
        claim_id: uuid.UUID,
        command: RateClaimCommand,
    ) -> ClaimResponse:
        """Claimant rates a picked-up claim once; folds it into the owner's average."""

        async def work(session: AsyncSession):
            now = self._clock()
            claim, post = await self._load_claim_and_post(session, claim_id)
            role = claim_state.resolve_role(actor_id, claim.claimer_id, post.user_id)
            claim_state.authorize_rating(claim.status, role)
            if claim.rating is not None:
                raise AlreadyRatedError()

            claim.rating = command.rating
            claim.review = command.review
            claim.reviewed_at = now
            await reservations.apply_owner_rating(session, post.user_id, command.rating)
            await session.flush()

            logger.info("Claim %s rated %d", claim.id, command.rating)
            return ClaimResponse.from_claim(claim, post, now=now), []

        return await self._execute("rate_claim", work)

    async def expire_claim(self, claim_id: uuid.UUID) -> ClaimResponse:
        """confirmed → expired, by the system actor, once pickup_date has passed."""

        async def work(session: AsyncSession):
            now = self._clock()
            claim, post = await self._load_claim_and_post(session, claim_id)
            claim_state.authorize_transition(
                claim.status, ClaimStatus.EXPIRED.value, ActorRole.SYSTEM
            )
            if not claim.is_overdue(now):
                raise InvalidTransitionError(
                    current=claim.status,
                    requested=ClaimStatus.EXPIRED.value,
                    context={"reason": "pickup date has not passed"},
                )

            claim.status = ClaimStatus.EXPIRED.value
            claim.expired_at = now
            await session.flush()
            await reservations.reconcile_post(session, post, now)
            return ClaimResponse.from_claim(claim, post, now=now), self._status_event(claim, post, None)

        return await self._execute("expire_claim", work)

    async def expire_overdue_claims(self) -> int:
        """
        Sweep: expire every confirmed claim whose pickup date has passed.

        Each claim expires in its own transaction; one that changed state
        since it was selected is skipped and left for its new state.
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Claim.id).where(
                    Claim.status == ClaimStatus.CONFIRMED.value,
                    Claim.pickup_date < now,
                )
            )
            claim_ids = list(result.scalars().all())

        expired = 0
        for claim_id in claim_ids:
            try:
                await self.expire_claim(claim_id)
                expired += 1
            except (InvalidTransitionError, NotFoundError, ConflictError) as e:
                logger.info("Skipping expiry of claim %s: %s", claim_id, e.message)
        if expired:
            logger.info("Expired %d overdue claims", expired)
        return expired

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def get_claim(self, actor_id: uuid.UUID, claim_id: uuid.UUID) -> ClaimResponse:
        """Visible to the claimant and the post owner only."""
        async with self._session_factory() as session:
            claim = await session.get(Claim, claim_id)
            if claim is None:
                raise NotFoundError(resource="claim", resource_id=str(claim_id))
            post = await session.get(FoodPost, claim.food_post_id)
            claim_state.resolve_role(actor_id, claim.claimer_id, post.user_id)
            claimer = await session.get(User, claim.claimer_id)
            return ClaimResponse.from_claim(claim, post, claimer, self._clock())

    async def list_user_claims(
        self,
        actor_id: uuid.UUID,
        page: int = 1,
        limit: int = 20,
        status: Optional[ClaimStatus] = None,
    ) -> ClaimListResponse:
        """The actor's own claims, newest first, with a post summary each."""
        filters = [Claim.claimer_id == actor_id]
        if status is not None:
            filters.append(Claim.status == status.value)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(Claim.id)).where(*filters))
            ).scalar_one()
            rows = (
                await session.execute(
                    select(Claim, FoodPost)
                    .join(FoodPost, Claim.food_post_id == FoodPost.id)
                    .where(*filters)
                    .order_by(Claim.created_at.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).all()

        now = self._clock()
        return ClaimListResponse(
            claims=[ClaimResponse.from_claim(claim, post, now=now) for claim, post in rows],
            pagination=PaginationMeta.build(page, limit, total),
        )

    async def list_post_claims(
        self,
        actor_id: uuid.UUID,
        post_id: uuid.UUID,
        status: Optional[ClaimStatus] = None,
    ) -> List[ClaimResponse]:
        """Every claim on a post, for its owner, with claimer summaries."""
        async with self._session_factory() as session:
            post = await session.get(FoodPost, post_id)
            if post is None:
                raise NotFoundError(resource="food post", resource_id=str(post_id))
            if post.user_id != actor_id:
                raise UnauthorizedError(message="Only the post owner can view its claims")

            stmt = (
                select(Claim, User)
                .join(User, Claim.claimer_id == User.id)
                .where(Claim.food_post_id == post_id)
                .order_by(Claim.created_at.asc())
            )
            if status is not None:
                stmt = stmt.where(Claim.status == status.value)
            rows = (await session.execute(stmt)).all()

        now = self._clock()
        return [ClaimResponse.from_claim(claim, post, claimer, now) for claim, claimer in rows]

    async def get_user_stats(self, actor_id: uuid.UUID) -> ClaimStatsResponse:
        """Counts by status plus eco points earned from picked-up claims."""
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(
                        Claim.status,
                        func.count(Claim.id),
                        func.coalesce(func.sum(Claim.eco_points_earned), 0),
                    )
                    .where(Claim.claimer_id == actor_id)
                    .group_by(Claim.status)
                )
            ).all()

        stats = ClaimStatsResponse()
        for status, count, points in rows:
            setattr(stats, status, int(count))
            stats.total += int(count)
            if status == ClaimStatus.PICKED_UP.value:
                stats.total_eco_points = int(points)
        return stats
