"""
Ediens Backend — Claim Route Handlers
=======================================

What:  HTTP surface of the claim lifecycle.
How:   Each handler authenticates the actor, builds the typed command, and
       delegates to ClaimService. Status codes for domain errors come from
       the global exception handlers (403/404/409).

Endpoints:
    POST /api/claims                    create (claimant)
    GET  /api/claims/user               my claims
    GET  /api/claims/post/{post_id}     claims on my post (owner)
    GET  /api/claims/stats/user         my claim counts and eco points
    GET  /api/claims/{id}               one claim (claimant or owner)
    PUT  /api/claims/{id}/status        confirm or reject (owner)
    PUT  /api/claims/{id}/cancel        cancel (claimant or owner)
    PUT  /api/claims/{id}/pickup        confirm pickup (claimant)
    POST /api/claims/{id}/rate          rate once (claimant)
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ediens.dependencies import get_claim_service, get_current_user
from ediens.models.claim import ClaimStatus
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
from ediens.schemas.common import ErrorResponse
from ediens.services.claim_service import ClaimService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/claims", tags=["Claims"])

_TRANSITION_ERRORS = {
    401: {"description": "Not authenticated", "model": ErrorResponse},
    403: {"description": "Actor may not perform this transition", "model": ErrorResponse},
    404: {"description": "Claim or food post not found", "model": ErrorResponse},
    409: {"description": "Transition conflicts with current state", "model": ErrorResponse},
}


@router.post(
    "",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_TRANSITION_ERRORS,
    summary="Claim a food post",
)
async def create_claim(
    command: CreateClaimCommand,
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimResponse:
    return await service.create_claim(current_user.id, command)


@router.get(
    "/user",
    response_model=ClaimListResponse,
    summary="List the current user's claims",
)
async def list_my_claims(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    claim_status: Optional[ClaimStatus] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimListResponse:
    result = await service.list_user_claims(current_user.id, page, limit, claim_status)
    response.headers["X-Total-Count"] = str(result.pagination.total_items)
    return result


@router.get(
    "/post/{post_id}",
    response_model=List[ClaimResponse],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="List claims on one of the current user's posts",
)
async def list_post_claims(
    post_id: UUID,
    claim_status: Optional[ClaimStatus] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> List[ClaimResponse]:
    return await service.list_post_claims(current_user.id, post_id, claim_status)


@router.get(
    "/stats/user",
    response_model=ClaimStatsResponse,
    summary="Claim counts by status and eco points earned",
)
async def my_claim_stats(
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimStatsResponse:
    return await service.get_user_stats(current_user.id)


@router.get(
    "/{claim_id}",
    response_model=ClaimResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get a claim",
)
async def get_claim(
    claim_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimResponse:
    return await service.get_claim(current_user.id, claim_id)


@router.put(
    "/{claim_id}/status",
    response_model=ClaimResponse,
    responses=_TRANSITION_ERRORS,
    summary="Confirm or reject a claim (post owner)",
)
async def update_claim_status(
    claim_id: UUID,
    command: UpdateClaimStatusCommand,
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimResponse:
    return await service.update_status(current_user.id, claim_id, command)


@router.put(
    "/{claim_id}/cancel",
    response_model=ClaimResponse,
    responses=_TRANSITION_ERRORS,
    summary="Cancel a claim",
)
async def cancel_claim(
    claim_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimResponse:
    return await service.cancel_claim(current_user.id, claim_id)


@router.put(
    "/{claim_id}/pickup",
    response_model=PickupResponse,
    responses=_TRANSITION_ERRORS,
    summary="Confirm pickup and collect eco points (claimant)",
)
async def confirm_pickup(
    claim_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> PickupResponse:
    return await service.confirm_pickup(current_user.id, claim_id)


@router.post(
    "/{claim_id}/rate",
    response_model=ClaimResponse,
    responses=_TRANSITION_ERRORS,
    summary="Rate a completed pickup (claimant, once)",
)
async def rate_claim(
    claim_id: UUID,
    command: RateClaimCommand,
    current_user: User = Depends(get_current_user),
    service: ClaimService = Depends(get_claim_service),
) -> ClaimResponse:
    return await service.rate_claim(current_user.id, claim_id, command)
