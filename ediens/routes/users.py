"""
Ediens Backend — User Route Handlers
======================================

Endpoints:
    GET /api/users/leaderboard       top eco-point earners
    GET /api/users/stats/me          the current user's activity summary
    PUT /api/users/avatar            upload a profile picture
    GET /api/users/{id}              public profile
    GET /api/users/{id}/posts        a user's available posts
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.database import get_db_session
from ediens.dependencies import get_current_user
from ediens.models.food_post import PostStatus
from ediens.models.user import User
from ediens.schemas.common import ErrorResponse
from ediens.schemas.food_post import FoodPostListResponse
from ediens.schemas.user import LeaderboardResponse, PublicProfile, UserProfile, UserStatsResponse
from ediens.services.file_service import Upload, file_service
from ediens.services.post_service import post_service
from ediens.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/leaderboard", response_model=LeaderboardResponse, summary="Eco-points leaderboard")
async def leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    city: Optional[str] = Query(default=None, max_length=100),
    db: AsyncSession = Depends(get_db_session),
) -> LeaderboardResponse:
    return await user_service.leaderboard(db, limit, city)


@router.get("/stats/me", response_model=UserStatsResponse, summary="Current user's stats")
async def my_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserStatsResponse:
    return await user_service.get_stats(db, current_user)


@router.put(
    "/avatar",
    response_model=UserProfile,
    responses={400: {"model": ErrorResponse}},
    summary="Upload a profile picture",
)
async def upload_avatar(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserProfile:
    upload = Upload(filename=file.filename or "", content=await file.read(), content_length=file.size)
    stored = await file_service.process_avatar(upload)
    previous = current_user.avatar
    profile = await user_service.set_avatar(db, current_user, stored["url"])
    if previous:
        await file_service.cleanup_file(str(file_service.storage_root / previous))
        await file_service.cleanup_file(
            str(file_service.storage_root / previous.replace(".jpg", "-small.jpg"))
        )
    return profile


@router.get(
    "/{user_id}",
    response_model=PublicProfile,
    responses={404: {"model": ErrorResponse}},
    summary="Public profile",
)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> PublicProfile:
    return await user_service.get_public_profile(db, user_id)


@router.get("/{user_id}/posts", response_model=FoodPostListResponse, summary="A user's available posts")
async def user_posts(
    user_id: UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
) -> FoodPostListResponse:
    return await post_service.list_user_posts(db, user_id, PostStatus.AVAILABLE, page, limit)
