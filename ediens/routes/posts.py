"""
Ediens Backend — Food Post Route Handlers
===========================================

Endpoints:
    GET    /api/posts                 search open posts (filters + pagination)
    GET    /api/posts/nearby          open posts within a radius, nearest first
    GET    /api/posts/trending        most viewed recent posts
    GET    /api/posts/user/posts      the current user's posts
    GET    /api/posts/{id}            one post (counts a view)
    POST   /api/posts                 create
    PUT    /api/posts/{id}            update (owner, while available)
    DELETE /api/posts/{id}            withdraw (owner)
    POST   /api/posts/{id}/images     upload images (owner)

Caching:
    Lists are short-lived (claims change availability constantly); nothing
    here is cached beyond a few seconds.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.database import get_db_session
from ediens.dependencies import get_current_user
from ediens.models.food_post import FoodCategory, PostStatus, Urgency
from ediens.models.user import User
from ediens.schemas.common import ErrorResponse, MessageResponse
from ediens.schemas.food_post import (
    FoodPostCreate,
    FoodPostListResponse,
    FoodPostResponse,
    FoodPostUpdate,
    ImageUploadResponse,
    PostFilters,
    PostSort,
)
from ediens.services.file_service import Upload, file_service
from ediens.services.post_service import post_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/posts", tags=["Food Posts"])

_OWNER_ERRORS = {
    403: {"description": "Not the owner", "model": ErrorResponse},
    404: {"description": "Food post not found", "model": ErrorResponse},
    409: {"description": "Post is no longer available", "model": ErrorResponse},
}


@router.get("", response_model=FoodPostListResponse, summary="Search available food posts")
async def list_posts(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    category: Optional[FoodCategory] = None,
    city: Optional[str] = Query(default=None, max_length=100),
    min_price: Optional[float] = Query(default=None, ge=0),
    max_price: Optional[float] = Query(default=None, ge=0),
    is_free: Optional[bool] = None,
    urgency: Optional[Urgency] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    sort: PostSort = "created_at_desc",
    db: AsyncSession = Depends(get_db_session),
) -> FoodPostListResponse:
    filters = PostFilters(
        category=category,
        city=city,
        min_price=min_price,
        max_price=max_price,
        is_free=is_free,
        urgency=urgency,
        search=search,
        sort=sort,
    )
    result = await post_service.list_posts(db, filters, page, limit)
    response.headers["X-Total-Count"] = str(result.pagination.total_items)
    response.headers["Cache-Control"] = "public, max-age=5"
    return result


@router.get("/nearby", response_model=List[FoodPostResponse], summary="Food posts near a location")
async def nearby_posts(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    radius: float = Query(default=10.0, gt=0, le=100, description="Radius in km"),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
) -> List[FoodPostResponse]:
    return await post_service.nearby_posts(db, lat, lng, radius, limit)


@router.get("/trending", response_model=List[FoodPostResponse], summary="Most viewed recent posts")
async def trending_posts(
    days: int = Query(default=7, ge=1, le=90),
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db_session),
) -> List[FoodPostResponse]:
    return await post_service.trending_posts(db, days, limit)


@router.get("/user/posts", response_model=FoodPostListResponse, summary="The current user's posts")
async def my_posts(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    post_status: Optional[PostStatus] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> FoodPostListResponse:
    result = await post_service.list_user_posts(db, current_user.id, post_status, page, limit)
    response.headers["X-Total-Count"] = str(result.pagination.total_items)
    return result


@router.get(
    "/{post_id}",
    response_model=FoodPostResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a food post",
)
async def get_post(
    post_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> FoodPostResponse:
    return await post_service.get_post(db, post_id)


@router.post(
    "",
    response_model=FoodPostResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a food post",
)
async def create_post(
    data: FoodPostCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> FoodPostResponse:
    return await post_service.create_post(db, current_user, data)


@router.put(
    "/{post_id}",
    response_model=FoodPostResponse,
    responses=_OWNER_ERRORS,
    summary="Update a food post",
)
async def update_post(
    post_id: UUID,
    data: FoodPostUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> FoodPostResponse:
    return await post_service.update_post(db, current_user.id, post_id, data)


@router.delete(
    "/{post_id}",
    response_model=MessageResponse,
    responses=_OWNER_ERRORS,
    summary="Withdraw a food post",
)
async def delete_post(
    post_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await post_service.delete_post(db, current_user.id, post_id)
    return MessageResponse(message="Food post deleted successfully")


@router.post(
    "/{post_id}/images",
    response_model=ImageUploadResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, **_OWNER_ERRORS},
    summary="Upload images for a food post",
)
async def upload_post_images(
    post_id: UUID,
    files: List[UploadFile] = File(..., description="JPEG, PNG or WebP images, 5MB each"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ImageUploadResponse:
    uploads = [
        Upload(filename=f.filename or "", content=await f.read(), content_length=f.size)
        for f in files
    ]
    stored = await file_service.process_post_images(uploads)
    try:
        images = await post_service.attach_images(db, current_user.id, post_id, stored)
    except Exception:
        for image in stored:
            for path in image.values():
                await file_service.cleanup_file(str(file_service.storage_root / path))
        raise
    return ImageUploadResponse(message="Images uploaded successfully", images=images)
