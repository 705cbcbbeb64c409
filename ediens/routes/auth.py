"""
Ediens Backend — Auth Route Handlers
======================================

Endpoints:
    POST /api/auth/register    create an account, returns a token
    POST /api/auth/login       exchange credentials for a token
    GET  /api/auth/profile     the current user's profile
    PUT  /api/auth/profile     edit profile fields
    PUT  /api/auth/location    update coordinates / address
    POST /api/auth/refresh     new token for a still-valid one
    POST /api/auth/logout      stateless; the client discards its token
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ediens.database import get_db_session
from ediens.dependencies import get_current_user
from ediens.models.user import User
from ediens.schemas.common import ErrorResponse, MessageResponse
from ediens.schemas.user import (
    AuthResponse,
    LocationUpdateRequest,
    LoginRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    TokenResponse,
    UserProfile,
)
from ediens.services.auth_service import auth_service
from ediens.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Email already registered", "model": ErrorResponse}},
    summary="Register a new account",
)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AuthResponse:
    return await auth_service.register(db, data)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"description": "Invalid credentials", "model": ErrorResponse}},
    summary="Log in with email and password",
)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AuthResponse:
    return await auth_service.login(db, data)


@router.get("/profile", response_model=UserProfile, summary="Current user's profile")
async def get_profile(current_user: User = Depends(get_current_user)) -> UserProfile:
    return UserProfile.model_validate(current_user)


@router.put("/profile", response_model=UserProfile, summary="Update the current user's profile")
async def update_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserProfile:
    return await user_service.update_profile(db, current_user, data)


@router.put("/location", response_model=UserProfile, summary="Update the current user's location")
async def update_location(
    data: LocationUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserProfile:
    return await user_service.update_location(db, current_user, data)


@router.post("/refresh", response_model=TokenResponse, summary="Issue a fresh access token")
async def refresh_token(current_user: User = Depends(get_current_user)) -> TokenResponse:
    return auth_service.refresh(current_user)


@router.post("/logout", response_model=MessageResponse, summary="Log out")
async def logout(current_user: User = Depends(get_current_user)) -> MessageResponse:
    logger.info("User logged out: %s", current_user.id)
    return MessageResponse(message="Logged out successfully")
