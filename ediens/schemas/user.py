"""
Ediens Backend — User & Auth Schemas
======================================

What:  Request bodies for registration, login and profile edits; response
       shapes for the private profile, public profile, stats and leaderboard.
Why separate shapes: the private profile includes email, phone and
       preferences; the public one never does.
"""

import re
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).+$")
_NAME_RULE = re.compile(r"^[A-Za-zÀ-ÿ\s-]+$")


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=32)
    city: str = Field(min_length=2, max_length=100)
    address: Optional[str] = Field(default=None, max_length=255)
    postal_code: Optional[str] = Field(default=None, max_length=16)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    is_business: bool = False
    business_name: Optional[str] = Field(default=None, max_length=100)
    business_type: Optional[str] = Field(default=None, max_length=50)

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        if not _PASSWORD_RULE.match(v):
            raise ValueError(
                "Password must contain at least one lowercase letter, "
                "one uppercase letter, and one number"
            )
        return v

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not _NAME_RULE.match(v):
            raise ValueError("Names may only contain letters, spaces and hyphens")
        return v

    @model_validator(mode="after")
    def require_business_details(self) -> "RegisterRequest":
        if self.is_business and not (self.business_name and self.business_type):
            raise ValueError("Business accounts need business_name and business_type")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=32)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, min_length=2, max_length=100)
    postal_code: Optional[str] = Field(default=None, max_length=16)
    business_name: Optional[str] = Field(default=None, max_length=100)
    business_type: Optional[str] = Field(default=None, max_length=50)
    preferences: Optional[Dict] = None


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, min_length=2, max_length=100)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserSummary(BaseModel):
    """Compact public identity, embedded in claims, posts and messages."""
    id: uuid.UUID
    first_name: str
    last_name: str
    display_name: str
    avatar: Optional[str] = None
    rating: float
    is_business: bool
    is_verified: bool

    model_config = {"from_attributes": True}


class PublicProfile(UserSummary):
    city: str
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    total_ratings: int
    eco_points: int
    created_at: datetime


class UserProfile(PublicProfile):
    """The authenticated user's own profile."""
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    preferences: Dict = Field(default_factory=dict)
    last_active: datetime


class AuthResponse(BaseModel):
    message: str
    token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Token lifetime in seconds")
    user: UserProfile


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class UserStatsResponse(BaseModel):
    posts_by_status: Dict[str, int]
    total_posts: int
    claims_by_status: Dict[str, int]
    total_claims: int
    eco_points: int
    rating: float
    total_ratings: int


class LeaderboardEntry(BaseModel):
    rank: int
    user: UserSummary
    eco_points: int


class LeaderboardResponse(BaseModel):
    entries: List[LeaderboardEntry]
