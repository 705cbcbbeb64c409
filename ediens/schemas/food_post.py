"""
Ediens Backend — Food Post Schemas
====================================

What:  Request bodies for creating/updating food posts, query parameters for
       search, and response shapes for detail/list/nearby views.

Validation mirrors the mobile apps' forms: bounded text lengths, the fixed
category/unit/allergen/dietary vocabularies, and an expiry date that must
lie in the future.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ediens.models.common import as_utc, utcnow
from ediens.models.food_post import ALLERGENS, DIETARY_INFO, FoodCategory, FoodUnit, Urgency
from ediens.schemas.common import PaginationMeta
from ediens.schemas.user import UserSummary

PostSort = Literal["created_at_desc", "created_at_asc", "expiry_asc", "price_asc", "price_desc", "popular"]


def _check_vocabulary(values: List[str], allowed: frozenset, label: str) -> List[str]:
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ValueError(f"Unknown {label}: {', '.join(unknown)}")
    return values


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class FoodPostCreate(BaseModel):
    title: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=1000)
    category: FoodCategory
    subcategory: Optional[str] = Field(default=None, max_length=50)
    quantity: int = Field(default=1, ge=1)
    unit: FoodUnit = FoodUnit.PIECE
    price: float = Field(default=0.0, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str = Field(min_length=3, max_length=255)
    city: str = Field(min_length=2, max_length=100)
    pickup_instructions: Optional[str] = Field(default=None, max_length=500)
    expiry_date: datetime
    allergens: List[str] = Field(default_factory=list)
    dietary_info: List[str] = Field(default_factory=list)
    storage_instructions: Optional[str] = Field(default=None, max_length=500)
    max_reservations: Optional[int] = Field(default=None, ge=1)
    tags: List[str] = Field(default_factory=list, max_length=20)

    @field_validator("expiry_date")
    @classmethod
    def expiry_in_future(cls, v: datetime) -> datetime:
        v = as_utc(v)
        if v <= utcnow():
            raise ValueError("Expiry date must be in the future")
        return v

    @field_validator("allergens")
    @classmethod
    def validate_allergens(cls, v: List[str]) -> List[str]:
        return _check_vocabulary(v, ALLERGENS, "allergens")

    @field_validator("dietary_info")
    @classmethod
    def validate_dietary_info(cls, v: List[str]) -> List[str]:
        return _check_vocabulary(v, DIETARY_INFO, "dietary info")

    @model_validator(mode="after")
    def original_price_not_below_price(self) -> "FoodPostCreate":
        if self.original_price is not None and self.original_price < self.price:
            raise ValueError("original_price cannot be lower than price")
        return self


class FoodPostUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    category: Optional[FoodCategory] = None
    subcategory: Optional[str] = Field(default=None, max_length=50)
    quantity: Optional[int] = Field(default=None, ge=1)
    unit: Optional[FoodUnit] = None
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    pickup_instructions: Optional[str] = Field(default=None, max_length=500)
    expiry_date: Optional[datetime] = None
    allergens: Optional[List[str]] = None
    dietary_info: Optional[List[str]] = None
    storage_instructions: Optional[str] = Field(default=None, max_length=500)
    max_reservations: Optional[int] = Field(default=None, ge=1)
    tags: Optional[List[str]] = None

    @field_validator("expiry_date")
    @classmethod
    def expiry_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        v = as_utc(v)
        if v <= utcnow():
            raise ValueError("Expiry date must be in the future")
        return v

    @field_validator("allergens")
    @classmethod
    def validate_allergens(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return v if v is None else _check_vocabulary(v, ALLERGENS, "allergens")

    @field_validator("dietary_info")
    @classmethod
    def validate_dietary_info(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return v if v is None else _check_vocabulary(v, DIETARY_INFO, "dietary info")


class PostFilters(BaseModel):
    """Search filters for GET /api/posts."""
    category: Optional[FoodCategory] = None
    city: Optional[str] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    is_free: Optional[bool] = None
    urgency: Optional[Urgency] = None
    search: Optional[str] = Field(default=None, max_length=100)
    sort: PostSort = "created_at_desc"


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class PostSummary(BaseModel):
    """Compact post reference embedded in claims and messages."""
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    status: str
    city: str
    quantity: int
    unit: str
    images: List[dict] = Field(default_factory=list)
    expiry_date: datetime

    model_config = {"from_attributes": True}


class FoodPostResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: str
    category: str
    subcategory: Optional[str] = None
    quantity: int
    unit: str
    price: float
    is_free: bool
    original_price: Optional[float] = None
    discount_percentage: Optional[int] = None
    images: List[dict]
    latitude: float
    longitude: float
    address: str
    city: str
    pickup_instructions: Optional[str] = None
    expiry_date: datetime
    is_expired: bool
    urgency: str
    allergens: List[str]
    dietary_info: List[str]
    storage_instructions: Optional[str] = None
    status: str
    max_reservations: Optional[int] = None
    current_reservations: int
    is_business_post: bool
    tags: List[str]
    view_count: int
    created_at: datetime
    updated_at: datetime
    owner: Optional[UserSummary] = None
    distance_km: Optional[float] = Field(default=None, description="Set on nearby searches")

    model_config = {"from_attributes": True}


class FoodPostListResponse(BaseModel):
    posts: List[FoodPostResponse]
    pagination: PaginationMeta


class ImageUploadResponse(BaseModel):
    message: str
    images: List[dict]
