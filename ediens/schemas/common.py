"""
Ediens Backend — Shared API Schemas
=====================================

What:  Response shapes shared by every router: errors, health, pagination.
"""

import math
from typing import Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Error Response — Consistent error format across all endpoints
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "invalid_transition",
            "message": "Cannot move claim from 'picked_up' to 'cancelled'",
            "details": {"current_status": "picked_up", "requested_status": "cancelled"},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    notification_subscribers: int = Field(description="Open notification connections")
    uptime_seconds: float = Field(description="Seconds since service started")


# ══════════════════════════════════════════════════════════════════════════
# Pagination — page/limit style used by list endpoints
# ══════════════════════════════════════════════════════════════════════════


class PaginationMeta(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            items_per_page=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class MessageResponse(BaseModel):
    """Plain acknowledgement body for endpoints with nothing else to return."""
    message: str
