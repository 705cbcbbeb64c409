"""
Ediens Backend — Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for every failure the API reports.
Why:   Services raise domain errors; global handlers in main.py turn them
       into structured JSON responses with the correct HTTP status code.
How:   Each exception carries a user-facing message and a context dict
       (returned as `details`, minus anything internal).
Who:   Raised by services and middleware; caught by global handlers.

Exception Hierarchy:
    EdiensError (base)
    ├── ValidationError           → 400 Bad Request
    ├── AuthenticationError       → 401 Unauthorized (no/invalid credentials)
    ├── UnauthorizedError         → 403 Forbidden (actor may not do this)
    ├── NotFoundError             → 404 Not Found
    ├── ClaimConflictError        → 409 Conflict
    │   ├── InvalidTransitionError    (state machine rejects from → to)
    │   ├── CapacityExceededError     (quantity or reservation cap)
    │   ├── DuplicateClaimError       (already holds an active claim)
    │   ├── AlreadyRatedError         (rating is write-once)
    │   ├── PostUnavailableError      (post not open for claims)
    │   └── ConflictError             (lost a concurrent-write race)
    ├── RateLimitExceededError    → 429 Too Many Requests
    ├── FileStorageError          → 500 Internal Server Error
    └── DatabaseError             → 500 Internal Server Error

Guard failures are raised before any write, so the transaction rolls back
with nothing persisted.
"""

from typing import Any, Dict, Optional


class EdiensError(Exception):
    """
    Base exception for all Ediens application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Structured details for the client and the logs
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(EdiensError):
    """
    Raised when client input fails a business rule.

    HTTP: 400. Schema-level problems are still FastAPI's 422.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(EdiensError):
    """Missing, malformed or expired credentials. HTTP: 401."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UnauthorizedError(EdiensError):
    """
    The authenticated actor is not allowed to perform this action.

    HTTP: 403. Raised for strangers touching a claim, owners claiming their
    own post, claimants confirming their own claim, and similar.
    """

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(EdiensError):
    """Raised when a requested resource does not exist. HTTP: 404."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


# ── Claim lifecycle conflicts (HTTP 409) ──────────────────────────────────


class ClaimConflictError(EdiensError):
    """Base for every request that conflicts with current state. HTTP: 409."""


class InvalidTransitionError(ClaimConflictError):
    """The claim's current status does not allow the requested one."""

    def __init__(
        self,
        current: str,
        requested: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"current_status": current, "requested_status": requested})
        super().__init__(
            message=f"Cannot move claim from '{current}' to '{requested}'",
            context=ctx,
        )
        self.current = current
        self.requested = requested


class CapacityExceededError(ClaimConflictError):
    """Requested quantity or reservation count exceeds what the post allows."""

    def __init__(
        self,
        message: str = "Food post capacity exceeded",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DuplicateClaimError(ClaimConflictError):
    """The claimant already holds a pending or confirmed claim on the post."""

    def __init__(
        self,
        message: str = "You already have an active claim for this food post",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AlreadyRatedError(ClaimConflictError):
    """A claim's rating can be written only once."""

    def __init__(
        self,
        message: str = "This claim has already been rated",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PostUnavailableError(ClaimConflictError):
    """The food post is reserved, claimed, expired or withdrawn."""

    def __init__(
        self,
        status: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["post_status"] = status
        super().__init__(
            message="Food post is not available for claiming",
            context=ctx,
        )
        self.status = status


class ConflictError(ClaimConflictError):
    """
    A concurrent writer changed the row between read and write.

    Raised when an optimistic version check fails. The claim service retries
    the whole unit of work; this escapes only after retries are exhausted.
    """

    def __init__(
        self,
        message: str = "The resource was modified concurrently. Please retry.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ── Infrastructure errors ─────────────────────────────────────────────────


class FileStorageError(EdiensError):
    """File system operations failed. HTTP: 500; paths are logged only."""

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(EdiensError):
    """
    Raised when database operations fail unexpectedly.

    HTTP: 500. The message returned to the client is always generic; query
    text and constraint names stay in the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(EdiensError):
    """Client exceeded the per-IP request budget. HTTP: 429."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
