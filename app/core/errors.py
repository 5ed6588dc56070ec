"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Cache and rate-limiter backend failures are deliberately absent: those are
contained at their own boundaries and never surface as exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from app.adapters.rate_limit.base import RateLimitDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep the shape flexible while encouraging
    consistent keys across the codebase.
    """

    hint: str
    errors: list[str]
    resource: str
    resource_id: str
    table: str
    operation: str
    required_roles: list[str]
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input fails business validation."""


class AuthenticationAppError(AppError):
    """Raised when a bearer token is missing or cannot be verified."""


class AuthorizationAppError(AppError):
    """Raised when an authenticated principal lacks the required role or ownership."""


class NotFoundAppError(AppError):
    """Raised when a requested document does not exist."""


class ConflictAppError(AppError):
    """Raised when a write collides with an existing document."""


class StoreAppError(AppError):
    """Raised when the document store fails. Always propagated to the client as 500."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the rate limit dependency when a request is over quota.

    Carries the decision so the exception handler can build the 429 response
    (Retry-After and quota headers) without consulting the limiter again.
    """

    decision: RateLimitDecision | None = None
