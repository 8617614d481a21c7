"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses. Each subclass carries
the HTTP status and default error code it maps to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    hint: str
    field: str
    symbol: str
    retry_after: int
    limit: int
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

    status_code: ClassVar[int] = 500

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input fails validation."""

    status_code: ClassVar[int] = 400


class NotFoundAppError(AppError):
    """Raised by handlers when the requested resource does not exist."""

    status_code: ClassVar[int] = 404


class RateLimitAppError(AppError):
    """Raised when a client exceeds its request budget."""

    status_code: ClassVar[int] = 429


class ServerAppError(AppError):
    """Raised for failures on our side (handlers or collaborators)."""

    status_code: ClassVar[int] = 500


def validation_error(message: str, **details: Any) -> ValidationAppError:
    return ValidationAppError(code="validation_error", message=message, details=details or None)  # type: ignore[arg-type]


def not_found_error(message: str, **details: Any) -> NotFoundAppError:
    return NotFoundAppError(code="resource_not_found", message=message, details=details or None)  # type: ignore[arg-type]
