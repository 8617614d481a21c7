"""Rate limiter interfaces.

The pipeline depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitPolicy:
    """Immutable fixed-window policy for one route class.

    Attributes:
        name: Route class the policy applies to (e.g. ``price``).
        window_seconds: Length of a client's window.
        max_requests: Requests admitted per window.
    """

    name: str
    window_seconds: float
    max_requests: int

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of an admit operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    policy: RateLimitPolicy

    @abstractmethod
    def admit(self, client_id: str) -> RateLimitResult:
        """Count one request for ``client_id`` and decide whether it may proceed.

        Args:
            client_id: Unique identifier (e.g., API key, IP address).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> int:
        """Drop state for clients that have been idle; returns how many were removed."""
        raise NotImplementedError
