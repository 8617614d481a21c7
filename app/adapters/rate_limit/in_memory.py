"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Windows are per client: a window opens on the client's first request
  rather than on wall-clock boundaries.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitPolicy, RateLimitResult

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per client inside a fixed window.

    Exactly ``policy.max_requests`` requests are admitted per window. Rejected
    requests still count, so a client hammering the endpoint keeps seeing 429
    until its window ends.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_entry(self, client_id: str) -> RateLimitEntry | None:
        """Return a copy of the client's current window state, if tracked."""

        with self._lock:
            entry = self._entries.get(client_id)
            if entry is None:
                return None
            return RateLimitEntry(count=entry.count, window_reset_at=entry.window_reset_at)

    def admit(self, client_id: str) -> RateLimitResult:
        """Count one request for the client and decide whether it may proceed.

        Args:
            client_id: Unique identifier for rate limiting (e.g., API key).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If client_id is empty.
        """
        if not client_id:
            raise ValueError("client_id must be a non-empty string")

        window = self.policy.window_seconds
        limit = self.policy.max_requests

        with self._lock:
            now = self._clock()
            entry = self._entries.get(client_id)
            if entry is None:
                entry = RateLimitEntry(count=0, window_reset_at=now + window)
                self._entries[client_id] = entry

            if now > entry.window_reset_at:
                entry.count = 0
                entry.window_reset_at = now + window

            entry.count += 1
            remaining = max(0, limit - entry.count)
            reset_at = int(math.ceil(entry.window_reset_at))

            if entry.count > limit:
                retry_after = max(0, int(math.ceil(entry.window_reset_at - now)))
                return RateLimitResult(
                    allowed=False,
                    limit=limit,
                    remaining=remaining,
                    reset_at=reset_at,
                    retry_after_seconds=retry_after,
                )

            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=remaining,
                reset_at=reset_at,
                retry_after_seconds=None,
            )

    def sweep(self) -> int:
        """Remove clients whose window ended more than one window ago."""

        window = self.policy.window_seconds
        with self._lock:
            now = self._clock()
            stale = [
                client_id
                for client_id, entry in self._entries.items()
                if now - entry.window_reset_at > window
            ]
            for client_id in stale:
                del self._entries[client_id]

        if stale:
            logger.debug(
                "rate_limit.swept",
                extra={"policy": self.policy.name, "removed": len(stale)},
            )
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
