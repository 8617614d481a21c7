"""In-memory TTL cache for upstream API results.

Every write is tagged with a cache class that selects the entry's TTL.
Expired entries are never returned: ``get`` deletes them lazily and
``sweep`` purges the rest on a schedule.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlencode

from app.adapters.storage.base import AbstractRecordStore

logger = logging.getLogger(__name__)


class CacheClass(str, Enum):
    """TTL profiles, named after the kind of result being cached."""

    PRICES = "prices"
    SINGLE_PRICE = "singlePrice"
    HISTORY = "history"
    MARKETS = "markets"
    TRENDING = "trending"
    DEFAULT = "default"


DEFAULT_TTL_SECONDS: dict[CacheClass, int] = {
    CacheClass.PRICES: 30,
    CacheClass.SINGLE_PRICE: 15,
    CacheClass.HISTORY: 300,
    CacheClass.MARKETS: 120,
    CacheClass.TRENDING: 600,
    CacheClass.DEFAULT: 60,
}


@dataclass(frozen=True)
class CacheEntry:
    """Cached value with expiration metadata.

    Entries are replaced, never mutated in place, so a concurrent reader
    always sees a complete entry.
    """

    key: str
    data: Any
    expires_at: float
    hits: int = 0


class CacheStore:
    """Thread-safe TTL key/value store with per-class expiry and hit counting.

    Args:
        ttl_seconds: Optional overrides for the per-class TTL table.
        clock: Time source returning UNIX time in seconds.
        record_store: Optional secondary store notified of writes and hits.
            Failures there are logged and ignored.
    """

    def __init__(
        self,
        ttl_seconds: Mapping[CacheClass, int] | None = None,
        *,
        clock: Callable[[], float] = time.time,
        record_store: AbstractRecordStore | None = None,
    ) -> None:
        self._ttl = dict(DEFAULT_TTL_SECONDS)
        if ttl_seconds:
            self._ttl.update(ttl_seconds)
        self._clock = clock
        self._record_store = record_store
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"CacheStore(size={len(self._store)})"

    def ttl_for(self, cache_class: CacheClass | str | None) -> int:
        """TTL in seconds for a class; unknown classes get the default TTL."""

        try:
            resolved = CacheClass(cache_class) if cache_class is not None else CacheClass.DEFAULT
        except ValueError:
            resolved = CacheClass.DEFAULT
        return self._ttl.get(resolved, self._ttl[CacheClass.DEFAULT])

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired.

        A live hit increments the entry's hit counter.
        """

        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "not_found"})
                return None

            if self._clock() >= entry.expires_at:
                del self._store[key]
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "expired"})
                return None

            self._store[key] = CacheEntry(
                key=entry.key,
                data=entry.data,
                expires_at=entry.expires_at,
                hits=entry.hits + 1,
            )

        logger.debug("cache.hit", extra={"cache_key": key})
        self._record(lambda store: store.increment_cache_hits(key))
        return entry.data

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the raw entry (expired or not) without touching hit counts."""

        with self._lock:
            return self._store.get(key)

    def set(self, key: str, value: Any, cache_class: CacheClass | str | None = CacheClass.DEFAULT) -> None:
        """Store ``value`` under ``key``, replacing any existing entry."""

        ttl = self.ttl_for(cache_class)
        now = self._clock()
        expires_at = now + ttl

        with self._lock:
            self._store[key] = CacheEntry(key=key, data=value, expires_at=expires_at)

        logger.debug(
            "cache.set",
            extra={"cache_key": key, "cache_class": str(getattr(cache_class, "value", cache_class)), "ttl_s": ttl},
        )
        self._record(lambda store: store.create_cache_entry(key, _to_datetime(expires_at), _to_datetime(now)))

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every entry whose key matches ``pattern`` (``re.search`` semantics)."""

        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            matched = [key for key in self._store if regex.search(key)]
            for key in matched:
                del self._store[key]
        return len(matched)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def stats(self) -> dict[str, Any]:
        """Return size and keys without exposing values."""

        with self._lock:
            return {"size": len(self._store), "keys": list(self._store)}

    def sweep(self) -> int:
        """Remove all expired entries; returns how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._store.items() if entry.expires_at <= now]
            for key in expired:
                del self._store[key]

        if expired:
            logger.info("cache.swept", extra={"removed": len(expired)})
        self._record(lambda store: store.clean_expired_cache_entries(_to_datetime(now)))
        return len(expired)

    def _record(self, action: Callable[[AbstractRecordStore], Any]) -> None:
        if self._record_store is None:
            return
        try:
            action(self._record_store)
        except Exception:
            logger.warning("cache.record_failed", exc_info=True)


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def build_cache_key(path: str, query: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> str:
    """Build a cache key from the request path and its normalized query string.

    Parameters are sorted so ordering does not create distinct keys, and the
    ``skip_cache`` flag is dropped since it never changes the payload.

    Examples:
        >>> build_cache_key("/v1/prices", {"currency": "USD"})
        '/v1/prices?currency=USD'
        >>> build_cache_key("/v1/prices", [("b", "2"), ("a", "1"), ("skip_cache", "false")])
        '/v1/prices?a=1&b=2'
    """

    items = query.items() if isinstance(query, Mapping) else (query or [])
    params = sorted((k, v) for k, v in items if k != "skip_cache")
    if not params:
        return path
    return f"{path}?{urlencode(params)}"
