"""In-memory record store.

Notes:
- Per-process only and lost on restart.
- Thread-safe: uses a lock around shared state.
- The request log is bounded; the oldest entries are dropped first.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime

from app.adapters.storage.base import (
    AbstractRecordStore,
    ApiLogEntry,
    CacheEntryRecord,
    MetricsSnapshot,
)


class InMemoryRecordStore(AbstractRecordStore):
    def __init__(self, *, max_api_logs: int | None = 10000) -> None:
        self._lock = threading.RLock()
        self._api_logs: deque[ApiLogEntry] = deque(maxlen=max_api_logs)
        self._metrics: list[MetricsSnapshot] = []
        self._cache_entries: dict[str, CacheEntryRecord] = {}

    def create_api_log(self, entry: ApiLogEntry) -> None:
        with self._lock:
            self._api_logs.append(entry)

    def get_api_logs(self, limit: int = 100) -> list[ApiLogEntry]:
        with self._lock:
            if limit <= 0:
                return []
            return list(self._api_logs)[-limit:]

    def create_performance_metric(self, snapshot: MetricsSnapshot) -> None:
        with self._lock:
            self._metrics.append(snapshot)

    def get_latest_performance_metrics(self, limit: int = 1) -> list[MetricsSnapshot]:
        with self._lock:
            if limit <= 0:
                return []
            return list(reversed(self._metrics[-limit:]))

    def create_cache_entry(self, key: str, expires_at: datetime, created_at: datetime) -> None:
        with self._lock:
            self._cache_entries[key] = CacheEntryRecord(
                key=key,
                expires_at=expires_at,
                created_at=created_at,
            )

    def get_cache_entry(self, key: str) -> CacheEntryRecord | None:
        with self._lock:
            record = self._cache_entries.get(key)
            if record is None:
                return None
            return CacheEntryRecord(
                key=record.key,
                expires_at=record.expires_at,
                created_at=record.created_at,
                hits=record.hits,
            )

    def increment_cache_hits(self, key: str) -> None:
        with self._lock:
            record = self._cache_entries.get(key)
            if record is not None:
                record.hits += 1

    def clean_expired_cache_entries(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, r in self._cache_entries.items() if r.expires_at <= now]
            for key in expired:
                del self._cache_entries[key]
            return len(expired)
