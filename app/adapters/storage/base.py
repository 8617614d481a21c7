"""Record store interfaces.

The record store is where the pipeline durably writes what happened: one
request log entry per request, the metrics snapshot history, and a secondary
table of cache entries kept for introspection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ApiLogEntry:
    """One handled request, as written to the request log."""

    endpoint: str
    method: str
    status_code: int
    response_time_ms: float
    cache_hit: bool
    timestamp: datetime
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable summary of the metrics aggregated since the previous flush."""

    avg_response_time_ms: float
    cache_hit_rate_pct: float
    requests_per_second: float
    error_rate_pct: float
    timestamp: datetime


@dataclass
class CacheEntryRecord:
    key: str
    expires_at: datetime
    created_at: datetime
    hits: int = field(default=0)


class AbstractRecordStore(ABC):
    """Interface for the persistent record collaborator."""

    @abstractmethod
    def create_api_log(self, entry: ApiLogEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_api_logs(self, limit: int = 100) -> list[ApiLogEntry]:
        """Most recent request log entries, newest last."""
        raise NotImplementedError

    @abstractmethod
    def create_performance_metric(self, snapshot: MetricsSnapshot) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_latest_performance_metrics(self, limit: int = 1) -> list[MetricsSnapshot]:
        """Most recent snapshots, newest first."""
        raise NotImplementedError

    @abstractmethod
    def create_cache_entry(self, key: str, expires_at: datetime, created_at: datetime) -> None:
        """Insert or replace the record for ``key``; both times come from the caller's clock."""
        raise NotImplementedError

    @abstractmethod
    def get_cache_entry(self, key: str) -> CacheEntryRecord | None:
        raise NotImplementedError

    @abstractmethod
    def increment_cache_hits(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def clean_expired_cache_entries(self, now: datetime) -> int:
        """Delete records whose expiry is at or before ``now``; returns the count."""
        raise NotImplementedError
