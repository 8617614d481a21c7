"""Record store adapters (request log, metrics history, cache entry table)."""

from app.adapters.storage.base import (
    AbstractRecordStore,
    ApiLogEntry,
    CacheEntryRecord,
    MetricsSnapshot,
)
from app.adapters.storage.in_memory import InMemoryRecordStore

__all__ = [
    "AbstractRecordStore",
    "ApiLogEntry",
    "CacheEntryRecord",
    "InMemoryRecordStore",
    "MetricsSnapshot",
]
