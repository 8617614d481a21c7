"""Rolling request metrics.

Every handled request is recorded as a sample. Transient counters accumulate
until a flush computes a snapshot, hands it to the record store, and resets
them. The response-time buffer survives flushes so the rolling average keeps
its history (bounded to the most recent samples).
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from app.adapters.storage.base import AbstractRecordStore, MetricsSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricsSample:
    response_time_ms: float
    cache_hit: bool
    status_code: int
    timestamp: float


class MetricsAggregator:
    """Thread-safe counters plus a bounded response-time buffer.

    Args:
        history: Where flushed snapshots are written.
        buffer_size: Number of samples kept for the rolling average.
        flush_every: Flush automatically after this many recorded samples.
        rps_window_seconds: Fixed divisor used for ``requests_per_second``.
        clock: Time source returning UNIX time in seconds.
    """

    def __init__(
        self,
        history: AbstractRecordStore | None = None,
        *,
        buffer_size: int = 1000,
        flush_every: int = 100,
        rps_window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        if flush_every < 1:
            raise ValueError("flush_every must be >= 1")
        if rps_window_seconds <= 0:
            raise ValueError("rps_window_seconds must be > 0")

        self._history = history
        self._flush_every = flush_every
        self._rps_window = rps_window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._samples: deque[MetricsSample] = deque(maxlen=buffer_size)
        self.total_requests = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.error_count = 0

    @property
    def samples(self) -> list[MetricsSample]:
        with self._lock:
            return list(self._samples)

    def record(self, sample: MetricsSample) -> MetricsSnapshot | None:
        """Add a sample; returns the snapshot if this sample triggered a flush."""

        with self._lock:
            self._samples.append(sample)
            self.total_requests += 1
            if sample.cache_hit:
                self.cache_hits += 1
            else:
                self.cache_misses += 1
            if sample.status_code >= 400:
                self.error_count += 1

            if self.total_requests % self._flush_every == 0:
                return self.flush()
        return None

    def latest(self) -> MetricsSnapshot:
        """Snapshot of the current state without flushing."""

        with self._lock:
            return self._compute()

    def flush(self) -> MetricsSnapshot | None:
        """Emit a snapshot to the history and reset the transient counters.

        Nothing is emitted while the response-time buffer is empty.
        """

        with self._lock:
            if not self._samples:
                return None

            snapshot = self._compute()
            self.total_requests = 0
            self.cache_hits = 0
            self.cache_misses = 0
            self.error_count = 0

        if self._history is not None:
            try:
                self._history.create_performance_metric(snapshot)
            except Exception:
                logger.warning("metrics.history_write_failed", exc_info=True)

        logger.info(
            "metrics.flushed",
            extra={
                "avg_response_time_ms": snapshot.avg_response_time_ms,
                "cache_hit_rate_pct": snapshot.cache_hit_rate_pct,
                "requests_per_second": snapshot.requests_per_second,
                "error_rate_pct": snapshot.error_rate_pct,
            },
        )
        return snapshot

    def _compute(self) -> MetricsSnapshot:
        if self._samples:
            avg = sum(s.response_time_ms for s in self._samples) / len(self._samples)
        else:
            avg = 0.0

        lookups = self.cache_hits + self.cache_misses
        hit_rate = (self.cache_hits / lookups) * 100 if lookups else 0.0
        error_rate = (self.error_count / self.total_requests) * 100 if self.total_requests else 0.0

        return MetricsSnapshot(
            avg_response_time_ms=avg,
            cache_hit_rate_pct=hit_rate,
            requests_per_second=self.total_requests / self._rps_window,
            error_rate_pct=error_rate,
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )
