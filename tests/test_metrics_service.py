"""Unit tests for the rolling MetricsAggregator."""

from unittest.mock import Mock

import pytest

from app.adapters.storage.in_memory import InMemoryRecordStore
from app.services.metrics_service import MetricsAggregator, MetricsSample


def _sample(response_time_ms: float = 10.0, *, cache_hit: bool = False, status_code: int = 200) -> MetricsSample:
    return MetricsSample(
        response_time_ms=response_time_ms,
        cache_hit=cache_hit,
        status_code=status_code,
        timestamp=1000.0,
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def metrics(store: InMemoryRecordStore, clock) -> MetricsAggregator:
    return MetricsAggregator(store, clock=clock)


def test_record_updates_counters(metrics: MetricsAggregator) -> None:
    metrics.record(_sample(cache_hit=True))
    metrics.record(_sample())
    metrics.record(_sample(status_code=404))
    metrics.record(_sample(status_code=429))

    assert metrics.total_requests == 4
    assert metrics.cache_hits == 1
    assert metrics.cache_misses == 3
    assert metrics.error_count == 2


def test_counters_are_conserved_between_flushes(metrics: MetricsAggregator) -> None:
    for i in range(57):
        metrics.record(_sample(cache_hit=i % 3 == 0, status_code=500 if i % 7 == 0 else 200))

        assert metrics.cache_hits + metrics.cache_misses == metrics.total_requests
        assert metrics.error_count <= metrics.total_requests


def test_latest_computes_snapshot_without_mutating(metrics: MetricsAggregator, store: InMemoryRecordStore) -> None:
    metrics.record(_sample(10, cache_hit=True))
    metrics.record(_sample(30))
    metrics.record(_sample(20, status_code=500))
    metrics.record(_sample(40, cache_hit=True))

    snapshot = metrics.latest()

    assert snapshot.avg_response_time_ms == pytest.approx(25.0)
    assert snapshot.cache_hit_rate_pct == pytest.approx(50.0)
    assert snapshot.requests_per_second == pytest.approx(4 / 60)
    assert snapshot.error_rate_pct == pytest.approx(25.0)
    assert metrics.total_requests == 4
    assert store.get_latest_performance_metrics() == []


def test_latest_with_no_traffic_is_all_zero(metrics: MetricsAggregator) -> None:
    snapshot = metrics.latest()

    assert snapshot.avg_response_time_ms == 0
    assert snapshot.cache_hit_rate_pct == 0
    assert snapshot.requests_per_second == 0
    assert snapshot.error_rate_pct == 0


def test_flush_emits_snapshot_and_resets_counters_but_keeps_buffer(
    metrics: MetricsAggregator, store: InMemoryRecordStore
) -> None:
    metrics.record(_sample(10, cache_hit=True))
    metrics.record(_sample(30, status_code=500))

    snapshot = metrics.flush()

    assert snapshot is not None
    assert store.get_latest_performance_metrics() == [snapshot]
    assert snapshot.cache_hit_rate_pct == pytest.approx(50.0)
    assert snapshot.error_rate_pct == pytest.approx(50.0)
    assert metrics.total_requests == 0
    assert metrics.cache_hits == 0
    assert metrics.cache_misses == 0
    assert metrics.error_count == 0
    # rolling average survives the flush
    assert len(metrics.samples) == 2
    assert metrics.latest().avg_response_time_ms == pytest.approx(20.0)


def test_flush_with_empty_buffer_emits_nothing(metrics: MetricsAggregator, store: InMemoryRecordStore) -> None:
    assert metrics.flush() is None
    assert store.get_latest_performance_metrics() == []


def test_automatic_flush_every_n_samples(store: InMemoryRecordStore, clock) -> None:
    metrics = MetricsAggregator(store, flush_every=100, clock=clock)

    results = [metrics.record(_sample()) for _ in range(100)]

    assert all(r is None for r in results[:-1])
    assert results[-1] is not None
    assert results[-1].requests_per_second == pytest.approx(100 / 60)
    assert len(store.get_latest_performance_metrics(10)) == 1
    assert metrics.total_requests == 0


def test_rolling_buffer_evicts_oldest(store: InMemoryRecordStore, clock) -> None:
    metrics = MetricsAggregator(store, buffer_size=3, flush_every=1000, clock=clock)

    for value in (100, 1, 2, 3):
        metrics.record(_sample(value))

    assert [s.response_time_ms for s in metrics.samples] == [1, 2, 3]
    assert metrics.latest().avg_response_time_ms == pytest.approx(2.0)


def test_history_write_failure_is_swallowed(clock) -> None:
    history = Mock()
    history.create_performance_metric.side_effect = RuntimeError("db down")
    metrics = MetricsAggregator(history, clock=clock)
    metrics.record(_sample())

    snapshot = metrics.flush()

    assert snapshot is not None
    assert metrics.total_requests == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"buffer_size": 0},
        {"flush_every": 0},
        {"rps_window_seconds": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        MetricsAggregator(None, **kwargs)
