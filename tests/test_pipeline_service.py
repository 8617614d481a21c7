"""Tests for the RequestPipeline state machine (rate limit, cache, handler, logging)."""

import asyncio
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.base import RateLimitPolicy
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.adapters.storage.in_memory import InMemoryRecordStore
from app.core.errors import ServerAppError, not_found_error, validation_error
from app.services.metrics_service import MetricsAggregator
from app.services.pipeline_service import (
    PipelineRequest,
    RateLimitClass,
    RequestPipeline,
    RoutePolicy,
)
from app.utils.cache_store import CacheClass, CacheStore

PRICE_ROUTE = RoutePolicy(RateLimitClass.PRICE, CacheClass.SINGLE_PRICE)
UNCACHED_ROUTE = RoutePolicy(RateLimitClass.STANDARD, None)


class CountingHandler:
    """Async handler double returning a fresh payload per call."""

    def __init__(self, payload=None) -> None:
        self.calls = 0
        self.payload = payload

    async def __call__(self):
        self.calls += 1
        if self.payload is not None:
            return self.payload
        return {"data": {"symbol": "BTC", "current_price": 100.0 + self.calls}, "metadata": {"n": self.calls}}


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def pipeline(store: InMemoryRecordStore, clock) -> RequestPipeline:
    limiters = {
        "price": InMemoryFixedWindowRateLimiter(RateLimitPolicy("price", 60, 3), clock=clock),
        "standard": InMemoryFixedWindowRateLimiter(RateLimitPolicy("standard", 900, 100), clock=clock),
    }
    return RequestPipeline(
        cache=CacheStore(clock=clock),
        limiters=limiters,
        metrics=MetricsAggregator(store, clock=clock),
        record_store=store,
        clock=clock,
    )


def _request(**overrides) -> PipelineRequest:
    values = {"endpoint": "/v1/prices/BTC", "method": "GET", "client_id": "ip:127.0.0.1"}
    values.update(overrides)
    return PipelineRequest(**values)


def _run(pipeline: RequestPipeline, request: PipelineRequest, policy: RoutePolicy, handler):
    return asyncio.run(pipeline.handle(request, policy, handler))


def test_miss_then_hit_invokes_handler_once(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()

    first = _run(pipeline, _request(), PRICE_ROUTE, handler)
    second = _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert handler.calls == 1
    assert first.status_code == 200
    assert first.body["source"] == "api"
    assert first.body["metadata"] == {"n": 1}
    assert second.body == {"success": True, "source": "cache", "data": first.body["data"]}
    assert second.cache_hit is True


def test_entry_expires_after_class_ttl(pipeline: RequestPipeline, clock) -> None:
    handler = CountingHandler()

    _run(pipeline, _request(), PRICE_ROUTE, handler)
    clock.advance(16)
    third = _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert handler.calls == 2
    assert third.body["source"] == "api"


def test_bypass_never_reads_or_writes_cache(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()
    _run(pipeline, _request(), PRICE_ROUTE, handler)

    bypass = _run(pipeline, _request(skip_cache=True), PRICE_ROUTE, handler)
    assert bypass.body["source"] == "api"
    assert bypass.cache_hit is False
    assert handler.calls == 2

    # the bypassed result did not overwrite the cached one
    cached = _run(pipeline, _request(), PRICE_ROUTE, handler)
    assert cached.body["data"]["current_price"] == 101.0


def test_bypass_on_cold_cache_stores_nothing(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()

    _run(pipeline, _request(skip_cache=True), PRICE_ROUTE, handler)
    _run(pipeline, _request(skip_cache=True), PRICE_ROUTE, handler)

    assert handler.calls == 2
    assert pipeline.cache.stats()["size"] == 0


def test_mutating_methods_skip_cache(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()

    _run(pipeline, _request(method="POST"), PRICE_ROUTE, handler)
    _run(pipeline, _request(method="POST"), PRICE_ROUTE, handler)

    assert handler.calls == 2
    assert pipeline.cache.stats()["size"] == 0


def test_uncached_route_always_calls_handler(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()

    _run(pipeline, _request(endpoint="/v1/metrics"), UNCACHED_ROUTE, handler)
    _run(pipeline, _request(endpoint="/v1/metrics"), UNCACHED_ROUTE, handler)

    assert handler.calls == 2


@pytest.mark.parametrize("payload", [{"data": []}, {"data": None}, {"metadata": {"count": 0}}])
def test_empty_success_bodies_are_not_cached(pipeline: RequestPipeline, payload: dict) -> None:
    response = _run(pipeline, _request(), PRICE_ROUTE, CountingHandler(payload))

    assert response.status_code == 200
    assert pipeline.cache.stats()["size"] == 0


def test_results_without_data_field_are_served_but_not_cached(pipeline: RequestPipeline) -> None:
    handler = CountingHandler([1, 2, 3])

    first = _run(pipeline, _request(), PRICE_ROUTE, handler)
    second = _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert handler.calls == 2
    assert first.body == {"success": True, "source": "api", "data": [1, 2, 3]}
    assert second.body["source"] == "api"
    assert pipeline.cache.stats()["size"] == 0


def test_query_order_shares_cache_entry(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()

    _run(pipeline, _request(query=(("a", "1"), ("b", "2"))), PRICE_ROUTE, handler)
    hit = _run(pipeline, _request(query=(("b", "2"), ("a", "1"))), PRICE_ROUTE, handler)

    assert hit.body["source"] == "cache"


def test_rate_limit_rejection_is_terminal(pipeline: RequestPipeline, store: InMemoryRecordStore, clock) -> None:
    handler = CountingHandler()
    for _ in range(3):
        response = _run(pipeline, _request(skip_cache=True), PRICE_ROUTE, handler)
        assert response.status_code == 200

    clock.advance(20.2)
    rejected = _run(pipeline, _request(skip_cache=True), PRICE_ROUTE, handler)

    assert handler.calls == 3
    assert rejected.status_code == 429
    assert rejected.body["success"] is False
    assert rejected.body["error"]["code"] == "rate_limit_exceeded"
    assert rejected.body["error"]["retry_after"] == 40
    assert rejected.headers["Retry-After"] == "40"
    assert rejected.headers["X-RateLimit-Remaining"] == "0"
    assert rejected.headers["X-RateLimit-Limit"] == "3"

    log = store.get_api_logs(1)[0]
    assert log.status_code == 429
    assert log.response_time_ms == 0
    assert log.cache_hit is False


def test_admitted_responses_expose_quota_headers(pipeline: RequestPipeline, clock) -> None:
    response = _run(pipeline, _request(), PRICE_ROUTE, CountingHandler())

    assert response.headers["X-RateLimit-Limit"] == "3"
    assert response.headers["X-RateLimit-Remaining"] == "2"
    assert response.headers["X-RateLimit-Reset"] == str(int(clock() + 60))
    assert "Retry-After" not in response.headers


def test_cache_hits_still_consume_quota(pipeline: RequestPipeline) -> None:
    handler = CountingHandler()
    statuses = [_run(pipeline, _request(), PRICE_ROUTE, handler).status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 429]


@pytest.mark.parametrize(
    ("error", "status", "code"),
    [
        (validation_error("Invalid query parameters"), 400, "validation_error"),
        (not_found_error("Cryptocurrency with symbol 'XXX' not found"), 404, "resource_not_found"),
        (ServerAppError(code="server_error", message="Upstream unavailable"), 500, "server_error"),
    ],
)
def test_app_errors_map_to_taxonomy(pipeline: RequestPipeline, store: InMemoryRecordStore, error, status, code) -> None:
    async def handler():
        raise error

    response = _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert response.status_code == status
    assert response.body == {"success": False, "error": {"code": code, "message": error.message}}
    assert pipeline.cache.stats()["size"] == 0
    assert store.get_api_logs(1)[0].status_code == status


def test_unexpected_errors_do_not_leak_details(pipeline: RequestPipeline) -> None:
    async def handler():
        raise RuntimeError("connection string postgres://secret")

    response = _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert response.status_code == 500
    assert response.body["error"]["code"] == "server_error"
    assert "secret" not in str(response.body)


def test_every_terminal_path_logs_exactly_once(pipeline: RequestPipeline, store: InMemoryRecordStore) -> None:
    ok = CountingHandler()

    async def failing():
        raise RuntimeError("boom")

    _run(pipeline, _request(), PRICE_ROUTE, ok)  # miss
    _run(pipeline, _request(), PRICE_ROUTE, ok)  # hit
    _run(pipeline, _request(endpoint="/v1/prices/ETH"), PRICE_ROUTE, failing)  # error
    _run(pipeline, _request(), PRICE_ROUTE, ok)  # 429

    logs = store.get_api_logs(10)
    assert [(log.status_code, log.cache_hit) for log in logs] == [
        (200, False),
        (200, True),
        (500, False),
        (429, False),
    ]
    assert pipeline.metrics.total_requests == 4
    assert pipeline.metrics.cache_hits == 1
    assert pipeline.metrics.error_count == 2


def test_request_log_failure_does_not_surface(clock) -> None:
    broken_store = Mock()
    broken_store.create_api_log.side_effect = RuntimeError("disk full")
    metrics = MetricsAggregator(None, clock=clock)
    pipeline = RequestPipeline(
        cache=CacheStore(clock=clock),
        limiters={"price": InMemoryFixedWindowRateLimiter(RateLimitPolicy("price", 60, 10), clock=clock)},
        metrics=metrics,
        record_store=broken_store,
        clock=clock,
    )

    response = _run(pipeline, _request(), PRICE_ROUTE, CountingHandler())

    assert response.status_code == 200
    assert metrics.total_requests == 1


def test_cache_failure_is_treated_as_miss(pipeline: RequestPipeline) -> None:
    broken_cache = Mock()
    broken_cache.get.side_effect = RuntimeError("cache down")
    broken_cache.set.side_effect = RuntimeError("cache down")
    pipeline.cache = broken_cache
    handler = CountingHandler()

    response = _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert response.status_code == 200
    assert response.body["source"] == "api"
    assert handler.calls == 1


def test_cancelled_handler_is_logged_and_reraised(pipeline: RequestPipeline, store: InMemoryRecordStore) -> None:
    async def handler():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        _run(pipeline, _request(), PRICE_ROUTE, handler)

    assert store.get_api_logs(1)[0].status_code == 500


def test_rate_limiting_can_be_disabled(store: InMemoryRecordStore, clock) -> None:
    pipeline = RequestPipeline(
        cache=CacheStore(clock=clock),
        limiters={},
        metrics=MetricsAggregator(store, clock=clock),
        clock=clock,
        rate_limit_enabled=False,
    )

    response = _run(pipeline, _request(), PRICE_ROUTE, CountingHandler())

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers


def test_unknown_rate_limit_class_is_a_configuration_error(pipeline: RequestPipeline) -> None:
    with pytest.raises(LookupError):
        _run(pipeline, _request(), RoutePolicy("no-such-policy", None), CountingHandler())
