"""Request pipeline: rate limiting, caching and metrics around a handler.

Per request the pipeline:
1. Admits the client against the route's rate limit policy (429 on rejection).
2. Serves read-only requests from the cache when a live entry exists.
3. Otherwise awaits the handler, caches a successful ``data`` payload, and
   wraps the result in the success envelope.
4. Writes exactly one request log entry and one metrics sample, whatever
   the outcome.

The pipeline is transport-agnostic: it takes a ``PipelineRequest`` and returns
a ``PipelineResponse``; the HTTP layer translates both.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from fastapi.encoders import jsonable_encoder

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.storage.base import AbstractRecordStore, ApiLogEntry
from app.core.errors import AppError
from app.core.logging import hash_identifier
from app.services.metrics_service import MetricsAggregator, MetricsSample
from app.utils.cache_store import CacheClass, CacheStore, build_cache_key

logger = logging.getLogger(__name__)

READ_ONLY_METHODS = frozenset({"GET", "HEAD"})

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


class RateLimitClass(str, Enum):
    STANDARD = "standard"
    PRICE = "price"
    HISTORY = "history"


@dataclass(frozen=True)
class RoutePolicy:
    """How the pipeline treats one route.

    Attributes:
        rate_limit_class: Name of the limiter policy the route is subject to.
        cache_class: TTL profile for cached results; None disables caching.
    """

    rate_limit_class: RateLimitClass | str
    cache_class: CacheClass | None = None


@dataclass(frozen=True)
class PipelineRequest:
    endpoint: str
    method: str
    client_id: str
    query: tuple[tuple[str, str], ...] = ()
    skip_cache: bool = False
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass
class PipelineResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    cache_hit: bool = False


Handler = Callable[[], Awaitable[Any]]


def error_body(code: str, message: str, *, retry_after: int | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if retry_after is not None:
        error["retry_after"] = retry_after
    return {"success": False, "error": error}


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


def _has_cacheable_data(payload: Mapping[str, Any]) -> bool:
    data = payload.get("data")
    return data is not None and data != [] and data != {} and data != ""


class RequestPipeline:
    """Gates, caches and measures calls to downstream handlers.

    All collaborators are passed in so each pipeline owns its own state.

    Args:
        cache: Cache store shared by all routes.
        limiters: Limiter per rate limit class.
        metrics: Aggregator fed one sample per request.
        record_store: Durable request log; write failures are logged and ignored.
        clock: UNIX time source used for log timestamps.
        timer: Monotonic time source used to measure response times.
        rate_limit_enabled: When False no limiter is consulted.
        include_rate_limit_headers: Expose X-RateLimit-* on admitted requests.
    """

    def __init__(
        self,
        *,
        cache: CacheStore,
        limiters: Mapping[str, AbstractRateLimiter],
        metrics: MetricsAggregator,
        record_store: AbstractRecordStore | None = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
        rate_limit_enabled: bool = True,
        include_rate_limit_headers: bool = True,
    ) -> None:
        self.cache = cache
        self.limiters = {str(getattr(k, "value", k)): v for k, v in limiters.items()}
        self.metrics = metrics
        self.record_store = record_store
        self._clock = clock
        self._timer = timer
        self._rate_limit_enabled = rate_limit_enabled
        self._include_headers = include_rate_limit_headers

    async def handle(
        self,
        request: PipelineRequest,
        policy: RoutePolicy,
        handler: Handler,
    ) -> PipelineResponse:
        headers: dict[str, str] = {}

        if self._rate_limit_enabled:
            result = self._limiter_for(policy).admit(request.client_id)
            if self._include_headers:
                headers.update(rate_limit_headers(result))
            if not result.allowed:
                return self._reject(request, result, headers)

        cacheable = (
            policy.cache_class is not None
            and request.method.upper() in READ_ONLY_METHODS
            and not request.skip_cache
        )
        cache_key = build_cache_key(request.endpoint, request.query) if cacheable else None

        start = self._timer()

        if cache_key is not None:
            cached = self._cache_get(cache_key)
            if cached is not None:
                body = {"success": True, "source": "cache", "data": cached}
                return self._finish(request, 200, body, headers, self._elapsed_ms(start), cache_hit=True)

        try:
            result_value = await handler()
        except AppError as exc:
            logger.warning(
                "pipeline.handler_error",
                extra={
                    "endpoint": request.endpoint,
                    "error_code": exc.code,
                    "status_code": exc.status_code,
                },
            )
            body = error_body(exc.code, exc.message)
            return self._finish(request, exc.status_code, body, headers, self._elapsed_ms(start))
        except asyncio.CancelledError:
            logger.warning("pipeline.handler_cancelled", extra={"endpoint": request.endpoint})
            body = error_body("server_error", GENERIC_SERVER_ERROR_MESSAGE)
            self._finish(request, 500, body, headers, self._elapsed_ms(start))
            raise
        except Exception as exc:
            logger.error(
                "pipeline.handler_failed",
                exc_info=True,
                extra={"endpoint": request.endpoint, "error_type": type(exc).__name__},
            )
            body = error_body("server_error", GENERIC_SERVER_ERROR_MESSAGE)
            return self._finish(request, 500, body, headers, self._elapsed_ms(start))

        payload = jsonable_encoder(result_value)
        body = {"success": True, "source": "api"}
        if isinstance(payload, Mapping):
            if cache_key is not None and _has_cacheable_data(payload):
                self._cache_set(cache_key, payload["data"], policy.cache_class)
            body["data"] = payload.get("data")
            if payload.get("metadata") is not None:
                body["metadata"] = payload["metadata"]
        else:
            # bare results have no data field to store; served uncached
            body["data"] = payload
        return self._finish(request, 200, body, headers, self._elapsed_ms(start))

    def _limiter_for(self, policy: RoutePolicy) -> AbstractRateLimiter:
        name = str(getattr(policy.rate_limit_class, "value", policy.rate_limit_class))
        try:
            return self.limiters[name]
        except KeyError:
            raise LookupError(f"no rate limiter configured for class {name!r}") from None

    def _reject(
        self,
        request: PipelineRequest,
        result: RateLimitResult,
        headers: dict[str, str],
    ) -> PipelineResponse:
        retry_after = result.retry_after_seconds or 0
        headers["Retry-After"] = str(retry_after)
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "endpoint": request.endpoint,
                "client_hash": hash_identifier(request.client_id),
                "limit": result.limit,
                "retry_after_s": retry_after,
            },
        )
        body = error_body(
            "rate_limit_exceeded",
            f"Rate limit exceeded. Try again in {retry_after} seconds",
            retry_after=retry_after,
        )
        return self._finish(request, 429, body, headers, 0.0)

    def _cache_get(self, key: str) -> Any | None:
        try:
            return self.cache.get(key)
        except Exception:
            logger.warning("pipeline.cache_get_failed", exc_info=True, extra={"cache_key": key})
            return None

    def _cache_set(self, key: str, data: Any, cache_class: CacheClass | None) -> None:
        try:
            self.cache.set(key, data, cache_class)
        except Exception:
            logger.warning("pipeline.cache_set_failed", exc_info=True, extra={"cache_key": key})

    def _elapsed_ms(self, start: float) -> float:
        return max(0.0, (self._timer() - start) * 1000)

    def _finish(
        self,
        request: PipelineRequest,
        status_code: int,
        body: dict[str, Any],
        headers: dict[str, str],
        response_time_ms: float,
        *,
        cache_hit: bool = False,
    ) -> PipelineResponse:
        self.record(request, status_code, response_time_ms, cache_hit=cache_hit)
        return PipelineResponse(status_code=status_code, body=body, headers=headers, cache_hit=cache_hit)

    def record(
        self,
        request: PipelineRequest,
        status_code: int,
        response_time_ms: float,
        *,
        cache_hit: bool = False,
    ) -> None:
        """Write the request log entry and metrics sample for one finished request.

        Called once per request by ``handle``; failures raised before the
        pipeline runs (unknown routes, framework errors) are recorded here too.
        """

        now = self._clock()
        entry = ApiLogEntry(
            endpoint=request.endpoint,
            method=request.method.upper(),
            status_code=status_code,
            response_time_ms=response_time_ms,
            cache_hit=cache_hit,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
            user_agent=request.user_agent,
            ip_address=request.ip_address,
        )

        if self.record_store is not None:
            try:
                self.record_store.create_api_log(entry)
            except Exception:
                logger.warning("request_log.write_failed", exc_info=True)

        self.metrics.record(
            MetricsSample(
                response_time_ms=response_time_ms,
                cache_hit=cache_hit,
                status_code=status_code,
                timestamp=now,
            )
        )

        logger.info(
            "pipeline.request",
            extra={
                "endpoint": entry.endpoint,
                "method": entry.method,
                "status_code": status_code,
                "response_time_ms": round(response_time_ms, 2),
                "cache_hit": cache_hit,
            },
        )
