"""Construction of the service graph.

Every stateful component (cache, limiters, metrics, record store) is built
here once per application and handed to the pipeline explicitly. Tests build
their own containers with fake clocks instead of patching module globals.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitPolicy
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.adapters.storage.base import AbstractRecordStore
from app.adapters.storage.in_memory import InMemoryRecordStore
from app.core.config import CacheSettings, RateLimitSettings, Settings
from app.services.crypto_service import CryptoService
from app.services.metrics_service import MetricsAggregator
from app.services.pipeline_service import RateLimitClass, RequestPipeline
from app.services.scheduler import BackgroundScheduler
from app.utils.cache_store import CacheClass, CacheStore


@dataclass
class ServiceContainer:
    settings: Settings
    record_store: AbstractRecordStore
    cache: CacheStore
    limiters: dict[str, AbstractRateLimiter]
    metrics: MetricsAggregator
    pipeline: RequestPipeline
    crypto: CryptoService
    scheduler: BackgroundScheduler


def build_rate_limit_policies(cfg: RateLimitSettings) -> list[RateLimitPolicy]:
    return [
        RateLimitPolicy(
            name=RateLimitClass.STANDARD.value,
            window_seconds=cfg.standard_window_seconds,
            max_requests=cfg.standard_max_requests,
        ),
        RateLimitPolicy(
            name=RateLimitClass.PRICE.value,
            window_seconds=cfg.price_window_seconds,
            max_requests=cfg.price_max_requests,
        ),
        RateLimitPolicy(
            name=RateLimitClass.HISTORY.value,
            window_seconds=cfg.history_window_seconds,
            max_requests=cfg.history_max_requests,
        ),
    ]


def build_cache_ttls(cfg: CacheSettings) -> dict[CacheClass, int]:
    return {
        CacheClass.PRICES: cfg.prices_ttl_seconds,
        CacheClass.SINGLE_PRICE: cfg.single_price_ttl_seconds,
        CacheClass.HISTORY: cfg.history_ttl_seconds,
        CacheClass.MARKETS: cfg.markets_ttl_seconds,
        CacheClass.TRENDING: cfg.trending_ttl_seconds,
        CacheClass.DEFAULT: cfg.default_ttl_seconds,
    }


def build_services(
    settings: Settings,
    *,
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
    record_store: AbstractRecordStore | None = None,
) -> ServiceContainer:
    """Wire the pipeline and its collaborators from settings.

    Args:
        settings: Resolved application settings.
        clock: UNIX time source shared by every component.
        rng: Random source for the simulated market data.
        record_store: Replace the default in-memory record store.
    """

    store = record_store or InMemoryRecordStore(max_api_logs=settings.metrics.request_log_capacity)
    cache = CacheStore(build_cache_ttls(settings.cache), clock=clock, record_store=store)
    limiters: dict[str, AbstractRateLimiter] = {
        policy.name: InMemoryFixedWindowRateLimiter(policy, clock=clock)
        for policy in build_rate_limit_policies(settings.rate_limit)
    }
    metrics = MetricsAggregator(
        store,
        buffer_size=settings.metrics.buffer_size,
        flush_every=settings.metrics.flush_every,
        rps_window_seconds=settings.metrics.rps_window_seconds,
        clock=clock,
    )
    pipeline = RequestPipeline(
        cache=cache,
        limiters=limiters,
        metrics=metrics,
        record_store=store,
        clock=clock,
        rate_limit_enabled=settings.rate_limit.enabled,
        include_rate_limit_headers=settings.rate_limit.include_headers,
    )
    crypto = CryptoService(rng=rng, simulate_latency=settings.app.simulate_latency, clock=clock)

    scheduler = BackgroundScheduler()
    scheduler.add_interval_job("cache.sweep", settings.cache.sweep_interval_seconds, cache.sweep)
    scheduler.add_interval_job(
        "rate_limit.sweep",
        settings.rate_limit.sweep_interval_seconds,
        lambda: sum(limiter.sweep() for limiter in limiters.values()),
    )
    scheduler.add_interval_job("metrics.flush", settings.metrics.flush_interval_seconds, metrics.flush)

    return ServiceContainer(
        settings=settings,
        record_store=store,
        cache=cache,
        limiters=limiters,
        metrics=metrics,
        pipeline=pipeline,
        crypto=crypto,
        scheduler=scheduler,
    )
