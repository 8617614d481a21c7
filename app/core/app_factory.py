"""Application factory for FastAPI app.

Centralizes app construction (services, middleware, handlers, routers,
lifespan) so tests can build isolated apps with their own settings and clocks.
"""

from __future__ import annotations

import logging
import random
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.api.routes import crypto_router, health_router, metrics_router
from app.core.config import Settings, settings as default_settings
from app.core.container import build_services
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import TAGS_METADATA, apply_openapi_customizations
from app.services.cache_warmer import warm_cache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start background jobs on startup and stop them deterministically on shutdown."""

    services = app.state.services
    await services.scheduler.start()
    if services.settings.app.warm_cache_on_startup:
        try:
            await warm_cache(app)
        except Exception:
            logger.exception("cache.warmup_failed")
    try:
        yield
    finally:
        await services.scheduler.stop()
        services.metrics.flush()


def create_app(
    settings: Settings | None = None,
    *,
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Settings to use; defaults to the environment-derived global.
        clock: UNIX time source shared by cache, limiters and metrics.
        rng: Random source for the simulated market data.
        configure_logs: Reconfigure the root logger from ``settings.log``.

    Returns:
        Configured FastAPI app with services, middleware, handlers and routers.
    """

    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(cfg.log, debug=cfg.app.debug)

    app = FastAPI(
        title="Crypto Price API",
        description=(
            "Demo cryptocurrency price API. Every /v1 call passes through a request "
            "pipeline that rate limits per client (X-API-Key or IP), serves repeat "
            "reads from a TTL cache (bypass with skip_cache=true), and records "
            "response-time, cache-hit and error metrics."
        ),
        version="0.1.0",
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )
    app.state.services = build_services(cfg, clock=clock, rng=rng)

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(crypto_router, prefix="/v1")
    app.include_router(metrics_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (tags, client key scheme, rate limit headers)
    apply_openapi_customizations(app)

    return app
