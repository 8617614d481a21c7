"""Cache warm-up on startup.

Replays the most popular GET routes against the application in-process so
the first real callers are served from cache. Requests go through the full
HTTP stack, so they are rate limited, logged and measured like any other.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI

logger = logging.getLogger(__name__)

WARMUP_CLIENT_KEY = "internal-cache-warmer"

WARMUP_PATHS: tuple[str, ...] = (
    "/v1/prices",
    "/v1/prices/BTC",
    "/v1/prices/ETH",
    "/v1/prices/SOL",
    "/v1/prices/DOGE",
    "/v1/prices/ADA",
    "/v1/history/BTC",
    "/v1/markets",
    "/v1/trending",
)


async def warm_cache(app: FastAPI, paths: tuple[str, ...] = WARMUP_PATHS) -> int:
    """Request each path once; returns how many came back successful."""

    logger.info("cache.warmup_started", extra={"paths": len(paths)})
    warmed = 0
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://cache-warmer",
        headers={"X-API-Key": WARMUP_CLIENT_KEY},
    ) as client:
        for path in paths:
            try:
                response = await client.get(path)
            except httpx.HTTPError:
                logger.warning("cache.warmup_request_failed", exc_info=True, extra={"path": path})
                continue
            if response.status_code == 200:
                warmed += 1
            else:
                logger.warning(
                    "cache.warmup_unexpected_status",
                    extra={"path": path, "status_code": response.status_code},
                )

    logger.info("cache.warmup_finished", extra={"warmed": warmed, "paths": len(paths)})
    return warmed
