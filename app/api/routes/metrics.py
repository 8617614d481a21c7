from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.core.container import ServiceContainer
from app.core.pipeline import get_services, run_pipeline

router = APIRouter(tags=["Metrics"])


def build_metrics_payload(services: ServiceContainer) -> dict[str, Any]:
    """Live metrics, falling back per field to the last flushed snapshot.

    A live value of zero usually means counters were just reset by a flush,
    so the persisted snapshot is the better answer until traffic resumes.
    """

    live = services.metrics.latest()
    persisted = services.record_store.get_latest_performance_metrics(1)
    last = persisted[0] if persisted else None

    def pick(live_value: float, attr: str) -> float:
        if live_value or last is None:
            return live_value
        return getattr(last, attr)

    return {
        "avg_response_time": pick(live.avg_response_time_ms, "avg_response_time_ms"),
        "cache_hit_rate": pick(live.cache_hit_rate_pct, "cache_hit_rate_pct"),
        "requests_per_second": pick(live.requests_per_second, "requests_per_second"),
        "error_rate": pick(live.error_rate_pct, "error_rate_pct"),
        "cache_stats": services.cache.stats(),
        "timestamp": live.timestamp,
    }


@router.get("/metrics")
async def get_performance_metrics(
    request: Request,
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> JSONResponse:
    """Request pipeline metrics (never cached)."""

    async def handler() -> dict:
        return {"data": build_metrics_payload(services)}

    return await run_pipeline(request, services.pipeline, "metrics", handler)
