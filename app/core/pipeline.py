"""FastAPI glue for the request pipeline.

This module wires the transport-agnostic pipeline into the HTTP layer:
- Route policy table (cache class + rate limit class per endpoint)
- Client identification (X-API-Key header, falling back to client IP)
- Conversion of Starlette requests/pipeline responses

Routes call ``run_pipeline`` with a zero-argument coroutine that does the
actual work; everything around it (429s, cache hits, envelopes, logging,
metrics) happens here.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from app.core.container import ServiceContainer
from app.services.crypto_service import CryptoService
from app.services.pipeline_service import (
    Handler,
    PipelineRequest,
    RateLimitClass,
    RequestPipeline,
    RoutePolicy,
)
from app.utils.cache_store import CacheClass

API_KEY_HEADER = "X-API-Key"

ROUTE_POLICIES: dict[str, RoutePolicy] = {
    "prices": RoutePolicy(RateLimitClass.PRICE, CacheClass.PRICES),
    "price_by_symbol": RoutePolicy(RateLimitClass.PRICE, CacheClass.SINGLE_PRICE),
    "history": RoutePolicy(RateLimitClass.HISTORY, CacheClass.HISTORY),
    "markets": RoutePolicy(RateLimitClass.STANDARD, CacheClass.MARKETS),
    "trending": RoutePolicy(RateLimitClass.STANDARD, CacheClass.TRENDING),
    "metrics": RoutePolicy(RateLimitClass.STANDARD, None),
}


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_pipeline(services: Annotated[ServiceContainer, Depends(get_services)]) -> RequestPipeline:
    return services.pipeline


def get_crypto_service(services: Annotated[ServiceContainer, Depends(get_services)]) -> CryptoService:
    return services.crypto


def build_client_id(request: Request) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.

    Returns:
        str: Namespaced client identifier.
    """

    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        return f"api_key:{api_key}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def build_pipeline_request(request: Request) -> PipelineRequest:
    return PipelineRequest(
        endpoint=request.url.path,
        method=request.method,
        client_id=build_client_id(request),
        query=tuple(request.query_params.multi_items()),
        skip_cache=request.query_params.get("skip_cache", "").lower() == "true",
        user_agent=request.headers.get("user-agent", "unknown"),
        ip_address=request.client.host if request.client else None,
    )


async def run_pipeline(
    request: Request,
    pipeline: RequestPipeline,
    route: str,
    handler: Handler,
) -> JSONResponse:
    """Run ``handler`` through the pipeline under the policy registered for ``route``."""

    response = await pipeline.handle(build_pipeline_request(request), ROUTE_POLICIES[route], handler)
    return JSONResponse(
        status_code=response.status_code,
        content=response.body,
        headers=response.headers,
    )
