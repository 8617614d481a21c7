from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.core.errors import not_found_error
from app.core.pipeline import get_crypto_service, get_pipeline, run_pipeline
from app.core.validation import parse_params
from app.schemas.crypto import (
    HistoryQuery,
    MarketsQuery,
    PricesQuery,
    SymbolParam,
    TrendingQuery,
)
from app.services.crypto_service import CryptoService
from app.services.pipeline_service import RequestPipeline

router = APIRouter()

PipelineDep = Annotated[RequestPipeline, Depends(get_pipeline)]
CryptoDep = Annotated[CryptoService, Depends(get_crypto_service)]


def _symbol(symbol: str) -> str:
    return parse_params(SymbolParam, {"symbol": symbol}, message="Invalid cryptocurrency symbol").symbol


@router.get("/prices", tags=["Prices"])
async def get_all_prices(request: Request, pipeline: PipelineDep, crypto: CryptoDep) -> JSONResponse:
    """Current prices for every tracked cryptocurrency.

    Cached for 30 seconds; pass ``skip_cache=true`` to force a fresh fetch.
    """

    async def handler() -> dict:
        query = parse_params(PricesQuery, request.query_params)
        prices = await crypto.get_all_prices(query.currency)
        return {
            "data": prices,
            "metadata": {"count": len(prices), "currency": query.currency},
        }

    return await run_pipeline(request, pipeline, "prices", handler)


@router.get("/prices/{symbol}", tags=["Prices"])
async def get_price_by_symbol(
    symbol: str,
    request: Request,
    pipeline: PipelineDep,
    crypto: CryptoDep,
) -> JSONResponse:
    """Current price for one cryptocurrency (cached for 15 seconds)."""

    async def handler() -> dict:
        ticker = _symbol(symbol)
        query = parse_params(PricesQuery, request.query_params)
        price = await crypto.get_price_by_symbol(ticker, query.currency)
        if price is None:
            raise not_found_error(f"Cryptocurrency with symbol '{ticker}' not found", symbol=ticker)
        return {"data": price}

    return await run_pipeline(request, pipeline, "price_by_symbol", handler)


@router.get("/history/{symbol}", tags=["Prices"])
async def get_historical_prices(
    symbol: str,
    request: Request,
    pipeline: PipelineDep,
    crypto: CryptoDep,
) -> JSONResponse:
    """Historical price points for one cryptocurrency (cached for 5 minutes)."""

    async def handler() -> dict:
        ticker = _symbol(symbol)
        query = parse_params(HistoryQuery, request.query_params)
        points = await crypto.get_historical_prices(ticker, query.interval, query.limit)
        if not points:
            raise not_found_error(f"Historical data for symbol '{ticker}' not found", symbol=ticker)
        return {
            "data": points,
            "metadata": {
                "symbol": ticker,
                "interval": query.interval,
                "dataPoints": len(points),
                "currency": query.currency,
            },
        }

    return await run_pipeline(request, pipeline, "history", handler)


@router.get("/markets", tags=["Markets"])
async def get_market_data(request: Request, pipeline: PipelineDep, crypto: CryptoDep) -> JSONResponse:
    """Market overview: cap, volume and supply per asset (cached for 2 minutes)."""

    async def handler() -> dict:
        query = parse_params(MarketsQuery, request.query_params)
        markets = await crypto.get_market_data(query.currency, query.limit)
        return {
            "data": markets,
            "metadata": {"count": len(markets), "currency": query.currency},
        }

    return await run_pipeline(request, pipeline, "markets", handler)


@router.get("/trending", tags=["Markets"])
async def get_trending(request: Request, pipeline: PipelineDep, crypto: CryptoDep) -> JSONResponse:
    """Most volatile assets by absolute 24h change (cached for 10 minutes)."""

    async def handler() -> dict:
        query = parse_params(TrendingQuery, request.query_params)
        trending = await crypto.get_trending(query.limit)
        return {"data": trending, "metadata": {"count": len(trending)}}

    return await run_pipeline(request, pipeline, "trending", handler)
