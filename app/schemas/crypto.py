"""Pydantic schemas for market data payloads and query parameters."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Cryptocurrency(BaseModel):
    """Current quote for one asset."""

    symbol: str = Field(..., description="Ticker symbol, upper-case (e.g. 'BTC').")
    name: str = Field(..., description="Display name (e.g. 'Bitcoin').")
    current_price: float = Field(..., description="Latest simulated price.")
    price_change_24h: float = Field(0.0, description="Percentage change over 24h.")
    market_cap: float | None = Field(None, description="Market capitalisation.")
    volume_24h: float | None = Field(None, description="Traded volume over 24h.")
    last_updated: datetime


class MarketData(BaseModel):
    symbol: str
    name: str
    current_price: float
    price_change_24h: float
    market_cap: float
    volume_24h: float
    circulating_supply: int
    last_updated: datetime


class HistoricalPoint(BaseModel):
    timestamp: datetime
    price: float
    volume: float


HistoryInterval = Literal["1h", "1d", "7d", "30d", "90d", "1y"]


class _Query(BaseModel):
    model_config = ConfigDict(extra="ignore")

    skip_cache: bool = False


class _CurrencyQuery(_Query):
    currency: str = Field("USD", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class PricesQuery(_CurrencyQuery):
    pass


class MarketsQuery(_CurrencyQuery):
    limit: int = Field(100, ge=1, le=1000)


class HistoryQuery(_CurrencyQuery):
    interval: HistoryInterval = "1d"
    limit: int = Field(100, ge=1, le=1000)


class TrendingQuery(_Query):
    limit: int = Field(5, ge=1, le=20)


class SymbolParam(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=10)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.upper()
