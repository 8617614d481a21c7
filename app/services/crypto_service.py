"""Simulated cryptocurrency market data.

Stands in for a premium upstream price API: quotes live in memory, drift a
little on every origin call, and each call sleeps for a short random delay
to make caching visible in response times.
"""

from __future__ import annotations

import asyncio
import random
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.schemas.crypto import Cryptocurrency, HistoricalPoint, MarketData

SEED_CRYPTOCURRENCIES: tuple[tuple[str, str, float, float], ...] = (
    ("BTC", "Bitcoin", 43856.21, 2.4),
    ("ETH", "Ethereum", 3287.45, 1.7),
    ("SOL", "Solana", 106.92, -0.8),
    ("DOGE", "Dogecoin", 0.078, -1.3),
    ("ADA", "Cardano", 0.396, 0.5),
)

INTERVAL_STEPS: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

# Known supplies, (base, jitter)
_CIRCULATING_SUPPLY: dict[str, tuple[int, int]] = {
    "BTC": (19_000_000, 500_000),
    "ETH": (120_000_000, 1_000_000),
    "SOL": (350_000_000, 10_000_000),
    "DOGE": (130_000_000_000, 1_000_000_000),
    "ADA": (35_000_000_000, 1_000_000_000),
}


def _round_price(price: float) -> float:
    return round(price, 6 if price < 1 else 2)


class CryptoService:
    """In-memory market state with simulated price movement.

    Args:
        rng: Random source (seed it for reproducible tests).
        simulate_latency: Sleep a random few milliseconds per call.
        clock: UNIX time source used for ``last_updated`` stamps.
    """

    def __init__(
        self,
        *,
        rng: random.Random | None = None,
        simulate_latency: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rng = rng or random.Random()
        self._simulate_latency = simulate_latency
        self._clock = clock
        self._lock = threading.Lock()
        now = self._now()
        self._quotes: dict[str, Cryptocurrency] = {
            symbol: Cryptocurrency(
                symbol=symbol,
                name=name,
                current_price=price,
                price_change_24h=change,
                last_updated=now,
            )
            for symbol, name, price, change in SEED_CRYPTOCURRENCIES
        }

    @property
    def symbols(self) -> list[str]:
        return list(self._quotes)

    async def get_all_prices(self, currency: str = "USD") -> list[Cryptocurrency]:
        await self._delay(10, 50)
        with self._lock:
            return [self._tick(symbol) for symbol in list(self._quotes)]

    async def get_price_by_symbol(self, symbol: str, currency: str = "USD") -> Cryptocurrency | None:
        symbol = symbol.upper()
        with self._lock:
            if symbol not in self._quotes:
                return None
        await self._delay(5, 20)
        with self._lock:
            return self._tick(symbol)

    async def get_historical_prices(
        self,
        symbol: str,
        interval: str = "1d",
        limit: int = 30,
    ) -> list[HistoricalPoint]:
        """Synthetic price history ending now, oldest point first.

        Returns an empty list for unknown symbols.
        """

        with self._lock:
            quote = self._quotes.get(symbol.upper())
        if quote is None:
            return []

        await self._delay(50, 150)

        step = INTERVAL_STEPS.get(interval, INTERVAL_STEPS["1d"])
        price = quote.current_price
        timestamp = self._now()
        points: list[HistoricalPoint] = []
        for _ in range(limit):
            timestamp -= step
            volatility = 0.01 + self._rng.random() * 0.02
            direction = 1 if self._rng.random() > 0.5 else -1
            price = _round_price(price * (1 + direction * volatility))
            points.append(HistoricalPoint(timestamp=timestamp, price=price, volume=self._volume(price)))
        points.reverse()
        return points

    async def get_market_data(self, currency: str = "USD", limit: int = 100) -> list[MarketData]:
        await self._delay(30, 100)
        with self._lock:
            quotes = list(self._quotes.values())[:limit]
        return [
            MarketData(
                symbol=q.symbol,
                name=q.name,
                current_price=q.current_price,
                price_change_24h=q.price_change_24h,
                market_cap=q.market_cap or self._market_cap(q.current_price),
                volume_24h=q.volume_24h or self._volume(q.current_price),
                circulating_supply=self._circulating_supply(q.symbol),
                last_updated=q.last_updated,
            )
            for q in quotes
        ]

    async def get_trending(self, limit: int = 5) -> list[Cryptocurrency]:
        """Most volatile assets first, by absolute 24h change."""

        await self._delay(20, 80)
        with self._lock:
            quotes = list(self._quotes.values())
        quotes.sort(key=lambda q: abs(q.price_change_24h), reverse=True)
        return quotes[:limit]

    def _tick(self, symbol: str) -> Cryptocurrency:
        # caller holds the lock
        quote = self._quotes[symbol]
        change = (self._rng.random() - 0.5) * 0.002
        updated = quote.model_copy(
            update={
                "current_price": _round_price(quote.current_price * (1 + change)),
                "last_updated": self._now(),
            }
        )
        self._quotes[symbol] = updated
        return updated

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def _delay(self, min_ms: int, max_ms: int) -> None:
        if self._simulate_latency:
            await asyncio.sleep(self._rng.randint(min_ms, max_ms) / 1000)

    def _market_cap(self, price: float) -> float:
        return float(round(price * 10 ** (6 + self._rng.randint(0, 5))))

    def _volume(self, price: float) -> float:
        return float(round(price * 10 ** (4 + self._rng.randint(0, 3))))

    def _circulating_supply(self, symbol: str) -> int:
        base, jitter = _CIRCULATING_SUPPLY.get(symbol, (1_000_000_000, 1_000_000_000))
        return base + self._rng.randint(0, jitter - 1)
