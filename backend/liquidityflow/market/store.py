"""Durable-store contract and an in-memory implementation.

The hub writes throttled quotes and venue-health changes here and never
waits on the result. Long-term retention and querying belong to the store.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque

from .models import Quote, VenueHealth, VenueHealthUpdate

TIMEFRAMES: dict[str, int] = {"1m": 60, "5m": 300, "1h": 3600}


class QuoteStore(ABC):
    """Contract for the durable quote store."""

    @abstractmethod
    async def save(self, quote: Quote) -> None:
        """Persist one quote. Best effort; callers do not await delivery."""

    @abstractmethod
    async def query_latest(self, symbol: str, venue_id: str | None = None) -> list[Quote]:
        """Newest stored quote per venue for ``symbol``."""

    @abstractmethod
    async def query_aggregate(self, symbol: str, timeframe: str = "1h") -> list[dict]:
        """Bucketed price/volume/spread statistics, newest bucket first."""

    @abstractmethod
    async def query_venue_health(self, venue_id: str) -> VenueHealth | None:
        """Last stored health record for a venue."""

    @abstractmethod
    async def update_venue_health(self, venue_id: str, update: VenueHealthUpdate) -> VenueHealth:
        """Apply ``update`` to the stored health record and return the result."""


class InMemoryQuoteStore(QuoteStore):
    """QuoteStore kept in process memory.

    Keeps at most ``max_history`` quotes per (symbol, venue) and drops
    anything older than ``retention_seconds`` on write.
    """

    def __init__(self, max_history: int = 1000, retention_seconds: float = 30 * 24 * 3600) -> None:
        self._history: dict[tuple[str, str], deque[Quote]] = defaultdict(lambda: deque(maxlen=max_history))
        self._health: dict[str, VenueHealth] = {}
        self._retention = retention_seconds
        self.writes = 0

    async def save(self, quote: Quote) -> None:
        history = self._history[quote.key]
        history.append(quote)
        cutoff = time.time() - self._retention
        while history and history[0].timestamp < cutoff:
            history.popleft()
        self.writes += 1

    async def query_latest(self, symbol: str, venue_id: str | None = None) -> list[Quote]:
        results = []
        for (sym, venue), history in self._history.items():
            if sym != symbol or not history:
                continue
            if venue_id is not None and venue != venue_id:
                continue
            results.append(max(history, key=lambda q: q.timestamp))
        return sorted(results, key=lambda q: q.venue_id)

    async def query_aggregate(self, symbol: str, timeframe: str = "1h") -> list[dict]:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe {timeframe!r}; expected one of {sorted(TIMEFRAMES)}")
        width = TIMEFRAMES[timeframe]

        buckets: dict[int, list[Quote]] = defaultdict(list)
        for (sym, _venue), history in self._history.items():
            if sym != symbol:
                continue
            for quote in history:
                buckets[int(quote.timestamp // width) * width].append(quote)

        rows = []
        for period in sorted(buckets, reverse=True)[:100]:
            quotes = buckets[period]
            prices = [q.last_price for q in quotes]
            rows.append(
                {
                    "symbol": symbol,
                    "period": period,
                    "avg_price": sum(prices) / len(prices),
                    "max_price": max(prices),
                    "min_price": min(prices),
                    "total_volume": sum(q.volume_24h for q in quotes),
                    "avg_spread": sum(q.spread for q in quotes) / len(quotes),
                    "count": len(quotes),
                }
            )
        return rows

    async def query_venue_health(self, venue_id: str) -> VenueHealth | None:
        return self._health.get(venue_id)

    async def update_venue_health(self, venue_id: str, update: VenueHealthUpdate) -> VenueHealth:
        current = self._health.get(venue_id, VenueHealth(venue_id=venue_id))
        updated = current.apply(update)
        self._health[venue_id] = updated
        return updated
