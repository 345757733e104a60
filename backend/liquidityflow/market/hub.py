"""MarketDataHub: owns the venue feeds, the quote cache and venue health."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Coroutine
from typing import Any

from ..config import HubSettings
from ..errors import DataUnavailable, QuoteValidationError
from ..events import EventBus
from ..scheduler import Scheduler
from .adapter import FeedAdapter
from .cache import QuoteCache
from .models import (
    AggregatedSnapshot,
    Anomaly,
    OrderBookSnapshot,
    Quote,
    VenueHealth,
    VenueHealthUpdate,
)
from .store import QuoteStore

logger = logging.getLogger(__name__)

MARKET_DATA_TOPIC = "market-data"
SYSTEM_TOPIC = "system-notifications"


def validate_quote(quote: Quote) -> None:
    """Raise QuoteValidationError unless ``quote`` may enter the cache."""
    prices = (quote.bid_price, quote.ask_price, quote.last_price)
    if not quote.symbol or not quote.venue_id:
        raise QuoteValidationError("quote is missing symbol or venue")
    if any(not math.isfinite(p) or p < 0 for p in prices):
        raise QuoteValidationError(f"{quote.symbol}@{quote.venue_id}: non-finite or negative price")
    if quote.bid_volume < 0 or quote.ask_volume < 0 or quote.volume_24h < 0:
        raise QuoteValidationError(f"{quote.symbol}@{quote.venue_id}: negative volume")
    if quote.ask_price < quote.bid_price:
        raise QuoteValidationError(
            f"{quote.symbol}@{quote.venue_id}: crossed quote ask {quote.ask_price} < bid {quote.bid_price}"
        )


class MarketDataHub:
    """Authoritative in-memory market state.

    Adapters push quotes into ``ingest()``; readers (the advisor, HTTP routes)
    take snapshots with ``get_latest()``, ``fresh_quotes()`` and
    ``get_aggregated()``. Every accepted quote is published on the bus as a
    ``market-data:<symbol>`` event. Persistence is throttled per key and never
    awaited on the ingest path.
    """

    def __init__(
        self,
        bus: EventBus,
        store: QuoteStore | None = None,
        settings: HubSettings | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bus = bus
        self._store = store
        self._settings = settings or HubSettings()
        self._scheduler = scheduler or Scheduler()
        self._clock = clock
        self._cache = QuoteCache()
        self._health: dict[str, VenueHealth] = {}
        self._adapters: dict[str, FeedAdapter] = {}
        self._last_persisted: dict[tuple[str, str], float] = {}
        self._pending: set[asyncio.Task] = set()
        self._started = False
        self._shut_down = False

    # --- Lifecycle ---

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def adapters(self) -> dict[str, FeedAdapter]:
        return dict(self._adapters)

    def add_adapter(self, adapter: FeedAdapter) -> None:
        if adapter.venue_id in self._adapters:
            raise ValueError(f"Duplicate venue {adapter.venue_id!r}")
        adapter.attach(self, self._scheduler)
        self._adapters[adapter.venue_id] = adapter
        self._health[adapter.venue_id] = VenueHealth(venue_id=adapter.venue_id)

    async def start(self) -> None:
        """Start every adapter. One venue failing to start does not stop the others."""
        if self._started:
            return
        self._started = True
        results = await asyncio.gather(
            *(adapter.start() for adapter in self._adapters.values()), return_exceptions=True
        )
        for adapter, result in zip(self._adapters.values(), results):
            if isinstance(result, Exception):
                logger.error("Failed to start %s feed: %s", adapter.venue_id, result)
        logger.info("Market data hub started with %d venues", len(self._adapters))

    async def restart_venue(self, venue_id: str) -> None:
        adapter = self._adapters.get(venue_id)
        if adapter is None:
            raise KeyError(venue_id)
        await adapter.restart()

    async def shutdown(self) -> None:
        """Stop every adapter and cancel every timer. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        for adapter in self._adapters.values():
            try:
                await adapter.stop()
            except Exception:
                logger.exception("Failed to stop %s feed", adapter.venue_id)
        await self._scheduler.shutdown()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("Market data hub stopped")

    # --- Ingestion ---

    def ingest(self, quote: Quote) -> Quote | None:
        """Validate, cache, persist (throttled) and publish one quote.

        Returns the cached quote with its anomaly tags, or None if dropped.
        """
        try:
            validate_quote(quote)
        except QuoteValidationError as e:
            logger.warning("Rejected quote: %s", e)
            return None

        previous = self._cache.get(quote.symbol, quote.venue_id)
        anomalies = self._detect_anomalies(quote, previous)
        if anomalies:
            quote = quote.with_anomalies(anomalies)
            logger.info("Anomalies on %s@%s: %s", quote.symbol, quote.venue_id, ", ".join(anomalies))
        elif quote.anomalies:
            quote = quote.with_anomalies(())

        self._cache.put(quote)
        self._maybe_persist(quote)
        self._bus.publish(MARKET_DATA_TOPIC, quote.to_dict(), selector=quote.symbol)
        return quote

    def ingest_order_book(self, book: OrderBookSnapshot) -> None:
        if book.bids and book.asks and book.asks[0].price < book.bids[0].price:
            logger.warning("Rejected crossed book for %s@%s", book.symbol, book.venue_id)
            return
        self._cache.put_book(book)

    def record_health(self, venue_id: str, update: VenueHealthUpdate) -> None:
        """Apply a health report from an adapter; publish status changes."""
        current = self._health.get(venue_id, VenueHealth(venue_id=venue_id))
        updated = current.apply(update)
        self._health[venue_id] = updated

        if self._store is not None:
            self._spawn(self._store.update_venue_health(venue_id, update), f"health-{venue_id}")

        if updated.status != current.status:
            logger.warning("Venue %s status %s -> %s", venue_id, current.status.value, updated.status.value)
            self._bus.publish(
                SYSTEM_TOPIC,
                {"event": "venue_status", "previous": current.status.value, **updated.to_dict()},
            )

    # --- Reads ---

    def get_latest(self, symbol: str, venue_id: str | None = None) -> list[Quote]:
        """Cached quotes for ``symbol``: one venue's if given, otherwise all."""
        symbol = symbol.upper()
        if venue_id is not None:
            quote = self._cache.get(symbol, venue_id)
            return [quote] if quote else []
        return self._cache.for_symbol(symbol)

    def get_quote(self, symbol: str, venue_id: str) -> Quote | None:
        return self._cache.get(symbol.upper(), venue_id)

    def get_order_book(self, symbol: str, venue_id: str) -> OrderBookSnapshot | None:
        return self._cache.get_book(symbol.upper(), venue_id)

    def fresh_quotes(self, symbol: str, freshness_seconds: float | None = None) -> list[Quote]:
        window = self._settings.freshness_seconds if freshness_seconds is None else freshness_seconds
        now = self._clock()
        return [q for q in self.get_latest(symbol) if q.is_fresh(window, now)]

    def get_aggregated(self, symbol: str, freshness_seconds: float | None = None) -> AggregatedSnapshot:
        """Volume-weighted cross-venue view of ``symbol``.

        Raises DataUnavailable when no venue has a quote inside the window.
        """
        window = self._settings.freshness_seconds if freshness_seconds is None else freshness_seconds
        quotes = self.fresh_quotes(symbol, window)
        if not quotes:
            raise DataUnavailable(symbol.upper(), window)

        total_volume = sum(q.volume_24h for q in quotes)
        if total_volume > 0:
            vwap = sum(q.last_price * q.volume_24h for q in quotes) / total_volume
        else:
            vwap = sum(q.last_price for q in quotes) / len(quotes)
        best_bid = max(q.bid_price for q in quotes)
        best_ask = min(q.ask_price for q in quotes)

        return AggregatedSnapshot(
            symbol=symbol.upper(),
            vwap=vwap,
            best_bid=best_bid,
            best_ask=best_ask,
            spread=best_ask - best_bid,
            total_volume=total_volume,
            venue_count=len(quotes),
            as_of=max(q.timestamp for q in quotes),
        )

    def venue_health(self) -> dict[str, VenueHealth]:
        return dict(self._health)

    def symbols(self) -> list[str]:
        return self._cache.symbols()

    # --- Internal ---

    def _detect_anomalies(self, quote: Quote, previous: Quote | None) -> list[str]:
        anomalies = []
        if previous is not None and previous.last_price > 0:
            move = abs(quote.last_price - previous.last_price) / previous.last_price
            if move > self._settings.extreme_move_ratio:
                anomalies.append(Anomaly.EXTREME_PRICE_MOVEMENT.value)
        if quote.spread_percent > self._settings.wide_spread_percent:
            anomalies.append(Anomaly.WIDE_SPREAD.value)
        if quote.volume_24h == 0:
            anomalies.append(Anomaly.ZERO_VOLUME.value)
        return anomalies

    def _maybe_persist(self, quote: Quote) -> None:
        if self._store is None:
            return
        now = self._clock()
        last = self._last_persisted.get(quote.key)
        if last is not None and now - last < self._settings.persist_interval:
            return
        self._last_persisted[quote.key] = now
        self._spawn(self._store.save(quote), f"persist-{quote.symbol}-{quote.venue_id}")

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        """Run a store call in the background; failures are logged, never raised."""
        try:
            task = asyncio.get_running_loop().create_task(coro, name=name)
        except RuntimeError:
            coro.close()
            logger.debug("No running loop; skipped %s", name)
            return
        self._pending.add(task)
        task.add_done_callback(self._on_store_done)

    def _on_store_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Store write %s failed: %s", task.get_name(), task.exception())
