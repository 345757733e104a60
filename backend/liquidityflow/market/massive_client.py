"""Massive (Polygon.io) equities feed: quotes websocket plus REST snapshots."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from ..config import FeedSettings
from .adapter import FeedItem, WebsocketFeedAdapter
from .models import Quote

logger = logging.getLogger(__name__)


class MassiveFeedAdapter(WebsocketFeedAdapter):
    """FeedAdapter backed by the Massive (Polygon.io) stocks API.

    The websocket ``Q`` (NBBO quote) events carry only the touch, so the
    day statistics (last trade, volume, high/low, change) come from the
    most recent REST snapshot. ``start()`` always polls once first, which
    seeds those statistics before the stream delivers.

    Rate limits:
      - Free tier: 5 req/min, so keep poll_interval >= 15s
    """

    stream_url = "wss://socket.massive.com/stocks"

    def __init__(
        self,
        api_key: str,
        symbols: list[str],
        settings: FeedSettings | None = None,
        venue_id: str = "massive",
    ) -> None:
        super().__init__(venue_id, symbols, settings)
        self._api_key = api_key
        self._client: Any = None
        self._day_stats: dict[str, dict[str, float]] = {}

    def subscribe_messages(self) -> list[dict[str, Any]]:
        return [
            {"action": "auth", "params": self._api_key},
            {"action": "subscribe", "params": ",".join(f"Q.{s}" for s in self._symbols)},
        ]

    def parse_message(self, raw: str | bytes) -> list[FeedItem]:
        events = json.loads(raw)
        if isinstance(events, dict):
            events = [events]

        quotes: list[FeedItem] = []
        for event in events:
            kind = event["ev"]
            if kind == "Q":
                quotes.append(self._stream_quote(event))
            elif kind == "status" and event.get("status") in ("auth_failed", "error"):
                logger.error("Massive stream status %s: %s", event.get("status"), event.get("message"))
        return quotes

    async def fetch_snapshot(self) -> list[Quote]:
        if self._client is None:
            # Lazy import: the massive client is only needed when this venue is configured.
            from massive import RESTClient

            self._client = RESTClient(api_key=self._api_key)

        # The Massive RESTClient is synchronous; run it in a thread to
        # avoid blocking the event loop.
        snapshots = await asyncio.to_thread(self._fetch_snapshots)
        quotes = []
        for snap in snapshots:
            try:
                quotes.append(self._snapshot_quote(snap))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping snapshot for %s: %s", getattr(snap, "ticker", "???"), e)
        return quotes

    async def stop(self) -> None:
        await super().stop()
        self._client = None

    # --- Internal ---

    def _fetch_snapshots(self) -> list:
        """Synchronous call to the Massive REST API. Runs in a thread."""
        from massive.rest.models import SnapshotMarketType

        return self._client.get_snapshot_all(
            market_type=SnapshotMarketType.STOCKS,
            tickers=self._symbols,
        )

    def _snapshot_quote(self, snap: Any) -> Quote:
        quote = snap.last_quote
        last_price = float(snap.last_trade.price)
        stats = {
            "last_price": last_price,
            "volume_24h": float(snap.day.volume) * last_price,
            "high_24h": float(snap.day.high),
            "low_24h": float(snap.day.low),
            "change_24h": float(getattr(snap, "todays_change", 0.0) or 0.0),
            "change_percent_24h": float(getattr(snap, "todays_change_percent", 0.0) or 0.0),
        }
        self._day_stats[snap.ticker] = stats
        return Quote(
            symbol=snap.ticker,
            venue_id=self.venue_id,
            # Massive timestamps are Unix milliseconds, convert to seconds
            timestamp=snap.last_trade.timestamp / 1000.0,
            bid_price=float(quote.bid_price),
            ask_price=float(quote.ask_price),
            bid_volume=float(quote.bid_size),
            ask_volume=float(quote.ask_size),
            **stats,
        )

    def _stream_quote(self, event: dict[str, Any]) -> Quote:
        symbol = event["sym"]
        bid, ask = float(event["bp"]), float(event["ap"])
        stats = self._day_stats.get(symbol) or {"last_price": (bid + ask) / 2}
        return Quote(
            symbol=symbol,
            venue_id=self.venue_id,
            timestamp=event["t"] / 1000.0,
            bid_price=bid,
            ask_price=ask,
            bid_volume=float(event["bs"]),
            ask_volume=float(event["as"]),
            **stats,
        )
