"""Coinbase Exchange feed: ``ticker`` channel websocket plus REST fallback."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

from ..config import FeedSettings
from .adapter import FeedItem, WebsocketFeedAdapter
from .models import Quote

logger = logging.getLogger(__name__)

# Longest first so "USDT" wins over "USD"
QUOTE_ASSETS = ("USDT", "USDC", "USD", "EUR", "GBP", "BTC", "ETH")


def to_product_id(symbol: str) -> str:
    """Canonical ``BTCUSDT`` -> Coinbase ``BTC-USDT``."""
    for quote_asset in QUOTE_ASSETS:
        if symbol.endswith(quote_asset) and len(symbol) > len(quote_asset):
            return f"{symbol[: -len(quote_asset)]}-{quote_asset}"
    raise ValueError(f"Cannot map {symbol!r} to a Coinbase product")


def to_symbol(product_id: str) -> str:
    """Coinbase ``BTC-USD`` -> canonical ``BTCUSD``."""
    return product_id.replace("-", "").upper()


def _parse_time(value: str) -> float:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


class CoinbaseFeedAdapter(WebsocketFeedAdapter):
    """Coinbase ``ticker`` channel.

    The ticker reports base-asset 24h volume; ``volume_24h`` is converted to
    quote-asset notional so it compares across venues.
    """

    stream_url = "wss://ws-feed.exchange.coinbase.com"
    rest_url = "https://api.exchange.coinbase.com"

    def __init__(self, symbols: list[str], settings: FeedSettings | None = None, venue_id: str = "coinbase") -> None:
        super().__init__(venue_id, symbols, settings)
        self._products = {s: to_product_id(s) for s in self._symbols}

    def subscribe_messages(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "subscribe",
                "product_ids": list(self._products.values()),
                "channels": ["ticker"],
            }
        ]

    def parse_message(self, raw: str | bytes) -> list[FeedItem]:
        message = json.loads(raw)
        kind = message["type"]
        if kind == "ticker":
            return [self._ticker_quote(message)]
        if kind == "error":
            logger.warning("Coinbase stream error: %s (%s)", message.get("message"), message.get("reason"))
        return []

    async def fetch_snapshot(self) -> list[Quote]:
        results = await asyncio.gather(
            *(self._fetch_product(symbol, product) for symbol, product in self._products.items()),
            return_exceptions=True,
        )
        quotes = []
        for symbol, result in zip(self._products, results):
            if isinstance(result, Exception):
                logger.warning("Skipping Coinbase snapshot for %s: %s", symbol, result)
            else:
                quotes.append(result)
        return quotes

    # --- Field mapping ---

    def _ticker_quote(self, message: dict[str, Any]) -> Quote:
        price = float(message["price"])
        open_24h = float(message["open_24h"])
        change = price - open_24h
        return Quote(
            symbol=to_symbol(message["product_id"]),
            venue_id=self.venue_id,
            timestamp=_parse_time(message["time"]),
            bid_price=float(message["best_bid"]),
            ask_price=float(message["best_ask"]),
            bid_volume=float(message["best_bid_size"]),
            ask_volume=float(message["best_ask_size"]),
            last_price=price,
            volume_24h=float(message["volume_24h"]) * price,
            high_24h=float(message["high_24h"]),
            low_24h=float(message["low_24h"]),
            change_24h=change,
            change_percent_24h=change / open_24h * 100 if open_24h else 0.0,
        )

    async def _fetch_product(self, symbol: str, product: str) -> Quote:
        book, stats = await asyncio.gather(
            self._get_json(f"/products/{product}/book", params={"level": 1}),
            self._get_json(f"/products/{product}/stats"),
        )
        bid_price, bid_size = (float(x) for x in book["bids"][0][:2])
        ask_price, ask_size = (float(x) for x in book["asks"][0][:2])
        last = float(stats["last"])
        open_24h = float(stats["open"])
        change = last - open_24h
        return Quote(
            symbol=symbol,
            venue_id=self.venue_id,
            bid_price=bid_price,
            ask_price=ask_price,
            bid_volume=bid_size,
            ask_volume=ask_size,
            last_price=last,
            volume_24h=float(stats["volume"]) * last,
            high_24h=float(stats["high"]),
            low_24h=float(stats["low"]),
            change_24h=change,
            change_percent_24h=change / open_24h * 100 if open_24h else 0.0,
        )
