"""Binance spot feed: combined-stream websocket plus REST ticker fallback."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from ..config import FeedSettings
from .adapter import FeedItem, WebsocketFeedAdapter
from .models import OrderBookSnapshot, Quote

logger = logging.getLogger(__name__)


class BinanceFeedAdapter(WebsocketFeedAdapter):
    """Binance ``@ticker`` and ``@depth10`` streams.

    Uses the combined-stream endpoint so every data message arrives wrapped as
    ``{"stream": "btcusdt@ticker", "data": {...}}``. ``volume_24h`` is the
    quote-asset (notional) volume.
    """

    stream_url = "wss://stream.binance.com:9443/stream"
    rest_url = "https://api.binance.com"

    def __init__(
        self,
        symbols: list[str],
        settings: FeedSettings | None = None,
        venue_id: str = "binance",
        with_depth: bool = True,
    ) -> None:
        super().__init__(venue_id, symbols, settings)
        self._with_depth = with_depth
        self._request_id = 0

    def subscribe_messages(self) -> list[dict[str, Any]]:
        streams = [f"{s.lower()}@ticker" for s in self._symbols]
        if self._with_depth:
            streams += [f"{s.lower()}@depth10@100ms" for s in self._symbols]
        self._request_id += 1
        return [{"method": "SUBSCRIBE", "params": streams, "id": self._request_id}]

    def parse_message(self, raw: str | bytes) -> list[FeedItem]:
        message = json.loads(raw)
        if not isinstance(message, dict):
            raise ValueError(f"unexpected frame type {type(message).__name__}")
        if "stream" not in message:
            # Subscription acks: {"result": null, "id": 1}
            if "error" in message:
                logger.warning("Binance stream error: %s", message["error"])
            return []

        stream: str = message["stream"]
        data = message["data"]
        if stream.endswith("@ticker"):
            return [self._ticker_quote(data)]
        if "@depth" in stream:
            symbol = stream.split("@", 1)[0].upper()
            return [self._depth_book(symbol, data)]
        return []

    async def fetch_snapshot(self) -> list[Quote]:
        rows = await self._get_json(
            "/api/v3/ticker/24hr",
            params={"symbols": json.dumps(self._symbols, separators=(",", ":"))},
        )
        quotes = []
        for row in rows:
            try:
                quotes.append(self._rest_quote(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping Binance ticker for %s: %s", row.get("symbol", "???"), e)
        return quotes

    # --- Field mapping ---

    def _ticker_quote(self, data: dict[str, Any]) -> Quote:
        return Quote(
            symbol=data["s"],
            venue_id=self.venue_id,
            timestamp=data["E"] / 1000.0,
            bid_price=float(data["b"]),
            ask_price=float(data["a"]),
            bid_volume=float(data["B"]),
            ask_volume=float(data["A"]),
            last_price=float(data["c"]),
            volume_24h=float(data["q"]),
            high_24h=float(data["h"]),
            low_24h=float(data["l"]),
            change_24h=float(data["p"]),
            change_percent_24h=float(data["P"]),
        )

    def _depth_book(self, symbol: str, data: dict[str, Any]) -> OrderBookSnapshot:
        return OrderBookSnapshot.from_levels(
            symbol=symbol,
            venue_id=self.venue_id,
            bids=[(float(p), float(q)) for p, q in data["bids"]],
            asks=[(float(p), float(q)) for p, q in data["asks"]],
            timestamp=time.time(),
            max_depth=self._settings.order_book_depth,
        )

    def _rest_quote(self, row: dict[str, Any]) -> Quote:
        return Quote(
            symbol=row["symbol"],
            venue_id=self.venue_id,
            timestamp=row["closeTime"] / 1000.0,
            bid_price=float(row["bidPrice"]),
            ask_price=float(row["askPrice"]),
            bid_volume=float(row["bidQty"]),
            ask_volume=float(row["askQty"]),
            last_price=float(row["lastPrice"]),
            volume_24h=float(row["quoteVolume"]),
            high_24h=float(row["highPrice"]),
            low_24h=float(row["lowPrice"]),
            change_24h=float(row["priceChange"]),
            change_percent_24h=float(row["priceChangePercent"]),
        )
