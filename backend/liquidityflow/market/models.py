"""Data models for market data."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum


class Anomaly(str, Enum):
    EXTREME_PRICE_MOVEMENT = "extreme_price_movement"
    WIDE_SPREAD = "wide_spread"
    ZERO_VOLUME = "zero_volume"


@dataclass(frozen=True, slots=True)
class Quote:
    """Immutable top-of-book snapshot for one symbol on one venue.

    Spread, mid and spread percent are always derived from bid/ask at read
    time; they are never stored.
    """

    symbol: str
    venue_id: str
    bid_price: float
    ask_price: float
    bid_volume: float
    ask_volume: float
    last_price: float
    volume_24h: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    change_24h: float = 0.0
    change_percent_24h: float = 0.0
    timestamp: float = field(default_factory=time.time)  # Unix seconds
    anomalies: tuple[str, ...] = ()

    @property
    def key(self) -> tuple[str, str]:
        return (self.symbol, self.venue_id)

    @property
    def spread(self) -> float:
        return self.ask_price - self.bid_price

    @property
    def mid_price(self) -> float:
        return (self.ask_price + self.bid_price) / 2

    @property
    def spread_percent(self) -> float:
        """Spread relative to mid price, in percent."""
        mid = self.mid_price
        if mid == 0:
            return 0.0
        return self.spread / mid * 100

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.timestamp

    def is_fresh(self, max_age_seconds: float, now: float | None = None) -> bool:
        return self.age(now) <= max_age_seconds

    def with_anomalies(self, anomalies: list[str] | tuple[str, ...]) -> Quote:
        return replace(self, anomalies=tuple(anomalies))

    def to_dict(self) -> dict:
        """Serialize for JSON transmission."""
        return {
            "symbol": self.symbol,
            "venue_id": self.venue_id,
            "timestamp": self.timestamp,
            "bid_price": self.bid_price,
            "ask_price": self.ask_price,
            "bid_volume": self.bid_volume,
            "ask_volume": self.ask_volume,
            "last_price": self.last_price,
            "volume_24h": self.volume_24h,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "change_24h": self.change_24h,
            "change_percent_24h": self.change_percent_24h,
            "spread": round(self.spread, 8),
            "mid_price": round(self.mid_price, 8),
            "spread_percent": round(self.spread_percent, 6),
            "anomalies": list(self.anomalies),
        }


@dataclass(frozen=True, slots=True)
class OrderBookLevel:
    price: float
    quantity: float


@dataclass(frozen=True, slots=True)
class OrderBookSnapshot:
    """Bounded-depth book: bids descending, asks ascending."""

    symbol: str
    venue_id: str
    bids: tuple[OrderBookLevel, ...]
    asks: tuple[OrderBookLevel, ...]
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_levels(
        cls,
        symbol: str,
        venue_id: str,
        bids: list[tuple[float, float]],
        asks: list[tuple[float, float]],
        timestamp: float | None = None,
        max_depth: int = 20,
    ) -> OrderBookSnapshot:
        """Build a snapshot from raw (price, quantity) pairs, sorting and truncating."""
        bid_levels = sorted((OrderBookLevel(p, q) for p, q in bids if q > 0), key=lambda lv: -lv.price)
        ask_levels = sorted((OrderBookLevel(p, q) for p, q in asks if q > 0), key=lambda lv: lv.price)
        return cls(
            symbol=symbol,
            venue_id=venue_id,
            bids=tuple(bid_levels[:max_depth]),
            asks=tuple(ask_levels[:max_depth]),
            timestamp=timestamp if timestamp is not None else time.time(),
        )

    def depth(self, levels: int = 10) -> dict[str, float]:
        """Notional liquidity in the top ``levels`` of each side."""
        bids = sum(lv.price * lv.quantity for lv in self.bids[:levels])
        asks = sum(lv.price * lv.quantity for lv in self.asks[:levels])
        return {"bids": bids, "asks": asks, "total": bids + asks}

    def estimate_slippage(self, order_size: float, side: str = "buy") -> dict[str, float] | None:
        """Walk the book for ``order_size`` base units.

        Returns the average fill price, slippage percent against the touch and
        total cost, or None when the visible book cannot fill the order.
        """
        book = self.asks if side == "buy" else self.bids
        if not book or order_size <= 0:
            return None

        remaining = order_size
        total_cost = 0.0
        for level in book:
            if remaining <= 0:
                break
            fill = min(remaining, level.quantity)
            total_cost += fill * level.price
            remaining -= fill

        if remaining > 1e-12:
            return None

        avg_price = total_cost / order_size
        reference = book[0].price
        return {
            "avg_price": avg_price,
            "slippage": abs(avg_price - reference) / reference * 100,
            "total_cost": total_cost,
        }

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "venue_id": self.venue_id,
            "timestamp": self.timestamp,
            "bids": [[lv.price, lv.quantity] for lv in self.bids],
            "asks": [[lv.price, lv.quantity] for lv in self.asks],
        }


class VenueStatus(str, Enum):
    ACTIVE = "active"
    DEGRADED = "degraded"
    DISABLED = "disabled"


@dataclass(frozen=True, slots=True)
class VenueHealthUpdate:
    """The fields of VenueHealth a report may change. None means unchanged."""

    connected: bool | None = None
    last_health_check: float | None = None
    consecutive_failures: int | None = None
    status: VenueStatus | None = None


@dataclass(frozen=True, slots=True)
class VenueHealth:
    venue_id: str
    connected: bool = False
    last_health_check: float | None = None
    consecutive_failures: int = 0
    status: VenueStatus = VenueStatus.ACTIVE

    def apply(self, update: VenueHealthUpdate) -> VenueHealth:
        changes = {
            name: value
            for name in ("connected", "last_health_check", "consecutive_failures", "status")
            if (value := getattr(update, name)) is not None
        }
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict:
        return {
            "venue_id": self.venue_id,
            "connected": self.connected,
            "last_health_check": self.last_health_check,
            "consecutive_failures": self.consecutive_failures,
            "status": self.status.value,
        }


@dataclass(frozen=True, slots=True)
class AggregatedSnapshot:
    """Cross-venue view of one symbol, computed on demand."""

    symbol: str
    vwap: float
    best_bid: float
    best_ask: float
    spread: float
    total_volume: float
    venue_count: int
    as_of: float

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "vwap": self.vwap,
            "best_bid": self.best_bid,
            "best_ask": self.best_ask,
            "spread": self.spread,
            "total_volume": self.total_volume,
            "venue_count": self.venue_count,
            "as_of": self.as_of,
        }
