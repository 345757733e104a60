"""Market data subsystem for LiquidityFlow.

Public API:
    Quote               - Immutable top-of-book snapshot for one venue
    OrderBookSnapshot   - Depth-bounded order book with slippage estimate
    VenueHealth         - Per-venue connection health, owned by the hub
    AggregatedSnapshot  - Cross-venue VWAP / best bid / best ask view
    FeedAdapter         - Abstract venue connection state machine
    MarketDataHub       - Ingests, validates, caches and publishes quotes
    QuoteStore          - Durable store contract (InMemoryQuoteStore ships)
    create_feed_adapters - Factory that builds adapters from Settings
"""

from .adapter import FeedAdapter, FeedState
from .factory import create_feed_adapters
from .hub import MarketDataHub
from .models import (
    AggregatedSnapshot,
    OrderBookLevel,
    OrderBookSnapshot,
    Quote,
    VenueHealth,
    VenueHealthUpdate,
    VenueStatus,
)
from .store import InMemoryQuoteStore, QuoteStore

__all__ = [
    "Quote",
    "OrderBookLevel",
    "OrderBookSnapshot",
    "VenueHealth",
    "VenueHealthUpdate",
    "VenueStatus",
    "AggregatedSnapshot",
    "FeedAdapter",
    "FeedState",
    "MarketDataHub",
    "QuoteStore",
    "InMemoryQuoteStore",
    "create_feed_adapters",
]
