"""REST endpoints over the hub, store and advisor."""

from __future__ import annotations

import logging
import time
from typing import Literal

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from .errors import DataUnavailable
from .market.hub import MarketDataHub
from .market.store import QuoteStore
from .routing.advisor import RoutingAdvisor
from .routing.models import Preferences

logger = logging.getLogger(__name__)


class PreferencesBody(BaseModel):
    max_venues: int | None = Field(default=None, ge=1)
    max_slippage: float | None = Field(default=None, gt=0)


class AnalyzeTradeRequest(BaseModel):
    symbol: str = Field(min_length=1)
    side: Literal["buy", "sell"]
    order_size: float = Field(gt=0)
    preferences: PreferencesBody = Field(default_factory=PreferencesBody)
    publish: bool = False


class OptimizeOrderRequest(BaseModel):
    symbol: str = Field(min_length=1)
    side: Literal["buy", "sell"]
    order_size: float = Field(gt=0)


def create_api_router(hub: MarketDataHub, advisor: RoutingAdvisor, store: QuoteStore | None = None) -> APIRouter:
    """Create the REST router bound to one hub / advisor / store."""
    router = APIRouter(prefix="/api")

    @router.get("/health", tags=["system"])
    async def health() -> dict:
        venues = hub.venue_health()
        return {
            "status": "ok",
            "venues": {venue_id: h.status.value for venue_id, h in venues.items()},
            "symbols": hub.symbols(),
            "timestamp": time.time(),
        }

    # --- Market data ---

    @router.get("/market-data/latest/{symbol}", tags=["market-data"])
    async def latest(symbol: str, venue_id: str | None = None) -> list[dict]:
        quotes = hub.get_latest(symbol, venue_id)
        if not quotes:
            raise HTTPException(404, f"No market data for {symbol.upper()}")
        return [q.to_dict() for q in quotes]

    @router.get("/market-data/aggregated/{symbol}", tags=["market-data"])
    async def aggregated(symbol: str, freshness_seconds: float | None = Query(default=None, gt=0)) -> dict:
        try:
            return hub.get_aggregated(symbol, freshness_seconds).to_dict()
        except DataUnavailable as e:
            raise HTTPException(503, str(e)) from None

    @router.get("/market-data/order-book/{symbol}/{venue_id}", tags=["market-data"])
    async def order_book(symbol: str, venue_id: str) -> dict:
        book = hub.get_order_book(symbol, venue_id)
        if book is None:
            raise HTTPException(404, f"No order book for {symbol.upper()} on {venue_id}")
        return {**book.to_dict(), "depth": book.depth()}

    @router.get("/market-data/history/{symbol}", tags=["market-data"])
    async def history(symbol: str, timeframe: str = "1h") -> list[dict]:
        if store is None:
            raise HTTPException(503, "No quote store configured")
        try:
            return await store.query_aggregate(symbol.upper(), timeframe)
        except ValueError as e:
            raise HTTPException(400, str(e)) from None

    # --- Venues ---

    @router.get("/venues/health", tags=["venues"])
    async def venues_health() -> list[dict]:
        return [h.to_dict() for h in hub.venue_health().values()]

    @router.post("/venues/{venue_id}/restart", tags=["venues"])
    async def restart_venue(venue_id: str) -> dict:
        try:
            await hub.restart_venue(venue_id)
        except KeyError:
            raise HTTPException(404, f"Unknown venue {venue_id}") from None
        return hub.venue_health()[venue_id].to_dict()

    # --- Routing advice ---

    @router.post("/ai/analyze-trade", tags=["ai"])
    async def analyze_trade(request: AnalyzeTradeRequest) -> dict:
        preferences = Preferences(
            max_venues=request.preferences.max_venues,
            max_slippage=request.preferences.max_slippage,
        )
        try:
            recommendation = advisor.recommend(
                request.symbol,
                request.side,
                request.order_size,
                preferences=preferences,
                publish=request.publish,
            )
        except DataUnavailable as e:
            raise HTTPException(503, str(e)) from None
        return recommendation.to_dict()

    @router.post("/ai/optimize-order", tags=["ai"])
    async def optimize_order(request: OptimizeOrderRequest) -> dict:
        try:
            return advisor.optimize_order(request.symbol, request.side, request.order_size).to_dict()
        except DataUnavailable as e:
            raise HTTPException(503, str(e)) from None

    return router
