"""Application wiring: builds the hub, advisor and broker and serves them."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_api_router
from .broker.auth import JWTTokenVerifier, TokenVerifier
from .broker.broker import SubscriptionBroker
from .broker.stream import create_stream_router
from .config import Settings
from .events import BusEvent, EventBus
from .market.adapter import FeedAdapter
from .market.factory import create_feed_adapters
from .market.hub import MarketDataHub
from .market.store import InMemoryQuoteStore, QuoteStore
from .routing.advisor import RoutingAdvisor

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    level = (level or os.environ.get("LOG_LEVEL", "") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    adapters: list[FeedAdapter] | None = None,
    store: QuoteStore | None = None,
    verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Build the FastAPI app and everything behind it.

    ``adapters`` defaults to the venues named in settings; pass an explicit
    (possibly empty) list to run without network feeds.
    """
    settings = settings or Settings.from_env()
    if store is None:
        store = InMemoryQuoteStore()
    bus = EventBus()
    hub = MarketDataHub(bus, store=store, settings=settings.hub)
    for adapter in create_feed_adapters(settings) if adapters is None else adapters:
        hub.add_adapter(adapter)

    advisor = RoutingAdvisor(hub, settings.advisor, bus=bus)
    broker = SubscriptionBroker(
        verifier or JWTTokenVerifier(settings.broker.jwt_secret, settings.broker.jwt_algorithm),
        settings.broker,
    )

    def forward(event: BusEvent) -> None:
        broker.publish(event.topic, event.payload, event.selector)

    bus.subscribe_all(forward)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        broker.start()
        await hub.start()
        logger.info("LiquidityFlow started: %d venues, symbols %s", len(hub.adapters), ", ".join(settings.symbols))
        try:
            yield
        finally:
            await hub.shutdown()
            await broker.shutdown()
            logger.info("LiquidityFlow stopped")

    app = FastAPI(title="LiquidityFlow", lifespan=lifespan)
    app.state.settings = settings
    app.state.bus = bus
    app.state.hub = hub
    app.state.advisor = advisor
    app.state.broker = broker
    app.state.store = store
    app.include_router(create_api_router(hub, advisor, store))
    app.include_router(create_stream_router(broker))
    return app


def run() -> None:
    import uvicorn

    configure_logging()
    settings = Settings.from_env()
    uvicorn.run(
        create_app(settings),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        ws_ping_interval=settings.broker.ws_ping_interval,
        ws_ping_timeout=settings.broker.ws_ping_timeout,
    )


if __name__ == "__main__":
    run()
