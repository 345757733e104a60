"""Factory for creating venue feed adapters."""

from __future__ import annotations

import logging

from ..config import Settings
from .adapter import FeedAdapter

logger = logging.getLogger(__name__)

SIMULATED_PREFIX = "sim"


def create_feed_adapters(settings: Settings) -> list[FeedAdapter]:
    """Create one unstarted adapter per configured venue.

    - ``binance`` / ``coinbase`` -> live crypto venues
    - any name starting with ``sim`` -> GBM simulated venue (each one quotes
      a slightly wider spread than the previous, so routing has something
      to choose between)
    - MASSIVE_API_KEY set and non-empty -> Massive equities venue for
      ``MASSIVE_SYMBOLS``
    - nothing configured -> a single simulated venue

    Unknown venue names are logged and skipped. Caller must add the adapters
    to a hub and await ``hub.start()``.
    """
    symbols = list(settings.symbols)
    adapters: list[FeedAdapter] = []
    simulated = 0

    for venue in settings.venues:
        if venue == "binance":
            from .binance import BinanceFeedAdapter

            adapters.append(BinanceFeedAdapter(symbols, settings.feed))
        elif venue == "coinbase":
            from .coinbase import CoinbaseFeedAdapter

            adapters.append(CoinbaseFeedAdapter(symbols, settings.feed))
        elif venue.startswith(SIMULATED_PREFIX):
            from .simulator import SimulatedFeedAdapter

            adapters.append(
                SimulatedFeedAdapter(
                    symbols,
                    settings.feed,
                    venue_id=venue,
                    spread_multiplier=1.0 + 0.5 * simulated,
                )
            )
            simulated += 1
        else:
            logger.warning("Unknown venue %r in configuration, skipping", venue)

    if settings.massive_api_key:
        from .massive_client import MassiveFeedAdapter

        adapters.append(MassiveFeedAdapter(settings.massive_api_key, list(settings.massive_symbols), settings.feed))

    if not adapters:
        from .simulator import SimulatedFeedAdapter

        logger.info("No venues configured, using the GBM simulator")
        adapters.append(SimulatedFeedAdapter(symbols, settings.feed))

    logger.info("Feed adapters: %s", ", ".join(a.venue_id for a in adapters))
    return adapters
