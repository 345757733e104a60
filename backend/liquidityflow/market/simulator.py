"""GBM-based simulated venue."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import random
import time
from collections.abc import AsyncIterator
from typing import Any

import numpy as np

from ..config import FeedSettings
from .adapter import FeedAdapter, FeedItem, StreamConnection
from .models import Quote
from .seed_prices import (
    CORRELATION_GROUPS,
    CROSS_GROUP_CORR,
    DEFAULT_CORR,
    DEFAULT_PARAMS,
    DEFAULT_VOLUME_24H,
    INTRA_CRYPTO_CORR,
    INTRA_EQUITY_CORR,
    SEED_PRICES,
    SEED_VOLUME_24H,
    SYMBOL_PARAMS,
)

logger = logging.getLogger(__name__)


class GBMSimulator:
    """Geometric Brownian Motion simulator for correlated mid prices.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Crypto trades around the clock, so dt is the tick length as a fraction
    of a 365-day year.
    """

    SECONDS_PER_YEAR = 365 * 24 * 3600
    DEFAULT_DT = 0.5 / SECONDS_PER_YEAR  # ~1.6e-8

    def __init__(
        self,
        symbols: list[str],
        dt: float = DEFAULT_DT,
        event_probability: float = 0.001,
    ) -> None:
        self._dt = dt
        self._event_prob = event_probability

        # Per-symbol state
        self._symbols: list[str] = []
        self._prices: dict[str, float] = {}
        self._opens: dict[str, float] = {}
        self._highs: dict[str, float] = {}
        self._lows: dict[str, float] = {}
        self._volumes: dict[str, float] = {}
        self._params: dict[str, dict[str, float]] = {}

        # Cholesky decomposition of the correlation matrix (for correlated moves)
        self._cholesky: np.ndarray | None = None

        for symbol in symbols:
            self._add_symbol_internal(symbol)
        self._rebuild_cholesky()

    # --- Public API ---

    def step(self) -> dict[str, float]:
        """Advance all symbols by one time step. Returns {symbol: new_mid}."""
        n = len(self._symbols)
        if n == 0:
            return {}

        z_independent = np.random.standard_normal(n)
        if self._cholesky is not None:
            z_correlated = self._cholesky @ z_independent
        else:
            z_correlated = z_independent

        result: dict[str, float] = {}
        for i, symbol in enumerate(self._symbols):
            params = self._params[symbol]
            mu = params["mu"]
            sigma = params["sigma"]

            drift = (mu - 0.5 * sigma**2) * self._dt
            diffusion = sigma * math.sqrt(self._dt) * z_correlated[i]
            self._prices[symbol] *= math.exp(drift + diffusion)

            # Random event: a sudden 2-5% jump
            if random.random() < self._event_prob:
                shock_magnitude = random.uniform(0.02, 0.05)
                shock_sign = random.choice([-1, 1])
                self._prices[symbol] *= 1 + shock_magnitude * shock_sign
                logger.debug(
                    "Random event on %s: %.1f%% %s",
                    symbol,
                    shock_magnitude * 100,
                    "up" if shock_sign > 0 else "down",
                )

            price = self._prices[symbol]
            self._highs[symbol] = max(self._highs[symbol], price)
            self._lows[symbol] = min(self._lows[symbol], price)
            self._volumes[symbol] *= math.exp(random.gauss(0.0, 0.001))
            result[symbol] = price

        return result

    def quote_fields(self, symbol: str, spread_multiplier: float = 1.0) -> dict[str, Any]:
        """Top-of-book fields around the current mid for ``symbol``."""
        mid = self._prices[symbol]
        half_spread = mid * self._params[symbol]["spread_bps"] * spread_multiplier / 20_000
        bid_size, ask_size = np.random.lognormal(mean=0.0, sigma=0.5, size=2)
        depth_notional = self._volumes[symbol] / 2_000
        change = mid - self._opens[symbol]
        return {
            "symbol": symbol,
            "bid_price": mid - half_spread,
            "ask_price": mid + half_spread,
            "bid_volume": float(bid_size) * depth_notional / mid,
            "ask_volume": float(ask_size) * depth_notional / mid,
            "last_price": mid + random.uniform(-half_spread, half_spread),
            "volume_24h": self._volumes[symbol],
            "high_24h": self._highs[symbol],
            "low_24h": self._lows[symbol],
            "change_24h": change,
            "change_percent_24h": change / self._opens[symbol] * 100,
            "timestamp": time.time(),
        }

    def get_price(self, symbol: str) -> float | None:
        """Current mid for a symbol, or None if not tracked."""
        return self._prices.get(symbol)

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    # --- Internals ---

    def _add_symbol_internal(self, symbol: str) -> None:
        if symbol in self._prices:
            return
        price = SEED_PRICES.get(symbol, random.uniform(50.0, 300.0))
        self._symbols.append(symbol)
        self._prices[symbol] = price
        self._opens[symbol] = price
        self._highs[symbol] = price
        self._lows[symbol] = price
        self._volumes[symbol] = SEED_VOLUME_24H.get(symbol, DEFAULT_VOLUME_24H)
        self._params[symbol] = SYMBOL_PARAMS.get(symbol, dict(DEFAULT_PARAMS))

    def _rebuild_cholesky(self) -> None:
        n = len(self._symbols)
        if n <= 1:
            self._cholesky = None
            return

        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                rho = self._pairwise_correlation(self._symbols[i], self._symbols[j])
                corr[i, j] = rho
                corr[j, i] = rho

        self._cholesky = np.linalg.cholesky(corr)

    @staticmethod
    def _pairwise_correlation(s1: str, s2: str) -> float:
        crypto = CORRELATION_GROUPS["crypto"]
        equities = CORRELATION_GROUPS["equities"]

        if s1 in crypto and s2 in crypto:
            return INTRA_CRYPTO_CORR
        if s1 in equities and s2 in equities:
            return INTRA_EQUITY_CORR
        known = crypto | equities
        if s1 in known and s2 in known:
            return CROSS_GROUP_CORR
        return DEFAULT_CORR


class SimulatedStream:
    """In-process stand-in for a venue websocket.

    Yields one JSON frame per tick carrying a quote for every symbol.
    """

    def __init__(self, sim: GBMSimulator, interval: float, spread_multiplier: float) -> None:
        self._sim = sim
        self._interval = interval
        self._spread_multiplier = spread_multiplier
        self._closed = asyncio.Event()
        self.sent: list[str] = []

    async def send(self, message: str) -> None:
        if self._closed.is_set():
            raise ConnectionError("simulated stream is closed")
        self.sent.append(message)

    async def close(self) -> None:
        self._closed.set()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._frames()

    async def _frames(self) -> AsyncIterator[str]:
        while not self._closed.is_set():
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self._interval)
                return
            except TimeoutError:
                pass
            try:
                self._sim.step()
            except Exception:
                logger.exception("Simulator step failed")
                continue
            frame = [self._sim.quote_fields(s, self._spread_multiplier) for s in self._sim.symbols]
            yield json.dumps(frame)


class SimulatedFeedAdapter(FeedAdapter):
    """FeedAdapter backed by the GBM simulator.

    Runs the full connection state machine against an in-process stream so
    the service works without venue credentials or network access.
    """

    def __init__(
        self,
        symbols: list[str],
        settings: FeedSettings | None = None,
        venue_id: str = "simulator",
        update_interval: float = 0.5,
        event_probability: float = 0.001,
        spread_multiplier: float = 1.0,
    ) -> None:
        super().__init__(venue_id, symbols, settings)
        self._interval = update_interval
        self._spread_multiplier = spread_multiplier
        self._sim = GBMSimulator(symbols=self._symbols, event_probability=event_probability)

    async def _open(self) -> StreamConnection:
        return SimulatedStream(self._sim, self._interval, self._spread_multiplier)

    def subscribe_messages(self) -> list[dict[str, Any]]:
        return [{"type": "subscribe", "symbols": self._symbols}]

    def parse_message(self, raw: str | bytes) -> list[FeedItem]:
        return [Quote(venue_id=self.venue_id, **fields) for fields in json.loads(raw)]

    async def fetch_snapshot(self) -> list[Quote]:
        return [
            Quote(venue_id=self.venue_id, **self._sim.quote_fields(s, self._spread_multiplier))
            for s in self._sim.symbols
        ]
