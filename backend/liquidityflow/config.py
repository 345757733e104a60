"""Tunable parameters for the feed, hub, advisor and broker.

Every heuristic constant lives here so tuning never touches algorithm code.
Defaults match production behaviour; ``Settings.from_env()`` applies
environment overrides.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_SYMBOLS = ("BTCUSDT", "ETHUSDT", "SOLUSDT")
DEFAULT_VENUES = ("binance", "coinbase")


@dataclass(frozen=True)
class FeedSettings:
    """Per-venue connection policy."""

    max_retries: int = 3  # consecutive failures before Degraded
    reconnect_delay: float = 5.0  # seconds between reconnect attempts
    poll_interval: float = 60.0  # REST backup poll while not subscribed
    health_check_interval: float = 300.0
    open_timeout: float = 10.0  # websocket handshake
    request_timeout: float = 10.0  # REST calls
    order_book_depth: int = 20


@dataclass(frozen=True)
class HubSettings:
    """Cache, anomaly and persistence policy."""

    persist_interval: float = 10.0  # min seconds between stored writes per key
    freshness_seconds: float = 60.0
    extreme_move_ratio: float = 0.10  # |Δlast| / last
    wide_spread_percent: float = 5.0


@dataclass(frozen=True)
class AdvisorSettings:
    """Routing heuristic constants."""

    impact_factor: float = 0.1
    min_slippage: float = 0.01  # percent
    best_venue_fraction: float = 0.6
    max_venues: int = 3
    single_venue_risk: float = 0.1
    multi_venue_risk: float = 0.05
    illiquid_spread_percent: float = 0.5
    low_volume_floor: float = 1_000_000.0
    liquidity_reference_volume: float = 10_000_000.0
    high_volatility_percent: float = 5.0
    calm_volatility_percent: float = 2.0
    low_liquidity_score: float = 0.3
    high_liquidity_score: float = 0.8
    high_volatility_delay: float = 300.0
    low_liquidity_delay: float = 180.0
    max_liquidity_utilization: float = 0.1
    size_reduction: float = 0.8
    stale_data_seconds: float = 300.0
    twap_window_seconds: float = 900.0


@dataclass(frozen=True)
class BrokerSettings:
    """Subscriber connection policy."""

    heartbeat_interval: float = 30.0
    outbox_size: int = 1000
    # Transport-level ping handled by uvicorn; a peer that misses the pong is dropped
    ws_ping_interval: float = 20.0
    ws_ping_timeout: float = 20.0
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"


@dataclass(frozen=True)
class Settings:
    venues: tuple[str, ...] = DEFAULT_VENUES
    symbols: tuple[str, ...] = DEFAULT_SYMBOLS
    massive_api_key: str = ""
    massive_symbols: tuple[str, ...] = ("AAPL", "MSFT", "NVDA")
    feed: FeedSettings = field(default_factory=FeedSettings)
    hub: HubSettings = field(default_factory=HubSettings)
    advisor: AdvisorSettings = field(default_factory=AdvisorSettings)
    broker: BrokerSettings = field(default_factory=BrokerSettings)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        feed = FeedSettings(
            max_retries=_int(env, "FEED_MAX_RETRIES", FeedSettings.max_retries),
            reconnect_delay=_float(env, "FEED_RECONNECT_DELAY", FeedSettings.reconnect_delay),
            poll_interval=_float(env, "FEED_POLL_INTERVAL", FeedSettings.poll_interval),
            health_check_interval=_float(
                env, "FEED_HEALTH_CHECK_INTERVAL", FeedSettings.health_check_interval
            ),
        )
        hub = HubSettings(
            persist_interval=_float(env, "HUB_PERSIST_INTERVAL", HubSettings.persist_interval),
            freshness_seconds=_float(env, "HUB_FRESHNESS_SECONDS", HubSettings.freshness_seconds),
        )
        advisor = AdvisorSettings(
            impact_factor=_float(env, "ADVISOR_IMPACT_FACTOR", AdvisorSettings.impact_factor),
            low_volume_floor=_float(env, "ADVISOR_LOW_VOLUME_FLOOR", AdvisorSettings.low_volume_floor),
        )
        broker = BrokerSettings(
            heartbeat_interval=_float(
                env, "BROKER_HEARTBEAT_INTERVAL", BrokerSettings.heartbeat_interval
            ),
            ws_ping_interval=_float(env, "BROKER_WS_PING_INTERVAL", BrokerSettings.ws_ping_interval),
            ws_ping_timeout=_float(env, "BROKER_WS_PING_TIMEOUT", BrokerSettings.ws_ping_timeout),
            jwt_secret=env.get("JWT_SECRET", "").strip() or BrokerSettings.jwt_secret,
            jwt_algorithm=env.get("JWT_ALGORITHM", "").strip() or BrokerSettings.jwt_algorithm,
        )

        return cls(
            venues=_csv(env, "LIQUIDITYFLOW_VENUES", DEFAULT_VENUES, upper=False),
            symbols=_csv(env, "LIQUIDITYFLOW_SYMBOLS", DEFAULT_SYMBOLS),
            massive_api_key=env.get("MASSIVE_API_KEY", "").strip(),
            massive_symbols=_csv(env, "MASSIVE_SYMBOLS", cls.massive_symbols),
            feed=feed,
            hub=hub,
            advisor=advisor,
            broker=broker,
        )


def _csv(env: Mapping[str, str], key: str, default: tuple[str, ...], upper: bool = True) -> tuple[str, ...]:
    raw = env.get(key, "").strip()
    if not raw:
        return tuple(default)
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return tuple(item.upper() if upper else item.lower() for item in items)


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    return float(raw) if raw else default


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    return int(raw) if raw else default
