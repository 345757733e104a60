"""Abstract venue feed adapter and its connection state machine."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, Protocol

import httpx
import websockets

from ..config import FeedSettings
from ..errors import QuoteValidationError, VenueConnectionError
from ..scheduler import Scheduler, TaskHandle
from .models import OrderBookSnapshot, Quote, VenueHealthUpdate, VenueStatus

logger = logging.getLogger(__name__)

FeedItem = Quote | OrderBookSnapshot


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class QuoteSink(Protocol):
    """What an adapter needs from the hub."""

    def ingest(self, quote: Quote) -> Quote | None: ...

    def ingest_order_book(self, book: OrderBookSnapshot) -> None: ...

    def record_health(self, venue_id: str, update: VenueHealthUpdate) -> None: ...


class StreamConnection(Protocol):
    """A duplex venue stream. ``websockets`` client connections satisfy it."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


class FeedAdapter(ABC):
    """Contract and shared lifecycle for one venue's market data feed.

    Subclasses supply the venue specifics: how to open the stream, what to
    send to subscribe, how to parse a wire message, and how to fetch a REST
    snapshot. The base class runs the state machine:

        DISCONNECTED -> CONNECTING -> SUBSCRIBED -> RECONNECTING | DEGRADED

    A lost or failed connection is retried after ``reconnect_delay`` until
    ``max_retries`` consecutive failures, then the venue is Degraded and
    stays so until ``restart()``. While not subscribed, a REST poll feeds
    the hub every ``poll_interval`` seconds.

    Lifecycle:
        adapter.attach(hub, scheduler)
        await adapter.start()
        # ... app runs ...
        await adapter.stop()
    """

    def __init__(self, venue_id: str, symbols: list[str], settings: FeedSettings | None = None) -> None:
        self.venue_id = venue_id
        self._symbols: list[str] = [s.upper().strip() for s in symbols]
        self._settings = settings or FeedSettings()
        self._sink: QuoteSink | None = None
        self._scheduler: Scheduler | None = None
        self._state = FeedState.DISCONNECTED
        self._failures = 0
        self._conn: StreamConnection | None = None
        self._reader: asyncio.Task | None = None
        self._reconnect: TaskHandle | None = None
        self._timers: list[TaskHandle] = []
        self._stopped = False
        # Bumped by restart() and stop(); an in-flight connect() from an older
        # generation discards whatever stream it opened.
        self._generation = 0

    # --- Venue specifics ---

    @abstractmethod
    async def _open(self) -> StreamConnection:
        """Open the venue stream. Raise on failure."""

    @abstractmethod
    def subscribe_messages(self) -> list[dict[str, Any]]:
        """Subscribe request(s) for the configured symbols."""

    @abstractmethod
    def parse_message(self, raw: str | bytes) -> list[FeedItem]:
        """Translate one wire message. Non-data messages yield an empty list.

        Raise ValueError, KeyError, TypeError or QuoteValidationError for
        malformed input.
        """

    @abstractmethod
    async def fetch_snapshot(self) -> list[Quote]:
        """Fetch current quotes for all symbols over the request/response API."""

    # --- Public API ---

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    def attach(self, sink: QuoteSink, scheduler: Scheduler) -> None:
        self._sink = sink
        self._scheduler = scheduler

    async def start(self) -> None:
        """Seed the cache from REST, connect the stream and start the timers."""
        if self._sink is None or self._scheduler is None:
            raise RuntimeError(f"{self.venue_id}: attach() must be called before start()")

        # Immediate first poll so the cache has data right away
        await self.poll_once(force=True)
        await self.connect()

        self._timers = [
            self._scheduler.every(self._settings.poll_interval, self.poll_once, name=f"{self.venue_id}-poll"),
            self._scheduler.every(
                self._settings.health_check_interval, self.probe_health, name=f"{self.venue_id}-health"
            ),
        ]
        logger.info("%s feed started: %d symbols", self.venue_id, len(self._symbols))

    async def connect(self) -> None:
        """Open the stream and subscribe. Failures feed the retry policy."""
        if self._stopped or self._state in (FeedState.CONNECTING, FeedState.SUBSCRIBED):
            return

        self._state = FeedState.CONNECTING
        generation = self._generation
        logger.info("Connecting to %s stream", self.venue_id)
        try:
            conn = await self._open()
        except Exception as e:
            if self._superseded(generation):
                logger.debug("Discarding failed %s connect attempt: %s", self.venue_id, e)
                return
            self._on_connection_lost(e)
            return

        if self._superseded(generation):
            await self._close_quietly(conn)
            return

        try:
            for message in self.subscribe_messages():
                await conn.send(json.dumps(message))
        except Exception as e:
            await self._close_quietly(conn)
            if not self._superseded(generation):
                self._on_connection_lost(e)
            return

        if self._superseded(generation):
            await self._close_quietly(conn)
            return

        self._conn = conn
        self._state = FeedState.SUBSCRIBED
        self._failures = 0
        self._report(connected=True, consecutive_failures=0, status=VenueStatus.ACTIVE)
        self._reader = asyncio.create_task(self._read_loop(conn), name=f"{self.venue_id}-reader")
        logger.info("Subscribed to %d symbols on %s", len(self._symbols), self.venue_id)

    async def restart(self) -> None:
        """External restart: clears the failure count and reconnects, even from Degraded."""
        if self._stopped:
            return
        self._generation += 1
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        await self._teardown_stream()
        self._failures = 0
        self._state = FeedState.DISCONNECTED
        self._report(consecutive_failures=0, status=VenueStatus.ACTIVE)
        logger.info("Restarting %s feed", self.venue_id)
        await self.connect()

    async def poll_once(self, force: bool = False) -> int:
        """Run one REST poll. Skipped while the stream is subscribed unless forced.

        Returns the number of quotes delivered.
        """
        if self._stopped or self._sink is None:
            return 0
        if not force and self._state == FeedState.SUBSCRIBED:
            return 0

        try:
            quotes = await self.fetch_snapshot()
        except Exception as e:
            logger.error("%s REST poll failed: %s", self.venue_id, e)
            # Don't re-raise; the next interval retries.
            return 0

        delivered = 0
        for quote in quotes:
            if self._sink.ingest(quote) is not None:
                delivered += 1
        logger.debug("%s poll: %d/%d quotes accepted", self.venue_id, delivered, len(quotes))
        return delivered

    async def probe_health(self) -> None:
        self._report(connected=self._state == FeedState.SUBSCRIBED, last_health_check=time.time())

    async def stop(self) -> None:
        """Close the stream and cancel timers. Safe to call multiple times."""
        if self._stopped:
            return
        self._stopped = True
        self._generation += 1
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        await self._teardown_stream()
        self._state = FeedState.STOPPED
        logger.info("%s feed stopped", self.venue_id)

    # --- Internal ---

    async def _read_loop(self, conn: StreamConnection) -> None:
        error: Exception | None = None
        try:
            async for raw in conn:
                self._handle_raw(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if self._stopped or self._conn is not conn:
            return
        self._conn = None
        self._reader = None
        self._on_connection_lost(error or VenueConnectionError(self.venue_id, "stream closed"))

    def _superseded(self, generation: int) -> bool:
        return self._stopped or generation != self._generation

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            items = self.parse_message(raw)
        except (ValueError, KeyError, TypeError, QuoteValidationError) as e:
            logger.warning("Dropping malformed %s message: %s", self.venue_id, e)
            return

        for item in items:
            if isinstance(item, OrderBookSnapshot):
                self._sink.ingest_order_book(item)
            else:
                self._sink.ingest(item)

    def _on_connection_lost(self, error: Exception) -> None:
        self._failures += 1
        if self._stopped:
            return

        max_retries = self._settings.max_retries
        if self._failures < max_retries:
            self._state = FeedState.RECONNECTING
            self._report(connected=False, consecutive_failures=self._failures)
            logger.warning(
                "%s connection lost (%s); retrying in %.1fs (attempt %d/%d)",
                self.venue_id,
                error,
                self._settings.reconnect_delay,
                self._failures,
                max_retries,
            )
            self._reconnect = self._scheduler.later(
                self._settings.reconnect_delay, self.connect, name=f"{self.venue_id}-reconnect"
            )
        else:
            self._state = FeedState.DEGRADED
            self._report(connected=False, consecutive_failures=self._failures, status=VenueStatus.DEGRADED)
            logger.error(
                "%s degraded after %d consecutive failures (%s); falling back to REST polling",
                self.venue_id,
                self._failures,
                error,
            )

    async def _teardown_stream(self) -> None:
        reader, self._reader = self._reader, None
        conn, self._conn = self._conn, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if conn is not None:
            await self._close_quietly(conn)

    async def _close_quietly(self, conn: StreamConnection) -> None:
        try:
            await conn.close()
        except Exception as e:
            logger.debug("%s close failed: %s", self.venue_id, e)

    def _report(self, **fields: Any) -> None:
        if self._sink is not None:
            self._sink.record_health(self.venue_id, VenueHealthUpdate(**fields))


class WebsocketFeedAdapter(FeedAdapter):
    """FeedAdapter speaking JSON over a websocket stream and an HTTP REST API."""

    stream_url: str = ""
    rest_url: str = ""

    def __init__(self, venue_id: str, symbols: list[str], settings: FeedSettings | None = None) -> None:
        super().__init__(venue_id, symbols, settings)
        self._http: httpx.AsyncClient | None = None

    async def _open(self) -> StreamConnection:
        return await websockets.connect(
            self.stream_url,
            open_timeout=self._settings.open_timeout,
            ping_interval=20,
            ping_timeout=20,
            close_timeout=5,
        )

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.rest_url, timeout=self._settings.request_timeout)
        response = await self._http.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def stop(self) -> None:
        await super().stop()
        if self._http is not None:
            await self._http.aclose()
            self._http = None
