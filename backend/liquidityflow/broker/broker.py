"""SubscriptionBroker: authenticated channel subscriptions over duplex connections.

Each connection gets a bounded outbox drained by its own writer task, so
``publish()`` only enqueues and never waits on a slow subscriber. A full
outbox drops the frame for that connection alone.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from ..config import BrokerSettings
from ..errors import (
    AuthenticationError,
    BroadcastError,
    InvalidChannelError,
    LiquidityFlowError,
    ProtocolError,
)
from ..scheduler import Scheduler, TaskHandle
from . import protocol
from .auth import Identity, TokenVerifier
from .channels import Channel, Topic
from .protocol import (
    AuthenticateMessage,
    ClientMessage,
    PingMessage,
    SubscribeMessage,
    UnsubscribeMessage,
)

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001


class Transport(Protocol):
    """The send side of a subscriber connection (a FastAPI WebSocket fits)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class SubscriberConnection:
    """One subscriber: identity, channel set, liveness flag and outbox."""

    def __init__(self, connection_id: str, transport: Transport, outbox_size: int) -> None:
        self.connection_id = connection_id
        self.transport = transport
        self.identity: Identity | None = None
        self.channels: set[str] = set()
        self.alive = True
        self.connected_at = time.time()
        self.frames_dropped = 0
        self.outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size)
        self.writer: asyncio.Task | None = None

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    def enqueue(self, frame: str) -> bool:
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self.frames_dropped += 1
            return False
        return True

    def send(self, frame: dict[str, Any]) -> bool:
        return self.enqueue(json.dumps(frame))

    async def close(self, code: int, reason: str) -> None:
        writer, self.writer = self.writer, None
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            # Already closed by the peer
            logger.debug("Close of connection %s failed: %s", self.connection_id, e)


class SubscriptionBroker:
    """Fans bus events out to subscriber connections.

    Frames from a client go through ``handle_message()``, which dispatches on
    the message type via a fixed handler table. Each heartbeat frame must be
    delivered (or a client frame received) before the next beat; a connection
    whose transport stops accepting writes for a whole interval is terminated.
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        settings: BrokerSettings | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._verifier = verifier
        self._settings = settings or BrokerSettings()
        self._scheduler = scheduler or Scheduler()
        self._connections: dict[str, SubscriberConnection] = {}
        self._channel_index: dict[str, set[str]] = {}
        self._users: dict[str, set[str]] = {}
        self._heartbeat: TaskHandle | None = None
        self._shut_down = False
        self._handlers: dict[type, Callable[[SubscriberConnection, Any], None]] = {
            AuthenticateMessage: self._on_authenticate,
            SubscribeMessage: self._on_subscribe,
            UnsubscribeMessage: self._on_unsubscribe,
            PingMessage: self._on_ping,
        }

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the heartbeat timer. Needs a running event loop."""
        if self._heartbeat is None and not self._shut_down:
            self._heartbeat = self._scheduler.every(
                self._settings.heartbeat_interval, self.heartbeat, name="broker-heartbeat"
            )

    async def shutdown(self) -> None:
        """Stop the heartbeat and close every connection. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        connections = list(self._connections.values())
        self._connections.clear()
        self._channel_index.clear()
        self._users.clear()
        await asyncio.gather(
            *(conn.close(GOING_AWAY, "server shutdown") for conn in connections), return_exceptions=True
        )
        await self._scheduler.shutdown()
        logger.info("Subscription broker stopped (%d connections closed)", len(connections))

    # --- Connections ---

    async def connect(self, transport: Transport) -> SubscriberConnection:
        """Register an accepted transport and send the welcome frame."""
        if self._shut_down:
            await transport.close(code=GOING_AWAY, reason="server shutdown")
            raise RuntimeError("broker is shut down")

        conn = SubscriberConnection(uuid.uuid4().hex, transport, self._settings.outbox_size)
        self._connections[conn.connection_id] = conn
        conn.writer = asyncio.create_task(self._write_loop(conn), name=f"subscriber-{conn.connection_id}")
        conn.send(protocol.welcome(conn.connection_id))
        logger.info("Subscriber %s connected (%d total)", conn.connection_id, len(self._connections))
        return conn

    async def disconnect(
        self, connection_id: str, code: int = NORMAL_CLOSURE, reason: str = ""
    ) -> bool:
        """Remove a connection from every index and close it. Idempotent."""
        conn = self._remove(connection_id)
        if conn is None:
            return False
        await conn.close(code, reason)
        logger.info("Subscriber %s disconnected (%d total)", connection_id, len(self._connections))
        return True

    def get(self, connection_id: str) -> SubscriberConnection | None:
        return self._connections.get(connection_id)

    # --- Client messages ---

    def handle_message(self, connection_id: str, raw: str | bytes | dict[str, Any]) -> None:
        """Decode and dispatch one client frame. Errors go back as error frames."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        conn.alive = True

        try:
            message: ClientMessage = protocol.parse_client_message(raw)
        except ProtocolError as e:
            logger.warning("Bad frame from %s: %s", connection_id, e)
            conn.send(protocol.error(str(e), e.details))
            return

        logger.debug("Received %s from %s", message.type, connection_id)
        try:
            self._handlers[type(message)](conn, message)
        except LiquidityFlowError as e:
            # Already reported to the client by the operation that raised
            logger.debug("%s from %s rejected: %s", message.type, connection_id, e)

    def authenticate(self, connection_id: str, token: str) -> Identity:
        conn = self._require(connection_id)
        try:
            identity = self._verifier.verify(token)
        except AuthenticationError as e:
            logger.warning("Authentication failed for connection %s: %s", connection_id, e)
            conn.send(protocol.error("Authentication failed", str(e)))
            raise

        if conn.identity is not None:
            self._discard_user(conn)
        conn.identity = identity
        self._users.setdefault(identity.user_id, set()).add(connection_id)
        conn.send(protocol.authenticated(identity.to_dict()))
        logger.info("User %s authenticated on connection %s", identity.user_id, connection_id)
        return identity

    def subscribe(self, connection_id: str, channels: Iterable[str]) -> list[str]:
        """Add valid channels; invalid ones get an error frame. Returns the resulting set."""
        conn = self._require_authenticated(connection_id)
        for channel in self._valid_channels(conn, channels):
            conn.channels.add(channel)
            self._channel_index.setdefault(channel, set()).add(connection_id)
            logger.debug("Connection %s subscribed to %s", connection_id, channel)
        current = sorted(conn.channels)
        conn.send(protocol.subscribed(current))
        return current

    def unsubscribe(self, connection_id: str, channels: Iterable[str]) -> list[str]:
        conn = self._require_authenticated(connection_id)
        for channel in self._valid_channels(conn, channels):
            conn.channels.discard(channel)
            self._unindex(channel, connection_id)
            logger.debug("Connection %s unsubscribed from %s", connection_id, channel)
        current = sorted(conn.channels)
        conn.send(protocol.unsubscribed(current))
        return current

    # --- Fan-out ---

    def publish(self, topic: Topic | str, payload: dict[str, Any], selector: str | None = None) -> int:
        """Deliver to subscribers of the bare topic or of ``topic:selector``.

        Returns the number of connections the frame was queued for.
        """
        try:
            channel = Channel.of(topic, selector)
        except ValueError:
            raise InvalidChannelError(f"{topic}:{selector}" if selector else str(topic)) from None

        targets = set(self._channel_index.get(str(channel.bare), ()))
        if channel.selector is not None:
            targets |= self._channel_index.get(str(channel), set())
        if not targets:
            return 0

        frame = json.dumps(protocol.broadcast(str(channel), payload))
        return self._fan_out(targets, frame, str(channel))

    def publish_to_user(self, user_id: str, payload: dict[str, Any]) -> int:
        """Send a ``user-message`` frame to every connection of one user."""
        targets = set(self._users.get(user_id, ()))
        if not targets:
            return 0
        return self._fan_out(targets, json.dumps(protocol.user_message(payload)), f"user {user_id}")

    # --- Liveness ---

    async def heartbeat(self) -> None:
        """Terminate connections that neither took the last beat nor sent anything; beat the rest.

        A listening client needs no reply: delivering the heartbeat frame
        marks the connection alive. Dead peers are detected by the server's
        transport-level ping (uvicorn ``ws_ping_interval``), which closes the
        socket and ends the receive loop.
        """
        dead = [c.connection_id for c in self._connections.values() if not c.alive]
        for connection_id in dead:
            logger.info("Terminating inactive connection %s", connection_id)
            await self.disconnect(connection_id, GOING_AWAY, "heartbeat timeout")

        frame = json.dumps(protocol.heartbeat())
        for conn in self._connections.values():
            conn.alive = False
            conn.enqueue(frame)

    # --- Stats ---

    def stats(self) -> dict[str, Any]:
        return {
            "total_connections": len(self._connections),
            "authenticated_connections": sum(1 for c in self._connections.values() if c.authenticated),
            "unique_users": len(self._users),
            "total_subscriptions": sum(len(c.channels) for c in self._connections.values()),
            "channels": sorted(self._channel_index),
        }

    # --- Handler table entries ---

    def _on_authenticate(self, conn: SubscriberConnection, message: AuthenticateMessage) -> None:
        self.authenticate(conn.connection_id, message.payload.token)

    def _on_subscribe(self, conn: SubscriberConnection, message: SubscribeMessage) -> None:
        self.subscribe(conn.connection_id, message.payload.channels)

    def _on_unsubscribe(self, conn: SubscriberConnection, message: UnsubscribeMessage) -> None:
        self.unsubscribe(conn.connection_id, message.payload.channels)

    def _on_ping(self, conn: SubscriberConnection, message: PingMessage) -> None:
        conn.send(protocol.pong())

    # --- Internal ---

    def _require(self, connection_id: str) -> SubscriberConnection:
        conn = self._connections.get(connection_id)
        if conn is None:
            raise KeyError(connection_id)
        return conn

    def _require_authenticated(self, connection_id: str) -> SubscriberConnection:
        conn = self._require(connection_id)
        if not conn.authenticated:
            conn.send(protocol.error("Authentication required"))
            raise AuthenticationError("Authentication required")
        return conn

    def _valid_channels(self, conn: SubscriberConnection, channels: Iterable[str]) -> list[str]:
        valid = []
        for raw in channels:
            try:
                valid.append(str(Channel.parse(raw)))
            except InvalidChannelError as e:
                conn.send(protocol.error(str(e)))
        return valid

    def _fan_out(self, targets: set[str], frame: str, label: str) -> int:
        sent = 0
        for connection_id in targets:
            conn = self._connections.get(connection_id)
            if conn is None:
                continue
            if conn.enqueue(frame):
                sent += 1
            else:
                logger.warning("%s", BroadcastError(connection_id, f"outbox full, dropped frame for {label}"))
        logger.debug("Broadcast to %d clients on %s", sent, label)
        return sent

    async def _write_loop(self, conn: SubscriberConnection) -> None:
        try:
            while True:
                frame = await conn.outbox.get()
                await conn.transport.send_text(frame)
                conn.alive = True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s", BroadcastError(conn.connection_id, str(e)))
            if self._remove(conn.connection_id) is not None:
                await conn.close(GOING_AWAY, "send failed")

    def _remove(self, connection_id: str) -> SubscriberConnection | None:
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return None
        for channel in conn.channels:
            self._unindex(channel, connection_id)
        conn.channels.clear()
        if conn.identity is not None:
            self._discard_user(conn)
        return conn

    def _unindex(self, channel: str, connection_id: str) -> None:
        members = self._channel_index.get(channel)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._channel_index[channel]

    def _discard_user(self, conn: SubscriberConnection) -> None:
        user_id = conn.identity.user_id
        members = self._users.get(user_id)
        if members is None:
            return
        members.discard(conn.connection_id)
        if not members:
            del self._users[user_id]
