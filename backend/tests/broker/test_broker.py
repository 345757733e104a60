"""Tests for SubscriptionBroker."""

import asyncio
import json

import pytest
import pytest_asyncio

from liquidityflow.broker.auth import Identity
from liquidityflow.broker.broker import GOING_AWAY, SubscriptionBroker
from liquidityflow.config import BrokerSettings
from liquidityflow.errors import AuthenticationError, InvalidChannelError


class FakeTransport:
    """Records frames and the close call. A stalled transport never completes a send."""

    def __init__(self, fail: bool = False, stalled: bool = False):
        self.frames: list[dict] = []
        self.closed: tuple[int, str | None] | None = None
        self.fail = fail
        self.stalled = stalled

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        if self.stalled:
            await asyncio.Event().wait()
        self.frames.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)

    def of_type(self, kind: str) -> list[dict]:
        return [f for f in self.frames if f["type"] == kind]


class StaticVerifier:
    TOKENS = {
        "alice-token": Identity("alice", "alice"),
        "bob-token": Identity("bob", "bob"),
    }

    def verify(self, token: str) -> Identity:
        try:
            return self.TOKENS[token]
        except KeyError:
            raise AuthenticationError("Invalid token") from None


async def _flush() -> None:
    """Let writer tasks drain their outboxes."""
    for _ in range(3):
        await asyncio.sleep(0)


@pytest_asyncio.fixture
async def broker():
    broker = SubscriptionBroker(StaticVerifier(), BrokerSettings(heartbeat_interval=60.0))
    yield broker
    await broker.shutdown()


async def _client(broker, token="alice-token", channels=(), transport=None):
    transport = transport or FakeTransport()
    conn = await broker.connect(transport)
    if token:
        broker.authenticate(conn.connection_id, token)
    if channels:
        broker.subscribe(conn.connection_id, channels)
    return conn, transport


@pytest.mark.asyncio
class TestConnection:
    """Connect, authenticate and client frame handling."""

    async def test_welcome(self, broker):
        conn, transport = await _client(broker, token=None)
        await _flush()
        assert transport.frames[0]["type"] == "welcome"
        assert transport.frames[0]["connectionId"] == conn.connection_id

    async def test_authenticate_frame(self, broker):
        conn, transport = await _client(broker, token=None)
        broker.handle_message(conn.connection_id, json.dumps({"type": "authenticate", "payload": {"token": "bob-token"}}))
        await _flush()
        [frame] = transport.of_type("authenticated")
        assert frame["user"] == {"userId": "bob", "username": "bob"}
        assert broker.stats()["unique_users"] == 1

    async def test_bad_token(self, broker):
        """Test a rejected token leaves the connection unauthenticated."""
        conn, transport = await _client(broker, token=None)
        broker.handle_message(conn.connection_id, {"type": "authenticate", "payload": {"token": "forged"}})
        await _flush()
        [frame] = transport.of_type("error")
        assert frame["message"] == "Authentication failed"
        assert frame["details"] == "Invalid token"
        assert not conn.authenticated

    async def test_authenticate_raises_directly(self, broker):
        conn, _ = await _client(broker, token=None)
        with pytest.raises(AuthenticationError):
            broker.authenticate(conn.connection_id, "forged")

    async def test_subscribe_requires_authentication(self, broker):
        """Test an unauthenticated subscribe gets an error and no channels."""
        conn, transport = await _client(broker, token=None)
        broker.handle_message(
            conn.connection_id, json.dumps({"type": "subscribe", "payload": {"channels": ["market-data"]}})
        )
        await _flush()
        assert transport.of_type("error")[0]["message"] == "Authentication required"
        assert conn.channels == set()
        assert broker.publish("market-data", {"x": 1}) == 0

    async def test_invalid_channel_reported(self, broker):
        """Test invalid channels get an error frame while valid ones apply."""
        conn, transport = await _client(broker)
        broker.handle_message(
            conn.connection_id,
            json.dumps({"type": "subscribe", "payload": {"channels": ["bogus", "market-data:BTCUSDT"]}}),
        )
        await _flush()
        assert transport.of_type("error")[0]["message"] == "Invalid channel: bogus"
        assert transport.of_type("subscribed")[0]["channels"] == ["market-data:BTCUSDT"]

    @pytest.mark.parametrize(
        "raw,message",
        [
            ("{not json", "Invalid message format"),
            ("[1]", "Invalid message format"),
            ('{"type": "dance"}', "Unknown message type: dance"),
            ('{"type": "subscribe", "payload": {}}', "Invalid subscribe message"),
        ],
    )
    async def test_bad_frames(self, broker, raw, message):
        conn, transport = await _client(broker)
        broker.handle_message(conn.connection_id, raw)
        await _flush()
        assert transport.of_type("error")[-1]["message"] == message

    async def test_ping(self, broker):
        conn, transport = await _client(broker, token=None)
        conn.alive = False
        broker.handle_message(conn.connection_id, '{"type": "ping"}')
        await _flush()
        assert transport.of_type("pong")
        assert conn.alive

    async def test_message_for_unknown_connection_ignored(self, broker):
        broker.handle_message("nope", '{"type": "ping"}')

    async def test_disconnect_is_idempotent(self, broker):
        """Test disconnect clears every index and can be repeated."""
        conn, transport = await _client(broker, channels=["market-data:BTCUSDT"])
        assert await broker.disconnect(conn.connection_id) is True
        assert await broker.disconnect(conn.connection_id) is False
        assert transport.closed == (1000, "")
        assert broker.stats() == {
            "total_connections": 0,
            "authenticated_connections": 0,
            "unique_users": 0,
            "total_subscriptions": 0,
            "channels": [],
        }


@pytest.mark.asyncio
class TestPublish:
    """Channel fan-out."""

    async def test_selector_fan_out(self, broker):
        """Test 5 BTCUSDT and 2 ETHUSDT subscribers: a BTCUSDT event reaches exactly 5."""
        btc = [await _client(broker, channels=["market-data:BTCUSDT"]) for _ in range(5)]
        eth = [await _client(broker, channels=["market-data:ETHUSDT"]) for _ in range(2)]

        assert broker.publish("market-data", {"bid_price": 100.0}, selector="BTCUSDT") == 5
        await _flush()

        for _, transport in btc:
            [frame] = transport.of_type("broadcast")
            assert frame["channel"] == "market-data:BTCUSDT"
            assert frame["data"] == {"bid_price": 100.0}
        for _, transport in eth:
            assert transport.of_type("broadcast") == []

    async def test_bare_topic_receives_every_selector(self, broker):
        _, everything = await _client(broker, channels=["market-data"])
        _, btc_only = await _client(broker, channels=["market-data:BTCUSDT"])

        assert broker.publish("market-data", {}, selector="ETHUSDT") == 1
        assert broker.publish("market-data", {}, selector="BTCUSDT") == 2
        assert broker.publish("market-data", {}) == 1
        await _flush()
        assert len(everything.of_type("broadcast")) == 3
        assert len(btc_only.of_type("broadcast")) == 1

    async def test_symbol_selector_case_insensitive(self, broker):
        await _client(broker, channels=["market-data:btcusdt"])
        assert broker.publish("market-data", {}, selector="BTCUSDT") == 1

    async def test_unsubscribe(self, broker):
        conn, transport = await _client(broker, channels=["market-data:BTCUSDT", "trade-updates"])
        assert broker.unsubscribe(conn.connection_id, ["market-data:BTCUSDT"]) == ["trade-updates"]
        assert broker.publish("market-data", {}, selector="BTCUSDT") == 0
        await _flush()
        assert transport.of_type("unsubscribed")[0]["channels"] == ["trade-updates"]

    async def test_unknown_topic(self, broker):
        with pytest.raises(InvalidChannelError):
            broker.publish("weather", {})

    async def test_publish_to_user(self, broker):
        """Test a user message reaches every connection of that user only."""
        _, first = await _client(broker, token="alice-token")
        _, second = await _client(broker, token="alice-token")
        _, other = await _client(broker, token="bob-token")

        assert broker.publish_to_user("alice", {"note": "filled"}) == 2
        assert broker.publish_to_user("carol", {}) == 0
        await _flush()
        assert first.of_type("user-message")[0]["data"] == {"note": "filled"}
        assert second.of_type("user-message")
        assert other.of_type("user-message") == []

    async def test_full_outbox_drops_frame(self):
        """Test a subscriber with a full outbox misses the frame, others don't."""
        broker = SubscriptionBroker(StaticVerifier(), BrokerSettings(outbox_size=3))
        # welcome + authenticated + subscribed fill the outbox before the writer runs
        slow, _ = await _client(broker, channels=["trade-updates"])
        assert broker.publish("trade-updates", {"id": 1}) == 0
        assert slow.frames_dropped == 1

        await _flush()
        assert broker.publish("trade-updates", {"id": 2}) == 1
        await broker.shutdown()

    async def test_failed_send_removes_connection(self, broker):
        transport = FakeTransport(fail=True)
        conn = await broker.connect(transport)
        await _flush()
        assert broker.get(conn.connection_id) is None
        assert transport.closed == (GOING_AWAY, "send failed")


@pytest.mark.asyncio
class TestLiveness:
    """Heartbeat and shutdown."""

    async def test_listening_subscriber_survives(self, broker):
        """Test a subscriber that never sends anything keeps receiving broadcasts."""
        conn, listener = await _client(broker, channels=["market-data:BTCUSDT"])

        for _ in range(3):
            await broker.heartbeat()
            await _flush()

        assert listener.closed is None
        assert len(listener.of_type("heartbeat")) == 3
        assert broker.publish("market-data", {"bid_price": 1.0}, "BTCUSDT") == 1
        await _flush()
        assert listener.of_type("broadcast")[0]["channel"] == "market-data:BTCUSDT"

    async def test_stalled_connection_terminated(self, broker):
        """Test a connection whose transport takes no frames for a whole interval is closed."""
        stuck_conn, stuck = await _client(broker, transport=FakeTransport(stalled=True))
        healthy_conn, healthy = await _client(broker)

        await broker.heartbeat()
        await _flush()
        await broker.heartbeat()

        assert stuck.closed == (GOING_AWAY, "heartbeat timeout")
        assert broker.get(stuck_conn.connection_id) is None
        assert broker.get(healthy_conn.connection_id) is not None
        assert healthy.closed is None

    async def test_client_frame_counts_as_alive(self, broker):
        """Test an inbound frame keeps a connection alive even when writes are stuck."""
        conn, transport = await _client(broker, token=None, transport=FakeTransport(stalled=True))

        await broker.heartbeat()
        broker.handle_message(conn.connection_id, '{"type": "ping"}')
        await broker.heartbeat()

        assert transport.closed is None
        assert broker.get(conn.connection_id) is not None

    async def test_heartbeat_timer(self):
        broker = SubscriptionBroker(StaticVerifier(), BrokerSettings(heartbeat_interval=0.01))
        broker.start()
        _, listener = await _client(broker)
        _, stuck = await _client(broker, transport=FakeTransport(stalled=True))
        await asyncio.sleep(0.05)
        assert stuck.closed == (GOING_AWAY, "heartbeat timeout")
        assert listener.closed is None
        await broker.shutdown()

    async def test_shutdown_closes_everything(self):
        """Test shutdown closes every connection with 1001 and is idempotent."""
        broker = SubscriptionBroker(StaticVerifier())
        broker.start()
        transports = [(await _client(broker))[1] for _ in range(3)]

        await broker.shutdown()
        await broker.shutdown()

        assert all(t.closed == (GOING_AWAY, "server shutdown") for t in transports)
        assert broker.stats()["total_connections"] == 0

    async def test_connect_after_shutdown(self):
        broker = SubscriptionBroker(StaticVerifier())
        await broker.shutdown()
        transport = FakeTransport()
        with pytest.raises(RuntimeError):
            await broker.connect(transport)
        assert transport.closed == (GOING_AWAY, "server shutdown")
