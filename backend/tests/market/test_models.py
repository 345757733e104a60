"""Tests for market data models."""

import pytest

from liquidityflow.market.models import (
    AggregatedSnapshot,
    OrderBookSnapshot,
    Quote,
    VenueHealth,
    VenueHealthUpdate,
    VenueStatus,
)


def _quote(**overrides) -> Quote:
    fields = dict(
        symbol="BTCUSDT",
        venue_id="binance",
        bid_price=100.0,
        ask_price=100.2,
        bid_volume=5.0,
        ask_volume=4.0,
        last_price=100.1,
        volume_24h=1_000_000.0,
        timestamp=1234567890.0,
    )
    fields.update(overrides)
    return Quote(**fields)


class TestQuote:
    """Unit tests for the Quote model."""

    def test_derived_fields(self):
        """Test spread, mid and spread percent are derived from bid/ask."""
        quote = _quote()
        assert quote.spread == pytest.approx(0.2)
        assert quote.mid_price == pytest.approx(100.1)
        assert quote.spread_percent == pytest.approx(0.2 / 100.1 * 100)

    def test_spread_percent_zero_mid(self):
        """Test spread percent is 0 when both sides are 0."""
        quote = _quote(bid_price=0.0, ask_price=0.0, last_price=0.0)
        assert quote.spread_percent == 0.0

    def test_key(self):
        """Test the cache key is (symbol, venue)."""
        assert _quote().key == ("BTCUSDT", "binance")

    def test_freshness(self):
        """Test freshness against an explicit clock."""
        quote = _quote(timestamp=1000.0)
        assert quote.age(now=1030.0) == 30.0
        assert quote.is_fresh(60.0, now=1030.0)
        assert quote.is_fresh(60.0, now=1060.0)
        assert not quote.is_fresh(60.0, now=1060.5)

    def test_with_anomalies(self):
        """Test that anomaly tagging returns a new quote."""
        quote = _quote()
        tagged = quote.with_anomalies(["wide_spread"])
        assert tagged.anomalies == ("wide_spread",)
        assert quote.anomalies == ()

    def test_immutability(self):
        """Test that Quote is immutable."""
        quote = _quote()
        with pytest.raises(AttributeError):
            quote.bid_price = 1.0  # type: ignore[misc]

    def test_to_dict(self):
        """Test conversion to dictionary for JSON serialization."""
        result = _quote(anomalies=("zero_volume",)).to_dict()
        assert result["symbol"] == "BTCUSDT"
        assert result["venue_id"] == "binance"
        assert result["spread"] == pytest.approx(0.2)
        assert result["mid_price"] == pytest.approx(100.1)
        assert result["anomalies"] == ["zero_volume"]
        assert result["timestamp"] == 1234567890.0


class TestOrderBookSnapshot:
    """Unit tests for OrderBookSnapshot."""

    def test_from_levels_sorts_and_truncates(self):
        """Test bids descend, asks ascend, and depth is bounded."""
        book = OrderBookSnapshot.from_levels(
            "BTCUSDT",
            "binance",
            bids=[(99.0, 1.0), (100.0, 2.0), (98.0, 3.0)],
            asks=[(102.0, 1.0), (101.0, 2.0), (103.0, 0.0)],
            max_depth=2,
        )
        assert [lv.price for lv in book.bids] == [100.0, 99.0]
        assert [lv.price for lv in book.asks] == [101.0, 102.0]

    def test_depth(self):
        """Test notional depth per side."""
        book = OrderBookSnapshot.from_levels("X", "v", bids=[(10.0, 2.0)], asks=[(11.0, 1.0)])
        assert book.depth() == {"bids": 20.0, "asks": 11.0, "total": 31.0}

    def test_estimate_slippage_walks_book(self):
        """Test a buy that consumes two ask levels."""
        book = OrderBookSnapshot.from_levels(
            "X", "v", bids=[(99.0, 1.0)], asks=[(100.0, 1.0), (102.0, 1.0)]
        )
        result = book.estimate_slippage(2.0, "buy")
        assert result["avg_price"] == pytest.approx(101.0)
        assert result["slippage"] == pytest.approx(1.0)
        assert result["total_cost"] == pytest.approx(202.0)

    def test_estimate_slippage_insufficient_depth(self):
        """Test that an order larger than the book returns None."""
        book = OrderBookSnapshot.from_levels("X", "v", bids=[(99.0, 1.0)], asks=[(100.0, 1.0)])
        assert book.estimate_slippage(5.0, "sell") is None


class TestVenueHealth:
    """Unit tests for VenueHealth updates."""

    def test_apply_only_set_fields(self):
        """Test that None fields in an update leave the record unchanged."""
        health = VenueHealth(venue_id="binance", connected=True, consecutive_failures=0)
        updated = health.apply(VenueHealthUpdate(consecutive_failures=2))
        assert updated.connected is True
        assert updated.consecutive_failures == 2
        assert updated.status == VenueStatus.ACTIVE

    def test_apply_empty_update_returns_same(self):
        """Test an empty update is a no-op."""
        health = VenueHealth(venue_id="binance")
        assert health.apply(VenueHealthUpdate()) is health

    def test_to_dict(self):
        """Test status serializes as its string value."""
        health = VenueHealth(venue_id="coinbase", status=VenueStatus.DEGRADED)
        assert health.to_dict()["status"] == "degraded"


class TestAggregatedSnapshot:
    def test_to_dict(self):
        snap = AggregatedSnapshot("BTCUSDT", 100.0, 99.9, 100.1, 0.2, 5e6, 2, 1000.0)
        assert snap.to_dict()["venue_count"] == 2
        assert snap.to_dict()["as_of"] == 1000.0
