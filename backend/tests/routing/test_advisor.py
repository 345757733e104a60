"""Tests for RoutingAdvisor."""

import pytest

from liquidityflow.errors import DataUnavailable
from liquidityflow.market.hub import MarketDataHub
from liquidityflow.market.models import Quote
from liquidityflow.routing.advisor import RECOMMENDATIONS_TOPIC, RoutingAdvisor
from liquidityflow.routing.models import Condition, Preferences, Side, Strategy


@pytest.fixture
def hub(bus, clock):
    return MarketDataHub(bus, clock=clock)


@pytest.fixture
def advisor(hub, bus, clock):
    return RoutingAdvisor(hub, bus=bus, clock=clock)


def _add(hub, clock, venue_id, spread, last=100.0, depth=1000.0, volume_24h=20_000_000.0, age=0.0, bid_depth=None):
    """Quote centred on ``last`` with ``spread`` percent between bid and ask."""
    half = last * spread / 200
    return hub.ingest(
        Quote(
            symbol="BTCUSDT",
            venue_id=venue_id,
            bid_price=last - half,
            ask_price=last + half,
            bid_volume=depth if bid_depth is None else bid_depth,
            ask_volume=depth,
            last_price=last,
            volume_24h=volume_24h,
            timestamp=clock() - age,
        )
    )


@pytest.fixture
def three_venues(hub, clock):
    """Venues at 0.1%, 0.3% and 0.5% spread, 100k notional depth each."""
    _add(hub, clock, "alpha", 0.1)
    _add(hub, clock, "bravo", 0.3)
    _add(hub, clock, "charlie", 0.5)


class TestSlippagePrediction:
    """Per-venue slippage model."""

    def test_half_spread_plus_impact(self, advisor, hub, three_venues):
        """Test slippage = spread/2 + (size / depth) * impact factor."""
        predictions = advisor.predict_slippage(hub.get_latest("BTCUSDT"), Side.BUY, 10_000)
        assert predictions["alpha"].slippage == pytest.approx(0.06)
        assert predictions["bravo"].slippage == pytest.approx(0.16)
        assert predictions["charlie"].slippage == pytest.approx(0.26)
        assert predictions["alpha"].liquidity_ratio == pytest.approx(0.1)

    def test_floor(self, advisor, hub, clock):
        """Test a zero-spread venue still predicts the minimum slippage."""
        _add(hub, clock, "alpha", 0.0, depth=1e9)
        predictions = advisor.predict_slippage(hub.get_latest("BTCUSDT"), Side.BUY, 1.0)
        assert predictions["alpha"].slippage == 0.01

    def test_side_uses_relevant_depth(self, advisor, hub, clock):
        """Test sells are sized against bid depth."""
        _add(hub, clock, "alpha", 0.1, depth=1000.0, bid_depth=100.0)
        quotes = hub.get_latest("BTCUSDT")
        assert advisor.predict_slippage(quotes, Side.SELL, 10_000)["alpha"].liquidity_ratio == pytest.approx(1.0)

    def test_venue_without_depth_skipped(self, advisor, hub, clock):
        _add(hub, clock, "alpha", 0.1)
        _add(hub, clock, "bravo", 0.1, depth=0.0)
        assert set(advisor.predict_slippage(hub.get_latest("BTCUSDT"), Side.BUY, 1.0)) == {"alpha"}


class TestRecommend:
    """End-to-end recommendations."""

    def test_single_venue_picks_tightest_spread(self, advisor, three_venues):
        """Test the whole order goes to the 0.1% venue."""
        rec = advisor.recommend("BTCUSDT", "buy", 10_000)

        assert rec.strategy is Strategy.SINGLE_VENUE
        assert [(a.venue_id, a.fraction) for a in rec.allocation] == [("alpha", 1.0)]
        assert rec.expected_slippage == pytest.approx(0.06)
        assert rec.slippage_range == pytest.approx((0.06, 0.26))
        assert rec.savings.slippage_reduction == pytest.approx(0.2)
        assert rec.savings.notional == pytest.approx(20.0)
        assert rec.allocation[0].expected_price == pytest.approx(100.0 * 1.0006)

    def test_fractions_sum_to_one(self, advisor, three_venues):
        rec = advisor.recommend("BTCUSDT", "sell", 10_000)
        assert sum(a.fraction for a in rec.allocation) == pytest.approx(1.0)
        assert all(0 < a.fraction <= 1 for a in rec.allocation)

    def test_multi_venue_candidate_split(self, advisor, hub, three_venues):
        """Test the multi-venue candidate gives 60% to the best venue and splits the rest."""
        quotes = hub.get_latest("BTCUSDT")
        predictions = advisor.predict_slippage(quotes, Side.BUY, 10_000)
        candidates = advisor.build_candidates(quotes, predictions, Side.BUY, Preferences())

        multi = next(c for c in candidates if c.strategy is Strategy.MULTI_VENUE)
        assert [a.venue_id for a in multi.allocation] == ["alpha", "bravo", "charlie"]
        assert [a.fraction for a in multi.allocation] == pytest.approx([0.6, 0.2, 0.2])
        assert multi.expected_slippage == pytest.approx(0.12)
        assert multi.score < candidates[0].score

    def test_max_venues_preference(self, advisor, hub, three_venues):
        quotes = hub.get_latest("BTCUSDT")
        predictions = advisor.predict_slippage(quotes, Side.BUY, 10_000)
        candidates = advisor.build_candidates(quotes, predictions, Side.BUY, Preferences(max_venues=2))
        multi = candidates[1]
        assert [a.fraction for a in multi.allocation] == pytest.approx([0.6, 0.4])

    def test_single_venue_has_no_multi_candidate(self, advisor, hub, clock):
        _add(hub, clock, "alpha", 0.1)
        rec = advisor.recommend("BTCUSDT", "buy", 1_000)
        assert rec.strategy is Strategy.SINGLE_VENUE
        assert [a.strategy for a in rec.alternatives] == [Strategy.TIME_WEIGHTED]

    def test_multi_venue_wins_on_similar_spreads(self, advisor, hub, clock):
        """Test near-identical venues favour splitting the order."""
        _add(hub, clock, "alpha", 0.10)
        _add(hub, clock, "bravo", 0.12)
        rec = advisor.recommend("BTCUSDT", "buy", 10_000)
        assert rec.strategy is Strategy.MULTI_VENUE
        assert [(a.venue_id, a.fraction) for a in rec.allocation] == [
            ("alpha", pytest.approx(0.6)),
            ("bravo", pytest.approx(0.4)),
        ]

    def test_optimal_conditions(self, advisor, three_venues):
        rec = advisor.recommend("BTCUSDT", "buy", 10_000)
        assert rec.timing.immediate
        assert rec.timing.reason == "Optimal market conditions detected"
        assert rec.market_condition.condition is Condition.NORMAL
        assert rec.data_quality == 100.0
        assert rec.confidence == 100

    def test_alternatives(self, advisor, three_venues):
        """Test the unchosen candidate and the time-weighted option are offered."""
        rec = advisor.recommend("BTCUSDT", "buy", 10_000)
        assert [a.name for a in rec.alternatives] == ["Aggressive Multi-Venue", "Time-Weighted Average"]
        twap = rec.alternatives[1]
        assert twap.expected_slippage < rec.expected_slippage

    def test_low_liquidity_goes_time_weighted(self, advisor, hub, clock):
        """Test thin markets defer and switch to time-weighted execution."""
        _add(hub, clock, "alpha", 0.1, volume_24h=2_000_000.0)
        _add(hub, clock, "bravo", 0.3, volume_24h=2_000_000.0)
        rec = advisor.recommend("BTCUSDT", "buy", 10_000)

        assert rec.strategy is Strategy.TIME_WEIGHTED
        assert not rec.timing.immediate
        assert rec.timing.delay_seconds == 180.0
        assert "15 minutes" in rec.reasoning
        assert all(a.strategy is not Strategy.TIME_WEIGHTED for a in rec.alternatives)

    def test_high_volatility_delays(self, advisor, hub, clock):
        """Test a wide dispersion of venue prices delays execution."""
        _add(hub, clock, "alpha", 0.1, last=100.0, age=1.0)
        _add(hub, clock, "bravo", 0.1, last=110.0)
        rec = advisor.recommend("BTCUSDT", "buy", 10_000)
        assert rec.market_condition.volatility == pytest.approx(10.0)
        assert not rec.timing.immediate
        assert rec.timing.delay_seconds == 300.0
        assert rec.confidence < 100

    def test_illiquid_market(self, advisor, hub, clock):
        _add(hub, clock, "alpha", 0.8)
        _add(hub, clock, "bravo", 1.0)
        rec = advisor.recommend("BTCUSDT", "buy", 1_000)
        assert rec.market_condition.condition is Condition.ILLIQUID
        assert rec.market_condition.risk_level == "high"
        assert "Wide spreads detected" in rec.market_condition.risk_factors

    def test_max_slippage_preference_flags_risk(self, advisor, three_venues):
        rec = advisor.recommend("BTCUSDT", "buy", 10_000, preferences=Preferences(max_slippage=0.01))
        assert any("exceeds limit" in factor for factor in rec.market_condition.risk_factors)

    def test_oversized_order_reduced(self, advisor, three_venues):
        """Test orders above 10% of visible depth are scaled down."""
        rec = advisor.recommend("BTCUSDT", "buy", 50_000)
        assert rec.order_sizing.risk == "high"
        assert rec.order_sizing.recommended_size == pytest.approx(40_000)

    def test_publish(self, advisor, three_venues, bus_events):
        """Test publish=True emits on the symbol's recommendation channel."""
        bus_events.clear()
        rec = advisor.recommend("btcusdt", "buy", 10_000, publish=True)
        assert [e.channel for e in bus_events] == [f"{RECOMMENDATIONS_TOPIC}:BTCUSDT"]
        assert bus_events[0].payload == rec.to_dict()

    def test_no_publish_by_default(self, advisor, three_venues, bus_events):
        bus_events.clear()
        advisor.recommend("BTCUSDT", "buy", 10_000)
        assert bus_events == []

    def test_to_dict_shape(self, advisor, three_venues):
        result = advisor.recommend("BTCUSDT", "buy", 10_000).to_dict()
        assert result["strategy"] == "single_venue"
        assert result["slippage_prediction"]["range"]["min"] == pytest.approx(0.06)
        assert len(result["slippage_prediction"]["by_venue"]) == 3
        assert result["execution_plan"]["immediate"] is True
        assert result["metadata"]["data_quality"] == 100.0


class TestRecommendErrors:
    def test_no_quotes(self, advisor):
        with pytest.raises(DataUnavailable):
            advisor.recommend("BTCUSDT", "buy", 1_000)

    def test_only_stale_quotes(self, advisor, hub, clock):
        _add(hub, clock, "alpha", 0.1, age=120.0)
        with pytest.raises(DataUnavailable):
            advisor.recommend("BTCUSDT", "buy", 1_000)

    def test_no_depth_on_side(self, advisor, hub, clock):
        _add(hub, clock, "alpha", 0.1, depth=0.0, bid_depth=10.0)
        with pytest.raises(DataUnavailable):
            advisor.recommend("BTCUSDT", "buy", 1_000)

    @pytest.mark.parametrize("size", [0, -5])
    def test_non_positive_size(self, advisor, three_venues, size):
        with pytest.raises(ValueError):
            advisor.recommend("BTCUSDT", "buy", size)

    def test_unknown_side(self, advisor, three_venues):
        with pytest.raises(ValueError):
            advisor.recommend("BTCUSDT", "hold", 1_000)


class TestOptimizeOrder:
    def test_within_liquidity(self, advisor, three_venues):
        sizing = advisor.optimize_order("BTCUSDT", "buy", 10_000)
        assert sizing.risk == "normal"
        assert sizing.recommended_size == 10_000
        assert sizing.liquidity_utilization == pytest.approx(10_000 / 300_000)

    def test_no_data(self, advisor):
        with pytest.raises(DataUnavailable):
            advisor.optimize_order("BTCUSDT", "buy", 10_000)


class TestScoring:
    """Static scoring helpers."""

    def test_confidence_clamped(self):
        assert RoutingAdvisor.confidence(100.0, [0.1, 0.1], 0.0) == 100
        assert RoutingAdvisor.confidence(10.0, [0.1, 5.0], 30.0) == 50

    def test_volatility_needs_two_prices(self, clock):
        quote = Quote("BTCUSDT", "alpha", 99.0, 101.0, 1.0, 1.0, 100.0, timestamp=clock())
        assert RoutingAdvisor.volatility([quote]) == 0.0

    def test_data_quality_penalties(self, advisor, hub, clock):
        """Test stale data, wide spreads and anomalies each cost points."""
        _add(hub, clock, "alpha", 2.0, age=400.0)
        quotes = hub.get_latest("BTCUSDT")
        assert advisor.assess_data_quality(quotes) == 100 - 20 - 15
