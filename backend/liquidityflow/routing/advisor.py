"""RoutingAdvisor: slippage prediction and venue allocation across fresh quotes.

The advisor only reads the hub's current quotes; everything else is a pure
computation over that snapshot. It scores two routing candidates:

  - single venue: the whole order on the tightest-spread venue
  - multi venue: the top venues by spread, 60% to the best and the rest
    split evenly

and picks the one with the best ``expected_savings - estimated_risk``.
Slippage figures are percentages of the mid price; ``order_size`` is notional
in the quote currency.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace

import numpy as np

from ..config import AdvisorSettings
from ..errors import DataUnavailable
from ..events import EventBus
from ..market.hub import MarketDataHub
from ..market.models import Quote
from .models import (
    Allocation,
    Alternative,
    Candidate,
    Condition,
    MarketCondition,
    OrderSizing,
    Preferences,
    Recommendation,
    Savings,
    Side,
    SlippagePrediction,
    Strategy,
    Timing,
)

logger = logging.getLogger(__name__)

RECOMMENDATIONS_TOPIC = "ai-recommendations"


class RoutingAdvisor:
    """Builds a Recommendation for one (symbol, side, order_size) request."""

    def __init__(
        self,
        hub: MarketDataHub,
        settings: AdvisorSettings | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._hub = hub
        self._settings = settings or AdvisorSettings()
        self._bus = bus
        self._clock = clock

    def recommend(
        self,
        symbol: str,
        side: Side | str,
        order_size: float,
        preferences: Preferences | None = None,
        publish: bool = False,
        freshness_seconds: float | None = None,
    ) -> Recommendation:
        """Analyze a trade against the current fresh quotes.

        Raises DataUnavailable when no venue has a fresh quote (or none has
        depth on the relevant side), ValueError for a non-positive size.
        """
        side = Side(side)
        symbol = symbol.upper()
        if order_size <= 0:
            raise ValueError(f"order_size must be positive, got {order_size}")
        preferences = preferences or Preferences()

        quotes = self._hub.fresh_quotes(symbol, freshness_seconds)
        if not quotes:
            raise DataUnavailable(symbol, freshness_seconds)

        predictions = self.predict_slippage(quotes, side, order_size)
        if not predictions:
            logger.warning("No venue has %s-side depth for %s", side.value, symbol)
            raise DataUnavailable(symbol, freshness_seconds)
        routable = [q for q in quotes if q.venue_id in predictions]

        condition = self.classify_market(quotes)
        candidates = self.build_candidates(routable, predictions, side, preferences)
        best = max(candidates, key=lambda c: c.score)

        timing = self.timing_for(condition)
        strategy = best.strategy
        reasoning = best.reasoning
        if timing.time_weighted:
            strategy = Strategy.TIME_WEIGHTED
            reasoning = f"{best.reasoning}; spread over {self._settings.twap_window_seconds / 60:.0f} minutes"

        slippages = [p.slippage for p in predictions.values()]
        if preferences.max_slippage is not None and best.expected_slippage > preferences.max_slippage:
            condition = replace(
                condition,
                risk_factors=condition.risk_factors
                + (
                    f"Expected slippage {best.expected_slippage:.4f}% exceeds limit {preferences.max_slippage:.4f}%",
                ),
            )

        data_quality = self.assess_data_quality(quotes)
        recommendation = Recommendation(
            symbol=symbol,
            side=side,
            order_size=order_size,
            confidence=self.confidence(data_quality, slippages, condition.volatility),
            strategy=strategy,
            reasoning=reasoning,
            allocation=best.allocation,
            timing=timing,
            expected_slippage=best.expected_slippage,
            slippage_range=(min(slippages), max(slippages)),
            savings=self._savings(best, slippages, order_size),
            market_condition=condition,
            order_sizing=self.size_order(routable, side, order_size),
            predictions=tuple(predictions.values()),
            alternatives=self._alternatives(candidates, best, strategy, routable, predictions),
            steps=best.steps,
            risk_mitigation=best.risk_mitigation,
            data_quality=data_quality,
            generated_at=self._clock(),
        )
        logger.info(
            "Recommendation %s %s %.2f: %s across %d venue(s), confidence %d",
            side.value,
            symbol,
            order_size,
            strategy.value,
            len(recommendation.allocation),
            recommendation.confidence,
        )

        if publish and self._bus is not None:
            self._bus.publish(RECOMMENDATIONS_TOPIC, recommendation.to_dict(), selector=symbol)
        return recommendation

    def optimize_order(
        self, symbol: str, side: Side | str, order_size: float, freshness_seconds: float | None = None
    ) -> OrderSizing:
        """Size check alone, without building a full recommendation."""
        side = Side(side)
        if order_size <= 0:
            raise ValueError(f"order_size must be positive, got {order_size}")
        quotes = self._hub.fresh_quotes(symbol, freshness_seconds)
        if not quotes:
            raise DataUnavailable(symbol.upper(), freshness_seconds)
        return self.size_order(quotes, side, order_size)

    # --- Steps ---

    def predict_slippage(self, quotes: list[Quote], side: Side, order_size: float) -> dict[str, SlippagePrediction]:
        """Half spread plus size impact per venue. Venues without depth are skipped."""
        predictions: dict[str, SlippagePrediction] = {}
        for quote in quotes:
            relevant_volume = quote.ask_volume if side is Side.BUY else quote.bid_volume
            depth_notional = relevant_volume * quote.last_price
            if depth_notional <= 0:
                continue
            liquidity_ratio = order_size / depth_notional
            half_spread = quote.spread_percent / 2
            impact = liquidity_ratio * self._settings.impact_factor
            predictions[quote.venue_id] = SlippagePrediction(
                venue_id=quote.venue_id,
                slippage=max(self._settings.min_slippage, half_spread + impact),
                spread_component=half_spread,
                impact_component=impact,
                liquidity_ratio=liquidity_ratio,
                spread_percent=quote.spread_percent,
            )
        return predictions

    def build_candidates(
        self,
        quotes: list[Quote],
        predictions: dict[str, SlippagePrediction],
        side: Side,
        preferences: Preferences,
    ) -> list[Candidate]:
        s = self._settings
        ranked = sorted(quotes, key=lambda q: (q.spread_percent, q.venue_id))
        worst = max(p.slippage for p in predictions.values())

        best = ranked[0]
        best_slippage = predictions[best.venue_id].slippage
        candidates = [
            Candidate(
                strategy=Strategy.SINGLE_VENUE,
                allocation=(self._allocation(best, 1.0, best_slippage, side),),
                expected_slippage=best_slippage,
                expected_savings=worst - best_slippage,
                estimated_risk=s.single_venue_risk,
                reasoning=f"Best spread on {best.venue_id}",
                steps=("Execute full order on a single venue",),
                risk_mitigation=("Monitor execution closely",),
            )
        ]

        max_venues = s.max_venues
        if preferences.max_venues is not None:
            max_venues = min(max_venues, preferences.max_venues)
        top = ranked[:max_venues]
        if len(top) > 1:
            rest = (1.0 - s.best_venue_fraction) / (len(top) - 1)
            allocation = tuple(
                self._allocation(
                    quote,
                    s.best_venue_fraction if i == 0 else rest,
                    predictions[quote.venue_id].slippage,
                    side,
                )
                for i, quote in enumerate(top)
            )
            blended = sum(a.fraction * a.expected_slippage for a in allocation)
            candidates.append(
                Candidate(
                    strategy=Strategy.MULTI_VENUE,
                    allocation=allocation,
                    expected_slippage=blended,
                    expected_savings=worst - blended,
                    estimated_risk=s.multi_venue_risk,
                    reasoning=f"Split order across {len(top)} venues to minimize slippage",
                    steps=("Split order across venues", "Execute simultaneously"),
                    risk_mitigation=("Diversify execution risk", "Monitor all venues"),
                )
            )
        return candidates

    def classify_market(self, quotes: list[Quote]) -> MarketCondition:
        s = self._settings
        avg_spread = float(np.mean([q.spread_percent for q in quotes]))
        avg_volume = float(np.mean([q.volume_24h for q in quotes]))

        condition = Condition.NORMAL
        risk_level = "medium"
        factors = []
        if avg_spread > s.illiquid_spread_percent:
            condition = Condition.ILLIQUID
            risk_level = "high"
            factors.append("Wide spreads detected")
        if avg_volume < s.low_volume_floor:
            if condition is Condition.NORMAL:
                condition = Condition.LOW_VOLUME
            risk_level = "high"
            factors.append("Low trading volume")

        return MarketCondition(
            condition=condition,
            risk_level=risk_level,
            risk_factors=tuple(factors),
            average_spread_percent=avg_spread,
            average_volume_24h=avg_volume,
            volatility=self.volatility(quotes),
            liquidity=min(1.0, avg_volume / s.liquidity_reference_volume),
        )

    def timing_for(self, condition: MarketCondition) -> Timing:
        s = self._settings
        if condition.volatility > s.high_volatility_percent:
            return Timing(False, s.high_volatility_delay, "High volatility detected, waiting for stabilization")
        if condition.liquidity < s.low_liquidity_score:
            return Timing(
                False, s.low_liquidity_delay, "Low liquidity, recommend time-weighted execution", time_weighted=True
            )
        if condition.volatility < s.calm_volatility_percent and condition.liquidity > s.high_liquidity_score:
            return Timing(True, 0.0, "Optimal market conditions detected")
        return Timing(True, 0.0, "Normal market conditions")

    def size_order(self, quotes: list[Quote], side: Side, order_size: float) -> OrderSizing:
        s = self._settings
        total_liquidity = sum(
            (q.ask_volume if side is Side.BUY else q.bid_volume) * q.last_price for q in quotes
        )
        utilization = order_size / total_liquidity if total_liquidity > 0 else float("inf")
        if utilization > s.max_liquidity_utilization:
            return OrderSizing(
                requested_size=order_size,
                recommended_size=order_size * s.size_reduction,
                liquidity_utilization=utilization,
                reasoning="Reduced size to minimize market impact",
                risk="high",
            )
        return OrderSizing(
            requested_size=order_size,
            recommended_size=order_size,
            liquidity_utilization=utilization,
            reasoning="Order size is optimal",
            risk="normal",
        )

    def assess_data_quality(self, quotes: list[Quote]) -> float:
        """Score 0-100 from freshness, spread sanity and anomaly count."""
        if not quotes:
            return 0.0
        score = 100.0
        newest = max(q.timestamp for q in quotes)
        if self._clock() - newest > self._settings.stale_data_seconds:
            score -= 20
        if np.mean([q.spread_percent for q in quotes]) > 1.0:
            score -= 15
        anomalies = sum(len(q.anomalies) for q in quotes)
        score -= min(30, anomalies * 5)
        return max(0.0, score)

    @staticmethod
    def volatility(quotes: list[Quote]) -> float:
        """Mean absolute change between consecutive venue last prices, in percent."""
        prices = np.array([q.last_price for q in sorted(quotes, key=lambda q: q.timestamp)], dtype=float)
        prices = prices[prices > 0]
        if len(prices) < 2:
            return 0.0
        return float(np.mean(np.abs(np.diff(prices) / prices[:-1])) * 100)

    @staticmethod
    def confidence(data_quality: float, slippages: list[float], volatility: float) -> int:
        value = 100.0
        value *= data_quality / 100
        value *= max(0.5, 1 - float(np.var(slippages)) / 10)
        value *= max(0.6, 1 - volatility / 20)
        return max(50, min(100, round(value)))

    # --- Internal ---

    @staticmethod
    def _allocation(quote: Quote, fraction: float, slippage: float, side: Side) -> Allocation:
        sign = 1 if side is Side.BUY else -1
        return Allocation(
            venue_id=quote.venue_id,
            fraction=fraction,
            expected_price=quote.mid_price * (1 + sign * slippage / 100),
            expected_slippage=slippage,
        )

    @staticmethod
    def _savings(best: Candidate, slippages: list[float], order_size: float) -> Savings:
        worst = max(slippages)
        reduction = worst - best.expected_slippage
        return Savings(
            slippage_reduction=reduction,
            notional=reduction / 100 * order_size,
            percentage=reduction / worst * 100 if worst > 0 else 0.0,
        )

    def _alternatives(
        self,
        candidates: list[Candidate],
        best: Candidate,
        strategy: Strategy,
        quotes: list[Quote],
        predictions: dict[str, SlippagePrediction],
    ) -> tuple[Alternative, ...]:
        alternatives = []
        for candidate in candidates:
            if candidate is best and strategy is candidate.strategy:
                continue
            if candidate.strategy is Strategy.SINGLE_VENUE:
                alternatives.append(
                    Alternative(
                        name="Conservative Single Venue",
                        strategy=Strategy.SINGLE_VENUE,
                        expected_slippage=candidate.expected_slippage,
                        description=f"Execute the full order on {candidate.allocation[0].venue_id}",
                        tradeoffs="Lower complexity, potentially higher slippage",
                    )
                )
            else:
                alternatives.append(
                    Alternative(
                        name="Aggressive Multi-Venue",
                        strategy=Strategy.MULTI_VENUE,
                        expected_slippage=candidate.expected_slippage,
                        description=f"Split across {len(candidate.allocation)} venues",
                        tradeoffs="Maximum slippage reduction, higher complexity",
                    )
                )

        if strategy is not Strategy.TIME_WEIGHTED:
            window = self._settings.twap_window_seconds
            slices = max(1.0, window / 60)
            tightest = min(quotes, key=lambda q: (q.spread_percent, q.venue_id))
            prediction = predictions[tightest.venue_id]
            alternatives.append(
                Alternative(
                    name="Time-Weighted Average",
                    strategy=Strategy.TIME_WEIGHTED,
                    expected_slippage=max(
                        self._settings.min_slippage,
                        prediction.spread_component + prediction.impact_component / slices,
                    ),
                    description=f"Split order over {window / 60:.0f}-minute window",
                    tradeoffs="Reduced market impact, longer execution time",
                )
            )
        return tuple(alternatives)
