"""Value types produced by the routing advisor."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Strategy(str, Enum):
    SINGLE_VENUE = "single_venue"
    MULTI_VENUE = "multi_venue"
    TIME_WEIGHTED = "time_weighted"


class Condition(str, Enum):
    NORMAL = "normal"
    ILLIQUID = "illiquid"
    LOW_VOLUME = "low_volume"


@dataclass(frozen=True, slots=True)
class Preferences:
    """Caller-supplied routing constraints."""

    max_venues: int | None = None
    max_slippage: float | None = None  # percent


@dataclass(frozen=True, slots=True)
class SlippagePrediction:
    """Predicted slippage for the whole order on one venue, in percent."""

    venue_id: str
    slippage: float
    spread_component: float
    impact_component: float
    liquidity_ratio: float
    spread_percent: float

    def to_dict(self) -> dict:
        return {
            "venue_id": self.venue_id,
            "slippage": self.slippage,
            "spread_component": self.spread_component,
            "impact_component": self.impact_component,
            "liquidity_ratio": self.liquidity_ratio,
            "spread_percent": self.spread_percent,
        }


@dataclass(frozen=True, slots=True)
class Allocation:
    venue_id: str
    fraction: float
    expected_price: float
    expected_slippage: float

    def to_dict(self) -> dict:
        return {
            "venue_id": self.venue_id,
            "fraction": self.fraction,
            "expected_price": self.expected_price,
            "expected_slippage": self.expected_slippage,
        }


@dataclass(frozen=True, slots=True)
class Candidate:
    """One routing strategy the advisor scored."""

    strategy: Strategy
    allocation: tuple[Allocation, ...]
    expected_slippage: float
    expected_savings: float
    estimated_risk: float
    reasoning: str
    steps: tuple[str, ...] = ()
    risk_mitigation: tuple[str, ...] = ()

    @property
    def score(self) -> float:
        return self.expected_savings - self.estimated_risk


@dataclass(frozen=True, slots=True)
class Timing:
    immediate: bool
    delay_seconds: float
    reason: str
    time_weighted: bool = False

    def to_dict(self) -> dict:
        return {
            "immediate": self.immediate,
            "delay_seconds": self.delay_seconds,
            "reason": self.reason,
            "time_weighted": self.time_weighted,
        }


@dataclass(frozen=True, slots=True)
class MarketCondition:
    condition: Condition
    risk_level: str
    risk_factors: tuple[str, ...]
    average_spread_percent: float
    average_volume_24h: float
    volatility: float  # percent
    liquidity: float  # 0..1

    def to_dict(self) -> dict:
        return {
            "condition": self.condition.value,
            "risk_level": self.risk_level,
            "risk_factors": list(self.risk_factors),
            "average_spread_percent": self.average_spread_percent,
            "average_volume_24h": self.average_volume_24h,
            "volatility": self.volatility,
            "liquidity": self.liquidity,
        }


@dataclass(frozen=True, slots=True)
class OrderSizing:
    requested_size: float
    recommended_size: float
    liquidity_utilization: float
    reasoning: str
    risk: str

    def to_dict(self) -> dict:
        return {
            "requested_size": self.requested_size,
            "recommended_size": self.recommended_size,
            "liquidity_utilization": self.liquidity_utilization,
            "reasoning": self.reasoning,
            "risk": self.risk,
        }


@dataclass(frozen=True, slots=True)
class Savings:
    """Improvement over routing the whole order to the worst venue."""

    slippage_reduction: float  # percentage points
    notional: float  # quote currency
    percentage: float

    def to_dict(self) -> dict:
        return {
            "slippage_reduction": self.slippage_reduction,
            "notional": self.notional,
            "percentage": self.percentage,
        }


@dataclass(frozen=True, slots=True)
class Alternative:
    name: str
    strategy: Strategy
    expected_slippage: float
    description: str
    tradeoffs: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "strategy": self.strategy.value,
            "expected_slippage": self.expected_slippage,
            "description": self.description,
            "tradeoffs": self.tradeoffs,
        }


@dataclass(frozen=True, slots=True)
class Recommendation:
    """Advisory output for one trade request. Never persisted."""

    symbol: str
    side: Side
    order_size: float
    confidence: int
    strategy: Strategy
    reasoning: str
    allocation: tuple[Allocation, ...]
    timing: Timing
    expected_slippage: float
    slippage_range: tuple[float, float]
    savings: Savings
    market_condition: MarketCondition
    order_sizing: OrderSizing
    predictions: tuple[SlippagePrediction, ...]
    alternatives: tuple[Alternative, ...]
    steps: tuple[str, ...] = ()
    risk_mitigation: tuple[str, ...] = ()
    data_quality: float = 100.0
    generated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        """Serialize for JSON transmission."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "order_size": self.order_size,
            "confidence": self.confidence,
            "strategy": self.strategy.value,
            "reasoning": self.reasoning,
            "allocation": [a.to_dict() for a in self.allocation],
            "timing": self.timing.to_dict(),
            "slippage_prediction": {
                "expected": self.expected_slippage,
                "range": {"min": self.slippage_range[0], "max": self.slippage_range[1]},
                "by_venue": [p.to_dict() for p in self.predictions],
            },
            "estimated_savings": self.savings.to_dict(),
            "risk_assessment": {
                "level": self.market_condition.risk_level,
                "factors": list(self.market_condition.risk_factors),
                "mitigation": list(self.risk_mitigation),
            },
            "execution_plan": {
                "immediate": self.timing.immediate,
                "delay_seconds": self.timing.delay_seconds,
                "steps": list(self.steps),
            },
            "market_condition": self.market_condition.to_dict(),
            "order_sizing": self.order_sizing.to_dict(),
            "alternatives": [a.to_dict() for a in self.alternatives],
            "metadata": {
                "generated_at": self.generated_at,
                "data_quality": self.data_quality,
            },
        }
