"""Routing advice: slippage prediction and venue allocation."""

from .advisor import RECOMMENDATIONS_TOPIC, RoutingAdvisor
from .models import Allocation, Preferences, Recommendation, Side, Strategy, Timing

__all__ = [
    "RoutingAdvisor",
    "RECOMMENDATIONS_TOPIC",
    "Recommendation",
    "Allocation",
    "Timing",
    "Preferences",
    "Side",
    "Strategy",
]
