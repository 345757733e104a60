"""LiquidityFlow: multi-venue market data, routing advice and live fan-out."""

__version__ = "0.1.0"
