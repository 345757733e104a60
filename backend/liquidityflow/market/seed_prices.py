"""Seed prices and per-symbol parameters for the simulated venue."""

# Realistic starting mid prices for the default symbols
SEED_PRICES: dict[str, float] = {
    "BTCUSDT": 65000.00,
    "ETHUSDT": 3200.00,
    "SOLUSDT": 150.00,
    "XRPUSDT": 0.55,
    "AAPL": 190.00,
    "MSFT": 420.00,
    "NVDA": 800.00,
}

# Per-symbol GBM parameters
# sigma: annualized volatility (higher = more price movement)
# mu: annualized drift / expected return
# spread_bps: quoted spread around the mid, in basis points
SYMBOL_PARAMS: dict[str, dict[str, float]] = {
    "BTCUSDT": {"sigma": 0.55, "mu": 0.05, "spread_bps": 1.0},
    "ETHUSDT": {"sigma": 0.70, "mu": 0.05, "spread_bps": 1.5},
    "SOLUSDT": {"sigma": 0.95, "mu": 0.05, "spread_bps": 4.0},  # High volatility
    "XRPUSDT": {"sigma": 0.85, "mu": 0.03, "spread_bps": 6.0},
    "AAPL": {"sigma": 0.22, "mu": 0.05, "spread_bps": 1.0},
    "MSFT": {"sigma": 0.20, "mu": 0.05, "spread_bps": 1.0},
    "NVDA": {"sigma": 0.40, "mu": 0.08, "spread_bps": 2.0},
}

# Default parameters for symbols not in the list above
DEFAULT_PARAMS: dict[str, float] = {"sigma": 0.60, "mu": 0.05, "spread_bps": 5.0}

# Correlation groups for the simulator's Cholesky decomposition
CORRELATION_GROUPS: dict[str, set[str]] = {
    "crypto": {"BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT"},
    "equities": {"AAPL", "MSFT", "NVDA"},
}

INTRA_CRYPTO_CORR = 0.7  # Crypto majors move together
INTRA_EQUITY_CORR = 0.6
CROSS_GROUP_CORR = 0.2
DEFAULT_CORR = 0.3  # Unknown symbols

# Typical 24h notional volume used to seed the rolling volume
SEED_VOLUME_24H: dict[str, float] = {
    "BTCUSDT": 1_500_000_000.0,
    "ETHUSDT": 800_000_000.0,
    "SOLUSDT": 250_000_000.0,
    "XRPUSDT": 90_000_000.0,
}
DEFAULT_VOLUME_24H = 5_000_000.0
