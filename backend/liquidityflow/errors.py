"""Error taxonomy shared by the feed, routing and broker layers."""

from __future__ import annotations


class LiquidityFlowError(Exception):
    """Base class for all LiquidityFlow errors."""


class VenueConnectionError(LiquidityFlowError):
    """Transient failure talking to a venue (stream or REST)."""

    def __init__(self, venue_id: str, message: str) -> None:
        super().__init__(f"{venue_id}: {message}")
        self.venue_id = venue_id


class QuoteValidationError(LiquidityFlowError):
    """Malformed or invariant-violating quote. Dropped, never retried."""


class DataUnavailable(LiquidityFlowError):
    """No fresh quotes are cached for the requested symbol."""

    def __init__(self, symbol: str, freshness_seconds: float | None = None) -> None:
        if freshness_seconds is None:
            message = f"No market data available for {symbol}"
        else:
            message = f"No market data for {symbol} in the last {freshness_seconds:g}s"
        super().__init__(message)
        self.symbol = symbol
        self.freshness_seconds = freshness_seconds


class BroadcastError(LiquidityFlowError):
    """A frame could not be delivered to one subscriber connection."""

    def __init__(self, connection_id: str, message: str) -> None:
        super().__init__(f"connection {connection_id}: {message}")
        self.connection_id = connection_id


class AuthenticationError(LiquidityFlowError):
    """Missing or invalid identity token."""


class InvalidChannelError(LiquidityFlowError):
    """Channel string is not one of the recognized topics."""

    def __init__(self, channel: str) -> None:
        super().__init__(f"Invalid channel: {channel}")
        self.channel = channel


class ProtocolError(LiquidityFlowError):
    """Client frame could not be decoded into a known message."""

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details
