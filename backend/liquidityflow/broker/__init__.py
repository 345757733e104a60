"""Subscriber fan-out for LiquidityFlow.

Public API:
    SubscriptionBroker   - Authenticated channel subscriptions and publish
    Channel, Topic       - ``topic`` / ``topic:selector`` channel names
    JWTTokenVerifier     - Verifies externally issued identity tokens
    create_stream_router - FastAPI router factory for the WebSocket endpoint
"""

from .auth import Identity, JWTTokenVerifier, TokenVerifier
from .broker import SubscriberConnection, SubscriptionBroker
from .channels import Channel, Topic
from .stream import create_stream_router

__all__ = [
    "SubscriptionBroker",
    "SubscriberConnection",
    "Channel",
    "Topic",
    "Identity",
    "TokenVerifier",
    "JWTTokenVerifier",
    "create_stream_router",
]
