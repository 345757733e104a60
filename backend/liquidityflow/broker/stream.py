"""WebSocket endpoint for live channel subscriptions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket

from .broker import SubscriptionBroker

logger = logging.getLogger(__name__)


def create_stream_router(broker: SubscriptionBroker) -> APIRouter:
    """Create the streaming router with a reference to the broker.

    This factory pattern lets us inject the broker without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.websocket("/ws")
    async def subscriber_socket(websocket: WebSocket) -> None:
        """Duplex subscriber connection.

        The client authenticates, then subscribes to channels such as
        ``market-data:BTCUSDT``; matching events arrive as ``broadcast``
        frames. A listening client need not send anything: delivered
        ``heartbeat`` frames and uvicorn's protocol-level ping keep it alive.
        """
        await websocket.accept()
        client_ip = websocket.client.host if websocket.client else "unknown"
        try:
            conn = await broker.connect(websocket)
        except RuntimeError:
            logger.info("Rejected subscriber %s: broker is shutting down", client_ip)
            return

        logger.info("Subscriber %s connected from %s", conn.connection_id, client_ip)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                broker.handle_message(conn.connection_id, raw)
        finally:
            await broker.disconnect(conn.connection_id)

    @router.get("/stats")
    async def stream_stats() -> dict:
        """Connection and subscription counts."""
        return broker.stats()

    return router
