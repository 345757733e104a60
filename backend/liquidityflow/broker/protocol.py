"""Subscriber wire protocol: JSON frames in both directions.

Client frames are a closed set discriminated on ``type``::

    {"type": "authenticate", "payload": {"token": "..."}}
    {"type": "subscribe", "payload": {"channels": ["market-data:BTCUSDT"]}}
    {"type": "unsubscribe", "payload": {"channels": ["market-data:BTCUSDT"]}}
    {"type": "ping"}

Server frames are built by the helpers at the bottom of this module.
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..errors import ProtocolError


class AuthenticatePayload(BaseModel):
    token: str = ""


class ChannelsPayload(BaseModel):
    channels: list[str]


class AuthenticateMessage(BaseModel):
    type: Literal["authenticate"]
    payload: AuthenticatePayload = Field(default_factory=AuthenticatePayload)


class SubscribeMessage(BaseModel):
    type: Literal["subscribe"]
    payload: ChannelsPayload


class UnsubscribeMessage(BaseModel):
    type: Literal["unsubscribe"]
    payload: ChannelsPayload


class PingMessage(BaseModel):
    type: Literal["ping"]


ClientMessage = Annotated[
    Union[AuthenticateMessage, SubscribeMessage, UnsubscribeMessage, PingMessage],
    Field(discriminator="type"),
]

_client_message = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes | dict[str, Any]) -> ClientMessage:
    """Decode one client frame. Raises ProtocolError for anything unrecognized."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ProtocolError("Invalid message format", str(e)) from None
    if not isinstance(raw, dict):
        raise ProtocolError("Invalid message format", "expected a JSON object")

    try:
        return _client_message.validate_python(raw)
    except ValidationError as e:
        kind = raw.get("type")
        if kind not in ("authenticate", "subscribe", "unsubscribe", "ping"):
            raise ProtocolError(f"Unknown message type: {kind}") from None
        raise ProtocolError(f"Invalid {kind} message", _summarize(e)) from None


def _summarize(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in item['loc'])}: {item['msg']}" for item in error.errors()
    )


# --- Server frames ---


def welcome(connection_id: str) -> dict[str, Any]:
    return {"type": "welcome", "connectionId": connection_id, "timestamp": time.time()}


def authenticated(user: dict[str, Any]) -> dict[str, Any]:
    return {"type": "authenticated", "user": user, "timestamp": time.time()}


def subscribed(channels: list[str]) -> dict[str, Any]:
    return {"type": "subscribed", "channels": channels, "timestamp": time.time()}


def unsubscribed(channels: list[str]) -> dict[str, Any]:
    return {"type": "unsubscribed", "channels": channels, "timestamp": time.time()}


def error(message: str, details: Any = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": "error", "message": message, "timestamp": time.time()}
    if details is not None:
        frame["details"] = details
    return frame


def broadcast(channel: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": "broadcast", "channel": channel, "data": data, "timestamp": time.time()}


def user_message(data: dict[str, Any]) -> dict[str, Any]:
    return {"type": "user-message", "data": data, "timestamp": time.time()}


def pong() -> dict[str, Any]:
    return {"type": "pong", "timestamp": time.time()}


def heartbeat() -> dict[str, Any]:
    return {"type": "heartbeat", "timestamp": time.time()}
