"""In-process event bus between the hub, advisor and subscriber broker.

Publishing is synchronous: handlers run inline and must not block. Anything
that needs I/O (a websocket send, a store write) is queued by the handler and
performed by its own task, so a publish never stalls quote ingestion.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BusEvent:
    """One published event. ``channel`` is ``topic`` or ``topic:selector``."""

    topic: str
    payload: dict[str, Any]
    selector: str | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def channel(self) -> str:
        return f"{self.topic}:{self.selector}" if self.selector else self.topic

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "selector": self.selector,
            "channel": self.channel,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


Handler = Callable[[BusEvent], None]


class EventBus:
    """Routes BusEvents to handlers registered per topic or for every topic.

    Keeps a short rolling history for diagnostics.
    """

    def __init__(self, history_limit: int = 200) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._history: deque[BusEvent] = deque(maxlen=history_limit)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers.setdefault(topic, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._global_handlers:
            self._global_handlers.remove(handler)
        for handlers in self._handlers.values():
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, topic: str, payload: dict[str, Any], selector: str | None = None) -> BusEvent:
        """Deliver an event to every matching handler. Handler errors are contained."""
        event = BusEvent(topic=topic, payload=payload, selector=selector)
        self._history.append(event)

        for handler in [*self._global_handlers, *self._handlers.get(topic, [])]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.channel)
        return event

    def history(self, limit: int = 50, topic: str | None = None) -> list[BusEvent]:
        events = [e for e in self._history if topic is None or e.topic == topic]
        return events[-limit:]
