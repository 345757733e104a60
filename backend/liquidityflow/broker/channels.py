"""Subscription channels: ``topic`` or ``topic:selector``."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidChannelError


class Topic(str, Enum):
    MARKET_DATA = "market-data"
    TRADE_UPDATES = "trade-updates"
    AI_RECOMMENDATIONS = "ai-recommendations"
    SYSTEM_NOTIFICATIONS = "system-notifications"
    USER_NOTIFICATIONS = "user-notifications"


# Topics that may be narrowed with a selector
SELECTABLE_TOPICS = frozenset({Topic.MARKET_DATA, Topic.TRADE_UPDATES, Topic.AI_RECOMMENDATIONS})

# Selectors on these topics are symbols and are matched case-insensitively
SYMBOL_TOPICS = frozenset({Topic.MARKET_DATA, Topic.AI_RECOMMENDATIONS})


@dataclass(frozen=True, slots=True)
class Channel:
    topic: Topic
    selector: str | None = None

    @classmethod
    def parse(cls, raw: str) -> Channel:
        """Parse ``market-data`` / ``market-data:BTCUSDT``.

        Raises InvalidChannelError for unknown topics, empty selectors, or a
        selector on a topic that does not take one.
        """
        if not isinstance(raw, str):
            raise InvalidChannelError(str(raw))
        name, sep, selector = raw.strip().partition(":")
        try:
            topic = Topic(name)
        except ValueError:
            raise InvalidChannelError(raw) from None
        if not sep:
            return cls(topic)
        if not selector or topic not in SELECTABLE_TOPICS:
            raise InvalidChannelError(raw)
        return cls.of(topic, selector)

    @classmethod
    def of(cls, topic: Topic | str, selector: str | None = None) -> Channel:
        topic = Topic(topic)
        if selector is not None and topic in SYMBOL_TOPICS:
            selector = selector.upper()
        return cls(topic, selector or None)

    @property
    def bare(self) -> Channel:
        return Channel(self.topic)

    def __str__(self) -> str:
        if self.selector is None:
            return self.topic.value
        return f"{self.topic.value}:{self.selector}"
