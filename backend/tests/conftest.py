"""Pytest configuration and fixtures."""

import pytest

from liquidityflow.events import BusEvent, EventBus


@pytest.fixture
def event_loop_policy():
    """Use the default event loop policy for all async tests."""
    import asyncio

    return asyncio.DefaultEventLoopPolicy()


class FakeClock:
    """Manually advanced clock for throttle and freshness tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def bus_events(bus):
    """Every event published on ``bus``, in order."""
    events: list[BusEvent] = []
    bus.subscribe_all(events.append)
    return events
