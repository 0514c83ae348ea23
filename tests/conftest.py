"""
Shared fixtures.
"""

from datetime import datetime, timezone

import pytest

from core.clock import MockClock
from core.events import EventBus


# Wednesday, so T+1 lands on Thursday
FIXED_TIME = datetime(2024, 3, 13, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> MockClock:
    return MockClock(FIXED_TIME)


@pytest.fixture
def event_bus(clock) -> EventBus:
    return EventBus(clock)
