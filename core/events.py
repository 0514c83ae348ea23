"""
Core Module - Event Bus.

============================================================
RESPONSIBILITY
============================================================
Explicit publish/subscribe channel for engine events.

Services never fan out through implicit emitters. They publish
typed events here and consumers register listeners:

- RiskMonitor listens for EXPOSURE_ADDED to re-check a client
- TelegramNotifier forwards alert-worthy events
- Tests subscribe to observe side effects

============================================================
DELIVERY MODEL
============================================================
- publish() awaits every matching listener in registration order,
  so a caller observes side effects of its own operation
- Sync and async listeners are both supported
- A failing listener is logged and never breaks the publisher
- A bounded history is kept for inspection

============================================================
"""

import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Union

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)


# ============================================================
# EVENT TYPES
# ============================================================

class EventType(str, Enum):
    """All events published by the engine."""

    # Credit risk
    EXPOSURE_ADDED = "exposure_added"
    CREDIT_PROFILE_UPDATED = "credit_profile_updated"
    RISK_ALERT = "risk_alert"
    ALERT_ACKNOWLEDGED = "alert_acknowledged"

    # Settlement
    SETTLEMENT_CREATED = "settlement_created"
    INSTRUCTION_SENT = "instruction_sent"
    INSTRUCTION_CONFIRMED = "instruction_confirmed"
    INSTRUCTION_FAILED = "instruction_failed"
    SETTLEMENT_SETTLED = "settlement_settled"
    SETTLEMENT_FAILED = "settlement_failed"
    SETTLEMENT_CANCELLED = "settlement_cancelled"

    # Reconciliation
    RECONCILIATION_DISCREPANCY = "reconciliation_discrepancy"
    RECONCILIATION_ITEM_UPDATED = "reconciliation_item_updated"
    RECONCILIATION_SWEEP_COMPLETE = "reconciliation_sweep_complete"


@dataclass
class EngineEvent:
    """A published event."""

    event_type: EventType
    """Type of event."""

    timestamp: datetime
    """When the event was published (engine clock)."""

    payload: Dict[str, Any] = field(default_factory=dict)
    """Event data (entities are passed as-is)."""


Listener = Callable[[EngineEvent], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    listener: Listener
    event_types: Optional[Set[EventType]]

    def matches(self, event_type: EventType) -> bool:
        return self.event_types is None or event_type in self.event_types


# ============================================================
# EVENT BUS
# ============================================================

class EventBus:
    """
    In-process event bus.

    Listeners are awaited inline; slow listeners slow the publisher.
    Anything that talks to the network should do so with its own
    timeouts (see TelegramNotifier).
    """

    def __init__(self, clock: Optional[ClockProtocol] = None, max_history: int = 1000):
        """
        Initialize event bus.

        Args:
            clock: Stamps published events (system clock if None)
            max_history: Number of recent events kept for inspection
        """
        self._clock = clock or SystemClock()
        self._subscriptions: List[_Subscription] = []
        self._history: Deque[EngineEvent] = deque(maxlen=max_history)

    def subscribe(
        self,
        listener: Listener,
        event_types: Optional[List[EventType]] = None,
    ) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Sync or async callable receiving EngineEvent
            event_types: Only deliver these types (None = all)

        Returns:
            Callable that removes the subscription
        """
        subscription = _Subscription(
            listener=listener,
            event_types=set(event_types) if event_types else None,
        )
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def publish(
        self,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> EngineEvent:
        """
        Publish an event to all matching listeners.

        Args:
            event_type: Type of event
            payload: Event data

        Returns:
            The published EngineEvent
        """
        event = EngineEvent(
            event_type=event_type,
            timestamp=self._clock.now(),
            payload=payload or {},
        )
        self._history.append(event)

        for subscription in list(self._subscriptions):
            if not subscription.matches(event_type):
                continue
            try:
                result = subscription.listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event listener error for {event_type.value}: {e}")

        logger.debug(f"Published {event_type.value}")
        return event

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> List[EngineEvent]:
        """Get recent events, optionally filtered by type."""
        events = [
            e for e in self._history
            if event_type is None or e.event_type == event_type
        ]
        return events[-limit:]

    @property
    def listener_count(self) -> int:
        """Number of registered listeners."""
        return len(self._subscriptions)
