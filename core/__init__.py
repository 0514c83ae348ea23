"""
Core Module Package.

Shared infrastructure used by the credit risk and settlement
subsystems.

Components:
- clock: Time abstraction (system and mock clocks)
- exceptions: Exception hierarchy with error kinds
- events: Typed in-process event bus
- scheduler: Periodic tasks, delayed tasks, keyed locks
- database: SQLAlchemy engine and sessions
- notifications: Telegram notifier
- logging_setup: Root logger configuration
"""

from .clock import ClockProtocol, SystemClock, MockClock
from .events import EngineEvent, EventBus, EventType
from .exceptions import (
    AlertNotFoundError,
    ClientNotFoundError,
    CollaboratorError,
    ConfigurationError,
    EngineError,
    InvalidStateTransitionError,
    NotFoundError,
    ReconciliationItemNotFoundError,
    SettlementNotFoundError,
    Severity,
    ValidationError,
)
from .scheduler import KeyedLocks, PeriodicTask, TaskScheduler


__all__ = [
    "AlertNotFoundError",
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "EngineEvent",
    "EventBus",
    "EventType",
    "ClientNotFoundError",
    "CollaboratorError",
    "ConfigurationError",
    "EngineError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "ReconciliationItemNotFoundError",
    "SettlementNotFoundError",
    "Severity",
    "ValidationError",
    "KeyedLocks",
    "PeriodicTask",
    "TaskScheduler",
]
