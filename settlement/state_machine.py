"""
Settlement - State Machine.

============================================================
PURPOSE
============================================================
Manages settlement lifecycle with strict state transitions.

STATE MACHINE:

    PENDING ──────► CANCELLED
       │
       ▼
    PROCESSING ───► FAILED
       │
       ▼
    SETTLED

INVARIANTS:
- Terminal states are final
- SETTLED requires every instruction to be confirmed
- All transitions are logged and kept in history

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from core.clock import ClockProtocol
from core.exceptions import InvalidStateTransitionError

from .types import InstructionStatus, Settlement, SettlementStatus


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[SettlementStatus, Set[SettlementStatus]] = {
    SettlementStatus.PENDING: {
        SettlementStatus.PROCESSING,
        SettlementStatus.CANCELLED,
    },
    SettlementStatus.PROCESSING: {
        SettlementStatus.SETTLED,
        SettlementStatus.FAILED,
    },
    # Terminal states - no transitions out
    SettlementStatus.SETTLED: set(),
    SettlementStatus.FAILED: set(),
    SettlementStatus.CANCELLED: set(),
}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class SettlementTransitionEvent:
    """A recorded status change."""

    settlement_id: str
    """Settlement ID."""

    from_state: SettlementStatus
    """Previous state."""

    to_state: SettlementStatus
    """New state."""

    timestamp: datetime
    """When the transition occurred."""

    reason: str = ""
    """Reason for transition."""

    details: Dict[str, str] = field(default_factory=dict)
    """Additional details."""


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """Decides whether a transition is allowed, and why not."""

    @staticmethod
    def can_transition(
        from_state: SettlementStatus,
        to_state: SettlementStatus,
    ) -> Tuple[bool, str]:
        """
        Check the transition table.

        Returns:
            Tuple of (allowed, reason)
        """
        if to_state in VALID_TRANSITIONS.get(from_state, set()):
            return True, "Valid transition"

        if from_state.is_terminal():
            return False, f"{from_state.value} is terminal"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

    @staticmethod
    def validate_settlement_for_state(
        settlement: Settlement,
        target_state: SettlementStatus,
    ) -> Tuple[bool, str]:
        """Check settlement data required by the target state."""
        if target_state == SettlementStatus.SETTLED and not settlement.all_confirmed:
            pending = [
                i.reference for i in settlement.instructions
                if i.status != InstructionStatus.CONFIRMED
            ]
            return False, f"Unconfirmed instructions: {', '.join(pending) or 'none present'}"

        return True, "Settlement valid for state"


# ============================================================
# SETTLEMENT STATE MACHINE
# ============================================================

class SettlementStateMachine:
    """
    Applies guarded status transitions to settlements.

    One machine serves every settlement; history is kept per id.
    """

    def __init__(self, clock: ClockProtocol, max_history_per_settlement: int = 50):
        self._clock = clock
        self._history: Dict[str, List[SettlementTransitionEvent]] = {}
        self._max_history = max_history_per_settlement

    def can_transition(
        self,
        settlement: Settlement,
        target_state: SettlementStatus,
    ) -> Tuple[bool, str]:
        """Check transition rules and data guards."""
        allowed, reason = TransitionGuard.can_transition(settlement.status, target_state)
        if not allowed:
            return False, reason
        return TransitionGuard.validate_settlement_for_state(settlement, target_state)

    def transition(
        self,
        settlement: Settlement,
        target_state: SettlementStatus,
        reason: str = "",
        details: Optional[Dict[str, str]] = None,
    ) -> SettlementTransitionEvent:
        """
        Move a settlement to a new state.

        Raises:
            InvalidStateTransitionError: Transition not allowed
        """
        allowed, guard_reason = self.can_transition(settlement, target_state)
        if not allowed:
            raise InvalidStateTransitionError(
                settlement.settlement_id,
                settlement.status.value,
                target_state.value,
                reason=guard_reason,
            )

        event = SettlementTransitionEvent(
            settlement_id=settlement.settlement_id,
            from_state=settlement.status,
            to_state=target_state,
            timestamp=self._clock.now(),
            reason=reason,
            details=details or {},
        )

        settlement.status = target_state
        settlement.updated_at = event.timestamp
        if target_state == SettlementStatus.FAILED and reason:
            settlement.failure_reason = reason

        history = self._history.setdefault(settlement.settlement_id, [])
        history.append(event)
        if len(history) > self._max_history:
            del history[0]

        logger.info(
            f"Settlement {settlement.settlement_id}: "
            f"{event.from_state.value} -> {event.to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        return event

    def get_history(self, settlement_id: str) -> List[SettlementTransitionEvent]:
        """Transitions recorded for a settlement."""
        return list(self._history.get(settlement_id, []))
