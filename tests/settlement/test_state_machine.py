"""
Tests for the settlement state machine.
"""

import pytest

from core.exceptions import InvalidStateTransitionError
from settlement.state_machine import SettlementStateMachine, TransitionGuard
from settlement.types import InstructionStatus, SettlementStatus
from tests.settlement.factories import confirmed_settlement


@pytest.fixture
def state_machine(clock):
    return SettlementStateMachine(clock)


@pytest.fixture
def pending_settlement(clock):
    settlement = confirmed_settlement(clock.now())
    settlement.status = SettlementStatus.PENDING
    settlement.instructions[0].status = InstructionStatus.PENDING
    return settlement


class TestTransitionGuard:

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (SettlementStatus.PENDING, SettlementStatus.PROCESSING),
            (SettlementStatus.PENDING, SettlementStatus.CANCELLED),
            (SettlementStatus.PROCESSING, SettlementStatus.SETTLED),
            (SettlementStatus.PROCESSING, SettlementStatus.FAILED),
        ],
    )
    def test_allowed(self, from_state, to_state):
        allowed, _ = TransitionGuard.can_transition(from_state, to_state)
        assert allowed

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (SettlementStatus.PENDING, SettlementStatus.SETTLED),
            (SettlementStatus.PROCESSING, SettlementStatus.CANCELLED),
            (SettlementStatus.SETTLED, SettlementStatus.FAILED),
            (SettlementStatus.CANCELLED, SettlementStatus.PROCESSING),
        ],
    )
    def test_rejected(self, from_state, to_state):
        allowed, _ = TransitionGuard.can_transition(from_state, to_state)
        assert not allowed

    def test_terminal_reason(self):
        _, reason = TransitionGuard.can_transition(SettlementStatus.FAILED, SettlementStatus.SETTLED)
        assert "terminal" in reason


class TestSettlementStateMachine:

    def test_settled_requires_confirmed_instructions(self, state_machine, pending_settlement):
        state_machine.transition(pending_settlement, SettlementStatus.PROCESSING)
        pending_settlement.instructions[0].status = InstructionStatus.SENT

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            state_machine.transition(pending_settlement, SettlementStatus.SETTLED)

        assert "Unconfirmed instructions" in exc_info.value.message
        assert pending_settlement.status == SettlementStatus.PROCESSING

        pending_settlement.instructions[0].status = InstructionStatus.CONFIRMED
        state_machine.transition(pending_settlement, SettlementStatus.SETTLED)
        assert pending_settlement.status == SettlementStatus.SETTLED

    def test_failure_reason_recorded(self, state_machine, pending_settlement, clock):
        state_machine.transition(pending_settlement, SettlementStatus.PROCESSING)
        clock.advance(seconds=30)

        event = state_machine.transition(pending_settlement, SettlementStatus.FAILED, "Dispatch failed")

        assert pending_settlement.failure_reason == "Dispatch failed"
        assert pending_settlement.updated_at == clock.now()
        assert event.timestamp == clock.now()

    def test_history_is_bounded(self, clock, pending_settlement):
        state_machine = SettlementStateMachine(clock, max_history_per_settlement=1)
        state_machine.transition(pending_settlement, SettlementStatus.PROCESSING)
        state_machine.transition(pending_settlement, SettlementStatus.FAILED)

        history = state_machine.get_history(pending_settlement.id)
        assert len(history) == 1
        assert history[0].to_state == SettlementStatus.FAILED
        assert state_machine.get_history("unknown") == []
