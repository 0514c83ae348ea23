"""
Settlement - Orchestrator.

============================================================
PURPOSE
============================================================
Drives each trade settlement through its lifecycle.

FLOW:
1. create_settlement: trade -> Settlement with two instructions
   (buy: pay quote / receive base, sell: pay base / receive quote)
2. process_settlement: pending -> processing, dispatch each
   instruction to the asset mover (pending -> sent)
3. Confirmation tracking per instruction as cancellable
   scheduled tasks:
   - crypto: delayed depth checks until the required depth
   - fiat: delayed bank status check(s)
4. All instructions confirmed -> settled, reconciliation runs

FAILURE SEMANTICS:
- Dispatch failure: instruction failed, settlement failed
- Polling failure or window exhausted: only the instruction
  fails; INSTRUCTION_FAILED is published (partial settlement
  risk) and the settlement stays processing

All mutations of one settlement are serialized by its lock.
Events are published after the lock is released.

============================================================
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from core.clock import ClockProtocol
from core.events import EventBus, EventType
from core.exceptions import (
    InvalidStateTransitionError,
    SettlementNotFoundError,
)
from core.scheduler import KeyedLocks, TaskScheduler
from core.validation import require_text

from .collaborators import AccountDirectory, AssetMover, ConfirmationSource
from .config import SettlementConfig
from .reconciliation import ReconciliationEngine
from .repository import SettlementRepository
from .state_machine import SettlementStateMachine, SettlementTransitionEvent
from .types import (
    BankDetails,
    BankTransferStatus,
    ConfirmationType,
    InstructionDirection,
    InstructionStatus,
    InstructionType,
    Settlement,
    SettlementConfirmation,
    SettlementInstruction,
    SettlementStatus,
    SettlementType,
    TradeCompletion,
    TradeSide,
)


logger = logging.getLogger(__name__)

PendingEvent = Tuple[EventType, Dict[str, Any]]


class SettlementOrchestrator:
    """
    Settlement state machine driver.
    """

    def __init__(
        self,
        repository: SettlementRepository,
        asset_mover: AssetMover,
        confirmation_source: ConfirmationSource,
        account_directory: AccountDirectory,
        event_bus: EventBus,
        clock: ClockProtocol,
        config: Optional[SettlementConfig] = None,
        reconciler: Optional[ReconciliationEngine] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            repository: Settlement storage
            asset_mover: Dispatches instructions
            confirmation_source: Block depth and bank status
            account_directory: Wallets and bank details
            event_bus: Event bus
            clock: Engine clock
            config: Settlement configuration
            reconciler: Invoked after every confirmation
        """
        self._repository = repository
        self._mover = asset_mover
        self._confirmations = confirmation_source
        self._directory = account_directory
        self._event_bus = event_bus
        self._clock = clock
        self._config = config or SettlementConfig()
        self._reconciler = reconciler

        self._state_machine = SettlementStateMachine(clock)
        self._locks = KeyedLocks()
        self._trackers = TaskScheduler("confirmation-trackers")

    @property
    def state_machine(self) -> SettlementStateMachine:
        return self._state_machine

    @property
    def pending_trackers(self) -> int:
        """Confirmation checks scheduled and not yet finished."""
        return self._trackers.pending_count

    # --------------------------------------------------------
    # CREATION
    # --------------------------------------------------------

    async def create_settlement(
        self,
        trade: Union[TradeCompletion, Mapping[str, Any]],
    ) -> Settlement:
        """
        Create a settlement for a completed trade.

        T+1 settles on the next business day. T+0 settles today and
        processing starts before this call returns.

        Raises:
            ValidationError: Invalid trade data
        """
        if not isinstance(trade, TradeCompletion):
            trade = TradeCompletion.from_payload(trade)

        settlement_type = trade.settlement_type or self._config.default_settlement_type
        now = self._clock.now()
        settlement_date = (
            self._clock.add_business_days(now, 1)
            if settlement_type == SettlementType.T1
            else now
        )

        settlement = Settlement(
            trade_id=trade.trade_id,
            client_id=trade.client_id,
            counterparty_id=trade.counterparty_id,
            symbol=trade.symbol,
            side=trade.side,
            quantity=trade.quantity,
            price=trade.price,
            notional=trade.notional,
            settlement_type=settlement_type,
            settlement_date=settlement_date,
            value_date=settlement_date,
            created_at=now,
            updated_at=now,
        )
        settlement.instructions = await self._build_instructions(settlement, trade)
        self._repository.save_settlement(settlement)

        logger.info(
            f"Settlement created: {settlement.settlement_id} trade={trade.trade_id} "
            f"{trade.side.value} {trade.quantity} {trade.symbol} @ {trade.price} ({settlement_type.value})"
        )
        await self._event_bus.publish(EventType.SETTLEMENT_CREATED, {"settlement": settlement})

        if settlement_type == SettlementType.T0:
            await self.process_settlement(settlement.settlement_id)
            return self._load(settlement.settlement_id)

        return settlement

    async def handle_trade_completion(self, payload: Mapping[str, Any]) -> Settlement:
        """Entry point for the trade completion feed."""
        settlement = await self.create_settlement(payload)
        logger.debug(f"Trade {settlement.trade_id} handed to settlement {settlement.settlement_id}")
        return settlement

    async def _build_instructions(
        self,
        settlement: Settlement,
        trade: TradeCompletion,
    ) -> List[SettlementInstruction]:
        base, quote = trade.base_asset, trade.quote_asset

        if trade.side == TradeSide.BUY:
            legs = [
                (quote, trade.notional, InstructionDirection.PAY, trade.counterparty_id),
                (base, trade.quantity, InstructionDirection.RECEIVE, trade.client_id),
            ]
        else:
            legs = [
                (base, trade.quantity, InstructionDirection.PAY, trade.counterparty_id),
                (quote, trade.notional, InstructionDirection.RECEIVE, trade.client_id),
            ]

        instructions = []
        for asset, amount, direction, owner_id in legs:
            tag = "PAY" if direction == InstructionDirection.PAY else "RCV"
            reference = f"{settlement.settlement_id}_{tag}_{asset}"

            if self._config.is_fiat(asset):
                instruction_type = InstructionType.FIAT
                bank = await self._directory.get_bank_details(owner_id)
                destination: Union[str, BankDetails] = BankDetails(
                    bank_name=bank.bank_name,
                    account_number=bank.account_number,
                    routing_number=bank.routing_number,
                    beneficiary_name=bank.beneficiary_name,
                    swift_code=bank.swift_code,
                    iban=bank.iban,
                    reference=reference,
                )
                required = 1
            else:
                instruction_type = InstructionType.CRYPTO
                destination = await self._directory.get_wallet_address(owner_id, asset)
                required = self._config.confirmation.required_for(asset)

            instructions.append(SettlementInstruction(
                instruction_type=instruction_type,
                asset=asset,
                amount=amount,
                direction=direction,
                destination=destination,
                reference=reference,
                owner_id=owner_id,
                required_confirmations=required,
            ))

        return instructions

    # --------------------------------------------------------
    # PROCESSING
    # --------------------------------------------------------

    async def process_settlement(self, settlement_id: str) -> bool:
        """
        Start processing a pending settlement.

        Returns:
            True if every instruction was dispatched, False if a
            dispatch failed (the settlement is then failed)

        Raises:
            SettlementNotFoundError: Unknown settlement
            InvalidStateTransitionError: Settlement is not pending
        """
        events: List[PendingEvent] = []

        async with self._locks.hold(settlement_id):
            settlement = self._load(settlement_id)
            self._state_machine.transition(settlement, SettlementStatus.PROCESSING, "Processing started")
            self._repository.save_settlement(settlement)

            failure = None
            for instruction in settlement.instructions:
                failure = await self._dispatch(settlement, instruction, events)
                if failure:
                    break

            if failure:
                self._state_machine.transition(settlement, SettlementStatus.FAILED, failure)
                events.append((EventType.SETTLEMENT_FAILED, {"settlement": settlement, "reason": failure}))

            self._repository.save_settlement(settlement)

        if not failure:
            for instruction in settlement.instructions:
                self._schedule_tracking(settlement_id, instruction)

        await self._publish_all(events)
        return failure is None

    async def _dispatch(
        self,
        settlement: Settlement,
        instruction: SettlementInstruction,
        events: List[PendingEvent],
    ) -> Optional[str]:
        instruction.status = InstructionStatus.SENT
        try:
            if instruction.instruction_type == InstructionType.CRYPTO:
                instruction.tx_ref = await self._mover.send_crypto(instruction)
            else:
                instruction.tx_ref = await self._mover.send_fiat(instruction)
        except Exception as e:
            reason = f"Dispatch of {instruction.reference} failed: {e}"
            instruction.status = InstructionStatus.FAILED
            instruction.failure_reason = reason
            logger.error(reason)
            events.append((
                EventType.INSTRUCTION_FAILED,
                {"settlement_id": settlement.settlement_id, "instruction": instruction, "reason": reason},
            ))
            return reason

        logger.info(f"Instruction {instruction.reference} sent: {instruction.tx_ref}")
        events.append((
            EventType.INSTRUCTION_SENT,
            {"settlement_id": settlement.settlement_id, "instruction": instruction},
        ))
        return None

    # --------------------------------------------------------
    # CONFIRMATION TRACKING
    # --------------------------------------------------------

    def _schedule_tracking(self, settlement_id: str, instruction: SettlementInstruction) -> None:
        confirmation = self._config.confirmation
        instruction_id = instruction.instruction_id

        if instruction.instruction_type == InstructionType.CRYPTO:
            self._trackers.schedule(
                confirmation.initial_delay_seconds,
                lambda: self._check_crypto(settlement_id, instruction_id, 1),
                name=f"crypto:{instruction.reference}",
            )
        else:
            self._trackers.schedule(
                confirmation.fiat_delay_seconds,
                lambda: self._check_fiat(settlement_id, instruction_id, 1),
                name=f"fiat:{instruction.reference}",
            )

    async def _check_crypto(self, settlement_id: str, instruction_id: str, poll: int) -> None:
        confirmation = self._config.confirmation
        events: List[PendingEvent] = []
        confirmed = False
        reschedule = False

        async with self._locks.hold(settlement_id):
            settlement, instruction = self._load_tracked(settlement_id, instruction_id)
            if instruction is None:
                return

            try:
                depth = await self._confirmations.get_confirmation_depth(instruction.tx_ref)
            except Exception as e:
                self._fail_instruction(settlement, instruction, f"Confirmation check failed: {e}", events)
            else:
                instruction.confirmations = depth
                if depth >= instruction.required_confirmations:
                    self._confirm_instruction(
                        settlement,
                        instruction,
                        ConfirmationType.BLOCKCHAIN,
                        {"confirmations": depth, "polls": poll},
                        events,
                    )
                    confirmed = True
                elif poll >= confirmation.max_polls:
                    self._fail_instruction(
                        settlement,
                        instruction,
                        f"Only {depth}/{instruction.required_confirmations} confirmations after {poll} checks",
                        events,
                    )
                else:
                    reschedule = True

            self._repository.save_settlement(settlement)

        if reschedule:
            self._trackers.schedule(
                confirmation.poll_interval_seconds,
                lambda: self._check_crypto(settlement_id, instruction_id, poll + 1),
                name=f"crypto:{instruction.reference}",
            )

        await self._publish_all(events)
        if confirmed:
            await self._reconcile(settlement_id)

    async def _check_fiat(self, settlement_id: str, instruction_id: str, check: int) -> None:
        confirmation = self._config.confirmation
        events: List[PendingEvent] = []
        confirmed = False
        reschedule = False

        async with self._locks.hold(settlement_id):
            settlement, instruction = self._load_tracked(settlement_id, instruction_id)
            if instruction is None:
                return

            try:
                status = await self._confirmations.get_bank_transfer_status(instruction.tx_ref)
            except Exception as e:
                self._fail_instruction(settlement, instruction, f"Bank status check failed: {e}", events)
            else:
                if status == BankTransferStatus.CONFIRMED:
                    instruction.confirmations = 1
                    self._confirm_instruction(
                        settlement,
                        instruction,
                        self._fiat_confirmation_type(instruction),
                        {"reference": instruction.reference, "bank_confirmation": instruction.tx_ref},
                        events,
                    )
                    confirmed = True
                elif status == BankTransferStatus.FAILED:
                    self._fail_instruction(settlement, instruction, "Bank reported transfer failed", events)
                elif check >= confirmation.fiat_max_checks:
                    self._fail_instruction(
                        settlement,
                        instruction,
                        f"Transfer still pending after {check} checks",
                        events,
                    )
                else:
                    reschedule = True

            self._repository.save_settlement(settlement)

        if reschedule:
            self._trackers.schedule(
                confirmation.fiat_delay_seconds,
                lambda: self._check_fiat(settlement_id, instruction_id, check + 1),
                name=f"fiat:{instruction.reference}",
            )

        await self._publish_all(events)
        if confirmed:
            await self._reconcile(settlement_id)

    def _load_tracked(
        self,
        settlement_id: str,
        instruction_id: str,
    ) -> Tuple[Optional[Settlement], Optional[SettlementInstruction]]:
        settlement = self._repository.get_settlement(settlement_id)
        if settlement is None or settlement.status != SettlementStatus.PROCESSING:
            return settlement, None

        instruction = settlement.get_instruction(instruction_id)
        if instruction is None or instruction.status != InstructionStatus.SENT:
            return settlement, None

        return settlement, instruction

    @staticmethod
    def _fiat_confirmation_type(instruction: SettlementInstruction) -> ConfirmationType:
        bank = instruction.destination
        if isinstance(bank, BankDetails):
            if bank.swift_code:
                return ConfirmationType.SWIFT
            if bank.iban:
                return ConfirmationType.SEPA
        return ConfirmationType.ACH

    def _confirm_instruction(
        self,
        settlement: Settlement,
        instruction: SettlementInstruction,
        confirmation_type: ConfirmationType,
        data: Dict[str, Any],
        events: List[PendingEvent],
    ) -> None:
        instruction.status = InstructionStatus.CONFIRMED
        record = SettlementConfirmation(
            settlement_id=settlement.settlement_id,
            instruction_id=instruction.instruction_id,
            confirmation_type=confirmation_type,
            transaction_id=instruction.tx_ref or "",
            amount=instruction.amount,
            asset=instruction.asset,
            timestamp=self._clock.now(),
            confirmation_data=data,
        )
        settlement.confirmations.append(record)
        settlement.updated_at = record.timestamp

        logger.info(f"Instruction {instruction.reference} confirmed ({confirmation_type.value})")
        events.append((
            EventType.INSTRUCTION_CONFIRMED,
            {"settlement_id": settlement.settlement_id, "instruction": instruction, "confirmation": record},
        ))

        if settlement.all_confirmed:
            self._state_machine.transition(settlement, SettlementStatus.SETTLED, "All instructions confirmed")
            events.append((EventType.SETTLEMENT_SETTLED, {"settlement": settlement}))

    def _fail_instruction(
        self,
        settlement: Settlement,
        instruction: SettlementInstruction,
        reason: str,
        events: List[PendingEvent],
    ) -> None:
        instruction.status = InstructionStatus.FAILED
        instruction.failure_reason = reason
        settlement.updated_at = self._clock.now()

        logger.error(
            f"Instruction {instruction.reference} failed, settlement "
            f"{settlement.settlement_id} needs manual intervention: {reason}"
        )
        events.append((
            EventType.INSTRUCTION_FAILED,
            {"settlement_id": settlement.settlement_id, "instruction": instruction, "reason": reason},
        ))

    async def _reconcile(self, settlement_id: str) -> None:
        if self._reconciler is None:
            return
        settlement = self._repository.get_settlement(settlement_id)
        if settlement is not None:
            await self._reconciler.reconcile(settlement)

    async def wait_for_confirmations(self) -> None:
        """Wait until every scheduled confirmation check has finished."""
        await self._trackers.join()

    async def resume_tracking(self) -> int:
        """
        Schedule confirmation checks for instructions still in flight.

        After a restart against persistent storage, processing
        settlements keep their sent instructions but lose the trackers.
        Poll counts start again from one.

        Returns:
            Number of trackers scheduled
        """
        scheduled = 0
        for settlement in self._repository.list_settlements(status=SettlementStatus.PROCESSING):
            for instruction in settlement.instructions:
                if instruction.status == InstructionStatus.SENT:
                    self._schedule_tracking(settlement.settlement_id, instruction)
                    scheduled += 1

        if scheduled:
            logger.info(f"Resumed {scheduled} confirmation trackers")
        return scheduled

    # --------------------------------------------------------
    # CANCELLATION & QUERIES
    # --------------------------------------------------------

    async def cancel_settlement(self, settlement_id: str, reason: str = "Cancelled") -> Settlement:
        """
        Cancel a pending settlement.

        Raises:
            SettlementNotFoundError: Unknown settlement
            InvalidStateTransitionError: Settlement is not pending
        """
        async with self._locks.hold(settlement_id):
            settlement = self._load(settlement_id)
            self._state_machine.transition(settlement, SettlementStatus.CANCELLED, reason)
            settlement.failure_reason = reason
            self._repository.save_settlement(settlement)

        await self._event_bus.publish(
            EventType.SETTLEMENT_CANCELLED,
            {"settlement": settlement, "reason": reason},
        )
        return settlement

    async def process_due_settlements(self) -> int:
        """
        Process pending settlements whose settlement date has arrived.

        Returns:
            Number of settlements processed successfully
        """
        now = self._clock.now()
        processed = 0
        for settlement in self._repository.list_settlements(status=SettlementStatus.PENDING):
            if settlement.settlement_date > now:
                continue
            try:
                if await self.process_settlement(settlement.settlement_id):
                    processed += 1
            except InvalidStateTransitionError as e:
                logger.debug(f"Skipping {settlement.settlement_id}: {e.message}")
        return processed

    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        """Get a settlement, None if unknown."""
        return self._repository.get_settlement(settlement_id)

    def get_settlements_for_client(self, client_id: str) -> List[Settlement]:
        """All settlements for a client, oldest first."""
        return self._repository.list_settlements(client_id=require_text(client_id, "client_id"))

    def get_transition_history(self, settlement_id: str) -> List[SettlementTransitionEvent]:
        """Status transitions recorded for a settlement."""
        return self._state_machine.get_history(settlement_id)

    async def stop(self) -> None:
        """Cancel every in-flight confirmation check."""
        pending = self._trackers.pending_count
        await self._trackers.cancel_all()
        logger.info(f"Settlement orchestrator stopped ({pending} trackers cancelled)")

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _load(self, settlement_id: str) -> Settlement:
        settlement = self._repository.get_settlement(settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(settlement_id)
        return settlement

    async def _publish_all(self, events: List[PendingEvent]) -> None:
        for event_type, payload in events:
            await self._event_bus.publish(event_type, payload)
