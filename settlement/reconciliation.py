"""
Settlement - Reconciliation Engine.

============================================================
PURPOSE
============================================================
Compares expected vs actual movement for confirmed
instructions and tracks discrepancies until resolved.

RULES:
- Item created only when |actual - expected| > tolerance
  (a difference of exactly the tolerance matches)
- A reference is matched or flagged at most once
- Matched references outside the sweep lookback are forgotten
- Movement query failures are logged and skipped
- Discrepancies never raise

ITEM STATUS:

    UNMATCHED ──► INVESTIGATING ──► RESOLVED
        │                              ▲
        └──────────────────────────────┘

============================================================
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Set

from core.clock import ClockProtocol
from core.events import EventBus, EventType
from core.exceptions import InvalidStateTransitionError, ValidationError
from core.scheduler import KeyedLocks, PeriodicTask

from .collaborators import MovementQuery
from .config import ReconciliationConfig
from .repository import SettlementRepository
from .types import (
    InstructionStatus,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationRunResult,
    ReconciliationStatus,
    Settlement,
)


logger = logging.getLogger(__name__)


ITEM_TRANSITIONS: Dict[ReconciliationStatus, Set[ReconciliationStatus]] = {
    ReconciliationStatus.UNMATCHED: {
        ReconciliationStatus.INVESTIGATING,
        ReconciliationStatus.RESOLVED,
    },
    ReconciliationStatus.INVESTIGATING: {
        ReconciliationStatus.RESOLVED,
    },
    ReconciliationStatus.MATCHED: set(),
    ReconciliationStatus.RESOLVED: set(),
}

UPDATABLE_FIELDS = {"status", "investigation_notes"}

OPEN_STATUSES = {ReconciliationStatus.UNMATCHED, ReconciliationStatus.INVESTIGATING}


class ReconciliationEngine:
    """
    Reconciles confirmed settlement instructions against actual movement.
    """

    def __init__(
        self,
        repository: SettlementRepository,
        movement_query: MovementQuery,
        event_bus: EventBus,
        clock: ClockProtocol,
        config: Optional[ReconciliationConfig] = None,
    ):
        self._repository = repository
        self._movements = movement_query
        self._event_bus = event_bus
        self._clock = clock
        self._config = config or ReconciliationConfig()

        self._matched: Dict[str, datetime] = {}
        self._locks = KeyedLocks()
        self._history: Deque[ReconciliationRunResult] = deque(maxlen=self._config.max_history)
        self._sweep_task = PeriodicTask(
            "reconciliation-sweep",
            self._config.sweep_interval_seconds,
            self.run_sweep,
        )

    @property
    def config(self) -> ReconciliationConfig:
        return self._config

    # --------------------------------------------------------
    # RECONCILE
    # --------------------------------------------------------

    async def reconcile(self, settlement: Settlement) -> List[ReconciliationItem]:
        """
        Reconcile every confirmed instruction of a settlement.

        Returns:
            Items created by this call (empty when everything matched
            or was already examined)
        """
        created: List[ReconciliationItem] = []

        async with self._locks.hold(settlement.settlement_id):
            for instruction in settlement.instructions:
                if instruction.status != InstructionStatus.CONFIRMED:
                    continue
                reference = instruction.reference
                if reference in self._matched:
                    continue
                if self._repository.get_item_by_reference(reference) is not None:
                    continue

                try:
                    actual = await self._movements.get_actual_movement(instruction)
                except Exception as e:
                    logger.warning(f"Movement query failed for {reference}, skipping: {e}")
                    continue

                actual = Decimal(str(actual))
                difference = actual - instruction.amount
                if abs(difference) <= self._config.tolerance:
                    self._matched[reference] = settlement.created_at
                    logger.debug(f"Reconciled {reference}: {actual} {instruction.asset}")
                    continue

                item = ReconciliationItem(
                    item_type=ReconciliationItemType.SETTLEMENT,
                    reference=reference,
                    expected_amount=instruction.amount,
                    actual_amount=actual,
                    difference=difference,
                    asset=instruction.asset,
                    created_at=self._clock.now(),
                    settlement_id=settlement.settlement_id,
                    instruction_id=instruction.instruction_id,
                )
                self._repository.save_item(item)
                created.append(item)

                logger.warning(
                    f"Reconciliation discrepancy {reference}: expected "
                    f"{instruction.amount} got {actual} {instruction.asset} (diff {difference})"
                )

        for item in created:
            await self._event_bus.publish(
                EventType.RECONCILIATION_DISCREPANCY,
                {"item": item, "settlement_id": settlement.settlement_id},
            )

        return created

    # --------------------------------------------------------
    # ITEMS
    # --------------------------------------------------------

    def get_reconciliation_items(
        self,
        status: Optional[ReconciliationStatus] = None,
    ) -> List[ReconciliationItem]:
        """Items, optionally filtered by status."""
        return self._repository.list_items(status=status)

    def get_item(self, item_id: str) -> Optional[ReconciliationItem]:
        return self._repository.get_item(item_id)

    async def update_reconciliation_item(self, item_id: str, **updates: Any) -> bool:
        """
        Update status and/or investigation notes of an item.

        Returns:
            False if the item is unknown

        Raises:
            ValidationError: Unknown field or status value
            InvalidStateTransitionError: Status change not allowed
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )

        item = self._repository.get_item(item_id)
        if item is None:
            return False

        if "status" in updates:
            target = self._parse_status(updates["status"])
            if target != item.status and target not in ITEM_TRANSITIONS[item.status]:
                raise InvalidStateTransitionError(
                    item_id,
                    item.status.value,
                    target.value,
                    reason="Reconciliation item transition not allowed",
                )
            item.status = target

        if "investigation_notes" in updates:
            notes = updates["investigation_notes"]
            item.investigation_notes = None if notes is None else str(notes)

        item.updated_at = self._clock.now()
        self._repository.save_item(item)

        logger.info(f"Reconciliation item {item_id} updated: status={item.status.value}")
        await self._event_bus.publish(EventType.RECONCILIATION_ITEM_UPDATED, {"item": item})
        return True

    @staticmethod
    def _parse_status(value: Any) -> ReconciliationStatus:
        if isinstance(value, ReconciliationStatus):
            return value
        try:
            return ReconciliationStatus(str(value).lower())
        except ValueError as e:
            raise ValidationError("Unknown reconciliation status", field="status", value=value, cause=e)

    # --------------------------------------------------------
    # SWEEP
    # --------------------------------------------------------

    async def run_sweep(self) -> ReconciliationRunResult:
        """Reconcile every settlement created within the lookback window."""
        now = self._clock.now()
        result = ReconciliationRunResult(started_at=now)
        since = now - timedelta(hours=self._config.lookback_hours)
        self._prune_matched(since)

        for settlement in self._repository.list_settlements(created_since=since):
            try:
                items = await self.reconcile(settlement)
            except Exception as e:
                result.errors.append(f"{settlement.settlement_id}: {e}")
                logger.error(f"Reconciliation of {settlement.settlement_id} failed: {e}")
                continue
            result.settlements_checked += 1
            result.discrepancies_found += len(items)

        result.open_discrepancies = sum(
            1 for item in self._repository.list_items() if item.status in OPEN_STATUSES
        )
        result.completed_at = self._clock.now()
        self._history.append(result)

        logger.info(
            f"Reconciliation sweep: {result.settlements_checked} settlements, "
            f"{result.discrepancies_found} new, {result.open_discrepancies} open"
        )
        await self._event_bus.publish(
            EventType.RECONCILIATION_SWEEP_COMPLETE,
            {
                "result": result,
                "processed": result.settlements_checked,
                "discrepancies": result.open_discrepancies,
            },
        )
        return result

    def _prune_matched(self, since: datetime) -> None:
        # Settlements older than the window are never swept again
        expired = [ref for ref, created_at in self._matched.items() if created_at < since]
        for reference in expired:
            del self._matched[reference]

    async def start(self) -> None:
        """Start the scheduled sweep."""
        if not self._config.sweep_enabled:
            logger.info("Reconciliation sweep disabled")
            return
        await self._sweep_task.start()

    async def stop(self) -> None:
        await self._sweep_task.stop()

    @property
    def is_running(self) -> bool:
        return self._sweep_task.is_running

    def get_history(self, limit: Optional[int] = None) -> List[ReconciliationRunResult]:
        """Recent sweep results, newest last."""
        history = list(self._history)
        if limit is not None:
            history = history[-limit:]
        return history

    def get_summary(self) -> Dict[str, Any]:
        """Counts by status and open absolute difference per asset."""
        by_status = {status.value: 0 for status in ReconciliationStatus}
        open_by_asset: Dict[str, Decimal] = {}

        for item in self._repository.list_items():
            by_status[item.status.value] += 1
            if item.status in OPEN_STATUSES:
                open_by_asset[item.asset] = open_by_asset.get(item.asset, Decimal("0")) + abs(item.difference)

        last_run = self._history[-1] if self._history else None
        return {
            "total_items": sum(by_status.values()),
            "by_status": by_status,
            "open_discrepancies": by_status["unmatched"] + by_status["investigating"],
            "open_difference_by_asset": {asset: str(total) for asset, total in open_by_asset.items()},
            "matched_references": len(self._matched),
            "last_run": last_run.to_dict() if last_run else None,
        }
