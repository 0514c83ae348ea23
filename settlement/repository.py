"""
Settlement - Repository.

============================================================
PURPOSE
============================================================
Storage for settlements and reconciliation items.

IMPLEMENTATIONS:
- InMemorySettlementRepository: default, used by tests
- SqlSettlementRepository: SQLAlchemy ORM via core.database

Reads return copies. Services load, mutate under the
settlement lock, then save.

============================================================
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from core.database import Database

from .models import (
    ReconciliationItemModel,
    SettlementConfirmationModel,
    SettlementInstructionModel,
    SettlementModel,
)
from .types import (
    BankDetails,
    ConfirmationType,
    InstructionDirection,
    InstructionStatus,
    InstructionType,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationStatus,
    Settlement,
    SettlementConfirmation,
    SettlementInstruction,
    SettlementStatus,
    SettlementType,
    TradeSide,
)


logger = logging.getLogger(__name__)


# ============================================================
# INTERFACE
# ============================================================

class SettlementRepository(ABC):
    """Storage interface for settlements and reconciliation items."""

    @abstractmethod
    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        pass

    @abstractmethod
    def save_settlement(self, settlement: Settlement) -> None:
        """Insert or replace a settlement with its instructions and confirmations."""
        pass

    @abstractmethod
    def list_settlements(
        self,
        client_id: Optional[str] = None,
        created_since: Optional[datetime] = None,
        status: Optional[SettlementStatus] = None,
    ) -> List[Settlement]:
        """Settlements ordered by creation time."""
        pass

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[ReconciliationItem]:
        pass

    @abstractmethod
    def get_item_by_reference(self, reference: str) -> Optional[ReconciliationItem]:
        pass

    @abstractmethod
    def save_item(self, item: ReconciliationItem) -> None:
        pass

    @abstractmethod
    def list_items(self, status: Optional[ReconciliationStatus] = None) -> List[ReconciliationItem]:
        pass


# ============================================================
# IN-MEMORY
# ============================================================

class InMemorySettlementRepository(SettlementRepository):
    """
    Dictionary-backed repository.

    Every access holds one RLock, so readers on other threads see a
    consistent snapshot.
    """

    def __init__(self):
        self._settlements: Dict[str, Settlement] = {}
        self._items: Dict[str, ReconciliationItem] = {}
        self._lock = threading.RLock()

    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        with self._lock:
            settlement = self._settlements.get(settlement_id)
            return copy.deepcopy(settlement) if settlement else None

    def save_settlement(self, settlement: Settlement) -> None:
        with self._lock:
            self._settlements[settlement.settlement_id] = copy.deepcopy(settlement)

    def list_settlements(
        self,
        client_id: Optional[str] = None,
        created_since: Optional[datetime] = None,
        status: Optional[SettlementStatus] = None,
    ) -> List[Settlement]:
        with self._lock:
            result = [
                copy.deepcopy(s) for s in self._settlements.values()
                if (client_id is None or s.client_id == client_id)
                and (created_since is None or s.created_at >= created_since)
                and (status is None or s.status == status)
            ]
        return sorted(result, key=lambda s: s.created_at)

    def get_item(self, item_id: str) -> Optional[ReconciliationItem]:
        with self._lock:
            item = self._items.get(item_id)
            return copy.copy(item) if item else None

    def get_item_by_reference(self, reference: str) -> Optional[ReconciliationItem]:
        with self._lock:
            for item in self._items.values():
                if item.reference == reference:
                    return copy.copy(item)
        return None

    def save_item(self, item: ReconciliationItem) -> None:
        with self._lock:
            self._items[item.item_id] = copy.copy(item)

    def list_items(self, status: Optional[ReconciliationStatus] = None) -> List[ReconciliationItem]:
        with self._lock:
            return [
                copy.copy(i) for i in self._items.values()
                if status is None or i.status == status
            ]


# ============================================================
# SQLALCHEMY
# ============================================================

def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlSettlementRepository(SettlementRepository):
    """
    Repository backed by SQLAlchemy.

    Each call runs in its own transaction.
    """

    def __init__(self, database: Database):
        self._db = database

    # --------------------------------------------------------
    # SETTLEMENTS
    # --------------------------------------------------------

    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        with self._db.session_scope() as session:
            model = session.get(SettlementModel, settlement_id)
            return self._model_to_settlement(model) if model else None

    def save_settlement(self, settlement: Settlement) -> None:
        with self._db.session_scope() as session:
            model = session.get(SettlementModel, settlement.settlement_id)
            if model is None:
                model = SettlementModel(
                    settlement_id=settlement.settlement_id,
                    trade_id=settlement.trade_id,
                    client_id=settlement.client_id,
                    counterparty_id=settlement.counterparty_id,
                    symbol=settlement.symbol,
                    side=settlement.side.value,
                    quantity=settlement.quantity,
                    price=settlement.price,
                    notional=settlement.notional,
                    settlement_type=settlement.settlement_type.value,
                    settlement_date=settlement.settlement_date,
                    value_date=settlement.value_date,
                    created_at=settlement.created_at,
                )
                session.add(model)

            model.status = settlement.status.value
            model.failure_reason = settlement.failure_reason
            model.updated_at = settlement.updated_at

            existing = {m.instruction_id: m for m in model.instructions}
            for position, instruction in enumerate(settlement.instructions):
                row = existing.get(instruction.instruction_id)
                if row is None:
                    row = SettlementInstructionModel(
                        instruction_id=instruction.instruction_id,
                        position=position,
                        instruction_type=instruction.instruction_type.value,
                        asset=instruction.asset,
                        amount=instruction.amount,
                        direction=instruction.direction.value,
                        destination=(
                            instruction.destination.to_dict()
                            if isinstance(instruction.destination, BankDetails)
                            else instruction.destination
                        ),
                        reference=instruction.reference,
                        owner_id=instruction.owner_id,
                    )
                    model.instructions.append(row)
                row.status = instruction.status.value
                row.tx_ref = instruction.tx_ref
                row.confirmations = instruction.confirmations
                row.required_confirmations = instruction.required_confirmations
                row.failure_reason = instruction.failure_reason

            known = {c.confirmation_id for c in model.confirmations}
            for confirmation in settlement.confirmations:
                if confirmation.confirmation_id in known:
                    continue
                model.confirmations.append(SettlementConfirmationModel(
                    confirmation_id=confirmation.confirmation_id,
                    instruction_id=confirmation.instruction_id,
                    confirmation_type=confirmation.confirmation_type.value,
                    transaction_id=confirmation.transaction_id,
                    amount=confirmation.amount,
                    asset=confirmation.asset,
                    timestamp=confirmation.timestamp,
                    confirmation_data=dict(confirmation.confirmation_data),
                    verified=confirmation.verified,
                ))

    def list_settlements(
        self,
        client_id: Optional[str] = None,
        created_since: Optional[datetime] = None,
        status: Optional[SettlementStatus] = None,
    ) -> List[Settlement]:
        query = select(SettlementModel).options(
            selectinload(SettlementModel.instructions),
            selectinload(SettlementModel.confirmations),
        )
        if client_id is not None:
            query = query.where(SettlementModel.client_id == client_id)
        if created_since is not None:
            query = query.where(SettlementModel.created_at >= created_since)
        if status is not None:
            query = query.where(SettlementModel.status == status.value)

        with self._db.session_scope() as session:
            models = session.scalars(query.order_by(SettlementModel.created_at)).all()
            return [self._model_to_settlement(m) for m in models]

    def _model_to_settlement(self, model: SettlementModel) -> Settlement:
        return Settlement(
            settlement_id=model.settlement_id,
            trade_id=model.trade_id,
            client_id=model.client_id,
            counterparty_id=model.counterparty_id,
            symbol=model.symbol,
            side=TradeSide(model.side),
            quantity=model.quantity,
            price=model.price,
            notional=model.notional,
            settlement_type=SettlementType(model.settlement_type),
            settlement_date=_utc(model.settlement_date),
            value_date=_utc(model.value_date),
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
            status=SettlementStatus(model.status),
            failure_reason=model.failure_reason,
            instructions=[self._model_to_instruction(m) for m in model.instructions],
            confirmations=[
                SettlementConfirmation(
                    confirmation_id=c.confirmation_id,
                    settlement_id=model.settlement_id,
                    instruction_id=c.instruction_id,
                    confirmation_type=ConfirmationType(c.confirmation_type),
                    transaction_id=c.transaction_id,
                    amount=c.amount,
                    asset=c.asset,
                    timestamp=_utc(c.timestamp),
                    confirmation_data=dict(c.confirmation_data or {}),
                    verified=c.verified,
                )
                for c in model.confirmations
            ],
        )

    def _model_to_instruction(self, model: SettlementInstructionModel) -> SettlementInstruction:
        destination = model.destination
        if isinstance(destination, dict):
            destination = BankDetails.from_dict(destination)

        return SettlementInstruction(
            instruction_id=model.instruction_id,
            instruction_type=InstructionType(model.instruction_type),
            asset=model.asset,
            amount=model.amount,
            direction=InstructionDirection(model.direction),
            destination=destination,
            reference=model.reference,
            owner_id=model.owner_id,
            status=InstructionStatus(model.status),
            tx_ref=model.tx_ref,
            confirmations=model.confirmations,
            required_confirmations=model.required_confirmations,
            failure_reason=model.failure_reason,
        )

    # --------------------------------------------------------
    # RECONCILIATION ITEMS
    # --------------------------------------------------------

    def get_item(self, item_id: str) -> Optional[ReconciliationItem]:
        with self._db.session_scope() as session:
            model = session.get(ReconciliationItemModel, item_id)
            return self._model_to_item(model) if model else None

    def get_item_by_reference(self, reference: str) -> Optional[ReconciliationItem]:
        with self._db.session_scope() as session:
            model = session.scalars(
                select(ReconciliationItemModel).where(ReconciliationItemModel.reference == reference)
            ).first()
            return self._model_to_item(model) if model else None

    def save_item(self, item: ReconciliationItem) -> None:
        with self._db.session_scope() as session:
            session.merge(ReconciliationItemModel(
                item_id=item.item_id,
                item_type=item.item_type.value,
                reference=item.reference,
                expected_amount=item.expected_amount,
                actual_amount=item.actual_amount,
                difference=item.difference,
                asset=item.asset,
                status=item.status.value,
                investigation_notes=item.investigation_notes,
                settlement_id=item.settlement_id,
                instruction_id=item.instruction_id,
                created_at=item.created_at,
                updated_at=item.updated_at,
            ))

    def list_items(self, status: Optional[ReconciliationStatus] = None) -> List[ReconciliationItem]:
        query = select(ReconciliationItemModel)
        if status is not None:
            query = query.where(ReconciliationItemModel.status == status.value)

        with self._db.session_scope() as session:
            models = session.scalars(query.order_by(ReconciliationItemModel.created_at)).all()
            return [self._model_to_item(m) for m in models]

    def _model_to_item(self, model: ReconciliationItemModel) -> ReconciliationItem:
        return ReconciliationItem(
            item_id=model.item_id,
            item_type=ReconciliationItemType(model.item_type),
            reference=model.reference,
            expected_amount=model.expected_amount,
            actual_amount=model.actual_amount,
            difference=model.difference,
            asset=model.asset,
            status=ReconciliationStatus(model.status),
            investigation_notes=model.investigation_notes,
            settlement_id=model.settlement_id,
            instruction_id=model.instruction_id,
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
        )
