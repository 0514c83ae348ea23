"""
Settlement - Types.

============================================================
PURPOSE
============================================================
All type definitions for settlement and reconciliation.

Monetary amounts are Decimal. All timestamps are UTC.

============================================================
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from core.exceptions import ValidationError
from core.validation import require_text, to_decimal


# ============================================================
# ENUMS
# ============================================================

class SettlementStatus(Enum):
    """
    Settlement lifecycle state.

    pending -> processing -> settled | failed
    pending -> cancelled
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in {
            SettlementStatus.SETTLED,
            SettlementStatus.FAILED,
            SettlementStatus.CANCELLED,
        }


class SettlementType(Enum):
    """Settlement cycle."""

    T0 = "T+0"
    """Same day, processing starts immediately."""

    T1 = "T+1"
    """Next business day."""


class TradeSide(Enum):
    BUY = "buy"
    SELL = "sell"


class InstructionType(Enum):
    CRYPTO = "crypto"
    FIAT = "fiat"


class InstructionDirection(Enum):
    PAY = "pay"
    RECEIVE = "receive"


class InstructionStatus(Enum):
    """Instruction lifecycle: pending -> sent -> confirmed | failed."""

    PENDING = "pending"
    SENT = "sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ConfirmationType(Enum):
    BLOCKCHAIN = "blockchain"
    SWIFT = "swift"
    SEPA = "sepa"
    ACH = "ach"
    INTERNAL = "internal"


class BankTransferStatus(Enum):
    """Status reported by the bank confirmation source."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


class ReconciliationItemType(Enum):
    TRADE = "trade"
    SETTLEMENT = "settlement"
    MOVEMENT = "movement"


class ReconciliationStatus(Enum):
    """
    Reconciliation item state.

    unmatched -> investigating -> resolved
    unmatched -> resolved
    """

    MATCHED = "matched"
    UNMATCHED = "unmatched"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


# ============================================================
# TRADE INPUT
# ============================================================

def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


@dataclass
class TradeCompletion:
    """
    A completed trade delivered by the trade feed.
    """

    trade_id: str
    client_id: str
    counterparty_id: str
    symbol: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    settlement_type: Optional[SettlementType] = None
    """None means the configured default."""

    @property
    def base_asset(self) -> str:
        return self.symbol.split("/")[0]

    @property
    def quote_asset(self) -> str:
        return self.symbol.split("/")[1]

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.price

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TradeCompletion":
        """
        Parse and validate a trade feed payload.

        Accepts camelCase (tradeId) or snake_case (trade_id) keys.

        Raises:
            ValidationError: Missing or invalid fields
        """
        symbol = require_text(_pick(payload, "symbol"), "symbol").upper()
        parts = symbol.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValidationError("symbol must be BASE/QUOTE", field="symbol", value=symbol)

        raw_side = _pick(payload, "side")
        try:
            side = raw_side if isinstance(raw_side, TradeSide) else TradeSide(str(raw_side).lower())
        except ValueError as e:
            raise ValidationError("side must be buy or sell", field="side", value=raw_side, cause=e)

        raw_type = _pick(payload, "settlementType", "settlement_type")
        settlement_type = None
        if raw_type is not None:
            try:
                settlement_type = (
                    raw_type if isinstance(raw_type, SettlementType)
                    else SettlementType(str(raw_type).upper())
                )
            except ValueError as e:
                raise ValidationError(
                    "settlementType must be T+0 or T+1",
                    field="settlement_type",
                    value=raw_type,
                    cause=e,
                )

        trade = cls(
            trade_id=require_text(_pick(payload, "tradeId", "trade_id"), "trade_id"),
            client_id=require_text(_pick(payload, "clientId", "client_id"), "client_id"),
            counterparty_id=require_text(
                _pick(payload, "counterpartyId", "counterparty_id"), "counterparty_id"
            ),
            symbol=symbol,
            side=side,
            quantity=to_decimal(_pick(payload, "quantity"), "quantity", allow_negative=False, allow_zero=False),
            price=to_decimal(_pick(payload, "price"), "price", allow_negative=False, allow_zero=False),
            settlement_type=settlement_type,
        )
        to_decimal(trade.notional, "notional")
        return trade


# ============================================================
# INSTRUCTIONS & CONFIRMATIONS
# ============================================================

@dataclass
class BankDetails:
    """Fiat destination."""

    bank_name: str
    account_number: str
    routing_number: str
    beneficiary_name: str
    swift_code: Optional[str] = None
    iban: Optional[str] = None
    reference: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "routing_number": self.routing_number,
            "beneficiary_name": self.beneficiary_name,
            "swift_code": self.swift_code,
            "iban": self.iban,
            "reference": self.reference,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BankDetails":
        return cls(
            bank_name=data["bank_name"],
            account_number=data["account_number"],
            routing_number=data["routing_number"],
            beneficiary_name=data["beneficiary_name"],
            swift_code=data.get("swift_code"),
            iban=data.get("iban"),
            reference=data.get("reference", ""),
        )


@dataclass
class SettlementInstruction:
    """
    One leg of a settlement (pay or receive one asset).
    """

    instruction_type: InstructionType
    """crypto or fiat."""

    asset: str
    """Asset code."""

    amount: Decimal
    """Expected amount."""

    direction: InstructionDirection
    """pay or receive."""

    destination: Union[str, BankDetails]
    """Wallet address (crypto) or bank details (fiat)."""

    reference: str
    """Stable reference used for reconciliation."""

    owner_id: str = ""
    """Party the destination belongs to."""

    status: InstructionStatus = InstructionStatus.PENDING
    """Current status."""

    tx_ref: Optional[str] = None
    """Transaction hash or transfer reference from the asset mover."""

    confirmations: int = 0
    """Observed confirmations."""

    required_confirmations: int = 1
    """Confirmations needed before confirmed."""

    failure_reason: Optional[str] = None
    """Why the instruction failed."""

    instruction_id: str = field(default_factory=lambda: f"ins_{uuid.uuid4().hex[:16]}")
    """Unique ID."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instruction_id": self.instruction_id,
            "instruction_type": self.instruction_type.value,
            "asset": self.asset,
            "amount": str(self.amount),
            "direction": self.direction.value,
            "destination": (
                self.destination.to_dict()
                if isinstance(self.destination, BankDetails)
                else self.destination
            ),
            "reference": self.reference,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "tx_ref": self.tx_ref,
            "confirmations": self.confirmations,
            "required_confirmations": self.required_confirmations,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True)
class SettlementConfirmation:
    """Proof that one instruction reached its confirmation threshold."""

    settlement_id: str
    instruction_id: str
    confirmation_type: ConfirmationType
    transaction_id: str
    amount: Decimal
    asset: str
    timestamp: datetime
    confirmation_data: Dict[str, Any] = field(default_factory=dict)
    verified: bool = True
    confirmation_id: str = field(default_factory=lambda: f"conf_{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmation_id": self.confirmation_id,
            "settlement_id": self.settlement_id,
            "instruction_id": self.instruction_id,
            "confirmation_type": self.confirmation_type.value,
            "transaction_id": self.transaction_id,
            "amount": str(self.amount),
            "asset": self.asset,
            "timestamp": self.timestamp.isoformat(),
            "confirmation_data": dict(self.confirmation_data),
            "verified": self.verified,
        }


# ============================================================
# SETTLEMENT
# ============================================================

@dataclass
class Settlement:
    """
    Settlement of one completed trade.

    Never deleted; status changes go through the state machine.
    """

    trade_id: str
    client_id: str
    counterparty_id: str
    symbol: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    notional: Decimal
    settlement_type: SettlementType
    settlement_date: datetime
    value_date: datetime
    created_at: datetime
    updated_at: datetime
    status: SettlementStatus = SettlementStatus.PENDING
    instructions: List[SettlementInstruction] = field(default_factory=list)
    confirmations: List[SettlementConfirmation] = field(default_factory=list)
    failure_reason: Optional[str] = None
    settlement_id: str = field(default_factory=lambda: f"stl_{uuid.uuid4().hex[:16]}")

    @property
    def id(self) -> str:
        return self.settlement_id

    @property
    def all_confirmed(self) -> bool:
        """Whether every instruction is confirmed."""
        return bool(self.instructions) and all(
            i.status == InstructionStatus.CONFIRMED for i in self.instructions
        )

    def get_instruction(self, instruction_id: str) -> Optional[SettlementInstruction]:
        for instruction in self.instructions:
            if instruction.instruction_id == instruction_id:
                return instruction
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settlement_id": self.settlement_id,
            "trade_id": self.trade_id,
            "client_id": self.client_id,
            "counterparty_id": self.counterparty_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "notional": str(self.notional),
            "settlement_type": self.settlement_type.value,
            "settlement_date": self.settlement_date.isoformat(),
            "value_date": self.value_date.isoformat(),
            "status": self.status.value,
            "instructions": [i.to_dict() for i in self.instructions],
            "confirmations": [c.to_dict() for c in self.confirmations],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "failure_reason": self.failure_reason,
        }


# ============================================================
# RECONCILIATION
# ============================================================

@dataclass
class ReconciliationItem:
    """
    A discrepancy between expected and actual movement.

    Only created when |actual - expected| exceeds the tolerance.
    """

    item_type: ReconciliationItemType
    reference: str
    expected_amount: Decimal
    actual_amount: Decimal
    difference: Decimal
    """actual - expected."""
    asset: str
    created_at: datetime
    status: ReconciliationStatus = ReconciliationStatus.UNMATCHED
    investigation_notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    settlement_id: Optional[str] = None
    instruction_id: Optional[str] = None
    item_id: str = field(default_factory=lambda: f"rec_{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type.value,
            "reference": self.reference,
            "expected_amount": str(self.expected_amount),
            "actual_amount": str(self.actual_amount),
            "difference": str(self.difference),
            "asset": self.asset,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "investigation_notes": self.investigation_notes,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "settlement_id": self.settlement_id,
            "instruction_id": self.instruction_id,
        }


@dataclass
class ReconciliationRunResult:
    """Record of one scheduled reconciliation sweep."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    settlements_checked: int = 0
    discrepancies_found: int = 0
    open_discrepancies: int = 0
    errors: List[str] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "settlements_checked": self.settlements_checked,
            "discrepancies_found": self.discrepancies_found,
            "open_discrepancies": self.open_discrepancies,
            "errors": list(self.errors),
        }
