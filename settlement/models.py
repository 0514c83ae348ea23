"""
Settlement - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for settlement persistence.

TABLES:
- settlements: One row per trade settlement
- settlement_instructions: Pay/receive legs
- settlement_confirmations: Confirmation records (immutable)
- reconciliation_items: Discrepancies awaiting resolution

AUDIT REQUIREMENTS:
- Settlements are never deleted
- Confirmations are append-only

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


AMOUNT = Numeric(28, 10)


# ============================================================
# SETTLEMENT MODEL
# ============================================================

class SettlementModel(Base):
    """Persisted settlement."""

    __tablename__ = "settlements"

    settlement_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    trade_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    counterparty_id: Mapped[str] = mapped_column(String(64), nullable=False)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    price: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    notional: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    settlement_type: Mapped[str] = mapped_column(String(8), nullable=False)
    settlement_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    value_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    instructions: Mapped[List["SettlementInstructionModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementInstructionModel.position",
    )
    confirmations: Mapped[List["SettlementConfirmationModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementConfirmationModel.id",
    )


# ============================================================
# INSTRUCTION MODEL
# ============================================================

class SettlementInstructionModel(Base):
    """Persisted settlement instruction."""

    __tablename__ = "settlement_instructions"

    instruction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    settlement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("settlements.settlement_id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    instruction_type: Mapped[str] = mapped_column(String(8), nullable=False)
    asset: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    destination: Mapped[Any] = mapped_column(JSON, nullable=False)
    """Wallet address string or bank details object."""
    reference: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    owner_id: Mapped[str] = mapped_column(String(64), default="")

    status: Mapped[str] = mapped_column(String(16), nullable=False)
    tx_ref: Mapped[Optional[str]] = mapped_column(String(160))
    confirmations: Mapped[int] = mapped_column(Integer, default=0)
    required_confirmations: Mapped[int] = mapped_column(Integer, default=1)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    settlement: Mapped[SettlementModel] = relationship(back_populates="instructions")


# ============================================================
# CONFIRMATION MODEL
# ============================================================

class SettlementConfirmationModel(Base):
    """Persisted confirmation record."""

    __tablename__ = "settlement_confirmations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    confirmation_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    settlement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("settlements.settlement_id"), nullable=False, index=True
    )
    instruction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    confirmation_type: Mapped[str] = mapped_column(String(16), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(160), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    asset: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmation_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    verified: Mapped[bool] = mapped_column(Boolean, default=True)

    settlement: Mapped[SettlementModel] = relationship(back_populates="confirmations")


# ============================================================
# RECONCILIATION ITEM MODEL
# ============================================================

class ReconciliationItemModel(Base):
    """Persisted reconciliation discrepancy."""

    __tablename__ = "reconciliation_items"

    item_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False)
    reference: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    expected_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    actual_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    difference: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    asset: Mapped[str] = mapped_column(String(16), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False)
    investigation_notes: Mapped[Optional[str]] = mapped_column(Text)

    settlement_id: Mapped[Optional[str]] = mapped_column(String(64))
    instruction_id: Mapped[Optional[str]] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_reconciliation_items_status", "status"),
    )
