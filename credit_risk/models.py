"""
Credit Risk - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for credit risk persistence.

TABLES:
- credit_profiles: One row per client
- client_exposures: Append-only exposure entries
- risk_alerts: Alert history (never deleted)
- alert_acknowledgements: Who acknowledged which alert, and when

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


AMOUNT = Numeric(28, 10)


# ============================================================
# CREDIT PROFILE MODEL
# ============================================================

class CreditProfileModel(Base):
    """Persisted credit profile."""

    __tablename__ = "credit_profiles"

    client_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    credit_limit: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    used_credit: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    available_credit: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    collateral_value: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    margin_requirement: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))

    risk_score: Mapped[float] = mapped_column(Float, default=0.0)
    tier: Mapped[str] = mapped_column(String(16), default="standard")

    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ============================================================
# EXPOSURE MODEL
# ============================================================

class ClientExposureModel(Base):
    """Persisted exposure entry."""

    __tablename__ = "client_exposures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exposure_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)

    notional: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    market_value: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    unrealized_pnl: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    margin_used: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    risk_weight: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("1"))

    counterparty_id: Mapped[Optional[str]] = mapped_column(String(64))
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ============================================================
# ALERT MODELS
# ============================================================

class RiskAlertModel(Base):
    """Persisted risk alert."""

    __tablename__ = "risk_alerts"

    alert_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    current_value: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("ix_risk_alerts_client_ack", "client_id", "acknowledged"),
    )


class AlertAcknowledgementModel(Base):
    """Audit record of an alert acknowledgement."""

    __tablename__ = "alert_acknowledgements"

    alert_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    acknowledged_by: Mapped[str] = mapped_column(String(128), nullable=False)
    acknowledged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
