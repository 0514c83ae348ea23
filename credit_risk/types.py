"""
Credit Risk - Types.

============================================================
PURPOSE
============================================================
All type definitions for the credit risk subsystem.

Monetary amounts are Decimal. Ratios and risk scores are float.
All timestamps are timezone-aware UTC.

============================================================
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, Overflow, localcontext
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# ENUMS
# ============================================================

class CreditTier(Enum):
    """Client credit tier."""

    PRIME = "prime"
    STANDARD = "standard"
    CAUTIOUS = "cautious"
    RESTRICTED = "restricted"


class RiskAlertType(Enum):
    """Type of limit breach."""

    CREDIT_BREACH = "credit_breach"
    """Leverage or credit limit exceeded."""

    MARGIN_CALL = "margin_call"
    """Margin utilization above the margin call threshold."""

    CONCENTRATION = "concentration"
    """Single-asset concentration above limit."""

    COUNTERPARTY = "counterparty"
    """Counterparty exposure issue."""


class AlertSeverity(Enum):
    """Risk alert severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# EXPOSURE
# ============================================================

@dataclass
class ClientExposure:
    """
    A single position entry for a client.

    Exposures are append-only. Aggregates are always recomputed
    from the full list.
    """

    client_id: str
    """Owning client."""

    symbol: str
    """Instrument symbol (e.g. BTC/USDT)."""

    notional: Decimal
    """Signed notional in base currency units."""

    market_value: Decimal = Decimal("0")
    """Current market value."""

    unrealized_pnl: Decimal = Decimal("0")
    """Unrealized profit and loss."""

    margin_used: Decimal = Decimal("0")
    """Margin consumed by the position."""

    risk_weight: Decimal = Decimal("1")
    """Risk weight applied by the desk."""

    counterparty_id: Optional[str] = None
    """Counterparty, if bilateral."""

    exposure_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Unique entry ID."""

    recorded_at: Optional[datetime] = None
    """When the ledger accepted the entry."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "exposure_id": self.exposure_id,
            "client_id": self.client_id,
            "symbol": self.symbol,
            "notional": str(self.notional),
            "market_value": str(self.market_value),
            "unrealized_pnl": str(self.unrealized_pnl),
            "margin_used": str(self.margin_used),
            "risk_weight": str(self.risk_weight),
            "counterparty_id": self.counterparty_id,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


@dataclass
class ExposureTotals:
    """Aggregated view of a client's exposures."""

    total_notional: Decimal = Decimal("0")
    """Sum of absolute notional."""

    total_margin: Decimal = Decimal("0")
    """Sum of margin used."""

    total_unrealized_pnl: Decimal = Decimal("0")
    """Sum of unrealized P&L."""

    notional_by_symbol: Dict[str, Decimal] = field(default_factory=dict)
    """Absolute notional per symbol."""

    @classmethod
    def from_exposures(cls, exposures: List[ClientExposure]) -> "ExposureTotals":
        """
        Aggregate a list of exposures.

        Sums beyond the Decimal range become Infinity instead of raising.
        """
        totals = cls()
        with localcontext() as ctx:
            ctx.traps[Overflow] = False
            for exposure in exposures:
                size = abs(exposure.notional)
                totals.total_notional += size
                totals.total_margin += exposure.margin_used
                totals.total_unrealized_pnl += exposure.unrealized_pnl
                totals.notional_by_symbol[exposure.symbol] = (
                    totals.notional_by_symbol.get(exposure.symbol, Decimal("0")) + size
                )
        return totals

    @property
    def max_symbol_notional(self) -> Decimal:
        """Largest single-symbol notional."""
        if not self.notional_by_symbol:
            return Decimal("0")
        return max(self.notional_by_symbol.values())


# ============================================================
# CREDIT PROFILE
# ============================================================

@dataclass
class CreditProfile:
    """
    Credit standing of one client.

    available_credit is derived and recomputed on every update.
    """

    client_id: str
    """Client ID."""

    credit_limit: Decimal = Decimal("0")
    """Approved credit limit."""

    used_credit: Decimal = Decimal("0")
    """Credit consumed by open exposure."""

    available_credit: Decimal = Decimal("0")
    """credit_limit - used_credit."""

    risk_score: float = 0.0
    """Latest risk score (0-100)."""

    tier: CreditTier = CreditTier.STANDARD
    """Credit tier."""

    collateral_value: Decimal = Decimal("0")
    """Posted collateral."""

    margin_requirement: Decimal = Decimal("0")
    """Margin required by open exposure."""

    last_updated: Optional[datetime] = None
    """Last modification time."""

    def recompute_available(self) -> None:
        """Refresh the derived available credit."""
        self.available_credit = self.credit_limit - self.used_credit

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "client_id": self.client_id,
            "credit_limit": str(self.credit_limit),
            "used_credit": str(self.used_credit),
            "available_credit": str(self.available_credit),
            "risk_score": self.risk_score,
            "tier": self.tier.value,
            "collateral_value": str(self.collateral_value),
            "margin_requirement": str(self.margin_requirement),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


# ============================================================
# ALERTS
# ============================================================

@dataclass(frozen=True)
class RiskAlert:
    """
    A limit breach detected by the risk monitor.

    Immutable except for acknowledgement, which produces a new copy.
    """

    client_id: str
    alert_type: RiskAlertType
    severity: AlertSeverity
    message: str
    threshold: float
    current_value: float
    timestamp: datetime
    acknowledged: bool = False
    alert_id: str = field(default_factory=lambda: f"alert_{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "alert_id": self.alert_id,
            "client_id": self.client_id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "threshold": self.threshold,
            "current_value": self.current_value,
            "timestamp": self.timestamp.isoformat(),
            "acknowledged": self.acknowledged,
        }


@dataclass(frozen=True)
class AlertAcknowledgement:
    """Audit record of who acknowledged an alert and when."""

    alert_id: str
    acknowledged_by: str
    acknowledged_at: datetime


# ============================================================
# RISK SNAPSHOTS
# ============================================================

@dataclass
class RiskSnapshot:
    """Output of the risk scoring engine for one client."""

    client_id: str
    """Client ID."""

    risk_score: float
    """Composite score in [0, 100]."""

    leverage: float
    """Total exposure / collateral (0 without collateral)."""

    max_concentration: float
    """Largest single-symbol notional / credit limit."""

    margin_utilization: float
    """Margin requirement / credit limit."""

    unrealized_pnl: Decimal
    """Sum of unrealized P&L."""

    total_exposure: Decimal
    """Sum of absolute notional."""

    credit_utilization: float
    """Used credit / credit limit."""

    recommendations: List[str] = field(default_factory=list)
    """Ordered recommendation messages."""

    components: Dict[str, float] = field(default_factory=dict)
    """Points contributed by each scoring component."""

    calculated_at: Optional[datetime] = None
    """When the snapshot was computed."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "client_id": self.client_id,
            "risk_score": self.risk_score,
            "leverage": self.leverage,
            "max_concentration": self.max_concentration,
            "margin_utilization": self.margin_utilization,
            "unrealized_pnl": str(self.unrealized_pnl),
            "total_exposure": str(self.total_exposure),
            "credit_utilization": self.credit_utilization,
            "recommendations": list(self.recommendations),
            "components": dict(self.components),
            "calculated_at": self.calculated_at.isoformat() if self.calculated_at else None,
        }


@dataclass
class PortfolioRisk:
    """Aggregate risk across all clients."""

    total_clients: int = 0
    total_credit_limit: Decimal = Decimal("0")
    total_credit_used: Decimal = Decimal("0")
    credit_utilization: float = 0.0
    average_risk_score: float = 0.0
    active_alerts: int = 0
    critical_alerts: int = 0
    alerts_by_severity: Dict[str, int] = field(default_factory=dict)
    risk_distribution: Dict[str, int] = field(
        default_factory=lambda: {"low": 0, "medium": 0, "high": 0}
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_clients": self.total_clients,
            "total_credit_limit": str(self.total_credit_limit),
            "total_credit_used": str(self.total_credit_used),
            "credit_utilization": self.credit_utilization,
            "average_risk_score": self.average_risk_score,
            "active_alerts": self.active_alerts,
            "critical_alerts": self.critical_alerts,
            "alerts_by_severity": dict(self.alerts_by_severity),
            "risk_distribution": dict(self.risk_distribution),
        }
