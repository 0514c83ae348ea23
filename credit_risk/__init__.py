"""
Credit Risk Package.

Real-time client credit exposure and risk limit monitoring.

Components:
- ExposureLedger: append-only positions per client
- CreditProfileStore: credit limits, usage and tiers
- RiskScoringEngine: composite 0-100 risk score and recommendations
- RiskMonitor: periodic and event-driven limit checks, alerts
"""

from .config import CreditRiskConfig, RiskLimits, RiskMonitorConfig, ScoringWeights
from .ledger import ExposureLedger
from .monitor import RiskMonitor
from .profiles import CreditProfileStore
from .repository import (
    CreditRiskRepository,
    InMemoryCreditRiskRepository,
    SqlCreditRiskRepository,
)
from .scoring import RiskScoringEngine
from .types import (
    AlertAcknowledgement,
    AlertSeverity,
    ClientExposure,
    CreditProfile,
    CreditTier,
    ExposureTotals,
    PortfolioRisk,
    RiskAlert,
    RiskAlertType,
    RiskSnapshot,
)


__all__ = [
    "CreditRiskConfig",
    "RiskLimits",
    "RiskMonitorConfig",
    "ScoringWeights",
    "ExposureLedger",
    "RiskMonitor",
    "CreditProfileStore",
    "CreditRiskRepository",
    "InMemoryCreditRiskRepository",
    "SqlCreditRiskRepository",
    "RiskScoringEngine",
    "AlertAcknowledgement",
    "AlertSeverity",
    "ClientExposure",
    "CreditProfile",
    "CreditTier",
    "ExposureTotals",
    "PortfolioRisk",
    "RiskAlert",
    "RiskAlertType",
    "RiskSnapshot",
]
