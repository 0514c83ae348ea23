"""
Settlement Package.

Trade settlement lifecycle and reconciliation.

Components:
- SettlementOrchestrator: settlement creation, dispatch and
  confirmation tracking
- SettlementStateMachine: guarded status transitions
- ReconciliationEngine: expected vs actual movement checks
- Collaborators: asset mover, confirmation source, movement
  query and account directory interfaces
"""

from .collaborators import (
    AccountDirectory,
    AssetMover,
    ConfirmationSource,
    MovementQuery,
    SimulatedAssetMover,
    SimulatedConfirmationSource,
    SimulatedMovementQuery,
    StaticAccountDirectory,
)
from .config import ConfirmationConfig, ReconciliationConfig, SettlementConfig
from .orchestrator import SettlementOrchestrator
from .reconciliation import ReconciliationEngine
from .repository import (
    InMemorySettlementRepository,
    SettlementRepository,
    SqlSettlementRepository,
)
from .state_machine import SettlementStateMachine, SettlementTransitionEvent
from .types import (
    BankDetails,
    BankTransferStatus,
    ConfirmationType,
    InstructionDirection,
    InstructionStatus,
    InstructionType,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationRunResult,
    ReconciliationStatus,
    Settlement,
    SettlementConfirmation,
    SettlementInstruction,
    SettlementStatus,
    SettlementType,
    TradeCompletion,
    TradeSide,
)


__all__ = [
    "AccountDirectory",
    "AssetMover",
    "ConfirmationSource",
    "MovementQuery",
    "SimulatedAssetMover",
    "SimulatedConfirmationSource",
    "SimulatedMovementQuery",
    "StaticAccountDirectory",
    "ConfirmationConfig",
    "ReconciliationConfig",
    "SettlementConfig",
    "SettlementOrchestrator",
    "ReconciliationEngine",
    "InMemorySettlementRepository",
    "SettlementRepository",
    "SqlSettlementRepository",
    "SettlementStateMachine",
    "SettlementTransitionEvent",
    "BankDetails",
    "BankTransferStatus",
    "ConfirmationType",
    "InstructionDirection",
    "InstructionStatus",
    "InstructionType",
    "ReconciliationItem",
    "ReconciliationItemType",
    "ReconciliationRunResult",
    "ReconciliationStatus",
    "Settlement",
    "SettlementConfirmation",
    "SettlementInstruction",
    "SettlementStatus",
    "SettlementType",
    "TradeCompletion",
    "TradeSide",
]
