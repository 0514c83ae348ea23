"""
Engine Container.

============================================================
RESPONSIBILITY
============================================================
Wires every service of the engine around one clock and one
event bus.

- Credit risk: profile store, exposure ledger, scoring, monitor
- Settlement: orchestrator, reconciliation engine
- Notifications: Telegram notifier attached to the event bus
- Storage: in-memory repositories, or SQLAlchemy when a
  Database is supplied

Background work (risk tick, reconciliation sweep, processing of
settlements whose date has arrived) starts with start() and is
cancelled by stop().

============================================================
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from core.clock import ClockProtocol, SystemClock
from core.database import Database
from core.events import EventBus
from core.notifications import NotificationConfig, TelegramNotifier
from core.scheduler import PeriodicTask
from credit_risk.config import CreditRiskConfig
from credit_risk.ledger import ExposureLedger
from credit_risk.monitor import RiskMonitor
from credit_risk.profiles import CreditProfileStore
from credit_risk.repository import (
    CreditRiskRepository,
    InMemoryCreditRiskRepository,
    SqlCreditRiskRepository,
)
from credit_risk.scoring import RiskScoringEngine
from settlement.collaborators import (
    AccountDirectory,
    AssetMover,
    ConfirmationSource,
    MovementQuery,
    SimulatedAssetMover,
    SimulatedConfirmationSource,
    SimulatedMovementQuery,
    StaticAccountDirectory,
)
from settlement.config import SettlementConfig
from settlement.orchestrator import SettlementOrchestrator
from settlement.reconciliation import ReconciliationEngine
from settlement.repository import (
    InMemorySettlementRepository,
    SettlementRepository,
    SqlSettlementRepository,
)


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Configuration for every subsystem."""

    credit_risk: CreditRiskConfig = field(default_factory=CreditRiskConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            credit_risk=CreditRiskConfig.from_env(),
            settlement=SettlementConfig.from_env(),
            notifications=NotificationConfig.from_env(),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load each subsystem from its section of one YAML file."""
        return cls(
            credit_risk=CreditRiskConfig.from_yaml(path),
            settlement=SettlementConfig.from_yaml(path),
            notifications=NotificationConfig.from_yaml(str(path)),
        )


class EngineContainer:
    """
    All engine services, wired.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Optional[ClockProtocol] = None,
        database: Optional[Database] = None,
        asset_mover: Optional[AssetMover] = None,
        confirmation_source: Optional[ConfirmationSource] = None,
        movement_query: Optional[MovementQuery] = None,
        account_directory: Optional[AccountDirectory] = None,
        due_interval_seconds: float = 60.0,
    ):
        """
        Initialize container.

        Args:
            config: Engine configuration (defaults if None)
            clock: Shared clock (system clock if None)
            database: SQL storage; in-memory repositories if None
            asset_mover: Transfer dispatcher (simulated if None)
            confirmation_source: Depth/bank status (simulated if None)
            movement_query: Actual movement lookup (simulated if None)
            account_directory: Destinations (static if None)
            due_interval_seconds: How often due T+1 settlements are processed
        """
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.event_bus = EventBus(self.clock)
        self.database = database

        self.credit_repository: CreditRiskRepository
        self.settlement_repository: SettlementRepository
        if database is not None:
            database.create_all()
            self.credit_repository = SqlCreditRiskRepository(database)
            self.settlement_repository = SqlSettlementRepository(database)
        else:
            self.credit_repository = InMemoryCreditRiskRepository()
            self.settlement_repository = InMemorySettlementRepository()

        self.asset_mover = asset_mover or SimulatedAssetMover()
        self.confirmation_source = confirmation_source or SimulatedConfirmationSource()
        self.movement_query = movement_query or SimulatedMovementQuery()
        self.account_directory = account_directory or StaticAccountDirectory()

        # Credit risk
        self.profiles = CreditProfileStore(self.credit_repository, self.event_bus, self.clock)
        self.ledger = ExposureLedger(self.credit_repository, self.profiles, self.event_bus, self.clock)
        self.scoring = RiskScoringEngine(self.credit_repository, self.config.credit_risk, self.clock)
        self.risk_monitor = RiskMonitor(
            self.credit_repository,
            self.profiles,
            self.scoring,
            self.event_bus,
            self.clock,
            self.config.credit_risk,
        )

        # Settlement
        self.reconciliation = ReconciliationEngine(
            self.settlement_repository,
            self.movement_query,
            self.event_bus,
            self.clock,
            self.config.settlement.reconciliation,
        )
        self.settlements = SettlementOrchestrator(
            self.settlement_repository,
            self.asset_mover,
            self.confirmation_source,
            self.account_directory,
            self.event_bus,
            self.clock,
            self.config.settlement,
            reconciler=self.reconciliation,
        )

        # Notifications
        self.notifier = TelegramNotifier(self.config.notifications, self.clock)
        self.notifier.attach(self.event_bus)

        self._due_task = PeriodicTask(
            "due-settlements",
            due_interval_seconds,
            self.settlements.process_due_settlements,
        )

        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start background loops and resume trackers for in-flight instructions."""
        if self._started:
            return
        await self.risk_monitor.start()
        await self.reconciliation.start()
        await self.settlements.resume_tracking()
        await self._due_task.start()
        self._started = True
        logger.info("Engine started")

    async def stop(self) -> None:
        """Stop background work and release resources."""
        await self.risk_monitor.stop()
        await self.reconciliation.stop()
        await self._due_task.stop()
        await self.settlements.stop()
        await self.notifier.close()
        if self.database is not None:
            self.database.dispose("engine stopped")
        self._started = False
        logger.info("Engine stopped")
