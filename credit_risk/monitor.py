"""
Credit Risk - Risk Monitor.

============================================================
PURPOSE
============================================================
Re-evaluates client risk and raises alerts on limit breaches.

TRIGGERS:
- Periodic sweep over all known clients (default every 30s)
- EXPOSURE_ADDED events (immediate re-check)
- Admin profile updates (synchronous re-check)

LIMIT CHECKS (independent, one alert per breach per evaluation):
- margin_utilization > margin_call_threshold  -> margin_call, critical
- max_concentration  > concentration_limit    -> concentration, high
- leverage           > leverage_limit         -> credit_breach, high

Alerts are never deduplicated across evaluations and never
deleted. Acknowledgement is recorded exactly once.

============================================================
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from core.clock import ClockProtocol
from core.events import EngineEvent, EventBus, EventType
from core.scheduler import PeriodicTask

from .config import CreditRiskConfig
from .profiles import CreditProfileStore
from .repository import CreditRiskRepository
from .scoring import RiskScoringEngine, safe_ratio
from .types import (
    AlertAcknowledgement,
    AlertSeverity,
    PortfolioRisk,
    RiskAlert,
    RiskAlertType,
    RiskSnapshot,
)


logger = logging.getLogger(__name__)


class RiskMonitor:
    """
    Periodic and event-driven risk limit monitor.
    """

    def __init__(
        self,
        repository: CreditRiskRepository,
        profiles: CreditProfileStore,
        scoring: RiskScoringEngine,
        event_bus: EventBus,
        clock: ClockProtocol,
        config: Optional[CreditRiskConfig] = None,
    ):
        """
        Initialize monitor.

        Subscribes to EXPOSURE_ADDED and registers itself as the
        profile store's risk checker.
        """
        self._repository = repository
        self._profiles = profiles
        self._scoring = scoring
        self._event_bus = event_bus
        self._clock = clock
        self._config = config or scoring.config

        self._task = PeriodicTask(
            name="risk-monitor",
            interval_seconds=self._config.monitor.interval_seconds,
            func=self.run_sweep,
        )

        self._unsubscribe = event_bus.subscribe(self._on_exposure_added, [EventType.EXPOSURE_ADDED])
        profiles.set_risk_checker(self.check_client)

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    async def start(self) -> None:
        """Start the periodic sweep."""
        if not self._config.monitor.enabled:
            logger.info("Risk monitor disabled by configuration")
            return
        await self._task.start()

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        await self._task.stop()

    async def run_sweep(self) -> int:
        """
        Check every known client once.

        A failure for one client is logged and the sweep continues.

        Returns:
            Number of alerts raised
        """
        raised = 0
        for client_id in self._profiles.list_client_ids():
            try:
                raised += len(await self.check_client(client_id))
            except Exception as e:
                logger.error(f"Risk check failed for {client_id}: {e}")

        logger.debug(f"Risk sweep complete: {raised} alerts")
        return raised

    async def _on_exposure_added(self, event: EngineEvent) -> None:
        await self.check_client(event.payload["client_id"])

    # --------------------------------------------------------
    # CHECKS
    # --------------------------------------------------------

    async def check_client(self, client_id: str) -> List[RiskAlert]:
        """
        Score a client and raise alerts for every breached limit.

        The computed score is written back to the profile.

        Returns:
            Alerts raised by this evaluation
        """
        async with self._profiles.locks.hold(client_id):
            snapshot = self._scoring.calculate_risk(client_id)
            if snapshot is None:
                return []
            self._profiles.record_risk_score(client_id, snapshot.risk_score)

        alerts = self.evaluate_limits(snapshot)

        for alert in alerts:
            self._repository.save_alert(alert)
            logger.warning(
                f"Risk alert {alert.alert_type.value} ({alert.severity.value}) for {client_id}: "
                f"{alert.current_value:.4f} > {alert.threshold}"
            )
            await self._event_bus.publish(
                EventType.RISK_ALERT,
                {"client_id": client_id, "alert": alert, "snapshot": snapshot},
            )

        return alerts

    def evaluate_limits(self, snapshot: RiskSnapshot) -> List[RiskAlert]:
        """Build alerts for every limit the snapshot breaches."""
        limits = self._config.limits
        now = self._clock.now()
        alerts = []

        if snapshot.margin_utilization > limits.margin_call_threshold:
            alerts.append(RiskAlert(
                client_id=snapshot.client_id,
                alert_type=RiskAlertType.MARGIN_CALL,
                severity=AlertSeverity.CRITICAL,
                message="Margin call threshold exceeded",
                threshold=limits.margin_call_threshold,
                current_value=snapshot.margin_utilization,
                timestamp=now,
            ))

        if snapshot.max_concentration > limits.concentration_limit:
            alerts.append(RiskAlert(
                client_id=snapshot.client_id,
                alert_type=RiskAlertType.CONCENTRATION,
                severity=AlertSeverity.HIGH,
                message="Position concentration limit exceeded",
                threshold=limits.concentration_limit,
                current_value=snapshot.max_concentration,
                timestamp=now,
            ))

        if snapshot.leverage > limits.leverage_limit:
            alerts.append(RiskAlert(
                client_id=snapshot.client_id,
                alert_type=RiskAlertType.CREDIT_BREACH,
                severity=AlertSeverity.HIGH,
                message="Leverage limit exceeded",
                threshold=limits.leverage_limit,
                current_value=snapshot.leverage,
                timestamp=now,
            ))

        return alerts

    # --------------------------------------------------------
    # ALERTS
    # --------------------------------------------------------

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> bool:
        """
        Acknowledge an alert.

        Returns:
            False if the alert is unknown. True otherwise, including
            when it was already acknowledged (state is then unchanged).
        """
        alert = self._repository.get_alert(alert_id)
        if alert is None:
            return False
        if alert.acknowledged:
            return True

        acknowledged = replace(alert, acknowledged=True)
        ack = AlertAcknowledgement(
            alert_id=alert_id,
            acknowledged_by=acknowledged_by,
            acknowledged_at=self._clock.now(),
        )
        self._repository.save_alert(acknowledged)
        self._repository.save_acknowledgement(ack)

        logger.info(f"Alert {alert_id} acknowledged by {acknowledged_by}")
        await self._event_bus.publish(
            EventType.ALERT_ACKNOWLEDGED,
            {"alert": acknowledged, "acknowledgement": ack},
        )
        return True

    def get_risk_alerts(
        self,
        client_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> List[RiskAlert]:
        """Stored alerts, optionally filtered."""
        return self._repository.list_alerts(client_id, unacknowledged_only)

    def get_acknowledgement(self, alert_id: str) -> Optional[AlertAcknowledgement]:
        """Audit record for an acknowledged alert."""
        return self._repository.get_acknowledgement(alert_id)

    # --------------------------------------------------------
    # AGGREGATES
    # --------------------------------------------------------

    def calculate_real_time_risk(self, client_id: str) -> Optional[RiskSnapshot]:
        """Fresh snapshot for one client (None if unknown)."""
        return self._scoring.calculate_risk(client_id)

    def get_portfolio_risk(self) -> PortfolioRisk:
        """Aggregate credit and risk figures across every client."""
        monitor_config = self._config.monitor
        result = PortfolioRisk()

        scores: List[float] = []
        for profile in self._repository.list_profiles():
            snapshot = self._scoring.score(profile, self._repository.get_exposures(profile.client_id))
            scores.append(snapshot.risk_score)

            result.total_credit_limit += profile.credit_limit
            result.total_credit_used += profile.used_credit

            if snapshot.risk_score < monitor_config.low_risk_below:
                result.risk_distribution["low"] += 1
            elif snapshot.risk_score < monitor_config.high_risk_from:
                result.risk_distribution["medium"] += 1
            else:
                result.risk_distribution["high"] += 1

        result.total_clients = len(scores)
        result.average_risk_score = sum(scores) / len(scores) if scores else 0.0
        result.credit_utilization = safe_ratio(result.total_credit_used, result.total_credit_limit)

        unresolved = self._repository.list_alerts(unacknowledged_only=True)
        by_severity: Dict[str, int] = {s.value: 0 for s in AlertSeverity}
        for alert in unresolved:
            by_severity[alert.severity.value] += 1

        result.active_alerts = len(unresolved)
        result.critical_alerts = by_severity[AlertSeverity.CRITICAL.value]
        result.alerts_by_severity = by_severity
        return result
