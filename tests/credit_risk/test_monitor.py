"""
Tests for the risk monitor: limit checks, alerts and aggregates.
"""

import asyncio
from decimal import Decimal

import pytest

from core.events import EventType
from credit_risk.config import CreditRiskConfig, RiskMonitorConfig
from credit_risk.monitor import RiskMonitor
from credit_risk.types import AlertSeverity, RiskAlertType


async def _leveraged_client(profiles, ledger, client_id="c1"):
    await profiles.update_profile(client_id, credit_limit=1_000_000_000, collateral_value=1_000_000)
    await ledger.add_exposure(client_id, {"symbol": "BTC/USDT", "notional": 12_000_000})


class TestLimitChecks:
    """Alerts raised by limit breaches."""

    @pytest.mark.asyncio
    async def test_leverage_breach_from_exposure_event(self, monitor, profiles, ledger):
        await _leveraged_client(profiles, ledger)

        alerts = monitor.get_risk_alerts("c1")

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.alert_type == RiskAlertType.CREDIT_BREACH
        assert alert.severity == AlertSeverity.HIGH
        assert alert.threshold == 10
        assert alert.current_value == pytest.approx(12.0)
        assert alert.acknowledged is False

    @pytest.mark.asyncio
    async def test_margin_call_on_profile_update(self, monitor, profiles):
        profile = await profiles.update_profile(
            "c1", credit_limit=1_000_000, margin_requirement=900_000
        )

        alerts = monitor.get_risk_alerts("c1")
        assert [a.alert_type for a in alerts] == [RiskAlertType.MARGIN_CALL]
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alerts[0].current_value == pytest.approx(0.9)
        assert profile.risk_score == pytest.approx(18.0)

    @pytest.mark.asyncio
    async def test_concentration_breach(self, monitor, profiles, ledger):
        await profiles.update_profile("c1", credit_limit=1_000_000)
        await ledger.add_exposure("c1", {"symbol": "ETH/USDT", "notional": 300_000})

        alerts = monitor.get_risk_alerts("c1")
        assert [a.alert_type for a in alerts] == [RiskAlertType.CONCENTRATION]
        assert alerts[0].threshold == 0.25

    @pytest.mark.asyncio
    async def test_no_alert_within_limits(self, monitor, profiles, ledger):
        await profiles.update_profile("c1", credit_limit=10_000_000, collateral_value=15_000_000)
        await ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 2_500_000, "margin_used": 1_000_000})

        assert monitor.get_risk_alerts("c1") == []
        profile, _ = profiles.get_profile("c1")
        assert profile.risk_score == pytest.approx(31.1666667, rel=1e-6)

    @pytest.mark.asyncio
    async def test_repeat_evaluations_are_not_deduplicated(self, monitor, profiles, ledger):
        await _leveraged_client(profiles, ledger)
        await monitor.check_client("c1")

        assert len(monitor.get_risk_alerts("c1")) == 2

    @pytest.mark.asyncio
    async def test_unknown_client(self, monitor):
        assert await monitor.check_client("nobody") == []

    @pytest.mark.asyncio
    async def test_alert_published(self, monitor, profiles, ledger, event_bus):
        await _leveraged_client(profiles, ledger)

        events = event_bus.get_history(EventType.RISK_ALERT)
        assert len(events) == 1
        assert events[0].payload["alert"].client_id == "c1"
        assert events[0].payload["snapshot"].leverage == pytest.approx(12.0)


class TestAcknowledge:
    """Acknowledgement is recorded once."""

    @pytest.mark.asyncio
    async def test_acknowledge_twice(self, monitor, profiles, ledger, clock):
        await _leveraged_client(profiles, ledger)
        alert_id = monitor.get_risk_alerts("c1")[0].alert_id

        assert await monitor.acknowledge_alert(alert_id, "ops-1") is True
        first_ack = monitor.get_acknowledgement(alert_id)

        clock.advance(seconds=60)
        assert await monitor.acknowledge_alert(alert_id, "ops-2") is True

        assert monitor.get_risk_alerts("c1")[0].acknowledged is True
        assert monitor.get_acknowledgement(alert_id) == first_ack
        assert first_ack.acknowledged_by == "ops-1"

    @pytest.mark.asyncio
    async def test_unknown_alert(self, monitor):
        assert await monitor.acknowledge_alert("alert_missing", "ops") is False

    @pytest.mark.asyncio
    async def test_unacknowledged_filter(self, monitor, profiles, ledger):
        await _leveraged_client(profiles, ledger)
        await monitor.check_client("c1")
        first = monitor.get_risk_alerts("c1")[0]

        await monitor.acknowledge_alert(first.alert_id, "ops")

        open_alerts = monitor.get_risk_alerts(unacknowledged_only=True)
        assert len(open_alerts) == 1
        assert open_alerts[0].alert_id != first.alert_id


class TestAggregates:
    """Portfolio view and sweeps."""

    @pytest.mark.asyncio
    async def test_portfolio_risk(self, monitor, profiles, ledger):
        await _leveraged_client(profiles, ledger, "c1")
        await profiles.update_profile("c2", credit_limit=1_000_000)

        portfolio = monitor.get_portfolio_risk()

        assert portfolio.total_clients == 2
        assert portfolio.total_credit_limit == Decimal("1001000000")
        assert portfolio.total_credit_used == Decimal("12000000")
        assert portfolio.risk_distribution["low"] == 2
        assert portfolio.active_alerts == 1
        assert portfolio.alerts_by_severity["high"] == 1
        assert portfolio.critical_alerts == 0

    def test_empty_portfolio(self, monitor):
        portfolio = monitor.get_portfolio_risk()
        assert portfolio.total_clients == 0
        assert portfolio.average_risk_score == 0.0
        assert portfolio.credit_utilization == 0.0

    @pytest.mark.asyncio
    async def test_run_sweep(self, monitor, profiles, ledger):
        await _leveraged_client(profiles, ledger, "c1")
        await _leveraged_client(profiles, ledger, "c2")

        assert await monitor.run_sweep() == 2

    @pytest.mark.asyncio
    async def test_real_time_risk(self, monitor, profiles, ledger):
        await _leveraged_client(profiles, ledger)

        snapshot = monitor.calculate_real_time_risk("c1")
        assert snapshot.leverage == pytest.approx(12.0)
        assert monitor.calculate_real_time_risk("nobody") is None


class TestConcurrentChecks:
    """Profile updates racing with risk checks for the same client."""

    @pytest.mark.asyncio
    async def test_update_races_check(self, monitor, profiles, ledger, scoring):
        await profiles.update_profile("c1", credit_limit=1_000_000)
        await ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 600_000})

        await asyncio.gather(
            monitor.check_client("c1"),
            profiles.update_profile("c1", credit_limit=2_000_000),
            monitor.check_client("c1"),
        )

        profile, _ = profiles.get_profile("c1")
        assert profile.credit_limit == Decimal("2000000")
        assert profile.used_credit == Decimal("600000")
        assert profile.available_credit + profile.used_credit == profile.credit_limit
        assert profile.risk_score == pytest.approx(scoring.calculate_risk("c1").risk_score)

    @pytest.mark.asyncio
    async def test_check_and_update_wait_for_lock(self, monitor, profiles, ledger, scoring):
        await profiles.update_profile("c1", credit_limit=1_000_000)
        await ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 600_000})
        before, _ = profiles.get_profile("c1")

        async with profiles.locks.hold("c1"):
            check = asyncio.create_task(monitor.check_client("c1"))
            update = asyncio.create_task(profiles.update_profile("c1", credit_limit=4_000_000))
            await asyncio.sleep(0)
            held, _ = profiles.get_profile("c1")
            assert held.credit_limit == before.credit_limit
            assert held.risk_score == before.risk_score

        await asyncio.gather(check, update)

        profile, _ = profiles.get_profile("c1")
        assert profile.credit_limit == Decimal("4000000")
        assert profile.available_credit == Decimal("3400000")
        assert profile.risk_score == pytest.approx(scoring.calculate_risk("c1").risk_score)
        assert len(profiles.locks) == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_stop(self, monitor):
        await monitor.start()
        assert monitor.is_running
        await monitor.stop()
        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_disabled(self, repository, profiles, scoring, event_bus, clock):
        config = CreditRiskConfig(monitor=RiskMonitorConfig(enabled=False))
        monitor = RiskMonitor(repository, profiles, scoring, event_bus, clock, config)

        await monitor.start()
        assert not monitor.is_running
