"""
Tests for the credit risk repositories.
"""

import threading
from dataclasses import replace
from decimal import Decimal

import pytest

from core.database import Database
from credit_risk import (
    CreditProfileStore,
    ExposureLedger,
    RiskMonitor,
    RiskScoringEngine,
    SqlCreditRiskRepository,
)
from credit_risk.types import (
    AlertAcknowledgement,
    AlertSeverity,
    ClientExposure,
    CreditProfile,
    CreditTier,
    RiskAlert,
    RiskAlertType,
)


@pytest.fixture
def sql_repository():
    database = Database.in_memory()
    database.create_all()
    yield SqlCreditRiskRepository(database)
    database.dispose()


class TestInMemoryCreditRiskRepository:
    """Reads from another thread during writes."""

    def test_list_profiles_during_writes(self, repository):
        errors = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                try:
                    repository.list_profiles()
                    repository.list_alerts()
                except Exception as e:
                    errors.append(e)
                    return

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for i in range(5000):
                repository.save_profile(CreditProfile(client_id=f"c{i}"))
        finally:
            done.set()
            thread.join()

        assert errors == []
        assert len(repository.list_profiles()) == 5000


class TestSqlCreditRiskRepository:
    """Round trips through SQLite."""

    def test_profile(self, sql_repository, clock):
        profile = CreditProfile(
            client_id="c1",
            credit_limit=Decimal("1000.5"),
            used_credit=Decimal("200"),
            tier=CreditTier.PRIME,
            last_updated=clock.now(),
        )
        profile.recompute_available()
        sql_repository.save_profile(profile)

        stored = sql_repository.get_profile("c1")
        assert stored.credit_limit == Decimal("1000.5")
        assert stored.available_credit == Decimal("800.5")
        assert stored.tier == CreditTier.PRIME
        assert stored.last_updated == clock.now()
        assert sql_repository.get_profile("nobody") is None

    def test_exposures_keep_insert_order(self, sql_repository):
        for symbol in ("BTC/USDT", "ETH/USDT", "BTC/USDT"):
            sql_repository.append_exposure(
                ClientExposure(client_id="c1", symbol=symbol, notional=Decimal("1"))
            )

        exposures = sql_repository.get_exposures("c1")
        assert [e.symbol for e in exposures] == ["BTC/USDT", "ETH/USDT", "BTC/USDT"]
        assert sql_repository.get_exposures("c2") == []

    def test_alerts_and_acknowledgement(self, sql_repository, clock):
        alert = RiskAlert(
            client_id="c1",
            alert_type=RiskAlertType.CONCENTRATION,
            severity=AlertSeverity.HIGH,
            message="Position concentration limit exceeded",
            threshold=0.25,
            current_value=0.3,
            timestamp=clock.now(),
        )
        sql_repository.save_alert(alert)
        assert sql_repository.get_alert(alert.alert_id) == alert

        sql_repository.save_alert(replace(alert, acknowledged=True))
        sql_repository.save_acknowledgement(
            AlertAcknowledgement(alert.alert_id, "ops", clock.now())
        )

        assert sql_repository.list_alerts(unacknowledged_only=True) == []
        assert sql_repository.list_alerts("c1")[0].acknowledged is True
        assert sql_repository.get_acknowledgement(alert.alert_id).acknowledged_by == "ops"


class TestSqlEndToEnd:

    @pytest.mark.asyncio
    async def test_leverage_breach(self, sql_repository, event_bus, clock):
        profiles = CreditProfileStore(sql_repository, event_bus, clock)
        ledger = ExposureLedger(sql_repository, profiles, event_bus, clock)
        scoring = RiskScoringEngine(sql_repository, clock=clock)
        monitor = RiskMonitor(sql_repository, profiles, scoring, event_bus, clock)

        await profiles.update_profile("c1", credit_limit=1_000_000_000, collateral_value=1_000_000)
        await ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 12_000_000})

        alerts = monitor.get_risk_alerts("c1")
        assert len(alerts) == 1
        assert alerts[0].current_value == pytest.approx(12.0)

        profile, _ = profiles.get_profile("c1")
        assert profile.used_credit + profile.available_credit == profile.credit_limit
