"""
Tests for engine wiring and the command line entry point.
"""

import pytest

from app import build_container, create_parser
from container import EngineConfig, EngineContainer
from core.clock import MockClock
from core.database import Database
from core.exceptions import Severity
from credit_risk.repository import SqlCreditRiskRepository
from settlement.types import SettlementStatus
from tests.conftest import FIXED_TIME


@pytest.fixture(autouse=True)
def no_telegram(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)


class TestEngineContainer:
    """Wiring and lifecycle."""

    @pytest.mark.asyncio
    async def test_start_stop(self):
        container = EngineContainer(clock=MockClock(FIXED_TIME))

        await container.start()
        assert container.is_running
        assert container.risk_monitor.is_running
        assert container.reconciliation.is_running

        await container.stop()
        assert not container.is_running
        assert not container.risk_monitor.is_running
        assert not container.reconciliation.is_running

    @pytest.mark.asyncio
    async def test_alerts_reach_notifier(self):
        container = EngineContainer(clock=MockClock(FIXED_TIME))

        await container.profiles.update_profile("c1", credit_limit=1_000_000_000, collateral_value=1_000_000)
        await container.ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 12_000_000})

        history = container.notifier.get_history()
        assert len(history) == 1
        assert history[0].severity == Severity.HIGH
        await container.stop()

    @pytest.mark.asyncio
    async def test_sql_storage(self):
        clock = MockClock(FIXED_TIME)
        container = EngineContainer(clock=clock, database=Database.in_memory())
        assert isinstance(container.credit_repository, SqlCreditRiskRepository)

        settlement = await container.settlements.create_settlement({
            "tradeId": "t1",
            "clientId": "c1",
            "counterpartyId": "cp1",
            "symbol": "ETH/USD",
            "side": "sell",
            "quantity": "2",
            "price": "2500",
        })

        stored = container.settlements.get_settlement(settlement.id)
        assert stored.status == SettlementStatus.PENDING
        assert [i.asset for i in stored.instructions] == ["ETH", "USD"]
        await container.stop()

    @pytest.mark.asyncio
    async def test_start_resumes_in_flight_settlements(self):
        clock = MockClock(FIXED_TIME)
        database = Database.in_memory()
        first = EngineContainer(clock=clock, database=database)
        settlement = await first.settlements.create_settlement({
            "tradeId": "t1",
            "clientId": "c1",
            "counterpartyId": "cp1",
            "symbol": "ETH/USD",
            "side": "sell",
            "quantity": "2",
            "price": "2500",
        })
        await first.settlements.process_settlement(settlement.id)
        await first.settlements.stop()

        second = EngineContainer(clock=clock, database=database)
        await second.start()

        assert second.settlements.pending_trackers == 2
        assert second.settlements.get_settlement(settlement.id).status == SettlementStatus.PROCESSING
        await second.stop()


class TestEngineConfig:

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "credit_risk:\n"
            "  limits:\n"
            "    leverage_limit: 4\n"
            "settlement:\n"
            "  fiat_assets: [usd, chf]\n"
            "  reconciliation:\n"
            "    tolerance: '0.01'\n"
            "notifications:\n"
            "  min_severity: high\n"
        )

        config = EngineConfig.from_yaml(path)

        assert config.credit_risk.limits.leverage_limit == 4
        assert config.settlement.fiat_assets == {"USD", "CHF"}
        assert str(config.settlement.reconciliation.tolerance) == "0.01"
        assert config.notifications.min_severity == Severity.HIGH


class TestCli:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("RUNTIME_MODE", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        args = create_parser().parse_args([])

        assert args.mode == "engine"
        assert args.port == 8000
        assert args.log_level == "INFO"
        assert args.persist is False

    def test_build_container(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("credit_risk:\n  monitor:\n    interval_seconds: 5\n")

        args = create_parser().parse_args(["--mode", "api", "--config", str(path)])
        container = build_container(args)

        assert container.config.credit_risk.monitor.interval_seconds == 5
        assert container.database is None

    def test_rejects_unknown_mode(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--mode", "backtest"])
