"""
Tests for the admin API.

The engine is wired with in-memory storage and a fixed clock;
background loops are not started.
"""

import inspect
from decimal import Decimal

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from admin_api import create_app
from admin_api.router import router
from container import EngineContainer
from core.clock import MockClock
from settlement.types import ReconciliationItem, ReconciliationItemType
from tests.conftest import FIXED_TIME


@pytest.fixture
def container(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    return EngineContainer(clock=MockClock(FIXED_TIME))


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


def _trade(**overrides):
    body = {
        "trade_id": "trade-1",
        "client_id": "client-1",
        "counterparty_id": "cp-1",
        "symbol": "BTC/USDT",
        "side": "buy",
        "quantity": "1",
        "price": "43250",
    }
    body.update(overrides)
    return body


class TestCreditEndpoints:
    """Profiles, exposures, risk and alerts."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "engine_running": False}

    def test_profile_lifecycle(self, client):
        assert client.get("/risk-settlement/credit/profiles/c1").status_code == 404

        response = client.patch(
            "/risk-settlement/credit/profiles/c1",
            json={"credit_limit": "10000000", "collateral_value": "15000000"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["available_credit"] == "10000000"

        profile = client.get("/risk-settlement/credit/profiles/c1").json()["data"]
        assert profile["tier"] == "standard"

    def test_derived_field_rejected(self, client):
        response = client.patch(
            "/risk-settlement/credit/profiles/c1",
            json={"available_credit": "5"},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error_kind"] == "validation_error"
        assert body["context"]["field"] == "available_credit"

    def test_exposure_and_risk(self, client):
        client.patch(
            "/risk-settlement/credit/profiles/c1",
            json={"credit_limit": "10000000", "collateral_value": "15000000"},
        )

        response = client.post(
            "/risk-settlement/credit/exposures/c1",
            json={"symbol": "BTC/USDT", "notional": "2500000", "margin_used": "1000000"},
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert Decimal(data["totals"]["total_notional"]) == Decimal("2500000")
        assert Decimal(data["profile"]["available_credit"]) == Decimal("7500000")

        risk = client.get("/risk-settlement/credit/risk/c1").json()["data"]
        assert risk["risk_score"] == pytest.approx(31.1666667, rel=1e-6)
        assert client.get("/risk-settlement/credit/risk/nobody").status_code == 404

    def test_alert_acknowledgement(self, client):
        client.patch(
            "/risk-settlement/credit/profiles/c1",
            json={"credit_limit": "1000000000", "collateral_value": "1000000"},
        )
        client.post("/risk-settlement/credit/exposures/c1", json={"symbol": "BTC/USDT", "notional": "12000000"})

        alerts = client.get("/risk-settlement/credit/alerts", params={"client_id": "c1"}).json()["data"]
        assert len(alerts) == 1
        assert alerts[0]["alert_type"] == "credit_breach"
        assert alerts[0]["severity"] == "high"
        alert_id = alerts[0]["alert_id"]

        first = client.post(
            f"/risk-settlement/credit/alerts/{alert_id}/acknowledge",
            json={"acknowledged_by": "ops-1"},
        )
        second = client.post(
            f"/risk-settlement/credit/alerts/{alert_id}/acknowledge",
            json={"acknowledged_by": "ops-2"},
        )
        assert first.status_code == second.status_code == 200
        assert second.json()["data"]["acknowledged_by"] == "ops-1"

        open_alerts = client.get("/risk-settlement/credit/alerts", params={"unacknowledged_only": True})
        assert open_alerts.json()["data"] == []

        missing = client.post(
            "/risk-settlement/credit/alerts/alert_missing/acknowledge",
            json={"acknowledged_by": "ops"},
        )
        assert missing.status_code == 404

    def test_portfolio(self, client):
        client.patch("/risk-settlement/credit/profiles/c1", json={"credit_limit": "100"})

        data = client.get("/risk-settlement/credit/portfolio").json()["data"]

        assert data["total_clients"] == 1
        assert data["total_credit_limit"] == "100"


class TestSettlementEndpoints:
    """Settlement creation, processing and cancellation."""

    def test_create_and_get(self, client):
        response = client.post("/risk-settlement/settlements", json=_trade())
        assert response.status_code == 201
        settlement = response.json()["data"]
        assert settlement["status"] == "pending"
        assert [i["asset"] for i in settlement["instructions"]] == ["USDT", "BTC"]

        fetched = client.get(f"/risk-settlement/settlements/{settlement['settlement_id']}")
        assert fetched.json()["data"]["trade_id"] == "trade-1"

        listed = client.get("/risk-settlement/settlements", params={"client_id": "client-1"})
        assert len(listed.json()["data"]) == 1

    def test_invalid_trade(self, client):
        response = client.post("/risk-settlement/settlements", json=_trade(symbol="BTCUSDT"))

        assert response.status_code == 422
        assert response.json()["error_kind"] == "validation_error"

    def test_process_then_cancel_conflicts(self, client):
        settlement_id = client.post("/risk-settlement/settlements", json=_trade()).json()["data"]["settlement_id"]

        processed = client.post(f"/risk-settlement/settlements/{settlement_id}/process")
        assert processed.status_code == 200
        assert processed.json()["data"]["dispatched"] is True
        assert processed.json()["data"]["settlement"]["status"] == "processing"

        cancelled = client.post(f"/risk-settlement/settlements/{settlement_id}/cancel")
        assert cancelled.status_code == 409
        assert cancelled.json()["error_kind"] == "invalid_state_transition"

    def test_cancel_pending(self, client):
        settlement_id = client.post("/risk-settlement/settlements", json=_trade()).json()["data"]["settlement_id"]

        response = client.post(
            f"/risk-settlement/settlements/{settlement_id}/cancel",
            json={"reason": "Trade busted"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert response.json()["data"]["failure_reason"] == "Trade busted"

    def test_unknown_settlement(self, client):
        assert client.get("/risk-settlement/settlements/stl_missing").status_code == 404
        assert client.post("/risk-settlement/settlements/stl_missing/process").status_code == 404


class TestReconciliationEndpoints:
    """Item listing and investigation."""

    @pytest.fixture
    def item(self, container):
        item = ReconciliationItem(
            item_type=ReconciliationItemType.SETTLEMENT,
            reference="stl_1_PAY_USDT",
            expected_amount=Decimal("100.0000"),
            actual_amount=Decimal("100.0015"),
            difference=Decimal("0.0015"),
            asset="USDT",
            created_at=FIXED_TIME,
        )
        container.settlement_repository.save_item(item)
        return item

    def test_list_and_filter(self, client, item):
        items = client.get("/risk-settlement/reconciliation/items").json()["data"]
        assert [i["item_id"] for i in items] == [item.item_id]
        assert items[0]["difference"] == "0.0015"

        resolved = client.get("/risk-settlement/reconciliation/items", params={"status": "resolved"})
        assert resolved.json()["data"] == []

        assert client.get("/risk-settlement/reconciliation/items", params={"status": "lost"}).status_code == 422

    def test_update_item(self, client, item):
        response = client.patch(
            f"/risk-settlement/reconciliation/items/{item.item_id}",
            json={"status": "investigating", "investigation_notes": "Checking with custodian"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "investigating"

        summary = client.get("/risk-settlement/reconciliation/summary").json()["data"]
        assert summary["by_status"]["investigating"] == 1
        assert summary["open_discrepancies"] == 1

    def test_update_errors(self, client, item):
        client.patch(f"/risk-settlement/reconciliation/items/{item.item_id}", json={"status": "resolved"})

        reopen = client.patch(
            f"/risk-settlement/reconciliation/items/{item.item_id}",
            json={"status": "unmatched"},
        )
        assert reopen.status_code == 409

        unknown_field = client.patch(
            f"/risk-settlement/reconciliation/items/{item.item_id}",
            json={"difference": "0"},
        )
        assert unknown_field.status_code == 422

        missing = client.patch("/risk-settlement/reconciliation/items/rec_missing", json={"status": "resolved"})
        assert missing.status_code == 404


def test_handlers_run_on_event_loop():
    # Sync handlers would run in the threadpool, beside the engine's loop
    endpoints = [route.endpoint for route in router.routes if isinstance(route, APIRoute)]

    assert len(endpoints) == 15
    assert all(inspect.iscoroutinefunction(endpoint) for endpoint in endpoints)
