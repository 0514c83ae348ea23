"""
Tests for the Telegram notifier.

No network access: the HTTP session is replaced with mocks.
"""

from decimal import Decimal

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.events import EngineEvent, EventType
from core.exceptions import Severity
from core.notifications import Notification, NotificationConfig, TelegramNotifier
from credit_risk.types import AlertSeverity, RiskAlert, RiskAlertType


def _fake_session(status: int = 200) -> MagicMock:
    response = MagicMock(status=status)
    response.text = AsyncMock(return_value="error body")

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post.return_value = context
    session.close = AsyncMock()
    return session


@pytest.fixture
def configured_notifier(monkeypatch, clock):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "token")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "chat")
    notifier = TelegramNotifier(NotificationConfig(), clock)
    notifier._session = _fake_session()
    return notifier


@pytest.fixture
def unconfigured_notifier(monkeypatch, clock):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    return TelegramNotifier(NotificationConfig(), clock)


class TestEventMapping:
    """Engine events become notifications."""

    def test_risk_alert(self, unconfigured_notifier, clock):
        alert = RiskAlert(
            client_id="c1",
            alert_type=RiskAlertType.MARGIN_CALL,
            severity=AlertSeverity.CRITICAL,
            message="Margin call threshold exceeded",
            threshold=0.8,
            current_value=0.91,
            timestamp=clock.now(),
        )
        event = EngineEvent(EventType.RISK_ALERT, clock.now(), {"alert": alert})

        notification = unconfigured_notifier.build_notification(event)

        assert notification.severity == Severity.CRITICAL
        assert "margin_call" in notification.title
        assert notification.details["client"] == "c1"

    def test_instruction_failed(self, unconfigured_notifier, clock):
        instruction = MagicMock(reference="stl_1_PAY_USDT", asset="USDT", amount=Decimal("10"))
        event = EngineEvent(
            EventType.INSTRUCTION_FAILED,
            clock.now(),
            {"instruction": instruction, "settlement_id": "stl_1", "reason": "timeout"},
        )

        notification = unconfigured_notifier.build_notification(event)

        assert notification.severity == Severity.HIGH
        assert "stl_1_PAY_USDT" in notification.message

    def test_unforwarded_event(self, unconfigured_notifier, clock):
        event = EngineEvent(EventType.SETTLEMENT_CREATED, clock.now())
        assert unconfigured_notifier.build_notification(event) is None


class TestSending:
    """Delivery, filtering and rate limiting."""

    @pytest.mark.asyncio
    async def test_unconfigured_logs_instead_of_sending(self, unconfigured_notifier):
        sent = await unconfigured_notifier.send(Notification("t", Severity.HIGH, "m"))

        assert sent is False
        assert not unconfigured_notifier.is_configured
        assert len(unconfigured_notifier.get_history()) == 1

    @pytest.mark.asyncio
    async def test_severity_filter(self, configured_notifier):
        sent = await configured_notifier.send(Notification("t", Severity.LOW, "m"))

        assert sent is False
        assert configured_notifier.get_history() == []

    @pytest.mark.asyncio
    async def test_sends_and_rate_limits(self, configured_notifier, clock):
        first = await configured_notifier.send(Notification("a", Severity.HIGH, "m"))
        second = await configured_notifier.send(Notification("b", Severity.HIGH, "m"))
        clock.advance(seconds=2)
        third = await configured_notifier.send(Notification("c", Severity.HIGH, "m"))

        assert (first, second, third) == (True, False, True)
        url = configured_notifier._session.post.call_args[0][0]
        assert url.endswith("/sendMessage")

    @pytest.mark.asyncio
    async def test_api_error_returns_false(self, configured_notifier):
        configured_notifier._session = _fake_session(status=500)
        assert await configured_notifier.send(Notification("t", Severity.HIGH, "m")) is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self, configured_notifier):
        configured_notifier._session.post.side_effect = aiohttp.ClientError("down")
        assert await configured_notifier.send(Notification("t", Severity.HIGH, "m")) is False

    @pytest.mark.asyncio
    async def test_attach_forwards_bus_events(self, unconfigured_notifier, event_bus):
        unconfigured_notifier.attach(event_bus)
        settlement = MagicMock(id="stl_1", trade_id="t1", client_id="c1")

        await event_bus.publish(EventType.SETTLEMENT_FAILED, {"settlement": settlement, "reason": "x"})
        await event_bus.publish(EventType.SETTLEMENT_CREATED, {"settlement": settlement})

        history = unconfigured_notifier.get_history()
        assert len(history) == 1
        assert history[0].severity == Severity.CRITICAL

        await unconfigured_notifier.close()
        assert event_bus.listener_count == 0


class TestConfig:

    def test_from_dict(self):
        config = NotificationConfig.from_dict({"min_severity": "HIGH", "max_per_minute": 5, "unknown": 1})
        assert config.min_severity == Severity.HIGH
        assert config.max_per_minute == 5

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("notifications:\n  enabled: false\n")
        assert NotificationConfig.from_yaml(str(path)).enabled is False

    def test_missing_yaml_uses_defaults(self, tmp_path):
        assert NotificationConfig.from_yaml(str(tmp_path / "missing.yaml")).enabled is True
