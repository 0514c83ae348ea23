"""
Core Module - Notifications.

============================================================
PURPOSE
============================================================
Forwards alert-worthy engine events to Telegram.

FORWARDED EVENTS:
- RISK_ALERT (limit breaches)
- RECONCILIATION_DISCREPANCY (expected vs actual mismatch)
- INSTRUCTION_FAILED (partial settlement risk)
- SETTLEMENT_FAILED (dispatch failure)

BEHAVIOUR:
- Severity filter and rate limiting
- Without credentials the notification is logged, not sent
- Network failures are logged and never reach the publisher

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiohttp
import yaml
from dotenv import load_dotenv

from .clock import ClockProtocol, SystemClock
from .events import EngineEvent, EventBus, EventType
from .exceptions import Severity


logger = logging.getLogger(__name__)


SEVERITY_ORDER = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

SEVERITY_EMOJI = {
    Severity.LOW: "ℹ️",
    Severity.MEDIUM: "⚠️",
    Severity.HIGH: "❌",
    Severity.CRITICAL: "🚨",
}


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class NotificationConfig:
    """Configuration for outbound notifications."""

    enabled: bool = True
    """Whether notifications are enabled."""

    telegram_bot_token_env: str = "TELEGRAM_BOT_TOKEN"
    """Environment variable for Telegram bot token."""

    telegram_chat_id_env: str = "TELEGRAM_CHAT_ID"
    """Environment variable for Telegram chat ID."""

    min_severity: Severity = Severity.MEDIUM
    """Minimum severity to send."""

    min_interval_seconds: float = 1.0
    """Minimum interval between messages."""

    max_per_minute: int = 20
    """Maximum messages per minute."""

    request_timeout_seconds: float = 10.0
    """HTTP timeout for the Telegram API."""

    @classmethod
    def from_env(cls) -> "NotificationConfig":
        """Load config from environment variables."""
        load_dotenv()
        config = cls()
        if os.getenv("NOTIFICATIONS_ENABLED"):
            config.enabled = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
        if os.getenv("NOTIFICATIONS_MIN_SEVERITY"):
            config.min_severity = Severity(os.getenv("NOTIFICATIONS_MIN_SEVERITY").lower())
        if os.getenv("NOTIFICATIONS_MAX_PER_MINUTE"):
            config.max_per_minute = int(os.getenv("NOTIFICATIONS_MAX_PER_MINUTE"))
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationConfig":
        """Build config from a mapping (YAML section)."""
        config = cls()
        for key, value in data.items():
            if key == "min_severity":
                value = Severity(str(value).lower())
            if hasattr(config, key):
                setattr(config, key, value)
        return config

    @classmethod
    def from_yaml(cls, path: str) -> "NotificationConfig":
        """Load config from the notifications section of a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()
        return cls.from_dict(data.get("notifications", {}))


@dataclass
class Notification:
    """A message to deliver."""

    title: str
    severity: Severity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================
# TELEGRAM NOTIFIER
# ============================================================

class TelegramNotifier:
    """
    Sends engine notifications via Telegram.
    """

    def __init__(
        self,
        config: NotificationConfig,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize notifier.

        Args:
            config: Notification configuration
            clock: Clock used for rate limiting
        """
        self._config = config
        self._clock = clock or SystemClock()

        self._bot_token = os.environ.get(config.telegram_bot_token_env, "")
        self._chat_id = os.environ.get(config.telegram_chat_id_env, "")

        self._last_sent: Optional[datetime] = None
        self._sent_this_minute: List[datetime] = []
        self._session: Optional[aiohttp.ClientSession] = None

        self._history: List[Notification] = []
        self._max_history = 100
        self._unsubscribe = None

    @property
    def is_configured(self) -> bool:
        """Check if Telegram credentials are present."""
        return bool(self._bot_token and self._chat_id)

    def attach(self, event_bus: EventBus) -> None:
        """Subscribe to alert-worthy events."""
        self._unsubscribe = event_bus.subscribe(
            self.handle_event,
            [
                EventType.RISK_ALERT,
                EventType.RECONCILIATION_DISCREPANCY,
                EventType.INSTRUCTION_FAILED,
                EventType.SETTLEMENT_FAILED,
            ],
        )

    def detach(self) -> None:
        """Remove the event subscription."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    async def handle_event(self, event: EngineEvent) -> bool:
        """Convert an event into a notification and send it."""
        notification = self.build_notification(event)
        if notification is None:
            return False
        return await self.send(notification)

    def build_notification(self, event: EngineEvent) -> Optional[Notification]:
        """Map an engine event to a notification, None if not forwarded."""
        payload = event.payload

        if event.event_type == EventType.RISK_ALERT:
            alert = payload["alert"]
            return Notification(
                title=f"RISK ALERT: {alert.alert_type.value}",
                severity=Severity(alert.severity.value),
                message=alert.message,
                details={
                    "client": alert.client_id,
                    "threshold": alert.threshold,
                    "current": round(alert.current_value, 4),
                },
                timestamp=event.timestamp,
            )

        if event.event_type == EventType.RECONCILIATION_DISCREPANCY:
            item = payload["item"]
            return Notification(
                title="RECONCILIATION DISCREPANCY",
                severity=Severity.HIGH,
                message=f"{item.reference}: expected {item.expected_amount} {item.asset}, got {item.actual_amount}",
                details={"difference": item.difference, "settlement": payload.get("settlement_id")},
                timestamp=event.timestamp,
            )

        if event.event_type == EventType.INSTRUCTION_FAILED:
            instruction = payload["instruction"]
            return Notification(
                title="INSTRUCTION FAILED",
                severity=Severity.HIGH,
                message=f"Partial settlement risk: {instruction.reference} failed",
                details={
                    "settlement": payload.get("settlement_id"),
                    "asset": instruction.asset,
                    "amount": instruction.amount,
                    "reason": payload.get("reason", ""),
                },
                timestamp=event.timestamp,
            )

        if event.event_type == EventType.SETTLEMENT_FAILED:
            settlement = payload["settlement"]
            return Notification(
                title="SETTLEMENT FAILED",
                severity=Severity.CRITICAL,
                message=f"Settlement {settlement.id} for trade {settlement.trade_id} failed",
                details={"client": settlement.client_id, "reason": payload.get("reason", "")},
                timestamp=event.timestamp,
            )

        return None

    async def send(self, notification: Notification) -> bool:
        """
        Send a notification.

        Returns:
            Whether the message was delivered
        """
        if not self._config.enabled:
            return False

        if SEVERITY_ORDER[notification.severity] < SEVERITY_ORDER[self._config.min_severity]:
            return False

        self._history.append(notification)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        if not self._can_send():
            logger.warning(f"Notification rate limited: {notification.title}")
            return False

        if not self.is_configured:
            logger.info(f"Telegram not configured, notification: {notification.title} | {notification.message}")
            return False

        return await self._send_telegram(notification)

    async def _send_telegram(self, notification: Notification) -> bool:
        text = self.format_message(notification)

        try:
            if self._session is None:
                timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
                self._session = aiohttp.ClientSession(timeout=timeout)

            url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
            payload = {
                "chat_id": self._chat_id,
                "text": text,
                "parse_mode": "HTML",
            }

            async with self._session.post(url, json=payload) as response:
                if response.status == 200:
                    self._record_sent()
                    logger.info(f"Notification sent: {notification.title}")
                    return True
                body = await response.text()
                logger.error(f"Telegram API error {response.status}: {body}")
                return False

        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Failed to send Telegram notification: {e}")
            return False

    def format_message(self, notification: Notification) -> str:
        """Format a notification as Telegram HTML."""
        emoji = SEVERITY_EMOJI.get(notification.severity, "📢")
        lines = [
            f"{emoji} <b>{notification.title}</b>",
            f"<b>Severity:</b> {notification.severity.value.upper()}",
            f"<b>Time:</b> {notification.timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "",
            notification.message,
        ]

        if notification.details:
            lines.append("\n<b>Details:</b>")
            for key, value in notification.details.items():
                lines.append(f"  • {key}: {value}")

        return "\n".join(lines)

    def _can_send(self) -> bool:
        now = self._clock.now()

        if self._last_sent:
            elapsed = (now - self._last_sent).total_seconds()
            if elapsed < self._config.min_interval_seconds:
                return False

        minute_ago = now - timedelta(minutes=1)
        self._sent_this_minute = [t for t in self._sent_this_minute if t > minute_ago]

        return len(self._sent_this_minute) < self._config.max_per_minute

    def _record_sent(self) -> None:
        now = self._clock.now()
        self._last_sent = now
        self._sent_this_minute.append(now)

    def get_history(self, limit: int = 10) -> List[Notification]:
        """Get recently accepted notifications."""
        return self._history[-limit:]

    async def close(self) -> None:
        """Close HTTP session."""
        self.detach()
        if self._session:
            await self._session.close()
            self._session = None
