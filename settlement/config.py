"""
Settlement - Configuration.

============================================================
CONFIGURABLE SETTLEMENT PARAMETERS
============================================================

- Confirmation tracking (required depths, delays, windows)
- Reconciliation (tolerance, sweep interval, lookback)
- Instruction routing (fiat asset codes, default cycle)

Loaded from defaults, environment variables, or the
settlement section of a YAML file.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Set, Union

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from core.validation import known_fields

from .types import SettlementType


logger = logging.getLogger(__name__)


# =============================================================
# CONFIRMATION TRACKING
# =============================================================

@dataclass
class ConfirmationConfig:
    """Confirmation polling parameters."""

    required_confirmations: Dict[str, int] = field(default_factory=lambda: {
        "BTC": 6,
        "ETH": 12,
        "USDT": 12,
        "USDC": 12,
    })
    """Block depth required per asset."""

    default_required_confirmations: int = 6
    """Depth for assets not listed above."""

    initial_delay_seconds: float = 300.0
    """Delay before the first crypto depth check."""

    poll_interval_seconds: float = 600.0
    """Delay between crypto depth checks."""

    max_polls: int = 36
    """Depth checks before a crypto instruction fails."""

    fiat_delay_seconds: float = 86400.0
    """Delay before the bank transfer status check."""

    fiat_max_checks: int = 3
    """Bank status checks before a pending transfer fails."""

    def required_for(self, asset: str) -> int:
        """Required depth for an asset."""
        return self.required_confirmations.get(asset.upper(), self.default_required_confirmations)

    def __post_init__(self) -> None:
        if self.max_polls < 1 or self.fiat_max_checks < 1:
            raise ConfigurationError("max_polls and fiat_max_checks must be at least 1")


# =============================================================
# RECONCILIATION
# =============================================================

@dataclass
class ReconciliationConfig:
    """Reconciliation parameters."""

    tolerance: Decimal = Decimal("0.001")
    """Absolute difference allowed; items are created only above it."""

    sweep_enabled: bool = True
    """Whether the scheduled sweep runs."""

    sweep_interval_seconds: float = 3600.0
    """Seconds between scheduled sweeps."""

    lookback_hours: float = 24.0
    """Sweep covers settlements created within this window."""

    max_history: int = 100
    """Sweep results kept in memory."""

    def __post_init__(self) -> None:
        self.tolerance = Decimal(str(self.tolerance))
        if self.tolerance < 0:
            raise ConfigurationError(
                "tolerance must be non-negative",
                config_key="tolerance",
                actual_value=self.tolerance,
            )


# =============================================================
# MAIN CONFIG
# =============================================================

@dataclass
class SettlementConfig:
    """Complete settlement configuration."""

    fiat_assets: Set[str] = field(default_factory=lambda: {"USD", "EUR", "GBP"})
    """Assets routed as fiat instructions."""

    default_settlement_type: SettlementType = SettlementType.T1
    """Cycle used when a trade does not specify one."""

    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)

    def is_fiat(self, asset: str) -> bool:
        return asset.upper() in self.fiat_assets

    @classmethod
    def from_env(cls) -> "SettlementConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - SETTLEMENT_FIAT_ASSETS (comma separated)
        - SETTLEMENT_DEFAULT_TYPE
        - SETTLEMENT_POLL_INTERVAL
        - SETTLEMENT_FIAT_DELAY
        - RECONCILIATION_TOLERANCE
        - RECONCILIATION_SWEEP_INTERVAL
        """
        load_dotenv()
        config = cls()

        if os.getenv("SETTLEMENT_FIAT_ASSETS"):
            config.fiat_assets = {
                a.strip().upper() for a in os.getenv("SETTLEMENT_FIAT_ASSETS").split(",") if a.strip()
            }
        if os.getenv("SETTLEMENT_DEFAULT_TYPE"):
            config.default_settlement_type = SettlementType(os.getenv("SETTLEMENT_DEFAULT_TYPE").upper())
        if os.getenv("SETTLEMENT_POLL_INTERVAL"):
            config.confirmation.poll_interval_seconds = float(os.getenv("SETTLEMENT_POLL_INTERVAL"))
        if os.getenv("SETTLEMENT_FIAT_DELAY"):
            config.confirmation.fiat_delay_seconds = float(os.getenv("SETTLEMENT_FIAT_DELAY"))
        if os.getenv("RECONCILIATION_TOLERANCE"):
            config.reconciliation.tolerance = Decimal(os.getenv("RECONCILIATION_TOLERANCE"))
        if os.getenv("RECONCILIATION_SWEEP_INTERVAL"):
            config.reconciliation.sweep_interval_seconds = float(os.getenv("RECONCILIATION_SWEEP_INTERVAL"))

        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettlementConfig":
        """Build configuration from a mapping."""
        config = cls()

        if "fiat_assets" in data:
            config.fiat_assets = {str(a).upper() for a in data["fiat_assets"]}
        if "default_settlement_type" in data:
            config.default_settlement_type = SettlementType(str(data["default_settlement_type"]).upper())
        if "confirmation" in data:
            config.confirmation = ConfirmationConfig(
                **known_fields(ConfirmationConfig, data["confirmation"], "confirmation")
            )
        if "reconciliation" in data:
            config.reconciliation = ReconciliationConfig(
                **known_fields(ReconciliationConfig, data["reconciliation"], "reconciliation")
            )

        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SettlementConfig":
        """Load configuration from the settlement section of a YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()

        return cls.from_dict(data.get("settlement", {}))
