"""
Credit Risk - Configuration.

============================================================
CONFIGURABLE RISK LIMITS
============================================================

All limits and scoring parameters are configurable:
- Risk limits (concentration, leverage, margin call)
- Scoring component caps
- Monitor interval

Configuration can be loaded from:
- Default values
- Environment variables
- YAML config file (credit_risk section)

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from core.validation import known_fields


logger = logging.getLogger(__name__)


# =============================================================
# RISK LIMITS
# =============================================================

@dataclass
class RiskLimits:
    """
    Limits a client's risk metrics are checked against.

    Breaches raise alerts but never block the triggering operation.
    """

    concentration_limit: float = 0.25
    """Max single-asset notional as a fraction of credit limit."""

    leverage_limit: float = 10.0
    """Max total exposure / collateral."""

    margin_call_threshold: float = 0.8
    """Margin utilization that triggers a margin call."""

    def __post_init__(self) -> None:
        if self.leverage_limit <= 0:
            raise ConfigurationError(
                "leverage_limit must be positive",
                config_key="leverage_limit",
                actual_value=self.leverage_limit,
            )
        for key in ("concentration_limit", "margin_call_threshold"):
            if getattr(self, key) < 0:
                raise ConfigurationError(
                    f"{key} must be non-negative",
                    config_key=key,
                    actual_value=getattr(self, key),
                )

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "concentration_limit": self.concentration_limit,
            "leverage_limit": self.leverage_limit,
            "margin_call_threshold": self.margin_call_threshold,
        }


# =============================================================
# SCORING WEIGHTS
# =============================================================

@dataclass
class ScoringWeights:
    """
    Point caps for each risk score component.

    Caps sum to 100 by default.
    """
    concentration_cap: float = 30.0
    leverage_cap: float = 25.0
    margin_cap: float = 20.0
    credit_cap: float = 15.0
    loss_cap: float = 10.0
    loss_scale: float = 100000.0
    """Unrealized loss that earns the full loss cap."""

    def total(self) -> float:
        """Sum of all caps."""
        return (
            self.concentration_cap
            + self.leverage_cap
            + self.margin_cap
            + self.credit_cap
            + self.loss_cap
        )

    def __post_init__(self) -> None:
        if self.loss_scale <= 0:
            raise ConfigurationError(
                "loss_scale must be positive",
                config_key="loss_scale",
                actual_value=self.loss_scale,
            )
        if self.total() > 100.0:
            logger.warning(f"Scoring caps sum to {self.total()}, scores will be clamped to 100")

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "concentration_cap": self.concentration_cap,
            "leverage_cap": self.leverage_cap,
            "margin_cap": self.margin_cap,
            "credit_cap": self.credit_cap,
            "loss_cap": self.loss_cap,
            "loss_scale": self.loss_scale,
        }


# =============================================================
# MONITOR
# =============================================================

@dataclass
class RiskMonitorConfig:
    """Settings for the periodic risk monitor."""

    enabled: bool = True
    """Whether the background loop runs."""

    interval_seconds: float = 30.0
    """Seconds between full sweeps."""

    low_risk_below: float = 30.0
    """Scores below this are bucketed as low."""

    high_risk_from: float = 70.0
    """Scores at or above this are bucketed as high."""


# =============================================================
# MAIN CONFIG
# =============================================================

@dataclass
class CreditRiskConfig:
    """Complete credit risk configuration."""

    limits: RiskLimits = field(default_factory=RiskLimits)
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    monitor: RiskMonitorConfig = field(default_factory=RiskMonitorConfig)

    @classmethod
    def from_env(cls) -> "CreditRiskConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - RISK_CONCENTRATION_LIMIT
        - RISK_LEVERAGE_LIMIT
        - RISK_MARGIN_CALL_THRESHOLD
        - RISK_MONITOR_INTERVAL
        - RISK_MONITOR_ENABLED
        """
        load_dotenv()
        config = cls()

        if os.getenv("RISK_CONCENTRATION_LIMIT"):
            config.limits.concentration_limit = float(os.getenv("RISK_CONCENTRATION_LIMIT"))
        if os.getenv("RISK_LEVERAGE_LIMIT"):
            config.limits.leverage_limit = float(os.getenv("RISK_LEVERAGE_LIMIT"))
        if os.getenv("RISK_MARGIN_CALL_THRESHOLD"):
            config.limits.margin_call_threshold = float(os.getenv("RISK_MARGIN_CALL_THRESHOLD"))
        config.limits.__post_init__()

        if os.getenv("RISK_MONITOR_INTERVAL"):
            config.monitor.interval_seconds = float(os.getenv("RISK_MONITOR_INTERVAL"))
        if os.getenv("RISK_MONITOR_ENABLED"):
            config.monitor.enabled = os.getenv("RISK_MONITOR_ENABLED", "true").lower() == "true"

        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreditRiskConfig":
        """Build configuration from a mapping."""
        config = cls()

        if "limits" in data:
            config.limits = RiskLimits(**known_fields(RiskLimits, data["limits"], "limits"))
        if "weights" in data:
            config.weights = ScoringWeights(**known_fields(ScoringWeights, data["weights"], "weights"))
        if "monitor" in data:
            config.monitor = RiskMonitorConfig(**known_fields(RiskMonitorConfig, data["monitor"], "monitor"))

        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CreditRiskConfig":
        """Load configuration from the credit_risk section of a YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()

        return cls.from_dict(data.get("credit_risk", {}))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "limits": self.limits.to_dict(),
            "weights": self.weights.to_dict(),
            "monitor": {
                "enabled": self.monitor.enabled,
                "interval_seconds": self.monitor.interval_seconds,
                "low_risk_below": self.monitor.low_risk_below,
                "high_risk_from": self.monitor.high_risk_from,
            },
        }
