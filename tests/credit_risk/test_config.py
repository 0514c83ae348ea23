"""
Tests for credit risk configuration loading.
"""

import pytest

from core.exceptions import ConfigurationError
from credit_risk.config import CreditRiskConfig, RiskLimits


class TestCreditRiskConfig:

    def test_defaults(self):
        config = CreditRiskConfig()
        assert config.limits.concentration_limit == 0.25
        assert config.limits.leverage_limit == 10.0
        assert config.limits.margin_call_threshold == 0.8
        assert config.weights.total() == 100.0
        assert config.monitor.interval_seconds == 30.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RISK_LEVERAGE_LIMIT", "5")
        monkeypatch.setenv("RISK_MONITOR_ENABLED", "false")

        config = CreditRiskConfig.from_env()

        assert config.limits.leverage_limit == 5.0
        assert config.monitor.enabled is False

    def test_from_env_rejects_invalid_limit(self, monkeypatch):
        monkeypatch.setenv("RISK_LEVERAGE_LIMIT", "0")
        with pytest.raises(ConfigurationError):
            CreditRiskConfig.from_env()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "credit_risk:\n"
            "  limits:\n"
            "    concentration_limit: 0.4\n"
            "  monitor:\n"
            "    interval_seconds: 5\n"
        )

        config = CreditRiskConfig.from_yaml(path)

        assert config.limits.concentration_limit == 0.4
        assert config.limits.leverage_limit == 10.0
        assert config.monitor.interval_seconds == 5

    def test_unknown_keys_ignored(self, caplog):
        config = CreditRiskConfig.from_dict({
            "limits": {"leverage_limit": 4, "var_limit": 0.05},
        })

        assert config.limits.leverage_limit == 4
        assert set(config.limits.to_dict()) == {
            "concentration_limit",
            "leverage_limit",
            "margin_call_threshold",
        }
        assert "var_limit" in caplog.text

    def test_missing_yaml_falls_back_to_defaults(self, tmp_path):
        config = CreditRiskConfig.from_yaml(tmp_path / "missing.yaml")
        assert config.to_dict() == CreditRiskConfig().to_dict()

    def test_negative_limit(self):
        with pytest.raises(ConfigurationError):
            RiskLimits(concentration_limit=-0.1)
