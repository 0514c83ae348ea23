"""
Credit risk fixtures.
"""

import pytest

from credit_risk import (
    CreditProfileStore,
    CreditRiskConfig,
    ExposureLedger,
    InMemoryCreditRiskRepository,
    RiskMonitor,
    RiskScoringEngine,
)


@pytest.fixture
def repository():
    return InMemoryCreditRiskRepository()


@pytest.fixture
def config():
    return CreditRiskConfig()


@pytest.fixture
def profiles(repository, event_bus, clock):
    return CreditProfileStore(repository, event_bus, clock)


@pytest.fixture
def ledger(repository, profiles, event_bus, clock):
    return ExposureLedger(repository, profiles, event_bus, clock)


@pytest.fixture
def scoring(repository, config, clock):
    return RiskScoringEngine(repository, config, clock)


@pytest.fixture
def monitor(repository, profiles, scoring, event_bus, clock, config):
    return RiskMonitor(repository, profiles, scoring, event_bus, clock, config)
