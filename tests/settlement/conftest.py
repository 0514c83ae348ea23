"""
Settlement fixtures.

Confirmation delays are zero so trackers run as soon as the test
awaits wait_for_confirmations().
"""

import pytest

from settlement import (
    ConfirmationConfig,
    InMemorySettlementRepository,
    ReconciliationEngine,
    SettlementConfig,
    SettlementOrchestrator,
    SimulatedAssetMover,
    SimulatedConfirmationSource,
    SimulatedMovementQuery,
    StaticAccountDirectory,
)


@pytest.fixture
def settlement_repository():
    return InMemorySettlementRepository()


@pytest.fixture
def asset_mover():
    return SimulatedAssetMover()


@pytest.fixture
def confirmation_source():
    return SimulatedConfirmationSource(blocks_per_check=6)


@pytest.fixture
def movement_query():
    return SimulatedMovementQuery()


@pytest.fixture
def account_directory():
    return StaticAccountDirectory()


@pytest.fixture
def settlement_config():
    return SettlementConfig(
        confirmation=ConfirmationConfig(
            initial_delay_seconds=0,
            poll_interval_seconds=0,
            fiat_delay_seconds=0,
        )
    )


@pytest.fixture
def reconciler(settlement_repository, movement_query, event_bus, clock, settlement_config):
    return ReconciliationEngine(
        settlement_repository,
        movement_query,
        event_bus,
        clock,
        settlement_config.reconciliation,
    )


@pytest.fixture
def orchestrator(
    settlement_repository,
    asset_mover,
    confirmation_source,
    account_directory,
    event_bus,
    clock,
    settlement_config,
    reconciler,
):
    return SettlementOrchestrator(
        settlement_repository,
        asset_mover,
        confirmation_source,
        account_directory,
        event_bus,
        clock,
        config=settlement_config,
        reconciler=reconciler,
    )
