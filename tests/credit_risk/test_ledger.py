"""
Tests for the credit profile store and the exposure ledger.
"""

import asyncio
from decimal import Decimal

import pytest

from core.events import EventType
from core.exceptions import ValidationError
from credit_risk.types import ClientExposure, CreditTier


class TestCreditProfileStore:
    """Profile creation, updates and validation."""

    @pytest.mark.asyncio
    async def test_lazy_creation(self, profiles, clock):
        profile = await profiles.update_profile("c1", credit_limit=1_000_000)

        assert profile.credit_limit == Decimal("1000000")
        assert profile.available_credit == Decimal("1000000")
        assert profile.tier == CreditTier.STANDARD
        assert profile.last_updated == clock.now()

    def test_unknown_profile(self, profiles):
        profile, found = profiles.get_profile("nobody")
        assert profile is None
        assert found is False

    @pytest.mark.asyncio
    async def test_available_credit_tracks_limit_and_usage(self, profiles):
        await profiles.update_profile("c1", credit_limit="500", used_credit="120")
        profile = await profiles.update_profile("c1", credit_limit="800")

        assert profile.used_credit == Decimal("120")
        assert profile.available_credit == Decimal("680")
        assert profile.available_credit + profile.used_credit == profile.credit_limit

    @pytest.mark.asyncio
    async def test_tier_from_string(self, profiles):
        profile = await profiles.update_profile("c1", tier="PRIME")
        assert profile.tier == CreditTier.PRIME

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "updates",
        [
            {"available_credit": 5},
            {"last_updated": None},
            {"nickname": "x"},
            {"credit_limit": -1},
            {"credit_limit": float("nan")},
            {"risk_score": 120},
            {"tier": "gold"},
            {},
        ],
    )
    async def test_rejected_updates(self, profiles, updates):
        with pytest.raises(ValidationError):
            await profiles.update_profile("c1", **updates)

        assert profiles.get_profile("c1") == (None, False)

    @pytest.mark.asyncio
    async def test_empty_client_id(self, profiles):
        with pytest.raises(ValidationError):
            await profiles.update_profile("  ", credit_limit=1)

    @pytest.mark.asyncio
    async def test_update_publishes_event(self, profiles, event_bus):
        await profiles.update_profile("c1", collateral_value=10)

        events = event_bus.get_history(EventType.CREDIT_PROFILE_UPDATED)
        assert len(events) == 1
        assert events[0].payload["fields"] == ["collateral_value"]

    @pytest.mark.asyncio
    async def test_returned_profile_is_a_copy(self, profiles):
        profile = await profiles.update_profile("c1", credit_limit=100)
        profile.credit_limit = Decimal("999")

        stored, _ = profiles.get_profile("c1")
        assert stored.credit_limit == Decimal("100")


class TestExposureLedger:
    """Appending exposures and keeping profiles in step."""

    @pytest.mark.asyncio
    async def test_scenario_single_exposure(self, profiles, ledger):
        await profiles.update_profile("c1", credit_limit=10_000_000, collateral_value=15_000_000)

        totals = await ledger.add_exposure(
            "c1", {"symbol": "BTC/USDT", "notional": 2_500_000, "margin_used": 1_000_000}
        )

        profile, _ = profiles.get_profile("c1")
        assert totals.total_notional == Decimal("2500000")
        assert profile.used_credit == Decimal("2500000")
        assert profile.available_credit == Decimal("7500000")
        assert profile.margin_requirement == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_short_positions_count_by_size(self, profiles, ledger):
        await profiles.update_profile("c1", credit_limit=1000)
        await ledger.add_exposure("c1", {"symbol": "ETH/USDT", "notional": 100})
        totals = await ledger.add_exposure("c1", {"symbol": "ETH/USDT", "notional": -40})

        assert totals.total_notional == Decimal("140")
        assert totals.notional_by_symbol == {"ETH/USDT": Decimal("140")}
        assert len(ledger.get_exposures("c1")) == 2

    @pytest.mark.asyncio
    async def test_creates_profile_for_unknown_client(self, profiles, ledger):
        await ledger.add_exposure("new", {"symbol": "BTC/USDT", "notional": 10})

        profile, found = profiles.get_profile("new")
        assert found
        assert profile.credit_limit == Decimal("0")
        assert profile.available_credit == Decimal("-10")

    @pytest.mark.asyncio
    async def test_accepts_dataclass_and_stamps_time(self, ledger, clock):
        exposure = ClientExposure(client_id="ignored", symbol="SOL/USDT", notional=Decimal("5"))
        await ledger.add_exposure("c1", exposure)

        stored = ledger.get_exposures("c1")[0]
        assert stored.client_id == "c1"
        assert stored.exposure_id == exposure.exposure_id
        assert stored.recorded_at == clock.now()

    @pytest.mark.asyncio
    async def test_publishes_exposure_added(self, ledger, event_bus):
        await ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 1})

        event = event_bus.get_history(EventType.EXPOSURE_ADDED)[0]
        assert event.payload["client_id"] == "c1"
        assert event.payload["totals"].total_notional == Decimal("1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exposure",
        [
            {"symbol": "", "notional": 1},
            {"symbol": "BTC/USDT"},
            {"symbol": "BTC/USDT", "notional": "NaN"},
            {"symbol": "BTC/USDT", "notional": 1, "margin_used": -5},
            {"symbol": "BTC/USDT", "notional": "1E+999999"},
        ],
    )
    async def test_invalid_exposure_rejected(self, ledger, exposure):
        with pytest.raises(ValidationError):
            await ledger.add_exposure("c1", exposure)

        assert ledger.get_exposures("c1") == []

    def test_totals_for_unknown_client(self, ledger):
        assert ledger.get_totals("nobody").total_notional == Decimal("0")


class TestConcurrentExposures:
    """Many exposures for one client arriving together."""

    @pytest.mark.asyncio
    async def test_no_lost_updates(self, profiles, ledger):
        await profiles.update_profile("c1", credit_limit=10_000_000)

        await asyncio.gather(*(
            ledger.add_exposure("c1", {"symbol": f"SYM{i}/USDT", "notional": 1000 + i})
            for i in range(50)
        ))

        profile, _ = profiles.get_profile("c1")
        expected = sum(Decimal(1000 + i) for i in range(50))
        assert len(ledger.get_exposures("c1")) == 50
        assert profile.used_credit == expected
        assert profile.available_credit + profile.used_credit == profile.credit_limit
        assert len(profiles.locks) == 0

    @pytest.mark.asyncio
    async def test_writers_wait_for_client_lock(self, profiles, ledger):
        await profiles.update_profile("c1", credit_limit=1_000_000)

        async with profiles.locks.hold("c1"):
            tasks = [
                asyncio.create_task(ledger.add_exposure("c1", {"symbol": "BTC/USDT", "notional": 100}))
                for _ in range(5)
            ]
            await asyncio.sleep(0)
            assert ledger.get_exposures("c1") == []

        await asyncio.gather(*tasks)

        profile, _ = profiles.get_profile("c1")
        assert profile.used_credit == Decimal("500")
        assert profile.available_credit == Decimal("999500")
        assert profile.available_credit + profile.used_credit == profile.credit_limit
