"""
Credit Risk - Exposure Ledger.

============================================================
RESPONSIBILITY
============================================================
Holds per-client positions and keeps credit profiles in step.

On every accepted exposure:
1. Append the entry (append-only)
2. Recompute totals from the full list
3. Set used_credit = sum(|notional|) and
   margin_requirement = sum(margin_used) on the profile
4. Publish EXPOSURE_ADDED (the risk monitor re-checks inline)

Steps 1-3 happen under the client lock.

============================================================
"""

import logging
from dataclasses import replace
from typing import Any, Mapping, List, Union

from core.clock import ClockProtocol
from core.events import EventBus, EventType
from core.validation import require_text, to_decimal

from .profiles import CreditProfileStore
from .repository import CreditRiskRepository
from .types import ClientExposure, ExposureTotals


logger = logging.getLogger(__name__)


class ExposureLedger:
    """Append-only exposure ledger."""

    def __init__(
        self,
        repository: CreditRiskRepository,
        profiles: CreditProfileStore,
        event_bus: EventBus,
        clock: ClockProtocol,
    ):
        self._repository = repository
        self._profiles = profiles
        self._event_bus = event_bus
        self._clock = clock

    async def add_exposure(
        self,
        client_id: str,
        exposure: Union[ClientExposure, Mapping[str, Any]],
    ) -> ExposureTotals:
        """
        Record a position for a client.

        Risk limit breaches never block the exposure; they only
        produce alerts.

        Args:
            client_id: Client ID
            exposure: ClientExposure or mapping with symbol, notional
                and optional market_value, unrealized_pnl, margin_used,
                risk_weight, counterparty_id

        Returns:
            Client totals after the append

        Raises:
            ValidationError: Empty client/symbol or non-finite amounts
        """
        entry = self._validate(client_id, exposure)

        async with self._profiles.locks.hold(entry.client_id):
            self._repository.append_exposure(entry)
            totals = ExposureTotals.from_exposures(
                self._repository.get_exposures(entry.client_id)
            )
            profile = self._profiles.apply_locked(
                entry.client_id,
                {
                    "used_credit": totals.total_notional,
                    "margin_requirement": totals.total_margin,
                },
            )

        logger.info(
            f"Exposure added: {entry.client_id} {entry.symbol} notional={entry.notional} "
            f"used_credit={profile.used_credit}"
        )

        await self._event_bus.publish(
            EventType.EXPOSURE_ADDED,
            {"client_id": entry.client_id, "exposure": entry, "totals": totals},
        )
        return totals

    def get_exposures(self, client_id: str) -> List[ClientExposure]:
        """Snapshot of a client's exposures (empty if unknown)."""
        return self._repository.get_exposures(client_id)

    def get_totals(self, client_id: str) -> ExposureTotals:
        """Aggregated totals for a client."""
        return ExposureTotals.from_exposures(self._repository.get_exposures(client_id))

    def _validate(
        self,
        client_id: str,
        exposure: Union[ClientExposure, Mapping[str, Any]],
    ) -> ClientExposure:
        client_id = require_text(client_id, "client_id")

        if isinstance(exposure, ClientExposure):
            raw = exposure.__dict__
        else:
            raw = dict(exposure)

        entry = ClientExposure(
            client_id=client_id,
            symbol=require_text(raw.get("symbol"), "symbol"),
            notional=to_decimal(raw.get("notional"), "notional"),
            market_value=to_decimal(raw.get("market_value", 0), "market_value"),
            unrealized_pnl=to_decimal(raw.get("unrealized_pnl", 0), "unrealized_pnl"),
            margin_used=to_decimal(raw.get("margin_used", 0), "margin_used", allow_negative=False),
            risk_weight=to_decimal(raw.get("risk_weight", 1), "risk_weight", allow_negative=False),
            counterparty_id=raw.get("counterparty_id"),
        )
        if isinstance(exposure, ClientExposure):
            entry = replace(entry, exposure_id=exposure.exposure_id)

        entry.recorded_at = self._clock.now()
        return entry
