"""
Credit Risk - Credit Profile Store.

============================================================
RESPONSIBILITY
============================================================
Owns per-client credit profiles.

- Profiles are created lazily on first update
- available_credit is recomputed on every write
- Admin updates trigger a synchronous risk check, so the
  caller observes alerts raised by its own update
- All writes for one client are serialized by its lock

============================================================
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.clock import ClockProtocol
from core.events import EventBus, EventType
from core.exceptions import ValidationError
from core.scheduler import KeyedLocks
from core.validation import require_text, to_decimal, to_ratio

from .repository import CreditRiskRepository
from .types import CreditProfile, CreditTier


logger = logging.getLogger(__name__)


MONEY_FIELDS = ("credit_limit", "used_credit", "collateral_value", "margin_requirement")
UPDATABLE_FIELDS = set(MONEY_FIELDS) | {"risk_score", "tier"}
DERIVED_FIELDS = {"available_credit", "last_updated", "client_id"}

RiskChecker = Callable[[str], Awaitable[Any]]


class CreditProfileStore:
    """
    Per-client credit profiles backed by a repository.
    """

    def __init__(
        self,
        repository: CreditRiskRepository,
        event_bus: EventBus,
        clock: ClockProtocol,
        locks: Optional[KeyedLocks] = None,
    ):
        """
        Initialize store.

        Args:
            repository: Credit risk storage
            event_bus: Event bus for profile updates
            clock: Engine clock
            locks: Per-client locks shared with the exposure ledger
        """
        self._repository = repository
        self._event_bus = event_bus
        self._clock = clock
        self._locks = locks if locks is not None else KeyedLocks()
        self._risk_checker: Optional[RiskChecker] = None

    @property
    def locks(self) -> KeyedLocks:
        """Per-client locks."""
        return self._locks

    def set_risk_checker(self, checker: Optional[RiskChecker]) -> None:
        """Register the coroutine run after every admin update."""
        self._risk_checker = checker

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def get_profile(self, client_id: str) -> Tuple[Optional[CreditProfile], bool]:
        """
        Get a client's profile.

        Returns:
            (profile, found). Profile is None when not found.
        """
        profile = self._repository.get_profile(client_id)
        return profile, profile is not None

    def list_profiles(self) -> List[CreditProfile]:
        """All known profiles."""
        return self._repository.list_profiles()

    def list_client_ids(self) -> List[str]:
        """IDs of all clients with a profile."""
        return [p.client_id for p in self._repository.list_profiles()]

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    async def update_profile(self, client_id: str, **updates: Any) -> CreditProfile:
        """
        Merge fields into a client's profile.

        Args:
            client_id: Client ID
            **updates: Any of credit_limit, used_credit, collateral_value,
                margin_requirement, risk_score, tier

        Returns:
            The profile after the update and the follow-up risk check

        Raises:
            ValidationError: Unknown, derived or invalid field values
        """
        client_id = require_text(client_id, "client_id")
        validated = self._validate_updates(updates)

        async with self._locks.hold(client_id):
            profile = self.apply_locked(client_id, validated)

        logger.info(f"Credit profile updated: {client_id} fields={sorted(validated)}")
        await self._event_bus.publish(
            EventType.CREDIT_PROFILE_UPDATED,
            {"client_id": client_id, "profile": profile, "fields": sorted(validated)},
        )

        if self._risk_checker is not None:
            await self._risk_checker(client_id)
            refreshed, _ = self.get_profile(client_id)
            profile = refreshed or profile

        return profile

    def apply_locked(self, client_id: str, updates: Dict[str, Any]) -> CreditProfile:
        """
        Merge already-validated fields. Caller must hold the client lock.

        Does not publish events or run the risk check.
        """
        profile = self._repository.get_profile(client_id) or CreditProfile(client_id=client_id)

        for key, value in updates.items():
            setattr(profile, key, value)

        profile.recompute_available()
        profile.last_updated = self._clock.now()

        self._repository.save_profile(profile)
        return profile

    def record_risk_score(self, client_id: str, risk_score: float) -> None:
        """Store the latest computed score without triggering a check."""
        profile = self._repository.get_profile(client_id)
        if profile is None:
            return
        profile.risk_score = risk_score
        self._repository.save_profile(profile)

    # --------------------------------------------------------
    # VALIDATION
    # --------------------------------------------------------

    def _validate_updates(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        if not updates:
            raise ValidationError("No fields to update")

        validated: Dict[str, Any] = {}

        for key, value in updates.items():
            if key in DERIVED_FIELDS:
                raise ValidationError(f"{key} is derived and cannot be set", field=key)
            if key not in UPDATABLE_FIELDS:
                raise ValidationError(f"Unknown profile field: {key}", field=key)

            if key in MONEY_FIELDS:
                validated[key] = to_decimal(value, key, allow_negative=False)
            elif key == "risk_score":
                validated[key] = to_ratio(value, key, minimum=0.0, maximum=100.0)
            elif key == "tier":
                validated[key] = self._parse_tier(value)

        return validated

    @staticmethod
    def _parse_tier(value: Any) -> CreditTier:
        if isinstance(value, CreditTier):
            return value
        try:
            return CreditTier(str(value).lower())
        except ValueError as e:
            raise ValidationError(f"Invalid tier: {value}", field="tier", value=value, cause=e)
