"""
Settlement - External Collaborators.

============================================================
PURPOSE
============================================================
Interfaces for everything outside the engine that moves or
observes assets. The engine never signs transactions; it only
calls these and tracks the references they return.

INTERFACES:
- AssetMover: send crypto / fiat, returns tx hash or transfer ref
- ConfirmationSource: block depth / bank transfer status
- MovementQuery: actual amount moved for an instruction
- AccountDirectory: wallet addresses and bank details per party

SIMULATED IMPLEMENTATIONS are provided for development runs
and tests. They never touch the network.

============================================================
"""

import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple, Union

from core.exceptions import CollaboratorError

from .types import BankDetails, BankTransferStatus, SettlementInstruction


# ============================================================
# INTERFACES
# ============================================================

class AssetMover(ABC):
    """Dispatches instructions to a custody or payments provider."""

    @abstractmethod
    async def send_crypto(self, instruction: SettlementInstruction) -> str:
        """Send a crypto transfer, returning the transaction hash."""
        pass

    @abstractmethod
    async def send_fiat(self, instruction: SettlementInstruction) -> str:
        """Send a fiat transfer, returning the transfer reference."""
        pass


class ConfirmationSource(ABC):
    """Reports confirmation progress for dispatched transfers."""

    @abstractmethod
    async def get_confirmation_depth(self, tx_hash: str) -> int:
        pass

    @abstractmethod
    async def get_bank_transfer_status(self, transfer_ref: str) -> BankTransferStatus:
        pass


class MovementQuery(ABC):
    """Reports the amount that actually moved for an instruction."""

    @abstractmethod
    async def get_actual_movement(self, instruction: SettlementInstruction) -> Decimal:
        pass


class AccountDirectory(ABC):
    """Resolves settlement destinations for clients and counterparties."""

    @abstractmethod
    async def get_wallet_address(self, owner_id: str, asset: str) -> str:
        pass

    @abstractmethod
    async def get_bank_details(self, owner_id: str) -> BankDetails:
        pass


# ============================================================
# SIMULATED IMPLEMENTATIONS
# ============================================================

class SimulatedAssetMover(AssetMover):
    """
    Returns random references. Assets in fail_assets raise.
    """

    def __init__(self, fail_assets: Optional[Set[str]] = None):
        self.fail_assets: Set[str] = {a.upper() for a in (fail_assets or set())}
        self.sent: List[Tuple[str, str]] = []

    async def send_crypto(self, instruction: SettlementInstruction) -> str:
        self._check(instruction, "send_crypto")
        tx_hash = f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}"
        self.sent.append((instruction.reference, tx_hash))
        return tx_hash

    async def send_fiat(self, instruction: SettlementInstruction) -> str:
        self._check(instruction, "send_fiat")
        transfer_ref = f"FT{uuid.uuid4().hex[:12].upper()}"
        self.sent.append((instruction.reference, transfer_ref))
        return transfer_ref

    def _check(self, instruction: SettlementInstruction, operation: str) -> None:
        if instruction.asset.upper() in self.fail_assets:
            raise CollaboratorError(
                f"Transfer of {instruction.asset} rejected",
                collaborator="asset_mover",
                operation=operation,
            )


class SimulatedConfirmationSource(ConfirmationSource):
    """
    Block depth grows by blocks_per_check on every query.

    Explicit depths and bank statuses can be pinned per reference.
    """

    def __init__(
        self,
        blocks_per_check: int = 6,
        default_bank_status: BankTransferStatus = BankTransferStatus.CONFIRMED,
    ):
        self._blocks_per_check = blocks_per_check
        self._default_bank_status = default_bank_status
        self._depths: Dict[str, int] = {}
        self._pinned_depths: Dict[str, int] = {}
        self._bank_statuses: Dict[str, BankTransferStatus] = {}
        self.unreachable = False

    def set_depth(self, tx_hash: str, depth: int) -> None:
        self._pinned_depths[tx_hash] = depth

    def set_bank_status(self, transfer_ref: str, status: BankTransferStatus) -> None:
        self._bank_statuses[transfer_ref] = status

    async def get_confirmation_depth(self, tx_hash: str) -> int:
        if self.unreachable:
            raise CollaboratorError("Node unreachable", collaborator="confirmation_source",
                                    operation="get_confirmation_depth")
        if tx_hash in self._pinned_depths:
            return self._pinned_depths[tx_hash]
        self._depths[tx_hash] = self._depths.get(tx_hash, 0) + self._blocks_per_check
        return self._depths[tx_hash]

    async def get_bank_transfer_status(self, transfer_ref: str) -> BankTransferStatus:
        if self.unreachable:
            raise CollaboratorError("Bank API unreachable", collaborator="confirmation_source",
                                    operation="get_bank_transfer_status")
        return self._bank_statuses.get(transfer_ref, self._default_bank_status)


class SimulatedMovementQuery(MovementQuery):
    """Reports the expected amount unless overridden per reference."""

    def __init__(self):
        self._actuals: Dict[str, Decimal] = {}
        self.failing_references: Set[str] = set()
        self.calls: List[str] = []

    def set_actual(self, reference: str, amount: Union[Decimal, str]) -> None:
        self._actuals[reference] = Decimal(str(amount))

    async def get_actual_movement(self, instruction: SettlementInstruction) -> Decimal:
        self.calls.append(instruction.reference)
        if instruction.reference in self.failing_references:
            raise CollaboratorError(
                f"Movement lookup failed for {instruction.reference}",
                collaborator="movement_query",
                operation="get_actual_movement",
            )
        return self._actuals.get(instruction.reference, instruction.amount)


class StaticAccountDirectory(AccountDirectory):
    """
    Lookup tables with generated fallbacks.
    """

    def __init__(
        self,
        wallets: Optional[Dict[Tuple[str, str], str]] = None,
        banks: Optional[Dict[str, BankDetails]] = None,
    ):
        self._wallets = dict(wallets or {})
        self._banks = dict(banks or {})

    async def get_wallet_address(self, owner_id: str, asset: str) -> str:
        return self._wallets.get((owner_id, asset.upper()), f"wallet:{owner_id}:{asset.upper()}")

    async def get_bank_details(self, owner_id: str) -> BankDetails:
        if owner_id in self._banks:
            return self._banks[owner_id]
        return BankDetails(
            bank_name="Settlement Bank",
            account_number=f"ACC-{owner_id}",
            routing_number="000000000",
            beneficiary_name=owner_id,
        )
