"""
Pydantic Schemas for the Risk & Settlement Admin API.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================
# RESPONSES
# =============================================================

class BaseResponse(BaseModel):
    success: bool = True


class DataResponse(BaseResponse):
    """Envelope for engine objects, serialized with their to_dict()."""
    data: Any = None


class ErrorResponse(BaseModel):
    """Body returned for engine errors."""
    error_kind: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


# =============================================================
# CREDIT RISK REQUESTS
# =============================================================

class ProfileUpdateRequest(BaseModel):
    """
    Partial credit profile update. Unset fields are left unchanged.

    Extra fields are passed through so the engine can reject them
    (derived fields such as available_credit).
    """
    model_config = ConfigDict(extra="allow")

    credit_limit: Optional[Decimal] = None
    used_credit: Optional[Decimal] = None
    collateral_value: Optional[Decimal] = None
    margin_requirement: Optional[Decimal] = None
    risk_score: Optional[float] = None
    tier: Optional[str] = None


class ExposureCreateRequest(BaseModel):
    symbol: str
    notional: Decimal
    market_value: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    margin_used: Decimal = Decimal("0")
    risk_weight: Decimal = Decimal("1")
    counterparty_id: Optional[str] = None


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(..., min_length=1)


# =============================================================
# SETTLEMENT REQUESTS
# =============================================================

class TradeCompletionRequest(BaseModel):
    """Completed trade handed to settlement."""
    trade_id: str
    client_id: str
    counterparty_id: str
    symbol: str = Field(..., description="BASE/QUOTE, e.g. BTC/USD")
    side: str = Field(..., description="buy or sell")
    quantity: Decimal
    price: Decimal
    settlement_type: Optional[str] = Field(None, description="T+0 or T+1")


class CancelRequest(BaseModel):
    reason: str = "Cancelled by operator"


class ReconciliationItemUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    investigation_notes: Optional[str] = None
