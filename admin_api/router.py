"""
FastAPI Router for Credit Risk & Settlement Administration.

Provides REST API for operators:
- Credit profiles, exposures, risk snapshots and alerts
- Settlement creation, processing and cancellation
- Reconciliation items and summary

Engine errors are rendered by the handlers registered in
register_error_handlers().

Every handler is async: engine state is only touched from the
event loop, never from the threadpool.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from core.exceptions import (
    AlertNotFoundError,
    ClientNotFoundError,
    EngineError,
    InvalidStateTransitionError,
    NotFoundError,
    ReconciliationItemNotFoundError,
    SettlementNotFoundError,
    ValidationError,
)
from container import EngineContainer
from credit_risk.types import ExposureTotals
from settlement.types import ReconciliationStatus

from admin_api.schemas import (
    AcknowledgeRequest,
    CancelRequest,
    DataResponse,
    ExposureCreateRequest,
    ProfileUpdateRequest,
    ReconciliationItemUpdateRequest,
    TradeCompletionRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/risk-settlement", tags=["Risk & Settlement"])


# =============================================================
# HELPER: Engine container dependency
# =============================================================

def get_container(request: Request) -> EngineContainer:
    return request.app.state.container


def _totals_dict(totals: ExposureTotals) -> Dict[str, Any]:
    return {
        "total_notional": str(totals.total_notional),
        "total_margin": str(totals.total_margin),
        "total_unrealized_pnl": str(totals.total_unrealized_pnl),
        "notional_by_symbol": {k: str(v) for k, v in totals.notional_by_symbol.items()},
    }


# =============================================================
# ERROR HANDLING
# =============================================================

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
}


def status_for_error(error: EngineError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_error_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP responses."""

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        code = status_for_error(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.to_log_format()}")
        body = exc.to_dict()
        return JSONResponse(
            status_code=code,
            content={
                "error_kind": body["error_kind"],
                "message": body["message"],
                "context": body["context"],
            },
        )


# =============================================================
# CREDIT PROFILE ENDPOINTS
# =============================================================

@router.get("/credit/profiles/{client_id}", response_model=DataResponse)
async def get_credit_profile(client_id: str, container: EngineContainer = Depends(get_container)):
    """Get a client's credit profile."""
    profile, found = container.profiles.get_profile(client_id)
    if not found:
        raise ClientNotFoundError(client_id)
    return DataResponse(data=profile.to_dict())


@router.patch("/credit/profiles/{client_id}", response_model=DataResponse)
async def update_credit_profile(
    client_id: str,
    update: ProfileUpdateRequest,
    container: EngineContainer = Depends(get_container),
):
    """
    Merge fields into a client's credit profile.

    A risk check runs before the response, so alerts caused by
    the update are already visible.
    """
    profile = await container.profiles.update_profile(
        client_id, **update.model_dump(exclude_unset=True)
    )
    return DataResponse(data=profile.to_dict())


@router.post(
    "/credit/exposures/{client_id}",
    response_model=DataResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_exposure(
    client_id: str,
    exposure: ExposureCreateRequest,
    container: EngineContainer = Depends(get_container),
):
    """Record a position for a client."""
    totals = await container.ledger.add_exposure(client_id, exposure.model_dump())
    profile, _ = container.profiles.get_profile(client_id)
    return DataResponse(data={
        "totals": _totals_dict(totals),
        "profile": profile.to_dict() if profile else None,
    })


# =============================================================
# RISK ENDPOINTS
# =============================================================

@router.get("/credit/risk/{client_id}", response_model=DataResponse)
async def get_client_risk(client_id: str, container: EngineContainer = Depends(get_container)):
    """Real-time risk snapshot for a client."""
    snapshot = container.risk_monitor.calculate_real_time_risk(client_id)
    if snapshot is None:
        raise ClientNotFoundError(client_id)
    return DataResponse(data=snapshot.to_dict())


@router.get("/credit/alerts", response_model=DataResponse)
async def get_alerts(
    client_id: Optional[str] = Query(None, description="Filter by client"),
    unacknowledged_only: bool = Query(False),
    container: EngineContainer = Depends(get_container),
):
    alerts = container.risk_monitor.get_risk_alerts(
        client_id=client_id,
        unacknowledged_only=unacknowledged_only,
    )
    return DataResponse(data=[a.to_dict() for a in alerts])


@router.post("/credit/alerts/{alert_id}/acknowledge", response_model=DataResponse)
async def acknowledge_alert(
    alert_id: str,
    request: AcknowledgeRequest,
    container: EngineContainer = Depends(get_container),
):
    """Acknowledge an alert. Repeated calls keep the first acknowledgement."""
    if not await container.risk_monitor.acknowledge_alert(alert_id, request.acknowledged_by):
        raise AlertNotFoundError(alert_id)

    ack = container.risk_monitor.get_acknowledgement(alert_id)
    return DataResponse(data={
        "alert_id": alert_id,
        "acknowledged": True,
        "acknowledged_by": ack.acknowledged_by if ack else request.acknowledged_by,
        "acknowledged_at": ack.acknowledged_at.isoformat() if ack else None,
    })


@router.get("/credit/portfolio", response_model=DataResponse)
async def get_portfolio_risk(container: EngineContainer = Depends(get_container)):
    return DataResponse(data=container.risk_monitor.get_portfolio_risk().to_dict())


# =============================================================
# SETTLEMENT ENDPOINTS
# =============================================================

@router.get("/settlements", response_model=DataResponse)
async def list_settlements(
    client_id: str = Query(..., description="Client whose settlements to list"),
    container: EngineContainer = Depends(get_container),
):
    settlements = container.settlements.get_settlements_for_client(client_id)
    return DataResponse(data=[s.to_dict() for s in settlements])


@router.get("/settlements/{settlement_id}", response_model=DataResponse)
async def get_settlement(settlement_id: str, container: EngineContainer = Depends(get_container)):
    settlement = container.settlements.get_settlement(settlement_id)
    if settlement is None:
        raise SettlementNotFoundError(settlement_id)
    return DataResponse(data=settlement.to_dict())


@router.post("/settlements", response_model=DataResponse, status_code=status.HTTP_201_CREATED)
async def create_settlement(
    trade: TradeCompletionRequest,
    container: EngineContainer = Depends(get_container),
):
    """
    Create a settlement for a completed trade.

    T+0 settlements start processing before the response.
    """
    settlement = await container.settlements.create_settlement(trade.model_dump(exclude_none=True))
    return DataResponse(data=settlement.to_dict())


@router.post("/settlements/{settlement_id}/process", response_model=DataResponse)
async def process_settlement(
    settlement_id: str,
    container: EngineContainer = Depends(get_container),
):
    """Dispatch a pending settlement's instructions."""
    dispatched = await container.settlements.process_settlement(settlement_id)
    settlement = container.settlements.get_settlement(settlement_id)
    return DataResponse(
        success=dispatched,
        data={"dispatched": dispatched, "settlement": settlement.to_dict()},
    )


@router.post("/settlements/{settlement_id}/cancel", response_model=DataResponse)
async def cancel_settlement(
    settlement_id: str,
    request: Optional[CancelRequest] = None,
    container: EngineContainer = Depends(get_container),
):
    reason = request.reason if request else CancelRequest().reason
    settlement = await container.settlements.cancel_settlement(settlement_id, reason)
    return DataResponse(data=settlement.to_dict())


# =============================================================
# RECONCILIATION ENDPOINTS
# =============================================================

@router.get("/reconciliation/items", response_model=DataResponse)
async def list_reconciliation_items(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    container: EngineContainer = Depends(get_container),
):
    item_status = None
    if status_filter:
        try:
            item_status = ReconciliationStatus(status_filter.lower())
        except ValueError as e:
            raise ValidationError(
                f"Invalid status: {status_filter}",
                field="status",
                value=status_filter,
                cause=e,
            )

    items = container.reconciliation.get_reconciliation_items(status=item_status)
    return DataResponse(data=[i.to_dict() for i in items])


@router.patch("/reconciliation/items/{item_id}", response_model=DataResponse)
async def update_reconciliation_item(
    item_id: str,
    update: ReconciliationItemUpdateRequest,
    container: EngineContainer = Depends(get_container),
):
    """Move an item through investigation or attach notes."""
    updated = await container.reconciliation.update_reconciliation_item(
        item_id, **update.model_dump(exclude_unset=True)
    )
    if not updated:
        raise ReconciliationItemNotFoundError(item_id)
    return DataResponse(data=container.reconciliation.get_item(item_id).to_dict())


@router.get("/reconciliation/summary", response_model=DataResponse)
async def get_reconciliation_summary(container: EngineContainer = Depends(get_container)):
    return DataResponse(data=container.reconciliation.get_summary())
