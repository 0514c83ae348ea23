"""
Credit Risk - Repository.

============================================================
PURPOSE
============================================================
Storage for profiles, exposures, alerts and acknowledgements.

IMPLEMENTATIONS:
- InMemoryCreditRiskRepository: default, used by tests
- SqlCreditRiskRepository: SQLAlchemy ORM via core.database

Reads always return copies; callers never hold references
into repository state.

============================================================
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select

from core.database import Database

from .models import (
    AlertAcknowledgementModel,
    ClientExposureModel,
    CreditProfileModel,
    RiskAlertModel,
)
from .types import (
    AlertAcknowledgement,
    AlertSeverity,
    ClientExposure,
    CreditProfile,
    CreditTier,
    RiskAlert,
    RiskAlertType,
)


logger = logging.getLogger(__name__)


# ============================================================
# INTERFACE
# ============================================================

class CreditRiskRepository(ABC):
    """Storage interface for the credit risk subsystem."""

    # Profiles

    @abstractmethod
    def get_profile(self, client_id: str) -> Optional[CreditProfile]:
        pass

    @abstractmethod
    def save_profile(self, profile: CreditProfile) -> None:
        pass

    @abstractmethod
    def list_profiles(self) -> List[CreditProfile]:
        pass

    # Exposures

    @abstractmethod
    def append_exposure(self, exposure: ClientExposure) -> None:
        pass

    @abstractmethod
    def get_exposures(self, client_id: str) -> List[ClientExposure]:
        pass

    # Alerts

    @abstractmethod
    def save_alert(self, alert: RiskAlert) -> None:
        """Insert or replace an alert."""
        pass

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[RiskAlert]:
        pass

    @abstractmethod
    def list_alerts(
        self,
        client_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> List[RiskAlert]:
        pass

    @abstractmethod
    def save_acknowledgement(self, ack: AlertAcknowledgement) -> None:
        pass

    @abstractmethod
    def get_acknowledgement(self, alert_id: str) -> Optional[AlertAcknowledgement]:
        pass


# ============================================================
# IN-MEMORY
# ============================================================

class InMemoryCreditRiskRepository(CreditRiskRepository):
    """
    Dictionary-backed repository.

    Every access holds one RLock, so readers on other threads see a
    consistent snapshot.
    """

    def __init__(self):
        self._profiles: Dict[str, CreditProfile] = {}
        self._exposures: Dict[str, List[ClientExposure]] = {}
        self._alerts: Dict[str, RiskAlert] = {}
        self._acks: Dict[str, AlertAcknowledgement] = {}
        self._lock = threading.RLock()

    def get_profile(self, client_id: str) -> Optional[CreditProfile]:
        with self._lock:
            profile = self._profiles.get(client_id)
            return copy.copy(profile) if profile else None

    def save_profile(self, profile: CreditProfile) -> None:
        with self._lock:
            self._profiles[profile.client_id] = copy.copy(profile)

    def list_profiles(self) -> List[CreditProfile]:
        with self._lock:
            return [copy.copy(p) for p in self._profiles.values()]

    def append_exposure(self, exposure: ClientExposure) -> None:
        with self._lock:
            self._exposures.setdefault(exposure.client_id, []).append(copy.copy(exposure))

    def get_exposures(self, client_id: str) -> List[ClientExposure]:
        with self._lock:
            return [copy.copy(e) for e in self._exposures.get(client_id, [])]

    def save_alert(self, alert: RiskAlert) -> None:
        with self._lock:
            self._alerts[alert.alert_id] = alert

    def get_alert(self, alert_id: str) -> Optional[RiskAlert]:
        with self._lock:
            return self._alerts.get(alert_id)

    def list_alerts(
        self,
        client_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> List[RiskAlert]:
        with self._lock:
            return [
                a for a in self._alerts.values()
                if (client_id is None or a.client_id == client_id)
                and not (unacknowledged_only and a.acknowledged)
            ]

    def save_acknowledgement(self, ack: AlertAcknowledgement) -> None:
        with self._lock:
            self._acks[ack.alert_id] = ack

    def get_acknowledgement(self, alert_id: str) -> Optional[AlertAcknowledgement]:
        with self._lock:
            return self._acks.get(alert_id)


# ============================================================
# SQLALCHEMY
# ============================================================

def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlCreditRiskRepository(CreditRiskRepository):
    """
    Repository backed by SQLAlchemy.

    Each call runs in its own transaction.
    """

    def __init__(self, database: Database):
        """
        Initialize repository.

        Args:
            database: Database providing session_scope()
        """
        self._db = database

    # --------------------------------------------------------
    # PROFILES
    # --------------------------------------------------------

    def get_profile(self, client_id: str) -> Optional[CreditProfile]:
        with self._db.session_scope() as session:
            model = session.get(CreditProfileModel, client_id)
            return self._model_to_profile(model) if model else None

    def save_profile(self, profile: CreditProfile) -> None:
        with self._db.session_scope() as session:
            model = session.get(CreditProfileModel, profile.client_id)
            if model is None:
                model = CreditProfileModel(client_id=profile.client_id)
                session.add(model)

            model.credit_limit = profile.credit_limit
            model.used_credit = profile.used_credit
            model.available_credit = profile.available_credit
            model.collateral_value = profile.collateral_value
            model.margin_requirement = profile.margin_requirement
            model.risk_score = profile.risk_score
            model.tier = profile.tier.value
            model.last_updated = profile.last_updated

    def list_profiles(self) -> List[CreditProfile]:
        with self._db.session_scope() as session:
            models = session.scalars(
                select(CreditProfileModel).order_by(CreditProfileModel.client_id)
            ).all()
            return [self._model_to_profile(m) for m in models]

    def _model_to_profile(self, model: CreditProfileModel) -> CreditProfile:
        return CreditProfile(
            client_id=model.client_id,
            credit_limit=model.credit_limit,
            used_credit=model.used_credit,
            available_credit=model.available_credit,
            risk_score=model.risk_score,
            tier=CreditTier(model.tier),
            collateral_value=model.collateral_value,
            margin_requirement=model.margin_requirement,
            last_updated=_utc(model.last_updated),
        )

    # --------------------------------------------------------
    # EXPOSURES
    # --------------------------------------------------------

    def append_exposure(self, exposure: ClientExposure) -> None:
        with self._db.session_scope() as session:
            session.add(ClientExposureModel(
                exposure_id=exposure.exposure_id,
                client_id=exposure.client_id,
                symbol=exposure.symbol,
                notional=exposure.notional,
                market_value=exposure.market_value,
                unrealized_pnl=exposure.unrealized_pnl,
                margin_used=exposure.margin_used,
                risk_weight=exposure.risk_weight,
                counterparty_id=exposure.counterparty_id,
                recorded_at=exposure.recorded_at,
            ))

    def get_exposures(self, client_id: str) -> List[ClientExposure]:
        with self._db.session_scope() as session:
            models = session.scalars(
                select(ClientExposureModel)
                .where(ClientExposureModel.client_id == client_id)
                .order_by(ClientExposureModel.id)
            ).all()
            return [
                ClientExposure(
                    client_id=m.client_id,
                    symbol=m.symbol,
                    notional=m.notional,
                    market_value=m.market_value,
                    unrealized_pnl=m.unrealized_pnl,
                    margin_used=m.margin_used,
                    risk_weight=m.risk_weight,
                    counterparty_id=m.counterparty_id,
                    exposure_id=m.exposure_id,
                    recorded_at=_utc(m.recorded_at),
                )
                for m in models
            ]

    # --------------------------------------------------------
    # ALERTS
    # --------------------------------------------------------

    def save_alert(self, alert: RiskAlert) -> None:
        with self._db.session_scope() as session:
            model = session.get(RiskAlertModel, alert.alert_id)
            if model is None:
                session.add(RiskAlertModel(
                    alert_id=alert.alert_id,
                    client_id=alert.client_id,
                    alert_type=alert.alert_type.value,
                    severity=alert.severity.value,
                    message=alert.message,
                    threshold=alert.threshold,
                    current_value=alert.current_value,
                    timestamp=alert.timestamp,
                    acknowledged=alert.acknowledged,
                ))
            else:
                # Only the acknowledged flag may change
                model.acknowledged = alert.acknowledged

    def get_alert(self, alert_id: str) -> Optional[RiskAlert]:
        with self._db.session_scope() as session:
            model = session.get(RiskAlertModel, alert_id)
            return self._model_to_alert(model) if model else None

    def list_alerts(
        self,
        client_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> List[RiskAlert]:
        query = select(RiskAlertModel)
        if client_id is not None:
            query = query.where(RiskAlertModel.client_id == client_id)
        if unacknowledged_only:
            query = query.where(RiskAlertModel.acknowledged.is_(False))

        with self._db.session_scope() as session:
            models = session.scalars(query.order_by(RiskAlertModel.timestamp)).all()
            return [self._model_to_alert(m) for m in models]

    def _model_to_alert(self, model: RiskAlertModel) -> RiskAlert:
        return RiskAlert(
            alert_id=model.alert_id,
            client_id=model.client_id,
            alert_type=RiskAlertType(model.alert_type),
            severity=AlertSeverity(model.severity),
            message=model.message,
            threshold=model.threshold,
            current_value=model.current_value,
            timestamp=_utc(model.timestamp),
            acknowledged=model.acknowledged,
        )

    def save_acknowledgement(self, ack: AlertAcknowledgement) -> None:
        with self._db.session_scope() as session:
            session.merge(AlertAcknowledgementModel(
                alert_id=ack.alert_id,
                acknowledged_by=ack.acknowledged_by,
                acknowledged_at=ack.acknowledged_at,
            ))

    def get_acknowledgement(self, alert_id: str) -> Optional[AlertAcknowledgement]:
        with self._db.session_scope() as session:
            model = session.get(AlertAcknowledgementModel, alert_id)
            if model is None:
                return None
            return AlertAcknowledgement(
                alert_id=model.alert_id,
                acknowledged_by=model.acknowledged_by,
                acknowledged_at=_utc(model.acknowledged_at),
            )
