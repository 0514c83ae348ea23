"""
Credit Risk - Risk Scoring Engine.

============================================================
PURPOSE
============================================================
Turns a credit profile plus exposures into a risk snapshot:
a composite score in [0, 100] and an ordered recommendation list.

============================================================
SCORING
============================================================
Each component is computed independently, capped, then summed:

    concentration   min(concentration * 100, 30)
    leverage        min(leverage / leverage_limit * 25, 25)
    margin          min(margin_utilization * 20, 20)
    credit          min(credit_utilization * 15, 15)
    unrealized loss min(|pnl| / 100000 * 10, 10)   (only when pnl < 0)

Total is clamped to [0, 100].

Zero credit limit: every ratio over the limit is 0.
Zero collateral: leverage is 0.
Ratios too large to represent saturate, so they score the full cap.

============================================================
USAGE
============================================================
    engine = RiskScoringEngine(repository, config)

    snapshot = engine.score(profile, exposures)     # pure
    snapshot = engine.calculate_risk("client-1")    # loads from storage

============================================================
"""

import math
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from core.clock import ClockProtocol, SystemClock

from .config import CreditRiskConfig
from .repository import CreditRiskRepository
from .types import ClientExposure, CreditProfile, ExposureTotals, RiskSnapshot


RECOMMEND_CRITICAL = "CRITICAL: Immediate risk reduction required"
RECOMMEND_CONCENTRATION = "Reduce concentration in overweight positions"
RECOMMEND_LEVERAGE = "Reduce leverage by closing positions or adding collateral"
RECOMMEND_MARGIN = "Add margin or close positions to avoid margin call"
RECOMMEND_INCREASE = "Risk profile allows for increased position sizing"

CRITICAL_SCORE = 80.0
LOW_SCORE = 30.0
RATIO_CEILING = 1e12


def safe_ratio(numerator: Decimal, denominator: Decimal) -> float:
    """
    numerator / denominator as a finite float.

    0 when the denominator is not positive. Quotients outside the
    Decimal or float range saturate at +/-RATIO_CEILING.
    """
    if denominator <= 0:
        return 0.0
    try:
        result = float(numerator / denominator)
    except ArithmeticError:
        result = math.inf if numerator > 0 else -math.inf
    return max(min(result, RATIO_CEILING), -RATIO_CEILING)


class RiskScoringEngine:
    """
    Stateless risk scorer.

    score() depends only on its arguments and the configured
    limits and weights.
    """

    def __init__(
        self,
        repository: Optional[CreditRiskRepository] = None,
        config: Optional[CreditRiskConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize the engine.

        Args:
            repository: Source for calculate_risk lookups
            config: Limits and scoring weights
            clock: Stamps calculated_at
        """
        self._repository = repository
        self._config = config or CreditRiskConfig()
        self._clock = clock or SystemClock()

    @property
    def config(self) -> CreditRiskConfig:
        return self._config

    def calculate_risk(self, client_id: str) -> Optional[RiskSnapshot]:
        """
        Score a client from stored state.

        Returns:
            RiskSnapshot, or None if the client has no profile
        """
        if self._repository is None:
            return None

        profile = self._repository.get_profile(client_id)
        if profile is None:
            return None

        return self.score(profile, self._repository.get_exposures(client_id))

    def score(
        self,
        profile: CreditProfile,
        exposures: List[ClientExposure],
        calculated_at: Optional[datetime] = None,
    ) -> RiskSnapshot:
        """
        Score a profile and its exposures.

        Never raises for numeric edge cases and never returns NaN.
        """
        totals = ExposureTotals.from_exposures(exposures)

        concentration = safe_ratio(totals.max_symbol_notional, profile.credit_limit)
        leverage = safe_ratio(totals.total_notional, profile.collateral_value)
        margin_utilization = safe_ratio(profile.margin_requirement, profile.credit_limit)
        credit_utilization = safe_ratio(profile.used_credit, profile.credit_limit)

        components = self._score_components(
            concentration=concentration,
            leverage=leverage,
            margin_utilization=margin_utilization,
            credit_utilization=credit_utilization,
            unrealized_pnl=totals.total_unrealized_pnl,
        )
        risk_score = min(max(sum(components.values()), 0.0), 100.0)

        recommendations = self.recommend(
            risk_score,
            concentration=concentration,
            leverage=leverage,
            margin_utilization=margin_utilization,
        )

        return RiskSnapshot(
            client_id=profile.client_id,
            risk_score=risk_score,
            leverage=leverage,
            max_concentration=concentration,
            margin_utilization=margin_utilization,
            unrealized_pnl=totals.total_unrealized_pnl,
            total_exposure=totals.total_notional,
            credit_utilization=credit_utilization,
            recommendations=recommendations,
            components=components,
            calculated_at=calculated_at or self._clock.now(),
        )

    def _score_components(
        self,
        concentration: float,
        leverage: float,
        margin_utilization: float,
        credit_utilization: float,
        unrealized_pnl: Decimal,
    ) -> Dict[str, float]:
        weights = self._config.weights
        leverage_limit = self._config.limits.leverage_limit

        loss = 0.0
        if unrealized_pnl < 0:
            loss = min(float(abs(unrealized_pnl)) / weights.loss_scale * weights.loss_cap, weights.loss_cap)

        components = {
            "concentration": min(concentration * 100, weights.concentration_cap),
            "leverage": min(leverage / leverage_limit * weights.leverage_cap, weights.leverage_cap),
            "margin": min(margin_utilization * weights.margin_cap, weights.margin_cap),
            "credit": min(credit_utilization * weights.credit_cap, weights.credit_cap),
            "unrealized_loss": loss,
        }
        return {name: max(points, 0.0) for name, points in components.items()}

    def recommend(
        self,
        risk_score: float,
        concentration: float,
        leverage: float,
        margin_utilization: float,
    ) -> List[str]:
        """Ordered recommendations; every matching rule is included."""
        limits = self._config.limits
        recommendations = []

        if risk_score > CRITICAL_SCORE:
            recommendations.append(RECOMMEND_CRITICAL)
        if concentration > limits.concentration_limit:
            recommendations.append(RECOMMEND_CONCENTRATION)
        if leverage > limits.leverage_limit:
            recommendations.append(RECOMMEND_LEVERAGE)
        if margin_utilization > limits.margin_call_threshold:
            recommendations.append(RECOMMEND_MARGIN)
        if risk_score < LOW_SCORE:
            recommendations.append(RECOMMEND_INCREASE)

        return recommendations
