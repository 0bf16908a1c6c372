"""
RiskClassifier - Maps two trust scores to a risk tier and its constraints.

The tier is driven by the weaker of the two scores: one low-trust
participant is enough to add friction for both sides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from tradeguard.config.defaults import (
    TIER_DELIVERY_DAYS_HIGH_RISK,
    TIER_DELIVERY_DAYS_LOW_RISK,
    TIER_DELIVERY_DAYS_MEDIUM_RISK,
    TIER_DELIVERY_DAYS_VERY_HIGH_RISK,
    TIER_THRESHOLD_HIGH_RISK,
    TIER_THRESHOLD_LOW_RISK,
    TIER_THRESHOLD_MEDIUM_RISK,
    TIER_THRESHOLD_VERY_HIGH_RISK,
    TRUST_DEFAULT_SCORE,
    TRUST_MAX_SCORE,
    TRUST_MIN_SCORE,
)
from .errors import ValidationError
from .models import Constraints, RiskLevel

logger = logging.getLogger(__name__)


# Evaluated top-down, first match wins
TIER_THRESHOLDS: List[Tuple[int, RiskLevel]] = [
    (TIER_THRESHOLD_LOW_RISK, RiskLevel.LOW_RISK),
    (TIER_THRESHOLD_MEDIUM_RISK, RiskLevel.MEDIUM_RISK),
    (TIER_THRESHOLD_HIGH_RISK, RiskLevel.HIGH_RISK),
    (TIER_THRESHOLD_VERY_HIGH_RISK, RiskLevel.VERY_HIGH_RISK),
]

SECURITY_CONSTRAINTS: Dict[RiskLevel, Constraints] = {
    RiskLevel.LOW_RISK: Constraints(
        photos_required=False,
        tracking_required=False,
        max_delivery_days=TIER_DELIVERY_DAYS_LOW_RISK,
        requires_insurance=False,
    ),
    RiskLevel.MEDIUM_RISK: Constraints(
        photos_required=True,
        tracking_required=False,
        max_delivery_days=TIER_DELIVERY_DAYS_MEDIUM_RISK,
        requires_insurance=False,
    ),
    RiskLevel.HIGH_RISK: Constraints(
        photos_required=True,
        tracking_required=True,
        max_delivery_days=TIER_DELIVERY_DAYS_HIGH_RISK,
        requires_insurance=False,
    ),
    RiskLevel.VERY_HIGH_RISK: Constraints(
        photos_required=True,
        tracking_required=True,
        max_delivery_days=TIER_DELIVERY_DAYS_VERY_HIGH_RISK,
        requires_insurance=True,
    ),
}

RECOMMENDATIONS: Dict[RiskLevel, str] = {
    RiskLevel.LOW_RISK: "Excellent score ({score}/100). Low-risk trade, simplified procedure.",
    RiskLevel.MEDIUM_RISK: "Fair score ({score}/100). Item photos required before shipping.",
    RiskLevel.HIGH_RISK: "Low score ({score}/100). Photos and a tracking number are required.",
    RiskLevel.VERY_HIGH_RISK: (
        "Very low score ({score}/100). Maximum security: photos, tracking and insurance required."
    ),
}

FALLBACK_RECOMMENDATION = "Risk analysis unavailable, high security level applied as a precaution."

# Every tier must resolve; a missing entry fails at import rather than at runtime
for _level in RiskLevel:
    if _level not in SECURITY_CONSTRAINTS or _level not in RECOMMENDATIONS:
        raise RuntimeError(f"No constraint mapping for risk level {_level.value}")
if {level for _, level in TIER_THRESHOLDS} != set(RiskLevel):
    raise RuntimeError("Tier thresholds do not cover every risk level")


@dataclass(frozen=True)
class RiskAssessment:
    """Result of classifying a pair of trust scores."""
    risk_level: RiskLevel
    constraints: Constraints
    recommendation: str
    score_a: int
    score_b: int
    lowest_score: int
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskLevel": self.risk_level.value,
            "constraints": self.constraints.to_dict(),
            "recommendation": self.recommendation,
            "scoreA": self.score_a,
            "scoreB": self.score_b,
            "lowestScore": self.lowest_score,
            "degraded": self.degraded,
        }


class RiskClassifier:
    """Deterministic lookup from the lowest score to a risk tier."""

    def classify(self, score_a: int, score_b: int) -> RiskAssessment:
        """
        Classify a trade from both parties' trust scores.

        Args:
            score_a: Trust score of party A, an integer in [0, 100].
            score_b: Trust score of party B, an integer in [0, 100].

        Raises:
            ValidationError: If a score is not an integer in range.
        """
        for name, score in (("score_a", score_a), ("score_b", score_b)):
            if isinstance(score, bool) or not isinstance(score, int):
                raise ValidationError(f"{name} must be an integer, got {score!r}", field=name)
            if not TRUST_MIN_SCORE <= score <= TRUST_MAX_SCORE:
                raise ValidationError(f"{name} out of range [0, 100]: {score}", field=name)

        lowest = min(score_a, score_b)
        level = self.level_for(lowest)
        return RiskAssessment(
            risk_level=level,
            constraints=SECURITY_CONSTRAINTS[level],
            recommendation=recommendation_for(level, lowest),
            score_a=score_a,
            score_b=score_b,
            lowest_score=lowest,
        )

    def level_for(self, score: int) -> RiskLevel:
        for threshold, level in TIER_THRESHOLDS:
            if score >= threshold:
                return level
        return RiskLevel.VERY_HIGH_RISK

    def fallback(self) -> RiskAssessment:
        """Conservative assessment used when a score could not be computed."""
        logger.warning("Risk analysis degraded, applying HIGH_RISK constraints")
        return RiskAssessment(
            risk_level=RiskLevel.HIGH_RISK,
            constraints=SECURITY_CONSTRAINTS[RiskLevel.HIGH_RISK],
            recommendation=FALLBACK_RECOMMENDATION,
            score_a=TRUST_DEFAULT_SCORE,
            score_b=TRUST_DEFAULT_SCORE,
            lowest_score=TRUST_DEFAULT_SCORE,
            degraded=True,
        )


def recommendation_for(level: RiskLevel, score: int) -> str:
    return RECOMMENDATIONS[level].format(score=score)
