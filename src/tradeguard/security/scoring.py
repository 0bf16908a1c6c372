"""
TrustScoreEngine - Derives a 0-100 trust score from a user's history.

Additive model, then rounded and clamped:

    base 50
    + account age      (+2 per 30 days, max +15)
    + completed trades (+2 each, max +25)
    + rating bonus     ((average - 3) * 5, never negative, only once rated)
    - violations       (ledger weight per attributed kind, 5 per unattributed)
    - cancellations    (cancellation rate * 20)
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tradeguard.config.defaults import (
    TRUST_AGE_BONUS_CAP,
    TRUST_AGE_DAYS_PER_STEP,
    TRUST_AGE_POINTS_PER_STEP,
    TRUST_BASE_SCORE,
    TRUST_CANCELLATION_WEIGHT,
    TRUST_DEFAULT_SCORE,
    TRUST_LABEL_AVERAGE,
    TRUST_LABEL_EXCELLENT,
    TRUST_LABEL_GOOD,
    TRUST_LABEL_LOW,
    TRUST_MAX_SCORE,
    TRUST_MIN_SCORE,
    TRUST_RATING_NEUTRAL,
    TRUST_RATING_POINTS_PER_STAR,
    TRUST_TRADE_BONUS_CAP,
    TRUST_TRADE_POINTS,
    TRUST_UNATTRIBUTED_VIOLATION_PENALTY,
)
from .errors import DegradedScoreError
from .ledger import VIOLATION_PENALTIES
from .models import UserTrustProfile, ViolationCounts, ViolationKind, utcnow

logger = logging.getLogger(__name__)


class TrustScoreEngine:
    """
    Compute trust scores from profile snapshots.

    Stateless: safe to call for the same user from concurrent callers. The
    caller decides whether to persist the result as the cached score.
    """

    def __init__(self, penalties: Optional[Dict[ViolationKind, int]] = None):
        self.penalties = penalties or VIOLATION_PENALTIES

    def compute_trust_score(
        self,
        profile: Optional[UserTrustProfile],
        now: Optional[datetime] = None,
    ) -> int:
        """Score a profile, falling back to the default score if it is unusable."""
        try:
            return self.score(profile, now=now)
        except DegradedScoreError as e:
            logger.warning(f"Degraded trust score computation, using default: {e}")
            return TRUST_DEFAULT_SCORE

    def score(
        self,
        profile: Optional[UserTrustProfile],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Score a profile strictly.

        Raises:
            DegradedScoreError: If the profile is missing or malformed.
        """
        if profile is None:
            raise DegradedScoreError("no profile")
        self._check(profile)

        breakdown = self.breakdown(profile, now=now)
        total = sum(breakdown.values())
        return clamp_score(total)

    def breakdown(
        self,
        profile: UserTrustProfile,
        now: Optional[datetime] = None,
    ) -> Dict[str, float]:
        """Signed contribution of each term, before rounding and clamping."""
        now = _aware(now or utcnow())
        age_days = max(0, (now - _aware(profile.created_at)).days)

        terms: Dict[str, float] = {"base": TRUST_BASE_SCORE}
        terms["age"] = min(
            TRUST_AGE_BONUS_CAP,
            (age_days // TRUST_AGE_DAYS_PER_STEP) * TRUST_AGE_POINTS_PER_STEP,
        )
        terms["trades"] = min(
            TRUST_TRADE_BONUS_CAP, profile.completed_trades * TRUST_TRADE_POINTS
        )

        terms["rating"] = 0.0
        if profile.total_ratings > 0:
            terms["rating"] = max(
                0.0,
                (profile.average_rating - TRUST_RATING_NEUTRAL) * TRUST_RATING_POINTS_PER_STAR,
            )

        terms["violations"] = -self.violation_penalty(profile.violations)

        terms["cancellations"] = 0.0
        finished = profile.completed_trades + profile.cancelled_trades
        if finished > 0:
            rate = profile.cancelled_trades / finished
            terms["cancellations"] = -rate * TRUST_CANCELLATION_WEIGHT

        return terms

    def violation_penalty(self, violations: ViolationCounts) -> int:
        """Points lost to violations: kind weights plus a flat rate for the rest."""
        weighted = sum(
            violations.count(kind) * weight for kind, weight in self.penalties.items()
        )
        unattributed = max(0, violations.total - violations.attributed)
        return weighted + unattributed * TRUST_UNATTRIBUTED_VIOLATION_PENALTY

    def _check(self, profile: Any) -> None:
        """Reject profiles whose fields cannot be scored."""
        try:
            if not isinstance(profile.created_at, datetime):
                raise DegradedScoreError(f"createdAt is not a timestamp: {profile.created_at!r}")
            for name in ("completed_trades", "cancelled_trades", "total_ratings"):
                value = getattr(profile, name)
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise DegradedScoreError(f"{name} must be a non-negative integer: {value!r}")
            rating = profile.average_rating
            if isinstance(rating, bool) or not isinstance(rating, (int, float)) or not 0 <= rating <= 5:
                raise DegradedScoreError(f"averageRating out of range: {rating!r}")
            violations = profile.violations
            if violations.total < 0 or any(v < 0 for v in violations.by_kind.values()):
                raise DegradedScoreError("negative violation count")
        except AttributeError as e:
            raise DegradedScoreError(f"malformed profile: {e}") from e


def _aware(value: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def clamp_score(value: float) -> int:
    """Round half-up to an integer and clamp to [0, 100]."""
    rounded = math.floor(value + 0.5)
    return max(TRUST_MIN_SCORE, min(TRUST_MAX_SCORE, rounded))


def trust_label(score: int) -> str:
    """Display bucket for a trust score."""
    if score >= TRUST_LABEL_EXCELLENT:
        return "EXCELLENT"
    if score >= TRUST_LABEL_GOOD:
        return "GOOD"
    if score >= TRUST_LABEL_AVERAGE:
        return "AVERAGE"
    if score >= TRUST_LABEL_LOW:
        return "LOW"
    return "VERY_LOW"
