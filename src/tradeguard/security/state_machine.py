"""
TradeValidationStateMachine - Bilateral, step-by-step validation of a trade.

Each party clears each gate independently (photos when required, shipment,
delivery). The aggregate status is never set directly: it is projected from
the per-party flags by ``derive_status`` every time it is read.

Operations mutate the Trade they are given. All checks run before the first
write, so a rejected call leaves the trade untouched; the caller persists
the trade only when the call returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from tradeguard.config.defaults import RATING_MAX, RATING_MIN
from .errors import NotApplicableError, PreconditionError, ValidationError
from .models import (
    RATING_KEYS,
    REPORT_STATUS_PENDING,
    TERMINAL_EXITS,
    Party,
    PartyFlags,
    Proof,
    Rating,
    Report,
    TimelineEntry,
    TimelineStep,
    Trade,
    TradeSecurity,
    TradeStatus,
    derive_status,
    utcnow,
)
from .risk import RiskAssessment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    """What a successful operation did."""
    step: str
    party: Optional[Party]
    status: TradeStatus
    both_done: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "party": self.party.value if self.party else None,
            "status": self.status.value,
            "bothDone": self.both_done,
            "message": self.message,
        }


class TradeValidationStateMachine:
    """Drives one trade through photos, shipment and delivery gates."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    # =============================================
    # CREATION
    # =============================================

    def freeze(self, trade: Trade, assessment: RiskAssessment) -> Trade:
        """Attach the scores, tier and constraints of ``assessment`` for good."""
        if trade.security is not None:
            raise PreconditionError(
                f"Trade {trade.trade_id} already has frozen security constraints",
                flag="constraints",
            )
        trade.security = TradeSecurity(
            trust_scores={
                Party.PARTY_A.value: assessment.score_a,
                Party.PARTY_B.value: assessment.score_b,
            },
            risk_level=assessment.risk_level,
            constraints=assessment.constraints,
        )
        self._append(trade.security, TimelineStep.TRADE_CREATED, Party.PARTY_A, {
            "riskLevel": assessment.risk_level.value,
            "recommendation": assessment.recommendation,
            "degraded": assessment.degraded,
        })
        return trade

    # =============================================
    # STEPS
    # =============================================

    def submit_photos(
        self,
        trade: Trade,
        party: Party,
        photos: List[str],
        tracking_number: Optional[str] = None,
    ) -> StepOutcome:
        """Store a party's pre-shipment evidence."""
        photos = _clean_refs(photos, "photos")
        if not photos:
            raise ValidationError("At least one photo is required", field="photos")
        tracking_number = _clean_tracking(tracking_number)

        security = self._mutable(trade)
        if not security.constraints.photos_required:
            raise NotApplicableError(
                "Photos are not required for this trade",
                flag="photosSubmitted",
                party=party.value,
            )
        self._reject_duplicate(security.steps.photos_submitted, party, "photosSubmitted")

        # Proof and flag are written together
        security.proofs[party.value] = Proof(
            photos=photos,
            tracking_number=tracking_number,
            submitted_at=self.clock(),
        )
        security.steps.photos_submitted.mark(party)
        self._append(security, TimelineStep.PHOTOS_SUBMITTED, party, {
            "photoCount": len(photos),
            "hasTracking": tracking_number is not None,
        })

        both = security.steps.photos_submitted.both
        return StepOutcome(
            step=TimelineStep.PHOTOS_SUBMITTED,
            party=party,
            status=trade.status,
            both_done=both,
            message=(
                "Photos validated. Both parties can now ship their items."
                if both else
                "Photos submitted. Waiting for the other party's photos."
            ),
        )

    def confirm_shipment(
        self,
        trade: Trade,
        party: Party,
        tracking_number: Optional[str] = None,
    ) -> StepOutcome:
        """Mark a party's items as shipped."""
        tracking_number = _clean_tracking(tracking_number)

        security = self._mutable(trade)
        steps = security.steps
        if security.constraints.photos_required and not steps.photos_submitted.get(party):
            raise PreconditionError(
                f"{party.value} must submit photos of their items before shipping",
                flag="photosSubmitted",
                party=party.value,
            )
        self._reject_duplicate(steps.shipping_confirmed, party, "shippingConfirmed")

        proof = security.proofs.get(party.value)
        known_tracking = tracking_number or (proof.tracking_number if proof else None)
        if security.constraints.tracking_required and not known_tracking:
            raise ValidationError(
                "A tracking number is required for this trade", field="trackingNumber"
            )

        if tracking_number is not None:
            if proof is None:
                security.proofs[party.value] = Proof(tracking_number=tracking_number)
            else:
                proof.tracking_number = tracking_number
        steps.shipping_confirmed.mark(party)
        self._append(security, TimelineStep.SHIPPING_CONFIRMED, party, {
            "trackingNumber": known_tracking,
        })

        both = steps.shipping_confirmed.both
        return StepOutcome(
            step=TimelineStep.SHIPPING_CONFIRMED,
            party=party,
            status=trade.status,
            both_done=both,
            message=(
                "Both items are shipped. Confirm delivery once received."
                if both else
                "Shipment confirmed. Waiting for the other party to ship."
            ),
        )

    def confirm_delivery(
        self,
        trade: Trade,
        party: Party,
        rating: int,
        comment: str = "",
    ) -> StepOutcome:
        """Confirm receipt of the counterparty's items and rate them."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not RATING_MIN <= rating <= RATING_MAX:
            raise ValidationError(
                f"Rating must be an integer between {RATING_MIN} and {RATING_MAX}, got {rating!r}",
                field="rating",
            )
        comment = (comment or "").strip()

        security = self._mutable(trade)
        steps = security.steps
        counterparty = party.other
        if not steps.shipping_confirmed.get(counterparty):
            raise PreconditionError(
                f"{counterparty.value} has not confirmed shipment yet",
                flag="shippingConfirmed",
                party=counterparty.value,
            )
        self._reject_duplicate(steps.delivery_confirmed, party, "deliveryConfirmed")

        now = self.clock()
        trade.ratings[RATING_KEYS[party]] = Rating(score=rating, comment=comment, submitted_at=now)
        steps.delivery_confirmed.mark(party)
        self._append(security, TimelineStep.DELIVERY_CONFIRMED, party, {
            "rating": rating,
            "hasComment": bool(comment),
        })

        both = steps.delivery_confirmed.both
        if both:
            self._append(security, TimelineStep.TRADE_COMPLETED, None, {})
            logger.info(f"Trade {trade.trade_id} completed")
        return StepOutcome(
            step=TimelineStep.DELIVERY_CONFIRMED,
            party=party,
            status=trade.status,
            both_done=both,
            message=(
                "Trade completed. Thank you for your rating."
                if both else
                "Delivery confirmed. Waiting for the other party's confirmation."
            ),
        )

    def report_problem(
        self,
        trade: Trade,
        party: Party,
        reason: str,
        description: str = "",
        evidence: Optional[List[str]] = None,
    ) -> Report:
        """
        File a report for moderation.

        Allowed before completion and after it; never changes status,
        steps or ratings.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to report a problem", field="reason")
        evidence = _clean_refs(evidence or [], "evidence")

        security = self._frozen(trade)
        status = derive_status(security)
        if status in TERMINAL_EXITS:
            raise PreconditionError(
                f"Trade {trade.trade_id} is {status.value}; reports are closed",
                flag="status",
            )

        report = Report(
            reported_by=party.value,
            reason=reason,
            description=(description or "").strip(),
            evidence=evidence,
            status=REPORT_STATUS_PENDING,
            created_at=self.clock(),
        )
        security.reports.append(report)
        self._append(security, TimelineStep.PROBLEM_REPORTED, party, {
            "reason": reason,
            "evidenceCount": len(evidence),
        })
        return report

    def cancel(self, trade: Trade, party: Party, reason: str = "") -> StepOutcome:
        """Withdraw from a trade before anything has been shipped."""
        security = self._mutable(trade)
        if security.steps.shipping_confirmed.any:
            raise PreconditionError(
                "A trade cannot be cancelled once shipment has been confirmed",
                flag="shippingConfirmed",
                party=party.value,
            )
        security.resolution = TradeStatus.CANCELLED
        self._append(security, TimelineStep.TRADE_CANCELLED, party, {"reason": (reason or "").strip()})
        return StepOutcome(
            step=TimelineStep.TRADE_CANCELLED,
            party=party,
            status=trade.status,
            both_done=False,
            message="Trade cancelled.",
        )

    def mark_disputed(self, trade: Trade, note: str = "") -> StepOutcome:
        """Moderation exit. Completed trades may still be disputed."""
        security = self._frozen(trade)
        status = derive_status(security)
        if status in TERMINAL_EXITS:
            raise PreconditionError(
                f"Trade {trade.trade_id} is already {status.value}", flag="status"
            )
        security.resolution = TradeStatus.DISPUTED
        self._append(security, TimelineStep.TRADE_DISPUTED, None, {
            "previousStatus": status.value,
            "note": (note or "").strip(),
        })
        return StepOutcome(
            step=TimelineStep.TRADE_DISPUTED,
            party=None,
            status=trade.status,
            both_done=False,
            message="Trade marked as disputed.",
        )

    # =============================================
    # QUERIES
    # =============================================

    def next_steps(self, trade: Trade, party: Party) -> List[str]:
        """Gates the party still has to clear, in order."""
        security = trade.security
        if security is None:
            return ["Wait for the trade's security analysis"]
        status = derive_status(security)
        if status in TERMINAL_EXITS or status is TradeStatus.COMPLETED:
            return []

        steps = security.steps
        constraints = security.constraints
        todo = []
        if constraints.photos_required and not steps.photos_submitted.get(party):
            todo.append("Submit photos of your items before shipping")
        if not steps.shipping_confirmed.get(party):
            if constraints.tracking_required:
                todo.append(
                    f"Ship your items with a tracking number within {constraints.max_delivery_days} days"
                )
            else:
                todo.append(f"Ship your items within {constraints.max_delivery_days} days")
        if not steps.delivery_confirmed.get(party):
            if steps.shipping_confirmed.get(party.other):
                todo.append("Confirm delivery and rate your trading partner")
            else:
                todo.append("Wait for your trading partner to ship")
        if constraints.requires_insurance and not steps.shipping_confirmed.get(party):
            todo.append("Insure your shipment")
        return todo

    # =============================================
    # INTERNALS
    # =============================================

    def _frozen(self, trade: Trade) -> TradeSecurity:
        if trade.security is None:
            raise PreconditionError(
                f"Trade {trade.trade_id} has no frozen security constraints yet",
                flag="constraints",
            )
        return trade.security

    def _mutable(self, trade: Trade) -> TradeSecurity:
        security = self._frozen(trade)
        status = derive_status(security)
        if status in TERMINAL_EXITS or status is TradeStatus.COMPLETED:
            raise PreconditionError(
                f"Trade {trade.trade_id} is {status.value}; no further steps are accepted",
                flag="status",
            )
        return security

    def _reject_duplicate(self, flags: PartyFlags, party: Party, flag: str) -> None:
        if flags.get(party):
            raise PreconditionError(
                f"{flag} already recorded for {party.value}",
                flag=flag,
                party=party.value,
            )

    def _append(
        self,
        security: TradeSecurity,
        step: str,
        party: Optional[Party],
        data: Dict[str, Any],
    ) -> None:
        security.timeline.append(TimelineEntry(
            step=step,
            acting_party=party.value if party else None,
            timestamp=self.clock(),
            data=data,
        ))


def _clean_refs(refs: List[str], field: str) -> List[str]:
    if isinstance(refs, str) or not isinstance(refs, (list, tuple)):
        raise ValidationError(f"{field} must be a list of references", field=field)
    cleaned = []
    for ref in refs:
        if not isinstance(ref, str) or not ref.strip():
            raise ValidationError(f"{field} contains an empty or non-text reference", field=field)
        cleaned.append(ref.strip())
    return cleaned


def _clean_tracking(tracking_number: Optional[str]) -> Optional[str]:
    if tracking_number is None:
        return None
    if not isinstance(tracking_number, str):
        raise ValidationError("trackingNumber must be text", field="trackingNumber")
    return tracking_number.strip() or None
