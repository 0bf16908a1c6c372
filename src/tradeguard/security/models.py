"""
Shared dataclasses for the trade security subsystem.

Field names in the ``to_dict``/``from_dict`` representations are the
persisted wire names and must not change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from tradeguard.config.defaults import TRUST_DEFAULT_SCORE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Party(str, Enum):
    """The two sides of a trade."""
    PARTY_A = "partyA"
    PARTY_B = "partyB"

    @property
    def other(self) -> "Party":
        return Party.PARTY_B if self is Party.PARTY_A else Party.PARTY_A


class TradeStatus(str, Enum):
    PENDING = "pending"
    PHOTOS_REQUIRED = "photos_required"
    ACCEPTED = "accepted"
    SHIPPING_CONFIRMED = "shipping_confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


TERMINAL_EXITS = (TradeStatus.CANCELLED, TradeStatus.DISPUTED)


class RiskLevel(str, Enum):
    LOW_RISK = "LOW_RISK"
    MEDIUM_RISK = "MEDIUM_RISK"
    HIGH_RISK = "HIGH_RISK"
    VERY_HIGH_RISK = "VERY_HIGH_RISK"


class ViolationKind(str, Enum):
    NOT_SHIPPED = "not_shipped"
    WRONG_ITEM = "wrong_item"
    DAMAGED = "damaged"
    FAKE = "fake"
    COMMUNICATION_ISSUE = "communication_issue"


class TimelineStep:
    """Timeline step names."""
    TRADE_CREATED = "trade_created"
    PHOTOS_SUBMITTED = "photos_submitted"
    SHIPPING_CONFIRMED = "shipping_confirmed"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    PROBLEM_REPORTED = "problem_reported"
    TRADE_COMPLETED = "trade_completed"
    TRADE_CANCELLED = "trade_cancelled"
    TRADE_DISPUTED = "trade_disputed"


REPORT_STATUS_PENDING = "pending"


# =============================================
# USER PROFILE
# =============================================

@dataclass
class ViolationCounts:
    """Violation counters by kind plus an overall total.

    ``total`` may exceed the sum of ``by_kind`` for records imported
    without a breakdown.
    """
    by_kind: Dict[str, int] = field(default_factory=dict)
    total: int = 0

    def count(self, kind: ViolationKind) -> int:
        return self.by_kind.get(kind.value, 0)

    @property
    def attributed(self) -> int:
        return sum(self.by_kind.values())

    def to_dict(self) -> Dict[str, int]:
        data = {kind.value: self.by_kind.get(kind.value, 0) for kind in ViolationKind}
        data["total"] = self.total
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ViolationCounts":
        data = dict(data or {})
        total = int(data.pop("total", 0))
        by_kind = {k: int(v) for k, v in data.items() if v}
        return cls(by_kind=by_kind, total=max(total, sum(by_kind.values())))


@dataclass
class UserTrustProfile:
    """The slice of a user record owned by the trade security subsystem."""
    user_id: str
    created_at: datetime
    completed_trades: int = 0
    cancelled_trades: int = 0
    average_rating: float = 0.0
    total_ratings: int = 0
    violations: ViolationCounts = field(default_factory=ViolationCounts)
    trust_score: int = TRUST_DEFAULT_SCORE
    last_activity: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "createdAt": to_iso(self.created_at),
            "completedTrades": self.completed_trades,
            "cancelledTrades": self.cancelled_trades,
            "averageRating": self.average_rating,
            "totalRatings": self.total_ratings,
            "violations": self.violations.to_dict(),
            "trustScore": self.trust_score,
            "lastActivity": to_iso(self.last_activity),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserTrustProfile":
        return cls(
            user_id=data["userId"],
            created_at=from_iso(data["createdAt"]),
            completed_trades=int(data.get("completedTrades", 0)),
            cancelled_trades=int(data.get("cancelledTrades", 0)),
            average_rating=float(data.get("averageRating", 0.0)),
            total_ratings=int(data.get("totalRatings", 0)),
            violations=ViolationCounts.from_dict(data.get("violations")),
            trust_score=int(data.get("trustScore", TRUST_DEFAULT_SCORE)),
            last_activity=from_iso(data.get("lastActivity")),
        )


@dataclass
class ViolationRecord:
    """One ledger entry."""
    user_id: str
    kind: ViolationKind
    penalty: int
    description: str = ""
    trade_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RatingReceived:
    """A rating a user received from a counterparty on one trade."""
    user_id: str
    from_user: str
    trade_id: str
    rating: int
    comment: str = ""
    created_at: datetime = field(default_factory=utcnow)


# =============================================
# TRADE SECURITY BLOCK
# =============================================

@dataclass(frozen=True)
class Constraints:
    """Procedural requirements frozen onto a trade at creation."""
    photos_required: bool
    tracking_required: bool
    max_delivery_days: int
    requires_insurance: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photosRequired": self.photos_required,
            "trackingRequired": self.tracking_required,
            "maxDeliveryDays": self.max_delivery_days,
            "requiresInsurance": self.requires_insurance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Constraints":
        return cls(
            photos_required=bool(data["photosRequired"]),
            tracking_required=bool(data["trackingRequired"]),
            max_delivery_days=int(data["maxDeliveryDays"]),
            requires_insurance=bool(data["requiresInsurance"]),
        )


@dataclass
class PartyFlags:
    """A per-party boolean pair. Flags only ever go from False to True."""
    party_a: bool = False
    party_b: bool = False

    def get(self, party: Party) -> bool:
        return self.party_a if party is Party.PARTY_A else self.party_b

    def mark(self, party: Party) -> None:
        if party is Party.PARTY_A:
            self.party_a = True
        else:
            self.party_b = True

    @property
    def both(self) -> bool:
        return self.party_a and self.party_b

    @property
    def any(self) -> bool:
        return self.party_a or self.party_b

    def to_dict(self) -> Dict[str, bool]:
        return {Party.PARTY_A.value: self.party_a, Party.PARTY_B.value: self.party_b}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PartyFlags":
        data = data or {}
        return cls(
            party_a=bool(data.get(Party.PARTY_A.value, False)),
            party_b=bool(data.get(Party.PARTY_B.value, False)),
        )


@dataclass
class ValidationSteps:
    photos_submitted: PartyFlags = field(default_factory=PartyFlags)
    shipping_confirmed: PartyFlags = field(default_factory=PartyFlags)
    delivery_confirmed: PartyFlags = field(default_factory=PartyFlags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photosSubmitted": self.photos_submitted.to_dict(),
            "shippingConfirmed": self.shipping_confirmed.to_dict(),
            "deliveryConfirmed": self.delivery_confirmed.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ValidationSteps":
        data = data or {}
        return cls(
            photos_submitted=PartyFlags.from_dict(data.get("photosSubmitted")),
            shipping_confirmed=PartyFlags.from_dict(data.get("shippingConfirmed")),
            delivery_confirmed=PartyFlags.from_dict(data.get("deliveryConfirmed")),
        )


@dataclass
class Proof:
    """Evidence bundle submitted by one party. Photos are opaque blob refs."""
    photos: List[str] = field(default_factory=list)
    tracking_number: Optional[str] = None
    submitted_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photos": list(self.photos),
            "trackingNumber": self.tracking_number,
            "submittedAt": to_iso(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proof":
        return cls(
            photos=list(data.get("photos") or []),
            tracking_number=data.get("trackingNumber"),
            submitted_at=from_iso(data.get("submittedAt")),
        )


@dataclass(frozen=True)
class TimelineEntry:
    step: str
    acting_party: Optional[str]
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "actingParty": self.acting_party,
            "timestamp": to_iso(self.timestamp),
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEntry":
        return cls(
            step=data["step"],
            acting_party=data.get("actingParty"),
            timestamp=from_iso(data["timestamp"]),
            data=dict(data.get("data") or {}),
        )


@dataclass(frozen=True)
class Report:
    reported_by: str
    reason: str
    description: str
    evidence: List[str]
    status: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reportedBy": self.reported_by,
            "reason": self.reason,
            "description": self.description,
            "evidence": list(self.evidence),
            "status": self.status,
            "createdAt": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Report":
        return cls(
            reported_by=data["reportedBy"],
            reason=data["reason"],
            description=data.get("description", ""),
            evidence=list(data.get("evidence") or []),
            status=data.get("status", REPORT_STATUS_PENDING),
            created_at=from_iso(data["createdAt"]),
        )


@dataclass(frozen=True)
class Rating:
    score: int
    comment: str
    submitted_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "comment": self.comment,
            "submittedAt": to_iso(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rating":
        return cls(
            score=int(data["score"]),
            comment=data.get("comment", ""),
            submitted_at=from_iso(data["submittedAt"]),
        )


# Rating slots, keyed by the rater
RATING_KEYS = {
    Party.PARTY_A: "partyAOnPartyB",
    Party.PARTY_B: "partyBOnPartyA",
}


@dataclass
class TradeSecurity:
    trust_scores: Dict[str, int]
    risk_level: RiskLevel
    constraints: Constraints
    steps: ValidationSteps = field(default_factory=ValidationSteps)
    proofs: Dict[str, Optional[Proof]] = field(
        default_factory=lambda: {p.value: None for p in Party}
    )
    timeline: List[TimelineEntry] = field(default_factory=list)
    reports: List[Report] = field(default_factory=list)
    resolution: Optional[TradeStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trustScores": dict(self.trust_scores),
            "riskLevel": self.risk_level.value,
            "constraints": self.constraints.to_dict(),
            "steps": self.steps.to_dict(),
            "proofs": {
                party: proof.to_dict() if proof is not None else None
                for party, proof in self.proofs.items()
            },
            "timeline": [entry.to_dict() for entry in self.timeline],
            "reports": [report.to_dict() for report in self.reports],
            "resolution": self.resolution.value if self.resolution else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeSecurity":
        proofs = data.get("proofs") or {}
        resolution = data.get("resolution")
        return cls(
            trust_scores={k: int(v) for k, v in data["trustScores"].items()},
            risk_level=RiskLevel(data["riskLevel"]),
            constraints=Constraints.from_dict(data["constraints"]),
            steps=ValidationSteps.from_dict(data.get("steps")),
            proofs={
                p.value: Proof.from_dict(proofs[p.value]) if proofs.get(p.value) else None
                for p in Party
            },
            timeline=[TimelineEntry.from_dict(e) for e in data.get("timeline") or []],
            reports=[Report.from_dict(r) for r in data.get("reports") or []],
            resolution=TradeStatus(resolution) if resolution else None,
        )


def derive_status(security: Optional[TradeSecurity]) -> TradeStatus:
    """Project the aggregate status from the security block.

    Status is never stored on its own; it is recomputed from the
    resolution marker, the constraints and the per-party step flags.
    """
    if security is None:
        return TradeStatus.PENDING
    if security.resolution is not None:
        return security.resolution
    steps = security.steps
    if steps.delivery_confirmed.both:
        return TradeStatus.COMPLETED
    if steps.shipping_confirmed.both:
        return TradeStatus.SHIPPING_CONFIRMED
    if security.constraints.photos_required and not steps.photos_submitted.both:
        return TradeStatus.PHOTOS_REQUIRED
    return TradeStatus.ACCEPTED


@dataclass
class Trade:
    """One barter agreement between exactly two users."""
    trade_id: str
    party_a: str
    party_b: str
    items_a: List[str] = field(default_factory=list)
    items_b: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    security: Optional[TradeSecurity] = None
    ratings: Dict[str, Optional[Rating]] = field(
        default_factory=lambda: {key: None for key in RATING_KEYS.values()}
    )
    version: int = 0

    @property
    def status(self) -> TradeStatus:
        return derive_status(self.security)

    def user_of(self, party: Party) -> str:
        return self.party_a if party is Party.PARTY_A else self.party_b

    def party_of(self, user_id: str) -> Optional[Party]:
        if user_id == self.party_a:
            return Party.PARTY_A
        if user_id == self.party_b:
            return Party.PARTY_B
        return None

    def rating_by(self, party: Party) -> Optional[Rating]:
        return self.ratings.get(RATING_KEYS[party])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tradeId": self.trade_id,
            "partyA": self.party_a,
            "partyB": self.party_b,
            "itemsA": list(self.items_a),
            "itemsB": list(self.items_b),
            "createdAt": to_iso(self.created_at),
            "status": self.status.value,
            "security": self.security.to_dict() if self.security else None,
            "ratings": {
                key: rating.to_dict() if rating is not None else None
                for key, rating in self.ratings.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], version: int = 0) -> "Trade":
        ratings = data.get("ratings") or {}
        security = data.get("security")
        return cls(
            trade_id=data["tradeId"],
            party_a=data["partyA"],
            party_b=data["partyB"],
            items_a=list(data.get("itemsA") or []),
            items_b=list(data.get("itemsB") or []),
            created_at=from_iso(data["createdAt"]),
            security=TradeSecurity.from_dict(security) if security else None,
            ratings={
                key: Rating.from_dict(ratings[key]) if ratings.get(key) else None
                for key in RATING_KEYS.values()
            },
            version=version,
        )
