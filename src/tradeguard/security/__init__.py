"""
Trade security subsystem.

- TrustScoreEngine: 0-100 reputation score from a user's history
- RiskClassifier: weakest-link risk tier and its frozen constraints
- TradeValidationStateMachine: bilateral photos/shipment/delivery gates
- ViolationLedger: write-only penalties read by the next score run
- TradeSecurityService: single entry point wiring them to storage and audit
"""

from __future__ import annotations

from .errors import (
    AggregationError,
    DegradedScoreError,
    NotApplicableError,
    NotFoundError,
    PreconditionError,
    TradeSecurityError,
    ValidationError,
)
from .ledger import VIOLATION_PENALTIES, ViolationLedger
from .models import (
    Constraints,
    Party,
    RiskLevel,
    Trade,
    TradeStatus,
    UserTrustProfile,
    ViolationCounts,
    ViolationKind,
    derive_status,
)
from .risk import RiskAssessment, RiskClassifier
from .scoring import TrustScoreEngine, trust_label
from .service import TradeSecurityService
from .state_machine import StepOutcome, TradeValidationStateMachine
from .store import TradeStore

__all__ = [
    "TradeSecurityService",
    "TradeStore",
    "TrustScoreEngine",
    "RiskClassifier",
    "RiskAssessment",
    "TradeValidationStateMachine",
    "StepOutcome",
    "ViolationLedger",
    "VIOLATION_PENALTIES",
    "Constraints",
    "Party",
    "RiskLevel",
    "Trade",
    "TradeStatus",
    "UserTrustProfile",
    "ViolationCounts",
    "ViolationKind",
    "derive_status",
    "trust_label",
    "TradeSecurityError",
    "ValidationError",
    "PreconditionError",
    "NotApplicableError",
    "NotFoundError",
    "AggregationError",
    "DegradedScoreError",
]
