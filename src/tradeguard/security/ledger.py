"""
ViolationLedger - Write-only record of penalized trade behavior.

Recording a violation never touches the cached trust score; the next
TrustScoreEngine run picks the new counts up.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from tradeguard.config.defaults import (
    VIOLATION_PENALTY_COMMUNICATION_ISSUE,
    VIOLATION_PENALTY_DAMAGED,
    VIOLATION_PENALTY_FAKE,
    VIOLATION_PENALTY_NOT_SHIPPED,
    VIOLATION_PENALTY_WRONG_ITEM,
)
from .errors import NotFoundError, ValidationError
from .models import ViolationKind, ViolationRecord, utcnow

if TYPE_CHECKING:
    from .auditor import SecurityAuditor
    from .store import TradeStore

logger = logging.getLogger(__name__)


VIOLATION_PENALTIES: Dict[ViolationKind, int] = {
    ViolationKind.NOT_SHIPPED: VIOLATION_PENALTY_NOT_SHIPPED,
    ViolationKind.WRONG_ITEM: VIOLATION_PENALTY_WRONG_ITEM,
    ViolationKind.DAMAGED: VIOLATION_PENALTY_DAMAGED,
    ViolationKind.FAKE: VIOLATION_PENALTY_FAKE,
    ViolationKind.COMMUNICATION_ISSUE: VIOLATION_PENALTY_COMMUNICATION_ISSUE,
}

if set(VIOLATION_PENALTIES) != set(ViolationKind):
    raise RuntimeError("Penalty table does not cover every violation kind")


def parse_kind(kind: Union[str, ViolationKind]) -> ViolationKind:
    """Resolve a violation kind, rejecting anything outside the closed set."""
    try:
        return ViolationKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in ViolationKind)
        raise ValidationError(f"Unknown violation kind {kind!r} (expected one of: {valid})", field="kind") from None


class ViolationLedger:
    """Append violations against users and report the penalty weight applied."""

    def __init__(self, store: "TradeStore", auditor: Optional["SecurityAuditor"] = None):
        self.store = store
        self.auditor = auditor

    async def record_violation(
        self,
        user_id: str,
        kind: Union[str, ViolationKind],
        description: str = "",
        trade_id: Optional[str] = None,
    ) -> int:
        """
        Record a violation.

        Returns:
            The penalty points the violation will cost on the next score run.

        Raises:
            ValidationError: If the kind is unknown.
            NotFoundError: If the user does not exist.
        """
        violation_kind = parse_kind(kind)
        if not await self.store.user_exists(user_id):
            raise NotFoundError("user", user_id)

        penalty = VIOLATION_PENALTIES[violation_kind]
        record = ViolationRecord(
            user_id=user_id,
            kind=violation_kind,
            penalty=penalty,
            description=description,
            trade_id=trade_id,
            created_at=utcnow(),
        )
        await self.store.add_violation(record)
        logger.info(f"Violation {violation_kind.value} recorded for {user_id} (-{penalty})")

        if self.auditor:
            await self.auditor.log_violation(user_id, violation_kind.value, penalty, trade_id)
        return penalty

    async def history(self, user_id: str) -> List[ViolationRecord]:
        """Ledger entries for a user, oldest first."""
        if not await self.store.user_exists(user_id):
            raise NotFoundError("user", user_id)
        return await self.store.list_violations(user_id)
