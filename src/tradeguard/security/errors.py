"""
Exception taxonomy for the trade security subsystem.

Every public operation either returns or raises one of these; callers map
ValidationError/PreconditionError to 4xx responses and NotFoundError to 404.
"""

from __future__ import annotations

from typing import Optional


class TradeSecurityError(Exception):
    """Base exception for trade security operations."""
    pass


class ValidationError(TradeSecurityError):
    """Malformed input. No state was mutated."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class PreconditionError(TradeSecurityError):
    """Operation attempted out of order or repeated.

    Carries the step flag involved and the party whose action is missing
    (or already recorded) so the caller can explain it to the user.
    """

    def __init__(
        self,
        message: str,
        flag: Optional[str] = None,
        party: Optional[str] = None,
    ):
        self.flag = flag
        self.party = party
        super().__init__(message)


class NotApplicableError(PreconditionError):
    """Operation not called for by the trade's frozen constraints."""
    pass


class NotFoundError(TradeSecurityError):
    """Referenced trade or user does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class AggregationError(TradeSecurityError):
    """The rating aggregator failed while completing a trade.

    The trade is left as it was before the completing step, so the step
    can be retried once the aggregator is back.
    """

    def __init__(self, trade_id: str, cause: Exception):
        self.trade_id = trade_id
        self.cause = cause
        super().__init__(f"Could not record ratings for trade {trade_id}: {cause}")


class DegradedScoreError(TradeSecurityError):
    """A trust profile could not be read or scored.

    Internal only: callers fall back to the default score or the
    conservative risk tier instead of surfacing it.
    """
    pass
