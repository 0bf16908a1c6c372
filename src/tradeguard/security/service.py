"""
TradeSecurityService - Coordinates all trade security components.

Single entry point: scoring, classification, trade creation, the
validation steps, violations and status queries. Every trade mutation runs
under that trade's lock on a working copy, and is persisted with a
version-conditional write only once the step succeeded.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from tradeguard.config.defaults import TRUST_DEFAULT_SCORE
from tradeguard.config.settings import SecurityConfig, get_config
from .auditor import AuditLevel, SecurityAuditor
from .errors import AggregationError, DegradedScoreError, NotFoundError, ValidationError
from .ledger import ViolationLedger
from .models import (
    Party,
    Report,
    Trade,
    UserTrustProfile,
    ViolationKind,
    ViolationRecord,
    utcnow,
)
from .risk import RiskAssessment, RiskClassifier
from .scoring import TrustScoreEngine, trust_label
from .state_machine import StepOutcome, TradeValidationStateMachine
from .stats import ProfileStatsAggregator, RatingAggregator
from .store import TradeStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ModerationHook = Callable[[str, Report], Awaitable[None]]


class TradeSecurityService:
    """
    Single entry point for trade security operations.

    Collaborators can be injected for tests or to plug in external
    services (rating aggregation, moderation notifications).
    """

    def __init__(
        self,
        config: Optional[SecurityConfig] = None,
        store: Optional[TradeStore] = None,
        aggregator: Optional[RatingAggregator] = None,
        moderation_hook: Optional[ModerationHook] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or get_config()
        self.clock = clock

        self.store = store or TradeStore(self.config.db_path)
        self.auditor = SecurityAuditor(
            self.config.audit_path,
            level=AuditLevel.parse(self.config.audit_level),
            sample_rate=self.config.audit_sample_rate,
        )
        self.engine = TrustScoreEngine()
        self.classifier = RiskClassifier()
        self.ledger = ViolationLedger(self.store, auditor=self.auditor)
        self.machine = TradeValidationStateMachine(clock=clock)
        self.aggregator = aggregator or ProfileStatsAggregator(self.store)
        self.moderation_hook = moderation_hook

        # Locks live only while a call holds or awaits them
        self._trade_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def initialize(self) -> None:
        await self.store.initialize()
        logger.info("TradeSecurityService initialized")

    async def close(self) -> None:
        await self.store.close()

    # =============================================
    # USERS & SCORES
    # =============================================

    async def register_user(
        self, user_id: str, created_at: Optional[datetime] = None
    ) -> UserTrustProfile:
        """Create the trust profile for a new account."""
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if await self.store.user_exists(user_id):
            raise ValidationError(f"User {user_id} already has a trust profile", field="user_id")
        return await self.store.add_user(user_id, created_at or self.clock())

    async def get_profile(self, user_id: str) -> UserTrustProfile:
        profile = await self.store.get_profile(user_id)
        if profile is None:
            raise NotFoundError("user", user_id)
        return profile

    async def get_trust_score(self, user_id: str) -> int:
        """
        Recompute and cache a user's trust score.

        Unreadable profiles degrade to the default score instead of failing.

        Raises:
            NotFoundError: If the user does not exist.
        """
        try:
            return await self._score_user(user_id)
        except DegradedScoreError as e:
            await self._degraded(user_id, e)
            return TRUST_DEFAULT_SCORE

    async def describe_trust(self, user_id: str) -> Dict[str, Any]:
        """Score, label and the raw statistics behind them."""
        score = await self.get_trust_score(user_id)
        profile = await self.get_profile(user_id)
        return {
            "userId": user_id,
            "trustScore": score,
            "level": trust_label(score),
            "stats": profile.to_dict(),
        }

    async def _score_user(self, user_id: str) -> int:
        profile = await self.store.get_profile(user_id)
        if profile is None:
            raise NotFoundError("user", user_id)
        now = self.clock()
        score = self.engine.score(profile, now=now)
        await self.store.update_trust_score(user_id, score, at=now)
        await self.auditor.log_score(user_id, score)
        return score

    async def _degraded(self, user_id: str, error: DegradedScoreError) -> None:
        logger.warning(f"Degraded trust score for {user_id}: {error}")
        await self.auditor.log_degraded_score(user_id, str(error))

    # =============================================
    # RISK & CREATION
    # =============================================

    async def analyze_trade_risk(self, user_a: str, user_b: str) -> RiskAssessment:
        """
        Score both parties and classify the pair.

        Falls back to HIGH_RISK if either profile cannot be scored.
        """
        if user_a == user_b:
            raise ValidationError("A trade needs two different users", field="party_b")
        for user_id in (user_a, user_b):
            if not await self.store.user_exists(user_id):
                raise NotFoundError("user", user_id)

        scores = []
        for user_id in (user_a, user_b):
            try:
                scores.append(await self._score_user(user_id))
            except DegradedScoreError as e:
                await self._degraded(user_id, e)
                return self.classifier.fallback()
        return self.classifier.classify(*scores)

    async def create_trade(
        self,
        party_a: str,
        party_b: str,
        items_a: List[str],
        items_b: List[str],
        trade_id: Optional[str] = None,
    ) -> Trade:
        """
        Create a trade with its security constraints frozen from the start.

        Raises:
            ValidationError: On missing or overlapping item lists.
            NotFoundError: If either user does not exist.
        """
        items_a = _clean_items(items_a, "items_a")
        items_b = _clean_items(items_b, "items_b")
        if set(items_a) & set(items_b):
            raise ValidationError("The two sides of a trade must offer different items", field="items")

        assessment = await self.analyze_trade_risk(party_a, party_b)

        trade = Trade(
            trade_id=trade_id or uuid.uuid4().hex,
            party_a=party_a,
            party_b=party_b,
            items_a=items_a,
            items_b=items_b,
            created_at=self.clock(),
        )
        self.machine.freeze(trade, assessment)
        await self.store.insert_trade(trade)

        logger.info(
            f"Trade {trade.trade_id} created: {assessment.risk_level.value} "
            f"(scores {assessment.score_a}/{assessment.score_b})"
        )
        await self.auditor.log_trade_created(
            trade.trade_id,
            assessment.risk_level.value,
            assessment.score_a,
            assessment.score_b,
            assessment.degraded,
        )
        return trade

    # =============================================
    # VALIDATION STEPS
    # =============================================

    async def submit_photos(
        self,
        trade_id: str,
        user_id: str,
        photos: List[str],
        tracking_number: Optional[str] = None,
    ) -> StepOutcome:
        _, outcome = await self._mutate(
            trade_id,
            user_id,
            lambda trade, party: self.machine.submit_photos(trade, party, photos, tracking_number),
        )
        await self._audit_step(trade_id, outcome)
        return outcome

    async def confirm_shipment(
        self,
        trade_id: str,
        user_id: str,
        tracking_number: Optional[str] = None,
    ) -> StepOutcome:
        _, outcome = await self._mutate(
            trade_id,
            user_id,
            lambda trade, party: self.machine.confirm_shipment(trade, party, tracking_number),
        )
        await self._audit_step(trade_id, outcome)
        return outcome

    async def confirm_delivery(
        self,
        trade_id: str,
        user_id: str,
        rating: int,
        comment: str = "",
    ) -> StepOutcome:
        """
        Confirm receipt; the second confirmation completes the trade.

        Completion reports both ratings to the aggregator before the trade
        is saved as completed.

        Raises:
            AggregationError: If the aggregator failed. The trade is left
                unchanged and the confirmation can be retried.
        """
        trade, outcome = await self._mutate(
            trade_id,
            user_id,
            lambda trade, party: self.machine.confirm_delivery(trade, party, rating, comment),
            before_save=self._record_ratings,
        )
        await self._audit_step(trade_id, outcome)
        if outcome.both_done:
            for party in Party:
                await self.get_trust_score(trade.user_of(party))
        return outcome

    async def report_problem(
        self,
        trade_id: str,
        user_id: str,
        reason: str,
        description: str = "",
        evidence: Optional[List[str]] = None,
    ) -> Report:
        """File a report and hand it to moderation."""
        _, report = await self._mutate(
            trade_id,
            user_id,
            lambda trade, party: self.machine.report_problem(
                trade, party, reason, description, evidence
            ),
        )
        logger.warning(f"Problem reported on trade {trade_id} by {user_id}: {report.reason}")
        await self.auditor.log_report(trade_id, user_id, report.reason, len(report.evidence))

        if self.moderation_hook:
            try:
                await self.moderation_hook(trade_id, report)
            except Exception as e:
                logger.error(f"Moderation notification failed for trade {trade_id}: {e}")
        return report

    async def cancel_trade(self, trade_id: str, user_id: str, reason: str = "") -> StepOutcome:
        """Cancel before shipment; counts against the cancelling user."""
        _, outcome = await self._mutate(
            trade_id,
            user_id,
            lambda trade, party: self.machine.cancel(trade, party, reason),
            cancelled_by=user_id,
        )
        await self._audit_step(trade_id, outcome)
        return outcome

    async def mark_disputed(self, trade_id: str, note: str = "") -> StepOutcome:
        """Moderation callback closing a trade as disputed."""
        _, outcome = await self._mutate(
            trade_id,
            None,
            lambda trade, party: self.machine.mark_disputed(trade, note),
        )
        await self._audit_step(trade_id, outcome)
        return outcome

    async def record_violation(
        self,
        user_id: str,
        kind: Union[str, ViolationKind],
        description: str = "",
        trade_id: Optional[str] = None,
    ) -> int:
        """Moderation callback penalizing a user; applies on the next score run."""
        return await self.ledger.record_violation(user_id, kind, description, trade_id)

    async def violation_history(self, user_id: str) -> List[ViolationRecord]:
        return await self.ledger.history(user_id)

    # =============================================
    # QUERIES
    # =============================================

    async def get_trade(self, trade_id: str) -> Trade:
        trade = await self.store.get_trade(trade_id)
        if trade is None:
            raise NotFoundError("trade", trade_id)
        return trade

    async def get_security_status(
        self, trade_id: str, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Security block, status and remaining steps of a trade.

        With ``user_id`` the next steps are those of that participant only.
        """
        trade = await self.get_trade(trade_id)
        if user_id is not None:
            parties = [self._party(trade, user_id)]
        else:
            parties = list(Party)

        data = trade.to_dict()
        return {
            "tradeId": trade.trade_id,
            "status": data["status"],
            "security": data["security"],
            "ratings": data["ratings"],
            "nextSteps": {
                party.value: self.machine.next_steps(trade, party) for party in parties
            },
        }

    async def list_pending_reports(self) -> List[Tuple[str, int, Report]]:
        return await self.store.list_pending_reports()

    # =============================================
    # INTERNALS
    # =============================================

    def _claim_lock(self, trade_id: str) -> asyncio.Lock:
        """Get the trade's lock and count the caller as one of its users."""
        lock = self._trade_locks.get(trade_id)
        if lock is None:
            lock = self._trade_locks[trade_id] = asyncio.Lock()
        self._lock_users[trade_id] = self._lock_users.get(trade_id, 0) + 1
        return lock

    def _release_lock(self, trade_id: str) -> None:
        """Drop the trade's lock once nobody holds or awaits it."""
        self._lock_users[trade_id] -= 1
        if self._lock_users[trade_id] == 0:
            del self._lock_users[trade_id]
            del self._trade_locks[trade_id]

    def _party(self, trade: Trade, user_id: str) -> Party:
        party = trade.party_of(user_id)
        if party is None:
            raise ValidationError(
                f"User {user_id} is not a party to trade {trade.trade_id}", field="user_id"
            )
        return party

    async def _mutate(
        self,
        trade_id: str,
        user_id: Optional[str],
        operation: Callable[[Trade, Optional[Party]], T],
        before_save: Optional[Callable[[Trade, T], Awaitable[None]]] = None,
        cancelled_by: Optional[str] = None,
    ) -> Tuple[Trade, T]:
        """
        Apply ``operation`` to a working copy and persist it if it succeeds.

        ``before_save`` runs under the trade's lock after the operation and
        before the write; if it raises, nothing is saved.
        """
        lock = self._claim_lock(trade_id)
        try:
            async with lock:
                stored = await self.store.get_trade(trade_id)
                if stored is None:
                    raise NotFoundError("trade", trade_id)
                party = self._party(stored, user_id) if user_id is not None else None

                working = copy.deepcopy(stored)
                result = operation(working, party)
                if before_save is not None:
                    await before_save(working, result)
                await self.store.save_trade(working, cancelled_by=cancelled_by)
                return working, result
        finally:
            self._release_lock(trade_id)

    async def _record_ratings(self, trade: Trade, outcome: StepOutcome) -> None:
        """Report both ratings to the aggregator when the trade completes.

        The default aggregator counts a trade once per user, so a retry after
        a partial failure does not count it twice.
        """
        if not outcome.both_done:
            return
        try:
            for rated in Party:
                rater = rated.other
                rating = trade.rating_by(rater)
                await self.aggregator.record_rating(
                    trade.user_of(rated),
                    trade.user_of(rater),
                    trade.trade_id,
                    rating.score,
                    rating.comment,
                )
        except Exception as e:
            logger.error(f"Rating aggregation failed for trade {trade.trade_id}: {e}")
            await self.auditor.log_aggregation_failure(trade.trade_id, str(e))
            raise AggregationError(trade.trade_id, e) from e

    async def _audit_step(self, trade_id: str, outcome: StepOutcome) -> None:
        await self.auditor.log_step(
            trade_id,
            outcome.step,
            outcome.party.value if outcome.party else None,
            outcome.status.value,
        )


def _clean_items(items: List[str], field: str) -> List[str]:
    if isinstance(items, str) or not isinstance(items, (list, tuple)) or not items:
        raise ValidationError(f"{field} must be a non-empty list of item references", field=field)
    cleaned = []
    for item in items:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"{field} contains an empty item reference", field=field)
        cleaned.append(item.strip())
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError(f"{field} lists the same item twice", field=field)
    return cleaned
