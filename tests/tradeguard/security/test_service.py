"""Tests for TradeSecurityService end to end."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from tradeguard.security.errors import (
    AggregationError,
    DegradedScoreError,
    NotApplicableError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from tradeguard.security.models import RiskLevel, TradeStatus
from tradeguard.security.stats import ProfileStatsAggregator


async def make_veteran(make_user, user_id, completed):
    """Two-year-old account: +15 for age, +2 per completed trade."""
    return await make_user(user_id, age_days=730, completed=completed)


async def make_low_trust(service, make_user, user_id):
    """Brand-new account with one not_shipped violation: score 35."""
    await make_user(user_id)
    await service.record_violation(user_id, "not_shipped")


# =============================================
# SCENARIOS
# =============================================

@pytest.mark.asyncio
async def test_low_risk_trade_completes_without_photos(service, make_user):
    """Test scores 85 and 90 give a LOW_RISK trade that ships directly."""
    await make_veteran(make_user, "alice", completed=10)
    await make_veteran(make_user, "bob", completed=13)

    trade = await service.create_trade("alice", "bob", ["guitar"], ["amp"])
    assert trade.security.trust_scores == {"partyA": 85, "partyB": 90}
    assert trade.security.risk_level == RiskLevel.LOW_RISK
    assert trade.security.constraints.photos_required is False
    assert trade.status == TradeStatus.ACCEPTED

    await service.confirm_shipment(trade.trade_id, "alice")
    outcome = await service.confirm_shipment(trade.trade_id, "bob")
    assert outcome.status == TradeStatus.SHIPPING_CONFIRMED

    await service.confirm_delivery(trade.trade_id, "alice", 5)
    outcome = await service.confirm_delivery(trade.trade_id, "bob", 4, "fast shipping")
    assert outcome.both_done is True
    assert outcome.status == TradeStatus.COMPLETED
    assert (await service.get_trade(trade.trade_id)).status == TradeStatus.COMPLETED

    # Each side is credited with the rating the other gave
    alice = await service.get_profile("alice")
    bob = await service.get_profile("bob")
    assert alice.completed_trades == 11
    assert alice.average_rating == 4.0
    assert bob.completed_trades == 14
    assert bob.average_rating == 5.0
    assert bob.trust_score == 100


@pytest.mark.asyncio
async def test_weak_party_forces_maximum_security(service, make_user):
    """Test scores 90 and 35 give VERY_HIGH_RISK and photos gate shipment."""
    await make_veteran(make_user, "alice", completed=13)
    await make_low_trust(service, make_user, "carol")

    trade = await service.create_trade("alice", "carol", ["camera"], ["lens"])
    assert trade.security.trust_scores == {"partyA": 90, "partyB": 35}
    assert trade.security.risk_level == RiskLevel.VERY_HIGH_RISK
    assert trade.security.constraints.photos_required is True
    assert trade.security.constraints.requires_insurance is True
    assert trade.status == TradeStatus.PHOTOS_REQUIRED

    with pytest.raises(PreconditionError):
        await service.confirm_shipment(trade.trade_id, "alice", "TRACK-1")

    stored = await service.get_trade(trade.trade_id)
    assert stored.security.steps.shipping_confirmed.any is False
    assert stored.version == 1


@pytest.mark.asyncio
async def test_fake_violations_drive_high_risk(service, make_user):
    """Test three fake violations bring a veteran account down to 40."""
    await make_veteran(make_user, "alice", completed=13)
    await make_user("dave", age_days=730, completed=20, average_rating=5.0, total_ratings=20)
    for _ in range(3):
        assert await service.record_violation("dave", "fake") == 20

    assert await service.get_trust_score("dave") == 40

    trade = await service.create_trade("alice", "dave", ["watch"], ["bike"])
    assert trade.security.risk_level == RiskLevel.HIGH_RISK
    assert trade.security.constraints.tracking_required is True


@pytest.mark.asyncio
async def test_medium_risk_full_lifecycle(service, make_user):
    await make_veteran(make_user, "alice", completed=13)
    await make_user("erin", age_days=730)

    trade = await service.create_trade("alice", "erin", ["console"], ["games"])
    assert trade.security.risk_level == RiskLevel.MEDIUM_RISK

    await service.submit_photos(trade.trade_id, "erin", ["erin-1.jpg"])
    outcome = await service.submit_photos(trade.trade_id, "alice", ["alice-1.jpg", "alice-2.jpg"])
    assert outcome.both_done is True
    assert outcome.status == TradeStatus.ACCEPTED

    await service.confirm_shipment(trade.trade_id, "alice")
    await service.confirm_shipment(trade.trade_id, "erin")
    await service.confirm_delivery(trade.trade_id, "erin", 5)
    await service.confirm_delivery(trade.trade_id, "alice", 5)

    stored = await service.get_trade(trade.trade_id)
    assert stored.status == TradeStatus.COMPLETED
    assert [e.step for e in stored.security.timeline] == [
        "trade_created",
        "photos_submitted",
        "photos_submitted",
        "shipping_confirmed",
        "shipping_confirmed",
        "delivery_confirmed",
        "delivery_confirmed",
        "trade_completed",
    ]


# =============================================
# STEPS THROUGH THE SERVICE
# =============================================

@pytest.fixture
async def low_risk_trade(service, make_user):
    await make_veteran(make_user, "alice", completed=13)
    await make_veteran(make_user, "bob", completed=13)
    return await service.create_trade("alice", "bob", ["book"], ["record"])


@pytest.mark.asyncio
async def test_concurrent_duplicate_submissions(service, make_user):
    """Test two simultaneous identical submissions record exactly one."""
    await make_veteran(make_user, "alice", completed=13)
    await make_user("erin", age_days=730)
    trade = await service.create_trade("alice", "erin", ["a"], ["b"])

    results = await asyncio.gather(
        service.submit_photos(trade.trade_id, "alice", ["first.jpg"]),
        service.submit_photos(trade.trade_id, "alice", ["second.jpg"]),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], PreconditionError)

    stored = await service.get_trade(trade.trade_id)
    assert stored.security.proofs["partyA"].photos == ["first.jpg"]
    assert [e.step for e in stored.security.timeline].count("photos_submitted") == 1
    assert stored.version == 2


@pytest.mark.asyncio
async def test_concurrent_steps_by_both_parties(service, low_risk_trade):
    await asyncio.gather(
        service.confirm_shipment(low_risk_trade.trade_id, "alice"),
        service.confirm_shipment(low_risk_trade.trade_id, "bob"),
    )
    stored = await service.get_trade(low_risk_trade.trade_id)
    assert stored.status == TradeStatus.SHIPPING_CONFIRMED
    assert stored.version == 3


@pytest.mark.asyncio
async def test_photos_not_applicable(service, low_risk_trade):
    with pytest.raises(NotApplicableError):
        await service.submit_photos(low_risk_trade.trade_id, "alice", ["x.jpg"])


@pytest.mark.asyncio
async def test_non_participant_rejected(service, make_user, low_risk_trade):
    await make_user("mallory")
    with pytest.raises(ValidationError):
        await service.confirm_shipment(low_risk_trade.trade_id, "mallory")
    with pytest.raises(ValidationError):
        await service.get_security_status(low_risk_trade.trade_id, "mallory")


@pytest.mark.asyncio
async def test_unknown_trade_and_user(service, make_user):
    await make_user("alice")
    with pytest.raises(NotFoundError):
        await service.confirm_shipment("missing", "alice")
    with pytest.raises(NotFoundError):
        await service.get_trade("missing")
    with pytest.raises(NotFoundError):
        await service.create_trade("alice", "ghost", ["a"], ["b"])
    with pytest.raises(NotFoundError):
        await service.get_trust_score("ghost")


@pytest.mark.asyncio
@pytest.mark.parametrize("items_a,items_b", [
    ([], ["b"]),
    (["a"], []),
    (["a", "a"], ["b"]),
    (["a"], ["a"]),
    ("a", ["b"]),
])
async def test_create_trade_rejects_bad_items(service, make_user, items_a, items_b):
    await make_user("alice")
    await make_user("bob")
    with pytest.raises(ValidationError):
        await service.create_trade("alice", "bob", items_a, items_b)


@pytest.mark.asyncio
async def test_create_trade_rejects_same_user(service, make_user):
    await make_user("alice")
    with pytest.raises(ValidationError):
        await service.create_trade("alice", "alice", ["a"], ["b"])


@pytest.mark.asyncio
async def test_register_user(service):
    profile = await service.register_user("zoe")
    assert profile.trust_score == 50
    assert await service.get_trust_score("zoe") == 50
    with pytest.raises(ValidationError):
        await service.register_user("zoe")


@pytest.mark.asyncio
async def test_cancel_counts_against_canceller(service, low_risk_trade):
    outcome = await service.cancel_trade(low_risk_trade.trade_id, "bob", "found another deal")
    assert outcome.status == TradeStatus.CANCELLED

    assert (await service.get_profile("bob")).cancelled_trades == 1
    assert (await service.get_profile("alice")).cancelled_trades == 0
    with pytest.raises(PreconditionError):
        await service.confirm_shipment(low_risk_trade.trade_id, "alice")


# =============================================
# REPORTS & MODERATION
# =============================================

@pytest.mark.asyncio
async def test_report_after_completion_keeps_trade(service, low_risk_trade):
    trade_id = low_risk_trade.trade_id
    await service.confirm_shipment(trade_id, "alice")
    await service.confirm_shipment(trade_id, "bob")
    await service.confirm_delivery(trade_id, "alice", 5)
    await service.confirm_delivery(trade_id, "bob", 5)
    before = await service.get_trade(trade_id)

    report = await service.report_problem(trade_id, "alice", "damaged", "screen cracked", ["crack.jpg"])

    after = await service.get_trade(trade_id)
    assert report.status == "pending"
    assert after.status == TradeStatus.COMPLETED
    assert after.security.steps == before.security.steps
    assert after.ratings == before.ratings
    assert after.security.reports == [report]


@pytest.mark.asyncio
async def test_report_notifies_moderation(config, clock):
    from tradeguard.security import TradeSecurityService

    hook = AsyncMock()
    service = TradeSecurityService(config, moderation_hook=hook, clock=clock)
    await service.initialize()
    try:
        await service.register_user("alice")
        await service.register_user("bob")
        trade = await service.create_trade("alice", "bob", ["a"], ["b"])

        report = await service.report_problem(trade.trade_id, "bob", "not_shipped")

        hook.assert_awaited_once_with(trade.trade_id, report)
        pending = await service.list_pending_reports()
        assert [(t, i) for t, i, _ in pending] == [(trade.trade_id, 0)]
    finally:
        await service.close()


@pytest.mark.asyncio
async def test_failing_moderation_hook_does_not_lose_report(service, low_risk_trade):
    service.moderation_hook = AsyncMock(side_effect=RuntimeError("webhook down"))

    report = await service.report_problem(low_risk_trade.trade_id, "bob", "not_shipped")

    stored = await service.get_trade(low_risk_trade.trade_id)
    assert stored.security.reports == [report]


@pytest.mark.asyncio
async def test_dispute_removes_pending_reports(service, low_risk_trade):
    await service.report_problem(low_risk_trade.trade_id, "bob", "fake")
    assert len(await service.list_pending_reports()) == 1

    outcome = await service.mark_disputed(low_risk_trade.trade_id, "moderator review")
    assert outcome.status == TradeStatus.DISPUTED
    assert await service.list_pending_reports() == []

    with pytest.raises(PreconditionError):
        await service.report_problem(low_risk_trade.trade_id, "alice", "fake")


# =============================================
# QUERIES & DEGRADATION
# =============================================

@pytest.mark.asyncio
async def test_security_status(service, low_risk_trade):
    await service.confirm_shipment(low_risk_trade.trade_id, "alice")

    status = await service.get_security_status(low_risk_trade.trade_id)
    assert status["status"] == "accepted"
    assert status["security"]["riskLevel"] == "LOW_RISK"
    assert status["nextSteps"]["partyA"] == ["Wait for your trading partner to ship"]
    assert status["nextSteps"]["partyB"] == [
        "Ship your items within 14 days",
        "Confirm delivery and rate your trading partner",
    ]

    only_bob = await service.get_security_status(low_risk_trade.trade_id, "bob")
    assert list(only_bob["nextSteps"]) == ["partyB"]


@pytest.mark.asyncio
async def test_describe_trust(service, make_user):
    await make_veteran(make_user, "alice", completed=13)
    described = await service.describe_trust("alice")
    assert described["trustScore"] == 90
    assert described["level"] == "EXCELLENT"
    assert described["stats"]["completedTrades"] == 13


@pytest.mark.asyncio
async def test_degraded_profile_falls_back_to_high_risk(service, make_user):
    """Test an unreadable profile yields HIGH_RISK instead of an error."""
    await make_veteran(make_user, "alice", completed=13)
    await make_veteran(make_user, "bob", completed=13)

    with patch.object(
        service.store, "get_profile", new=AsyncMock(side_effect=DegradedScoreError("corrupt row"))
    ):
        assert await service.get_trust_score("alice") == 50
        trade = await service.create_trade("alice", "bob", ["a"], ["b"])

    assert trade.security.risk_level == RiskLevel.HIGH_RISK
    assert trade.security.constraints.tracking_required is True
    assert trade.security.timeline[0].data["degraded"] is True


@pytest.mark.asyncio
async def test_audit_log_written(service, config, low_risk_trade):
    await service.confirm_shipment(low_risk_trade.trade_id, "alice")
    await service.report_problem(low_risk_trade.trade_id, "bob", "communication_issue")

    lines = config.audit_path.read_text().splitlines()
    events = [json.loads(line)["event"] for line in lines]
    assert "security_trade_created" in events
    assert "security_step" in events
    assert "security_report" in events
    assert "security_score" in events


# =============================================
# COMPLETION ATOMICITY & LOCKS
# =============================================

class FlakyAggregator:
    """Delegates to the store aggregator, failing the numbered calls in ``fail_calls``."""

    def __init__(self, store, fail_calls):
        self.inner = ProfileStatsAggregator(store)
        self.fail_calls = set(fail_calls)
        self.calls = 0

    async def record_rating(self, user_id, counterparty_id, trade_id, rating_given, comment=""):
        self.calls += 1
        if self.calls in self.fail_calls:
            raise RuntimeError("stats service down")
        await self.inner.record_rating(user_id, counterparty_id, trade_id, rating_given, comment)


async def shipped_trade(service, make_user):
    await make_veteran(make_user, "alice", completed=13)
    await make_veteran(make_user, "bob", completed=13)
    trade = await service.create_trade("alice", "bob", ["book"], ["record"])
    await service.confirm_shipment(trade.trade_id, "alice")
    await service.confirm_shipment(trade.trade_id, "bob")
    await service.confirm_delivery(trade.trade_id, "alice", 5)
    return trade


@pytest.mark.asyncio
async def test_failed_aggregation_leaves_trade_retryable(service, make_user):
    """Test completion is not saved when ratings cannot be recorded."""
    trade = await shipped_trade(service, make_user)
    service.aggregator = FlakyAggregator(service.store, fail_calls={1})

    with pytest.raises(AggregationError):
        await service.confirm_delivery(trade.trade_id, "bob", 4)

    stored = await service.get_trade(trade.trade_id)
    assert stored.status == TradeStatus.SHIPPING_CONFIRMED
    assert stored.security.steps.delivery_confirmed.party_b is False
    assert stored.rating_by(stored.party_of("bob")) is None
    assert (await service.get_profile("alice")).completed_trades == 13

    outcome = await service.confirm_delivery(trade.trade_id, "bob", 4)
    assert outcome.status == TradeStatus.COMPLETED

    alice = await service.get_profile("alice")
    bob = await service.get_profile("bob")
    assert (alice.completed_trades, alice.average_rating) == (14, 4.0)
    assert (bob.completed_trades, bob.average_rating) == (14, 5.0)


@pytest.mark.asyncio
async def test_partial_aggregation_not_counted_twice(service, make_user):
    """Test a retry after one side was recorded counts each side once."""
    trade = await shipped_trade(service, make_user)
    # Alice is recorded first, then the call for bob fails
    service.aggregator = FlakyAggregator(service.store, fail_calls={2})

    with pytest.raises(AggregationError):
        await service.confirm_delivery(trade.trade_id, "bob", 4)
    assert (await service.get_profile("alice")).completed_trades == 14
    assert (await service.get_profile("bob")).completed_trades == 13

    await service.confirm_delivery(trade.trade_id, "bob", 4)

    assert (await service.get_profile("alice")).completed_trades == 14
    assert (await service.get_profile("bob")).completed_trades == 14


@pytest.mark.asyncio
async def test_failed_aggregation_is_audited(service, config, make_user):
    trade = await shipped_trade(service, make_user)
    service.aggregator = FlakyAggregator(service.store, fail_calls={1})

    with pytest.raises(AggregationError):
        await service.confirm_delivery(trade.trade_id, "bob", 4)

    events = [json.loads(line) for line in config.audit_path.read_text().splitlines()]
    failures = [e for e in events if e["event"] == "security_aggregation_failed"]
    assert failures[0]["trade"] == trade.trade_id


@pytest.mark.asyncio
async def test_trade_locks_released_after_use(service, make_user):
    """Test no lock is kept for trades nobody is working on."""
    await make_veteran(make_user, "alice", completed=13)
    await make_veteran(make_user, "bob", completed=13)

    for n in range(10):
        trade = await service.create_trade("alice", "bob", [f"a{n}"], [f"b{n}"])
        await service.confirm_shipment(trade.trade_id, "alice")
        await service.mark_disputed(trade.trade_id)

    assert service._trade_locks == {}
    assert service._lock_users == {}


@pytest.mark.asyncio
async def test_trade_lock_shared_while_contended(service, low_risk_trade):
    trade_id = low_risk_trade.trade_id
    results = await asyncio.gather(
        service.confirm_shipment(trade_id, "alice"),
        service.confirm_shipment(trade_id, "alice"),
        service.confirm_shipment(trade_id, "bob"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, PreconditionError) for r in results) == 1
    assert (await service.get_trade(trade_id)).status == TradeStatus.SHIPPING_CONFIRMED
    assert service._trade_locks == {}


@pytest.mark.asyncio
async def test_failed_step_releases_lock(service, low_risk_trade):
    with pytest.raises(NotApplicableError):
        await service.submit_photos(low_risk_trade.trade_id, "alice", ["x.jpg"])
    with pytest.raises(NotFoundError):
        await service.confirm_shipment("missing", "alice")
    assert service._trade_locks == {}
