"""Tests for SecurityAuditor."""

import json

import pytest

from tradeguard.security.auditor import AuditLevel, SecurityAuditor


def read_events(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


@pytest.mark.asyncio
async def test_level_filtering(tmp_path):
    """Test events below the configured level are dropped."""
    path = tmp_path / "audit" / "audit.jsonl"
    auditor = SecurityAuditor(path, level=AuditLevel.WARN)

    await auditor.log_step("t1", "shipping_confirmed", "partyA", "accepted")
    await auditor.log_report("t1", "bob", "fake", 2)

    events = read_events(path)
    assert len(events) == 1
    assert events[0]["event"] == "security_report"
    assert events[0]["level"] == "warn"
    assert events[0]["evidence_count"] == 2


@pytest.mark.asyncio
async def test_debug_sampling(tmp_path):
    path = tmp_path / "audit.jsonl"

    muted = SecurityAuditor(path, level=AuditLevel.DEBUG, sample_rate=0.0)
    for _ in range(20):
        await muted.log_score("alice", 70)
    assert not path.exists()

    full = SecurityAuditor(path, level=AuditLevel.DEBUG, sample_rate=1.0)
    for _ in range(5):
        await full.log_score("alice", 70)
    assert len(read_events(path)) == 5


@pytest.mark.asyncio
async def test_no_path_writes_nothing(tmp_path):
    auditor = SecurityAuditor(None, level=AuditLevel.DEBUG, sample_rate=1.0)
    await auditor.log_violation("bob", "fake", 20, "t1")
    assert list(tmp_path.iterdir()) == []


def test_parse_level():
    assert AuditLevel.parse("debug") is AuditLevel.DEBUG
    assert AuditLevel.parse("WARN") is AuditLevel.WARN
    assert AuditLevel.parse("loud") is AuditLevel.INFO
