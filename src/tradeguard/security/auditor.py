"""
SecurityAuditor - Audit logging with levels and sampling.

Every trade lifecycle event, report and violation is appended as one JSON
line; DEBUG events are sampled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any, Optional

import aiofiles

from tradeguard.config.defaults import AUDIT_DEFAULT_SAMPLE_RATE

logger = logging.getLogger(__name__)


class AuditLevel(IntEnum):
    """Audit event levels with numeric values for comparison."""
    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40

    @classmethod
    def parse(cls, name: str) -> "AuditLevel":
        try:
            return cls[name.upper()]
        except KeyError:
            logger.warning(f"Unknown audit level {name!r}, using INFO")
            return cls.INFO


class SecurityAuditor:
    """
    Audit trade security decisions with level control and async file writes.

    - DEBUG: Score computations (sampled)
    - INFO: Trade lifecycle steps, violations
    - WARN: Problem reports, degraded scoring
    - ERROR: Rating aggregation failures
    """

    def __init__(
        self,
        audit_path: Optional[Path] = None,
        level: AuditLevel = AuditLevel.INFO,
        sample_rate: float = AUDIT_DEFAULT_SAMPLE_RATE,
    ):
        self.audit_path = audit_path
        self.level = level
        self.sample_rate = sample_rate
        self._lock = asyncio.Lock()

    def set_level(self, level: AuditLevel) -> None:
        """Change audit level at runtime."""
        self.level = level

    async def log(
        self,
        event: str,
        level: AuditLevel = AuditLevel.DEBUG,
        **kwargs: Any,
    ) -> None:
        """Log audit event with level and sampling."""
        if level < self.level:
            return

        if level == AuditLevel.DEBUG and random.random() > self.sample_rate:
            return

        if not self.audit_path:
            return

        self.audit_path.parent.mkdir(parents=True, exist_ok=True)

        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": f"security_{event}",
            "level": level.name.lower(),
            **kwargs,
        }

        async with self._lock:
            try:
                async with aiofiles.open(self.audit_path, "a") as f:
                    await f.write(json.dumps(record, default=str) + "\n")
            except OSError as e:
                logger.error(f"Failed to write audit log: {e}")

    async def log_score(self, user_id: str, score: int) -> None:
        await self.log("score", AuditLevel.DEBUG, user=user_id, score=score)

    async def log_degraded_score(self, user_id: str, reason: str) -> None:
        """Log a score computation that fell back to a default."""
        await self.log("degraded_score", AuditLevel.WARN, user=user_id, reason=reason)

    async def log_aggregation_failure(self, trade_id: str, reason: str) -> None:
        await self.log("aggregation_failed", AuditLevel.ERROR, trade=trade_id, reason=reason)

    async def log_trade_created(
        self,
        trade_id: str,
        risk_level: str,
        score_a: int,
        score_b: int,
        degraded: bool,
    ) -> None:
        await self.log(
            "trade_created",
            AuditLevel.INFO,
            trade=trade_id,
            risk_level=risk_level,
            score_a=score_a,
            score_b=score_b,
            degraded=degraded,
        )

    async def log_step(
        self,
        trade_id: str,
        step: str,
        party: Optional[str],
        status: str,
    ) -> None:
        """Log a state machine step and the status it led to."""
        await self.log(
            "step",
            AuditLevel.INFO,
            trade=trade_id,
            step=step,
            party=party,
            status=status,
        )

    async def log_report(self, trade_id: str, reported_by: str, reason: str, evidence_count: int) -> None:
        await self.log(
            "report",
            AuditLevel.WARN,
            trade=trade_id,
            reported_by=reported_by,
            reason=reason,
            evidence_count=evidence_count,
        )

    async def log_violation(
        self,
        user_id: str,
        kind: str,
        penalty: int,
        trade_id: Optional[str] = None,
    ) -> None:
        await self.log(
            "violation",
            AuditLevel.INFO,
            user=user_id,
            kind=kind,
            penalty=penalty,
            trade=trade_id,
        )
