"""
Moderation commands - record a violation, close a trade as disputed.
"""

from __future__ import annotations

from typing import Optional

from tradeguard.cli.output import ConsoleOutput
from tradeguard.security import TradeSecurityService


async def run_violation(
    service: TradeSecurityService,
    user_id: str,
    kind: str,
    description: str = "",
    trade_id: Optional[str] = None,
) -> int:
    console = ConsoleOutput()
    penalty = await service.record_violation(user_id, kind, description, trade_id)
    console.print_success(
        f"Recorded {kind} against {user_id}: -{penalty} points on the next score computation"
    )
    return 0


async def run_dispute(service: TradeSecurityService, trade_id: str, note: str = "") -> int:
    console = ConsoleOutput()
    outcome = await service.mark_disputed(trade_id, note)
    console.print_success(f"Trade {trade_id} is now {outcome.status.value}")
    return 0
