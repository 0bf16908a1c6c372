"""
Trade commands - security status of a trade, pending reports.
"""

from __future__ import annotations

from typing import Optional

from rich.table import Table

from tradeguard.cli.output import ConsoleOutput, risk_markup
from tradeguard.security import TradeSecurityService


async def run_status(
    service: TradeSecurityService,
    trade_id: str,
    user_id: Optional[str] = None,
    json_output: bool = False,
) -> int:
    """Show a trade's status, step flags and timeline."""
    console = ConsoleOutput()
    status = await service.get_security_status(trade_id, user_id=user_id)

    if json_output:
        console.print_json(status)
        return 0

    security = status["security"]
    console.print(f"[bold]Trade {trade_id}[/bold]  status: {status['status']}")
    if security is None:
        return 0

    console.print(
        f"Risk: {risk_markup(security['riskLevel'])}  "
        f"scores: {security['trustScores']['partyA']}/{security['trustScores']['partyB']}"
    )

    steps = Table(title="Steps")
    steps.add_column("Step")
    steps.add_column("partyA")
    steps.add_column("partyB")
    for name, flags in security["steps"].items():
        steps.add_row(name, _tick(flags["partyA"]), _tick(flags["partyB"]))
    console.print(steps)

    timeline = Table(title="Timeline")
    timeline.add_column("When")
    timeline.add_column("Step")
    timeline.add_column("By")
    for entry in security["timeline"]:
        timeline.add_row(entry["timestamp"], entry["step"], entry["actingParty"] or "-")
    console.print(timeline)

    for party, todo in status["nextSteps"].items():
        if todo:
            console.print(f"[bold]{party} next:[/bold] " + "; ".join(todo))
    return 0


async def run_reports(service: TradeSecurityService, json_output: bool = False) -> int:
    """List reports awaiting moderation."""
    console = ConsoleOutput()
    pending = await service.list_pending_reports()

    if json_output:
        console.print_json([
            {"tradeId": trade_id, "index": index, **report.to_dict()}
            for trade_id, index, report in pending
        ])
        return 0

    if not pending:
        console.print_dim("No pending reports")
        return 0

    table = Table(title="Pending reports")
    table.add_column("Trade")
    table.add_column("#")
    table.add_column("By")
    table.add_column("Reason")
    table.add_column("Evidence")
    table.add_column("Filed")
    for trade_id, index, report in pending:
        table.add_row(
            trade_id,
            str(index),
            report.reported_by,
            report.reason,
            str(len(report.evidence)),
            report.created_at.isoformat(),
        )
    console.print(table)
    return 0


def _tick(value: bool) -> str:
    return "[green]yes[/green]" if value else "[dim]no[/dim]"
