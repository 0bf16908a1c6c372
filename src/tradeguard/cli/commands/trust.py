"""
Trust commands - score a user, classify a pair of scores.
"""

from __future__ import annotations

from tradeguard.cli.output import ConsoleOutput, risk_markup
from tradeguard.security import RiskClassifier, TradeSecurityService


async def run_score(service: TradeSecurityService, user_id: str, json_output: bool = False) -> int:
    """Recompute and show a user's trust score."""
    console = ConsoleOutput()
    info = await service.describe_trust(user_id)

    if json_output:
        console.print_json(info)
        return 0

    stats = info["stats"]
    console.print_mapping(f"Trust score for {user_id}", {
        "Score": f"{info['trustScore']}/100",
        "Level": info["level"],
        "Completed trades": stats["completedTrades"],
        "Cancelled trades": stats["cancelledTrades"],
        "Average rating": f"{stats['averageRating']} ({stats['totalRatings']} ratings)",
        "Violations": stats["violations"]["total"],
    })
    return 0


def run_classify(score_a: int, score_b: int, json_output: bool = False) -> int:
    """Show the tier and constraints two scores would get."""
    console = ConsoleOutput()
    assessment = RiskClassifier().classify(score_a, score_b)

    if json_output:
        console.print_json(assessment.to_dict())
        return 0

    constraints = assessment.constraints
    console.print(f"Risk level: {risk_markup(assessment.risk_level.value)}")
    console.print_mapping("Constraints", {
        "Photos required": constraints.photos_required,
        "Tracking required": constraints.tracking_required,
        "Max delivery days": constraints.max_delivery_days,
        "Insurance required": constraints.requires_insurance,
    })
    console.print_dim(assessment.recommendation)
    return 0
