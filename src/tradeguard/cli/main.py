#!/usr/bin/env python
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from dotenv import load_dotenv

from tradeguard import __version__
from tradeguard.cli.output import ConsoleOutput
from tradeguard.config import SecurityConfig, set_config
from tradeguard.security import TradeSecurityError, TradeSecurityService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tradeguard",
        description="tradeguard - trust-based security for barter trades",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global options
    parser.add_argument("--data-dir", type=Path, help="Directory holding trades.db and audit.jsonl")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    score_p = subparsers.add_parser("score", help="Recompute a user's trust score")
    score_p.add_argument("user_id", help="User ID")
    score_p.add_argument("--json", action="store_true", help="Output JSON")

    classify_p = subparsers.add_parser("classify", help="Risk tier for two trust scores")
    classify_p.add_argument("score_a", type=int, help="Trust score of party A (0-100)")
    classify_p.add_argument("score_b", type=int, help="Trust score of party B (0-100)")
    classify_p.add_argument("--json", action="store_true", help="Output JSON")

    status_p = subparsers.add_parser("status", help="Security status of a trade")
    status_p.add_argument("trade_id", help="Trade ID")
    status_p.add_argument("--user", help="Only show next steps for this participant")
    status_p.add_argument("--json", action="store_true", help="Output JSON")

    reports_p = subparsers.add_parser("reports", help="List reports awaiting moderation")
    reports_p.add_argument("--json", action="store_true", help="Output JSON")

    violation_p = subparsers.add_parser("violation", help="Record a violation against a user")
    violation_p.add_argument("user_id", help="User ID")
    violation_p.add_argument(
        "kind",
        choices=["not_shipped", "wrong_item", "damaged", "fake", "communication_issue"],
        help="Violation kind",
    )
    violation_p.add_argument("--description", "-d", default="", help="What happened")
    violation_p.add_argument("--trade", help="Trade the violation relates to")

    dispute_p = subparsers.add_parser("dispute", help="Close a trade as disputed")
    dispute_p.add_argument("trade_id", help="Trade ID")
    dispute_p.add_argument("--note", default="", help="Moderator note")

    subparsers.add_parser("version", help="Show version")
    return parser


async def _with_service(
    config: SecurityConfig,
    command: Callable[[TradeSecurityService], Awaitable[int]],
) -> int:
    service = TradeSecurityService(config)
    await service.initialize()
    try:
        return await command(service)
    finally:
        await service.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv(Path.cwd() / ".env")

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("tradeguard").setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    if args.command is None:
        parser.print_help()
        return 1

    config = SecurityConfig.from_env()
    if args.data_dir:
        config.data_dir = args.data_dir
    set_config(config)

    from tradeguard.cli.commands import moderation, trades, trust

    console = ConsoleOutput()
    try:
        if args.command == "version":
            console.print(f"tradeguard {__version__}")
            return 0
        elif args.command == "classify":
            return trust.run_classify(args.score_a, args.score_b, args.json)
        elif args.command == "score":
            return asyncio.run(_with_service(
                config, lambda s: trust.run_score(s, args.user_id, args.json)
            ))
        elif args.command == "status":
            return asyncio.run(_with_service(
                config, lambda s: trades.run_status(s, args.trade_id, args.user, args.json)
            ))
        elif args.command == "reports":
            return asyncio.run(_with_service(
                config, lambda s: trades.run_reports(s, args.json)
            ))
        elif args.command == "violation":
            return asyncio.run(_with_service(
                config,
                lambda s: moderation.run_violation(
                    s, args.user_id, args.kind, args.description, args.trade
                ),
            ))
        elif args.command == "dispute":
            return asyncio.run(_with_service(
                config, lambda s: moderation.run_dispute(s, args.trade_id, args.note)
            ))
    except TradeSecurityError as e:
        console.print_error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
