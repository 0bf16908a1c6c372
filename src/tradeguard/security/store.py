"""
TradeStore - Async SQLite persistence for profiles, trades, ratings and violations.

Trades are stored as one JSON document per row with a version column;
every write is conditional on the version that was read.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import aiosqlite

from tradeguard.config.defaults import RATING_AVERAGE_DECIMALS, TRUST_DEFAULT_SCORE
from .errors import DegradedScoreError, PreconditionError
from .models import (
    RatingReceived,
    Report,
    REPORT_STATUS_PENDING,
    Trade,
    TradeStatus,
    UserTrustProfile,
    ViolationCounts,
    ViolationKind,
    ViolationRecord,
    from_iso,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)


class TradeStore:
    """
    Async SQLite CRUD for trade security data.

    Writes are serialized by a store-wide lock and committed per call;
    multi-statement writes run inside a single transaction.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._connection: Optional[aiosqlite.Connection] = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create a shared connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(str(self.db_path))
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    async def initialize(self) -> None:
        """Create schema if not exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            conn = await self._get_connection()
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    completed_trades INTEGER DEFAULT 0,
                    cancelled_trades INTEGER DEFAULT 0,
                    average_rating REAL DEFAULT 0.0,
                    total_ratings INTEGER DEFAULT 0,
                    trust_score INTEGER DEFAULT 50,
                    last_activity TEXT
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS violations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    penalty INTEGER NOT NULL,
                    description TEXT,
                    trade_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS ratings_received (
                    user_id TEXT NOT NULL,
                    from_user TEXT NOT NULL,
                    trade_id TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, trade_id)
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    trade_id TEXT PRIMARY KEY,
                    party_a TEXT NOT NULL,
                    party_b TEXT NOT NULL,
                    status TEXT NOT NULL,
                    document TEXT NOT NULL,  -- JSON
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_violations_user ON violations(user_id)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_trades_party_a ON trades(party_a)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_trades_party_b ON trades(party_b)"
            )
            await conn.commit()
            logger.info(f"Initialized trade store at {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # =============================================
    # PROFILES
    # =============================================

    async def add_user(self, user_id: str, created_at: Optional[datetime] = None) -> UserTrustProfile:
        """Create the trust profile of a new account (score 50)."""
        profile = UserTrustProfile(user_id=user_id, created_at=created_at or utcnow())
        await self.upsert_profile(profile)
        return profile

    async def upsert_profile(self, profile: UserTrustProfile) -> None:
        """Insert or update a profile's counters. Violations live in the ledger."""
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                """
                INSERT INTO users (
                    user_id, created_at, completed_trades, cancelled_trades,
                    average_rating, total_ratings, trust_score, last_activity
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    created_at = excluded.created_at,
                    completed_trades = excluded.completed_trades,
                    cancelled_trades = excluded.cancelled_trades,
                    average_rating = excluded.average_rating,
                    total_ratings = excluded.total_ratings,
                    trust_score = excluded.trust_score,
                    last_activity = excluded.last_activity
            """,
                (
                    profile.user_id,
                    to_iso(profile.created_at),
                    profile.completed_trades,
                    profile.cancelled_trades,
                    profile.average_rating,
                    profile.total_ratings,
                    profile.trust_score,
                    to_iso(profile.last_activity),
                ),
            )
            await conn.commit()

    async def user_exists(self, user_id: str) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT 1 FROM users WHERE user_id = ?", (user_id,)
        )
        return await cursor.fetchone() is not None

    async def get_profile(self, user_id: str) -> Optional[UserTrustProfile]:
        """
        Load a profile with its violation counts.

        Raises:
            DegradedScoreError: If the stored row cannot be decoded.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM users WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        cursor = await conn.execute(
            "SELECT kind, COUNT(*) AS n FROM violations WHERE user_id = ? GROUP BY kind",
            (user_id,),
        )
        counts = {r["kind"]: r["n"] for r in await cursor.fetchall()}

        try:
            return UserTrustProfile(
                user_id=row["user_id"],
                created_at=from_iso(row["created_at"]),
                completed_trades=row["completed_trades"],
                cancelled_trades=row["cancelled_trades"],
                average_rating=row["average_rating"],
                total_ratings=row["total_ratings"],
                violations=ViolationCounts(by_kind=counts, total=sum(counts.values())),
                trust_score=row["trust_score"] if row["trust_score"] is not None else TRUST_DEFAULT_SCORE,
                last_activity=from_iso(row["last_activity"]),
            )
        except (TypeError, ValueError) as e:
            raise DegradedScoreError(f"unreadable profile for {user_id}: {e}") from e

    async def update_trust_score(self, user_id: str, score: int, at: Optional[datetime] = None) -> None:
        """Write back the cached score and the activity timestamp."""
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                "UPDATE users SET trust_score = ?, last_activity = ? WHERE user_id = ?",
                (score, to_iso(at or utcnow()), user_id),
            )
            await conn.commit()

    async def record_completed_trade(self, rating: RatingReceived) -> bool:
        """
        Count a completed trade for ``rating.user_id`` and store the rating it received.

        Runs as one transaction. Returns False (and changes nothing) if this
        trade was already counted for the user.
        """
        async with self._lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO ratings_received (
                    user_id, from_user, trade_id, rating, comment, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    rating.user_id,
                    rating.from_user,
                    rating.trade_id,
                    rating.rating,
                    rating.comment,
                    to_iso(rating.created_at),
                ),
            )
            if cursor.rowcount == 0:
                await conn.rollback()
                return False

            cursor = await conn.execute(
                "SELECT AVG(rating) AS avg, COUNT(*) AS n FROM ratings_received WHERE user_id = ?",
                (rating.user_id,),
            )
            agg = await cursor.fetchone()
            await conn.execute(
                """
                UPDATE users SET
                    completed_trades = completed_trades + 1,
                    average_rating = ?,
                    total_ratings = ?
                WHERE user_id = ?
            """,
                (round_half_up(agg["avg"], RATING_AVERAGE_DECIMALS), agg["n"], rating.user_id),
            )
            await conn.commit()
            return True

    async def get_ratings_received(self, user_id: str) -> List[RatingReceived]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM ratings_received WHERE user_id = ? ORDER BY created_at",
            (user_id,),
        )
        return [
            RatingReceived(
                user_id=r["user_id"],
                from_user=r["from_user"],
                trade_id=r["trade_id"],
                rating=r["rating"],
                comment=r["comment"] or "",
                created_at=from_iso(r["created_at"]),
            )
            for r in await cursor.fetchall()
        ]

    # =============================================
    # VIOLATIONS
    # =============================================

    async def add_violation(self, record: ViolationRecord) -> None:
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                """
                INSERT INTO violations (user_id, kind, penalty, description, trade_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    record.user_id,
                    record.kind.value,
                    record.penalty,
                    record.description,
                    record.trade_id,
                    to_iso(record.created_at),
                ),
            )
            await conn.commit()

    async def list_violations(self, user_id: str) -> List[ViolationRecord]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM violations WHERE user_id = ? ORDER BY id", (user_id,)
        )
        return [
            ViolationRecord(
                user_id=r["user_id"],
                kind=ViolationKind(r["kind"]),
                penalty=r["penalty"],
                description=r["description"] or "",
                trade_id=r["trade_id"],
                created_at=from_iso(r["created_at"]),
            )
            for r in await cursor.fetchall()
        ]

    # =============================================
    # TRADES
    # =============================================

    async def insert_trade(self, trade: Trade) -> Trade:
        """Persist a new trade at version 1."""
        now = to_iso(utcnow())
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                """
                INSERT INTO trades (
                    trade_id, party_a, party_b, status, document, version, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?, ?)
            """,
                (
                    trade.trade_id,
                    trade.party_a,
                    trade.party_b,
                    trade.status.value,
                    json.dumps(trade.to_dict()),
                    to_iso(trade.created_at),
                    now,
                ),
            )
            await conn.commit()
        trade.version = 1
        return trade

    async def save_trade(self, trade: Trade, cancelled_by: Optional[str] = None) -> Trade:
        """
        Write a trade back if nobody else wrote it since it was read.

        The cached status column is written together with the document.
        With ``cancelled_by``, that user's cancelledTrades is incremented
        in the same transaction.

        Raises:
            PreconditionError: If the stored version moved on.
        """
        async with self._lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                """
                UPDATE trades SET
                    status = ?,
                    document = ?,
                    version = version + 1,
                    updated_at = ?
                WHERE trade_id = ? AND version = ?
            """,
                (
                    trade.status.value,
                    json.dumps(trade.to_dict()),
                    to_iso(utcnow()),
                    trade.trade_id,
                    trade.version,
                ),
            )
            if cursor.rowcount == 0:
                await conn.rollback()
                raise PreconditionError(
                    f"Trade {trade.trade_id} was modified concurrently (version {trade.version})",
                    flag="version",
                )
            if cancelled_by is not None:
                await conn.execute(
                    "UPDATE users SET cancelled_trades = cancelled_trades + 1 WHERE user_id = ?",
                    (cancelled_by,),
                )
            await conn.commit()
        trade.version += 1
        return trade

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT document, version FROM trades WHERE trade_id = ?", (trade_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Trade.from_dict(json.loads(row["document"]), version=row["version"])

    async def list_trades_for(self, user_id: str) -> List[Trade]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT document, version FROM trades
            WHERE party_a = ? OR party_b = ?
            ORDER BY created_at
        """,
            (user_id, user_id),
        )
        return [
            Trade.from_dict(json.loads(r["document"]), version=r["version"])
            for r in await cursor.fetchall()
        ]

    async def list_pending_reports(self) -> List[Tuple[str, int, Report]]:
        """Pending reports on trades not yet disputed, as (trade_id, index, report)."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT document, version FROM trades WHERE status != ? ORDER BY created_at",
            (TradeStatus.DISPUTED.value,),
        )
        pending = []
        for row in await cursor.fetchall():
            trade = Trade.from_dict(json.loads(row["document"]), version=row["version"])
            if trade.security is None:
                continue
            for index, report in enumerate(trade.security.reports):
                if report.status == REPORT_STATUS_PENDING:
                    pending.append((trade.trade_id, index, report))
        return pending


def round_half_up(value: float, decimals: int) -> float:
    """Round like the stored averages always have: halves go up."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor
