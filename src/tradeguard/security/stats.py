"""
Rating/statistics aggregation for completed trades.

The service only talks to the ``RatingAggregator`` protocol; the default
implementation writes to the local TradeStore.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .errors import NotFoundError
from .models import RatingReceived, utcnow
from .store import TradeStore

logger = logging.getLogger(__name__)


class RatingAggregator(Protocol):
    async def record_rating(
        self,
        user_id: str,
        counterparty_id: str,
        trade_id: str,
        rating_given: int,
        comment: str = "",
    ) -> None:
        """Count a completed trade for ``user_id`` rated ``rating_given`` by the counterparty."""
        ...


class ProfileStatsAggregator:
    """Update completedTrades, averageRating and totalRatings in the store."""

    def __init__(self, store: TradeStore):
        self.store = store

    async def record_rating(
        self,
        user_id: str,
        counterparty_id: str,
        trade_id: str,
        rating_given: int,
        comment: str = "",
    ) -> None:
        if not await self.store.user_exists(user_id):
            raise NotFoundError("user", user_id)

        counted = await self.store.record_completed_trade(RatingReceived(
            user_id=user_id,
            from_user=counterparty_id,
            trade_id=trade_id,
            rating=rating_given,
            comment=comment,
            created_at=utcnow(),
        ))
        if not counted:
            logger.info(f"Trade {trade_id} already counted for {user_id}, skipping")
