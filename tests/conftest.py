"""Pytest configuration for tradeguard tests."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src to path for the tests - conftest is in tests/, so parent.parent is project root
project_root = Path(__file__).resolve().parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(src_path))

from tradeguard.config import SecurityConfig  # noqa: E402
from tradeguard.security import TradeSecurityService  # noqa: E402


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return SecurityConfig(data_dir=tmp_path / ".tradeguard", audit_level="DEBUG", audit_sample_rate=1.0)


@pytest.fixture
async def service(config, clock):
    """An initialized service on a fresh database."""
    svc = TradeSecurityService(config, clock=clock)
    await svc.initialize()
    yield svc
    await svc.close()


@pytest.fixture
def make_user(service):
    """Create a user whose profile already carries some history."""
    from tradeguard.security.models import UserTrustProfile

    async def _make(
        user_id: str,
        age_days: int = 0,
        completed: int = 0,
        cancelled: int = 0,
        average_rating: float = 0.0,
        total_ratings: int = 0,
    ) -> UserTrustProfile:
        profile = UserTrustProfile(
            user_id=user_id,
            created_at=NOW - timedelta(days=age_days),
            completed_trades=completed,
            cancelled_trades=cancelled,
            average_rating=average_rating,
            total_ratings=total_ratings,
        )
        await service.store.upsert_profile(profile)
        return profile

    return _make
