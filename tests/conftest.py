"""Shared test fixtures and configuration.

Sets environment defaults before goalgrid.config is imported, and provides
temp-file stores that all point at one SQLite file, a pinned clock and a
seeded random generator.
"""

import os

# Patch env vars BEFORE any goalgrid imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("DEFAULT_TIMEZONE", "America/Chicago")

import random
from datetime import UTC, datetime, timedelta

import pytest

TZ = "America/Chicago"

# Thursday 2026-10-15, 13:00 in Chicago (CDT); ISO week 2026-W42 runs Oct 12-18
NOW = datetime(2026, 10, 15, 18, 0, tzinfo=UTC)
LONG_AGO = datetime(2026, 9, 1, 15, 0, tzinfo=UTC)


class FixedClock:
    """ClockPort implementation that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_goalgrid.db")


@pytest.fixture
def user_db(tmp_db_path):
    from goalgrid.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def goal_db(tmp_db_path):
    from goalgrid.data.db import GoalDB
    return GoalDB(db_path=tmp_db_path)


@pytest.fixture
def ledger_db(tmp_db_path):
    from goalgrid.data.db import LedgerDB
    return LedgerDB(db_path=tmp_db_path)


@pytest.fixture
def group_db(tmp_db_path):
    from goalgrid.data.db import GroupDB
    return GroupDB(db_path=tmp_db_path)


@pytest.fixture
def checkin_service(user_db, goal_db, ledger_db, clock):
    from goalgrid.core.checkin_service import CheckInService
    return CheckInService(user_db, goal_db, ledger_db, clock)


@pytest.fixture
def points_service(user_db, goal_db, ledger_db, clock):
    from goalgrid.core.points_service import PointsService
    return PointsService(user_db, goal_db, ledger_db, clock)


@pytest.fixture
def challenge_service(user_db, goal_db, group_db, clock, rng):
    from goalgrid.core.challenge_service import ChallengeService
    return ChallengeService(user_db, goal_db, group_db, clock, rng)


@pytest.fixture
def tier_service(user_db, goal_db, group_db, clock):
    from goalgrid.core.tier_service import TierService
    return TierService(user_db, goal_db, group_db, clock)


@pytest.fixture
def alice(user_db):
    return user_db.add_user("Alice", TZ, created_at=LONG_AGO)


@pytest.fixture
def bob(user_db):
    return user_db.add_user("Bob", TZ, created_at=LONG_AGO)


@pytest.fixture
def carol(user_db):
    return user_db.add_user("Carol", TZ, created_at=LONG_AGO)
