"""
GoalGrid Engine — Data Models.

Plain records exchanged between the stores, the engines and the services.
Instants are timezone-aware datetimes; calendar positions are carried as
day keys (YYYY-MM-DD) and ISO week keys (YYYY-Www) derived in the user's
timezone when the record was created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Cadence(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class MemberRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class ChallengeMode(str, Enum):
    STANDARD = "STANDARD"
    TEAM_VS_TEAM = "TEAM_VS_TEAM"
    DUO_COMPETITION = "DUO_COMPETITION"


class ChallengeStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class LedgerReason(str, Enum):
    CHECKIN_POINTS = "CHECKIN_POINTS"


@dataclass
class User:
    """A person who owns goals and earns points.

    The points_* fields are a cache over the point ledger and can always be
    rebuilt by summing ledger entries.
    """

    id: int
    display_name: str
    timezone: str
    points_week_key: str | None = None
    points_week_milli: int = 0
    points_lifetime_milli: int = 0
    created_at: datetime | None = None


@dataclass
class Goal:
    """A habit owned by exactly one user.

    DAILY goals need `daily_target` completions per calendar day.
    WEEKLY goals need `weekly_target` completions per ISO week.
    """

    id: int
    owner_id: int
    name: str
    cadence: Cadence
    created_at: datetime
    daily_target: int = 1
    weekly_target: int | None = None
    active: bool = True
    streak_freezes: int = 1
    group_id: int | None = None


@dataclass
class CheckIn:
    """One completion event for a goal."""

    id: int
    goal_id: int
    user_id: int
    timestamp: datetime
    local_date_key: str    # YYYY-MM-DD in the user's timezone
    week_key: str          # YYYY-Www in the user's timezone
    is_partial: bool = False


@dataclass
class PointLedgerEntry:
    """Append-only record of a point-awarding event.

    `source_id` is the check-in that triggered the award; together with
    `reason` it makes inserts idempotent.
    """

    user_id: int
    goal_id: int
    week_key: str
    local_date: str
    points_milli: int
    source_id: int
    reason: LedgerReason = LedgerReason.CHECKIN_POINTS
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class UserPoints:
    """Materialized weekly/lifetime totals derived from the ledger."""

    week_key: str | None = None
    week_milli: int = 0
    lifetime_milli: int = 0


@dataclass
class Group:
    """An accountability group; `rank` only ever goes up."""

    id: int
    name: str
    rank: int = 1
    current_tier: str = "BRONZE"
    weekly_completion_rate: float = 0.0
    last_tier_update: datetime | None = None


@dataclass
class GroupMember:
    group_id: int
    user_id: int
    role: MemberRole = MemberRole.MEMBER


@dataclass(frozen=True)
class TeamAssignments:
    team1: list[int] = field(default_factory=list)
    team2: list[int] = field(default_factory=list)


@dataclass
class GroupChallenge:
    """A weekly group challenge, unique per (group_id, week_key)."""

    id: int
    group_id: int
    week_key: str
    created_by: int
    status: ChallengeStatus
    start_date: datetime
    end_date: datetime
    mode: ChallengeMode = ChallengeMode.STANDARD
    threshold: int = 90
    duration_days: int = 7
    team_assignments: TeamAssignments | None = None
    duo_assignments: list[list[int]] | None = None
    created_at: datetime | None = None


@dataclass
class ChallengeApproval:
    challenge_id: int
    user_id: int
    created_at: datetime | None = None
