"""
GoalGrid Engine — Service result types.

Every service operation returns one of these dataclasses instead of raising:
rejections (bad input, wrong owner, duplicates) are ordinary outcomes that
the caller renders, not exceptional control flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from goalgrid.core.points import milli_to_display
from goalgrid.core.streaks import SoftFailureMessage
from goalgrid.data.models import ChallengeStatus, CheckIn, GroupChallenge, UserPoints


class ResultKind(Enum):
    SUCCESS = "success"
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass
class ServiceResult:
    kind: ResultKind
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == ResultKind.SUCCESS


# --- Check-ins ---

@dataclass
class CheckInResult(ServiceResult):
    check_in_id: int | None = None
    today_count: int = 0
    daily_target: int = 1
    is_complete: bool = False
    is_partial: bool = False
    upgraded: bool = False                  # partial -> full on a single-target goal
    points_milli: int = 0
    streak_bonus_applied: bool = False
    streak_milestone: int | None = None     # 7 / 14 / 30 when just reached

    @property
    def points(self) -> int:
        return milli_to_display(self.points_milli)


@dataclass
class UndoResult(ServiceResult):
    removed_check_in_id: int | None = None
    today_count: int = 0
    daily_target: int = 1


@dataclass
class HistoricalLogResult(ServiceResult):
    date_key: str = ""
    count: int = 0
    inserted: int = 0
    deleted: int = 0
    points_milli: int = 0


@dataclass
class BulkLogResult(ServiceResult):
    days_processed: int = 0
    inserted: int = 0
    deleted: int = 0
    points_milli: int = 0


@dataclass
class HistoricalDayResult(ServiceResult):
    date_key: str = ""
    count: int = 0
    daily_target: int = 1
    check_ins: list[CheckIn] = field(default_factory=list)


@dataclass
class GoalStatsResult(ServiceResult):
    goal_id: int | None = None
    today_count: int = 0
    daily_target: int = 1
    is_complete_today: bool = False
    current_streak: int = 0
    best_streak: int = 0
    graceful_streak: int = 0
    freezes_used: int = 0
    is_at_risk: bool = False
    consistency: int = 100
    recent_completions: int = 0
    week_count: int = 0
    weekly_target: int | None = None
    weekly_streak: int = 0
    soft_message: SoftFailureMessage | None = None


# --- Points ---

@dataclass
class PointsResult(ServiceResult):
    """Outcome of a ledger backfill or an aggregate rebuild."""

    entries_created: int = 0
    totals: UserPoints = field(default_factory=UserPoints)

    @property
    def week_points(self) -> int:
        return milli_to_display(self.totals.week_milli)

    @property
    def lifetime_points(self) -> int:
        return milli_to_display(self.totals.lifetime_milli)


# --- Challenges ---

@dataclass
class ChallengeResult(ServiceResult):
    challenge: GroupChallenge | None = None


@dataclass
class ApprovalResult(ServiceResult):
    approval_count: int = 0
    member_count: int = 0
    status: ChallengeStatus | None = None


@dataclass
class ChallengeTransition:
    challenge_id: int
    from_status: ChallengeStatus
    to_status: ChallengeStatus


@dataclass
class EvaluationResult(ServiceResult):
    transitions: list[ChallengeTransition] = field(default_factory=list)


@dataclass
class GroupChallengeView(ServiceResult):
    """The group's current or upcoming challenge, as seen by one member."""

    challenge: GroupChallenge | None = None
    approval_count: int = 0
    member_count: int = 0
    has_approved: bool = False
    is_current_week: bool = False
    is_next_week: bool = False
    group_rank: int = 1


@dataclass
class MemberChallengeResult:
    user_id: int
    name: str
    completion_percent: int
    passed: bool


@dataclass
class ChallengeResultsView(ServiceResult):
    challenge: GroupChallenge | None = None
    threshold: int = 0
    succeeded: bool = False
    members: list[MemberChallengeResult] = field(default_factory=list)


# --- Tiers ---

@dataclass
class TierResult(ServiceResult):
    old_tier: str | None = None
    current_tier: str = "BRONZE"
    completion_rate: float = 0.0
    upgraded: bool = False
    last_tier_update: datetime | None = None
