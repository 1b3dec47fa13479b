"""Group challenge rules: pure business logic.

A challenge runs for one ISO week and moves through
PENDING -> SCHEDULED -> ACTIVE -> SUCCEEDED | FAILED.
This module decides assignments, completion percentages and transitions;
the ChallengeService persists them.

Randomness comes from an injected `random.Random` so assignments are
reproducible under a fixed seed.
"""

from __future__ import annotations

import random
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TypeVar

from goalgrid.core.time_keys import next_week_start, week_key
from goalgrid.data.models import (
    Cadence,
    ChallengeMode,
    ChallengeStatus,
    CheckIn,
    Goal,
    GroupChallenge,
    TeamAssignments,
)

MIN_CONFIGURED_MEMBERS = 2

T = TypeVar("T")


@dataclass(frozen=True)
class ChallengeWindow:
    week_key: str
    start_date: datetime
    end_date: datetime


@dataclass(frozen=True)
class MemberCompletion:
    user_id: int
    completed: int
    target: int

    @property
    def percent(self) -> int:
        if self.target <= 0:
            return 0
        return int(100 * self.completed / self.target + 0.5)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


def shuffle_members(items: Sequence[T], rng: random.Random) -> list[T]:
    """Fisher-Yates shuffle into a new list."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def assign_teams(member_ids: Sequence[int], rng: random.Random) -> TeamAssignments:
    """Split members into two teams; team 1 gets the extra member when odd."""
    shuffled = shuffle_members(member_ids, rng)
    midpoint = (len(shuffled) + 1) // 2
    return TeamAssignments(team1=shuffled[:midpoint], team2=shuffled[midpoint:])


def assign_duos(member_ids: Sequence[int], rng: random.Random) -> list[list[int]]:
    """Pair members up; an odd member out forms a solo duo."""
    shuffled = shuffle_members(member_ids, rng)
    return [shuffled[i:i + 2] for i in range(0, len(shuffled), 2)]


# ---------------------------------------------------------------------------
# Creation rules
# ---------------------------------------------------------------------------


def plan_challenge_window(now: datetime, tz: str, duration_days: int) -> ChallengeWindow:
    """Challenges always target the ISO week after the creator's current one."""
    start = next_week_start(now, tz)
    return ChallengeWindow(
        week_key=week_key(start, tz),
        start_date=start,
        end_date=start + timedelta(days=duration_days),
    )


def validate_challenge_config(
    mode: ChallengeMode | str, threshold: int, duration_days: int,
) -> str | None:
    """Rejection reason for a challenge configuration, or None."""
    try:
        ChallengeMode(mode)
    except ValueError:
        return f"Unknown challenge mode {mode!r}."
    if not 0 <= threshold <= 100:
        return "Threshold must be between 0 and 100."
    if duration_days < 1:
        return "Duration must be at least 1 day."
    return None


def is_quorum_reached(approval_count: int, member_count: int) -> bool:
    """Every member has approved."""
    return member_count > 0 and approval_count >= member_count


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


def weekly_target_units(goal: Goal) -> int:
    """Completions a goal needs in one week for challenge/tier purposes."""
    if goal.cadence == Cadence.WEEKLY:
        return goal.weekly_target or 1
    return (goal.daily_target or 1) * 7


def member_completion(
    user_id: int, goals: Iterable[Goal], week_check_ins: Iterable[CheckIn],
) -> MemberCompletion:
    """Completion of all of a member's active goals over one week.

    Every active goal counts, not only group goals: this measures overall
    commitment. Each goal contributes min(check-ins, target) / target.
    """
    counts = Counter(c.goal_id for c in week_check_ins if not c.is_partial)
    completed = 0
    target = 0
    for goal in goals:
        if not goal.active:
            continue
        goal_target = weekly_target_units(goal)
        target += goal_target
        completed += min(counts.get(goal.id, 0), goal_target)
    return MemberCompletion(user_id=user_id, completed=completed, target=target)


def member_completion_percent(
    goals: Iterable[Goal], week_check_ins: Iterable[CheckIn],
) -> int:
    """Rounded completion percentage; a member without goals scores 0."""
    return member_completion(0, goals, week_check_ins).percent


def group_completion_rate(completions: Iterable[MemberCompletion]) -> float:
    """Group-wide completion rate (0-100, unrounded) across all members' goals."""
    completed = 0
    target = 0
    for completion in completions:
        completed += completion.completed
        target += completion.target
    if target == 0:
        return 0.0
    return completed / target * 100


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def all_members_passed(member_percents: Mapping[int, int], threshold: int) -> bool:
    """True when there is at least one member and everyone met the threshold."""
    return bool(member_percents) and all(
        p >= threshold for p in member_percents.values()
    )


def due_transition(challenge: GroupChallenge, current_week_key: str) -> ChallengeStatus | None:
    """ACTIVE for a scheduled challenge whose week has begun, else None.

    Besides the current week, this also activates a scheduled challenge
    whose week already passed, so a group nobody opened during the
    challenge week still gets it scored in the same evaluation pass.
    """
    if challenge.status == ChallengeStatus.SCHEDULED and challenge.week_key <= current_week_key:
        return ChallengeStatus.ACTIVE
    return None


def needs_evaluation(challenge: GroupChallenge, current_week_key: str) -> bool:
    """An active challenge is scored once its week is strictly in the past."""
    return challenge.status == ChallengeStatus.ACTIVE and challenge.week_key < current_week_key


def evaluation_outcome(
    member_percents: Mapping[int, int], threshold: int,
) -> ChallengeStatus:
    return (
        ChallengeStatus.SUCCEEDED
        if all_members_passed(member_percents, threshold)
        else ChallengeStatus.FAILED
    )


def next_status(
    challenge: GroupChallenge,
    current_week_key: str,
    member_percents: Mapping[int, int] | None = None,
) -> ChallengeStatus | None:
    """The status a challenge should move to now, or None to leave it.

    `member_percents` is only consulted for an active challenge whose week
    has ended.
    """
    activated = due_transition(challenge, current_week_key)
    if activated is not None:
        return activated
    if needs_evaluation(challenge, current_week_key):
        return evaluation_outcome(member_percents or {}, challenge.threshold)
    return None
