"""Unified points system: pure business logic.

Fair, finish-weighted weekly scoring:
- a weekly ceiling of 1000 points per user across all goals
- each goal gets a share of the ceiling by logarithmic effort weight
- a blended curve that rewards finishing without being all-or-nothing
- a small streak multiplier for consistency
- awards are recorded in an append-only, idempotent ledger

Points are handled as integer milli-points wherever they are stored, so
repeated additions never drift.

ACTIVE GOALS POLICY:
A goal counts toward the share denominator of a week if it already has a
check-in in that week, or if it is active and was created no later than
the end of that week. Historical check-ins can therefore earn points for a
goal archived since, while a goal created late in the week without any
check-in does not dilute the shares of the others.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from goalgrid.core.time_keys import day_keys_for_week, week_end_for_key
from goalgrid.data.models import (
    Cadence,
    CheckIn,
    Goal,
    LedgerReason,
    PointLedgerEntry,
    UserPoints,
)

logger = logging.getLogger(__name__)

# === CONSTANTS ===
WEEKLY_POINTS_CEILING = 1000      # max points per user per week
WEEKLY_CEILING_MILLI = WEEKLY_POINTS_CEILING * 1000
ALPHA = 0.7                       # blend factor for the scoring curve
GAMMA = 1.8                       # exponent of the finish-weighted term
MAX_DAILY_TARGET = 10             # cap on daily target for weight purposes
STREAK_BONUS_PER_WEEK = 0.02      # +2% per full week of streak
MAX_STREAK_BONUS = 0.10           # capped at +10%


@dataclass(frozen=True)
class PointsAward:
    points_milli: int
    streak_bonus_applied: bool

    @property
    def points(self) -> int:
        return milli_to_display(self.points_milli)


def expected_units_per_week(goal: Goal) -> int:
    """Completions a goal asks for in one week.

    Daily: 7 * daily target (target capped at MAX_DAILY_TARGET).
    Weekly: the weekly target.
    """
    if goal.cadence == Cadence.WEEKLY:
        return goal.weekly_target or 1
    return 7 * min(goal.daily_target or 1, MAX_DAILY_TARGET)


def goal_weight(goal: Goal) -> float:
    """weight = ln(1 + expected units per week)."""
    return math.log1p(expected_units_per_week(goal))


def goal_share(goal: Goal, active_goals: Sequence[Goal]) -> float:
    """This goal's slice of the weekly ceiling, in points."""
    total_weight = sum(goal_weight(g) for g in active_goals)
    if total_weight <= 0:
        return 0.0
    return WEEKLY_POINTS_CEILING * goal_weight(goal) / total_weight


def compute_daily_goal_progress(
    counts_by_date: Mapping[str, int],
    daily_target: int,
    week_dates: Sequence[str],
) -> float:
    """Weekly progress of a daily goal: mean of per-day completion, each in [0, 1]."""
    target = max(daily_target, 1)
    total = sum(min(counts_by_date.get(d, 0) / target, 1.0) for d in week_dates)
    return total / 7


def compute_weekly_goal_progress(check_ins_this_week: int, weekly_target: int) -> float:
    """Weekly progress of a weekly goal: count / target, clamped to [0, 1]."""
    if weekly_target < 1:
        return 0.0
    return max(0.0, min(check_ins_this_week / weekly_target, 1.0))


def score(p: float) -> float:
    """Blended curve (1 - alpha) * P + alpha * P^gamma."""
    return (1 - ALPHA) * p + ALPHA * math.pow(p, GAMMA)


def delta_score(p_before: float, p_after: float) -> float:
    return score(p_after) - score(p_before)


def streak_multiplier(streak_days: int) -> float:
    """1.0 plus 2% per full week of streak, capped at 1.10."""
    bonus = min(MAX_STREAK_BONUS, STREAK_BONUS_PER_WEEK * (max(streak_days, 0) // 7))
    return 1 + bonus


def is_goal_active_for_week(
    goal: Goal, week_end: datetime, has_check_in_this_week: bool,
) -> bool:
    """Whether a goal takes part in the share split for a week."""
    if has_check_in_this_week:
        return True
    if not goal.active:
        return False
    return goal.created_at <= week_end


def calculate_points_to_award(
    goal: Goal,
    p_before: float,
    p_after: float,
    active_goals: Sequence[Goal],
    streak_days: int,
    points_already_earned_milli: int,
) -> PointsAward:
    """Points earned by moving a goal's weekly progress from p_before to p_after.

    The result is clamped to what is left of the weekly ceiling, so the sum
    of a user's ledger entries for a week can never pass it.
    """
    share = goal_share(goal, active_goals)
    base_points = share * delta_score(p_before, p_after)

    mult = streak_multiplier(streak_days)
    points = base_points * mult

    remaining_milli = WEEKLY_CEILING_MILLI - points_already_earned_milli
    points_milli = max(0, min(_round_half_up(points * 1000), remaining_milli))

    logger.debug(
        "Goal #%s award: share=%.2f P %.3f->%.3f mult=%.2f -> %d milli",
        goal.id, share, p_before, p_after, mult, points_milli,
    )
    return PointsAward(points_milli=points_milli, streak_bonus_applied=mult > 1)


def milli_to_display(milli: int) -> int:
    """Whole display points (floored)."""
    return milli // 1000


def progress_before_after(
    goal: Goal,
    counts_by_date: Mapping[str, int],
    day_key: str,
    week_dates: Sequence[str],
) -> tuple[float, float]:
    """Weekly progress without and with one completion on `day_key`.

    `counts_by_date` already includes the triggering completion.
    """
    before_counts = dict(counts_by_date)
    if before_counts.get(day_key, 0) > 0:
        before_counts[day_key] -= 1

    if goal.cadence == Cadence.DAILY:
        return (
            compute_daily_goal_progress(before_counts, goal.daily_target, week_dates),
            compute_daily_goal_progress(counts_by_date, goal.daily_target, week_dates),
        )

    weekly_target = goal.weekly_target or 1
    total_after = sum(counts_by_date.get(d, 0) for d in week_dates)
    total_before = sum(before_counts.get(d, 0) for d in week_dates)
    return (
        compute_weekly_goal_progress(total_before, weekly_target),
        compute_weekly_goal_progress(total_after, weekly_target),
    )


# ---------------------------------------------------------------------------
# Ledger and aggregates
# ---------------------------------------------------------------------------


def build_ledger_entry(
    user_id: int,
    goal_id: int,
    week_key: str,
    local_date: str,
    points_milli: int,
    source_id: int,
    reason: LedgerReason = LedgerReason.CHECKIN_POINTS,
) -> PointLedgerEntry | None:
    """Ledger row for an award, or None when there is nothing to record."""
    if points_milli <= 0:
        return None
    return PointLedgerEntry(
        user_id=user_id,
        goal_id=goal_id,
        week_key=week_key,
        local_date=local_date,
        points_milli=points_milli,
        source_id=source_id,
        reason=reason,
    )


def apply_award_to_points(
    current: UserPoints,
    week_key: str,
    points_milli: int,
    current_week_key: str | None = None,
) -> UserPoints:
    """Fold one award into the cached totals, starting a new week if needed.

    When `current_week_key` is given and the award belongs to another week
    (a backfilled day), only the lifetime total moves.
    """
    if current_week_key is not None and week_key != current_week_key:
        return UserPoints(
            week_key=current.week_key,
            week_milli=current.week_milli,
            lifetime_milli=current.lifetime_milli + points_milli,
        )
    week_milli = current.week_milli if current.week_key == week_key else 0
    return UserPoints(
        week_key=week_key,
        week_milli=week_milli + points_milli,
        lifetime_milli=current.lifetime_milli + points_milli,
    )


def rebuild_user_points(
    entries: Iterable[PointLedgerEntry], current_week_key: str,
) -> UserPoints:
    """Recompute the cached totals from scratch by summing the ledger."""
    lifetime = 0
    week = 0
    for entry in entries:
        lifetime += entry.points_milli
        if entry.week_key == current_week_key:
            week += entry.points_milli
    return UserPoints(week_key=current_week_key, week_milli=week, lifetime_milli=lifetime)


def compute_replay_awards(
    goals: Sequence[Goal], check_ins: Iterable[CheckIn], tz: str,
) -> list[PointLedgerEntry]:
    """Replay a user's history week by week and derive the ledger it implies.

    Check-ins are processed in chronological order within each week so each
    one is scored against the progress that existed before it. No streak
    multiplier is applied; each week is clamped to the ceiling on its own.
    """
    goals_by_id = {g.id: g for g in goals}
    by_week: dict[str, list[CheckIn]] = defaultdict(list)
    for check_in in check_ins:
        if check_in.is_partial or check_in.goal_id not in goals_by_id:
            continue
        by_week[check_in.week_key].append(check_in)

    entries: list[PointLedgerEntry] = []
    for week_key in sorted(by_week):
        week_check_ins = sorted(by_week[week_key], key=lambda c: (c.timestamp, c.id))
        week_dates = day_keys_for_week(week_key)
        week_end = week_end_for_key(week_key, tz)

        goals_with_check_ins = {c.goal_id for c in week_check_ins}
        active_goals = [
            g for g in goals
            if is_goal_active_for_week(g, week_end, g.id in goals_with_check_ins)
        ]

        progress: dict[int, dict[str, int]] = defaultdict(dict)
        week_milli = 0
        for check_in in week_check_ins:
            goal = goals_by_id[check_in.goal_id]
            counts = progress[goal.id]
            counts[check_in.local_date_key] = counts.get(check_in.local_date_key, 0) + 1
            p_before, p_after = progress_before_after(
                goal, counts, check_in.local_date_key, week_dates,
            )
            award = calculate_points_to_award(
                goal, p_before, p_after, active_goals,
                streak_days=0, points_already_earned_milli=week_milli,
            )
            entry = build_ledger_entry(
                user_id=check_in.user_id,
                goal_id=goal.id,
                week_key=week_key,
                local_date=check_in.local_date_key,
                points_milli=award.points_milli,
                source_id=check_in.id,
            )
            if entry is not None:
                entries.append(entry)
                week_milli += entry.points_milli

    return entries


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)
