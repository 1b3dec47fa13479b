"""
GoalGrid Engine — Weekly Group Summary.

Builds the end-of-week recap shown to a group: per-member completions this
week versus last week, the top performer and the most improved member.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from goalgrid.core.streaks import count_recent_completions, summarize_daily_counts
from goalgrid.core.time_keys import day_key, shift_week_key, week_end, week_key, week_start
from goalgrid.data.models import CheckIn, Goal

RECENT_WINDOW_DAYS = 30


@dataclass
class MemberHistory:
    """A member's goals and their check-ins, as loaded by the caller."""

    user_id: int
    name: str
    goals: list[Goal] = field(default_factory=list)
    check_ins: list[CheckIn] = field(default_factory=list)


@dataclass
class GoalWeekSummary:
    goal_id: int
    goal_name: str
    completions_this_week: int
    completions_last_week: int
    consistency: int   # % of the last 30 days that qualified


@dataclass
class MemberWeekSummary:
    user_id: int
    name: str
    goals: list[GoalWeekSummary]
    total_this_week: int
    total_last_week: int
    week_over_week_change: int   # percent


@dataclass
class WeeklySummary:
    week_label: str
    week_start: datetime
    week_end: datetime
    top_performer: tuple[str, int] | None        # (name, completions)
    most_improved: tuple[str, int] | None        # (name, change percent)
    group_total: int
    group_average: int
    members: list[MemberWeekSummary]


def week_over_week_change(this_week: int, last_week: int) -> int:
    """Percent change; going from nothing to something counts as +100%."""
    if last_week > 0:
        return _round_half_up((this_week - last_week) / last_week * 100)
    return 100 if this_week > 0 else 0


def _summarize_member(
    member: MemberHistory, current_week: str, last_week: str, today_key: str,
) -> MemberWeekSummary:
    goal_summaries: list[GoalWeekSummary] = []
    for goal in member.goals:
        check_ins = [c for c in member.check_ins if c.goal_id == goal.id and not c.is_partial]
        recent = count_recent_completions(
            summarize_daily_counts(check_ins), today_key, RECENT_WINDOW_DAYS, goal.daily_target,
        )
        goal_summaries.append(GoalWeekSummary(
            goal_id=goal.id,
            goal_name=goal.name,
            completions_this_week=sum(1 for c in check_ins if c.week_key == current_week),
            completions_last_week=sum(1 for c in check_ins if c.week_key == last_week),
            consistency=_round_half_up(recent / RECENT_WINDOW_DAYS * 100),
        ))

    this_week = sum(g.completions_this_week for g in goal_summaries)
    previous = sum(g.completions_last_week for g in goal_summaries)
    return MemberWeekSummary(
        user_id=member.user_id,
        name=member.name,
        goals=goal_summaries,
        total_this_week=this_week,
        total_last_week=previous,
        week_over_week_change=week_over_week_change(this_week, previous),
    )


def compute_weekly_summary(
    members: Sequence[MemberHistory], now: datetime, tz: str,
) -> WeeklySummary:
    """Summarize the current ISO week (in `tz`) for a group."""
    current_week = week_key(now, tz)
    last_week = shift_week_key(current_week, -1)
    today_key = day_key(now, tz)

    summaries = [_summarize_member(m, current_week, last_week, today_key) for m in members]

    top_performer = None
    if summaries:
        best = max(summaries, key=lambda s: s.total_this_week)
        if best.total_this_week > 0:
            top_performer = (best.name, best.total_this_week)

    most_improved = None
    improved = [s for s in summaries if s.week_over_week_change > 0]
    if improved:
        best = max(improved, key=lambda s: s.week_over_week_change)
        most_improved = (best.name, best.week_over_week_change)

    group_total = sum(s.total_this_week for s in summaries)
    group_average = _round_half_up(group_total / len(summaries)) if summaries else 0

    start = week_start(now, tz)
    return WeeklySummary(
        week_label=f"Week of {start.strftime('%b')} {start.day}",
        week_start=start,
        week_end=week_end(now, tz) + timedelta(days=1) - timedelta(microseconds=1),
        top_performer=top_performer,
        most_improved=most_improved,
        group_total=group_total,
        group_average=group_average,
        members=summaries,
    )


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
