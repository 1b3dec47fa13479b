"""Achievement badges derived from check-in history."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from goalgrid.core.streaks import compute_weekly_streak, summarize_weekly_counts
from goalgrid.data.models import Cadence

if TYPE_CHECKING:
    from goalgrid.data.models import CheckIn, Goal

FIRST_COMPLETION = "First Completion"
SEVEN_DAY_STREAK = "7-day streak"
WEEKLY_TARGET_FOUR_WEEKS = "Hit weekly target 4 weeks"


def get_badges(
    total_check_ins: int,
    daily_streaks: Iterable[int],
    weekly_goals: Sequence[tuple[Goal, Sequence[CheckIn]]],
    current_week_key: str,
) -> list[str]:
    """Badges earned so far.

    Args:
        total_check_ins: All of the user's check-ins.
        daily_streaks: Current daily streak of each daily goal.
        weekly_goals: (goal, its check-ins) for each weekly goal.
        current_week_key: ISO week key of today in the user's timezone.
    """
    badges: list[str] = []
    if total_check_ins > 0:
        badges.append(FIRST_COMPLETION)
    if any(streak >= 7 for streak in daily_streaks):
        badges.append(SEVEN_DAY_STREAK)

    for goal, check_ins in weekly_goals:
        if goal.cadence != Cadence.WEEKLY or not goal.weekly_target:
            continue
        streak = compute_weekly_streak(
            summarize_weekly_counts(check_ins), current_week_key, goal.weekly_target,
        )
        if streak >= 4:
            badges.append(WEEKLY_TARGET_FOUR_WEEKS)
            break
    return badges
