"""Streak and consistency calculations: pure business logic.

All functions take a `date -> count` map built from a goal's check-ins
(see `summarize_daily_counts`) plus the goal's daily target. A day
"qualifies" only when its count reaches the full daily target; partial
progress on a day never qualifies it.

`today_key` must already be the local date in the user's timezone
(see goalgrid.core.time_keys.day_key).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from goalgrid.core.time_keys import (
    days_between,
    shift_day_key,
    shift_week_key,
)

if TYPE_CHECKING:
    from goalgrid.data.models import CheckIn

# Upper bound on days visited by the graceful walk
MAX_GRACEFUL_WALK_DAYS = 365

DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class GracefulStreak:
    current_streak: int
    freezes_used: int
    is_at_risk: bool


def summarize_daily_counts(check_ins: Iterable[CheckIn]) -> dict[str, int]:
    """Reduce check-ins to a `local_date_key -> count` map.

    Partial check-ins are not completions and are left out.
    """
    return dict(Counter(c.local_date_key for c in check_ins if not c.is_partial))


def summarize_weekly_counts(check_ins: Iterable[CheckIn]) -> dict[str, int]:
    """Reduce check-ins to a `week_key -> count` map (partials excluded)."""
    return dict(Counter(c.week_key for c in check_ins if not c.is_partial))


def is_qualifying(counts: Mapping[str, int], key: str, daily_target: int = 1) -> bool:
    return counts.get(key, 0) >= daily_target


def compute_daily_streak(
    counts: Mapping[str, int], today_key: str, daily_target: int = 1,
) -> int:
    """Strict current streak: consecutive qualifying days ending today.

    Returns 0 when today has not qualified yet.
    """
    streak = 0
    cursor = today_key
    while is_qualifying(counts, cursor, daily_target):
        streak += 1
        cursor = shift_day_key(cursor, -1)
    return streak


def compute_best_daily_streak(
    counts: Mapping[str, int], daily_target: int = 1,
) -> int:
    """Longest run of calendar-consecutive qualifying days ever."""
    qualifying = sorted(k for k, n in counts.items() if n >= daily_target)
    if not qualifying:
        return 0

    best = current = 1
    for prev, key in zip(qualifying, qualifying[1:]):
        if days_between(prev, key) == 1:
            current += 1
            best = max(best, current)
        else:
            current = 1
    return best


def compute_graceful_streak(
    counts: Mapping[str, int],
    today_key: str,
    allowed_freezes: int = 1,
    daily_target: int = 1,
) -> GracefulStreak:
    """Current streak that forgives up to `allowed_freezes` consecutive misses.

    Walking back from today, a qualifying day extends the streak and resets
    the miss run. Misses are forgiven while the run stays within the
    budget. A forgiven miss is only counted as a used freeze once an older
    qualifying day shows that it actually bridged the streak, so the misses
    that end the walk are never counted. With only yesterday completed and
    one freeze allowed, today counts as one freeze and the miss before
    yesterday counts as none.
    """
    streak = 0
    freezes_used = 0
    consecutive_misses = 0
    cursor = today_key

    while streak + freezes_used <= MAX_GRACEFUL_WALK_DAYS:
        if is_qualifying(counts, cursor, daily_target):
            streak += 1
            freezes_used += consecutive_misses
            consecutive_misses = 0
        else:
            consecutive_misses += 1
            if consecutive_misses > allowed_freezes:
                break
        cursor = shift_day_key(cursor, -1)

    yesterday_key = shift_day_key(today_key, -1)
    is_at_risk = (
        not is_qualifying(counts, today_key, daily_target)
        and is_qualifying(counts, yesterday_key, daily_target)
    )
    return GracefulStreak(
        current_streak=streak,
        freezes_used=freezes_used,
        is_at_risk=is_at_risk,
    )


def compute_consistency_percentage(
    counts: Mapping[str, int],
    today_key: str,
    window_days: int = DEFAULT_WINDOW_DAYS,
    created_key: str | None = None,
    daily_target: int = 1,
) -> int:
    """Share of eligible days in the trailing window that qualified, 0-100.

    The window is the `window_days` days ending today, clipped so it never
    reaches back before the goal's creation date. Today only becomes an
    eligible day once it qualifies, so an unfinished today does not drag
    the percentage down. With no eligible day at all the goal is at 100.
    """
    window_start = shift_day_key(today_key, -(window_days - 1))
    if created_key is not None and created_key > window_start:
        window_start = created_key
    if window_start > today_key:
        return 100

    past_days = days_between(window_start, today_key)
    qualifying = 0
    cursor = window_start
    for _ in range(past_days):
        if is_qualifying(counts, cursor, daily_target):
            qualifying += 1
        cursor = shift_day_key(cursor, 1)

    eligible = past_days
    if is_qualifying(counts, today_key, daily_target):
        qualifying += 1
        eligible += 1

    if eligible == 0:
        return 100
    return _round_half_up(100 * qualifying / eligible)


def count_recent_completions(
    counts: Mapping[str, int],
    today_key: str,
    window_days: int = DEFAULT_WINDOW_DAYS,
    daily_target: int = 1,
) -> int:
    """Number of qualifying days in the `window_days` days ending today."""
    window_start = shift_day_key(today_key, -(window_days - 1))
    return sum(
        1
        for key, n in counts.items()
        if window_start <= key <= today_key and n >= daily_target
    )


def compute_weekly_streak(
    week_counts: Mapping[str, int], current_week_key: str, weekly_target: int,
) -> int:
    """Consecutive ISO weeks, ending with the current one, that met the target."""
    if weekly_target < 1:
        return 0
    streak = 0
    cursor = current_week_key
    while week_counts.get(cursor, 0) >= weekly_target:
        streak += 1
        cursor = shift_week_key(cursor, -1)
    return streak


# ---------------------------------------------------------------------------
# Soft-failure messaging
# ---------------------------------------------------------------------------


class SoftMessageTier(Enum):
    ENCOURAGING = "encouraging"
    SUPPORTIVE = "supportive"
    RESTART = "restart"


@dataclass(frozen=True)
class SoftFailureMessage:
    tier: SoftMessageTier
    text: str


def get_soft_failure_message(
    consistency_percent: int,
    recent_completions: int,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> SoftFailureMessage | None:
    """Pick an encouragement for a user who has not finished today.

    Consistency of 80% or more needs no nudge and returns None.
    """
    if consistency_percent >= 80:
        return None
    if consistency_percent >= 50:
        return SoftFailureMessage(
            SoftMessageTier.ENCOURAGING,
            f"You've shown up {recent_completions} of the last {window_days} days. "
            "One more today keeps the momentum going.",
        )
    if recent_completions > 0:
        return SoftFailureMessage(
            SoftMessageTier.SUPPORTIVE,
            f"{recent_completions} days in the last {window_days} still count. "
            "Small steps are progress.",
        )
    return SoftFailureMessage(
        SoftMessageTier.RESTART,
        "Every streak starts with day one. Today is a good day to begin again.",
    )


def _round_half_up(value: float) -> int:
    return int(value + 0.5)
