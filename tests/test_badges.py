"""Tests for goalgrid.core.badges."""

from datetime import UTC, datetime

from goalgrid.core.badges import (
    FIRST_COMPLETION,
    SEVEN_DAY_STREAK,
    WEEKLY_TARGET_FOUR_WEEKS,
    get_badges,
)
from goalgrid.data.models import Cadence, CheckIn, Goal

CURRENT_WEEK = "2026-W42"


def _weekly_goal(target=2):
    return Goal(
        id=1, owner_id=1, name="Gym", cadence=Cadence.WEEKLY,
        created_at=datetime(2026, 8, 1, tzinfo=UTC), weekly_target=target,
    )


def _check_ins(weeks, per_week):
    result = []
    for week in weeks:
        for _ in range(per_week):
            result.append(CheckIn(
                id=len(result) + 1, goal_id=1, user_id=1,
                timestamp=datetime(2026, 10, 1, tzinfo=UTC),
                local_date_key="2026-10-01", week_key=week,
            ))
    return result


class TestGetBadges:
    def test_no_activity(self):
        assert get_badges(0, [], [], CURRENT_WEEK) == []

    def test_first_completion_and_streak(self):
        assert get_badges(9, [3, 7], [], CURRENT_WEEK) == [FIRST_COMPLETION, SEVEN_DAY_STREAK]

    def test_short_streak_earns_nothing_extra(self):
        assert get_badges(1, [6], [], CURRENT_WEEK) == [FIRST_COMPLETION]

    def test_four_weeks_on_target(self):
        goal = _weekly_goal()
        check_ins = _check_ins(["2026-W39", "2026-W40", "2026-W41", "2026-W42"], 2)
        badges = get_badges(len(check_ins), [], [(goal, check_ins)], CURRENT_WEEK)
        assert WEEKLY_TARGET_FOUR_WEEKS in badges

    def test_three_weeks_is_not_enough(self):
        goal = _weekly_goal()
        check_ins = _check_ins(["2026-W40", "2026-W41", "2026-W42"], 2)
        badges = get_badges(len(check_ins), [], [(goal, check_ins)], CURRENT_WEEK)
        assert WEEKLY_TARGET_FOUR_WEEKS not in badges
