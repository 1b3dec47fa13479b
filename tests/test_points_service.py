"""Tests for goalgrid.core.points_service: ledger backfill and total rebuilds."""

from datetime import UTC, datetime

import pytest

from goalgrid.core.points import WEEKLY_CEILING_MILLI, compute_replay_awards
from goalgrid.core.results import ResultKind
from goalgrid.core.time_keys import local_noon, week_key_for_day
from goalgrid.data.models import Cadence, UserPoints

TZ = "America/Chicago"
LONG_AGO = datetime(2026, 9, 1, 15, 0, tzinfo=UTC)


@pytest.fixture
def walk(goal_db, alice):
    return goal_db.add_goal(alice.id, "Walk", Cadence.DAILY, created_at=LONG_AGO)


def _store(goal_db, goal, *keys):
    return [
        goal_db.add_check_in(goal.id, goal.owner_id, local_noon(k, TZ), k, week_key_for_day(k))
        for k in keys
    ]


class TestBackfill:
    def test_awards_unscored_history(self, points_service, goal_db, ledger_db, walk, alice, user_db):
        _store(goal_db, walk, "2026-10-05", "2026-10-06", "2026-10-12", "2026-10-13")
        result = points_service.backfill_user_points(alice.id)
        assert result.ok
        assert result.entries_created == 4
        assert result.message == "Backfilled 4 new point entries"

        entries = ledger_db.list_entries(alice.id)
        expected = compute_replay_awards(
            goal_db.list_goals(alice.id), goal_db.list_user_check_ins(alice.id), TZ,
        )
        assert [e.points_milli for e in entries] == [e.points_milli for e in expected]

        totals = user_db.get_points(alice.id)
        assert totals.week_key == "2026-W42"
        assert totals.week_milli == sum(e.points_milli for e in entries if e.week_key == "2026-W42")
        assert totals.lifetime_milli == sum(e.points_milli for e in entries)
        assert result.totals == totals

    def test_rerun_creates_nothing(self, points_service, goal_db, walk, alice):
        _store(goal_db, walk, "2026-10-12", "2026-10-13")
        first = points_service.backfill_user_points(alice.id)
        second = points_service.backfill_user_points(alice.id)
        assert second.entries_created == 0
        assert second.totals == first.totals

    def test_skips_check_ins_already_scored(self, points_service, checkin_service, goal_db, ledger_db, walk, alice):
        checkin_service.check_in(alice.id, walk.id)
        _store(goal_db, walk, "2026-10-13")
        result = points_service.backfill_user_points(alice.id)
        assert result.entries_created == 1
        assert len(ledger_db.list_entries(alice.id)) == 2

    def test_full_week_respects_ceiling(self, points_service, goal_db, ledger_db, walk, alice):
        _store(goal_db, walk, *[f"2026-10-{d:02d}" for d in range(5, 12)])
        points_service.backfill_user_points(alice.id)
        assert 0 < ledger_db.week_total(alice.id, "2026-W41") <= WEEKLY_CEILING_MILLI

    def test_unknown_user(self, points_service):
        result = points_service.backfill_user_points(404)
        assert result.kind == ResultKind.NOT_FOUND
        assert result.message == "User not found"


class TestRecalculate:
    def test_rebuilds_from_ledger(self, points_service, checkin_service, user_db, walk, alice):
        checked = checkin_service.check_in(alice.id, walk.id)
        user_db.set_points(alice.id, UserPoints(week_key="2020-W01", week_milli=5, lifetime_milli=7))

        result = points_service.recalculate_user_points(alice.id)
        assert result.ok
        assert result.totals == UserPoints(
            week_key="2026-W42",
            week_milli=checked.points_milli,
            lifetime_milli=checked.points_milli,
        )
        assert user_db.get_points(alice.id) == result.totals
        assert result.week_points == checked.points_milli // 1000

    def test_new_week_resets_weekly_total(self, points_service, checkin_service, clock, walk, alice):
        checked = checkin_service.check_in(alice.id, walk.id)
        clock.advance(days=7)
        result = points_service.recalculate_user_points(alice.id)
        assert result.totals.week_key == "2026-W43"
        assert result.totals.week_milli == 0
        assert result.totals.lifetime_milli == checked.points_milli

    def test_unknown_user(self, points_service):
        assert points_service.recalculate_user_points(404).kind == ResultKind.NOT_FOUND
