"""Ledger maintenance: backfill awards for old check-ins and rebuild totals."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from goalgrid.adapters.system_clock import SystemClock
from goalgrid.core.points import (
    WEEKLY_CEILING_MILLI,
    compute_replay_awards,
    milli_to_display,
    rebuild_user_points,
)
from goalgrid.core.results import PointsResult, ResultKind
from goalgrid.core.time_keys import week_key

if TYPE_CHECKING:
    from goalgrid.data.db import GoalDB, LedgerDB, UserDB
    from goalgrid.ports.clock_port import ClockPort

logger = logging.getLogger(__name__)


class PointsService:
    def __init__(
        self,
        users: UserDB,
        goals: GoalDB,
        ledger: LedgerDB,
        clock: ClockPort | None = None,
    ) -> None:
        self._users = users
        self._goals = goals
        self._ledger = ledger
        self._clock = clock or SystemClock()

    def backfill_user_points(self, user_id: int) -> PointsResult:
        """Award points for every check-in that has no ledger row yet.

        History is replayed week by week without streak bonus. Re-running
        is harmless: check-ins already in the ledger are skipped, and each
        new row is clamped to what the week's stored ledger still allows.
        """
        user = self._users.get_user(user_id)
        if user is None:
            return PointsResult(kind=ResultKind.NOT_FOUND, message="User not found")

        current_week = week_key(self._clock.now(), user.timezone)
        with self._ledger.transaction() as conn:
            goals = self._goals.list_goals(user_id, conn=conn)
            check_ins = self._goals.list_user_check_ins(user_id, conn=conn)
            replayed = compute_replay_awards(goals, check_ins, user.timezone)

            created = 0
            week_totals: dict[str, int] = {}
            for entry in replayed:
                if self._ledger.get_entry_for_source(entry.source_id, entry.reason, conn=conn):
                    continue
                if entry.week_key not in week_totals:
                    week_totals[entry.week_key] = self._ledger.week_total(
                        user_id, entry.week_key, conn=conn,
                    )
                remaining = WEEKLY_CEILING_MILLI - week_totals[entry.week_key]
                points_milli = min(entry.points_milli, remaining)
                if points_milli <= 0:
                    continue
                if self._ledger.add_entry(replace(entry, points_milli=points_milli), conn=conn):
                    week_totals[entry.week_key] += points_milli
                    created += 1

            totals = rebuild_user_points(self._ledger.list_entries(user_id, conn=conn), current_week)
            self._users.set_points(user_id, totals, conn=conn)

        logger.info(
            "Backfilled %d ledger entries for user %d (lifetime now %d points)",
            created, user_id, milli_to_display(totals.lifetime_milli),
        )
        return PointsResult(
            kind=ResultKind.SUCCESS,
            message=f"Backfilled {created} new point entries",
            entries_created=created,
            totals=totals,
        )

    def recalculate_user_points(self, user_id: int) -> PointsResult:
        """Rebuild the cached weekly/lifetime totals by summing the ledger."""
        user = self._users.get_user(user_id)
        if user is None:
            return PointsResult(kind=ResultKind.NOT_FOUND, message="User not found")

        current_week = week_key(self._clock.now(), user.timezone)
        with self._ledger.transaction() as conn:
            totals = rebuild_user_points(self._ledger.list_entries(user_id, conn=conn), current_week)
            self._users.set_points(user_id, totals, conn=conn)

        logger.info(
            "Recalculated totals for user %d: week %d, lifetime %d",
            user_id, milli_to_display(totals.week_milli), milli_to_display(totals.lifetime_milli),
        )
        return PointsResult(kind=ResultKind.SUCCESS, totals=totals)
