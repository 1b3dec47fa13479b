"""
GoalGrid Engine — Check-in Service.

Orchestrates everything that happens around a completion event:
ownership checks -> check-in write -> weekly progress -> points award ->
ledger row -> cached totals, all inside one write transaction.

Also covers undo, historical backfill (single day and bulk) and the
per-goal statistics shown next to a goal.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from goalgrid.adapters.system_clock import SystemClock
from goalgrid.core.history import (
    desired_counts_for_bulk,
    group_existing_by_day,
    plan_reconciliation,
    validate_bulk_request,
    validate_historical_entry,
)
from goalgrid.core.points import (
    PointsAward,
    apply_award_to_points,
    build_ledger_entry,
    calculate_points_to_award,
    is_goal_active_for_week,
    progress_before_after,
)
from goalgrid.core.results import (
    BulkLogResult,
    CheckInResult,
    GoalStatsResult,
    HistoricalDayResult,
    HistoricalLogResult,
    ResultKind,
    ServiceResult,
    UndoResult,
)
from goalgrid.core.streaks import (
    compute_best_daily_streak,
    compute_consistency_percentage,
    compute_daily_streak,
    compute_graceful_streak,
    compute_weekly_streak,
    count_recent_completions,
    get_soft_failure_message,
    summarize_daily_counts,
    summarize_weekly_counts,
)
from goalgrid.core.time_keys import (
    day_key,
    day_keys_for_week,
    local_noon,
    parse_day_key,
    week_end_for_key,
    week_key,
    week_key_for_day,
)
from goalgrid.data.models import Cadence, CheckIn, Goal, User

if TYPE_CHECKING:
    from goalgrid.data.db import GoalDB, LedgerDB, UserDB
    from goalgrid.ports.clock_port import ClockPort

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (7, 14, 30)


class CheckInService:
    """Check-ins, undo and history edits for a user's own goals."""

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

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _authorize(
        self, user_id: int, goal_id: int, result_cls: type[ServiceResult],
    ) -> tuple[User | None, Goal | None, ServiceResult | None]:
        """Load the user and one of their goals, or build the rejection."""
        user = self._users.get_user(user_id)
        if user is None:
            return None, None, result_cls(kind=ResultKind.NOT_FOUND, message="User not found.")
        goal = self._goals.get_goal(goal_id)
        if goal is None:
            return user, None, result_cls(
                kind=ResultKind.NOT_FOUND, message="Goal not found or not yours.",
            )
        if goal.owner_id != user_id:
            logger.warning("User %d tried to act on goal #%d owned by %d", user_id, goal_id, goal.owner_id)
            return user, None, result_cls(
                kind=ResultKind.UNAUTHORIZED, message="Goal not found or not yours.",
            )
        return user, goal, None

    def _award_points(
        self,
        conn: sqlite3.Connection,
        user: User,
        goal: Goal,
        check_in: CheckIn,
        streak_days: int,
    ) -> PointsAward:
        """Score one stored completion and record it in the ledger and totals.

        Must run inside the transaction that stored `check_in`.
        """
        week = check_in.week_key
        week_dates = day_keys_for_week(week)

        user_week_check_ins = [
            c for c in self._goals.list_user_check_ins(user.id, week, conn=conn)
            if not c.is_partial
        ]
        counts_by_date = summarize_daily_counts(
            c for c in user_week_check_ins if c.goal_id == goal.id
        )
        p_before, p_after = progress_before_after(
            goal, counts_by_date, check_in.local_date_key, week_dates,
        )

        goals_with_check_ins = {c.goal_id for c in user_week_check_ins}
        week_end = week_end_for_key(week, user.timezone)
        active_goals = [
            g for g in self._goals.list_goals(user.id, conn=conn)
            if is_goal_active_for_week(g, week_end, g.id in goals_with_check_ins)
        ]

        already_earned = self._ledger.week_total(user.id, week, conn=conn)
        award = calculate_points_to_award(
            goal, p_before, p_after, active_goals, streak_days, already_earned,
        )

        entry = build_ledger_entry(
            user_id=user.id,
            goal_id=goal.id,
            week_key=week,
            local_date=check_in.local_date_key,
            points_milli=award.points_milli,
            source_id=check_in.id,
        )
        if entry is None or not self._ledger.add_entry(entry, conn=conn):
            return PointsAward(points_milli=0, streak_bonus_applied=award.streak_bonus_applied)

        current_week = week_key(self._clock.now(), user.timezone)
        totals = apply_award_to_points(
            self._users.get_points(user.id, conn=conn), week, award.points_milli, current_week,
        )
        self._users.set_points(user.id, totals, conn=conn)
        return award

    # ------------------------------------------------------------------
    # Check-in / undo
    # ------------------------------------------------------------------

    def check_in(self, user_id: int, goal_id: int, is_partial: bool = False) -> CheckInResult:
        """Record a completion for today (in the user's timezone) and award points.

        `is_partial` is only honoured for goals with a daily target of 1; a
        later full check-in upgrades the partial one in place.
        """
        user, goal, error = self._authorize(user_id, goal_id, CheckInResult)
        if error is not None:
            return error

        now = self._clock.now()
        today = day_key(now, user.timezone)
        week = week_key(now, user.timezone)
        daily_target = goal.daily_target
        is_partial = is_partial and daily_target == 1

        with self._goals.transaction() as conn:
            today_check_ins = self._goals.list_check_ins(goal.id, date_key=today, conn=conn)
            upgraded = False

            if daily_target == 1 and today_check_ins:
                existing = today_check_ins[0]
                if not (existing.is_partial and not is_partial):
                    logger.warning("Goal #%d already completed on %s", goal.id, today)
                    return CheckInResult(
                        kind=ResultKind.CONFLICT,
                        message="Already completed today.",
                        today_count=0 if existing.is_partial else 1,
                        daily_target=daily_target,
                        is_complete=not existing.is_partial,
                        is_partial=existing.is_partial,
                    )
                self._goals.mark_check_in_full(existing.id, timestamp=now, conn=conn)
                check_in = CheckIn(
                    id=existing.id,
                    goal_id=goal.id,
                    user_id=user.id,
                    timestamp=now,
                    local_date_key=existing.local_date_key,
                    week_key=existing.week_key,
                )
                upgraded = True
            elif len(today_check_ins) >= daily_target:
                logger.warning("Goal #%d already at %dx on %s", goal.id, daily_target, today)
                return CheckInResult(
                    kind=ResultKind.CONFLICT,
                    message=f"Already completed {daily_target}x today.",
                    today_count=len(today_check_ins),
                    daily_target=daily_target,
                    is_complete=True,
                )
            else:
                check_in = self._goals.add_check_in(
                    goal.id, user.id, now, today, week, is_partial=is_partial, conn=conn,
                )

            today_count = sum(
                1 for c in self._goals.list_check_ins(goal.id, date_key=today, conn=conn)
                if not c.is_partial
            )
            is_complete = today_count >= daily_target

            counts = summarize_daily_counts(self._goals.list_check_ins(goal.id, conn=conn))
            graceful = compute_graceful_streak(
                counts, today, allowed_freezes=goal.streak_freezes, daily_target=daily_target,
            )

            if is_partial:
                award = PointsAward(points_milli=0, streak_bonus_applied=False)
            else:
                award = self._award_points(conn, user, goal, check_in, graceful.current_streak)

        milestone = None
        if is_complete and graceful.current_streak in STREAK_MILESTONES:
            milestone = graceful.current_streak

        logger.info(
            "Check-in #%d on goal #%d (%s%s): %d/%d today, +%d milli",
            check_in.id, goal.id, today,
            ", partial" if is_partial else (", upgraded" if upgraded else ""),
            today_count, daily_target, award.points_milli,
        )
        return CheckInResult(
            kind=ResultKind.SUCCESS,
            message="Checked in.",
            check_in_id=check_in.id,
            today_count=today_count,
            daily_target=daily_target,
            is_complete=is_complete,
            is_partial=is_partial,
            upgraded=upgraded,
            points_milli=award.points_milli,
            streak_bonus_applied=award.streak_bonus_applied,
            streak_milestone=milestone,
        )

    def undo_check_in(self, user_id: int, goal_id: int) -> UndoResult:
        """Remove the most recent check-in of today. Points already awarded stay."""
        user, goal, error = self._authorize(user_id, goal_id, UndoResult)
        if error is not None:
            return error

        today = day_key(self._clock.now(), user.timezone)
        with self._goals.transaction() as conn:
            today_check_ins = self._goals.list_check_ins(goal.id, date_key=today, conn=conn)
            if not today_check_ins:
                return UndoResult(
                    kind=ResultKind.CONFLICT,
                    message="No check-ins to undo today.",
                    daily_target=goal.daily_target,
                )
            latest = max(today_check_ins, key=lambda c: (c.timestamp, c.id))
            self._goals.delete_check_ins([latest.id], conn=conn)

        remaining = [c for c in today_check_ins if c.id != latest.id and not c.is_partial]
        logger.info("Undid check-in #%d on goal #%d (%s)", latest.id, goal.id, today)
        return UndoResult(
            kind=ResultKind.SUCCESS,
            message="Check-in removed.",
            removed_check_in_id=latest.id,
            today_count=len(remaining),
            daily_target=goal.daily_target,
        )

    # ------------------------------------------------------------------
    # Historical edits
    # ------------------------------------------------------------------

    def _apply_day_counts(
        self,
        conn: sqlite3.Connection,
        user: User,
        goal: Goal,
        desired: dict[str, int],
    ) -> tuple[int, int, int]:
        """Reconcile stored check-ins with `desired` day counts.

        Returns (inserted, deleted, points_milli). Each inserted check-in is
        scored without a streak bonus.
        """
        stored = [
            c for c in self._goals.list_check_ins(goal.id, conn=conn)
            if c.local_date_key in desired
        ]
        # Partials are not completions: drop them and rebuild the day.
        partial_ids = [c.id for c in stored if c.is_partial]
        existing = group_existing_by_day(c for c in stored if not c.is_partial)
        plan = plan_reconciliation(existing, desired)

        deleted = self._goals.delete_check_ins(plan.to_delete + partial_ids, conn=conn)
        points_milli = 0
        for date_key, how_many in plan.to_insert:
            for _ in range(how_many):
                check_in = self._goals.add_check_in(
                    goal.id,
                    user.id,
                    local_noon(date_key, user.timezone),
                    date_key,
                    week_key_for_day(date_key),
                    conn=conn,
                )
                points_milli += self._award_points(
                    conn, user, goal, check_in, streak_days=0,
                ).points_milli
        return plan.inserted_count, deleted, points_milli

    def log_historical(
        self, user_id: int, goal_id: int, date_key: str, count: int,
    ) -> HistoricalLogResult:
        """Set the completion count of one past day, replacing what was stored."""
        user, goal, error = self._authorize(user_id, goal_id, HistoricalLogResult)
        if error is not None:
            return error

        today = day_key(self._clock.now(), user.timezone)
        reason = validate_historical_entry(date_key, count, goal.daily_target, today)
        if reason is not None:
            logger.warning("Rejected historical log for goal #%d: %s", goal.id, reason)
            return HistoricalLogResult(kind=ResultKind.INVALID_INPUT, message=reason, date_key=date_key)

        with self._goals.transaction() as conn:
            inserted, deleted, points_milli = self._apply_day_counts(
                conn, user, goal, {date_key: count},
            )

        logger.info(
            "Goal #%d on %s set to %d (+%d/-%d check-ins, +%d milli)",
            goal.id, date_key, count, inserted, deleted, points_milli,
        )
        return HistoricalLogResult(
            kind=ResultKind.SUCCESS,
            message=f"Logged {count} for {date_key}.",
            date_key=date_key,
            count=count,
            inserted=inserted,
            deleted=deleted,
            points_milli=points_milli,
        )

    def bulk_log_historical(
        self,
        user_id: int,
        goal_id: int,
        dates: list[str],
        count_per_day: int,
        mode: str = "set",
    ) -> BulkLogResult:
        """Apply one count to many past days.

        "set" replaces each day's count, "add" adds to it (capped at the
        daily target). All days are written in a single transaction.
        """
        from goalgrid.config import settings

        user, goal, error = self._authorize(user_id, goal_id, BulkLogResult)
        if error is not None:
            return error

        today = day_key(self._clock.now(), user.timezone)
        reason = validate_bulk_request(
            dates, count_per_day, goal.daily_target, today, mode, settings.MAX_BULK_LOG_DAYS,
        )
        if reason is not None:
            logger.warning("Rejected bulk log for goal #%d: %s", goal.id, reason)
            return BulkLogResult(kind=ResultKind.INVALID_INPUT, message=reason)

        unique_dates = sorted(set(dates))
        with self._goals.transaction() as conn:
            stored = group_existing_by_day(
                c for c in self._goals.list_check_ins(goal.id, conn=conn)
                if c.local_date_key in unique_dates and not c.is_partial
            )
            desired = desired_counts_for_bulk(
                unique_dates,
                count_per_day,
                mode,
                {key: len(day) for key, day in stored.items()},
                goal.daily_target,
            )
            inserted, deleted, points_milli = self._apply_day_counts(conn, user, goal, desired)

        logger.info(
            "Bulk %s on goal #%d over %d day(s): +%d/-%d check-ins, +%d milli",
            mode, goal.id, len(unique_dates), inserted, deleted, points_milli,
        )
        return BulkLogResult(
            kind=ResultKind.SUCCESS,
            message=f"Updated {len(unique_dates)} day(s).",
            days_processed=len(unique_dates),
            inserted=inserted,
            deleted=deleted,
            points_milli=points_milli,
        )

    def get_historical_day(self, user_id: int, goal_id: int, date_key: str) -> HistoricalDayResult:
        user, goal, error = self._authorize(user_id, goal_id, HistoricalDayResult)
        if error is not None:
            return error
        try:
            parse_day_key(date_key)
        except ValueError:
            return HistoricalDayResult(kind=ResultKind.INVALID_INPUT, message="Invalid date format.")

        check_ins = self._goals.list_check_ins(goal.id, date_key=date_key)
        return HistoricalDayResult(
            kind=ResultKind.SUCCESS,
            date_key=date_key,
            count=len(check_ins),
            daily_target=goal.daily_target,
            check_ins=check_ins,
        )

    def delete_historical_check_in(self, user_id: int, check_in_id: int) -> ServiceResult:
        """Delete one stored check-in of the user's own goal."""
        check_in = self._goals.get_check_in(check_in_id)
        if check_in is None:
            return ServiceResult(kind=ResultKind.NOT_FOUND, message="Check-in not found.")
        goal = self._goals.get_goal(check_in.goal_id)
        if goal is None or goal.owner_id != user_id:
            logger.warning("User %d tried to delete check-in #%d", user_id, check_in_id)
            return ServiceResult(
                kind=ResultKind.UNAUTHORIZED, message="Not authorized to delete this check-in.",
            )

        self._goals.delete_check_ins([check_in_id])
        return ServiceResult(kind=ResultKind.SUCCESS, message="Check-in deleted.")

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def goal_stats(self, user_id: int, goal_id: int) -> GoalStatsResult:
        """Streaks, consistency and encouragement for one goal, as of today."""
        from goalgrid.config import settings

        user, goal, error = self._authorize(user_id, goal_id, GoalStatsResult)
        if error is not None:
            return error

        now = self._clock.now()
        tz = user.timezone
        today = day_key(now, tz)
        window = settings.CONSISTENCY_WINDOW_DAYS

        check_ins = self._goals.list_check_ins(goal.id)
        counts = summarize_daily_counts(check_ins)
        target = goal.daily_target

        graceful = compute_graceful_streak(counts, today, goal.streak_freezes, target)
        consistency = compute_consistency_percentage(
            counts, today, window, created_key=day_key(goal.created_at, tz), daily_target=target,
        )
        recent = count_recent_completions(counts, today, window, target)
        today_count = counts.get(today, 0)
        is_complete = today_count >= target

        current_week = week_key(now, tz)
        week_counts = summarize_weekly_counts(check_ins)
        weekly_streak = 0
        if goal.cadence == Cadence.WEEKLY and goal.weekly_target:
            weekly_streak = compute_weekly_streak(week_counts, current_week, goal.weekly_target)

        soft_message = None
        if not is_complete:
            soft_message = get_soft_failure_message(consistency, recent, window)

        return GoalStatsResult(
            kind=ResultKind.SUCCESS,
            goal_id=goal.id,
            today_count=today_count,
            daily_target=target,
            is_complete_today=is_complete,
            current_streak=compute_daily_streak(counts, today, target),
            best_streak=compute_best_daily_streak(counts, target),
            graceful_streak=graceful.current_streak,
            freezes_used=graceful.freezes_used,
            is_at_risk=graceful.is_at_risk,
            consistency=consistency,
            recent_completions=recent,
            week_count=week_counts.get(current_week, 0),
            weekly_target=goal.weekly_target,
            weekly_streak=weekly_streak,
            soft_message=soft_message,
        )
