"""
GoalGrid Engine — Challenge Service.

Persists the weekly group challenge lifecycle:
create (simple or configured) -> approvals until quorum -> scheduled ->
active during its week -> succeeded / failed once the week is over.

Status changes go through conditional updates, so evaluation can run on
every read, concurrently, without double-counting a group rank-up.
"""

from __future__ import annotations

import logging
import random
import sqlite3
from typing import TYPE_CHECKING

from goalgrid.adapters.system_clock import SystemClock
from goalgrid.core.challenges import (
    MIN_CONFIGURED_MEMBERS,
    MemberCompletion,
    assign_duos,
    assign_teams,
    due_transition,
    is_quorum_reached,
    member_completion,
    needs_evaluation,
    next_status,
    plan_challenge_window,
    validate_challenge_config,
)
from goalgrid.core.results import (
    ApprovalResult,
    ChallengeResult,
    ChallengeResultsView,
    ChallengeTransition,
    EvaluationResult,
    GroupChallengeView,
    MemberChallengeResult,
    ResultKind,
    ServiceResult,
)
from goalgrid.core.time_keys import next_week_key, week_key
from goalgrid.data.models import (
    ChallengeMode,
    ChallengeStatus,
    GroupChallenge,
    MemberRole,
    TeamAssignments,
    User,
)

if TYPE_CHECKING:
    from goalgrid.data.db import GoalDB, GroupDB, UserDB
    from goalgrid.ports.clock_port import ClockPort

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (ChallengeStatus.PENDING, ChallengeStatus.SCHEDULED, ChallengeStatus.ACTIVE)
_FINISHED_STATUSES = (ChallengeStatus.SUCCEEDED, ChallengeStatus.FAILED)


class ChallengeService:
    """Weekly group challenges: creation, approval, evaluation and read models."""

    def __init__(
        self,
        users: UserDB,
        goals: GoalDB,
        groups: GroupDB,
        clock: ClockPort | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._users = users
        self._goals = goals
        self._groups = groups
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authorize_member(
        self, user_id: int, group_id: int, result_cls: type[ServiceResult],
    ) -> tuple[User | None, ServiceResult | None]:
        user = self._users.get_user(user_id)
        if user is None:
            return None, result_cls(kind=ResultKind.NOT_FOUND, message="User not found.")
        if self._groups.get_member(group_id, user_id) is None:
            logger.warning("User %d is not a member of group #%d", user_id, group_id)
            return None, result_cls(
                kind=ResultKind.UNAUTHORIZED, message="Not a member of this group",
            )
        return user, None

    def _schedule_if_quorum(
        self, conn: sqlite3.Connection, challenge: GroupChallenge,
    ) -> tuple[int, int]:
        """Compare approvals with membership and schedule on full quorum.

        Runs inside the caller's write transaction. Returns
        (approval_count, member_count).
        """
        approvals = self._groups.count_approvals(challenge.id, conn=conn)
        members = self._groups.member_count(challenge.group_id, conn=conn)
        if is_quorum_reached(approvals, members) and self._groups.update_challenge_status(
            challenge.id, ChallengeStatus.PENDING, ChallengeStatus.SCHEDULED, conn=conn,
        ):
            challenge.status = ChallengeStatus.SCHEDULED
        return approvals, members

    def _member_completions(
        self, group_id: int, challenge_week: str,
    ) -> dict[int, MemberCompletion]:
        """Completion of every current member over one ISO week."""
        completions: dict[int, MemberCompletion] = {}
        for member in self._groups.list_members(group_id):
            goals = self._goals.list_goals(member.user_id, active_only=True)
            check_ins = self._goals.list_user_check_ins(member.user_id, week_key=challenge_week)
            completions[member.user_id] = member_completion(member.user_id, goals, check_ins)
        return completions

    def _create(
        self,
        user: User,
        group_id: int,
        mode: ChallengeMode,
        threshold: int,
        duration_days: int,
        min_members: int = 1,
    ) -> ChallengeResult:
        window = plan_challenge_window(self._clock.now(), user.timezone, duration_days)

        try:
            with self._groups.transaction() as conn:
                if self._groups.get_challenge_for_week(group_id, window.week_key, conn=conn):
                    return ChallengeResult(
                        kind=ResultKind.CONFLICT,
                        message="A challenge already exists for next week",
                    )
                member_ids = [m.user_id for m in self._groups.list_members(group_id, conn=conn)]
                if len(member_ids) < min_members:
                    return ChallengeResult(
                        kind=ResultKind.INVALID_INPUT,
                        message=f"Need at least {min_members} members for a challenge",
                    )

                teams: TeamAssignments | None = None
                duos: list[list[int]] | None = None
                if mode == ChallengeMode.TEAM_VS_TEAM:
                    teams = assign_teams(member_ids, self._rng)
                elif mode == ChallengeMode.DUO_COMPETITION:
                    duos = assign_duos(member_ids, self._rng)

                now = self._clock.now()
                challenge = self._groups.add_challenge(
                    group_id=group_id,
                    week_key=window.week_key,
                    created_by=user.id,
                    start_date=window.start_date,
                    end_date=window.end_date,
                    mode=mode,
                    threshold=threshold,
                    duration_days=duration_days,
                    team_assignments=teams,
                    duo_assignments=duos,
                    created_at=now,
                    conn=conn,
                )
                self._groups.add_approval(challenge.id, user.id, created_at=now, conn=conn)
                self._schedule_if_quorum(conn, challenge)
        except sqlite3.IntegrityError:
            logger.warning("Concurrent challenge creation for group #%d, %s", group_id, window.week_key)
            return ChallengeResult(
                kind=ResultKind.CONFLICT, message="A challenge already exists for next week",
            )

        return ChallengeResult(kind=ResultKind.SUCCESS, message="Challenge created.", challenge=challenge)

    # ------------------------------------------------------------------
    # Creation and approval
    # ------------------------------------------------------------------

    def create_challenge(self, user_id: int, group_id: int) -> ChallengeResult:
        """Propose a standard challenge for next week; any member may do this."""
        from goalgrid.config import settings

        user, error = self._authorize_member(user_id, group_id, ChallengeResult)
        if error is not None:
            return error
        return self._create(
            user,
            group_id,
            ChallengeMode.STANDARD,
            threshold=settings.DEFAULT_CHALLENGE_THRESHOLD,
            duration_days=settings.DEFAULT_CHALLENGE_DURATION_DAYS,
        )

    def create_configured_challenge(
        self,
        user_id: int,
        group_id: int,
        mode: ChallengeMode | str = ChallengeMode.STANDARD,
        duration_days: int | None = None,
        threshold: int | None = None,
    ) -> ChallengeResult:
        """Create a challenge with a mode, threshold and duration (admins only).

        Team and duo assignments are drawn once, here, and never change.
        """
        from goalgrid.config import settings

        user, error = self._authorize_member(user_id, group_id, ChallengeResult)
        if error is not None:
            return error
        member = self._groups.get_member(group_id, user_id)
        if member.role != MemberRole.ADMIN:
            logger.warning("User %d is not an admin of group #%d", user_id, group_id)
            return ChallengeResult(
                kind=ResultKind.UNAUTHORIZED, message="Only group leaders can create challenges",
            )

        if threshold is None:
            threshold = settings.DEFAULT_CHALLENGE_THRESHOLD
        if duration_days is None:
            duration_days = settings.DEFAULT_CHALLENGE_DURATION_DAYS
        reason = validate_challenge_config(mode, threshold, duration_days)
        if reason is not None:
            return ChallengeResult(kind=ResultKind.INVALID_INPUT, message=reason)

        return self._create(
            user,
            group_id,
            ChallengeMode(mode),
            threshold=threshold,
            duration_days=duration_days,
            min_members=MIN_CONFIGURED_MEMBERS,
        )

    def approve_challenge(self, user_id: int, challenge_id: int) -> ApprovalResult:
        """Record one member's approval; the last one schedules the challenge."""
        challenge = self._groups.get_challenge(challenge_id)
        if challenge is None:
            return ApprovalResult(kind=ResultKind.NOT_FOUND, message="Challenge not found")
        _, error = self._authorize_member(user_id, challenge.group_id, ApprovalResult)
        if error is not None:
            return error

        with self._groups.transaction() as conn:
            challenge = self._groups.get_challenge(challenge_id, conn=conn)
            if challenge.status != ChallengeStatus.PENDING:
                return ApprovalResult(
                    kind=ResultKind.CONFLICT,
                    message="Challenge is not pending approval",
                    status=challenge.status,
                )
            if not self._groups.add_approval(challenge_id, user_id, self._clock.now(), conn=conn):
                return ApprovalResult(
                    kind=ResultKind.CONFLICT,
                    message="Already approved this challenge",
                    status=challenge.status,
                )
            approvals, members = self._schedule_if_quorum(conn, challenge)

        logger.info(
            "User %d approved challenge #%d (%d/%d)", user_id, challenge_id, approvals, members,
        )
        return ApprovalResult(
            kind=ResultKind.SUCCESS,
            message="Approved.",
            approval_count=approvals,
            member_count=members,
            status=challenge.status,
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_challenges(self, user_id: int, group_id: int) -> EvaluationResult:
        """Advance the group's open challenges to whatever the calendar implies."""
        user, error = self._authorize_member(user_id, group_id, EvaluationResult)
        if error is not None:
            return error

        current_week = week_key(self._clock.now(), user.timezone)
        transitions: list[ChallengeTransition] = []
        open_challenges = self._groups.list_challenges(
            group_id, statuses=(ChallengeStatus.SCHEDULED, ChallengeStatus.ACTIVE),
        )

        for challenge in open_challenges:
            if due_transition(challenge, current_week) is not None:
                if self._groups.update_challenge_status(
                    challenge.id, ChallengeStatus.SCHEDULED, ChallengeStatus.ACTIVE,
                ):
                    transitions.append(ChallengeTransition(
                        challenge.id, ChallengeStatus.SCHEDULED, ChallengeStatus.ACTIVE,
                    ))
                challenge.status = ChallengeStatus.ACTIVE

            if not needs_evaluation(challenge, current_week):
                continue

            completions = self._member_completions(group_id, challenge.week_key)
            percents = {uid: c.percent for uid, c in completions.items()}
            outcome = next_status(challenge, current_week, percents)

            with self._groups.transaction() as conn:
                changed = self._groups.update_challenge_status(
                    challenge.id, ChallengeStatus.ACTIVE, outcome, conn=conn,
                )
                if changed and outcome == ChallengeStatus.SUCCEEDED:
                    self._groups.increment_rank(group_id, conn=conn)
            if changed:
                transitions.append(ChallengeTransition(challenge.id, ChallengeStatus.ACTIVE, outcome))
                logger.info(
                    "Challenge #%d (%s) %s: %s",
                    challenge.id, challenge.week_key, outcome.value, percents,
                )

        return EvaluationResult(kind=ResultKind.SUCCESS, transitions=transitions)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_group_challenge(self, user_id: int, group_id: int) -> GroupChallengeView:
        """The most recent open (or this/next week's) challenge of a group."""
        evaluation = self.evaluate_challenges(user_id, group_id)
        if not evaluation.ok:
            return GroupChallengeView(kind=evaluation.kind, message=evaluation.message)

        user = self._users.get_user(user_id)
        now = self._clock.now()
        current_week = week_key(now, user.timezone)
        upcoming_week = next_week_key(now, user.timezone)

        candidates = [
            c for c in self._groups.list_challenges(group_id)
            if c.week_key in (current_week, upcoming_week) or c.status in _OPEN_STATUSES
        ]
        group = self._groups.get_group(group_id)
        rank = group.rank if group is not None else 1
        member_count = self._groups.member_count(group_id)
        if not candidates:
            return GroupChallengeView(kind=ResultKind.SUCCESS, member_count=member_count, group_rank=rank)

        challenge = max(candidates, key=lambda c: (c.created_at, c.id))
        return GroupChallengeView(
            kind=ResultKind.SUCCESS,
            challenge=challenge,
            approval_count=self._groups.count_approvals(challenge.id),
            member_count=member_count,
            has_approved=self._groups.has_approved(challenge.id, user_id),
            is_current_week=challenge.week_key == current_week,
            is_next_week=challenge.week_key == upcoming_week,
            group_rank=rank,
        )

    def get_challenge_results(self, user_id: int, challenge_id: int) -> ChallengeResultsView:
        """Per-member completion for a finished challenge."""
        challenge = self._groups.get_challenge(challenge_id)
        if challenge is None:
            return ChallengeResultsView(kind=ResultKind.NOT_FOUND, message="Challenge not found")
        _, error = self._authorize_member(user_id, challenge.group_id, ChallengeResultsView)
        if error is not None:
            return error
        if challenge.status not in _FINISHED_STATUSES:
            return ChallengeResultsView(
                kind=ResultKind.CONFLICT, message="Challenge is not complete", challenge=challenge,
            )

        completions = self._member_completions(challenge.group_id, challenge.week_key)
        members: list[MemberChallengeResult] = []
        for uid, completion in completions.items():
            member_user = self._users.get_user(uid)
            members.append(MemberChallengeResult(
                user_id=uid,
                name=member_user.display_name if member_user else str(uid),
                completion_percent=completion.percent,
                passed=completion.percent >= challenge.threshold,
            ))

        return ChallengeResultsView(
            kind=ResultKind.SUCCESS,
            challenge=challenge,
            threshold=challenge.threshold,
            succeeded=challenge.status == ChallengeStatus.SUCCEEDED,
            members=members,
        )
