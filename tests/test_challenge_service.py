"""Tests for goalgrid.core.challenge_service: challenge lifecycle end to end."""

from datetime import UTC, datetime

import pytest

from goalgrid.core.results import ResultKind
from goalgrid.core.time_keys import day_keys_for_week, local_noon
from goalgrid.data.models import Cadence, ChallengeMode, ChallengeStatus, MemberRole

TZ = "America/Chicago"
LONG_AGO = datetime(2026, 9, 1, 15, 0, tzinfo=UTC)
CHALLENGE_WEEK = "2026-W43"
DURING_CHALLENGE = datetime(2026, 10, 21, 18, 0, tzinfo=UTC)
AFTER_CHALLENGE = datetime(2026, 10, 28, 18, 0, tzinfo=UTC)


@pytest.fixture
def group(group_db, alice, bob, carol):
    group = group_db.add_group("Early Birds")
    group_db.add_member(group.id, alice.id, MemberRole.ADMIN)
    group_db.add_member(group.id, bob.id)
    group_db.add_member(group.id, carol.id)
    return group


def _daily_goal(goal_db, user, daily_target=1):
    return goal_db.add_goal(
        user.id, "Walk", Cadence.DAILY, created_at=LONG_AGO, daily_target=daily_target,
    )


def _complete(goal_db, goal, n, week=CHALLENGE_WEEK):
    days = day_keys_for_week(week)
    for i in range(n):
        key = days[i % 7]
        goal_db.add_check_in(goal.id, goal.owner_id, local_noon(key, TZ), key, week)


def _approve_all(challenge_service, challenge, *users):
    for user in users:
        assert challenge_service.approve_challenge(user.id, challenge.id).ok


class TestCreateChallenge:
    def test_member_creates_for_next_week(self, challenge_service, group, bob, group_db):
        result = challenge_service.create_challenge(bob.id, group.id)
        assert result.ok
        challenge = result.challenge
        assert challenge.week_key == CHALLENGE_WEEK
        assert challenge.status == ChallengeStatus.PENDING
        assert challenge.mode == ChallengeMode.STANDARD
        assert challenge.threshold == 90
        assert challenge.start_date == datetime(2026, 10, 19, 5, 0, tzinfo=UTC)
        assert group_db.has_approved(challenge.id, bob.id) is True
        assert group_db.count_approvals(challenge.id) == 1

    def test_one_challenge_per_week(self, challenge_service, group, alice, bob):
        challenge_service.create_challenge(bob.id, group.id)
        result = challenge_service.create_challenge(alice.id, group.id)
        assert result.kind == ResultKind.CONFLICT
        assert result.message == "A challenge already exists for next week"

    def test_non_member_rejected(self, challenge_service, group, user_db):
        outsider = user_db.add_user("Dave", TZ)
        result = challenge_service.create_challenge(outsider.id, group.id)
        assert result.kind == ResultKind.UNAUTHORIZED
        assert result.message == "Not a member of this group"

    def test_solo_group_schedules_immediately(self, challenge_service, group_db, alice):
        solo = group_db.add_group("Just me")
        group_db.add_member(solo.id, alice.id, MemberRole.ADMIN)
        result = challenge_service.create_challenge(alice.id, solo.id)
        assert result.challenge.status == ChallengeStatus.SCHEDULED


class TestConfiguredChallenge:
    def test_only_admins(self, challenge_service, group, bob):
        result = challenge_service.create_configured_challenge(bob.id, group.id, ChallengeMode.TEAM_VS_TEAM)
        assert result.kind == ResultKind.UNAUTHORIZED
        assert result.message == "Only group leaders can create challenges"

    def test_invalid_config(self, challenge_service, group, alice):
        result = challenge_service.create_configured_challenge(alice.id, group.id, threshold=120)
        assert result.kind == ResultKind.INVALID_INPUT
        assert result.message == "Threshold must be between 0 and 100."
        bad_mode = challenge_service.create_configured_challenge(alice.id, group.id, mode="RELAY")
        assert bad_mode.kind == ResultKind.INVALID_INPUT

    def test_needs_two_members(self, challenge_service, group_db, alice):
        solo = group_db.add_group("Just me")
        group_db.add_member(solo.id, alice.id, MemberRole.ADMIN)
        result = challenge_service.create_configured_challenge(alice.id, solo.id)
        assert result.kind == ResultKind.INVALID_INPUT
        assert result.message == "Need at least 2 members for a challenge"

    def test_team_assignments_persisted(self, challenge_service, group, alice, bob, carol, group_db):
        result = challenge_service.create_configured_challenge(
            alice.id, group.id, ChallengeMode.TEAM_VS_TEAM, duration_days=5, threshold=80,
        )
        assert result.ok
        teams = result.challenge.team_assignments
        assert (len(teams.team1), len(teams.team2)) == (2, 1)
        assert set(teams.team1 + teams.team2) == {alice.id, bob.id, carol.id}

        stored = group_db.get_challenge(result.challenge.id)
        assert stored.team_assignments == teams
        assert stored.threshold == 80
        assert stored.duration_days == 5
        assert (stored.end_date - stored.start_date).days == 5

    def test_duo_assignments(self, challenge_service, group, alice):
        result = challenge_service.create_configured_challenge(
            alice.id, group.id, "DUO_COMPETITION",
        )
        assert [len(d) for d in result.challenge.duo_assignments] == [2, 1]
        assert result.challenge.team_assignments is None


class TestApproval:
    def test_quorum_is_every_member(self, challenge_service, group, alice, bob, carol):
        challenge = challenge_service.create_challenge(bob.id, group.id).challenge

        first = challenge_service.approve_challenge(alice.id, challenge.id)
        assert (first.approval_count, first.member_count) == (2, 3)
        assert first.status == ChallengeStatus.PENDING

        repeat = challenge_service.approve_challenge(bob.id, challenge.id)
        assert repeat.kind == ResultKind.CONFLICT
        assert repeat.message == "Already approved this challenge"
        assert repeat.status == ChallengeStatus.PENDING

        last = challenge_service.approve_challenge(carol.id, challenge.id)
        assert last.approval_count == 3
        assert last.status == ChallengeStatus.SCHEDULED

        late = challenge_service.approve_challenge(alice.id, challenge.id)
        assert late.kind == ResultKind.CONFLICT
        assert late.message == "Challenge is not pending approval"

    def test_unknown_challenge(self, challenge_service, alice):
        result = challenge_service.approve_challenge(alice.id, 404)
        assert result.kind == ResultKind.NOT_FOUND

    def test_outsider_cannot_approve(self, challenge_service, group, bob, user_db):
        challenge = challenge_service.create_challenge(bob.id, group.id).challenge
        outsider = user_db.add_user("Dave", TZ)
        result = challenge_service.approve_challenge(outsider.id, challenge.id)
        assert result.kind == ResultKind.UNAUTHORIZED


class TestEvaluation:
    def test_team_challenge_fails_on_one_member(
        self, challenge_service, clock, group, group_db, goal_db, alice, bob, carol,
    ):
        challenge = challenge_service.create_configured_challenge(
            alice.id, group.id, ChallengeMode.TEAM_VS_TEAM, threshold=90,
        ).challenge
        _approve_all(challenge_service, challenge, bob, carol)

        clock.set(DURING_CHALLENGE)
        started = challenge_service.evaluate_challenges(alice.id, group.id)
        assert [(t.from_status, t.to_status) for t in started.transitions] == [
            (ChallengeStatus.SCHEDULED, ChallengeStatus.ACTIVE),
        ]

        _complete(goal_db, _daily_goal(goal_db, alice), 7)
        _complete(goal_db, _daily_goal(goal_db, bob), 7)
        # Carol: 12 of 14 daily units plus 5 of 6 weekly units = 17/20 = 85%
        _complete(goal_db, _daily_goal(goal_db, carol, daily_target=2), 12)
        carol_weekly = goal_db.add_goal(
            carol.id, "Gym", Cadence.WEEKLY, created_at=LONG_AGO, weekly_target=6,
        )
        _complete(goal_db, carol_weekly, 5)

        clock.set(AFTER_CHALLENGE)
        finished = challenge_service.evaluate_challenges(alice.id, group.id)
        assert [t.to_status for t in finished.transitions] == [ChallengeStatus.FAILED]
        assert group_db.get_challenge(challenge.id).status == ChallengeStatus.FAILED
        assert group_db.get_group(group.id).rank == 1

        results = challenge_service.get_challenge_results(bob.id, challenge.id)
        assert results.ok
        assert results.succeeded is False
        assert results.threshold == 90
        by_name = {m.name: m for m in results.members}
        assert by_name["Carol"].completion_percent == 85
        assert by_name["Carol"].passed is False
        assert by_name["Alice"].completion_percent == 100
        assert by_name["Bob"].passed is True

    def test_success_ranks_group_up_once(
        self, challenge_service, clock, group, group_db, goal_db, alice, bob, carol,
    ):
        challenge = challenge_service.create_challenge(alice.id, group.id).challenge
        _approve_all(challenge_service, challenge, bob, carol)
        for user in (alice, bob, carol):
            _complete(goal_db, _daily_goal(goal_db, user), 7)

        clock.set(DURING_CHALLENGE)
        challenge_service.evaluate_challenges(alice.id, group.id)
        clock.set(AFTER_CHALLENGE)
        result = challenge_service.evaluate_challenges(bob.id, group.id)
        assert [t.to_status for t in result.transitions] == [ChallengeStatus.SUCCEEDED]

        again = challenge_service.evaluate_challenges(carol.id, group.id)
        assert again.transitions == []
        assert group_db.get_group(group.id).rank == 2

    def test_missed_week_is_activated_and_scored_together(
        self, challenge_service, clock, group, goal_db, alice, bob, carol,
    ):
        challenge = challenge_service.create_challenge(alice.id, group.id).challenge
        _approve_all(challenge_service, challenge, bob, carol)

        clock.set(AFTER_CHALLENGE)
        result = challenge_service.evaluate_challenges(alice.id, group.id)
        assert [t.to_status for t in result.transitions] == [
            ChallengeStatus.ACTIVE, ChallengeStatus.FAILED,
        ]

    def test_pending_challenge_never_starts(self, challenge_service, clock, group, group_db, bob):
        challenge = challenge_service.create_challenge(bob.id, group.id).challenge
        clock.set(AFTER_CHALLENGE)
        result = challenge_service.evaluate_challenges(bob.id, group.id)
        assert result.transitions == []
        assert group_db.get_challenge(challenge.id).status == ChallengeStatus.PENDING

    def test_results_before_finish(self, challenge_service, group, bob):
        challenge = challenge_service.create_challenge(bob.id, group.id).challenge
        result = challenge_service.get_challenge_results(bob.id, challenge.id)
        assert result.kind == ResultKind.CONFLICT
        assert result.message == "Challenge is not complete"


class TestGroupChallengeView:
    def test_view_of_upcoming_challenge(self, challenge_service, group, alice, bob):
        challenge_service.create_challenge(bob.id, group.id)

        bob_view = challenge_service.get_group_challenge(bob.id, group.id)
        assert bob_view.ok
        assert bob_view.challenge.week_key == CHALLENGE_WEEK
        assert bob_view.is_next_week is True
        assert bob_view.is_current_week is False
        assert bob_view.has_approved is True
        assert (bob_view.approval_count, bob_view.member_count) == (1, 3)
        assert bob_view.group_rank == 1

        assert challenge_service.get_group_challenge(alice.id, group.id).has_approved is False

    def test_view_activates_on_read(self, challenge_service, clock, group, alice, bob, carol):
        challenge = challenge_service.create_challenge(alice.id, group.id).challenge
        _approve_all(challenge_service, challenge, bob, carol)
        clock.set(DURING_CHALLENGE)
        view = challenge_service.get_group_challenge(carol.id, group.id)
        assert view.challenge.status == ChallengeStatus.ACTIVE
        assert view.is_current_week is True

    def test_no_challenge(self, challenge_service, group, alice):
        view = challenge_service.get_group_challenge(alice.id, group.id)
        assert view.ok
        assert view.challenge is None
        assert view.member_count == 3

    def test_non_member(self, challenge_service, group, user_db):
        outsider = user_db.add_user("Dave", TZ)
        view = challenge_service.get_group_challenge(outsider.id, group.id)
        assert view.kind == ResultKind.UNAUTHORIZED
