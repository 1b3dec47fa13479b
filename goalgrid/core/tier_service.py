"""Group tier updates: recompute a group's tier from this week's completion."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from goalgrid.adapters.system_clock import SystemClock
from goalgrid.core.challenges import group_completion_rate, member_completion
from goalgrid.core.results import ResultKind, TierResult
from goalgrid.core.tiers import calculate_tier_from_completion_rate, was_tier_upgraded
from goalgrid.core.time_keys import week_key

if TYPE_CHECKING:
    from goalgrid.data.db import GoalDB, GroupDB, UserDB
    from goalgrid.ports.clock_port import ClockPort

logger = logging.getLogger(__name__)


class TierService:
    def __init__(
        self,
        users: UserDB,
        goals: GoalDB,
        groups: GroupDB,
        clock: ClockPort | None = None,
    ) -> None:
        self._users = users
        self._goals = goals
        self._groups = groups
        self._clock = clock or SystemClock()

    def _check_member(self, user_id: int, group_id: int) -> TierResult | None:
        if self._groups.get_member(group_id, user_id) is None:
            logger.warning("User %d is not a member of group #%d", user_id, group_id)
            return TierResult(kind=ResultKind.UNAUTHORIZED, message="Not a member of this group")
        return None

    def update_group_tier(self, user_id: int, group_id: int) -> TierResult:
        """Store the tier matching the group's completion rate for the current week.

        The week is taken in the requesting member's timezone.
        """
        error = self._check_member(user_id, group_id)
        if error is not None:
            return error
        user = self._users.get_user(user_id)
        if user is None:
            return TierResult(kind=ResultKind.NOT_FOUND, message="User not found.")

        now = self._clock.now()
        current_week = week_key(now, user.timezone)
        completions = [
            member_completion(
                m.user_id,
                self._goals.list_goals(m.user_id, active_only=True),
                self._goals.list_user_check_ins(m.user_id, week_key=current_week),
            )
            for m in self._groups.list_members(group_id)
        ]
        rate = group_completion_rate(completions)
        new_tier = calculate_tier_from_completion_rate(rate)

        with self._groups.transaction() as conn:
            group = self._groups.get_group(group_id, conn=conn)
            if group is None:
                return TierResult(kind=ResultKind.NOT_FOUND, message="Group not found")
            old_tier = group.current_tier
            self._groups.update_tier(group_id, new_tier.name, rate, now, conn=conn)

        upgraded = was_tier_upgraded(old_tier, new_tier.name)
        logger.info(
            "Group #%d tier %s -> %s (%.1f%% in %s)",
            group_id, old_tier, new_tier.name, rate, current_week,
        )
        return TierResult(
            kind=ResultKind.SUCCESS,
            old_tier=old_tier,
            current_tier=new_tier.name,
            completion_rate=rate,
            upgraded=upgraded,
            last_tier_update=now,
        )

    def get_group_tier(self, user_id: int, group_id: int) -> TierResult:
        error = self._check_member(user_id, group_id)
        if error is not None:
            return error
        group = self._groups.get_group(group_id)
        if group is None:
            return TierResult(kind=ResultKind.NOT_FOUND, message="Group not found")
        return TierResult(
            kind=ResultKind.SUCCESS,
            current_tier=group.current_tier,
            completion_rate=group.weekly_completion_rate,
            last_tier_update=group.last_tier_update,
        )
