"""Historical check-in edits: validation and reconciliation planning.

Backfilling sets the completion count of past days; it replaces the day's
state rather than appending to it. The diff between what is stored and
what is wanted is computed here, outside any transaction, and the store
applies the resulting plan atomically.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from goalgrid.core.time_keys import parse_day_key

if TYPE_CHECKING:
    from goalgrid.data.models import CheckIn

BULK_MODES = ("set", "add")


@dataclass
class ReconciliationPlan:
    """Check-ins to create (day key, how many) and check-in ids to delete."""

    to_insert: list[tuple[str, int]] = field(default_factory=list)
    to_delete: list[int] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return sum(n for _, n in self.to_insert)

    @property
    def is_empty(self) -> bool:
        return not self.to_insert and not self.to_delete


def validate_historical_entry(
    date_key: str, count: int, daily_target: int, today_key: str,
) -> str | None:
    """Return a rejection reason, or None when the edit is acceptable.

    Dates before the goal's creation are allowed so users can backfill
    history from before they started tracking.
    """
    try:
        parse_day_key(date_key)
    except ValueError:
        return "Invalid date format."
    if date_key >= today_key:
        return "Can only log activity for past dates."
    if count < 0 or count > daily_target:
        return f"Count must be between 0 and {daily_target}."
    return None


def validate_bulk_request(
    dates: Sequence[str],
    count_per_day: int,
    daily_target: int,
    today_key: str,
    mode: str,
    max_days: int,
) -> str | None:
    """Rejection reason for a bulk backfill request, or None."""
    if mode not in BULK_MODES:
        return f"Unknown mode {mode!r}."
    if not dates:
        return "No dates provided."
    if len(dates) > max_days:
        return f"Maximum {max_days} days per operation."
    if count_per_day < 0 or count_per_day > daily_target:
        return f"Count must be between 0 and {daily_target}."
    for key in dates:
        try:
            parse_day_key(key)
        except ValueError:
            return f"Invalid date format: {key}."
    if any(key >= today_key for key in dates):
        return "All dates must be in the past."
    return None


def group_existing_by_day(check_ins: Iterable[CheckIn]) -> dict[str, list[CheckIn]]:
    """Group stored check-ins by day, newest first within a day."""
    grouped: dict[str, list[CheckIn]] = {}
    for check_in in check_ins:
        grouped.setdefault(check_in.local_date_key, []).append(check_in)
    for day_check_ins in grouped.values():
        day_check_ins.sort(key=lambda c: (c.timestamp, c.id), reverse=True)
    return grouped


def desired_counts_for_bulk(
    dates: Iterable[str],
    count_per_day: int,
    mode: str,
    existing_counts: Mapping[str, int],
    daily_target: int,
) -> dict[str, int]:
    """Target count per day: "set" replaces, "add" adds up to the daily target."""
    desired: dict[str, int] = {}
    for key in dates:
        if mode == "set":
            desired[key] = count_per_day
        else:
            desired[key] = min(existing_counts.get(key, 0) + count_per_day, daily_target)
    return desired


def plan_reconciliation(
    existing: Mapping[str, Sequence[CheckIn]], desired: Mapping[str, int],
) -> ReconciliationPlan:
    """Diff stored check-ins against desired per-day counts.

    Surplus check-ins are removed newest first; `existing` lists are
    expected in that order (see group_existing_by_day).
    """
    plan = ReconciliationPlan()
    for key in sorted(desired):
        wanted = desired[key]
        stored = existing.get(key, ())
        if wanted > len(stored):
            plan.to_insert.append((key, wanted - len(stored)))
        elif wanted < len(stored):
            plan.to_delete.extend(c.id for c in stored[: len(stored) - wanted])
    return plan
