"""Tests for goalgrid.core.history: backfill validation and reconciliation plans."""

from datetime import UTC, datetime

from goalgrid.core.history import (
    desired_counts_for_bulk,
    group_existing_by_day,
    plan_reconciliation,
    validate_bulk_request,
    validate_historical_entry,
)
from goalgrid.data.models import CheckIn

TODAY = "2026-10-15"


def _check_in(cid, key, hour):
    return CheckIn(
        id=cid,
        goal_id=1,
        user_id=1,
        timestamp=datetime(2026, 10, int(key[-2:]), hour, tzinfo=UTC),
        local_date_key=key,
        week_key="2026-W42",
    )


class TestValidateHistoricalEntry:
    def test_valid(self):
        assert validate_historical_entry("2026-10-14", 1, 1, TODAY) is None

    def test_zero_count_is_valid(self):
        assert validate_historical_entry("2026-10-14", 0, 1, TODAY) is None

    def test_bad_format(self):
        assert validate_historical_entry("10/14/2026", 1, 1, TODAY) == "Invalid date format."

    def test_today_and_future_rejected(self):
        assert validate_historical_entry(TODAY, 1, 1, TODAY) == "Can only log activity for past dates."
        assert validate_historical_entry("2026-12-01", 1, 1, TODAY) == "Can only log activity for past dates."

    def test_count_above_target(self):
        assert validate_historical_entry("2026-10-14", 3, 2, TODAY) == "Count must be between 0 and 2."

    def test_before_creation_is_allowed(self):
        assert validate_historical_entry("2020-01-01", 1, 1, TODAY) is None


class TestValidateBulkRequest:
    def test_valid(self):
        assert validate_bulk_request(["2026-10-13", "2026-10-14"], 1, 1, TODAY, "set", 365) is None

    def test_unknown_mode(self):
        assert validate_bulk_request(["2026-10-13"], 1, 1, TODAY, "merge", 365) == "Unknown mode 'merge'."

    def test_empty(self):
        assert validate_bulk_request([], 1, 1, TODAY, "set", 365) == "No dates provided."

    def test_too_many_days(self):
        dates = ["2026-10-13", "2026-10-14"]
        assert validate_bulk_request(dates, 1, 1, TODAY, "set", 1) == "Maximum 1 days per operation."

    def test_bad_date_named(self):
        assert validate_bulk_request(["2026-10-13", "nope"], 1, 1, TODAY, "add", 365) == (
            "Invalid date format: nope."
        )

    def test_future_date(self):
        assert validate_bulk_request(["2026-10-13", TODAY], 1, 1, TODAY, "set", 365) == (
            "All dates must be in the past."
        )


class TestReconciliation:
    def test_existing_grouped_newest_first(self):
        grouped = group_existing_by_day([
            _check_in(1, "2026-10-13", 9),
            _check_in(2, "2026-10-13", 20),
            _check_in(3, "2026-10-14", 9),
        ])
        assert [c.id for c in grouped["2026-10-13"]] == [2, 1]
        assert [c.id for c in grouped["2026-10-14"]] == [3]

    def test_set_mode_replaces(self):
        desired = desired_counts_for_bulk(["2026-10-13"], 1, "set", {"2026-10-13": 3}, 3)
        assert desired == {"2026-10-13": 1}

    def test_add_mode_caps_at_target(self):
        desired = desired_counts_for_bulk(
            ["2026-10-13", "2026-10-14"], 2, "add", {"2026-10-13": 2}, 3,
        )
        assert desired == {"2026-10-13": 3, "2026-10-14": 2}

    def test_plan_deletes_newest_surplus(self):
        existing = group_existing_by_day([
            _check_in(1, "2026-10-13", 9),
            _check_in(2, "2026-10-13", 20),
            _check_in(3, "2026-10-13", 15),
        ])
        plan = plan_reconciliation(existing, {"2026-10-13": 1, "2026-10-14": 2})
        assert plan.to_delete == [2, 3]
        assert plan.to_insert == [("2026-10-14", 2)]
        assert plan.inserted_count == 2

    def test_matching_counts_is_a_noop(self):
        existing = group_existing_by_day([_check_in(1, "2026-10-13", 9)])
        plan = plan_reconciliation(existing, {"2026-10-13": 1})
        assert plan.is_empty
