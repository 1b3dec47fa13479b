"""Reminder-time suggestions from a user's check-in habits.

Looks at the local hour of recent check-ins and proposes a reminder one
hour before the most common completion hour.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from goalgrid.core.time_keys import to_local

if TYPE_CHECKING:
    from goalgrid.data.models import CheckIn

logger = logging.getLogger(__name__)

MIN_CHECK_INS = 5
LOOKBACK_DAYS = 30
_DEFAULT_ALTERNATIVES = ("09:00", "14:00", "18:00")


@dataclass(frozen=True)
class ReminderAnalysis:
    hour: int                  # 0-23, local
    confidence: str            # "high" | "medium" | "low"
    pattern: str


@dataclass(frozen=True)
class ReminderSuggestion:
    optimal: str               # HH:00
    confidence: str
    pattern: str
    alternatives: list[str] = field(default_factory=list)


def _describe_hour(hour: int) -> str:
    if 5 <= hour < 12:
        return "Morning person"
    if 12 <= hour < 17:
        return "Afternoon achiever"
    if 17 <= hour < 21:
        return "Evening finisher"
    return "Night owl"


def analyze_optimal_reminder_time(
    check_ins: Sequence[CheckIn],
    now: datetime,
    tz: str,
    fallback_hour: int = 9,
) -> ReminderAnalysis:
    """Find the local hour at which the user usually completes goals."""
    if len(check_ins) < MIN_CHECK_INS:
        return ReminderAnalysis(fallback_hour, "low", "Not enough data yet")

    cutoff = now - timedelta(days=LOOKBACK_DAYS)
    recent = [c for c in check_ins if c.timestamp >= cutoff]
    if len(recent) < MIN_CHECK_INS:
        return ReminderAnalysis(fallback_hour, "low", "Not enough recent data")

    hour_counts = Counter(to_local(c.timestamp, tz).hour for c in recent)
    peak_hour, peak_count = hour_counts.most_common(1)[0]
    share_at_peak = peak_count / len(recent)

    if share_at_peak > 0.4:
        confidence = "high"
    elif share_at_peak > 0.2:
        confidence = "medium"
    else:
        confidence = "low"

    reminder_hour = peak_hour - 1 if peak_hour > 0 else 23
    logger.debug(
        "Peak completion hour %d (%.0f%% of %d check-ins)",
        peak_hour, share_at_peak * 100, len(recent),
    )
    return ReminderAnalysis(reminder_hour, confidence, _describe_hour(peak_hour))


def format_hour(hour: int) -> str:
    """Format an hour as e.g. "9:00 AM"."""
    period = "PM" if hour >= 12 else "AM"
    display = hour % 12 or 12
    return f"{display}:00 {period}"


def get_suggested_reminder_times(
    check_ins: Sequence[CheckIn], now: datetime, tz: str,
) -> ReminderSuggestion:
    """Optimal reminder time plus two fallback alternatives."""
    analysis = analyze_optimal_reminder_time(check_ins, now, tz)
    optimal = f"{analysis.hour:02d}:00"
    alternatives = [t for t in _DEFAULT_ALTERNATIVES if t != optimal][:2]
    return ReminderSuggestion(
        optimal=optimal,
        confidence=analysis.confidence,
        pattern=analysis.pattern,
        alternatives=alternatives,
    )
