"""System clock adapter: implements ClockPort."""

from __future__ import annotations

from datetime import UTC, datetime


class SystemClock:
    """Wall-clock implementation of ClockPort, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)
