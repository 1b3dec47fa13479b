"""Clock port: abstract source of the current instant.

Services depend on this protocol, never on the system clock directly, so
every "today" and "this week" can be pinned in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class ClockPort(Protocol):
    """Abstract clock used by the services."""

    def now(self) -> datetime: ...
