"""
Injectable clock so age, expiry and audit timestamps are testable.
"""

from datetime import datetime, date, timezone
from typing import Optional


class Clock:
    """System clock returning timezone-aware UTC times."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """Clock frozen at a given instant."""

    def __init__(self, fixed: datetime):
        if fixed.tzinfo is None:
            fixed = fixed.replace(tzinfo=timezone.utc)
        self._fixed = fixed

    def now(self) -> datetime:
        return self._fixed

    def advance_to(self, fixed: datetime) -> None:
        if fixed.tzinfo is None:
            fixed = fixed.replace(tzinfo=timezone.utc)
        self._fixed = fixed


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so naive and aware values compare."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
