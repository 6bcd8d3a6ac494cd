# backend/credit_packages/services/clock.py
"""
Time source for the ledger.

Every expiry/activation decision reads "now" from a Clock passed in by the
caller, so tests and replays can pin time. Datetimes are naive UTC, matching
what the DateTime columns store.
"""

from datetime import datetime, timezone
from typing import Optional


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a caller-supplied datetime to the naive-UTC storage form."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
