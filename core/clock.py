"""
core/clock.py -- Injectable time source and timestamp helpers.

Every component that compares against "now" takes a Clock (a zero-argument
callable returning an aware UTC datetime) in its constructor. Production code
passes utc_now; tests pass a frozen clock they can advance by hand.

Timestamps are persisted as ISO-8601 strings with a fixed microsecond width
so lexicographic order in SQL matches chronological order.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize an aware datetime as a sortable UTC ISO string."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")

