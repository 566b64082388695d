"""Clock abstraction for time-dependent analysis.

WallClock: real wall-clock time (API requests, scheduled sweeps)
SimClock: deterministic simulated time (tests, replayed analyses)

Cache expiry, real-time detection windows, alert expiry and provider
rate limits all read ``clock.now()`` instead of ``datetime.now()``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    """Clock interface used by all time-dependent code."""

    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...

    def now_ms(self) -> int:
        """Current time as milliseconds since epoch."""
        ...


class WallClock:
    """Real wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)


class SimClock:
    """Simulated clock for deterministic tests.

    Time only moves when ``set_time`` or ``advance`` is called.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._time = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def now_ms(self) -> int:
        return int(self._time.timestamp() * 1000)

    def set_time(self, t: datetime) -> None:
        """Move to *t*. Must be monotonically increasing."""
        if t < self._time:
            raise ValueError(
                f"SimClock cannot go backwards: {t} < {self._time}"
            )
        self._time = t

    def advance(
        self,
        *,
        minutes: float = 0.0,
        seconds: float = 0.0,
    ) -> datetime:
        """Advance by a duration and return the new time."""
        self.set_time(self._time + timedelta(minutes=minutes, seconds=seconds))
        return self._time
