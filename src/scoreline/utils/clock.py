"""Injectable time sources.

Core logic never reads the wall clock directly; callers pass a ``Clock``
(any zero-argument callable returning an aware UTC datetime).
"""

from __future__ import annotations

import datetime
from collections.abc import Callable

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.UTC)


class FrozenClock:
    """A manually advanced clock for tests and replays."""

    def __init__(self, start: datetime.datetime) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=datetime.UTC)
        self._now = start

    def __call__(self) -> datetime.datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime.datetime:
        """Move the clock forward by a ``timedelta(**kwargs)``."""
        self._now = self._now + datetime.timedelta(**kwargs)
        return self._now
