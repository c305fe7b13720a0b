"""Injectable wall clock.

All timestamps in this package are naive UTC datetimes, matching the
DateTime columns they are stored in.
"""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
