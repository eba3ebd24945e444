"""Wall-clock access in the gym's civil timezone."""

from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Australia/Brisbane"


class Clock:
    """Reads the current civil date and time in one fixed timezone."""

    def __init__(self, timezone: str = DEFAULT_TIMEZONE) -> None:
        self.timezone = ZoneInfo(timezone)

    def now(self) -> dt.datetime:
        return dt.datetime.now(self.timezone)

    def today(self) -> dt.date:
        return self.now().date()

    def timestamp(self) -> str:
        """Return ``YYYY-MM-DD HH:MM:SS`` for the current civil time."""

        return self.now().strftime("%Y-%m-%d %H:%M:%S")


class FixedClock(Clock):
    """A clock pinned to one instant, interpreted in the clock's timezone."""

    def __init__(self, instant: dt.datetime | str, timezone: str = DEFAULT_TIMEZONE) -> None:
        super().__init__(timezone)
        if isinstance(instant, str):
            instant = dt.datetime.fromisoformat(instant)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.timezone)
        self.instant = instant.astimezone(self.timezone)

    def now(self) -> dt.datetime:
        return self.instant
