from datetime import datetime


class Clock:
    """Source of the institutional 'now' (naive local time, single calendar)."""

    def now(self) -> datetime:
        return datetime.now()


class FixedClock(Clock):
    """Clock frozen at a given instant; used by tests and replays."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


system_clock = Clock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock (overridable in tests)."""
    return system_clock
