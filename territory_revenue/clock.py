"""
Injectable clock

Stores never read the system time directly; they call a Clock so tests and
batch replays can pin "now".
"""

from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def fixed_clock(moment: datetime) -> Clock:
    """Clock that always returns the same moment"""
    def clock() -> datetime:
        return moment
    return clock


def today(clock: Clock) -> date:
    return clock().date()
