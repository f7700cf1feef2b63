"""
Period Clock
=============

15-minute period arithmetic and period-boundary detection.
"""

import time
from typing import Callable, Optional

PERIOD_DURATION = 900


def now_seconds() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


def current_period(now: Optional[float] = None) -> int:
    """
    Start timestamp of the 15-minute period containing `now`.

    Examples:
        current_period(1737500123) -> 1737499500
    """
    if now is None:
        now = now_seconds()
    return int(now // PERIOD_DURATION) * PERIOD_DURATION


def seconds_remaining(period: int, now: Optional[float] = None) -> int:
    """Seconds until `period` ends (0 if already over)."""
    if now is None:
        now = now_seconds()
    return max(0, period + PERIOD_DURATION - int(now))


def seconds_elapsed(time_remaining: int) -> int:
    return PERIOD_DURATION - time_remaining


class PeriodTracker:
    """
    Detects period transitions from successive observations.

    The first observation only records the period. After that, `observe`
    returns True exactly once for each new period seen.
    """

    def __init__(self):
        self.last_seen: Optional[int] = None

    @property
    def initialized(self) -> bool:
        return self.last_seen is not None

    def observe(self, period: int) -> bool:
        if self.last_seen is None:
            self.last_seen = period
            return False

        if period != self.last_seen:
            self.last_seen = period
            return True

        return False


Clock = Callable[[], float]
