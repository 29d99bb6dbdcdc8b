"""Interval scheduler: geometric interval growth seeded by an initial interval.

    first repetition:  interval = initial_interval
    afterwards:        interval = previous interval * multiplier
    next due:          now + interval days

Intervals are kept in fractional days; with truncate_intervals they are
cut to whole days, and an interval that truncates to zero is rejected.
"""

import math
from datetime import datetime, timedelta

from incr.config import Config
from incr.errors import InvalidInterval


class IntervalScheduler:
    def __init__(self, config: Config):
        self.config = config

    def next_interval(self, previous: float | None) -> float:
        if previous is None:
            interval = float(self.config.initial_interval)
        else:
            interval = previous * self.config.multiplier
        if self.config.truncate_intervals and math.isfinite(interval):
            interval = float(math.floor(interval))
        if not math.isfinite(interval) or interval <= 0:
            raise InvalidInterval(f"computed interval {interval!r} days is not positive")
        return interval

    def schedule(self, previous: float | None, now: datetime) -> tuple[float, datetime]:
        """Return (new_interval, next_due_at) for a repetition completed at now."""
        interval = self.next_interval(previous)
        return interval, now + timedelta(days=interval)

    def due_from_history(self, history) -> datetime | None:
        """Due date implied by the last recorded repetition, if any."""
        if not history:
            return None
        last = history[-1]
        return last.at + timedelta(days=last.interval)
