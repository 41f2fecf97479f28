"""Clock abstraction so day rollover and grant expiry can be simulated in tests."""

from datetime import datetime, timedelta
from typing import Callable

# A clock is any zero-argument callable returning the current local datetime.
Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Return the current local time."""
    return datetime.now()


def seconds_until_midnight(clock: Clock) -> int:
    """Whole seconds from now until the next local midnight (when usage resets)."""
    now = clock()
    midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
    return max(0, int((midnight - now).total_seconds()))
