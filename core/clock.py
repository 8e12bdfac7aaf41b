"""
core/clock.py -- Time source shared by every component.

Components accept a `clock` callable instead of calling datetime.now()
directly, so tests can move time forward (8h auto-lock, past expiry dates)
without sleeping.
"""

from collections.abc import Callable
from datetime import datetime

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Return the current local time as an aware datetime.

    Local time, not UTC: expiry dates and the day-partitioned audit log follow
    the operator's calendar.
    """
    return datetime.now().astimezone()
