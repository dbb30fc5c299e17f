"""
Session Generator
Expands a contract's weekly schedule into concrete dated sessions
"""

from datetime import date, datetime, time, timedelta
from typing import NamedTuple

from ...exceptions import InsufficientScheduleError, ValidationError

# Bit 0 = Sunday ... bit 6 = Saturday
DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
MIN_DAYS_MASK = 1
MAX_DAYS_MASK = 127


class PlannedSession(NamedTuple):
    session_date: date
    start_time: datetime
    end_time: datetime


def day_bit(d: date) -> int:
    """Mask bit for a date; Python's weekday() counts from Monday"""
    return 1 << ((d.weekday() + 1) % 7)


def validate_days_of_week(mask: int) -> None:
    if not isinstance(mask, int) or isinstance(mask, bool) or not MIN_DAYS_MASK <= mask <= MAX_DAYS_MASK:
        raise ValidationError(
            f"days_of_week must be between {MIN_DAYS_MASK} and {MAX_DAYS_MASK}",
            {"days_of_week": mask},
        )


def format_days_of_week(mask: int) -> str:
    """Display form of a mask, Monday first: 0b0010010 -> 'Mon, Thu'"""
    validate_days_of_week(mask)
    # Monday..Saturday, then Sunday
    order = [1, 2, 3, 4, 5, 6, 0]
    return ", ".join(DAY_NAMES[bit] for bit in order if mask & (1 << bit))


def generate_sessions(
    start_date: date,
    end_date: date,
    days_of_week: int,
    start_time: time,
    end_time: time,
    session_count: int,
) -> list[PlannedSession]:
    """
    Walk start_date..end_date inclusive and emit a session on every masked
    weekday until session_count is reached, in ascending date order.

    Raises InsufficientScheduleError when the range runs out first.
    """
    validate_days_of_week(days_of_week)
    if session_count < 1:
        raise ValidationError("session_count must be at least 1")
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time")

    sessions: list[PlannedSession] = []
    current = start_date
    while current <= end_date and len(sessions) < session_count:
        if days_of_week & day_bit(current):
            sessions.append(
                PlannedSession(
                    session_date=current,
                    start_time=datetime.combine(current, start_time),
                    end_time=datetime.combine(current, end_time),
                )
            )
        current += timedelta(days=1)

    if len(sessions) < session_count:
        raise InsufficientScheduleError(
            f"Schedule {format_days_of_week(days_of_week)} between {start_date} and {end_date} "
            f"only fits {len(sessions)} of {session_count} sessions",
            {"available": len(sessions), "required": session_count},
        )
    return sessions
