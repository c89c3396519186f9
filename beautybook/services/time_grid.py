"""Candidate start times for a provider's working day."""
from __future__ import annotations

from datetime import date, time

from ..errors import InvalidInput

SLOT_STEP_MINUTES = 30
MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise InvalidInput(f"{minutes} minutes is outside a single day")
    return time(minutes // 60, minutes % 60)


def weekday_of(target_date: date) -> int:
    """Weekday index used by working-hour rules (0=Monday ... 6=Sunday)."""
    return target_date.weekday()


def opening_window(rule) -> tuple[int, int] | None:
    """Return ``(open, close)`` in minutes, or ``None`` when the rule means closed."""
    if rule is None or rule.is_closed or rule.open_time is None or rule.close_time is None:
        return None
    opens, closes = to_minutes(rule.open_time), to_minutes(rule.close_time)
    if closes <= opens:
        return None
    return opens, closes


def generate_time_grid(rule, duration_minutes: int, step_minutes: int = SLOT_STEP_MINUTES) -> list[time]:
    """Start times from opening in ``step_minutes`` steps where start + duration <= close.

    ``rule`` is any object with ``open_time``, ``close_time`` and ``is_closed``
    (normally a :class:`~beautybook.models.WorkingHours` row). A missing or
    closed rule yields an empty grid.
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidInput("duration_minutes must be positive")
    if step_minutes <= 0:
        raise InvalidInput("step_minutes must be positive")

    window = opening_window(rule)
    if window is None:
        return []

    opens, closes = window
    return [from_minutes(start) for start in range(opens, closes - duration_minutes + 1, step_minutes)]


def parse_time_of_day(value, field: str = "time") -> time:
    """Parse ``HH:MM`` (seconds tolerated) into a :class:`time`."""
    if isinstance(value, time):
        return value
    try:
        parsed = time.fromisoformat(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a time in HH:MM format", field=field) from None
    return parsed.replace(second=0, microsecond=0, tzinfo=None)


def parse_date(value, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a date in YYYY-MM-DD format", field=field) from None
