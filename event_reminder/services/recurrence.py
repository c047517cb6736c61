"""Next-occurrence arithmetic for recurring events.

Fixed periods (hourly, daily, weekly) are elapsed durations: they are added in
UTC, so across a DST change the local wall-clock time moves by the offset
difference. The ``weekdays`` rule is calendar arithmetic in the configured
timezone and keeps the wall-clock hour and minute.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, time, timedelta, timezone, tzinfo

from event_reminder.models.event import Periodicity

ISO_WEEKDAYS = frozenset(range(1, 8))

FIXED_PERIODS: dict[Periodicity, timedelta] = {
    Periodicity.hourly: timedelta(hours=1),
    Periodicity.daily: timedelta(hours=24),
    Periodicity.weekly: timedelta(days=7),
}


def _require_aware(value: datetime) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("fire time must be timezone-aware")


def _next_weekday(current: datetime, weekdays: Iterable[int], tz: tzinfo | None) -> datetime | None:
    allowed = ISO_WEEKDAYS.intersection(weekdays)
    if not allowed:
        return None
    zone = tz or current.tzinfo
    local = current.astimezone(zone)
    for offset in range(1, 8):
        day = local.date() + timedelta(days=offset)
        if day.isoweekday() in allowed:
            return datetime.combine(day, time(local.hour, local.minute), tzinfo=zone)
    return None


def next_fire_time(
    periodicity: Periodicity | None,
    weekdays: Iterable[int],
    current_fire_time: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """Return the occurrence after ``current_fire_time`` or ``None`` when the event ends."""
    _require_aware(current_fire_time)
    if periodicity is None:
        return None
    periodicity = Periodicity(periodicity)

    period = FIXED_PERIODS.get(periodicity)
    if period is not None:
        shifted = current_fire_time.astimezone(timezone.utc) + period
        return shifted.astimezone(current_fire_time.tzinfo)
    if periodicity == Periodicity.weekdays:
        return _next_weekday(current_fire_time, weekdays, tz)
    return None


def advance_past(
    periodicity: Periodicity | None,
    weekdays: Iterable[int],
    fire_at: datetime,
    now: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """Step the recurrence forward until it lands strictly after ``now``."""
    weekdays = frozenset(weekdays)
    candidate: datetime | None = fire_at
    while candidate is not None and candidate <= now:
        candidate = next_fire_time(periodicity, weekdays, candidate, tz)
    return candidate
