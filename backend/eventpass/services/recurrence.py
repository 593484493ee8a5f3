"""Recurrence expansion — turns a pattern into concrete, ordered instances.

Expansion is a pure function of (event id, anchor, pattern, window). It is
re-derived from scratch on every call: "load more" means asking again with a
larger ``limit`` from the same ``start``, never continuing from a cursor.
"""
import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Union, assert_never

from eventpass.schemas.recurrence import (
    DAY_NAMES,
    EventInstance,
    InstancePage,
    MonthlyPattern,
    WeeklyPattern,
    instance_id_for,
    parse_instance_id,
)

logger = logging.getLogger(__name__)

Pattern = Union[WeeklyPattern, MonthlyPattern]


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def js_weekday(day: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _weekly_dates(pattern: WeeklyPattern, first: date) -> Iterator[date]:
    if not pattern.days_of_week:
        logger.warning("Weekly pattern has no daysOfWeek; no instances generated")
        return
    wanted = set(pattern.days_of_week)
    current = first
    while pattern.end_date is None or current <= pattern.end_date:
        if js_weekday(current) in wanted:
            yield current
        current += timedelta(days=1)


def _monthly_dates(pattern: MonthlyPattern, first: date) -> Iterator[date]:
    year, month = first.year, first.month
    while True:
        last_day = calendar.monthrange(year, month)[1]
        candidate = date(year, month, min(pattern.day_of_month, last_day))
        if pattern.end_date is not None and candidate > pattern.end_date:
            return
        if candidate >= first:
            yield candidate
        month += 1
        if month > 12:
            year, month = year + 1, 1


def occurrence_dates(pattern: Pattern, first: date) -> Iterator[date]:
    """Yield local occurrence dates on or after ``first``, ascending."""
    if isinstance(pattern, WeeklyPattern):
        dates = _weekly_dates(pattern, first)
    elif isinstance(pattern, MonthlyPattern):
        dates = _monthly_dates(pattern, first)
    else:
        assert_never(pattern)
    excluded = set(pattern.excluded_dates)
    for occurrence in dates:
        if occurrence not in excluded:
            yield occurrence


def build_instance(
    event_id: str,
    pattern: Pattern,
    occurrence: date,
    attendee_count: int = 0,
    default_capacity: int = 0,
) -> EventInstance:
    """Materialise one occurrence in the pattern's timezone."""
    hour, minute = (int(part) for part in pattern.start_time.split(":"))
    local_dt = pattern.tz.localize(datetime.combine(occurrence, time(hour, minute)))
    return EventInstance(
        instance_id=instance_id_for(event_id, occurrence),
        event_id=event_id,
        date=occurrence,
        starts_at=local_dt.astimezone(timezone.utc),
        local_time=pattern.start_time,
        day_of_week=DAY_NAMES[js_weekday(occurrence)],
        timezone=pattern.timezone,
        attendee_count=attendee_count,
        max_attendees=pattern.capacity_overrides.get(occurrence.isoformat(), default_capacity),
    )


def expand(
    event_id: str,
    anchor: datetime,
    pattern: Pattern,
    limit: int,
    start: Optional[datetime] = None,
    attendee_counts: Optional[dict[str, int]] = None,
    default_capacity: int = 0,
) -> InstancePage:
    """Return up to ``limit`` instances starting at or after ``start`` (default: now).

    Instances are strictly ascending by start time; ``has_more`` reports
    whether at least one further instance exists.
    """
    start = ensure_utc(start) if start else datetime.now(timezone.utc)
    anchor = ensure_utc(anchor)
    counts = attendee_counts or {}
    tz = pattern.tz
    first = max(anchor.astimezone(tz).date(), start.astimezone(tz).date())

    instances: list[EventInstance] = []
    if limit <= 0:
        return InstancePage(instances=[], has_more=False)
    for occurrence in occurrence_dates(pattern, first):
        instance = build_instance(
            event_id,
            pattern,
            occurrence,
            attendee_count=counts.get(instance_id_for(event_id, occurrence), 0),
            default_capacity=default_capacity,
        )
        if instance.starts_at < start:
            continue
        if len(instances) == limit:
            return InstancePage(instances=instances, has_more=True)
        instances.append(instance)
    return InstancePage(instances=instances, has_more=False)


def find_instance(
    event_id: str,
    anchor: datetime,
    pattern: Pattern,
    instance_id: str,
    attendee_count: int = 0,
    default_capacity: int = 0,
) -> Optional[EventInstance]:
    """Return the instance named by ``instance_id`` if the pattern produces it."""
    parsed = parse_instance_id(instance_id)
    if parsed is None or parsed[0] != event_id:
        return None
    occurrence = parsed[1]
    anchor_date = ensure_utc(anchor).astimezone(pattern.tz).date()
    if occurrence < anchor_date:
        return None
    if next(occurrence_dates(pattern, occurrence), None) != occurrence:
        return None
    return build_instance(event_id, pattern, occurrence, attendee_count, default_capacity)


def validate_pattern(pattern: Pattern, anchor: datetime) -> list[str]:
    """Creation-time checks beyond field validation; returns error messages."""
    errors = []
    if isinstance(pattern, WeeklyPattern) and not pattern.days_of_week:
        errors.append("At least one day of week must be selected")
    if pattern.end_date is not None:
        anchor_date = ensure_utc(anchor).astimezone(pattern.tz).date()
        if pattern.end_date < anchor_date:
            errors.append("End date must not be before the event date")
    return errors


def format_recurrence(pattern: Pattern) -> str:
    """Human-readable summary, e.g. "Every Monday, Wednesday at 6:00 PM"."""
    hour, minute = (int(part) for part in pattern.start_time.split(":"))
    clock = f"{hour % 12 or 12}:{minute:02d} {'PM' if hour >= 12 else 'AM'}"
    if isinstance(pattern, WeeklyPattern):
        days = ", ".join(DAY_NAMES[d] for d in pattern.days_of_week)
        return f"Every {days} at {clock}" if days else ""
    if isinstance(pattern, MonthlyPattern):
        return f"Monthly on day {pattern.day_of_month} at {clock}"
    assert_never(pattern)
