"""Recurrence pattern types and derived event instances.

A pattern is a tagged union over ``type``: each recurrence kind is its own
model, so adding a kind means adding a model here and a branch in
``eventpass.services.recurrence`` (which fails loudly on unknown kinds).
Days of week follow the mobile client's convention: 0 = Sunday .. 6 = Saturday.
"""
import re
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

import pytz
from pydantic import Field, TypeAdapter, field_validator

from eventpass.schemas.common import CamelModel

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

_START_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class _PatternBase(CamelModel):
    start_time: str = "10:00"
    timezone: str = "Africa/Johannesburg"
    end_date: Optional[date] = None  # None = never ends
    excluded_dates: list[date] = []
    capacity_overrides: dict[str, int] = {}  # "YYYY-MM-DD" -> maxAttendees

    @field_validator("start_time")
    @classmethod
    def _check_start_time(cls, value: str) -> str:
        if not _START_TIME_RE.match(value):
            raise ValueError('startTime must be in HH:mm format (e.g. "10:00")')
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Invalid timezone: {value}")
        return value

    @property
    def tz(self):
        return pytz.timezone(self.timezone)


class WeeklyPattern(_PatternBase):
    type: Literal["weekly"] = "weekly"
    days_of_week: list[int] = []

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError(f"Invalid day of week: {day}. Must be 0-6 (Sunday-Saturday)")
        return sorted(set(value))


class MonthlyPattern(_PatternBase):
    type: Literal["monthly"] = "monthly"
    day_of_month: int = Field(ge=1, le=31)


RecurrencePattern = Annotated[Union[WeeklyPattern, MonthlyPattern], Field(discriminator="type")]

_pattern_adapter = TypeAdapter(RecurrencePattern)


def parse_pattern(data: dict) -> Union[WeeklyPattern, MonthlyPattern]:
    """Parse a stored/wire pattern dict into its tagged model."""
    return _pattern_adapter.validate_python(data)


def instance_id_for(event_id: str, occurrence: date) -> str:
    return f"{event_id}_{occurrence.isoformat()}"


def parse_instance_id(instance_id: str) -> Optional[tuple[str, date]]:
    """Split ``"{eventId}_{YYYY-MM-DD}"``; returns None when malformed."""
    event_id, sep, date_part = instance_id.rpartition("_")
    if not sep or not event_id:
        return None
    try:
        return event_id, date.fromisoformat(date_part)
    except ValueError:
        return None


class EventInstance(CamelModel):
    """One concrete occurrence of a recurring event. Derived, never persisted."""

    instance_id: str
    event_id: str
    date: date
    starts_at: datetime
    local_time: str
    day_of_week: str
    timezone: str
    attendee_count: int = 0
    max_attendees: int = 0

    @property
    def is_full(self) -> bool:
        return self.max_attendees > 0 and self.attendee_count >= self.max_attendees


class InstancePage(CamelModel):
    instances: list[EventInstance] = []
    has_more: bool = False
