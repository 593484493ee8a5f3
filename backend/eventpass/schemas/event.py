"""Pydantic schemas for Events."""
from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import Field

from eventpass.models.enums import EventStatus, EventType
from eventpass.schemas.common import CamelModel
from eventpass.schemas.recurrence import RecurrencePattern
from eventpass.schemas.ticket import RegistrationOut


class EventCreate(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    event_date: datetime
    end_date: Optional[datetime] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    max_attendees: int = Field(0, ge=0)
    event_type: EventType = EventType.free
    ticket_price: float = Field(0, ge=0)
    publish: bool = True


class EventOut(CamelModel):
    event_id: str
    organizer_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    event_date: datetime
    end_date: Optional[datetime] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    max_attendees: int = 0
    current_attendees: int = 0
    status: EventStatus
    event_type: EventType
    ticket_price: float = 0

    @property
    def is_at_capacity(self) -> bool:
        return self.max_attendees > 0 and self.current_attendees >= self.max_attendees


class EventDetail(CamelModel):
    event: EventOut
    user_registration: Optional[RegistrationOut] = None
    user_registrations: list[RegistrationOut] = []
    is_organizer: bool = False


class EventCreated(CamelModel):
    success: bool = True
    event: EventOut
    payment_required: bool = False
    payment_url: Optional[str] = None
    payment_reference: Optional[str] = None
