"""Registration orchestrator — local validation, submission and cache reconciliation.

Local attendee counters are a read-through cache of the server's: a
successful mutation adjusts them optimistically and then re-fetches and
replaces the event detail (and instance window) instead of merging fields.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from eventpass.client.api import EventPassClient
from eventpass.client.errors import (
    AlreadyCheckedInError,
    AlreadyRegisteredError,
    CapacityExceededError,
    EventPassError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from eventpass.client.notifications import NotificationBus
from eventpass.client.resolver import RecurrenceResolver
from eventpass.schemas.event import EventDetail
from eventpass.schemas.ticket import RegistrationOut, UnregisterResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationOutcome:
    registration: RegistrationOut
    payment_required: bool = False
    payment_url: Optional[str] = None
    payment_reference: Optional[str] = None


class RegistrationOrchestrator:
    def __init__(self, api: EventPassClient, event_id: str, bus: Optional[NotificationBus] = None):
        self.api = api
        self.event_id = event_id
        self.bus = bus or NotificationBus()
        self.detail: Optional[EventDetail] = None
        self.resolver: Optional[RecurrenceResolver] = None

    async def load(self) -> EventDetail:
        """Fetch the event detail, and its first instance window when recurring."""
        self.detail = await self.api.get_event(self.event_id)
        if self.detail.event.is_recurring:
            if self.resolver is None:
                self.resolver = RecurrenceResolver(self.api, self.event_id)
            await self.resolver.refresh()
        return self.detail

    async def refresh(self) -> None:
        """Re-fetch and replace the cached event (best effort after a mutation)."""
        try:
            await self.load()
        except NetworkError as e:
            logger.warning("Could not refresh event %s after mutation: %s", self.event_id, e)

    def active_registrations(self) -> list[RegistrationOut]:
        if self.detail is None:
            return []
        return [r for r in self.detail.user_registrations if r.is_active]

    def registration_for(self, instance_id: Optional[str]) -> Optional[RegistrationOut]:
        return next((r for r in self.active_registrations() if r.instance_id == instance_id), None)

    async def _check_local(self, instance_id: Optional[str]) -> None:
        event = self.detail.event
        if event.is_recurring and not instance_id:
            raise ValidationError("Please select a date for this event")
        if not event.is_recurring and instance_id:
            raise ValidationError("This event does not have multiple dates")
        if self.registration_for(instance_id) is not None:
            raise AlreadyRegisteredError()

        if instance_id:
            instance = await self.resolver.lookup(instance_id)
            if instance is None:
                raise ValidationError("Selected date is not available for this event")
            if instance.is_full:
                raise CapacityExceededError(
                    "This date is fully booked",
                    attendee_count=instance.attendee_count,
                    max_attendees=instance.max_attendees,
                )
        elif event.is_at_capacity:
            raise CapacityExceededError(
                "This event is fully booked",
                attendee_count=event.current_attendees,
                max_attendees=event.max_attendees,
            )

    def _adjust_count(self, instance_id: Optional[str], delta: int) -> None:
        if instance_id and self.resolver is not None:
            self.resolver.adjust_attendee_count(instance_id, delta)
            return
        event = self.detail.event
        self.detail = self.detail.model_copy(
            update={"event": event.model_copy(update={"current_attendees": max(0, event.current_attendees + delta)})}
        )

    async def register(self, instance_id: Optional[str] = None, special_requests: str = "") -> RegistrationOutcome:
        """Register the acting user; paid events hand back payment details for the poller."""
        if self.detail is None:
            await self.load()
        await self._check_local(instance_id)

        try:
            response = await self.api.register(self.event_id, instance_id, special_requests)
        except EventPassError as e:
            self.bus.report("Registration failed", e)
            raise

        outcome = RegistrationOutcome(
            registration=response.registration,
            payment_required=response.payment_required,
            payment_url=response.payment_url,
            payment_reference=response.payment_reference,
        )
        if response.payment_required:
            logger.info("Registration %s awaiting payment %s", response.registration.ticket_id, response.payment_reference)
            self.bus.info("Complete payment", "Finish payment to confirm your ticket")
        else:
            self._adjust_count(instance_id, +1)
            logger.info("Registered for event %s (instance=%s)", self.event_id, instance_id)
            self.bus.success("You're registered!")
        await self.refresh()
        return outcome

    async def unregister(self, instance_id: Optional[str] = None) -> UnregisterResponse:
        """Cancel the acting user's registration; refused once checked in."""
        if self.detail is None:
            await self.load()
        registration = self.registration_for(instance_id)
        if registration is None and instance_id is None and len(self.active_registrations()) == 1:
            registration = self.active_registrations()[0]
        if registration is None:
            raise NotFoundError("You are not registered for this event")
        if registration.checked_in:
            raise AlreadyCheckedInError(
                "You have already checked in to this event. Please contact the organizer.",
                checked_in_at=registration.checked_in_at,
                ticket_id=registration.ticket_id,
            )

        try:
            response = await self.api.unregister(self.event_id, registration.instance_id)
        except EventPassError as e:
            self.bus.report("Could not cancel registration", e)
            raise

        if not response.was_pending_payment:
            self._adjust_count(registration.instance_id, -1)
        self.bus.success("Registration cancelled")
        await self.refresh()
        return response
