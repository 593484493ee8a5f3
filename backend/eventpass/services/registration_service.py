"""Registration service — authoritative capacity checks, tickets, unregistration.

Invariants:
- at most one non-cancelled ticket per (user, event, instance)
- recurring events require an instance id the pattern actually produces
- counters only move for confirmed registrations; a pending-payment ticket
  never incremented anything, so cancelling it never decrements
- a checked-in ticket cannot be cancelled

The event row is locked for the whole check-then-write sequence and counters
are updated with SQL expressions, so concurrent requests cannot lose updates.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import status
from sqlalchemy import case
from sqlalchemy.orm import Session

from eventpass.models.enums import EventStatus, EventType, PaymentStatus, PaymentType, TicketStatus
from eventpass.models.event import Event
from eventpass.models.payment import PaymentSession
from eventpass.models.ticket import Ticket
from eventpass.services import event_service, payment_service
from eventpass.services.errors import api_error, not_found, validation_error
from eventpass.services.payment_provider import PaymentProvider
from eventpass.services.recurrence import ensure_utc

logger = logging.getLogger(__name__)


def _active_ticket(db: Session, event_id: str, user_id: str, instance_id: Optional[str]) -> Optional[Ticket]:
    return (
        db.query(Ticket)
        .filter(
            Ticket.event_id == event_id,
            Ticket.user_id == user_id,
            Ticket.instance_id.is_(None) if instance_id is None else Ticket.instance_id == instance_id,
            Ticket.status != TicketStatus.cancelled,
        )
        .first()
    )


def _check_capacity(db: Session, event: Event, instance_id: Optional[str]) -> None:
    """Raise CAPACITY_EXCEEDED when the relevant counter is at its bound."""
    if instance_id is not None:
        instance = event_service.resolve_instance(db, event, instance_id)
        if instance is None:
            raise validation_error("Instance does not belong to this event")
        if instance.is_full:
            raise api_error(
                status.HTTP_409_CONFLICT,
                "CAPACITY_EXCEEDED",
                "This date is fully booked",
                attendeeCount=instance.attendee_count,
                maxAttendees=instance.max_attendees,
            )
        return

    if event.max_attendees > 0 and event.current_attendees >= event.max_attendees:
        raise api_error(
            status.HTTP_409_CONFLICT,
            "CAPACITY_EXCEEDED",
            "Event is full",
            attendeeCount=event.current_attendees,
            maxAttendees=event.max_attendees,
        )


def register(
    db: Session,
    event_id: str,
    user_id: str,
    instance_id: Optional[str],
    special_requests: str,
    provider: PaymentProvider,
) -> tuple[Ticket, Optional[PaymentSession]]:
    """Register a user; returns the payment session when payment is required."""
    user = event_service.get_user_or_404(db, user_id)
    event = event_service.get_event_or_404(db, event_id, lock=True)

    if event.status != EventStatus.published:
        raise validation_error("Event is not open for registration")
    if event.is_recurring and not instance_id:
        raise validation_error("Recurring events require an instanceId")
    if not event.is_recurring and instance_id:
        raise validation_error("instanceId is only valid for recurring events")
    if not event.is_recurring and event.end_date and ensure_utc(event.end_date) < datetime.now(timezone.utc):
        raise validation_error("Event has already ended")

    if _active_ticket(db, event_id, user_id, instance_id):
        raise api_error(status.HTTP_409_CONFLICT, "ALREADY_REGISTERED", "You are already registered")

    _check_capacity(db, event, instance_id)

    paid = event.event_type == EventType.paid and event.ticket_price > 0
    ticket = Ticket(
        event_id=event.event_id,
        instance_id=instance_id,
        user_id=user.user_id,
        special_requests=special_requests or None,
        status=TicketStatus.pending_payment if paid else TicketStatus.registered,
    )
    db.add(ticket)
    db.flush()

    session = None
    if paid:
        session = payment_service.open_session(
            db,
            provider,
            PaymentType.event_registration,
            event,
            target_id=ticket.ticket_id,
            user=user,
            amount=event.ticket_price,
        )
        ticket.payment_reference = session.reference
    else:
        event.current_attendees = Event.current_attendees + 1

    db.commit()
    db.refresh(ticket)
    logger.info(
        "User %s registered for event %s (instance=%s, status=%s)",
        user_id, event_id, instance_id, ticket.status.value,
    )
    return ticket, session


def unregister(
    db: Session,
    event_id: str,
    user_id: str,
    instance_id: Optional[str],
) -> tuple[Ticket, bool]:
    """Cancel the user's ticket; returns (ticket, was_pending_payment)."""
    event = event_service.get_event_or_404(db, event_id, lock=True)
    if event.is_recurring and not instance_id:
        tickets = [
            t for t in event_service.user_tickets(db, event_id, user_id)
            if t.status != TicketStatus.cancelled
        ]
        if len(tickets) > 1:
            raise validation_error("Specify which instance to unregister from")
        ticket = tickets[0] if tickets else None
    else:
        ticket = _active_ticket(db, event_id, user_id, instance_id)
    if not ticket:
        raise not_found("Registration")

    if ticket.checked_in:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "ALREADY_CHECKED_IN",
            "You have already checked in to this event. Please contact the organizer.",
            checkedIn=True,
            checkedInAt=ensure_utc(ticket.checked_in_at).isoformat() if ticket.checked_in_at else None,
        )

    was_pending = ticket.status == TicketStatus.pending_payment
    ticket.status = TicketStatus.cancelled
    ticket.cancelled_at = datetime.now(timezone.utc)
    if not was_pending:
        event.current_attendees = case(
            (Event.current_attendees > 0, Event.current_attendees - 1),
            else_=0,
        )

    if was_pending and ticket.payment_reference:
        session = payment_service.get_session_or_404(db, ticket.payment_reference)
        payment_service.settle(db, session, PaymentStatus.abandoned)
    db.commit()
    db.refresh(ticket)
    logger.info("User %s unregistered from event %s (was_pending=%s)", user_id, event_id, was_pending)
    return ticket, was_pending
