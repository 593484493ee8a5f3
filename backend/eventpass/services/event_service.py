"""Core event service — creation, publishing, detail views and instances.

Responsibilities:
- Recurrence pattern validation at creation time
- Publishing flow: free events publish directly, paid events may require a
  publishing payment first (event stays ``pending_payment`` until settled)
- Authoritative attendee counts (event-level counter, per-instance counts
  derived from tickets)
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from eventpass.config import settings
from eventpass.models.enums import EventStatus, EventType, PaymentType, TicketStatus
from eventpass.models.event import Event
from eventpass.models.payment import PaymentSession
from eventpass.models.ticket import Ticket
from eventpass.models.user import User
from eventpass.schemas.event import EventCreate, EventDetail, EventOut
from eventpass.schemas.recurrence import EventInstance, InstancePage, parse_pattern
from eventpass.schemas.ticket import RegistrationOut
from eventpass.services import payment_service, recurrence
from eventpass.services.errors import not_found, validation_error
from eventpass.services.payment_provider import PaymentProvider

logger = logging.getLogger(__name__)


def get_user_or_404(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.user_id == user_id).first()
    if not user:
        raise not_found("User")
    return user


def get_event_or_404(db: Session, event_id: str, lock: bool = False) -> Event:
    """Load an event; ``lock`` takes a row lock held until the caller commits."""
    query = db.query(Event).filter(Event.event_id == event_id)
    if lock:
        query = query.with_for_update().populate_existing()
    event = query.first()
    if not event:
        raise not_found("Event")
    return event


def pattern_for(event: Event):
    """Parse the stored pattern of a recurring event (None otherwise)."""
    if not event.is_recurring or not event.recurrence_pattern:
        return None
    return parse_pattern(event.recurrence_pattern)


def create_event(
    db: Session,
    organizer_id: str,
    payload: EventCreate,
    provider: PaymentProvider,
) -> tuple[Event, Optional[PaymentSession]]:
    """Create an event; returns the publishing payment session when one is required."""
    organizer = get_user_or_404(db, organizer_id)

    if payload.end_date and payload.end_date < payload.event_date:
        raise validation_error("End date must be after the event date")
    if payload.is_recurring:
        if payload.recurrence_pattern is None:
            raise validation_error("Recurring events require a recurrence pattern")
        errors = recurrence.validate_pattern(payload.recurrence_pattern, payload.event_date)
        if errors:
            raise validation_error("Invalid recurrence pattern", errors=errors)
    if payload.event_type == EventType.paid and payload.ticket_price <= 0:
        raise validation_error("Paid events require a ticket price")

    event = Event(
        organizer_id=organizer.user_id,
        title=payload.title,
        description=payload.description,
        location=payload.location,
        event_date=payload.event_date,
        end_date=payload.end_date,
        is_recurring=payload.is_recurring,
        recurrence_pattern=(
            payload.recurrence_pattern.to_wire() if payload.is_recurring else None
        ),
        max_attendees=payload.max_attendees,
        current_attendees=0,
        event_type=payload.event_type,
        ticket_price=Decimal(str(payload.ticket_price)),
        status=EventStatus.published if payload.publish else EventStatus.draft,
    )
    db.add(event)
    db.flush()

    session = None
    needs_publishing_fee = (
        payload.publish
        and payload.event_type == EventType.paid
        and settings.EVENT_PUBLISHING_FEE > 0
    )
    if needs_publishing_fee:
        event.status = EventStatus.pending_payment
        session = payment_service.open_session(
            db,
            provider,
            PaymentType.event_publishing,
            event,
            target_id=event.event_id,
            user=organizer,
            amount=Decimal(str(settings.EVENT_PUBLISHING_FEE)),
        )

    db.commit()
    db.refresh(event)
    logger.info("Created event %s (%s) with status %s", event.event_id, event.title, event.status.value)
    return event, session


def list_published_events(db: Session, start_after: Optional[datetime] = None) -> list[Event]:
    query = db.query(Event).filter(Event.status == EventStatus.published)
    if start_after:
        query = query.filter(Event.event_date >= start_after)
    return query.order_by(Event.event_date).all()


def user_tickets(db: Session, event_id: str, user_id: str) -> list[Ticket]:
    return (
        db.query(Ticket)
        .filter(Ticket.event_id == event_id, Ticket.user_id == user_id)
        .order_by(Ticket.created_at)
        .all()
    )


def get_event_detail(db: Session, event_id: str, actor_user_id: Optional[str]) -> EventDetail:
    """Event plus the caller's registration(s) and organizer flag."""
    event = get_event_or_404(db, event_id)
    is_organizer = actor_user_id is not None and event.organizer_id == actor_user_id
    if event.status != EventStatus.published and not is_organizer:
        raise not_found("Event")

    registrations = []
    if actor_user_id:
        registrations = [
            RegistrationOut.model_validate(t)
            for t in user_tickets(db, event_id, actor_user_id)
            if t.status != TicketStatus.cancelled
        ]
    return EventDetail(
        event=EventOut.model_validate(event),
        user_registration=registrations[0] if registrations else None,
        user_registrations=registrations,
        is_organizer=is_organizer,
    )


def instance_attendee_counts(db: Session, event_id: str) -> dict[str, int]:
    """Confirmed registrations per instance id."""
    rows = (
        db.query(Ticket.instance_id, func.count(Ticket.ticket_id))
        .filter(
            Ticket.event_id == event_id,
            Ticket.instance_id.isnot(None),
            Ticket.status == TicketStatus.registered,
        )
        .group_by(Ticket.instance_id)
        .all()
    )
    return {instance_id: count for instance_id, count in rows}


def list_instances(
    db: Session,
    event_id: str,
    limit: int,
    start_date: Optional[datetime] = None,
) -> InstancePage:
    event = get_event_or_404(db, event_id)
    pattern = pattern_for(event)
    if pattern is None:
        raise validation_error("Event is not recurring")
    return recurrence.expand(
        event.event_id,
        anchor=event.event_date,
        pattern=pattern,
        limit=min(limit, settings.MAX_INSTANCES_PER_QUERY),
        start=start_date,
        attendee_counts=instance_attendee_counts(db, event_id),
        default_capacity=event.max_attendees,
    )


def resolve_instance(db: Session, event: Event, instance_id: str) -> Optional[EventInstance]:
    """Return the instance if the event's pattern produces it, with its live count."""
    pattern = pattern_for(event)
    if pattern is None:
        return None
    count = instance_attendee_counts(db, event.event_id).get(instance_id, 0)
    return recurrence.find_instance(
        event.event_id,
        anchor=event.event_date,
        pattern=pattern,
        instance_id=instance_id,
        attendee_count=count,
        default_capacity=event.max_attendees,
    )
