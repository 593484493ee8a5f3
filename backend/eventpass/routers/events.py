"""Event API routes — delegates to the service layer for invariant enforcement."""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from eventpass.database import get_db
from eventpass.schemas.event import EventCreate, EventCreated, EventDetail, EventOut
from eventpass.schemas.payment import PaymentStatusResponse
from eventpass.schemas.recurrence import InstancePage
from eventpass.schemas.ticket import (
    CheckInResponse,
    CheckInStats,
    QRPayload,
    RegisterRequest,
    RegisterResponse,
    RegistrationOut,
    UnregisterRequest,
    UnregisterResponse,
)
from eventpass.services import event_service, payment_service, registration_service, ticket_service
from eventpass.services.payment_provider import PaymentProvider, get_payment_provider

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=EventCreated, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    actor_user_id: str = Query(..., description="ID of the organizing user"),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Create an event; paid events may first require a publishing payment."""
    event, session = event_service.create_event(db, actor_user_id, payload, provider)
    return EventCreated(
        event=EventOut.model_validate(event),
        payment_required=session is not None,
        payment_url=session.payment_url if session else None,
        payment_reference=session.reference if session else None,
    )


@router.get("/", response_model=list[EventOut])
def list_events(
    start_after: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    """List published events ordered by date."""
    return event_service.list_published_events(db, start_after=start_after)


@router.get("/{event_id}", response_model=EventDetail)
def get_event(
    event_id: str,
    actor_user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Event with the caller's registration and organizer flag."""
    return event_service.get_event_detail(db, event_id, actor_user_id)


@router.get("/{event_id}/instances", response_model=InstancePage)
def list_instances(
    event_id: str,
    limit: int = Query(20, ge=1),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    db: Session = Depends(get_db),
):
    """Concrete occurrences of a recurring event, ascending, paginated by limit."""
    return event_service.list_instances(db, event_id, limit=limit, start_date=start_date)


@router.post("/{event_id}/register", response_model=RegisterResponse)
def register(
    event_id: str,
    payload: RegisterRequest,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Register the caller; paid events answer with a hosted payment URL."""
    ticket, session = registration_service.register(
        db,
        event_id=event_id,
        user_id=actor_user_id,
        instance_id=payload.instance_id,
        special_requests=payload.special_requests,
        provider=provider,
    )
    return RegisterResponse(
        registration=RegistrationOut.model_validate(ticket),
        payment_required=session is not None,
        payment_url=session.payment_url if session else None,
        payment_reference=session.reference if session else None,
    )


@router.post("/{event_id}/unregister", response_model=UnregisterResponse)
def unregister(
    event_id: str,
    payload: Optional[UnregisterRequest] = None,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
):
    """Cancel the caller's registration (refused once checked in)."""
    _, was_pending = registration_service.unregister(
        db,
        event_id=event_id,
        user_id=actor_user_id,
        instance_id=payload.instance_id if payload else None,
    )
    return UnregisterResponse(
        message="Registration cancelled",
        was_pending_payment=was_pending,
    )


@router.get("/{event_id}/payment-status", response_model=PaymentStatusResponse)
def event_payment_status(
    event_id: str,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Publishing payment status, verified with the provider while pending."""
    return payment_service.event_payment_status(db, provider, event_id, actor_user_id)


@router.post("/{event_id}/checkin", response_model=CheckInResponse)
def check_in(
    event_id: str,
    payload: QRPayload,
    actor_user_id: str = Query(..., description="ID of the organizer scanning"),
    db: Session = Depends(get_db),
):
    """Check a scanned ticket in; a repeat scan answers 409 ALREADY_CHECKED_IN."""
    return ticket_service.check_in(db, event_id, payload, actor_user_id)


@router.get("/{event_id}/checkin/stats", response_model=CheckInStats)
def checkin_stats(
    event_id: str,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
):
    """Check-in totals for the organizer dashboard."""
    return ticket_service.checkin_stats(db, event_id, actor_user_id)
