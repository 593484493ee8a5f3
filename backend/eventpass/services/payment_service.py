"""Payment sessions: opening hosted checkouts, reconciling status, settling.

While a session is pending, every status read asks the provider for the
transaction's current state and settles the session once it has an outcome.
Force-verify and the provider webhook reach the same ``settle``, and a
settled session is never settled again.
"""
import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import status
from sqlalchemy.orm import Session

from eventpass.config import settings
from eventpass.models.enums import (
    TERMINAL_PAYMENT_STATUSES,
    EventStatus,
    PaymentStatus,
    PaymentType,
    TicketStatus,
)
from eventpass.models.event import Event
from eventpass.models.payment import PaymentSession
from eventpass.models.ticket import Ticket
from eventpass.models.user import User
from eventpass.schemas.payment import EventStatusOut, PaymentStatusResponse, Verification
from eventpass.services.errors import api_error, not_found, not_owned
from eventpass.services.payment_provider import PaymentProvider, PaymentProviderError, ProviderStatus

logger = logging.getLogger(__name__)

_PROVIDER_TO_PAYMENT = {
    ProviderStatus.success: PaymentStatus.completed,
    ProviderStatus.abandoned: PaymentStatus.abandoned,
    ProviderStatus.failed: PaymentStatus.failed,
}

_PAYMENT_TO_VERIFICATION = {
    PaymentStatus.completed: "success",
    PaymentStatus.pending: "pending",
    PaymentStatus.abandoned: "abandoned",
    PaymentStatus.failed: "failed",
}

_STATUS_MESSAGES = {
    PaymentStatus.pending: "Payment is still being processed.",
    PaymentStatus.completed: "Payment completed successfully.",
    PaymentStatus.abandoned: "Payment was abandoned. Please try again.",
    PaymentStatus.failed: "Payment failed. Please try again with a different payment method.",
}

# Webhook event names that settle a transaction.
_WEBHOOK_EVENTS = {
    "charge.success": PaymentStatus.completed,
    "charge.failed": PaymentStatus.failed,
    "charge.abandoned": PaymentStatus.abandoned,
}


def _new_reference() -> str:
    return f"evp_{uuid.uuid4().hex[:24]}"


def open_session(
    db: Session,
    provider: PaymentProvider,
    payment_type: PaymentType,
    event: Event,
    target_id: str,
    user: User,
    amount: Decimal,
) -> PaymentSession:
    """Create a pending session and its hosted checkout URL (not committed)."""
    reference = _new_reference()
    amount = Decimal(amount).quantize(Decimal("0.01"))
    try:
        payment_url = provider.initialize(
            reference=reference,
            amount_minor=int(amount * 100),
            currency=settings.CURRENCY,
            email=user.email or f"{user.user_id}@users.eventpass.local",
        )
    except PaymentProviderError as exc:
        raise api_error(status.HTTP_502_BAD_GATEWAY, "NETWORK", f"Payment provider unavailable: {exc}")

    session = PaymentSession(
        reference=reference,
        payment_type=payment_type,
        event_id=event.event_id,
        target_id=target_id,
        user_id=user.user_id,
        amount=amount,
        currency=settings.CURRENCY,
        status=PaymentStatus.pending,
        payment_url=payment_url,
    )
    db.add(session)
    logger.info("Opened %s payment %s for event %s", payment_type.value, reference, event.event_id)
    return session


def get_session_or_404(db: Session, reference: str) -> PaymentSession:
    session = db.query(PaymentSession).filter(PaymentSession.reference == reference).first()
    if not session:
        raise not_found("Payment")
    return session


def settle(db: Session, session: PaymentSession, outcome: PaymentStatus) -> PaymentSession:
    """Move a pending session to a terminal status and apply its effect."""
    if outcome == PaymentStatus.pending:
        return session

    # Lock the session and its event so concurrent polls and webhooks settle once.
    session = (
        db.query(PaymentSession)
        .filter(PaymentSession.reference == session.reference)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if session.status in TERMINAL_PAYMENT_STATUSES:
        return session

    event = (
        db.query(Event)
        .filter(Event.event_id == session.event_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    session.status = outcome
    session.settled_at = datetime.now(timezone.utc)

    if session.payment_type == PaymentType.event_registration:
        ticket = db.query(Ticket).filter(Ticket.ticket_id == session.target_id).first()
        if ticket and ticket.status == TicketStatus.pending_payment:
            if outcome == PaymentStatus.completed:
                ticket.status = TicketStatus.registered
                event.current_attendees = Event.current_attendees + 1
                db.flush()
                if event.max_attendees and event.current_attendees > event.max_attendees:
                    logger.warning("Event %s is over capacity after paid registration %s", event.event_id, ticket.ticket_id)
            else:
                ticket.status = TicketStatus.cancelled
                ticket.cancelled_at = datetime.now(timezone.utc)
    elif event and event.status == EventStatus.pending_payment:
        event.status = EventStatus.published if outcome == PaymentStatus.completed else EventStatus.draft

    db.commit()
    db.refresh(session)
    logger.info("Payment %s settled as %s", session.reference, outcome.value)
    return session


def reconcile(db: Session, provider: PaymentProvider, session: PaymentSession) -> PaymentSession:
    """Ask the provider about a pending session and settle it once it has an outcome.

    Raises ``PaymentProviderError`` when the provider cannot be reached.
    """
    if session.status != PaymentStatus.pending:
        return session
    provider_status = provider.verify(session.reference)
    if provider_status in _PROVIDER_TO_PAYMENT:
        return settle(db, session, _PROVIDER_TO_PAYMENT[provider_status])
    return session


def _reconcile_for_status(db: Session, provider: PaymentProvider, session: PaymentSession) -> PaymentSession:
    try:
        return reconcile(db, provider, session)
    except PaymentProviderError as exc:
        # Report the recorded state; the next poll asks again.
        logger.warning("Could not verify payment %s with the provider: %s", session.reference, exc)
        return session


def callback_status(db: Session, provider: PaymentProvider, reference: str) -> PaymentSession:
    return _reconcile_for_status(db, provider, get_session_or_404(db, reference))


def force_verify(db: Session, provider: PaymentProvider, reference: str, actor_user_id: str) -> Verification:
    """Ask the provider directly and settle the session if it reached a terminal state."""
    session = get_session_or_404(db, reference)
    if session.user_id != actor_user_id:
        raise not_owned("This payment belongs to another user")

    try:
        session = reconcile(db, provider, session)
    except PaymentProviderError as exc:
        raise api_error(status.HTTP_502_BAD_GATEWAY, "NETWORK", f"Payment provider unavailable: {exc}")

    return Verification(
        status=_PAYMENT_TO_VERIFICATION[session.status],
        message=_STATUS_MESSAGES[session.status],
    )


def registration_payment_status(
    db: Session, provider: PaymentProvider, event_id: str, ticket_id: str, actor_user_id: str
) -> PaymentStatusResponse:
    ticket = db.query(Ticket).filter(Ticket.ticket_id == ticket_id, Ticket.event_id == event_id).first()
    if not ticket:
        raise not_found("Registration")
    if ticket.user_id != actor_user_id:
        raise not_owned("This registration belongs to another user")
    if not ticket.payment_reference:
        raise api_error(status.HTTP_400_BAD_REQUEST, "VALIDATION", "Registration has no payment")

    session = _reconcile_for_status(db, provider, get_session_or_404(db, ticket.payment_reference))
    return PaymentStatusResponse(
        payment_type=session.payment_type,
        payment_status=session.status,
        payment_reference=session.reference,
        payment_url=session.payment_url if session.status == PaymentStatus.pending else None,
        message=_STATUS_MESSAGES[session.status],
    )


def event_payment_status(
    db: Session, provider: PaymentProvider, event_id: str, actor_user_id: str
) -> PaymentStatusResponse:
    event = db.query(Event).filter(Event.event_id == event_id).first()
    if not event:
        raise not_found("Event")
    if event.organizer_id != actor_user_id:
        raise not_owned("Only the organizer may view the publishing payment")

    session = (
        db.query(PaymentSession)
        .filter(
            PaymentSession.event_id == event_id,
            PaymentSession.payment_type == PaymentType.event_publishing,
        )
        .order_by(PaymentSession.created_at.desc())
        .first()
    )
    if not session:
        raise not_found("Publishing payment")
    session = _reconcile_for_status(db, provider, session)

    payment_url = session.payment_url if session.status == PaymentStatus.pending else None
    return PaymentStatusResponse(
        payment_type=session.payment_type,
        payment_status=session.status,
        payment_reference=session.reference,
        payment_url=payment_url,
        message=_STATUS_MESSAGES[session.status],
        event=EventStatusOut(event_id=event.event_id, status=event.status, payment_url=payment_url),
    )


def verify_webhook_signature(raw_body: bytes, signature: Optional[str]) -> bool:
    """Paystack signs webhook bodies with HMAC-SHA512 of the secret key."""
    if not settings.PAYSTACK_SECRET_KEY:
        return True
    if not signature:
        return False
    expected = hmac.new(settings.PAYSTACK_SECRET_KEY.encode(), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


def handle_webhook(db: Session, raw_body: bytes, signature: Optional[str]) -> Optional[PaymentSession]:
    """Apply a provider push notification; unknown events are acknowledged and ignored."""
    if not verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected payment webhook with an invalid signature")
        raise api_error(status.HTTP_401_UNAUTHORIZED, "VALIDATION", "Invalid webhook signature")

    try:
        body = json.loads(raw_body)
    except ValueError:
        raise api_error(status.HTTP_400_BAD_REQUEST, "VALIDATION", "Webhook body is not JSON")

    outcome = _WEBHOOK_EVENTS.get(body.get("event", ""))
    reference = (body.get("data") or {}).get("reference")
    if outcome is None or not reference:
        logger.info("Ignoring payment webhook event %s", body.get("event"))
        return None

    session = db.query(PaymentSession).filter(PaymentSession.reference == reference).first()
    if not session:
        logger.warning("Webhook for unknown payment reference %s", reference)
        return None
    return settle(db, session, outcome)
