"""Ticket service — QR verification tokens and idempotent check-in.

A verification token is an HS256 JWT signed with ``QR_TOKEN_SECRET`` whose
claims bind it to one (event, user, ticket) and carry its expiry; a random
``jti`` makes every issuance distinct. The ticket stores the latest token, so
issuing a new one makes the previous one stop validating immediately.
"""
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import status
from sqlalchemy.orm import Session

from eventpass.config import settings
from eventpass.models.enums import TicketStatus
from eventpass.models.ticket import Ticket
from eventpass.models.user import User
from eventpass.schemas.ticket import (
    QR_TYPE,
    CheckInDetail,
    CheckInResponse,
    CheckInStats,
    QRPayload,
    UserData,
)
from eventpass.services import event_service
from eventpass.services.errors import api_error, not_found, not_owned
from eventpass.services.recurrence import ensure_utc

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


def mint_token(event_id: str, user_id: str, ticket_id: str, issued_at: datetime) -> str:
    """Sign a verification token for one ticket.

    Claims:
    - tid / eid / sub: ticket, event and owning user
    - jti: random per issuance
    - iat / exp: issue time and expiry (``QR_TOKEN_TTL_HOURS`` later)
    """
    expires_at = issued_at + timedelta(hours=settings.QR_TOKEN_TTL_HOURS)
    claims = {
        "tid": ticket_id,
        "eid": event_id,
        "sub": user_id,
        "jti": secrets.token_hex(16),
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(claims, settings.QR_TOKEN_SECRET, algorithm=TOKEN_ALGORITHM)


def verify_token(token: str, ticket: Ticket) -> dict:
    """Check a token's signature, expiry and ticket binding; returns its claims."""
    try:
        claims = jwt.decode(token, settings.QR_TOKEN_SECRET, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _invalid_qr("QR code has expired")
    except jwt.InvalidTokenError:
        raise _invalid_qr("QR code token is invalid")

    bound_to = (claims.get("tid"), claims.get("eid"), claims.get("sub"))
    if bound_to != (ticket.ticket_id, ticket.event_id, ticket.user_id):
        raise _invalid_qr("QR code token was not issued for this ticket")
    return claims


def token_expires_at(ticket: Ticket) -> datetime:
    return ensure_utc(ticket.token_issued_at) + timedelta(hours=settings.QR_TOKEN_TTL_HOURS)


def list_tickets(db: Session, user_id: str, event_id: Optional[str] = None) -> list[Ticket]:
    query = db.query(Ticket).filter(Ticket.user_id == user_id)
    if event_id:
        query = query.filter(Ticket.event_id == event_id)
    return query.order_by(Ticket.created_at).all()


def issue_qr_token(db: Session, ticket_id: str, user_id: str) -> Ticket:
    """Mint a fresh verification token for the caller's active ticket."""
    ticket = db.query(Ticket).filter(Ticket.ticket_id == ticket_id).first()
    if not ticket:
        raise not_found("Ticket")
    if ticket.user_id != user_id:
        raise not_owned("This ticket belongs to another user")
    if ticket.checked_in:
        raise api_error(
            status.HTTP_409_CONFLICT,
            "ALREADY_CHECKED_IN",
            "Ticket has already been checked in",
            checkedInAt=ensure_utc(ticket.checked_in_at).isoformat(),
        )
    if ticket.status != TicketStatus.registered:
        raise api_error(status.HTTP_409_CONFLICT, "TICKET_NOT_ACTIVE", "Ticket is not active")

    issued_at = datetime.now(timezone.utc).replace(microsecond=0)
    ticket.verification_token = mint_token(ticket.event_id, ticket.user_id, ticket.ticket_id, issued_at)
    ticket.token_issued_at = issued_at
    ticket.qr_generated = True
    db.commit()
    db.refresh(ticket)
    logger.info("Issued QR token for ticket %s", ticket_id)
    return ticket


def _user_data(db: Session, user_id: str) -> Optional[UserData]:
    user = db.query(User).filter(User.user_id == user_id).first()
    if not user:
        return None
    return UserData(user_id=user.user_id, display_name=user.display_name, email=user.email)


def _invalid_qr(message: str):
    return api_error(status.HTTP_400_BAD_REQUEST, "INVALID_TICKET_QR", message)


def check_in(db: Session, event_id: str, payload: QRPayload, actor_user_id: str) -> CheckInResponse:
    """Validate a scanned payload and check the ticket in exactly once.

    A second scan of an already checked-in ticket answers 409
    ALREADY_CHECKED_IN carrying the original ``checkedInAt`` and attendee.
    """
    event = event_service.get_event_or_404(db, event_id)
    if event.organizer_id != actor_user_id:
        raise not_owned("Only the organizer may check attendees in")

    if payload.missing_fields() or payload.type != QR_TYPE:
        raise _invalid_qr("QR code is missing required ticket fields")
    if payload.event_id != event_id:
        raise api_error(status.HTTP_400_BAD_REQUEST, "WRONG_EVENT", "This ticket is for a different event")

    ticket = db.query(Ticket).filter(Ticket.ticket_id == payload.ticket_id).first()
    if not ticket or ticket.event_id != payload.event_id or ticket.user_id != payload.user_id:
        raise _invalid_qr("Ticket does not match QR code data")
    if not ticket.verification_token or not hmac.compare_digest(
        ticket.verification_token, payload.verification_token
    ):
        raise _invalid_qr("QR code token is invalid or has been replaced")

    user_data = _user_data(db, ticket.user_id)
    if ticket.checked_in:
        logger.info("Duplicate scan for ticket %s", ticket.ticket_id)
        raise api_error(
            status.HTTP_409_CONFLICT,
            "ALREADY_CHECKED_IN",
            "Ticket has already been checked in",
            ticketId=ticket.ticket_id,
            checkedInAt=ensure_utc(ticket.checked_in_at).isoformat(),
            userData=user_data.to_wire() if user_data else None,
        )
    verify_token(payload.verification_token, ticket)
    if ticket.status != TicketStatus.registered:
        raise _invalid_qr("Ticket is not active")

    ticket.checked_in = True
    ticket.checked_in_at = datetime.now(timezone.utc)
    ticket.checked_in_by = actor_user_id
    db.commit()
    db.refresh(ticket)
    logger.info("Checked in ticket %s for event %s", ticket.ticket_id, event_id)
    return CheckInResponse(
        ticket_id=ticket.ticket_id,
        instance_id=ticket.instance_id,
        user_data=user_data,
        checked_in_at=ensure_utc(ticket.checked_in_at),
    )


def checkin_stats(db: Session, event_id: str, actor_user_id: str) -> CheckInStats:
    event = event_service.get_event_or_404(db, event_id)
    if event.organizer_id != actor_user_id:
        raise not_owned("Only the organizer may view check-in statistics")

    tickets = (
        db.query(Ticket)
        .filter(Ticket.event_id == event_id, Ticket.status == TicketStatus.registered)
        .all()
    )
    checked = [t for t in tickets if t.checked_in]
    total = len(tickets)
    return CheckInStats(
        event_id=event_id,
        total_tickets=total,
        checked_in_count=len(checked),
        pending_check_in=total - len(checked),
        check_in_rate=(len(checked) / total) * 100 if total else 0.0,
        check_in_details=[
            CheckInDetail(
                ticket_id=t.ticket_id,
                user_id=t.user_id,
                instance_id=t.instance_id,
                checked_in_at=ensure_utc(t.checked_in_at) if t.checked_in_at else None,
            )
            for t in checked
        ],
    )
