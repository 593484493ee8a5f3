"""Ticket API routes — the caller's tickets and QR token issuance."""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from eventpass.database import get_db
from eventpass.schemas.ticket import QRTokenResponse, RegistrationOut
from eventpass.services import ticket_service

router = APIRouter()


@router.get("/", response_model=list[RegistrationOut])
def list_tickets(
    actor_user_id: str = Query(...),
    event_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """The caller's tickets, optionally for one event."""
    return ticket_service.list_tickets(db, actor_user_id, event_id=event_id)


@router.post("/{ticket_id}/qr", response_model=QRTokenResponse)
def issue_qr(
    ticket_id: str,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
):
    """Mint a fresh verification token; the previous one stops validating."""
    ticket = ticket_service.issue_qr_token(db, ticket_id, actor_user_id)
    return QRTokenResponse(
        ticket_id=ticket.ticket_id,
        verification_token=ticket.verification_token,
        expires_at=ticket_service.token_expires_at(ticket),
    )
