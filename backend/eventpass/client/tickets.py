"""Ticket wallet — the acting user's tickets and their displayable QR codes.

Tokens come from the server only. Refreshing a QR asks for a new token,
which implicitly invalidates the previous one. A payload that fails the
structural check is never handed out for display.
"""
import logging
import time
from datetime import datetime
from typing import Optional

from eventpass.client.api import EventPassClient
from eventpass.client.errors import EventPassError, InvalidTicketQRError, NotOwnedError, ValidationError
from eventpass.client.notifications import NotificationBus
from eventpass.schemas.ticket import QRPayload, RegistrationOut

logger = logging.getLogger(__name__)


class TicketWallet:
    def __init__(self, api: EventPassClient, bus: Optional[NotificationBus] = None):
        self.api = api
        self.bus = bus or NotificationBus()
        self.tickets: list[RegistrationOut] = []
        self.selected_ticket_id: Optional[str] = None
        self.qr: Optional[QRPayload] = None
        self.qr_expires_at: Optional[datetime] = None

    async def load(self, event_id: Optional[str] = None) -> list[RegistrationOut]:
        self.tickets = [t for t in await self.api.list_tickets(event_id) if t.is_active]
        if self.selected_ticket_id and self.find(self.selected_ticket_id) is None:
            self._clear_qr()
            self.selected_ticket_id = None
        return self.tickets

    def find(self, ticket_id: str) -> Optional[RegistrationOut]:
        return next((t for t in self.tickets if t.ticket_id == ticket_id), None)

    def select(self, ticket_id: str) -> RegistrationOut:
        """Switch the displayed ticket; any QR shown for another ticket is cleared."""
        ticket = self.find(ticket_id)
        if ticket is None:
            raise NotOwnedError()
        if ticket_id != self.selected_ticket_id:
            self._clear_qr()
            self.selected_ticket_id = ticket_id
        return ticket

    def _clear_qr(self) -> None:
        self.qr = None
        self.qr_expires_at = None

    async def _owned_ticket(self, ticket_id: str) -> RegistrationOut:
        ticket = self.find(ticket_id)
        if ticket is None:
            await self.load()
            ticket = self.find(ticket_id)
        if ticket is None or ticket.user_id != self.api.user_id:
            raise NotOwnedError()
        return ticket

    async def issue_qr(self, ticket_id: Optional[str] = None) -> QRPayload:
        """Mint a fresh token for the ticket and build its scannable payload."""
        ticket_id = ticket_id or self.selected_ticket_id
        if not ticket_id:
            raise ValidationError("Select a ticket first")
        ticket = await self._owned_ticket(ticket_id)
        self.select(ticket_id)

        try:
            token = await self.api.issue_qr(ticket.ticket_id)
        except EventPassError as e:
            self.bus.report("Could not generate QR code", e)
            raise

        payload = QRPayload(
            event_id=ticket.event_id,
            user_id=ticket.user_id,
            ticket_id=ticket.ticket_id,
            verification_token=token.verification_token,
            timestamp=int(time.time() * 1000),
        )
        if not payload.is_structurally_valid():
            logger.error("Refusing to display QR for ticket %s, missing %s", ticket_id, payload.missing_fields())
            raise InvalidTicketQRError("Ticket data is incomplete")

        self.qr = payload
        self.qr_expires_at = token.expires_at
        logger.info("Issued QR for ticket %s", ticket_id)
        return payload

    async def refresh_qr(self) -> QRPayload:
        return await self.issue_qr(self.selected_ticket_id)
