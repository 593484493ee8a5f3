"""Pydantic schemas for registrations, tickets, QR payloads and check-in."""
import json
from datetime import datetime
from typing import Optional

from eventpass.models.enums import TicketStatus
from eventpass.schemas.common import CamelModel

QR_TYPE = "event_checkin"
QR_VERSION = "1.0"
QR_REQUIRED_FIELDS = ("event_id", "user_id", "ticket_id", "verification_token", "type")


class RegisterRequest(CamelModel):
    instance_id: Optional[str] = None
    special_requests: str = ""


class UnregisterRequest(CamelModel):
    instance_id: Optional[str] = None


class RegistrationOut(CamelModel):
    ticket_id: str
    event_id: str
    instance_id: Optional[str] = None
    user_id: str
    status: TicketStatus
    payment_reference: Optional[str] = None
    checked_in: bool = False
    checked_in_at: Optional[datetime] = None
    qr_generated: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status != TicketStatus.cancelled


class RegisterResponse(CamelModel):
    success: bool = True
    registration: RegistrationOut
    payment_required: bool = False
    payment_url: Optional[str] = None
    payment_reference: Optional[str] = None


class UnregisterResponse(CamelModel):
    success: bool = True
    message: str
    was_pending_payment: bool = False


class QRTokenResponse(CamelModel):
    success: bool = True
    ticket_id: str
    verification_token: str
    expires_at: datetime


class QRPayload(CamelModel):
    """The JSON document encoded into a ticket's scannable code."""

    event_id: str = ""
    user_id: str = ""
    ticket_id: str = ""
    verification_token: str = ""
    timestamp: int = 0  # ms since epoch
    type: str = QR_TYPE
    version: str = QR_VERSION

    def missing_fields(self) -> list[str]:
        return [name for name in QR_REQUIRED_FIELDS if not getattr(self, name)]

    def is_structurally_valid(self) -> bool:
        return not self.missing_fields() and self.type == QR_TYPE

    def encode(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))


class UserData(CamelModel):
    user_id: str
    display_name: str
    email: Optional[str] = None


class CheckInResponse(CamelModel):
    success: bool = True
    ticket_id: str
    instance_id: Optional[str] = None
    user_data: Optional[UserData] = None
    checked_in_at: datetime


class CheckInDetail(CamelModel):
    ticket_id: str
    user_id: str
    instance_id: Optional[str] = None
    checked_in_at: Optional[datetime] = None


class CheckInStats(CamelModel):
    event_id: str
    total_tickets: int
    checked_in_count: int
    pending_check_in: int
    check_in_rate: float
    check_in_details: list[CheckInDetail] = []
