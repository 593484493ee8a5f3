"""Client-side error taxonomy.

Every failure surfaced to the user carries an ``ErrorCode``. The code decides
whether the UI offers a retry and which follow-up action it points at.
Validation and ownership errors are raised before any request is made;
everything that comes back from the server is mapped onto the same codes by
``error_from_response``.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import httpx

from eventpass.schemas.ticket import UserData


class UserAction(str, Enum):
    """What the user is pointed at after a failure."""

    RETRY = "retry"
    GO_BACK = "go_back"
    CONTACT_ORGANIZER = "contact_organizer"


class ErrorCode(str, Enum):
    """Error codes shared with the API's ``detail.code`` field."""

    VALIDATION = "VALIDATION"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    WRONG_EVENT = "WRONG_EVENT"
    MALFORMED_QR = "MALFORMED_QR"
    INVALID_TICKET_QR = "INVALID_TICKET_QR"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    PAYMENT_ABANDONED = "PAYMENT_ABANDONED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"
    NETWORK = "NETWORK"
    NOT_OWNED = "NOT_OWNED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    TICKET_NOT_ACTIVE = "TICKET_NOT_ACTIVE"

    @property
    def retryable(self) -> bool:
        # A checked-in ticket is final: the organizer has to intervene.
        return self is not ErrorCode.ALREADY_CHECKED_IN

    @property
    def user_action(self) -> UserAction:
        if self is ErrorCode.ALREADY_CHECKED_IN:
            return UserAction.CONTACT_ORGANIZER
        if self in (ErrorCode.WRONG_EVENT, ErrorCode.NOT_OWNED, ErrorCode.NOT_FOUND):
            return UserAction.GO_BACK
        return UserAction.RETRY


@dataclass(frozen=True)
class EventPassError(Exception):
    """Base client error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    @property
    def user_action(self) -> UserAction:
        return self.code.user_action


class ValidationError(EventPassError):
    """Raised when required input is missing or inconsistent."""

    def __init__(self, message: str = "Missing required fields") -> None:
        super().__init__(code=ErrorCode.VALIDATION, message=message)


class CapacityExceededError(EventPassError):
    """Raised when the event or the selected instance is full."""

    def __init__(
        self,
        message: str = "This event is fully booked",
        attendee_count: Optional[int] = None,
        max_attendees: Optional[int] = None,
    ) -> None:
        super().__init__(code=ErrorCode.CAPACITY_EXCEEDED, message=message)
        self.attendee_count = attendee_count
        self.max_attendees = max_attendees


class WrongEventError(EventPassError):
    """Raised when a scanned ticket belongs to a different event."""

    def __init__(self, message: str = "This ticket is for a different event") -> None:
        super().__init__(code=ErrorCode.WRONG_EVENT, message=message)


class MalformedQRError(EventPassError):
    """Raised when a scanned code is not a ticket payload at all."""

    def __init__(self, message: str = "QR code could not be read") -> None:
        super().__init__(code=ErrorCode.MALFORMED_QR, message=message)


class InvalidTicketQRError(EventPassError):
    """Raised when a ticket payload is incomplete, tampered with or expired."""

    def __init__(self, message: str = "QR code is not a valid ticket") -> None:
        super().__init__(code=ErrorCode.INVALID_TICKET_QR, message=message)


class AlreadyCheckedInError(EventPassError):
    """Raised when a ticket has already been used at the door."""

    def __init__(
        self,
        message: str = "Ticket has already been checked in",
        checked_in_at: Optional[datetime] = None,
        ticket_id: Optional[str] = None,
        user_data: Optional[UserData] = None,
    ) -> None:
        super().__init__(code=ErrorCode.ALREADY_CHECKED_IN, message=message)
        self.checked_in_at = checked_in_at
        self.ticket_id = ticket_id
        self.user_data = user_data


class PaymentError(EventPassError):
    """Raised for abandoned, failed and timed-out payments."""


class NetworkError(EventPassError):
    """Raised on transport failures and unreadable responses."""

    def __init__(self, message: str = "Network error, please try again", status_code: Optional[int] = None) -> None:
        super().__init__(code=ErrorCode.NETWORK, message=message)
        self.status_code = status_code


class NotOwnedError(EventPassError):
    """Raised when a ticket or registration belongs to another user."""

    def __init__(self, message: str = "This ticket belongs to another user") -> None:
        super().__init__(code=ErrorCode.NOT_OWNED, message=message)


class NotFoundError(EventPassError):
    """Raised when the requested resource does not exist."""

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message=message)


class AlreadyRegisteredError(EventPassError):
    """Raised when the user already holds a ticket for the selection."""

    def __init__(self, message: str = "You are already registered") -> None:
        super().__init__(code=ErrorCode.ALREADY_REGISTERED, message=message)


class TicketNotActiveError(EventPassError):
    """Raised when a QR is requested for a pending or cancelled ticket."""

    def __init__(self, message: str = "Ticket is not active") -> None:
        super().__init__(code=ErrorCode.TICKET_NOT_ACTIVE, message=message)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _from_detail(code: ErrorCode, message: str, detail: dict) -> EventPassError:
    if code is ErrorCode.CAPACITY_EXCEEDED:
        return CapacityExceededError(
            message,
            attendee_count=detail.get("attendeeCount"),
            max_attendees=detail.get("maxAttendees"),
        )
    if code is ErrorCode.ALREADY_CHECKED_IN:
        user_data = detail.get("userData")
        return AlreadyCheckedInError(
            message,
            checked_in_at=_parse_timestamp(detail.get("checkedInAt")),
            ticket_id=detail.get("ticketId"),
            user_data=UserData.model_validate(user_data) if user_data else None,
        )
    if code in (ErrorCode.PAYMENT_ABANDONED, ErrorCode.PAYMENT_FAILED, ErrorCode.PAYMENT_TIMEOUT):
        return PaymentError(code=code, message=message)
    if code is ErrorCode.NETWORK:
        return NetworkError(message)
    factory = {
        ErrorCode.VALIDATION: ValidationError,
        ErrorCode.WRONG_EVENT: WrongEventError,
        ErrorCode.MALFORMED_QR: MalformedQRError,
        ErrorCode.INVALID_TICKET_QR: InvalidTicketQRError,
        ErrorCode.NOT_OWNED: NotOwnedError,
        ErrorCode.NOT_FOUND: NotFoundError,
        ErrorCode.ALREADY_REGISTERED: AlreadyRegisteredError,
        ErrorCode.TICKET_NOT_ACTIVE: TicketNotActiveError,
    }[code]
    return factory(message)


def error_from_response(response: httpx.Response) -> EventPassError:
    """Map an HTTP error response onto the taxonomy.

    Bodies carrying ``detail.code`` keep their code; request validation
    failures (422) become VALIDATION; anything else is reported as NETWORK.
    """
    try:
        body = response.json()
    except ValueError:
        return NetworkError(f"Unexpected response ({response.status_code})", status_code=response.status_code)

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        first = detail[0] if detail else {}
        return ValidationError(first.get("msg", "Invalid request") if isinstance(first, dict) else "Invalid request")
    if isinstance(detail, dict):
        message = detail.get("message") or "Request failed"
        try:
            code = ErrorCode(detail.get("code"))
        except ValueError:
            return NetworkError(message, status_code=response.status_code)
        return _from_detail(code, message, detail)
    return NetworkError(f"Unexpected response ({response.status_code})", status_code=response.status_code)
