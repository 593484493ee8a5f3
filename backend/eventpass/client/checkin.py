"""Check-in processor — validates a scanned payload and checks the ticket in.

Validation order, first failure wins: MALFORMED_QR, INVALID_TICKET_QR,
WRONG_EVENT, then the server's token and state checks. A repeat scan of an
already checked-in ticket is reported as a result carrying the original
check-in time, not as a failure.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

import pydantic

from eventpass.client.api import EventPassClient
from eventpass.client.errors import (
    AlreadyCheckedInError,
    EventPassError,
    InvalidTicketQRError,
    MalformedQRError,
    WrongEventError,
)
from eventpass.client.notifications import NotificationBus
from eventpass.schemas.ticket import QR_TYPE, QRPayload, UserData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInResult:
    ticket_id: str
    checked_in_at: Optional[datetime]
    user_data: Optional[UserData] = None
    instance_id: Optional[str] = None
    already_checked_in: bool = False


def parse_payload(raw: Union[str, bytes, dict[str, Any]]) -> QRPayload:
    """Parse scanned data into a structurally valid ``QRPayload``."""
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError:
            raise MalformedQRError()
    if not isinstance(data, dict):
        raise MalformedQRError()
    try:
        payload = QRPayload.model_validate(data)
    except pydantic.ValidationError:
        raise MalformedQRError()

    missing = payload.missing_fields()
    if missing:
        raise InvalidTicketQRError(f"QR code is missing: {', '.join(missing)}")
    if data.get("type") != QR_TYPE:
        raise InvalidTicketQRError("QR code is not an event ticket")
    return payload


class CheckInProcessor:
    def __init__(self, api: EventPassClient, bus: Optional[NotificationBus] = None):
        self.api = api
        self.bus = bus or NotificationBus()

    async def check_in(self, raw: Union[str, bytes, dict[str, Any]], scanning_event_id: str) -> CheckInResult:
        try:
            payload = parse_payload(raw)
            if payload.event_id != scanning_event_id:
                raise WrongEventError()
            response = await self.api.check_in(scanning_event_id, payload)
        except AlreadyCheckedInError as e:
            logger.info("Ticket %s was already checked in at %s", e.ticket_id, e.checked_in_at)
            self.bus.info("Already checked in", e.message)
            return CheckInResult(
                ticket_id=e.ticket_id or payload.ticket_id,
                checked_in_at=e.checked_in_at,
                user_data=e.user_data,
                already_checked_in=True,
            )
        except EventPassError as e:
            self.bus.report("Check-in failed", e)
            raise

        name = response.user_data.display_name if response.user_data else "Attendee"
        self.bus.success("Checked in", f"{name} is checked in")
        logger.info("Checked in ticket %s for event %s", response.ticket_id, scanning_event_id)
        return CheckInResult(
            ticket_id=response.ticket_id,
            checked_in_at=response.checked_in_at,
            user_data=response.user_data,
            instance_id=response.instance_id,
        )
