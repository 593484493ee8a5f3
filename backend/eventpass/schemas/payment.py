"""Pydantic schemas for payment status, force-verify and provider webhooks."""
from typing import Literal, Optional

from eventpass.models.enums import EventStatus, PaymentStatus, PaymentType
from eventpass.schemas.common import CamelModel

VerificationStatus = Literal["success", "pending", "abandoned", "failed"]


class EventStatusOut(CamelModel):
    event_id: str
    status: EventStatus
    payment_url: Optional[str] = None


class PaymentStatusResponse(CamelModel):
    success: bool = True
    payment_type: PaymentType
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    payment_url: Optional[str] = None
    message: Optional[str] = None
    event: Optional[EventStatusOut] = None


class Verification(CamelModel):
    status: VerificationStatus
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "success"


class ForceVerifyResponse(CamelModel):
    success: bool = True
    reference: str
    verification: Verification
