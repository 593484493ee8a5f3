"""Registration payment-status route."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from eventpass.database import get_db
from eventpass.schemas.payment import PaymentStatusResponse
from eventpass.services import payment_service
from eventpass.services.payment_provider import PaymentProvider, get_payment_provider

router = APIRouter()


@router.get("/{event_id}/{registration_id}/payment-status", response_model=PaymentStatusResponse)
def registration_payment_status(
    event_id: str,
    registration_id: str,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Registration payment status, verified with the provider while pending."""
    return payment_service.registration_payment_status(db, provider, event_id, registration_id, actor_user_id)
