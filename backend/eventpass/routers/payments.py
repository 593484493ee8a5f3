"""Payment API routes — direct provider verification and provider webhooks."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from eventpass.database import get_db
from eventpass.schemas.payment import ForceVerifyResponse
from eventpass.services import payment_service
from eventpass.services.payment_provider import PaymentProvider, get_payment_provider

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Provider push notification; settles the referenced session."""
    raw_body = await request.body()
    session = await run_in_threadpool(payment_service.handle_webhook, db, raw_body, x_paystack_signature)
    return {"status": "ok", "settled": session.reference if session else None}


@router.post("/{reference}/force-verify", response_model=ForceVerifyResponse)
def force_verify(
    reference: str,
    actor_user_id: str = Query(...),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Ask the provider directly, bypassing webhook lag."""
    verification = payment_service.force_verify(db, provider, reference, actor_user_id)
    logger.info("Force verify for %s -> %s", reference, verification.status)
    return ForceVerifyResponse(reference=reference, verification=verification)


@router.get("/callback")
def payment_callback(
    reference: str = Query(...),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Landing point after the hosted checkout; verifies a pending payment before reporting."""
    session = payment_service.callback_status(db, provider, reference)
    return {"reference": session.reference, "status": session.status.value}
