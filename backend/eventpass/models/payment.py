"""PaymentSession ORM model — one hosted-checkout attempt."""
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from eventpass.database import Base
from eventpass.models.enums import PaymentStatus, PaymentType


class PaymentSession(Base):
    __tablename__ = "payment_sessions"

    reference = Column(String(64), primary_key=True)
    payment_type = Column(SAEnum(PaymentType), nullable=False)
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False)
    target_id = Column(String(36), nullable=False)  # event_id or ticket_id
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(SAEnum(PaymentStatus), nullable=False, default=PaymentStatus.pending)
    payment_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    settled_at = Column(DateTime(timezone=True), nullable=True)
