"""Ticket (registration) ORM model."""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from eventpass.database import Base
from eventpass.models.enums import TicketStatus


class Ticket(Base):
    __tablename__ = "tickets"

    ticket_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False, index=True)
    instance_id = Column(String(80), nullable=True, index=True)
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False, index=True)
    status = Column(SAEnum(TicketStatus), nullable=False, default=TicketStatus.registered)
    special_requests = Column(String(1000), nullable=True)
    payment_reference = Column(String(64), nullable=True)
    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(String(36), ForeignKey("users.user_id"), nullable=True)
    qr_generated = Column(Boolean, nullable=False, default=False)
    verification_token = Column(String(512), nullable=True)
    token_issued_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="tickets")
