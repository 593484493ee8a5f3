"""Event ORM model.

``recurrence_pattern`` is stored as JSON exactly as it arrives on the wire
(camelCase keys); ``eventpass.schemas.recurrence`` parses it into the tagged
pattern types.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Integer, Boolean, Numeric, JSON, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from eventpass.database import Base
from eventpass.models.enums import EventStatus, EventType


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organizer_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=True)
    location = Column(String(500), nullable=True)
    event_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(JSON, nullable=True)
    max_attendees = Column(Integer, nullable=False, default=0)  # 0 = unlimited
    current_attendees = Column(Integer, nullable=False, default=0)
    status = Column(SAEnum(EventStatus), nullable=False, default=EventStatus.draft)
    event_type = Column(SAEnum(EventType), nullable=False, default=EventType.free)
    ticket_price = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    tickets = relationship("Ticket", back_populates="event", cascade="all, delete-orphan")
