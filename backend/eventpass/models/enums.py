"""Status enums shared by the ORM models and the wire schemas."""
import enum


class EventStatus(str, enum.Enum):
    draft = "draft"
    pending_payment = "pending_payment"
    published = "published"
    cancelled = "cancelled"


class EventType(str, enum.Enum):
    free = "free"
    paid = "paid"


class TicketStatus(str, enum.Enum):
    pending_payment = "pending_payment"
    registered = "registered"
    cancelled = "cancelled"


class PaymentType(str, enum.Enum):
    event_publishing = "event_publishing"
    event_registration = "event_registration"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    abandoned = "abandoned"
    failed = "failed"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.completed, PaymentStatus.abandoned, PaymentStatus.failed}
)
