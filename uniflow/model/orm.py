from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Index,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    JSON,
)

from ..helpers import from_cents


Base = declarative_base()

STATUS_DRAFT = "draft"
STATUS_PUBLISHED = "published"
STATUS_CANCELLED = "cancelled"

PAYMENT_COMPLETED = "completed"


# ----------------------------
# ORM models
# ----------------------------
class EventRecord(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True)
    slug = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")

    # document-shaped: ISO string, epoch seconds or {"seconds": n}
    date = Column(JSON, nullable=True)

    # draft | published | cancelled
    status = Column(String, nullable=False, default=STATUS_PUBLISHED)
    language = Column(String, nullable=False, default="en")
    email_domain = Column(String, nullable=True)

    # [{"id", "name", "price", "includes": [...]}, ...]
    tiers = Column(JSON, nullable=True)
    # legacy single-price events
    price = Column(Float, nullable=True)

    meeting_link = Column(String, nullable=True)
    feedback_form_url = Column(String, nullable=True)

    attendee_count = Column(Integer, nullable=False, default=0)
    total_revenue_cents = Column(Integer, nullable=False, default=0)
    thank_you_sent = Column(Boolean, nullable=False, default=False)
    thank_you_sent_at = Column(Float, nullable=True)


class Attendee(Base):
    __tablename__ = "attendees"
    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False)
    event_title = Column(String, nullable=False, default="")
    name = Column(String, nullable=False, default="")
    surname = Column(String, nullable=False, default="")
    email = Column(String, nullable=False)
    locale = Column(String, nullable=False, default="en")

    # always "completed" once written by fulfillment
    payment_status = Column(String, nullable=False, default=PAYMENT_COMPLETED)
    # idempotency key: provider session id or free_<eventId>_<ms>_<random>
    payment_session_id = Column(String, nullable=False, unique=True)
    payment_intent = Column(String, nullable=True)

    ticket_id = Column(String, nullable=False)
    ticket_name = Column(String, nullable=False)
    ticket_includes = Column(JSON, nullable=False, default=list)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="eur")

    created_at = Column(Float, nullable=False)
    processed_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("ix_attendees_event_email_status",
              "event_id", "email", "payment_status"),
    )

    @property
    def amount_paid(self):
        return from_cents(self.amount_cents)


class Customer(Base):
    __tablename__ = "customers"
    email = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")
    surname = Column(String, nullable=False, default="")
    total_spent_cents = Column(Integer, nullable=False, default=0)
    purchase_count = Column(Integer, nullable=False, default=0)
    events = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False)
    last_purchase_at = Column(Float, nullable=True)

    @property
    def total_spent(self):
        return from_cents(self.total_spent_cents)


class Promo(Base):
    __tablename__ = "promos"
    id = Column(String, primary_key=True)
    code = Column(String, nullable=False, unique=True)
    # percentage | fixed
    discount_type = Column(String, nullable=False)
    discount_value = Column(Float, nullable=False)
    event_id = Column(String, nullable=True)
    expires_at = Column(JSON, nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)


class MockPaymentSession(Base):
    __tablename__ = "mock_payment_sessions"
    psid = Column(String, primary_key=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    product_name = Column(String, nullable=False, default="")
    session_metadata = Column(JSON, nullable=False, default=dict)
    success_url = Column(String, nullable=False)
    cancel_url = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)
