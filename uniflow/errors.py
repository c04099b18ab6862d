"""Error kinds raised by the checkout and fulfillment pipeline.

Every error carries a user-safe ``public_message`` and the HTTP status it
maps to. Configuration errors keep their detail in ``str(err)`` for the
logs and only expose a generic message to callers.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    NOT_FOUND = "NOT_FOUND"
    CANCELLED = "CANCELLED"
    EVENT_ENDED = "EVENT_ENDED"
    MISCONFIGURED = "MISCONFIGURED"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    INVALID_PRICE = "INVALID_PRICE"
    INVALID_EMAIL = "INVALID_EMAIL"
    DOMAIN_RESTRICTED = "DOMAIN_RESTRICTED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    MISSING_SECRET = "MISSING_SECRET"
    MISSING_SIGNATURE = "MISSING_SIGNATURE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MALFORMED_CALLBACK = "MALFORMED_CALLBACK"
    CHECKOUT_FAILED = "CHECKOUT_FAILED"
    PROMO_NOT_FOUND = "PROMO_NOT_FOUND"
    PROMO_INACTIVE = "PROMO_INACTIVE"
    PROMO_EXPIRED = "PROMO_EXPIRED"
    PROMO_EXHAUSTED = "PROMO_EXHAUSTED"
    PROMO_NOT_APPLICABLE = "PROMO_NOT_APPLICABLE"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"


GENERIC_MESSAGE = "Something went wrong. Please try again later."


class UniflowError(Exception):
    kind: ErrorKind = ErrorKind.CHECKOUT_FAILED
    status_code: int = 500
    public_message: str = GENERIC_MESSAGE

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message

    @property
    def user_facing(self) -> bool:
        return self.status_code < 500


# --- resolution ---
class NotFound(UniflowError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    public_message = "Event not found"

    def __init__(self, event_id: str) -> None:
        super().__init__(f"event {event_id!r} does not exist")
        self.event_id = event_id


class Cancelled(UniflowError):
    kind = ErrorKind.CANCELLED
    status_code = 400
    public_message = "This event has been cancelled"


class EventEnded(UniflowError):
    kind = ErrorKind.EVENT_ENDED
    status_code = 400
    public_message = "This event has ended"


class Misconfigured(UniflowError):
    kind = ErrorKind.MISCONFIGURED
    status_code = 500


class TicketNotFound(UniflowError):
    kind = ErrorKind.TICKET_NOT_FOUND
    status_code = 400
    public_message = "This ticket is not available"


class InvalidPrice(UniflowError):
    kind = ErrorKind.INVALID_PRICE
    status_code = 500


# --- registration ---
class InvalidEmail(UniflowError):
    kind = ErrorKind.INVALID_EMAIL
    status_code = 400
    public_message = "Please provide a valid email address"


class DomainRestricted(UniflowError):
    kind = ErrorKind.DOMAIN_RESTRICTED
    status_code = 400

    def __init__(self, domain: str) -> None:
        self.public_message = f"Registration requires an @{domain} email address"
        super().__init__(self.public_message)
        self.domain = domain


class AlreadyRegistered(UniflowError):
    kind = ErrorKind.ALREADY_REGISTERED
    status_code = 400
    public_message = "You are already registered for this event"


class CheckoutFailed(UniflowError):
    kind = ErrorKind.CHECKOUT_FAILED
    status_code = 500
    public_message = "Failed to create checkout session"


# --- payment callback ---
class MissingSecret(UniflowError):
    kind = ErrorKind.MISSING_SECRET
    status_code = 500


class MissingSignature(UniflowError):
    kind = ErrorKind.MISSING_SIGNATURE
    status_code = 400
    public_message = "Bad request"


class InvalidSignature(UniflowError):
    kind = ErrorKind.INVALID_SIGNATURE
    status_code = 400
    public_message = "Bad request"


class MalformedCallback(UniflowError):
    kind = ErrorKind.MALFORMED_CALLBACK
    status_code = 400
    public_message = "Bad request"


# --- promo codes ---
class PromoNotFound(UniflowError):
    kind = ErrorKind.PROMO_NOT_FOUND
    status_code = 404
    public_message = "Invalid promo code"


class PromoInactive(UniflowError):
    kind = ErrorKind.PROMO_INACTIVE
    status_code = 400
    public_message = "This promo code is no longer active"


class PromoExpired(UniflowError):
    kind = ErrorKind.PROMO_EXPIRED
    status_code = 400
    public_message = "This promo code has expired"


class PromoExhausted(UniflowError):
    kind = ErrorKind.PROMO_EXHAUSTED
    status_code = 400
    public_message = "This promo code has reached its usage limit"


class PromoNotApplicable(UniflowError):
    kind = ErrorKind.PROMO_NOT_APPLICABLE
    status_code = 400
    public_message = "This promo code is not valid for this event"


# --- notifications (never surfaced) ---
class NotificationError(UniflowError):
    kind = ErrorKind.NOTIFICATION_FAILED
    status_code = 502
