from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .emails import pick_locale
from .errors import (
    AlreadyRegistered, CheckoutFailed, DomainRestricted, InvalidEmail,
    UniflowError,
)
from .fulfillment import (
    Buyer, FulfillmentEngine, FulfillmentOrder, SOURCE_FREE,
)
from .helpers import (
    email_domain, is_valid_email, normalize_email, now_ms, now_ts,
    sanitize_name,
)
from .model.attendees import AttendeeStore
from .payments import PaymentAdapter, SessionRequest
from .pricing import GENERAL_ADMISSION, PriceResolver, Quote

logger = structlog.get_logger(__name__)

Sessions = Callable[[], AsyncContextManager[AsyncSession]]

# Stripe fills this in on the success redirect; MockPay does the same
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class RegistrationRequest:
    event_id: str
    email: str
    ticket_id: Optional[str] = None
    name: str = ""
    surname: str = ""
    locale: str = "en"


@dataclass(frozen=True)
class RegistrationOutcome:
    redirect_url: str
    fulfilled: bool = False
    session_id: Optional[str] = None
    attendee_id: Optional[str] = None

    def to_json(self) -> Dict[str, object]:
        out: Dict[str, object] = {"url": self.redirect_url}
        if self.fulfilled:
            out["fulfilled"] = True
        if self.session_id:
            out["sessionId"] = self.session_id
        return out


class RegistrationHandler:
    def __init__(self, *, resolver: PriceResolver, engine: FulfillmentEngine,
                 adapter: PaymentAdapter, sessions: Sessions, app_url: str,
                 session_ttl_seconds: int = 30 * 60) -> None:
        self.resolver = resolver
        self.engine = engine
        self.adapter = adapter
        self.sessions = sessions
        self.app_url = app_url.rstrip("/")
        self.session_ttl_seconds = session_ttl_seconds

    async def register(self, req: RegistrationRequest) -> RegistrationOutcome:
        try:
            return await self._register(req)
        except UniflowError as e:
            if not e.user_facing:
                logger.error(
                    "registration_misconfigured",
                    event_id=req.event_id,
                    kind=e.kind.value,
                    detail=e.detail,
                )
            raise
        except Exception as e:
            logger.exception(
                "checkout_failed", event_id=req.event_id, error=str(e)
            )
            raise CheckoutFailed(str(e)) from e

    async def _register(self, req: RegistrationRequest) -> RegistrationOutcome:
        # 1) address shape
        if not is_valid_email(req.email):
            raise InvalidEmail()

        # 2) authoritative price and eligibility
        quote = await self.resolver.resolve(req.event_id, req.ticket_id)
        event = quote.event

        # 3) restricted audiences
        if event.email_domain and email_domain(req.email) != event.email_domain:
            raise DomainRestricted(event.email_domain)

        # 4) one completed registration per (event, email); the check and
        # the later write are not atomic, a near-simultaneous duplicate
        # can slip through
        email = normalize_email(req.email)
        async with self.sessions() as db:
            if await AttendeeStore(db).has_completed(event.id, email):
                raise AlreadyRegistered()

        # 5) bounded, markup-free names
        buyer = Buyer(
            name=sanitize_name(req.name),
            surname=sanitize_name(req.surname),
            email=email,
            locale=pick_locale(req.locale),
        )

        # 6) free -> fulfill now, paid -> hosted payment page
        if quote.is_free:
            return await self._fulfill_free(quote, buyer)
        return await self._start_payment(quote, buyer)

    def _success_url(self, locale: str) -> str:
        return (f"{self.app_url}/success?lang={locale}"
                f"&session_id={SESSION_ID_PLACEHOLDER}")

    async def _fulfill_free(
            self, quote: Quote, buyer: Buyer) -> RegistrationOutcome:
        # unique per request, not per millisecond
        key = f"free_{quote.event.id}_{now_ms()}_{uuid.uuid4().hex[:12]}"
        result = await self.engine.fulfill(FulfillmentOrder(
            event_id=quote.event.id,
            idempotency_key=key,
            buyer=buyer,
            tier_id=quote.tier_id,
            tier_name=quote.tier_name,
            tier_includes=quote.tier_includes,
            amount_cents=0,
            currency=quote.currency,
            source=SOURCE_FREE,
        ))
        return RegistrationOutcome(
            redirect_url=self._success_url(buyer.locale).replace(
                SESSION_ID_PLACEHOLDER, key
            ),
            fulfilled=True,
            session_id=key,
            attendee_id=result.attendee_id,
        )

    async def _start_payment(
            self, quote: Quote, buyer: Buyer) -> RegistrationOutcome:
        event = quote.event
        product_name = event.title
        if quote.tier_name and quote.tier_name != GENERAL_ADMISSION:
            product_name = f"{event.title} - {quote.tier_name}"

        session = await self.adapter.create_session(SessionRequest(
            amount_cents=quote.amount_cents,
            currency=quote.currency,
            customer_email=buyer.email,
            product_name=product_name,
            description=f"Registration for {event.title}",
            success_url=self._success_url(buyer.locale),
            cancel_url=f"{self.app_url}/e/{event.slug}",
            expires_at=now_ts() + self.session_ttl_seconds,
            locale=buyer.locale,
            # echoed back verbatim in the completion callback
            metadata={
                "eventId": event.id,
                "ticketId": quote.tier_id,
                "ticketName": quote.tier_name,
                "customerName": buyer.name,
                "customerSurname": buyer.surname,
                "customerEmail": buyer.email,
                "locale": buyer.locale,
            },
        ))
        logger.info(
            "payment_session_created",
            provider=self.adapter.name,
            session_id=session["payment_session_id"],
            event_id=event.id,
            ticket_id=quote.tier_id,
            amount_cents=quote.amount_cents,
            email=buyer.email,
        )
        return RegistrationOutcome(
            redirect_url=session["redirect_url"],
            session_id=session["payment_session_id"],
        )
