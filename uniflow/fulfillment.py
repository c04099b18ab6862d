"""Idempotent fulfillment of a registration.

Shared by the free-registration path and the verified payment callback.
The attendee row is the entitlement and the only write that must never
be lost. The customer aggregate, event counters and notifications run
afterwards, each on its own, and their failures are logged with enough
context to replay by hand.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .emails import ConfirmationDetails
from .errors import NotFound
from .helpers import now_ts
from .model.attendees import AttendeeStore
from .model.customers import CustomerStore
from .model.events import Event, EventStore
from .model.orm import Attendee, PAYMENT_COMPLETED
from .notifications import NotificationDispatcher

logger = structlog.get_logger(__name__)

Sessions = Callable[[], AsyncContextManager[AsyncSession]]

SOURCE_FREE = "free"
SOURCE_PAYMENT = "payment"


@dataclass(frozen=True)
class Buyer:
    name: str
    surname: str
    # normalized (trimmed, lower-cased)
    email: str
    locale: str = "en"


@dataclass(frozen=True)
class FulfillmentOrder:
    event_id: str
    idempotency_key: str
    buyer: Buyer
    tier_id: str
    tier_name: str
    amount_cents: int
    currency: str
    source: str
    tier_includes: Tuple[str, ...] = ()
    payment_intent: Optional[str] = None


@dataclass(frozen=True)
class FulfillmentResult:
    attendee_id: str
    created: bool


class FulfillmentEngine:
    def __init__(self, sessions: Sessions,
                 notifier: NotificationDispatcher) -> None:
        self.sessions = sessions
        self.notifier = notifier

    async def fulfill(self, order: FulfillmentOrder) -> FulfillmentResult:
        async with self.sessions() as db:
            attendees = AttendeeStore(db)

            # 1) replays return the first result and write nothing
            existing = await attendees.get_by_session(order.idempotency_key)
            if existing is not None:
                logger.info(
                    "fulfillment_replayed",
                    session_id=order.idempotency_key,
                    attendee_id=existing.id,
                )
                return FulfillmentResult(existing.id, False)

            # 2) current event state, not whatever the caller saw
            event = await EventStore(db).get(order.event_id)
            if event is None:
                raise NotFound(order.event_id)

            # 3) the entitlement
            attendee, created = await attendees.insert(
                self._attendee(order, event)
            )
            if not created:
                logger.warning(
                    "fulfillment_race_lost",
                    session_id=order.idempotency_key,
                    attendee_id=attendee.id,
                )
                return FulfillmentResult(attendee.id, False)
            logger.info(
                "attendee_recorded",
                attendee_id=attendee.id,
                event_id=order.event_id,
                session_id=order.idempotency_key,
                email=order.buyer.email,
                amount_cents=order.amount_cents,
                currency=order.currency,
                source=order.source,
            )

            # 4) + 5) best effort, never undo step 3
            await self._record_customer(db, order, attendee)
            await self._bump_counters(db, order, attendee)

        # 6) after the session is closed, bounded by the grace period
        await self._notify(order, event, attendee)
        return FulfillmentResult(attendee.id, True)

    def _attendee(self, order: FulfillmentOrder, event: Event) -> Attendee:
        tier = event.find_tier(order.tier_id)
        includes = tier.includes if tier is not None else order.tier_includes
        ts = now_ts()
        return Attendee(
            id=uuid.uuid4().hex,
            event_id=order.event_id,
            event_title=event.title,
            name=order.buyer.name,
            surname=order.buyer.surname,
            email=order.buyer.email,
            locale=order.buyer.locale,
            payment_status=PAYMENT_COMPLETED,
            payment_session_id=order.idempotency_key,
            payment_intent=order.payment_intent,
            ticket_id=order.tier_id,
            ticket_name=order.tier_name,
            ticket_includes=list(includes),
            amount_cents=order.amount_cents,
            currency=order.currency,
            created_at=ts,
            processed_at=ts,
        )

    async def _record_customer(self, db: AsyncSession,
                               order: FulfillmentOrder,
                               attendee: Attendee) -> None:
        try:
            await CustomerStore(db).record_purchase(
                email=order.buyer.email,
                name=order.buyer.name,
                surname=order.buyer.surname,
                event_id=order.event_id,
                amount_cents=order.amount_cents,
                ts=attendee.created_at,
            )
        except Exception as e:
            logger.error(
                "customer_upsert_failed",
                attendee_id=attendee.id,
                event_id=order.event_id,
                email=order.buyer.email,
                amount_cents=order.amount_cents,
                error=str(e),
            )

    async def _bump_counters(self, db: AsyncSession,
                             order: FulfillmentOrder,
                             attendee: Attendee) -> None:
        # revenue only counts money the provider actually moved
        revenue = order.amount_cents if order.source == SOURCE_PAYMENT else 0
        try:
            await EventStore(db).increment_counters(
                order.event_id, attendees=1, revenue_cents=revenue
            )
        except Exception as e:
            logger.error(
                "event_counter_update_failed",
                attendee_id=attendee.id,
                event_id=order.event_id,
                revenue_cents=revenue,
                error=str(e),
            )

    async def _notify(self, order: FulfillmentOrder, event: Event,
                      attendee: Attendee) -> None:
        details = ConfirmationDetails(
            event_id=event.id,
            event_title=event.title,
            starts_at=event.starts_at,
            event_language=event.language,
            ticket_name=order.tier_name,
            customer_name=order.buyer.name,
            customer_surname=order.buyer.surname,
            meeting_link=event.meeting_link,
            locale=order.buyer.locale,
        )
        try:
            await self.notifier.dispatch(order.buyer.email, details)
        except Exception as e:
            logger.error(
                "notification_failed",
                attendee_id=attendee.id,
                event_id=order.event_id,
                email=order.buyer.email,
                error=str(e),
            )
