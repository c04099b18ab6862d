"""Authoritative price and eligibility for one event/tier.

Prices always come from the stored event, never from the caller.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import AsyncContextManager, Callable, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    Cancelled, EventEnded, InvalidPrice, Misconfigured, NotFound,
    TicketNotFound,
)
from .helpers import to_cents, to_decimal, utcnow
from .model.events import Event, EventStore, TicketTier

logger = structlog.get_logger(__name__)

GENERAL_ADMISSION = "General Admission"
DEFAULT_TICKET_ID = "default"

Sessions = Callable[[], AsyncContextManager[AsyncSession]]
Clock = Callable[[], datetime]


@dataclass(frozen=True)
class Quote:
    event: Event
    price: Decimal
    currency: str
    tier_id: str
    tier_name: str
    tier_includes: Tuple[str, ...] = ()

    @property
    def amount_cents(self) -> int:
        return to_cents(self.price)

    @property
    def is_free(self) -> bool:
        return self.amount_cents == 0


def select_tier(event: Event, ticket_id: Optional[str]) -> TicketTier:
    """Pick the tier a registration refers to.

    Events without a tiers list are legacy single-price events and get a
    synthetic "General Admission" tier built from their flat price.
    """
    if not event.tiers:
        if event.tier_docs:
            raise Misconfigured(
                f"event {event.id} has {event.tier_docs} unusable ticket tiers"
            )
        if event.legacy_price is None:
            raise Misconfigured(f"event {event.id} has no ticket tiers")
        if ticket_id not in (None, "", DEFAULT_TICKET_ID):
            raise TicketNotFound(
                f"ticket {ticket_id!r} not found on event {event.id}"
            )
        return TicketTier(
            id=DEFAULT_TICKET_ID,
            name=GENERAL_ADMISSION,
            price=event.legacy_price,
        )
    if not ticket_id:
        return event.tiers[0]
    tier = event.find_tier(ticket_id)
    if tier is None:
        raise TicketNotFound(
            f"ticket {ticket_id!r} not found on event {event.id}"
        )
    return tier


class PriceResolver:
    def __init__(self, sessions: Sessions, *, currency: str = "eur",
                 clock: Clock = utcnow) -> None:
        self.sessions = sessions
        self.currency = currency
        self.clock = clock

    async def load_event(self, event_id: str) -> Event:
        async with self.sessions() as db:
            events = EventStore(db)
            event = await events.get(event_id)
            if event is None:
                # public URLs carry the slug
                event = await events.get_by_slug(event_id)
        if event is None:
            raise NotFound(event_id)
        return event

    async def resolve(self, event_id: str, ticket_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> Quote:
        event = await self.load_event(event_id)
        return self.quote(event, ticket_id, now)

    def quote(self, event: Event, ticket_id: Optional[str] = None,
              now: Optional[datetime] = None) -> Quote:
        if event.is_cancelled:
            raise Cancelled(f"event {event.id} is cancelled")

        if event.starts_at is None:
            logger.error(
                "event_date_unparseable",
                event_id=event.id,
                raw_date=repr(event.raw_date),
            )
            raise Misconfigured(f"event {event.id} has an unparseable date")
        now = now or self.clock()
        if event.starts_at < now:
            raise EventEnded(f"event {event.id} started at {event.starts_at}")

        tier = select_tier(event, ticket_id)

        price = to_decimal(tier.price)
        if price is None or price < 0:
            raise InvalidPrice(
                f"tier {tier.id} of event {event.id} has price {tier.price!r}"
            )

        return Quote(
            event=event,
            price=price,
            currency=self.currency,
            tier_id=tier.id,
            tier_name=tier.name or GENERAL_ADMISSION,
            tier_includes=tier.includes,
        )
