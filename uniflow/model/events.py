from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, parse_instant
from .orm import EventRecord, STATUS_CANCELLED


@dataclass(frozen=True)
class TicketTier:
    id: str
    name: str
    # raw stored value, validated by the resolver
    price: Any
    includes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Event:
    id: str
    slug: str
    title: str
    status: str
    language: str
    # None when the stored date could not be parsed
    starts_at: Optional[datetime]
    tiers: Tuple[TicketTier, ...] = ()
    legacy_price: Any = None
    # entries in the stored tiers list, parseable or not
    tier_docs: int = 0
    description: str = ""
    email_domain: Optional[str] = None
    meeting_link: Optional[str] = None
    feedback_form_url: Optional[str] = None
    attendee_count: int = 0
    total_revenue_cents: int = 0
    thank_you_sent: bool = False
    raw_date: Any = field(default=None, repr=False)

    @property
    def is_cancelled(self) -> bool:
        return self.status == STATUS_CANCELLED

    def find_tier(self, ticket_id: Optional[str]) -> Optional[TicketTier]:
        for tier in self.tiers:
            if tier.id == ticket_id:
                return tier
        return None


def _tier_from_doc(doc: Any) -> Optional[TicketTier]:
    if not isinstance(doc, dict) or doc.get("id") is None:
        return None
    includes = doc.get("includes") or ()
    return TicketTier(
        id=str(doc["id"]),
        name=str(doc.get("name") or ""),
        price=doc.get("price"),
        includes=tuple(str(i) for i in includes),
    )


def event_from_record(rec: EventRecord) -> Event:
    docs = list(rec.tiers or ())
    tiers = tuple(t for t in (_tier_from_doc(d) for d in docs) if t)
    return Event(
        id=rec.id,
        slug=rec.slug,
        title=rec.title,
        description=rec.description or "",
        status=rec.status,
        language=rec.language or "en",
        starts_at=parse_instant(rec.date),
        raw_date=rec.date,
        tiers=tiers,
        tier_docs=len(docs),
        legacy_price=rec.price,
        email_domain=(rec.email_domain or "").strip().lower() or None,
        meeting_link=rec.meeting_link,
        feedback_form_url=rec.feedback_form_url,
        attendee_count=rec.attendee_count or 0,
        total_revenue_cents=rec.total_revenue_cents or 0,
        thank_you_sent=bool(rec.thank_you_sent),
    )


class EventStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, event_id: str) -> Optional[Event]:
        async with self.db.begin():
            rec = await self.db.get(EventRecord, event_id)
            return event_from_record(rec) if rec else None

    async def increment_counters(
        self, event_id: str, *, attendees: int = 1, revenue_cents: int = 0
    ) -> None:
        # single UPDATE, no read-modify-write
        async with self.db.begin():
            await self.db.execute(
                update(EventRecord)
                .where(EventRecord.id == event_id)
                .values(
                    attendee_count=EventRecord.attendee_count + attendees,
                    total_revenue_cents=(
                        EventRecord.total_revenue_cents + revenue_cents
                    ),
                )
            )

    async def mark_thank_you_sent(self, event_id: str) -> None:
        async with self.db.begin():
            await self.db.execute(
                update(EventRecord)
                .where(EventRecord.id == event_id)
                .values(thank_you_sent=True, thank_you_sent_at=now_ts())
            )

    async def get_by_slug(self, slug: str) -> Optional[Event]:
        async with self.db.begin():
            rec = (await self.db.execute(
                select(EventRecord).where(EventRecord.slug == slug)
            )).scalars().first()
            return event_from_record(rec) if rec else None
