from __future__ import annotations
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import Attendee, PAYMENT_COMPLETED


class AttendeeStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_session(self, session_id: str) -> Optional[Attendee]:
        async with self.db.begin():
            return (await self.db.execute(
                select(Attendee)
                .where(Attendee.payment_session_id == session_id)
            )).scalars().first()

    async def has_completed(self, event_id: str, email: str) -> bool:
        async with self.db.begin():
            row = (await self.db.execute(
                select(Attendee.id)
                .where(
                    Attendee.event_id == event_id,
                    Attendee.email == email,
                    Attendee.payment_status == PAYMENT_COMPLETED,
                )
                .limit(1)
            )).first()
        return row is not None

    async def insert(self, attendee: Attendee) -> Tuple[Attendee, bool]:
        """
        Write a new entitlement.

        Returns (attendee, created). The unique constraint on
        payment_session_id decides races: the loser gets the record the
        winner committed and created=False.
        """
        try:
            async with self.db.begin():
                self.db.add(attendee)
        except IntegrityError:
            existing = await self.get_by_session(attendee.payment_session_id)
            if existing is None:
                # constraint violation unrelated to the idempotency key
                raise
            return existing, False
        return attendee, True

    async def list_completed(self, event_id: str) -> List[Attendee]:
        async with self.db.begin():
            return list((await self.db.execute(
                select(Attendee)
                .where(
                    Attendee.event_id == event_id,
                    Attendee.payment_status == PAYMENT_COMPLETED,
                )
                .order_by(Attendee.created_at)
            )).scalars().all())
