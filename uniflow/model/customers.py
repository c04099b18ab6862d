from __future__ import annotations
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from .orm import Customer


class CustomerStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, email: str) -> Optional[Customer]:
        async with self.db.begin():
            return await self.db.get(Customer, email)

    async def record_purchase(
        self,
        *,
        email: str,
        name: str,
        surname: str,
        event_id: str,
        amount_cents: int,
        ts: Optional[float] = None,
    ) -> Customer:
        """
        Upsert the aggregate for one normalized email.

        spend and count only grow, events behaves like a set, names are
        last-write-wins. A concurrent first purchase for the same email
        loses the primary-key race and is retried as an update.
        """
        ts = now_ts() if ts is None else ts
        try:
            return await self._apply(
                email, name, surname, event_id, amount_cents, ts
            )
        except IntegrityError:
            return await self._apply(
                email, name, surname, event_id, amount_cents, ts
            )

    async def _apply(
        self, email: str, name: str, surname: str, event_id: str,
        amount_cents: int, ts: float,
    ) -> Customer:
        async with self.db.begin():
            # counters move in SQL; the UPDATE also takes the write lock
            # before events is read
            res = await self.db.execute(
                update(Customer)
                .where(Customer.email == email)
                .values(
                    name=name,
                    surname=surname,
                    total_spent_cents=(
                        Customer.total_spent_cents + amount_cents
                    ),
                    purchase_count=Customer.purchase_count + 1,
                    last_purchase_at=ts,
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                cust = Customer(
                    email=email,
                    name=name,
                    surname=surname,
                    total_spent_cents=amount_cents,
                    purchase_count=1,
                    events=[event_id],
                    created_at=ts,
                    last_purchase_at=ts,
                )
                self.db.add(cust)
                return cust

            cust = (await self.db.execute(
                select(Customer)
                .where(Customer.email == email)
                .execution_options(populate_existing=True)
            )).scalars().one()
            events = list(cust.events or [])
            if event_id not in events:
                # reassign so the JSON column is flagged dirty
                cust.events = events + [event_id]
            return cust
