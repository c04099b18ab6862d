from __future__ import annotations
from typing import Optional, Dict, Any
import time

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..orm import MockPaymentSession


class PaymentSessionStore:
    def __init__(self, *, db: AsyncSession, ttl_seconds: int) -> None:
        self.db = db
        self.ttl = ttl_seconds

    async def save_payment_session(
            self, psid: str, mapping: Dict[str, Any]
    ) -> None:
        created = float(mapping.get("created_at") or time.time())
        expires = float(mapping.get("expires_at") or created + self.ttl)
        async with self.db.begin():
            # merge == upsert by primary key
            await self.db.merge(MockPaymentSession(
                psid=psid,
                amount_cents=int(mapping["amount_cents"]),
                currency=mapping["currency"],
                customer_email=mapping.get("customer_email") or "",
                product_name=mapping.get("product_name") or "",
                session_metadata=dict(mapping.get("metadata") or {}),
                success_url=mapping["success_url"],
                cancel_url=mapping["cancel_url"],
                created_at=created,
                expires_at=expires,
            ))

    async def get_payment_session(self, psid: str) -> Optional[Dict[str, Any]]:
        async with self.db.begin():
            row = await self.db.get(
                MockPaymentSession, psid, populate_existing=True
            )
            if row is None:
                return None
            return {
                "psid": row.psid,
                "amount_cents": row.amount_cents,
                "currency": row.currency,
                "customer_email": row.customer_email,
                "product_name": row.product_name,
                "metadata": dict(row.session_metadata or {}),
                "success_url": row.success_url,
                "cancel_url": row.cancel_url,
                "created_at": row.created_at,
                "expires_at": row.expires_at,
            }

    async def remove(self, psid: str) -> None:
        async with self.db.begin():
            await self.db.execute(
                delete(MockPaymentSession)
                .where(MockPaymentSession.psid == psid)
            )
