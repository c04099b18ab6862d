# MockPay sessions kept in redis hashes
from __future__ import annotations
from typing import Optional, Dict, Any
import json
import time
import redis.asyncio as redis


# ---- keys
def k_ps(psid: str) -> str: return f"mockpay:ps:{psid}"


class PaymentSessionStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def save_payment_session(
            self, psid: str, mapping: Dict[str, Any]) -> None:
        created = float(mapping.get("created_at") or time.time())
        expires = float(mapping.get("expires_at") or created + self.ttl)
        # hash values must be strings for decode_responses=True
        flat = {
            "amount_cents": str(int(mapping["amount_cents"])),
            "currency": mapping["currency"],
            "customer_email": mapping.get("customer_email") or "",
            "product_name": mapping.get("product_name") or "",
            "metadata": json.dumps(mapping.get("metadata") or {}),
            "success_url": mapping["success_url"],
            "cancel_url": mapping["cancel_url"],
            "created_at": str(created),
            "expires_at": str(expires),
        }
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_ps(psid), mapping=flat)
        # outlives the session by a minute
        pipe.expire(k_ps(psid), max(int(expires - created), 0) + 60)
        await pipe.execute()

    async def get_payment_session(self, psid: str) -> Optional[Dict[str, Any]]:
        h = await self.r.hgetall(k_ps(psid))
        if not h:
            return None
        return {
            "psid": psid,
            "amount_cents": int(h.get("amount_cents", "0")),
            "currency": h.get("currency", ""),
            "customer_email": h.get("customer_email", ""),
            "product_name": h.get("product_name", ""),
            "metadata": json.loads(h.get("metadata") or "{}"),
            "success_url": h.get("success_url", ""),
            "cancel_url": h.get("cancel_url", ""),
            "created_at": float(h.get("created_at", "0")),
            "expires_at": float(h.get("expires_at", "0")),
        }

    async def remove(self, psid: str) -> None:
        await self.r.delete(k_ps(psid))
