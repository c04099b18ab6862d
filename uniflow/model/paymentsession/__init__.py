from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ._redis import PaymentSessionStore as RedisPaymentSessionStore
from ._sql import PaymentSessionStore as SqlPaymentSessionStore

PaymentSessionStore = Union[RedisPaymentSessionStore, SqlPaymentSessionStore]

BACKENDS = ("redis", "sql")


# Factory keeps server.py simple and constructor-agnostic:
def new_store(backend: str, *, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = 1800) -> PaymentSessionStore:
    if backend == "sql":
        if db is None:
            raise RuntimeError(
                "PaymentSessionStore(sql) requires db=AsyncSession"
            )
        return SqlPaymentSessionStore(db=db, ttl_seconds=ttl_seconds)
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "PaymentSessionStore(redis) requires r=redis.Redis"
            )
        return RedisPaymentSessionStore(r=r, ttl_seconds=ttl_seconds)
    raise RuntimeError(f"unknown payment session backend {backend!r}")


__all__ = [
    "PaymentSessionStore", "RedisPaymentSessionStore",
    "SqlPaymentSessionStore", "new_store", "BACKENDS",
]
