"""Read-only promo code checks.

Validation only reports whether a code applies; it never changes the
price a registration is charged.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, Callable, Dict, Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    PromoExhausted, PromoExpired, PromoInactive, PromoNotApplicable,
    PromoNotFound,
)
from .helpers import parse_instant, utcnow
from .model.promos import PromoStore

logger = structlog.get_logger(__name__)

Sessions = Callable[[], AsyncContextManager[AsyncSession]]


@dataclass(frozen=True)
class PromoCheck:
    code: str
    discount_type: str
    discount_value: float

    def to_json(self) -> Dict[str, Union[str, float, bool]]:
        return {
            "valid": True,
            "code": self.code,
            "discountType": self.discount_type,
            "discountValue": self.discount_value,
        }


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class PromoValidator:
    def __init__(self, sessions: Sessions,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.sessions = sessions
        self.clock = clock

    async def validate(self, code: str,
                       event_id: Optional[str] = None) -> PromoCheck:
        code = normalize_code(code)
        if not code:
            raise PromoNotFound()
        async with self.sessions() as db:
            promo = await PromoStore(db).find_by_code(code)
        if promo is None:
            raise PromoNotFound(f"promo {code!r} does not exist")

        if not promo.active:
            raise PromoInactive(f"promo {code!r} is inactive")

        if promo.expires_at is not None:
            expires = parse_instant(promo.expires_at)
            if expires is None:
                # an unreadable expiry counts as expired
                logger.warning("promo_expiry_unparseable", code=code,
                               raw=repr(promo.expires_at))
                raise PromoExpired(f"promo {code!r} has an unreadable expiry")
            if expires < self.clock():
                raise PromoExpired(f"promo {code!r} expired at {expires}")

        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            raise PromoExhausted(
                f"promo {code!r} used {promo.used_count}/{promo.max_uses}"
            )

        if promo.event_id and promo.event_id != event_id:
            raise PromoNotApplicable(
                f"promo {code!r} is scoped to event {promo.event_id}"
            )

        return PromoCheck(
            code=promo.code,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
        )
