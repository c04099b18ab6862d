from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import Promo


class PromoStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_code(self, code: str) -> Optional[Promo]:
        async with self.db.begin():
            return (await self.db.execute(
                select(Promo).where(Promo.code == code).limit(1)
            )).scalars().first()
