from typing import Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

# plain scheme -> async driver
ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    # Heroku-style URLs
    ("postgres://", "postgresql+asyncpg://"),
)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
)


def normalize_async_url(url: str) -> str:
    for plain, driver in ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        for pragma in SQLITE_PRAGMAS:
            cur.execute(pragma)
        cur.close()


def make_async_engine(
    database_url: str, *, pool_size: int = 10, max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Tuple[AsyncEngine, async_sessionmaker]:
    url = normalize_async_url(database_url)
    options = dict(future=True, pool_pre_ping=True)
    if url.startswith("postgresql+asyncpg://"):
        options.update(pool_size=pool_size, max_overflow=max_overflow,
                       pool_timeout=pool_timeout)

    engine = create_async_engine(url, **options)
    if url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, SessionAsync


async def create_schema(engine: AsyncEngine) -> None:
    # tables for events, attendees, customers, promos and mockpay sessions
    from ..model.orm import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
