"""
Shared fixtures: a throwaway SQLite database per test, event factories
and a notifier that records instead of sending.
"""

import typing as t
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from uniflow.config import Settings
from uniflow.emails import ConfirmationDetails
from uniflow.fulfillment import FulfillmentEngine
from uniflow.helpers import utcnow
from uniflow.infra.sql import create_schema, make_async_engine
from uniflow.model.orm import EventRecord, Promo
from uniflow.model.paymentsession import new_store
from uniflow.payments import MockPay
from uniflow.pricing import PriceResolver
from uniflow.registration import RegistrationHandler

MOCK_SECRET = "test-mock-secret"
APP_URL = "http://testserver"


def future(days: int = 7) -> str:
    return (utcnow() + timedelta(days=days)).isoformat()


def past(days: int = 1) -> str:
    return (utcnow() - timedelta(days=days)).isoformat()


class RecordingNotifier:
    """Stands in for the NotificationDispatcher and keeps every dispatch."""

    def __init__(self) -> None:
        self.calls: t.List[t.Tuple[str, ConfirmationDetails]] = []

    async def dispatch(self, email: str, details: ConfirmationDetails) -> None:
        self.calls.append((email, details))


@pytest.fixture
def settings(tmp_path: t.Any) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path}/uniflow.db",
        app_url=APP_URL,
        mock_secret=MOCK_SECRET,
        notify_grace_seconds=0.5,
        thank_you_delay_seconds=0,
        log_level="WARNING",
    )


@pytest.fixture
async def sessions(settings: Settings) -> t.AsyncIterator[t.Any]:
    """async_sessionmaker bound to a freshly created schema."""
    engine, SessionAsync = make_async_engine(settings.database_url)
    await create_schema(engine)
    yield SessionAsync
    await engine.dispose()


@pytest.fixture
def make_event(sessions: t.Any) -> t.Callable[..., t.Awaitable[str]]:
    """Insert an event; defaults describe a published event next week
    with one 20 EUR tier."""

    async def _make(**overrides: t.Any) -> str:
        event_id = overrides.pop("id", uuid.uuid4().hex)
        fields: t.Dict[str, t.Any] = dict(
            id=event_id,
            slug=f"event-{event_id[:8]}",
            title="Intro to Python",
            description="",
            date=future(),
            status="published",
            language="en",
            tiers=[{
                "id": "standard",
                "name": "Standard",
                "price": 20,
                "includes": ["Recording"],
            }],
            price=None,
            meeting_link="https://meet.example.com/abc",
            feedback_form_url="https://forms.example.com/feedback",
            attendee_count=0,
            total_revenue_cents=0,
            thank_you_sent=False,
        )
        fields.update(overrides)
        async with sessions() as db:
            async with db.begin():
                db.add(EventRecord(**fields))
        return event_id

    return _make


@pytest.fixture
def make_promo(sessions: t.Any) -> t.Callable[..., t.Awaitable[None]]:
    async def _make(**overrides: t.Any) -> None:
        fields: t.Dict[str, t.Any] = dict(
            id=uuid.uuid4().hex,
            code="WELCOME10",
            discount_type="percentage",
            discount_value=10.0,
            event_id=None,
            expires_at=None,
            max_uses=None,
            used_count=0,
            active=True,
        )
        fields.update(overrides)
        async with sessions() as db:
            async with db.begin():
                db.add(Promo(**fields))

    return _make


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine(sessions: t.Any, notifier: RecordingNotifier) -> FulfillmentEngine:
    return FulfillmentEngine(sessions, notifier)  # type: ignore[arg-type]


@pytest.fixture
def mockpay(sessions: t.Any) -> MockPay:
    @asynccontextmanager
    async def paymentsessions() -> t.AsyncIterator[t.Any]:
        async with sessions() as db:
            yield new_store("sql", db=db, ttl_seconds=1800)

    return MockPay(secret=MOCK_SECRET, base_url=APP_URL,
                   sessions=paymentsessions)


@pytest.fixture
def registrations(sessions: t.Any, engine: FulfillmentEngine,
                  mockpay: MockPay) -> RegistrationHandler:
    return RegistrationHandler(
        resolver=PriceResolver(sessions, currency="eur"),
        engine=engine,
        adapter=mockpay,
        sessions=sessions,
        app_url=APP_URL,
    )
