"""Tests for the Brevo client and the notification dispatcher."""

import asyncio
import json
import time
import typing as t
from datetime import datetime, timezone

import httpx
import pytest

from uniflow.emails import ConfirmationDetails, RenderedEmail
from uniflow.errors import Misconfigured, NotificationError
from uniflow.model.events import Event
from uniflow.model.orm import Attendee
from uniflow.notifications import BrevoClient, NotificationDispatcher

pytestmark = pytest.mark.asyncio

BREVO = "https://brevo.test/v3"

DETAILS = ConfirmationDetails(
    event_id="evt-1",
    event_title="Intro to Python",
    starts_at=datetime(2030, 5, 17, 16, 0, tzinfo=timezone.utc),
    event_language="en",
    ticket_name="Standard",
    customer_name="Ada",
    customer_surname="Lovelace",
    meeting_link="https://meet.example.com/abc",
)


class FakeBrevo:
    """Collects requests and answers from a per-path table."""

    def __init__(self, responses: t.Optional[t.Dict[str, httpx.Response]] = None,
                 delay: float = 0) -> None:
        self.requests: t.List[httpx.Request] = []
        self.responses = responses or {}
        self.delay = delay

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.requests.append(request)
        return self.responses.get(
            request.url.path, httpx.Response(201, json={"messageId": "m1"})
        )

    def bodies(self, path: str) -> t.List[t.Dict[str, t.Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


def client_for(fake: FakeBrevo) -> BrevoClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return BrevoClient(http, api_key="xkeysib-test", sender_name="Uniflow",
                       sender_email="noreply@uniflow.com", base_url=BREVO)


def dispatcher_for(fake: t.Optional[FakeBrevo], **kwargs: t.Any) -> NotificationDispatcher:
    return NotificationDispatcher(
        client_for(fake) if fake else None,
        app_url="https://uniflow.test",
        timezone="Europe/Paris",
        list_id=10,
        thank_you_delay=0,
        **kwargs,
    )


def attendee(email: str, name: str = "Ada", locale: str = "en") -> Attendee:
    return Attendee(id=email, email=email, name=name, surname="", locale=locale)


def event(**overrides: t.Any) -> Event:
    fields: t.Dict[str, t.Any] = dict(
        id="evt-1", slug="python-101", title="Intro to Python",
        status="published", language="fr", starts_at=DETAILS.starts_at,
        feedback_form_url="https://forms.example.com/f",
    )
    fields.update(overrides)
    return Event(**fields)


class TestBrevoClient:
    async def test_send_email(self) -> None:
        fake = FakeBrevo()
        brevo = client_for(fake)

        await brevo.send_email(
            to="ada@uni.edu",
            email=RenderedEmail(subject="Hi", html="<p>Hi</p>", text="Hi"),
        )

        [request] = fake.requests
        assert request.headers["api-key"] == "xkeysib-test"
        assert fake.bodies("/v3/smtp/email") == [{
            "sender": {"name": "Uniflow", "email": "noreply@uniflow.com"},
            "to": [{"email": "ada@uni.edu"}],
            "subject": "Hi",
            "htmlContent": "<p>Hi</p>",
            "textContent": "Hi",
        }]

    async def test_rejected_email_raises(self) -> None:
        fake = FakeBrevo({"/v3/smtp/email": httpx.Response(
            400, json={"code": "invalid_parameter", "message": "bad sender"}
        )})

        with pytest.raises(NotificationError, match="bad sender"):
            await client_for(fake).send_email(
                to="ada@uni.edu", email=RenderedEmail(subject="s", html="h")
            )

    async def test_duplicate_contact_is_fine(self) -> None:
        fake = FakeBrevo({"/v3/contacts": httpx.Response(
            400, json={"code": "duplicate_parameter", "message": "exists"}
        )})

        await client_for(fake).upsert_contact(
            email="ada@uni.edu", attributes={}, list_ids=[10]
        )

    async def test_contact_failure_raises(self) -> None:
        fake = FakeBrevo({"/v3/contacts": httpx.Response(500, text="oops")})

        with pytest.raises(NotificationError):
            await client_for(fake).upsert_contact(
                email="ada@uni.edu", attributes={}, list_ids=[10]
            )


class TestConfirmation:
    async def test_registers_contact_and_sends_email(self) -> None:
        fake = FakeBrevo()

        await dispatcher_for(fake).notify("ada@uni.edu", DETAILS)

        [contact] = fake.bodies("/v3/contacts")
        assert contact["email"] == "ada@uni.edu"
        assert contact["listIds"] == [10]
        assert contact["updateEnabled"] is True
        assert contact["attributes"] == {
            "FIRSTNAME": "Ada",
            "LASTNAME": "Lovelace",
            "EVENT_DATE": "2030-05-17",
            "EVENT_TITLE": "Intro to Python",
            "MEETING_LINK": "https://meet.example.com/abc",
            "EVENT_ID": "evt-1",
            "TICKET_TYPE": "Standard",
        }
        [email] = fake.bodies("/v3/smtp/email")
        assert email["subject"] == "🎓 Your registration for Intro to Python"

    async def test_one_failure_does_not_stop_the_other(self) -> None:
        fake = FakeBrevo({"/v3/contacts": httpx.Response(500, text="down")})

        await dispatcher_for(fake).notify("ada@uni.edu", DETAILS)

        assert len(fake.bodies("/v3/smtp/email")) == 1

    async def test_email_failure_is_swallowed(self) -> None:
        fake = FakeBrevo({"/v3/smtp/email": httpx.Response(500, text="down")})

        await dispatcher_for(fake).notify("ada@uni.edu", DETAILS)

        assert len(fake.bodies("/v3/contacts")) == 1

    async def test_without_provider_nothing_is_sent(self) -> None:
        dispatcher = dispatcher_for(None)

        assert not dispatcher.enabled
        await dispatcher.notify("ada@uni.edu", DETAILS)

    async def test_dispatch_waits_at_most_the_grace_period(self) -> None:
        fake = FakeBrevo(delay=0.5)
        dispatcher = dispatcher_for(fake, grace_seconds=0.05)

        started = time.monotonic()
        await dispatcher.dispatch("ada@uni.edu", DETAILS)
        elapsed = time.monotonic() - started

        assert elapsed < 0.4
        assert fake.requests == []

        await dispatcher.drain(timeout=2)
        assert len(fake.requests) == 2


class TestBulk:
    async def test_thank_you_reports_per_address(self) -> None:
        fake = FakeBrevo()
        bounced = httpx.Response(400, json={"message": "blocked address"})

        async def handler(request: httpx.Request) -> httpx.Response:
            if b"bo@uni.edu" in request.content:
                fake.requests.append(request)
                return bounced
            return await fake(request)

        brevo = BrevoClient(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            api_key="k", sender_name="Uniflow",
            sender_email="noreply@uniflow.com", base_url=BREVO,
        )
        dispatcher = NotificationDispatcher(
            brevo, app_url="https://uniflow.test", timezone="Europe/Paris",
            list_id=10, thank_you_delay=0,
        )

        report = await dispatcher.send_thank_you(
            event(), [attendee("ada@uni.edu"), attendee("bo@uni.edu", "Bo")]
        )

        assert report.sent == 1
        assert report.failed == 1
        assert report.errors == [{"email": "bo@uni.edu", "error": "blocked address"}]
        sent = fake.bodies("/v3/smtp/email")[0]
        # event language drives the copy
        assert sent["subject"] == "🙏 Merci d'avoir participé à Intro to Python"
        assert "https://forms.example.com/f" in sent["htmlContent"]

    async def test_thank_you_needs_a_provider(self) -> None:
        with pytest.raises(Misconfigured):
            await dispatcher_for(None).send_thank_you(event(), [attendee("a@b.co")])

    async def test_bulk_send(self) -> None:
        fake = FakeBrevo()

        report = await dispatcher_for(fake).send_bulk(
            "evt-1",
            [attendee("ada@uni.edu"), attendee("bo@uni.edu", "Bo", "fr")],
            "Room change",
            "We moved to <room 5>.",
        )

        assert report.sent == 2
        assert report.results == [
            {"email": "ada@uni.edu", "success": True},
            {"email": "bo@uni.edu", "success": True},
        ]
        bodies = fake.bodies("/v3/smtp/email")
        assert {b["subject"] for b in bodies} == {"Room change"}
        assert all("&lt;room 5&gt;" in b["htmlContent"] for b in bodies)
