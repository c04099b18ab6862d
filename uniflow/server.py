from __future__ import annotations
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
import orjson
import redis.asyncio as redis
import structlog
from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, RedirectResponse, Response,
)
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .calendar_links import PROVIDERS, build_ics, ics_filename, provider_url
from .callbacks import CallbackVerifier
from .config import Settings
from .errors import (
    InvalidSignature, MalformedCallback, Misconfigured, MissingSecret,
    MissingSignature, NotFound, UniflowError,
)
from .fulfillment import FulfillmentEngine
from .helpers import ct_equal, now_ts, to_iso, utcnow
from .infra.logs import configure_logging
from .infra.sql import create_schema, make_async_engine
from .model.attendees import AttendeeStore
from .model.events import EventStore
from .model.paymentsession import BACKENDS, new_store
from .notifications import BrevoClient, NotificationDispatcher
from .payments import MOCK_EVENT_TYPES, MockPay, PaymentAdapter, StripePay
from .pricing import PriceResolver
from .promos import PromoValidator
from .registration import (
    RegistrationHandler, RegistrationRequest, SESSION_ID_PLACEHOLDER,
)

logger = structlog.get_logger(__name__)

templates = Jinja2Templates(
    directory=os.path.join(os.path.dirname(__file__), "templates")
)

# callback errors that are the caller's fault, answered as is
CALLBACK_REJECTIONS = (
    MissingSecret, MissingSignature, InvalidSignature, MalformedCallback,
)


# ----------------------------
# Request bodies
# ----------------------------
class CheckoutIn(BaseModel):
    eventId: str = Field(min_length=1)
    customerEmail: str = Field(min_length=1)
    ticketId: Optional[str] = None
    customerName: Optional[str] = None
    customerSurname: Optional[str] = None
    locale: Optional[str] = "en"


class PromoIn(BaseModel):
    code: str = Field(min_length=1)
    eventId: Optional[str] = None


class ThankYouIn(BaseModel):
    eventId: str = Field(min_length=1)


class BulkEmailIn(BaseModel):
    eventId: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)


# ----------------------------
# Dependencies
# ----------------------------
async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.SessionAsync() as session:
        yield session


def get_registrations(request: Request) -> RegistrationHandler:
    return request.app.state.registrations


def get_callbacks(request: Request) -> CallbackVerifier:
    return request.app.state.callbacks


def get_promos(request: Request) -> PromoValidator:
    return request.app.state.promos


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_mockpay(request: Request) -> MockPay:
    return request.app.state.adapter


def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ----------------------------
# API
# ----------------------------
router = APIRouter()


@router.get("/health")
async def health():
    return {"ok": True}


@router.post("/api/checkout")
async def create_checkout(
    body: CheckoutIn,
    registrations: RegistrationHandler = Depends(get_registrations),
):
    outcome = await registrations.register(RegistrationRequest(
        event_id=body.eventId,
        email=body.customerEmail,
        ticket_id=body.ticketId,
        name=body.customerName or "",
        surname=body.customerSurname or "",
        locale=body.locale or "en",
    ))
    return outcome.to_json()


# ----------------------------
# Webhook endpoint (shared for Mock/Stripe)
# ----------------------------
@router.post("/api/webhook")
async def payments_webhook(
    request: Request,
    callbacks: CallbackVerifier = Depends(get_callbacks),
):
    # the signature covers the raw bytes, read them before anything else
    payload = await request.body()
    try:
        return await callbacks.handle(payload, request.headers)
    except CALLBACK_REJECTIONS:
        raise
    except Exception as e:
        # a failure status makes the provider redeliver; replays are safe
        logger.exception("callback_fulfillment_failed", error=str(e))
        return ORJSONResponse(
            {"error": "Webhook handler failed"}, status_code=500
        )


# ----------------------------
# Registration status (polled by the success page)
# ----------------------------
@router.get("/api/registrations/{session_id}")
async def get_registration(session_id: str,
                           db: AsyncSession = Depends(get_db)):
    a = await AttendeeStore(db).get_by_session(session_id)
    if a is None:
        # callback still in flight -> let the client keep polling
        raise HTTPException(404, detail="registration not found")
    return {
        "attendeeId": a.id,
        "eventId": a.event_id,
        "eventTitle": a.event_title,
        "ticketId": a.ticket_id,
        "ticketName": a.ticket_name,
        "status": a.payment_status,
        "amountPaid": str(a.amount_paid),
        "currency": a.currency,
        "processedAt": to_iso(a.processed_at),
    }


# ----------------------------
# Add to calendar (linked from the confirmation email)
# ----------------------------
async def _scheduled_event(db: AsyncSession, event_id: str):
    event = await EventStore(db).get(event_id)
    if event is None:
        raise NotFound(event_id)
    if event.starts_at is None:
        raise Misconfigured(f"event {event_id} has an unparseable date")
    return event


@router.get("/api/calendar/{event_id}")
async def calendar_file(event_id: str, db: AsyncSession = Depends(get_db)):
    event = await _scheduled_event(db, event_id)
    return Response(
        build_ics(event, now=utcnow()),
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition":
                f'attachment; filename="{ics_filename(event.title)}"',
            "Cache-Control": "no-cache",
        },
    )


@router.get("/api/calendar/redirect/{event_id}")
async def calendar_redirect(request: Request, event_id: str,
                            provider: Optional[str] = None,
                            db: AsyncSession = Depends(get_db)):
    if provider not in PROVIDERS:
        return await calendar_file(event_id, db)
    event = await _scheduled_event(db, event_id)
    tz = request.app.state.settings.timezone
    return RedirectResponse(url=provider_url(provider, event, tz=tz))


@router.post("/api/promos/validate")
async def validate_promo(body: PromoIn,
                         promos: PromoValidator = Depends(get_promos)):
    check = await promos.validate(body.code, body.eventId)
    return check.to_json()


# ----------------------------
# Admin email triggers
# ----------------------------
@router.post("/api/email/thank-you", dependencies=[Depends(require_admin)])
async def send_thank_you(
    body: ThankYouIn,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    events = EventStore(db)
    event = await events.get(body.eventId)
    if event is None:
        raise NotFound(body.eventId)
    attendees = await AttendeeStore(db).list_completed(event.id)
    if not attendees:
        raise HTTPException(404, detail="No attendees found for this event")

    report = await notifier.send_thank_you(event, attendees)
    await events.mark_thank_you_sent(event.id)
    return {
        "success": True,
        "message": f"Sent {report.sent} thank-you emails",
        "sent": report.sent,
        "failed": report.failed,
        "errors": report.errors,
    }


@router.post("/api/email/send-bulk", dependencies=[Depends(require_admin)])
async def send_bulk(
    body: BulkEmailIn,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    attendees = await AttendeeStore(db).list_completed(body.eventId)
    if not attendees:
        raise HTTPException(404, detail="No attendees found")
    report = await notifier.send_bulk(
        body.eventId, attendees, body.subject, body.body
    )
    return {
        "message": f"Sent {report.sent} emails, {report.failed} failed",
        "sent": report.sent,
        "failed": report.failed,
        "results": report.results,
    }


# ----------------------------
# Admin session
# ----------------------------
@router.get("/admin/login", response_class=HTMLResponse)
async def admin_login_get(request: Request, next: Optional[str] = "/"):
    return templates.TemplateResponse(
        request, "login.html", {"next": next, "error": None}
    )


@router.post("/admin/login", response_class=HTMLResponse)
async def admin_login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
):
    settings: Settings = request.app.state.settings
    ok_user = ct_equal(username.strip(), settings.admin_username)
    ok_pass = ct_equal(password, settings.admin_password)
    if ok_user and ok_pass:
        request.session["admin_user"] = username.strip()
        # only local redirects
        dest = next if next.startswith("/") and not next.startswith("//") \
            else "/"
        return RedirectResponse(url=dest, status_code=HTTP_303_SEE_OTHER)
    logger.warning("admin_login_failed", username=username.strip())
    return templates.TemplateResponse(
        request, "login.html",
        {"next": next, "error": "Invalid credentials."},
        status_code=401,
    )


@router.get("/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# MockPay UI (simple page with 3 buttons)
# ----------------------------
mockpay_router = APIRouter()


async def _live_session(mockpay: MockPay, psid: str):
    ps = await mockpay.get_session(psid)
    if not ps or (ps.get("expires_at") and ps["expires_at"] < now_ts()):
        raise HTTPException(404, "payment session not found")
    return ps


@mockpay_router.get("/mockpay/{psid}", response_class=HTMLResponse)
async def mockpay_screen(request: Request, psid: str,
                         mockpay: MockPay = Depends(get_mockpay)):
    ps = await _live_session(mockpay, psid)
    return templates.TemplateResponse(request, "mockpay.html", {
        "psid": psid,
        "product_name": ps["product_name"],
        "customer_email": ps["customer_email"],
        "amount": f"{int(ps['amount_cents']) / 100:.2f}",
        "currency": ps["currency"],
        "webhook_url": request.app.state.settings.webhook_url,
    })


@mockpay_router.post("/mockpay/{psid}/emit")
async def mockpay_emit(psid: str, request: Request,
                       mockpay: MockPay = Depends(get_mockpay)):
    form = await request.form()
    kind = form.get("t")  # succeeded|failed|canceled
    if kind not in MOCK_EVENT_TYPES:
        raise HTTPException(400, detail="invalid kind")

    ps = await _live_session(mockpay, psid)
    payload = orjson.dumps(mockpay.build_event(kind, ps))
    sig = mockpay.sign(payload)

    settings: Settings = request.app.state.settings
    client_http: httpx.AsyncClient = request.app.state.http
    delivered = False
    try:
        r = await client_http.post(
            settings.webhook_url,
            content=payload,
            headers={
                mockpay.signature_header: sig,
                "content-type": "application/json",
            },
        )
        delivered = r.is_success
        if not delivered:
            logger.warning("mockpay_webhook_rejected", psid=psid,
                           status=r.status_code, body=r.text[:200])
    except httpx.HTTPError as e:
        # the page stays usable, the user can retry
        logger.warning("mockpay_webhook_delivery_failed", psid=psid,
                       error=str(e))

    # a failed payment may be retried on the same session
    if delivered and kind != "failed":
        await mockpay.close_session(psid)

    if kind == "succeeded":
        url = ps["success_url"].replace(SESSION_ID_PLACEHOLDER, psid)
    else:
        url = ps["cancel_url"]
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# Wiring
# ----------------------------
def make_adapter(settings: Settings, paymentsessions) -> PaymentAdapter:
    if settings.payment_provider == "stripe":
        return StripePay(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    if settings.payment_provider == "mock":
        return MockPay(
            secret=settings.mock_secret,
            base_url=settings.base_url,
            sessions=paymentsessions,
        )
    raise RuntimeError(
        f"unknown payment provider {settings.payment_provider!r}"
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if settings.paysession_backend not in BACKENDS:
        raise RuntimeError(
            f"unknown payment session backend {settings.paysession_backend!r}"
        )
    configure_logging(settings.log_level, settings.log_json)

    engine, SessionAsync = make_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
    )
    http = httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        limits=httpx.Limits(max_connections=100,
                            max_keepalive_connections=20),
    )
    r: Optional[redis.Redis] = None
    if settings.paysession_backend == "redis":
        r = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )

    @asynccontextmanager
    async def paymentsessions():
        if r is None:
            async with SessionAsync() as session:
                yield new_store("sql", db=session,
                                ttl_seconds=settings.session_ttl_seconds)
        else:
            yield new_store("redis", r=r,
                            ttl_seconds=settings.session_ttl_seconds)

    adapter = make_adapter(settings, paymentsessions)
    brevo = None
    if settings.brevo_api_key:
        brevo = BrevoClient(
            http,
            api_key=settings.brevo_api_key,
            sender_name=settings.email_sender_name,
            sender_email=settings.email_sender_address,
        )
    notifier = NotificationDispatcher(
        brevo,
        app_url=settings.base_url,
        timezone=settings.timezone,
        list_id=settings.brevo_list_id,
        grace_seconds=settings.notify_grace_seconds,
        thank_you_delay=settings.thank_you_delay_seconds,
    )
    fulfillment = FulfillmentEngine(SessionAsync, notifier)

    app = FastAPI(
        title="Uniflow",
        default_response_class=ORJSONResponse,
    )
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

    app.state.settings = settings
    app.state.engine = engine
    app.state.SessionAsync = SessionAsync
    app.state.http = http
    app.state.redis = r
    app.state.adapter = adapter
    app.state.notifier = notifier
    app.state.fulfillment = fulfillment
    app.state.registrations = RegistrationHandler(
        resolver=PriceResolver(SessionAsync, currency=settings.currency),
        engine=fulfillment,
        adapter=adapter,
        sessions=SessionAsync,
        app_url=settings.base_url,
        session_ttl_seconds=settings.session_ttl_seconds,
    )
    app.state.callbacks = CallbackVerifier(adapter, fulfillment)
    app.state.promos = PromoValidator(SessionAsync)

    app.include_router(router)
    if isinstance(adapter, MockPay):
        app.include_router(mockpay_router)

    @app.exception_handler(UniflowError)
    async def _uniflow_error(request: Request, exc: UniflowError):
        return ORJSONResponse(
            {"error": exc.public_message}, status_code=exc.status_code
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        return ORJSONResponse(
            {"error": "Missing required fields"}, status_code=400
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return ORJSONResponse(
            {"error": exc.detail}, status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _db_init():
        await create_schema(engine)
        logger.info(
            "uniflow_started",
            payment_provider=adapter.name,
            paysession_backend=settings.paysession_backend,
            notifications=notifier.enabled,
        )

    @app.on_event("shutdown")
    async def _notifications_drain():
        await notifier.drain(timeout=settings.notify_grace_seconds * 2)

    @app.on_event("shutdown")
    async def _http_client_stop():
        await http.aclose()

    @app.on_event("shutdown")
    async def _redis_stop():
        if r is not None:
            await r.aclose()

    @app.on_event("shutdown")
    async def _engine_stop():
        await engine.dispose()

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "uniflow.server:create_app",
        factory=True,
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
    )
