"""Best-effort attendee notifications through Brevo.

Nothing in here raises to the pipeline: contact registration and the
confirmation email run independently and failures are only logged.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx
import structlog

from .emails import (
    ConfirmationDetails, RenderedEmail, format_contact_date,
    render_bulk, render_confirmation, render_thank_you,
)
from .errors import Misconfigured, NotificationError
from .model.events import Event
from .model.orm import Attendee

logger = structlog.get_logger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3"


class BrevoClient:
    def __init__(self, http: httpx.AsyncClient, *, api_key: str,
                 sender_name: str, sender_email: str,
                 base_url: str = BREVO_API_URL) -> None:
        self.http = http
        self.api_key = api_key
        self.sender = {"name": sender_name, "email": sender_email}
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "api-key": self.api_key,
        }

    @staticmethod
    def _error_body(r: httpx.Response) -> Dict[str, Any]:
        try:
            body = r.json()
        except ValueError:
            return {"message": r.text}
        return body if isinstance(body, dict) else {"message": str(body)}

    async def send_email(self, *, to: str, email: RenderedEmail) -> None:
        payload: Dict[str, Any] = {
            "sender": self.sender,
            "to": [{"email": to}],
            "subject": email.subject,
            "htmlContent": email.html,
        }
        if email.text:
            payload["textContent"] = email.text
        try:
            r = await self.http.post(
                f"{self.base_url}/smtp/email",
                json=payload, headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"email transport error: {e}") from e
        if r.is_error:
            body = self._error_body(r)
            raise NotificationError(
                body.get("message") or f"email rejected ({r.status_code})"
            )

    async def upsert_contact(self, *, email: str, attributes: Dict[str, str],
                             list_ids: List[int]) -> None:
        try:
            r = await self.http.post(
                f"{self.base_url}/contacts",
                json={
                    "email": email,
                    "attributes": attributes,
                    "listIds": list_ids,
                    "updateEnabled": True,
                },
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"contact transport error: {e}") from e
        if r.is_error:
            body = self._error_body(r)
            # existing contacts are updated anyway
            if body.get("code") == "duplicate_parameter":
                return
            raise NotificationError(
                body.get("message") or f"contact rejected ({r.status_code})"
            )


@dataclass
class BulkReport:
    sent: int = 0
    failed: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def ok(self, email: str) -> None:
        self.sent += 1
        self.results.append({"email": email, "success": True})

    def fail(self, email: str, error: str) -> None:
        self.failed += 1
        self.results.append({"email": email, "success": False})
        self.errors.append({"email": email, "error": error})


def _display_name(a: Attendee) -> str:
    return f"{a.name or ''} {a.surname or ''}".strip()


class NotificationDispatcher:
    def __init__(self, brevo: Optional[BrevoClient], *, app_url: str,
                 timezone: str, list_id: int,
                 grace_seconds: float = 3.0,
                 thank_you_delay: float = 0.2) -> None:
        self.brevo = brevo
        self.app_url = app_url
        self.timezone = timezone
        self.list_id = list_id
        self.grace_seconds = grace_seconds
        self.thank_you_delay = thank_you_delay
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.brevo is not None

    # ----------------------------
    # per-registration confirmation
    # ----------------------------
    async def notify(self, email: str, details: ConfirmationDetails) -> None:
        if self.brevo is None:
            logger.warning(
                "notifications_disabled",
                reason="BREVO_API_KEY not configured",
                event_id=details.event_id,
                email=email,
            )
            return
        await asyncio.gather(
            self._register_contact(email, details),
            self._send_confirmation(email, details),
        )

    async def _register_contact(
            self, email: str, d: ConfirmationDetails) -> None:
        try:
            await self.brevo.upsert_contact(
                email=email,
                attributes={
                    "FIRSTNAME": d.customer_name or "",
                    "LASTNAME": d.customer_surname or "",
                    "EVENT_DATE": format_contact_date(d.starts_at),
                    "EVENT_TITLE": d.event_title or "",
                    "MEETING_LINK": d.meeting_link or "",
                    "EVENT_ID": d.event_id,
                    "TICKET_TYPE": d.ticket_name or "",
                },
                list_ids=[self.list_id],
            )
        except Exception as e:
            logger.error(
                "contact_registration_failed",
                event_id=d.event_id, email=email, error=str(e),
            )
            return
        logger.info("contact_registered", event_id=d.event_id, email=email)

    async def _send_confirmation(
            self, email: str, d: ConfirmationDetails) -> None:
        try:
            rendered = render_confirmation(
                d, app_url=self.app_url, tz=self.timezone
            )
            await self.brevo.send_email(to=email, email=rendered)
        except Exception as e:
            logger.error(
                "confirmation_email_failed",
                event_id=d.event_id, email=email, error=str(e),
            )
            return
        logger.info("confirmation_email_sent", event_id=d.event_id,
                    email=email)

    async def dispatch(self, email: str, details: ConfirmationDetails) -> None:
        """Run notify() in the background, waiting at most grace_seconds.

        A slow provider never holds the caller longer than the grace
        period; the task keeps running and is awaited by drain().
        """
        task = asyncio.create_task(self.notify(email, details))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        try:
            await asyncio.wait_for(
                asyncio.shield(task), timeout=self.grace_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "notification_dispatch_slow",
                event_id=details.event_id, email=email,
                grace_seconds=self.grace_seconds,
            )
        except Exception as e:
            logger.error(
                "notification_dispatch_failed",
                event_id=details.event_id, email=email, error=str(e),
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()

    # ----------------------------
    # admin bulk sends
    # ----------------------------
    def _require_brevo(self) -> BrevoClient:
        if self.brevo is None:
            raise Misconfigured("BREVO_API_KEY is not configured")
        return self.brevo

    async def send_thank_you(
            self, event: Event, attendees: Iterable[Attendee]) -> BulkReport:
        brevo = self._require_brevo()
        report = BulkReport()
        for i, a in enumerate(attendees):
            if i and self.thank_you_delay:
                # stay under the provider's rate limit
                await asyncio.sleep(self.thank_you_delay)
            try:
                rendered = render_thank_you(
                    name=_display_name(a),
                    event_title=event.title,
                    feedback_url=event.feedback_form_url,
                    locale=event.language,
                )
                await brevo.send_email(to=a.email, email=rendered)
            except Exception as e:
                logger.error("thank_you_email_failed", event_id=event.id,
                             email=a.email, error=str(e))
                report.fail(a.email, str(e))
                continue
            report.ok(a.email)
        logger.info("thank_you_emails_sent", event_id=event.id,
                    sent=report.sent, failed=report.failed)
        return report

    async def send_bulk(self, event_id: str, attendees: Iterable[Attendee],
                        subject: str, body: str) -> BulkReport:
        brevo = self._require_brevo()
        attendees = list(attendees)

        async def _one(a: Attendee) -> Optional[str]:
            try:
                rendered = render_bulk(
                    name=_display_name(a), subject=subject, body=body,
                    locale=a.locale,
                )
                await brevo.send_email(to=a.email, email=rendered)
            except Exception as e:
                logger.error("bulk_email_failed", event_id=event_id,
                             email=a.email, error=str(e))
                return str(e)
            return None

        outcomes = await asyncio.gather(*(_one(a) for a in attendees))
        report = BulkReport()
        for a, err in zip(attendees, outcomes):
            if err is None:
                report.ok(a.email)
            else:
                report.fail(a.email, err)
        logger.info("bulk_emails_sent", event_id=event_id,
                    sent=report.sent, failed=report.failed)
        return report
