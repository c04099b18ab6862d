"""Add-to-calendar support: ICS documents and provider deep links."""

from __future__ import annotations
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlencode

from .model.events import Event

DEFAULT_DURATION = timedelta(minutes=90)
PROVIDERS = ("google", "outlook")


def ics_instant(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def ics_escape(text: Optional[str]) -> str:
    if not text:
        return ""
    return (text.replace("\\", "\\\\").replace(";", "\\;")
            .replace(",", "\\,").replace("\n", "\\n"))


def ics_filename(title: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", title, flags=re.I)[:50].lower() + ".ics"


def _description(event: Event) -> str:
    text = event.description or ""
    if event.meeting_link:
        text += f"\n\nJoin the class: {event.meeting_link}"
    return text.strip()


def build_ics(event: Event, *, now: datetime,
              duration: timedelta = DEFAULT_DURATION) -> str:
    if event.starts_at is None:
        raise ValueError(f"event {event.id} has no start date")
    description = _description(event)
    lines: List[str] = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Uniflow//Event Calendar//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        # one UID per event
        f"UID:{event.id}@uniflow.com",
        f"DTSTAMP:{ics_instant(now)}",
        f"DTSTART:{ics_instant(event.starts_at)}",
        f"DTEND:{ics_instant(event.starts_at + duration)}",
        f"SUMMARY:{ics_escape(event.title)}",
    ]
    if description:
        lines.append(f"DESCRIPTION:{ics_escape(description)}")
    lines.append(f"LOCATION:{ics_escape(event.meeting_link or 'Online')}")
    if event.meeting_link:
        lines.append(f"URL:{ics_escape(event.meeting_link)}")
    lines += [
        "STATUS:CONFIRMED",
        "SEQUENCE:0",
        "BEGIN:VALARM",
        "TRIGGER:-PT1H",
        "ACTION:DISPLAY",
        "DESCRIPTION:Event starting in 1 hour",
        "END:VALARM",
        "BEGIN:VALARM",
        "TRIGGER:-PT24H",
        "ACTION:DISPLAY",
        "DESCRIPTION:Event starting tomorrow",
        "END:VALARM",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines)


def provider_url(provider: str, event: Event, *, tz: str,
                 duration: timedelta = DEFAULT_DURATION) -> str:
    """Deep link that opens the provider's "new event" form prefilled."""
    if event.starts_at is None:
        raise ValueError(f"event {event.id} has no start date")
    start, end = event.starts_at, event.starts_at + duration
    location = event.meeting_link or "Online"
    if provider == "google":
        params = {
            "action": "TEMPLATE",
            "text": event.title,
            "dates": f"{ics_instant(start)}/{ics_instant(end)}",
            "details": _description(event),
            "location": location,
            "ctz": tz,
        }
        return f"https://calendar.google.com/calendar/render?{urlencode(params)}"
    if provider == "outlook":
        params = {
            "subject": event.title,
            "body": _description(event),
            "location": location,
            "startdt": start.astimezone(timezone.utc).isoformat(),
            "enddt": end.astimezone(timezone.utc).isoformat(),
            "path": "/calendar/action/compose",
            "rru": "addevent",
        }
        return ("https://outlook.live.com/calendar/0/deeplink/compose?"
                + urlencode(params))
    raise ValueError(f"unknown calendar provider {provider!r}")
