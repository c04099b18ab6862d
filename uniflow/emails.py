from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from jinja2 import DictLoader, Environment, select_autoescape

SUPPORTED_LOCALES = ("en", "fr")
DEFAULT_LOCALE = "en"
GENERAL_ADMISSION = "General Admission"

MONTHS = {
    "en": ["January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December"],
    "fr": ["janvier", "février", "mars", "avril", "mai", "juin", "juillet",
           "août", "septembre", "octobre", "novembre", "décembre"],
}
WEEKDAYS = {
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday",
           "Saturday", "Sunday"],
    "fr": ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi",
           "dimanche"],
}


def pick_locale(locale: Optional[str]) -> str:
    locale = (locale or "").lower()[:2]
    return locale if locale in SUPPORTED_LOCALES else DEFAULT_LOCALE


def format_event_date(dt: datetime, language: str, tz: str) -> str:
    lang = pick_locale(language)
    local = dt.astimezone(ZoneInfo(tz))
    weekday = WEEKDAYS[lang][local.weekday()]
    month = MONTHS[lang][local.month - 1]
    return f"{weekday} {local.day} {month} {local.year}"


def format_event_time(dt: datetime, tz: str) -> str:
    return dt.astimezone(ZoneInfo(tz)).strftime("%H:%M")


def format_contact_date(dt: Optional[datetime]) -> str:
    # contact attributes take YYYY-MM-DD
    return dt.date().isoformat() if dt else ""


@dataclass(frozen=True)
class ConfirmationDetails:
    event_id: str
    event_title: str
    starts_at: Optional[datetime]
    event_language: str
    ticket_name: str
    customer_name: str = ""
    customer_surname: str = ""
    meeting_link: Optional[str] = None
    # buyer's language
    locale: str = DEFAULT_LOCALE


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: Optional[str] = None


TEXTS = {
    "en": {
        "subject": "🎓 Your registration for {title}",
        "heading": "🎉 Registration Confirmed!",
        "greeting": "Hi",
        "intro": "Thank you for registering! Your spot for",
        "intro_end": "is confirmed.",
        "ticket": "Ticket",
        "details": "📅 Event Details",
        "event": "Event:",
        "date": "Date:",
        "time": "Time:",
        "access": "🔗 Your class access link:",
        "join": "Join Class →",
        "keep_link": "Save this link - you'll need it to join!",
        "no_link": "The class link will be sent separately before the event.",
        "calendar": "Don't forget! Add to your calendar:",
        "download_ics": "Download .ics",
        "footer": "You received this email because you registered for an event.",
        "tagline": "Learn without limits",
        "default_name": "Student",
        "thanks_subject": "🙏 Thank you for attending {title}",
        "thanks_heading": "Thank you for joining us!",
        "thanks_intro": "Thank you for attending",
        "thanks_feedback": "We would love to hear your feedback:",
        "thanks_button": "Share feedback →",
        "bulk_footer": "You received this email because you registered for an event on Uniflow.",
    },
    "fr": {
        "subject": "🎓 Votre inscription pour {title}",
        "heading": "🎉 Inscription confirmée !",
        "greeting": "Bonjour",
        "intro": "Merci pour votre inscription ! Votre place pour",
        "intro_end": "est confirmée.",
        "ticket": "Billet",
        "details": "📅 Détails de l'événement",
        "event": "Événement :",
        "date": "Date :",
        "time": "Heure :",
        "access": "🔗 Votre lien d'accès au cours :",
        "join": "Rejoindre le cours →",
        "keep_link": "Conservez ce lien - vous en aurez besoin !",
        "no_link": "Le lien du cours sera envoyé séparément avant l'événement.",
        "calendar": "Ne manquez pas ! Ajoutez à votre calendrier :",
        "download_ics": "Télécharger .ics",
        "footer": "Vous avez reçu cet email car vous vous êtes inscrit à un événement.",
        "tagline": "Apprenez sans limites",
        "default_name": "Étudiant",
        "thanks_subject": "🙏 Merci d'avoir participé à {title}",
        "thanks_heading": "Merci de nous avoir rejoints !",
        "thanks_intro": "Merci d'avoir participé à",
        "thanks_feedback": "Votre avis nous intéresse :",
        "thanks_button": "Donner mon avis →",
        "bulk_footer": "Vous avez reçu cet email car vous vous êtes inscrit à un événement sur Uniflow.",
    },
}

TEMPLATES = {
    "confirmation.html": """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ subject }}</title></head>
<body style="font-family: sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1>{{ t.heading }}</h1>
  <p>{{ t.greeting }} <strong>{{ name }}</strong>,</p>
  <p>{{ t.intro }} <strong>{{ title }}</strong> {{ t.intro_end }}</p>
  {% if show_ticket %}<p>🎫 {{ t.ticket }}: <strong>{{ ticket_name }}</strong></p>{% endif %}
  <h2>{{ t.details }}</h2>
  <table>
    <tr><td>{{ t.event }}</td><td><strong>{{ title }}</strong></td></tr>
    <tr><td>{{ t.date }}</td><td><strong>{{ date }}</strong></td></tr>
    <tr><td>{{ t.time }}</td><td><strong>{{ time }}</strong></td></tr>
  </table>
  {% if meeting_link %}
  <p>{{ t.access }}</p>
  <p><a href="{{ meeting_link }}">{{ t.join }}</a></p>
  <p>{{ t.keep_link }}</p>
  {% else %}
  <p>⚠️ {{ t.no_link }}</p>
  {% endif %}
  <h3>📅 {{ t.calendar }}</h3>
  <p>
    <a href="{{ calendar_google }}">📆 Google</a> ·
    <a href="{{ calendar_outlook }}">📧 Outlook</a> ·
    <a href="{{ calendar_ics }}">⬇️ {{ t.download_ics }}</a>
  </p>
  <p style="color: #9ca3af; font-size: 12px;">Uniflow - {{ t.tagline }}<br>{{ t.footer }}</p>
</body>
</html>
""",
    "confirmation.txt": """{{ t.heading }}

{{ t.greeting }} {{ name }},

{{ t.intro }} {{ title }} {{ t.intro_end }}
{% if show_ticket %}{{ t.ticket }}: {{ ticket_name }}
{% endif %}
{{ t.date }} {{ date }}
{{ t.time }} {{ time }}

{% if meeting_link %}{{ t.access }} {{ meeting_link }}{% else %}{{ t.no_link }}{% endif %}

{{ t.calendar }}
Google: {{ calendar_google }}
{{ t.download_ics }}: {{ calendar_ics }}

Uniflow
""",
    "thank_you.html": """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ subject }}</title></head>
<body style="font-family: sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1>{{ t.thanks_heading }}</h1>
  <p>{{ t.greeting }} {{ name }},</p>
  <p>{{ t.thanks_intro }} <strong>{{ title }}</strong>.</p>
  {% if feedback_url %}
  <p>{{ t.thanks_feedback }}</p>
  <p><a href="{{ feedback_url }}">{{ t.thanks_button }}</a></p>
  {% endif %}
  <p style="color: #9ca3af; font-size: 12px;">Uniflow - {{ t.tagline }}</p>
</body>
</html>
""",
    "bulk.html": """<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
  <p>{{ t.greeting }} {{ name }},</p>
  <div style="white-space: pre-wrap;">{{ body }}</div>
  <p style="margin-top: 30px; color: #666; font-size: 12px;">{{ t.bulk_footer }}</p>
</div>
""",
    "bulk.txt": """{{ t.greeting }} {{ name }},

{{ body }}
""",
}

env = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",)),
    keep_trailing_newline=True,
)


def render_confirmation(d: ConfirmationDetails, *, app_url: str,
                        tz: str) -> RenderedEmail:
    lang = pick_locale(d.locale)
    t = TEXTS[lang]
    app_url = app_url.rstrip("/")
    subject = t["subject"].format(title=d.event_title)
    ctx = {
        "t": t,
        "subject": subject,
        "name": d.customer_name or t["default_name"],
        "title": d.event_title,
        "ticket_name": d.ticket_name,
        "show_ticket": bool(d.ticket_name)
        and d.ticket_name != GENERAL_ADMISSION,
        # date in the event's language, copy in the buyer's
        "date": (format_event_date(d.starts_at, d.event_language, tz)
                 if d.starts_at else ""),
        "time": format_event_time(d.starts_at, tz) if d.starts_at else "",
        "meeting_link": d.meeting_link,
        "calendar_ics": f"{app_url}/api/calendar/{d.event_id}",
        "calendar_google":
            f"{app_url}/api/calendar/redirect/{d.event_id}?provider=google",
        "calendar_outlook":
            f"{app_url}/api/calendar/redirect/{d.event_id}?provider=outlook",
    }
    return RenderedEmail(
        subject=subject,
        html=env.get_template("confirmation.html").render(ctx),
        text=env.get_template("confirmation.txt").render(ctx),
    )


def render_thank_you(*, name: str, event_title: str,
                     feedback_url: Optional[str],
                     locale: str) -> RenderedEmail:
    t = TEXTS[pick_locale(locale)]
    subject = t["thanks_subject"].format(title=event_title)
    html = env.get_template("thank_you.html").render(
        t=t,
        subject=subject,
        name=name or t["default_name"],
        title=event_title,
        feedback_url=feedback_url,
    )
    return RenderedEmail(subject=subject, html=html)


def render_bulk(*, name: str, subject: str, body: str,
                locale: str = DEFAULT_LOCALE) -> RenderedEmail:
    t = TEXTS[pick_locale(locale)]
    ctx = {"t": t, "name": name or t["default_name"], "body": body}
    return RenderedEmail(
        subject=subject,
        html=env.get_template("bulk.html").render(ctx),
        text=env.get_template("bulk.txt").render(ctx),
    )
