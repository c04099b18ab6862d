"""Tests for localized email rendering."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from uniflow.emails import (
    ConfirmationDetails, format_event_date, format_event_time, pick_locale,
    render_bulk, render_confirmation, render_thank_you,
)

STARTS_AT = datetime(2030, 5, 17, 16, 0, tzinfo=timezone.utc)

DETAILS = ConfirmationDetails(
    event_id="evt-1",
    event_title="Intro to Python",
    starts_at=STARTS_AT,
    event_language="en",
    ticket_name="VIP",
    customer_name="Ada",
    customer_surname="Lovelace",
    meeting_link="https://meet.example.com/abc",
)


@pytest.mark.parametrize(
    "locale, expected", [("fr", "fr"), ("fr-CA", "fr"), ("EN", "en"), ("de", "en"), (None, "en")]
)
def test_pick_locale(locale: str, expected: str) -> None:
    assert pick_locale(locale) == expected


class TestDateFormatting:
    def test_english(self) -> None:
        assert format_event_date(STARTS_AT, "en", "Europe/Paris") == "Friday 17 May 2030"

    def test_french(self) -> None:
        assert format_event_date(STARTS_AT, "fr", "Europe/Paris") == "vendredi 17 mai 2030"

    def test_time_in_configured_zone(self) -> None:
        assert format_event_time(STARTS_AT, "Europe/Paris") == "18:00"

    def test_date_can_roll_over(self) -> None:
        late = datetime(2030, 5, 17, 23, 30, tzinfo=timezone.utc)

        assert format_event_date(late, "en", "Europe/Paris") == "Saturday 18 May 2030"


class TestConfirmation:
    def test_english_copy(self) -> None:
        email = render_confirmation(DETAILS, app_url="https://uniflow.test/", tz="Europe/Paris")

        assert email.subject == "🎓 Your registration for Intro to Python"
        assert "Registration Confirmed" in email.html
        assert "Friday 17 May 2030" in email.html
        assert "18:00" in email.html
        assert "VIP" in email.html
        assert "https://meet.example.com/abc" in email.html
        assert "https://uniflow.test/api/calendar/evt-1" in email.html
        assert "/api/calendar/redirect/evt-1?provider=google" in email.html
        assert "Ada" in email.text

    def test_buyer_locale_picks_copy_event_language_picks_date(self) -> None:
        details = replace(DETAILS, locale="fr", event_language="en")

        email = render_confirmation(details, app_url="https://uniflow.test", tz="Europe/Paris")

        assert email.subject == "🎓 Votre inscription pour Intro to Python"
        assert "Inscription confirmée" in email.html
        assert "Friday 17 May 2030" in email.html

    def test_general_admission_is_not_shown(self) -> None:
        details = replace(DETAILS, ticket_name="General Admission")

        email = render_confirmation(details, app_url="https://uniflow.test", tz="Europe/Paris")

        assert "General Admission" not in email.html
        assert "General Admission" not in email.text

    def test_missing_link_notice(self) -> None:
        details = replace(DETAILS, meeting_link=None)

        email = render_confirmation(details, app_url="https://uniflow.test", tz="Europe/Paris")

        assert "will be sent separately" in email.html

    def test_names_are_escaped_in_html(self) -> None:
        details = replace(DETAILS, customer_name="<img src=x>")

        email = render_confirmation(details, app_url="https://uniflow.test", tz="Europe/Paris")

        assert "<img src=x>" not in email.html
        assert "&lt;img src=x&gt;" in email.html

    def test_fallback_name(self) -> None:
        details = replace(DETAILS, customer_name="", locale="fr")

        email = render_confirmation(details, app_url="https://uniflow.test", tz="Europe/Paris")

        assert "Étudiant" in email.html


def test_thank_you_without_feedback_link() -> None:
    email = render_thank_you(name="Ada", event_title="Intro", feedback_url=None, locale="en")

    assert email.subject == "🙏 Thank you for attending Intro"
    assert "Share feedback" not in email.html


def test_bulk_keeps_plain_text_body() -> None:
    email = render_bulk(name="Ada", subject="Update", body="See you at 5 & 6")

    assert email.subject == "Update"
    assert "See you at 5 &amp; 6" in email.html
    assert "See you at 5 & 6" in email.text
