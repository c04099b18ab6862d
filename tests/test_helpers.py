"""Tests for the shared time, email and amount helpers."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from uniflow.helpers import (
    email_domain, from_cents, is_valid_email, normalize_email,
    parse_instant, sanitize_name, to_cents, to_decimal,
)

INSTANT = datetime(2030, 5, 17, 18, 30, tzinfo=timezone.utc)


class TestParseInstant:
    @pytest.mark.parametrize(
        "value",
        [
            INSTANT,
            INSTANT.replace(tzinfo=None),
            "2030-05-17T18:30:00Z",
            "2030-05-17T20:30:00+02:00",
            INSTANT.timestamp(),
            int(INSTANT.timestamp()),
            {"seconds": int(INSTANT.timestamp()), "nanoseconds": 0},
            {"_seconds": int(INSTANT.timestamp()), "_nanoseconds": 0},
        ],
    )
    def test_known_shapes_resolve_to_the_same_instant(self, value: object) -> None:
        assert parse_instant(value) == INSTANT

    @pytest.mark.parametrize(
        "value", [None, "", "next tuesday", {"seconds": "soon"}, [], True]
    )
    def test_unknown_shapes_are_none(self, value: object) -> None:
        assert parse_instant(value) is None

    def test_result_is_timezone_aware(self) -> None:
        assert parse_instant("2030-05-17T18:30:00").tzinfo is not None


class TestEmail:
    @pytest.mark.parametrize(
        "email", ["a@b.co", "first.last@uni.example.edu", "  x@y.org  "]
    )
    def test_valid(self, email: str) -> None:
        assert is_valid_email(email)

    @pytest.mark.parametrize(
        "email", [None, "", "no-at-sign", "a@b", "a b@c.de", "@c.de"]
    )
    def test_invalid(self, email: str) -> None:
        assert not is_valid_email(email)

    def test_normalize_trims_and_lowercases(self) -> None:
        assert normalize_email("  Ada@Uni.EDU ") == "ada@uni.edu"

    def test_domain_is_case_insensitive(self) -> None:
        assert email_domain("Ada@Uni.EDU") == "uni.edu"


class TestSanitizeName:
    def test_strips_angle_brackets(self) -> None:
        assert sanitize_name("<script>Ada</script>") == "scriptAda/script"

    def test_truncates(self) -> None:
        assert len(sanitize_name("x" * 500)) == 100

    def test_empty(self) -> None:
        assert sanitize_name(None) == ""


class TestAmounts:
    def test_to_decimal_rejects_garbage(self) -> None:
        assert to_decimal("abc") is None
        assert to_decimal(float("nan")) is None
        assert to_decimal(True) is None
        assert to_decimal(None) is None

    def test_to_decimal_keeps_exact_value(self) -> None:
        assert to_decimal(19.99) == Decimal("19.99")

    def test_cents(self) -> None:
        assert to_cents(Decimal("19.99")) == 1999
        assert from_cents(2000) == Decimal("20.00")
