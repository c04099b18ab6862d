"""Tests for read-only promo code validation."""

import typing as t

import pytest

from uniflow.errors import (
    PromoExhausted, PromoExpired, PromoInactive, PromoNotApplicable,
    PromoNotFound,
)
from uniflow.promos import PromoValidator

from tests.conftest import future, past

pytestmark = pytest.mark.asyncio


@pytest.fixture
def promos(sessions: t.Any) -> PromoValidator:
    return PromoValidator(sessions)


async def test_valid_code_is_case_insensitive(
    promos: PromoValidator, make_promo: t.Any
) -> None:
    await make_promo(code="WELCOME10", expires_at=future())

    check = await promos.validate("  welcome10 ")

    assert check.to_json() == {
        "valid": True,
        "code": "WELCOME10",
        "discountType": "percentage",
        "discountValue": 10.0,
    }


async def test_event_scoped_code(promos: PromoValidator, make_promo: t.Any) -> None:
    await make_promo(code="PY5", discount_type="fixed", discount_value=5, event_id="evt-1")

    check = await promos.validate("PY5", "evt-1")
    assert check.discount_type == "fixed"

    with pytest.raises(PromoNotApplicable):
        await promos.validate("PY5", "evt-2")


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"active": False}, PromoInactive),
        ({"expires_at": past()}, PromoExpired),
        ({"expires_at": {"seconds": 946684800}}, PromoExpired),
        ({"expires_at": "soon"}, PromoExpired),
        ({"max_uses": 3, "used_count": 3}, PromoExhausted),
    ],
)
async def test_rejections(
    promos: PromoValidator, make_promo: t.Any,
    overrides: t.Dict[str, t.Any], error: t.Type[Exception],
) -> None:
    await make_promo(code="NOPE", **overrides)

    with pytest.raises(error):
        await promos.validate("NOPE")


async def test_unknown_code(promos: PromoValidator) -> None:
    with pytest.raises(PromoNotFound) as exc_info:
        await promos.validate("MISSING")

    assert exc_info.value.status_code == 404
    assert exc_info.value.public_message == "Invalid promo code"


async def test_max_uses_not_reached(promos: PromoValidator, make_promo: t.Any) -> None:
    await make_promo(code="LIMITED", max_uses=3, used_count=2)

    assert (await promos.validate("LIMITED")).code == "LIMITED"
