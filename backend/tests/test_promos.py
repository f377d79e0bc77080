"""
Tests for promo code eligibility, discount math and the capped usage counter.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from boxoffice.core.exceptions import PromoExhausted, PromoExpired, PromoMinimumNotMet, ValidationError
from boxoffice.models import PromoCode
from boxoffice.services import promo_service
from boxoffice.services.pricing import calculate_discount

from tests.conftest import ORG_ID, OTHER_ORG_ID


async def uses(session_factory, promo_id) -> int:
    async with session_factory() as db:
        promo = await db.get(PromoCode, promo_id)
        return promo.current_uses


@pytest.mark.parametrize(
    "kind,value,subtotal,free_item,expected",
    [
        ("percentage", Decimal("10"), Decimal("33.00"), None, Decimal("3.30")),
        ("percentage", Decimal("150"), Decimal("20.00"), None, Decimal("20.00")),
        ("fixed", Decimal("5.00"), Decimal("33.00"), None, Decimal("5.00")),
        ("fixed", Decimal("50.00"), Decimal("12.00"), None, Decimal("12.00")),
        ("free_item", None, Decimal("25.00"), Decimal("10.00"), Decimal("10.00")),
        ("free_item", None, Decimal("8.00"), Decimal("10.00"), Decimal("8.00")),
        ("percentage", Decimal("10"), Decimal("0.00"), None, Decimal("0.00")),
    ],
)
def test_discount_never_exceeds_what_it_applies_to(kind, value, subtotal, free_item, expected):
    assert calculate_discount(kind, value, subtotal, free_item) == expected


def test_unknown_discount_kind_is_a_bug():
    with pytest.raises(ValueError):
        calculate_discount("bogus", Decimal("1"), Decimal("10"))


@pytest.mark.asyncio
async def test_apply_claims_one_use(session_factory, catalog, make_promo):
    promo_id = await make_promo("SAVE10", max_uses=5)

    async with session_factory() as db:
        application = await promo_service.apply_promo(db, promo_id, Decimal("40.00"))
        await db.commit()

    assert application.code == "SAVE10"
    assert application.discount_amount == Decimal("4.00")
    assert await uses(session_factory, promo_id) == 1


@pytest.mark.asyncio
async def test_free_ticket_promo_uses_supplied_item_value(session_factory, catalog, make_promo):
    promo_id = await make_promo("FREESEAT", discount_type="free_ticket", discount_value=Decimal("0"))

    async with session_factory() as db:
        application = await promo_service.apply_promo(db, promo_id, Decimal("25.00"), free_item_value=Decimal("10.00"))

    assert application.discount_amount == Decimal("10.00")


@pytest.mark.asyncio
async def test_expired_and_not_yet_valid_codes(session_factory, catalog, make_promo):
    now = datetime.now(timezone.utc)
    expired = await make_promo("OLD", valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1))
    future = await make_promo("SOON", valid_from=now + timedelta(days=1))

    async with session_factory() as db:
        with pytest.raises(PromoExpired, match="expired"):
            await promo_service.apply_promo(db, expired, Decimal("40.00"))
        with pytest.raises(PromoExpired, match="not valid yet"):
            await promo_service.apply_promo(db, future, Decimal("40.00"))
        await db.rollback()

    assert await uses(session_factory, expired) == 0
    assert await uses(session_factory, future) == 0


@pytest.mark.asyncio
async def test_minimum_order_not_met(session_factory, catalog, make_promo):
    promo_id = await make_promo("BIGSPEND", min_order_value=Decimal("50.00"))

    async with session_factory() as db:
        with pytest.raises(PromoMinimumNotMet) as exc_info:
            await promo_service.apply_promo(db, promo_id, Decimal("49.99"))
        await db.rollback()

    assert exc_info.value.details["min_order_value"] == "50.00"
    assert await uses(session_factory, promo_id) == 0


@pytest.mark.asyncio
async def test_exhausted_code_is_rejected(session_factory, catalog, make_promo):
    promo_id = await make_promo("GONE", max_uses=3, current_uses=3)

    async with session_factory() as db:
        with pytest.raises(PromoExhausted):
            await promo_service.apply_promo(db, promo_id, Decimal("40.00"))


@pytest.mark.asyncio
async def test_last_use_goes_to_exactly_one_of_two_checkouts(session_factory, catalog, make_promo):
    promo_id = await make_promo("LASTONE", max_uses=100, current_uses=99)

    async def checkout():
        async with session_factory() as db:
            try:
                application = await promo_service.apply_promo(db, promo_id, Decimal("40.00"))
                await db.commit()
                return application
            except PromoExhausted as e:
                await db.rollback()
                return e

    results = await asyncio.gather(checkout(), checkout())

    assert sum(1 for r in results if isinstance(r, PromoExhausted)) == 1
    assert sum(1 for r in results if isinstance(r, promo_service.PromoApplication)) == 1
    assert await uses(session_factory, promo_id) == 100


@pytest.mark.asyncio
async def test_preview_does_not_consume_a_use(session_factory, catalog, make_promo):
    promo_id = await make_promo("PEEK", max_uses=1)

    async with session_factory() as db:
        application = await promo_service.preview_promo(db, ORG_ID, "peek", Decimal("20.00"))
        await db.commit()

    assert application.discount_amount == Decimal("2.00")
    assert await uses(session_factory, promo_id) == 0


@pytest.mark.asyncio
async def test_lookup_is_case_insensitive_and_scoped(session_factory, catalog, make_promo):
    promo_id = await make_promo("WEEKEND")

    async with session_factory() as db:
        promo = await promo_service.resolve_promo_code(db, ORG_ID, "  weekend ")
        assert promo.id == promo_id

        with pytest.raises(ValidationError):
            await promo_service.resolve_promo_code(db, OTHER_ORG_ID, "WEEKEND")


@pytest.mark.asyncio
async def test_inactive_code_is_invalid(session_factory, catalog, make_promo):
    await make_promo("PAUSED", is_active=False)

    async with session_factory() as db:
        with pytest.raises(ValidationError, match="Invalid promo code"):
            await promo_service.preview_promo(db, ORG_ID, "PAUSED", Decimal("20.00"))
