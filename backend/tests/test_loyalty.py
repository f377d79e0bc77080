"""
Tests for the loyalty ledger: earning, redemption against the live balance,
staff corrections and balance/ledger consistency.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from boxoffice.core.exceptions import InsufficientLoyaltyPoints, NotFoundError, ValidationError
from boxoffice.models import LoyaltyAccount, LoyaltySettings, LoyaltyTransaction
from boxoffice.services import loyalty_service

from tests.conftest import CUSTOMER_ID, ORG_ID, OTHER_ORG_ID


async def balance(session_factory, customer_id=CUSTOMER_ID) -> int:
    async with session_factory() as db:
        return await loyalty_service.get_balance(db, ORG_ID, customer_id)


async def consistent(session_factory, customer_id=CUSTOMER_ID) -> bool:
    async with session_factory() as db:
        return await loyalty_service.verify_balance(db, ORG_ID, customer_id)


async def earn(session_factory, amount: str) -> int:
    async with session_factory() as db:
        points = await loyalty_service.earn(db, ORG_ID, CUSTOMER_ID, None, Decimal(amount))
        await db.commit()
        return points


async def redeem(session_factory, reward_id):
    async with session_factory() as db:
        try:
            reward = await loyalty_service.get_reward(db, ORG_ID, reward_id)
            discount = await loyalty_service.redeem(db, ORG_ID, CUSTOMER_ID, reward, None, Decimal("30.00"))
            await db.commit()
            return discount
        except InsufficientLoyaltyPoints as e:
            await db.rollback()
            return e


@pytest.mark.parametrize(
    "rate,per_booking,amount,expected",
    [
        (Decimal("1"), 0, Decimal("24.70"), 24),
        (Decimal("1.5"), 2, Decimal("10.99"), 18),
        (Decimal("0"), 5, Decimal("100.00"), 5),
        (Decimal("2"), 0, Decimal("0.00"), 0),
    ],
)
def test_points_for_spend(rate, per_booking, amount, expected):
    settings = LoyaltySettings(points_per_currency_unit=rate, points_per_booking=per_booking)
    assert loyalty_service.points_for(settings, amount) == expected


@pytest.mark.asyncio
async def test_first_earn_opens_account_with_welcome_bonus(session_factory, catalog):
    async with session_factory() as db:
        await db.execute(
            update(LoyaltySettings)
            .where(LoyaltySettings.organization_id == ORG_ID)
            .values(welcome_bonus_points=25)
        )
        await db.commit()

    assert await earn(session_factory, "12.40") == 12
    assert await earn(session_factory, "3.00") == 3

    async with session_factory() as db:
        entries = await loyalty_service.list_transactions(db, ORG_ID, CUSTOMER_ID)
    assert [(e.transaction_type, e.points) for e in reversed(entries)] == [
        ("welcome_bonus", 25),
        ("earned", 12),
        ("earned", 3),
    ]
    assert await balance(session_factory) == 40
    assert await consistent(session_factory)


@pytest.mark.asyncio
async def test_disabled_program_earns_nothing(session_factory, catalog):
    async with session_factory() as db:
        assert await loyalty_service.earn(db, OTHER_ORG_ID, CUSTOMER_ID, None, Decimal("50.00")) == 0
        assert await loyalty_service.get_account(db, OTHER_ORG_ID, CUSTOMER_ID) is None


@pytest.mark.asyncio
async def test_redeem_with_insufficient_points_has_no_side_effect(session_factory, catalog, make_reward, give_points):
    reward_id = await make_reward(points_required=50)
    await give_points(40)

    result = await redeem(session_factory, reward_id)

    assert isinstance(result, InsufficientLoyaltyPoints)
    assert result.details == {"customer_id": CUSTOMER_ID, "balance": 40, "required": 50}
    assert await balance(session_factory) == 40
    async with session_factory() as db:
        types = [e.transaction_type for e in await loyalty_service.list_transactions(db, ORG_ID, CUSTOMER_ID)]
    assert "redeemed" not in types


@pytest.mark.asyncio
async def test_earn_commits_before_redeem(session_factory, catalog, make_reward, give_points):
    reward_id = await make_reward(points_required=50)
    await give_points(40)

    await earn(session_factory, "20.00")
    result = await redeem(session_factory, reward_id)

    assert result == Decimal("5.00")
    assert await balance(session_factory) == 10
    assert await consistent(session_factory)


@pytest.mark.asyncio
async def test_redeem_commits_before_earn(session_factory, catalog, make_reward, give_points):
    reward_id = await make_reward(points_required=50)
    await give_points(40)

    result = await redeem(session_factory, reward_id)
    await earn(session_factory, "20.00")

    assert isinstance(result, InsufficientLoyaltyPoints)
    assert await balance(session_factory) == 60
    assert await consistent(session_factory)


@pytest.mark.asyncio
async def test_concurrent_earn_and_redeem_stay_consistent(session_factory, catalog, make_reward, give_points):
    reward_id = await make_reward(points_required=50)
    await give_points(40)

    _, result = await asyncio.gather(earn(session_factory, "20.00"), redeem(session_factory, reward_id))

    final = await balance(session_factory)
    if isinstance(result, InsufficientLoyaltyPoints):
        assert final == 60
    else:
        assert final == 10
    assert await consistent(session_factory)


@pytest.mark.asyncio
async def test_redeem_requires_enabled_program(session_factory, catalog, make_reward, give_points):
    reward_id = await make_reward(points_required=10)
    await give_points(40)

    async with session_factory() as db:
        await db.execute(update(LoyaltySettings).values(is_enabled=False))
        await db.commit()

    async with session_factory() as db:
        reward = await loyalty_service.get_reward(db, ORG_ID, reward_id)
        with pytest.raises(ValidationError, match="not enabled"):
            await loyalty_service.redeem(db, ORG_ID, CUSTOMER_ID, reward, None, Decimal("10.00"))


@pytest.mark.asyncio
async def test_reward_from_another_organization_is_unavailable(session_factory, catalog, make_reward):
    reward_id = await make_reward(organization_id=OTHER_ORG_ID)

    async with session_factory() as db:
        with pytest.raises(ValidationError):
            await loyalty_service.get_reward(db, ORG_ID, reward_id)


@pytest.mark.asyncio
async def test_staff_adjustments(session_factory, catalog, give_points):
    await give_points(30)

    async with session_factory() as db:
        entry = await loyalty_service.adjust_points(db, ORG_ID, CUSTOMER_ID, -10, description="goodwill reversal")
        await db.commit()
        assert entry.transaction_type == "adjustment"

        with pytest.raises(InsufficientLoyaltyPoints):
            await loyalty_service.adjust_points(db, ORG_ID, CUSTOMER_ID, -21)
        with pytest.raises(ValidationError):
            await loyalty_service.adjust_points(db, ORG_ID, CUSTOMER_ID, 0)
        with pytest.raises(NotFoundError):
            await loyalty_service.adjust_points(db, ORG_ID, 555, -5)
        await db.rollback()

    assert await balance(session_factory) == 20
    assert await consistent(session_factory)


@pytest.mark.asyncio
async def test_expiry_is_clamped_to_balance(session_factory, catalog, give_points):
    await give_points(15)

    async with session_factory() as db:
        entry = await loyalty_service.expire_points(db, ORG_ID, CUSTOMER_ID, 40)
        await db.commit()
        assert entry.points == -15
        assert entry.transaction_type == "expired"

        assert await loyalty_service.expire_points(db, ORG_ID, CUSTOMER_ID, 5) is None
        await db.commit()

    assert await balance(session_factory) == 0
    assert await consistent(session_factory)


@pytest.mark.asyncio
async def test_drift_between_account_and_ledger_is_detected(session_factory, catalog, give_points):
    await give_points(15)

    async with session_factory() as db:
        await db.execute(update(LoyaltyAccount).values(loyalty_points=99))
        await db.commit()

    assert not await consistent(session_factory)

    async with session_factory() as db:
        total = (await db.execute(select(LoyaltyTransaction.points))).scalars().all()
    assert sum(total) == 15
