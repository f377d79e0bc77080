"""
Loyalty points ledger.

CONCURRENCY STRATEGY: Ledger append guarded by a conditional balance update
===========================================================================

Problem:
  A customer with 40 points redeems a 50-point reward while a booking that
  earns them 20 points commits. If redemption reads the balance early in the
  request and writes later, it can approve against 60 points that were not
  there yet, or deny against 40 after they arrived, and a stored balance
  edited separately from the ledger drifts from the ledger's sum.

Solution:
  Every change is one ledger row plus one statement on the account row, in
  the same transaction:

      UPDATE loyalty_accounts SET loyalty_points = loyalty_points + :points
       WHERE organization_id = :org AND customer_id = :customer
         [AND loyalty_points >= :cost]            -- debits only

      INSERT INTO loyalty_transactions (...)      -- the row explaining it

  loyalty_points is never written anywhere else, so it is the running sum of
  the ledger at every commit. The conditional update is the atomic check
  point for redemptions: it sees the latest committed balance, holds the
  account row until commit, and a concurrent earn or redeem on the same
  customer waits for it. The CHECK constraint loyalty_points >= 0 backs it.

  verify_balance() recomputes SUM(points) from the ledger and reports drift.
"""

import math
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.exceptions import InsufficientLoyaltyPoints, NotFoundError, ValidationError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_loyalty_points
from boxoffice.models.loyalty import LoyaltyAccount, LoyaltyReward, LoyaltySettings, LoyaltyTransaction
from boxoffice.services.pricing import REWARD_DISCOUNT_KINDS, calculate_discount

logger = get_logger(__name__)

accounts = LoyaltyAccount.__table__


async def get_loyalty_settings(db: AsyncSession, organization_id: int) -> Optional[LoyaltySettings]:
    result = await db.execute(
        select(LoyaltySettings).where(LoyaltySettings.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def get_account(db: AsyncSession, organization_id: int, customer_id: int) -> Optional[LoyaltyAccount]:
    result = await db.execute(
        select(LoyaltyAccount)
        .where(
            LoyaltyAccount.organization_id == organization_id,
            LoyaltyAccount.customer_id == customer_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_balance(db: AsyncSession, organization_id: int, customer_id: int) -> int:
    account = await get_account(db, organization_id, customer_id)
    return account.loyalty_points if account else 0


async def ledger_balance(db: AsyncSession, organization_id: int, customer_id: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(LoyaltyTransaction.points), 0)).where(
            LoyaltyTransaction.organization_id == organization_id,
            LoyaltyTransaction.customer_id == customer_id,
        )
    )
    return int(result.scalar())


async def verify_balance(db: AsyncSession, organization_id: int, customer_id: int) -> bool:
    stored = await get_balance(db, organization_id, customer_id)
    derived = await ledger_balance(db, organization_id, customer_id)
    if stored != derived:
        logger.error(
            "loyalty_balance_drift",
            organization_id=organization_id,
            customer_id=customer_id,
            stored=stored,
            ledger=derived,
        )
        return False
    return True


async def _ensure_account(db: AsyncSession, organization_id: int, customer_id: int) -> tuple[LoyaltyAccount, bool]:
    """
    Returns (account, created). Two first bookings racing to create the same
    account collide on uq_loyalty_account_customer; the loser's transaction
    is retried by the caller and finds the account.
    """
    account = await get_account(db, organization_id, customer_id)
    if account:
        return account, False

    account = LoyaltyAccount(organization_id=organization_id, customer_id=customer_id, loyalty_points=0)
    db.add(account)
    await db.flush()
    logger.info("loyalty_account_created", organization_id=organization_id, customer_id=customer_id)
    return account, True


async def _append(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    points: int,
    transaction_type: str,
    booking_id: Optional[int] = None,
    reward_id: Optional[int] = None,
    description: Optional[str] = None,
) -> Optional[LoyaltyTransaction]:
    """
    Move the balance by `points` and record why. Debits only apply if the
    balance covers them; returns None when it does not.
    """
    stmt = (
        update(accounts)
        .where(
            accounts.c.organization_id == organization_id,
            accounts.c.customer_id == customer_id,
        )
        .values(loyalty_points=accounts.c.loyalty_points + points)
    )
    if points < 0:
        stmt = stmt.where(accounts.c.loyalty_points >= -points)

    result = await db.execute(stmt)
    if result.rowcount == 0:
        return None

    entry = LoyaltyTransaction(
        organization_id=organization_id,
        customer_id=customer_id,
        points=points,
        transaction_type=transaction_type,
        booking_id=booking_id,
        reward_id=reward_id,
        description=description,
    )
    db.add(entry)
    await db.flush()
    record_loyalty_points(transaction_type, points)
    return entry


def points_for(settings: LoyaltySettings, amount_spent: Decimal) -> int:
    per_unit = Decimal(str(settings.points_per_currency_unit or 0))
    earned = math.floor(Decimal(str(amount_spent)) * per_unit)
    return max(earned, 0) + (settings.points_per_booking or 0)


async def earn(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    booking_id: Optional[int],
    amount_spent: Decimal,
) -> int:
    """
    Append an `earned` entry for a booking. A customer's first earning
    booking opens their account and grants the welcome bonus as its own entry.
    Returns points earned (welcome bonus not included).
    """
    settings = await get_loyalty_settings(db, organization_id)
    if not settings or not settings.is_enabled:
        return 0

    account, created = await _ensure_account(db, organization_id, customer_id)
    if created and settings.welcome_bonus_points > 0:
        await _append(
            db, organization_id, customer_id, settings.welcome_bonus_points, "welcome_bonus",
            description="Welcome bonus",
        )

    points = points_for(settings, amount_spent)
    if points > 0:
        await _append(
            db, organization_id, customer_id, points, "earned",
            booking_id=booking_id,
            description=f"Earned on spend of {amount_spent}",
        )

    logger.info(
        "loyalty_earned",
        organization_id=organization_id,
        customer_id=customer_id,
        booking_id=booking_id,
        points=points,
    )
    return points


async def get_reward(db: AsyncSession, organization_id: int, reward_id: int) -> LoyaltyReward:
    reward = await db.get(LoyaltyReward, reward_id)
    if not reward or reward.organization_id != organization_id or not reward.is_active:
        raise ValidationError(f"Loyalty reward {reward_id} is not available", reward_id=reward_id)
    return reward


def reward_discount(
    reward: LoyaltyReward,
    subtotal: Decimal,
    free_item_value: Optional[Decimal] = None,
) -> Decimal:
    return calculate_discount(
        REWARD_DISCOUNT_KINDS[reward.reward_type],
        reward.discount_value,
        subtotal,
        free_item_value,
    )


async def redeem(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    reward: LoyaltyReward,
    booking_id: Optional[int],
    subtotal: Decimal,
    free_item_value: Optional[Decimal] = None,
) -> Decimal:
    """
    Spend reward.points_required and return the discount the reward grants
    on `subtotal`. Raises InsufficientLoyaltyPoints with no side effect.
    """
    settings = await get_loyalty_settings(db, organization_id)
    if not settings or not settings.is_enabled:
        raise ValidationError("Loyalty program is not enabled", organization_id=organization_id)

    entry = await _append(
        db, organization_id, customer_id, -reward.points_required, "redeemed",
        booking_id=booking_id,
        reward_id=reward.id,
        description=reward.name,
    )
    if entry is None:
        balance = await get_balance(db, organization_id, customer_id)
        logger.info(
            "loyalty_redeem_rejected",
            customer_id=customer_id,
            reward_id=reward.id,
            balance=balance,
            required=reward.points_required,
        )
        raise InsufficientLoyaltyPoints(customer_id, balance, reward.points_required)

    discount = reward_discount(reward, subtotal, free_item_value)
    logger.info(
        "loyalty_redeemed",
        customer_id=customer_id,
        reward_id=reward.id,
        points=reward.points_required,
        booking_id=booking_id,
        discount=str(discount),
    )
    return discount


async def adjust_points(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    points: int,
    description: Optional[str] = None,
    booking_id: Optional[int] = None,
) -> LoyaltyTransaction:
    """Staff correction. Debits never take the balance below zero."""
    if points == 0:
        raise ValidationError("Adjustment must change the balance", customer_id=customer_id)

    if points > 0:
        await _ensure_account(db, organization_id, customer_id)
    elif not await get_account(db, organization_id, customer_id):
        raise NotFoundError(f"No loyalty account for customer {customer_id}", customer_id=customer_id)

    entry = await _append(
        db, organization_id, customer_id, points, "adjustment",
        booking_id=booking_id,
        description=description,
    )
    if entry is None:
        balance = await get_balance(db, organization_id, customer_id)
        raise InsufficientLoyaltyPoints(customer_id, balance, -points)
    logger.info("loyalty_adjusted", customer_id=customer_id, points=points)
    return entry


async def expire_points(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    points: int,
    description: Optional[str] = None,
) -> Optional[LoyaltyTransaction]:
    """Expire up to `points` points; never more than the current balance."""
    if points <= 0:
        raise ValidationError("Points to expire must be positive", customer_id=customer_id)

    balance = await get_balance(db, organization_id, customer_id)
    to_expire = min(points, balance)
    if to_expire == 0:
        return None

    entry = await _append(
        db, organization_id, customer_id, -to_expire, "expired",
        description=description or "Points expired",
    )
    if entry is None:
        # Balance dropped between the read and the conditional update
        balance = await get_balance(db, organization_id, customer_id)
        raise InsufficientLoyaltyPoints(customer_id, balance, to_expire)
    logger.info("loyalty_expired", customer_id=customer_id, points=to_expire)
    return entry


async def reverse_booking_points(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    booking_id: int,
) -> Optional[LoyaltyTransaction]:
    """
    Undo a cancelled booking's effect on the balance: refund what it redeemed,
    revoke what it earned, as a single adjustment entry. A revocation the
    balance cannot cover is clamped so the balance stays at or above zero.
    """
    result = await db.execute(
        select(func.coalesce(func.sum(LoyaltyTransaction.points), 0)).where(
            LoyaltyTransaction.organization_id == organization_id,
            LoyaltyTransaction.customer_id == customer_id,
            LoyaltyTransaction.booking_id == booking_id,
        )
    )
    booking_net = int(result.scalar())
    delta = -booking_net
    if delta == 0:
        return None

    if delta < 0:
        balance = await get_balance(db, organization_id, customer_id)
        delta = max(delta, -balance)
        if delta == 0:
            return None

    entry = await _append(
        db, organization_id, customer_id, delta, "adjustment",
        booking_id=booking_id,
        description=f"Reversal for cancelled booking {booking_id}",
    )
    if entry is None:
        balance = await get_balance(db, organization_id, customer_id)
        raise InsufficientLoyaltyPoints(customer_id, balance, -delta)
    logger.info("loyalty_reversed", customer_id=customer_id, booking_id=booking_id, points=delta)
    return entry


async def list_transactions(
    db: AsyncSession,
    organization_id: int,
    customer_id: int,
    limit: int = 100,
) -> list[LoyaltyTransaction]:
    result = await db.execute(
        select(LoyaltyTransaction)
        .where(
            LoyaltyTransaction.organization_id == organization_id,
            LoyaltyTransaction.customer_id == customer_id,
        )
        .order_by(LoyaltyTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
