"""
Promo code usage counter.

CONCURRENCY STRATEGY: Capped conditional increment
===================================================

Problem:
  A code with max_uses=100 sits at 99. Two checkouts read 99, both decide
  there is one use left, both write 100. The cap is silently exceeded.

Solution:
      UPDATE promo_codes SET current_uses = current_uses + 1
       WHERE id = :id AND (max_uses IS NULL OR current_uses < max_uses)

  rowcount == 1 means this transaction owns one of the remaining uses;
  rowcount == 0 means the code is exhausted. The database evaluates the
  condition against the latest committed value while holding the row lock,
  and the CHECK constraint current_uses <= max_uses backs it up.

  Window and minimum-order checks have no race (they depend on the clock and
  the caller's cart) and run before the increment, so a rejected code never
  consumes a use.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.exceptions import (
    NotFoundError, PromoExhausted, PromoExpired, PromoMinimumNotMet, ValidationError,
)
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_promo_redemption
from boxoffice.models.promo import PromoCode
from boxoffice.services.pricing import PROMO_DISCOUNT_KINDS, calculate_discount, to_money

logger = get_logger(__name__)

promo_codes = PromoCode.__table__


@dataclass(frozen=True)
class PromoApplication:
    promo_id: int
    code: str
    discount_amount: Decimal


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def resolve_promo_code(db: AsyncSession, organization_id: int, code: str) -> PromoCode:
    result = await db.execute(
        select(PromoCode)
        .where(
            PromoCode.organization_id == organization_id,
            PromoCode.code == code.strip().upper(),
        )
        .execution_options(populate_existing=True)
    )
    promo = result.scalar_one_or_none()
    if not promo or not promo.is_active:
        raise ValidationError("Invalid promo code", promo_code=code)
    return promo


async def _load(db: AsyncSession, promo_id: int) -> PromoCode:
    promo = await db.get(PromoCode, promo_id, populate_existing=True)
    if not promo:
        raise NotFoundError(f"Promo code {promo_id} not found", promo_id=promo_id)
    if not promo.is_active:
        raise ValidationError("Invalid promo code", promo_id=promo_id)
    return promo


def _check_eligibility(promo: PromoCode, order_subtotal: Decimal, now: datetime) -> None:
    valid_from = as_utc(promo.valid_from)
    valid_until = as_utc(promo.valid_until)
    if valid_from and now < valid_from:
        record_promo_redemption("expired")
        raise PromoExpired(
            f"Promo code {promo.code} is not valid yet",
            promo_id=promo.id,
            valid_from=valid_from.isoformat(),
        )
    if valid_until and now > valid_until:
        record_promo_redemption("expired")
        raise PromoExpired(
            f"Promo code {promo.code} has expired",
            promo_id=promo.id,
            valid_until=valid_until.isoformat(),
        )
    if to_money(order_subtotal) < to_money(promo.min_order_value):
        record_promo_redemption("minimum_not_met")
        raise PromoMinimumNotMet(
            f"Minimum order of {to_money(promo.min_order_value)} required for {promo.code}",
            promo_id=promo.id,
            min_order_value=str(to_money(promo.min_order_value)),
            order_subtotal=str(to_money(order_subtotal)),
        )
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        record_promo_redemption("exhausted")
        raise PromoExhausted(f"Promo code {promo.code} has been fully redeemed", promo_id=promo.id)


def _discount_for(promo: PromoCode, order_subtotal: Decimal, free_item_value: Optional[Decimal]) -> Decimal:
    return calculate_discount(
        PROMO_DISCOUNT_KINDS[promo.discount_type],
        promo.discount_value,
        order_subtotal,
        free_item_value,
    )


async def apply_promo(
    db: AsyncSession,
    promo_id: int,
    order_subtotal: Decimal,
    free_item_value: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> PromoApplication:
    """
    Claim one use of the promo inside the caller's transaction and return the
    discount it grants on `order_subtotal`.
    """
    now = now or datetime.now(timezone.utc)
    promo = await _load(db, promo_id)
    _check_eligibility(promo, order_subtotal, now)

    result = await db.execute(
        update(promo_codes)
        .where(
            promo_codes.c.id == promo_id,
            or_(promo_codes.c.max_uses.is_(None), promo_codes.c.current_uses < promo_codes.c.max_uses),
        )
        .values(current_uses=promo_codes.c.current_uses + 1)
    )
    if result.rowcount == 0:
        record_promo_redemption("exhausted")
        logger.info("promo_exhausted", promo_id=promo_id, code=promo.code)
        raise PromoExhausted(f"Promo code {promo.code} has been fully redeemed", promo_id=promo_id)

    discount = _discount_for(promo, order_subtotal, free_item_value)
    record_promo_redemption("applied")
    logger.info("promo_applied", promo_id=promo_id, code=promo.code, discount=str(discount))
    return PromoApplication(promo_id=promo_id, code=promo.code, discount_amount=discount)


async def preview_promo(
    db: AsyncSession,
    organization_id: int,
    code: str,
    order_subtotal: Decimal,
    free_item_value: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> PromoApplication:
    """Price a code against a cart without claiming a use."""
    now = now or datetime.now(timezone.utc)
    promo = await resolve_promo_code(db, organization_id, code)
    _check_eligibility(promo, order_subtotal, now)
    return PromoApplication(
        promo_id=promo.id,
        code=promo.code,
        discount_amount=_discount_for(promo, order_subtotal, free_item_value),
    )
