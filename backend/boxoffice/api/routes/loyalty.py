"""
Loyalty balance and ledger endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.security import Identity, get_current_identity, require_staff
from boxoffice.db.session import get_db
from boxoffice.db.unit_of_work import run_in_transaction
from boxoffice.schemas.loyalty import (
    LoyaltyBalanceResponse, LoyaltyTransactionResponse, PointsAdjustment, PointsExpiry,
)
from boxoffice.services import loyalty_service

router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


def _target_customer(identity: Identity, customer_id: Optional[int]) -> int:
    if customer_id is None or customer_id == identity.user_id:
        return identity.user_id
    if not identity.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required")
    return customer_id


@router.get("/balance", response_model=LoyaltyBalanceResponse)
async def get_balance(
    customer_id: Optional[int] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    target = _target_customer(identity, customer_id)
    balance = await loyalty_service.get_balance(db, identity.organization_id, target)
    consistent = await loyalty_service.verify_balance(db, identity.organization_id, target)
    await db.commit()
    return LoyaltyBalanceResponse(customer_id=target, loyalty_points=balance, consistent=consistent)


@router.get("/transactions", response_model=list[LoyaltyTransactionResponse])
async def list_transactions(
    customer_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    target = _target_customer(identity, customer_id)
    transactions = await loyalty_service.list_transactions(db, identity.organization_id, target, limit=limit)
    await db.commit()
    return transactions


@router.post("/customers/{customer_id}/adjust", response_model=LoyaltyTransactionResponse)
async def adjust_points(
    customer_id: int,
    body: PointsAdjustment,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    async def work():
        return await loyalty_service.adjust_points(
            db, identity.organization_id, customer_id, body.points, description=body.description,
        )

    return await run_in_transaction(db, "adjust_points", work)


@router.post("/customers/{customer_id}/expire", response_model=Optional[LoyaltyTransactionResponse])
async def expire_points(
    customer_id: int,
    body: PointsExpiry,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    async def work():
        return await loyalty_service.expire_points(
            db, identity.organization_id, customer_id, body.points, description=body.description,
        )

    return await run_in_transaction(db, "expire_points", work)
