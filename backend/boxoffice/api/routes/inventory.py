"""
Concession stock management for staff. Every change goes through the
inventory ledger and leaves a history row.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.security import Identity, require_staff
from boxoffice.db.session import get_db
from boxoffice.db.unit_of_work import run_in_transaction
from boxoffice.schemas.inventory import (
    ConcessionItemResponse, InventoryHistoryResponse, Restock, StartTracking, StockAdjustment,
    StockMovementResponse,
)
from boxoffice.services import inventory_service

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/items/{item_id}/tracking", response_model=StockMovementResponse)
async def start_tracking(
    item_id: int,
    body: StartTracking,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Start counting stock for an item with its opening quantity."""

    async def work():
        await inventory_service.get_item(db, identity.organization_id, item_id)
        return await inventory_service.start_tracking(
            db, item_id, body.initial_quantity, created_by=identity.user_id,
        )

    return await run_in_transaction(db, "start_tracking", work)


@router.post("/items/{item_id}/restock", response_model=StockMovementResponse)
async def restock(
    item_id: int,
    body: Restock,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    async def work():
        await inventory_service.get_item(db, identity.organization_id, item_id)
        return await inventory_service.restock(
            db, item_id, body.quantity, created_by=identity.user_id, notes=body.notes,
        )

    return await run_in_transaction(db, "restock", work)


@router.post("/items/{item_id}/adjust", response_model=StockMovementResponse)
async def adjust(
    item_id: int,
    body: StockAdjustment,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Signed correction after a stock count. Stock never goes below zero."""

    async def work():
        await inventory_service.get_item(db, identity.organization_id, item_id)
        return await inventory_service.adjust(
            db, item_id, body.delta, created_by=identity.user_id, notes=body.notes,
        )

    return await run_in_transaction(db, "adjust_stock", work)


@router.get("/items/{item_id}/history", response_model=list[InventoryHistoryResponse])
async def item_history(
    item_id: int,
    limit: int = Query(100, ge=1, le=500),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    await inventory_service.get_item(db, identity.organization_id, item_id)
    history = await inventory_service.get_item_history(db, item_id, limit=limit)
    await db.commit()
    return history


@router.get("/low-stock", response_model=list[ConcessionItemResponse])
async def low_stock(
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    items = await inventory_service.list_low_stock_items(db, identity.organization_id)
    await db.commit()
    return items
