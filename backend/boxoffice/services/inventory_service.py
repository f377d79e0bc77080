"""
Inventory ledger for concession stock.

CONCURRENCY STRATEGY: Conditional update + audit row
=====================================================

Problem:
  Two bookings each buy 3 of the last 5 hot dogs. Both read stock=5, both
  write stock=2. One sale is lost and the history no longer adds up.

Solution:
  Every mutation is a single conditional UPDATE evaluated by the database:

      UPDATE concession_items
         SET stock_quantity = stock_quantity - :qty
       WHERE id = :item_id AND track_inventory AND stock_quantity >= :qty
   RETURNING stock_quantity, low_stock_threshold

  No row returned means the condition failed and nothing changed. A returned
  row gives us the new quantity; the previous one is new + qty because the
  row stays locked by our transaction until commit. The InventoryHistory row
  is written in the same transaction, so stock and history cannot diverge.

  Untracked items (track_inventory=false) are always available and never
  touched.

Low stock:
  A sale that leaves stock at or below the item's threshold enqueues a
  low_stock outbox event. The event is dispatched after commit and has no
  say in whether the sale succeeds.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.exceptions import InsufficientStock, NotFoundError, ValidationError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import low_stock_alerts
from boxoffice.models.inventory import ConcessionItem, InventoryHistory
from boxoffice.services.notification_service import enqueue_event

logger = get_logger(__name__)

items = ConcessionItem.__table__


@dataclass(frozen=True)
class StockMovement:
    item_id: int
    tracked: bool
    previous_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    change_amount: int = 0
    low_stock: bool = False


async def _get_item(db: AsyncSession, item_id: int) -> ConcessionItem:
    item = await db.get(ConcessionItem, item_id, populate_existing=True)
    if not item:
        raise NotFoundError(f"Concession item {item_id} not found", item_id=item_id)
    return item


async def _current_stock(db: AsyncSession, item_id: int) -> Optional[int]:
    result = await db.execute(select(ConcessionItem.stock_quantity).where(ConcessionItem.id == item_id))
    return result.scalar_one_or_none()


def _record(
    db: AsyncSession,
    item: ConcessionItem,
    previous: int,
    new: int,
    change_type: str,
    booking_id: Optional[int] = None,
    created_by: Optional[int] = None,
    notes: Optional[str] = None,
) -> InventoryHistory:
    entry = InventoryHistory(
        organization_id=item.organization_id,
        item_id=item.id,
        previous_quantity=previous,
        new_quantity=new,
        change_amount=new - previous,
        change_type=change_type,
        booking_id=booking_id,
        created_by=created_by,
        notes=notes,
    )
    db.add(entry)
    return entry


async def decrement_stock(
    db: AsyncSession,
    item_id: int,
    quantity: int,
    booking_id: Optional[int] = None,
) -> StockMovement:
    """Sell `quantity` units. Raises InsufficientStock without changing anything."""
    if quantity <= 0:
        raise ValidationError("Quantity must be positive", item_id=item_id, quantity=quantity)

    item = await _get_item(db, item_id)
    if not item.track_inventory:
        return StockMovement(item_id=item_id, tracked=False)

    result = await db.execute(
        update(items)
        .where(
            items.c.id == item_id,
            items.c.track_inventory.is_(True),
            items.c.stock_quantity >= quantity,
        )
        .values(stock_quantity=items.c.stock_quantity - quantity)
        .returning(items.c.stock_quantity, items.c.low_stock_threshold)
    )
    row = result.first()
    if row is None:
        available = await _current_stock(db, item_id)
        logger.info("stock_insufficient", item_id=item_id, requested=quantity, available=available)
        raise InsufficientStock(item_id, quantity, available)

    new_quantity, threshold = row
    previous_quantity = new_quantity + quantity
    _record(db, item, previous_quantity, new_quantity, "sale", booking_id=booking_id)

    low_stock = new_quantity <= threshold
    if low_stock:
        low_stock_alerts.inc()
        enqueue_event(
            db,
            item.organization_id,
            "low_stock",
            {
                "item_id": item.id,
                "name": item.name,
                "stock_quantity": new_quantity,
                "low_stock_threshold": threshold,
            },
        )

    logger.info(
        "stock_decremented",
        item_id=item_id,
        previous=previous_quantity,
        new=new_quantity,
        booking_id=booking_id,
        low_stock=low_stock,
    )
    return StockMovement(
        item_id=item_id,
        tracked=True,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        change_amount=-quantity,
        low_stock=low_stock,
    )


async def start_tracking(
    db: AsyncSession,
    item_id: int,
    initial_quantity: int,
    created_by: Optional[int] = None,
) -> StockMovement:
    """Turn on stock tracking for an item with its opening count (type=initial)."""
    if initial_quantity < 0:
        raise ValidationError("Initial quantity cannot be negative", item_id=item_id)

    item = await _get_item(db, item_id)
    result = await db.execute(
        update(items)
        .where(items.c.id == item_id, items.c.track_inventory.is_(False))
        .values(track_inventory=True, stock_quantity=initial_quantity)
    )
    if result.rowcount == 0:
        raise ValidationError(f"Item {item_id} is already tracked", item_id=item_id)

    _record(db, item, 0, initial_quantity, "initial", created_by=created_by)
    await db.flush()
    logger.info("stock_tracking_started", item_id=item_id, quantity=initial_quantity)
    return StockMovement(
        item_id=item_id,
        tracked=True,
        previous_quantity=0,
        new_quantity=initial_quantity,
        change_amount=initial_quantity,
    )


async def restock(
    db: AsyncSession,
    item_id: int,
    quantity: int,
    created_by: Optional[int] = None,
    notes: Optional[str] = None,
) -> StockMovement:
    if quantity <= 0:
        raise ValidationError("Restock quantity must be positive", item_id=item_id, quantity=quantity)
    return await _apply_delta(db, item_id, quantity, "restock", created_by, notes)


async def adjust(
    db: AsyncSession,
    item_id: int,
    delta: int,
    created_by: Optional[int] = None,
    notes: Optional[str] = None,
) -> StockMovement:
    """Signed correction after a count (spoilage, miscount). Never below zero."""
    if delta == 0:
        raise ValidationError("Adjustment must change the quantity", item_id=item_id)
    return await _apply_delta(db, item_id, delta, "adjustment", created_by, notes)


async def _apply_delta(
    db: AsyncSession,
    item_id: int,
    delta: int,
    change_type: str,
    created_by: Optional[int],
    notes: Optional[str],
) -> StockMovement:
    item = await _get_item(db, item_id)
    if not item.track_inventory:
        raise ValidationError(f"Item {item_id} does not track inventory", item_id=item_id)

    result = await db.execute(
        update(items)
        .where(
            items.c.id == item_id,
            items.c.track_inventory.is_(True),
            items.c.stock_quantity + delta >= 0,
        )
        .values(stock_quantity=items.c.stock_quantity + delta)
        .returning(items.c.stock_quantity)
    )
    new_quantity = result.scalar_one_or_none()
    if new_quantity is None:
        available = await _current_stock(db, item_id)
        raise InsufficientStock(item_id, -delta, available)

    previous_quantity = new_quantity - delta
    _record(db, item, previous_quantity, new_quantity, change_type, created_by=created_by, notes=notes)
    await db.flush()

    logger.info(
        "stock_changed",
        item_id=item_id,
        change_type=change_type,
        previous=previous_quantity,
        new=new_quantity,
    )
    return StockMovement(
        item_id=item_id,
        tracked=True,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        change_amount=delta,
    )


async def get_item_history(
    db: AsyncSession,
    item_id: int,
    limit: int = 100,
) -> list[InventoryHistory]:
    result = await db.execute(
        select(InventoryHistory)
        .where(InventoryHistory.item_id == item_id)
        .order_by(InventoryHistory.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_low_stock_items(db: AsyncSession, organization_id: int) -> list[ConcessionItem]:
    result = await db.execute(
        select(ConcessionItem)
        .where(
            ConcessionItem.organization_id == organization_id,
            ConcessionItem.track_inventory.is_(True),
            ConcessionItem.stock_quantity.is_not(None),
            ConcessionItem.stock_quantity <= ConcessionItem.low_stock_threshold,
        )
        .order_by(ConcessionItem.stock_quantity.asc())
    )
    return list(result.scalars().all())


async def history_is_consistent(db: AsyncSession, item_id: int) -> bool:
    """Stock level equals the running total of its history."""
    item = await _get_item(db, item_id)
    total = (
        await db.execute(
            select(func.coalesce(func.sum(InventoryHistory.change_amount), 0)).where(
                InventoryHistory.item_id == item_id
            )
        )
    ).scalar()
    return (item.stock_quantity or 0) == total


async def get_item(db: AsyncSession, organization_id: int, item_id: int) -> ConcessionItem:
    item = await _get_item(db, item_id)
    if item.organization_id != organization_id:
        raise NotFoundError(f"Concession item {item_id} not found", item_id=item_id)
    return item
